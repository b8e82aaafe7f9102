"""
Camera frame source for AdaptiveHandtracker.

Wraps an OpenCV VideoCapture so the frame orchestrator can pull BGR frames
from it. Read failures are reported as None (the orchestrator counts them
as failed captures) and logged with throttling.
"""

import sys
import time
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .logger import get_logger
from .config import (
    CAMERA_WIDTH,
    CAMERA_HEIGHT,
    CAMERA_FPS,
    CAMERA_SCAN_LIMIT,
    CAMERA_READ_FAILURE_LOG_EVERY,
    DEFAULT_CAMERA_INDEX,
)

logger = get_logger("CameraManager")


class CameraError(Exception):
    """Raised when camera operations fail."""
    pass


@dataclass(frozen=True)
class CaptureInfo:
    """What the device actually delivers after negotiation."""
    index: int
    width: int
    height: int
    fps: float
    backend: str


def _open_capture(index: int) -> cv2.VideoCapture:
    """Open a capture, preferring DirectShow on Windows."""
    if sys.platform == "win32":
        capture = cv2.VideoCapture(index, cv2.CAP_DSHOW)
        if capture.isOpened():
            return capture
        logger.debug("DirectShow failed, trying default backend")
        capture.release()
    return cv2.VideoCapture(index)


def _backend_name(capture: cv2.VideoCapture) -> str:
    try:
        return capture.getBackendName()
    except cv2.error:
        return "unknown"


class CameraManager:
    """
    Pulls frames from a webcam for the tracking loop.

    Attributes:
        camera_index: Index of the camera device.
        width: Requested capture width in pixels.
        height: Requested capture height in pixels.
        fps: Requested frame rate.
        flip_horizontal: Mirror frames as they are read (selfie view).
    """

    def __init__(
        self,
        camera_index: int = DEFAULT_CAMERA_INDEX,
        width: int = CAMERA_WIDTH,
        height: int = CAMERA_HEIGHT,
        fps: int = CAMERA_FPS,
        flip_horizontal: bool = False
    ):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.fps = fps
        self.flip_horizontal = flip_horizontal

        self._capture: Optional[cv2.VideoCapture] = None
        self._info: Optional[CaptureInfo] = None
        self._frame_count = 0
        self._failed_reads = 0
        self._last_frame_time = 0.0

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    @property
    def info(self) -> Optional[CaptureInfo]:
        """Negotiated capture settings, None while closed."""
        return self._info

    @property
    def actual_width(self) -> int:
        return self._info.width if self._info else 0

    @property
    def actual_height(self) -> int:
        return self._info.height if self._info else 0

    @property
    def actual_fps(self) -> float:
        return self._info.fps if self._info else 0.0

    @property
    def last_frame_time(self) -> float:
        """perf_counter() of the last successful read."""
        return self._last_frame_time

    @property
    def consecutive_failures(self) -> int:
        return self._failed_reads

    def open(self) -> CaptureInfo:
        """
        Open the device and request the configured resolution and rate.

        Returns:
            The settings the device agreed to.

        Raises:
            CameraError: If the device can't be opened.
        """
        if self._capture is not None:
            logger.warning("Camera already open, reopening")
            self.close()

        logger.info(f"Opening camera {self.camera_index}...")
        capture = _open_capture(self.camera_index)
        if not capture.isOpened():
            capture.release()
            raise CameraError(f"Failed to open camera {self.camera_index}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        capture.set(cv2.CAP_PROP_FPS, self.fps)
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # Always hand out the newest frame

        self._capture = capture
        self._info = CaptureInfo(
            index=self.camera_index,
            width=int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            fps=float(capture.get(cv2.CAP_PROP_FPS)),
            backend=_backend_name(capture)
        )
        self._frame_count = 0
        self._failed_reads = 0
        self._last_frame_time = time.perf_counter()

        info = self._info
        logger.info(f"Camera opened via {info.backend}: {info.width}x{info.height} @ {info.fps:.1f} FPS")
        if (info.width, info.height) != (self.width, self.height):
            logger.warning(
                f"Requested {self.width}x{self.height}, got {info.width}x{info.height}"
            )
        return info

    def close(self) -> None:
        """Release the device. Safe to call twice."""
        if self._capture is not None:
            logger.info(f"Closing camera ({self._frame_count} frames read)")
            self._capture.release()
            self._capture = None
        self._info = None

    def read_frame(self) -> Optional[np.ndarray]:
        """
        Grab the newest frame.

        Returns:
            BGR image, or None if the device returned nothing.

        Raises:
            CameraError: If the camera is not open.
        """
        if self._capture is None:
            raise CameraError("Camera is not open")

        ok, frame = self._capture.read()
        if not ok or frame is None:
            self._failed_reads += 1
            if self._failed_reads == 1 or self._failed_reads % CAMERA_READ_FAILURE_LOG_EVERY == 0:
                logger.warning(f"Failed to read frame from camera ({self._failed_reads} in a row)")
            return None

        if self._failed_reads:
            logger.info(f"Camera recovered after {self._failed_reads} failed reads")
            self._failed_reads = 0

        if self.flip_horizontal:
            frame = cv2.flip(frame, 1)

        self._frame_count += 1
        self._last_frame_time = time.perf_counter()
        return frame

    def read_frame_rgb(self) -> Optional[np.ndarray]:
        """Same as read_frame() but converted to RGB for MediaPipe."""
        frame = self.read_frame()
        if frame is None:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def get_frame_count(self) -> int:
        """Frames read since the camera was opened."""
        return self._frame_count

    def __enter__(self) -> "CameraManager":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def list_available_cameras(max_index: int = CAMERA_SCAN_LIMIT) -> list[int]:
    """Try device indices 0..max_index-1 and return the ones that open."""
    available = []
    for index in range(max_index):
        capture = _open_capture(index)
        if capture.isOpened():
            available.append(index)
        capture.release()

    logger.debug(f"Available cameras: {available}")
    return available


def select_camera(preferred_index: int = -1) -> int:
    """
    Pick a camera index.

    The preferred index wins when it opens; otherwise the lowest working
    index is used.

    Raises:
        CameraError: If no camera is available.
    """
    available = list_available_cameras()
    if not available:
        raise CameraError("No cameras available")

    if preferred_index in available:
        logger.info(f"Using preferred camera index: {preferred_index}")
        return preferred_index
    if preferred_index >= 0:
        logger.warning(f"Preferred camera {preferred_index} not available, using {available[0]}")

    logger.info(f"Auto-selected camera index: {available[0]}")
    return available[0]

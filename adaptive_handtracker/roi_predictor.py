"""
Velocity-based region-of-interest predictor.

Narrows where the hand detector should look next by tracking the hand's
landmark centroid, estimating its velocity and predicting the next position.
Also decides when a full detection pass on the actual measurement is due.
"""

import math
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Optional

from .config import ROIConfig, ROI_VELOCITY_SMOOTHING
from .logger import get_logger

if TYPE_CHECKING:
    from .hand_detector import HandLandmarks

logger = get_logger("ROIPredictor")


@dataclass(frozen=True)
class ROI:
    """Square search region in normalized frame coordinates (top-left origin)."""
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.x + self.width and self.y <= py <= self.y + self.height

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class ROIState:
    """Snapshot of a predictor's state."""
    last_centroid: Optional[tuple[float, float]]
    last_timestamp: Optional[float]
    velocity: tuple[float, float]
    predicted_centroid: Optional[tuple[float, float]]
    roi: Optional[ROI]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ROIPredictor:
    """
    Tracks one hand slot and predicts where to search next.

    Call update() once per detection cycle with the slot's landmarks (or
    None when the hand wasn't found). The return value says whether the
    next cycle must run a full detection instead of trusting the prediction.
    """

    def __init__(self, config: Optional[ROIConfig] = None):
        """
        Initialize ROI predictor.

        Args:
            config: ROI configuration. Uses defaults if None.
        """
        self.config = config or ROIConfig()
        self.config.validate()

        self._last_position: Optional[tuple[float, float]] = None
        self._last_time: Optional[float] = None
        self._last_full_frame_time: Optional[float] = None
        self._velocity: tuple[float, float] = (0.0, 0.0)
        self._predicted_position: Optional[tuple[float, float]] = None
        self._roi: Optional[ROI] = None
        self._full_frame_count = 0

    def _full_frame_overdue(self, now: float) -> bool:
        if self._last_full_frame_time is None:
            return True
        elapsed_ms = (now - self._last_full_frame_time) * 1000.0
        return elapsed_ms > self.config.max_time_between_full_frames_ms

    def _mark_full_frame(self, now: float) -> None:
        self._last_full_frame_time = now
        self._full_frame_count += 1

    def update(self, landmarks: Optional["HandLandmarks"], now: Optional[float] = None) -> bool:
        """
        Feed one detection cycle's result.

        Args:
            landmarks: Landmarks of the tracked hand, or None if it wasn't detected.
            now: Timestamp in seconds. If None, uses current time.

        Returns:
            True if a full frame update should be performed, False otherwise.
        """
        if now is None:
            now = time.perf_counter()

        # No hand: keep the last ROI and prediction, refresh on timeout only
        if landmarks is None:
            if self._full_frame_overdue(now):
                self._mark_full_frame(now)
                return True
            return False

        centroid = landmarks.centroid()

        if self._last_position is None:
            self._last_position = centroid
            self._last_time = now
            self._mark_full_frame(now)
            self._update_roi(centroid)
            return True

        dt = now - self._last_time
        dx = centroid[0] - self._last_position[0]
        dy = centroid[1] - self._last_position[1]

        if dt > 0:
            w = ROI_VELOCITY_SMOOTHING
            vx = w * (dx / dt) + (1.0 - w) * self._velocity[0]
            vy = w * (dy / dt) + (1.0 - w) * self._velocity[1]
            self._velocity = (vx, vy)

        distance = math.hypot(dx, dy)
        requires_full_frame = (
            distance > self.config.movement_threshold
            or self._full_frame_overdue(now)
        )

        self._last_position = centroid
        self._last_time = now

        self._predict_next_position(max(dt, 0.0))
        self._update_roi(centroid if requires_full_frame else self._predicted_position)

        if requires_full_frame:
            self._mark_full_frame(now)

        return requires_full_frame

    def _predict_next_position(self, dt: float) -> None:
        """Linear prediction one step ahead, clamped to the frame."""
        x, y = self._last_position
        vx, vy = self._velocity
        self._predicted_position = (
            _clamp(x + vx * dt, 0.0, 1.0),
            _clamp(y + vy * dt, 0.0, 1.0),
        )

    def _update_roi(self, position: tuple[float, float]) -> None:
        """Rebuild the square ROI around a position, sized by speed."""
        cfg = self.config
        speed = math.hypot(*self._velocity)

        size = cfg.min_roi_size + min(
            speed * cfg.velocity_multiplier,
            cfg.max_roi_size - cfg.min_roi_size
        )
        size = _clamp(size, cfg.min_roi_size, cfg.max_roi_size)

        x = _clamp(position[0] - size / 2, 0.0, 1.0 - size)
        y = _clamp(position[1] - size / 2, 0.0, 1.0 - size)

        self._roi = ROI(x=x, y=y, width=size, height=size)

    @property
    def roi(self) -> Optional[ROI]:
        """Current ROI, or None before the first observation."""
        return self._roi

    @property
    def velocity(self) -> tuple[float, float]:
        """Smoothed velocity in normalized units per second."""
        return self._velocity

    @property
    def last_position(self) -> Optional[tuple[float, float]]:
        return self._last_position

    @property
    def predicted_position(self) -> Optional[tuple[float, float]]:
        return self._predicted_position

    @property
    def full_frame_count(self) -> int:
        """Number of forced full-frame decisions so far."""
        return self._full_frame_count

    @property
    def state(self) -> ROIState:
        return ROIState(
            last_centroid=self._last_position,
            last_timestamp=self._last_time,
            velocity=self._velocity,
            predicted_centroid=self._predicted_position,
            roi=self._roi,
        )

    def roi_in_pixels(self, width: int, height: int) -> Optional[tuple[int, int, int, int]]:
        """
        Convert the ROI to pixel coordinates.

        Args:
            width: Frame width in pixels.
            height: Frame height in pixels.

        Returns:
            (x, y, w, h) or None if no ROI exists yet.
        """
        if self._roi is None:
            return None
        return (
            math.floor(self._roi.x * width),
            math.floor(self._roi.y * height),
            math.ceil(self._roi.width * width),
            math.ceil(self._roi.height * height),
        )

    def update_settings(self, **settings) -> None:
        """
        Change settings at runtime.

        Args:
            **settings: ROIConfig field names and new values.

        Raises:
            ValueError: On unknown names or an invalid resulting config.
        """
        try:
            new_config = replace(self.config, **settings)
        except TypeError as e:
            raise ValueError(f"Unknown ROI setting: {e}") from e
        new_config.validate()
        self.config = new_config
        logger.debug(f"ROI settings updated: {settings}")

    def reset(self) -> None:
        """Forget the tracked hand (call when it has been lost for a while)."""
        self._last_position = None
        self._last_time = None
        self._last_full_frame_time = None
        self._velocity = (0.0, 0.0)
        self._predicted_position = None
        self._roi = None

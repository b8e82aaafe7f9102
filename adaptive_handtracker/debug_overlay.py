"""
Debug visualization for AdaptiveHandtracker.

Draws landmarks, predicted ROIs, tracked region outlines and pipeline
telemetry onto a BGR copy of the camera frame.
"""

from typing import Mapping, Optional, Sequence

import cv2
import numpy as np

from .hand_detector import HandLandmarks, HAND_CONNECTIONS
from .performance_tracker import PerformanceSample
from .region_tracker import TrackingResult
from .roi_predictor import ROI

WINDOW_NAME = "Hand Tracker Debug"

# BGR colors
COLOR_LANDMARK = (0, 255, 0)
COLOR_CONNECTION = (0, 0, 255)
COLOR_ROI = (255, 200, 0)
COLOR_ROI_FULL_FRAME = (0, 165, 255)
COLOR_REGION = (255, 0, 255)
COLOR_REGION_LOST = (128, 128, 128)
COLOR_TEXT = (0, 255, 255)
COLOR_INFO = (255, 255, 255)


def draw_landmarks(
    image: np.ndarray,
    hand: HandLandmarks,
    draw_connections: bool = True
) -> np.ndarray:
    """
    Draw hand landmarks on an image.

    Args:
        image: BGR image to draw on.
        hand: Landmarks in normalized coordinates.
        draw_connections: Draw connections between landmarks.

    Returns:
        Image with landmarks drawn.
    """
    h, w = image.shape[:2]

    if draw_connections:
        for start_idx, end_idx in HAND_CONNECTIONS:
            start = hand.landmarks[start_idx]
            end = hand.landmarks[end_idx]
            start_pt = (int(start.x * w), int(start.y * h))
            end_pt = (int(end.x * w), int(end.y * h))
            cv2.line(image, start_pt, end_pt, COLOR_CONNECTION, 2)

    for lm in hand.landmarks:
        pt = (int(lm.x * w), int(lm.y * h))
        cv2.circle(image, pt, 3, COLOR_LANDMARK, -1)

    return image


def draw_roi(image: np.ndarray, roi: ROI, requires_full_frame: bool = False) -> np.ndarray:
    """Draw a normalized ROI rectangle. Orange when a full frame is due."""
    h, w = image.shape[:2]
    top_left = (int(roi.x * w), int(roi.y * h))
    bottom_right = (int((roi.x + roi.width) * w), int((roi.y + roi.height) * h))
    color = COLOR_ROI_FULL_FRAME if requires_full_frame else COLOR_ROI
    cv2.rectangle(image, top_left, bottom_right, color, 1)
    return image


def draw_region(image: np.ndarray, region_id: str, result: TrackingResult) -> np.ndarray:
    """Draw a tracked region's projected outline (pixel coordinates)."""
    if result.corners:
        pts = np.array(result.corners, dtype=np.int32).reshape(-1, 1, 2)
        color = COLOR_REGION if result.is_tracked else COLOR_REGION_LOST
        cv2.polylines(image, [pts], True, color, 2)

    if result.center is not None:
        cx, cy = int(result.center[0]), int(result.center[1])
        cv2.circle(image, (cx, cy), 4, COLOR_REGION, -1)
        cv2.putText(
            image, f"{region_id} {result.confidence:.2f}", (cx + 6, cy - 6),
            cv2.FONT_HERSHEY_SIMPLEX, 0.45, COLOR_REGION, 1
        )
    return image


def draw_telemetry(
    image: np.ndarray,
    sample: Optional[PerformanceSample],
    state: str = "",
    hand_count: int = 0
) -> np.ndarray:
    """Draw FPS, skip level and pipeline state in the top-left corner."""
    fps = sample.estimated_fps if sample else 0.0
    skip = sample.skip_level if sample else 0
    total = sample.total_ms if sample else 0.0

    cv2.putText(
        image, f"FPS: {fps:.1f}", (10, 30),
        cv2.FONT_HERSHEY_SIMPLEX, 0.7, COLOR_TEXT, 2
    )
    cv2.putText(
        image, f"Skip: {skip}  Frame: {total:.1f} ms", (10, 55),
        cv2.FONT_HERSHEY_SIMPLEX, 0.5, COLOR_INFO, 1
    )
    cv2.putText(
        image, f"State: {state}  Hands: {hand_count}", (10, 75),
        cv2.FONT_HERSHEY_SIMPLEX, 0.5, COLOR_INFO, 1
    )
    return image


def render(
    frame: np.ndarray,
    hands: Sequence[HandLandmarks] = (),
    rois: Sequence[tuple[ROI, bool]] = (),
    regions: Optional[Mapping[str, TrackingResult]] = None,
    sample: Optional[PerformanceSample] = None,
    state: str = "",
    mirror: bool = True
) -> np.ndarray:
    """
    Compose the debug view on a copy of a BGR frame.

    Telemetry text is drawn after mirroring so it stays readable.
    """
    display = frame.copy()

    for roi, requires_full_frame in rois:
        draw_roi(display, roi, requires_full_frame)
    for region_id, result in (regions or {}).items():
        draw_region(display, region_id, result)
    for hand in hands:
        draw_landmarks(display, hand)

    # Mirror the display (more intuitive for hand tracking)
    if mirror:
        display = cv2.flip(display, 1)

    return draw_telemetry(display, sample, state, len(hands))


def show(display: np.ndarray, window_name: str = WINDOW_NAME) -> int:
    """Show a frame and poll the keyboard. Returns the key code or -1."""
    cv2.imshow(window_name, display)
    return cv2.waitKey(1) & 0xFF


def close(window_name: str = WINDOW_NAME) -> None:
    cv2.destroyWindow(window_name)

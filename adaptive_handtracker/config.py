"""
Configuration constants for AdaptiveHandtracker.

This module contains all tunable parameters for camera capture, hand
detection, landmark smoothing, ROI prediction, marker tracking and the
frame scheduler.
"""

from dataclasses import dataclass
from typing import Final


# Camera configuration
CAMERA_WIDTH: Final[int] = 640
CAMERA_HEIGHT: Final[int] = 480
CAMERA_FPS: Final[int] = 30
DEFAULT_CAMERA_INDEX: Final[int] = 0
CAMERA_SCAN_LIMIT: Final[int] = 10  # Indices tried by camera auto-selection
CAMERA_READ_FAILURE_LOG_EVERY: Final[int] = 30

# MediaPipe configuration
MEDIAPIPE_MODEL_COMPLEXITY: Final[int] = 0  # Lite model for performance
MAX_NUM_HANDS: Final[int] = 2
MEDIAPIPE_MIN_DETECTION_CONFIDENCE: Final[float] = 0.7
MEDIAPIPE_MIN_TRACKING_CONFIDENCE: Final[float] = 0.5
NUM_LANDMARKS: Final[int] = 21

# =============================================================================
# Landmark Smoothing (One Euro Filter)
# =============================================================================
FILTER_ENABLED: Final[bool] = True
FILTER_MIN_CUTOFF: Final[float] = 1.0  # Lower = more smoothing, more lag
FILTER_BETA: Final[float] = 0.007  # Higher = more responsive to fast moves
FILTER_D_CUTOFF: Final[float] = 1.0  # Derivative cutoff
SLOT_RELEASE_TIMEOUT_S: Final[float] = 0.5  # Drop a hand's filters after 500ms absent

# =============================================================================
# ROI Prediction
# =============================================================================
ROI_MIN_SIZE: Final[float] = 0.2  # 20% of frame minimum
ROI_MAX_SIZE: Final[float] = 0.5  # 50% of frame maximum
ROI_VELOCITY_MULTIPLIER: Final[float] = 0.5
ROI_MOVEMENT_THRESHOLD: Final[float] = 0.03  # Full frame when hand moves 3% of frame
ROI_MAX_TIME_BETWEEN_FULL_FRAMES_MS: Final[float] = 500.0
ROI_VELOCITY_SMOOTHING: Final[float] = 0.3  # Weight of the instantaneous velocity
HAND_LOST_RESET_S: Final[float] = 1.0  # Reset ROI state after 1s without the hand

# =============================================================================
# Frame Scheduler
# =============================================================================
TICK_RATE_HZ: Final[float] = 60.0  # Display refresh cadence
TARGET_FPS: Final[float] = 30.0  # Detector budget, independent of tick rate
SKIP_AHEAD_RATIO: Final[float] = 0.8  # elapsed < 0.8 * interval -> catch up
SKIP_BEHIND_RATIO: Final[float] = 1.5  # elapsed > 1.5 * interval -> back off
MAX_SKIP_LEVEL: Final[int] = 5
MAX_STALL_MS: Final[float] = 1000.0  # Process a frame at least once per second
ERROR_LOG_INTERVAL_S: Final[float] = 2.0  # Throttle repeated tick errors
WORKER_JOIN_TIMEOUT_S: Final[float] = 2.0

# =============================================================================
# Marker (planar region) Tracking
# =============================================================================
TRACKER_MAX_FEATURES: Final[int] = 500
TRACKER_MIN_KEYPOINTS: Final[int] = 10  # Below this the frame is not worth matching
TRACKER_MIN_MATCHES: Final[int] = 8  # 4-point homography with some redundancy
TRACKER_RANSAC_REPROJ_THRESHOLD: Final[float] = 3.0
TRACKER_MIN_CONFIDENCE: Final[float] = 0.4  # At least 40% inliers

# Telemetry
PERF_WINDOW_SIZE: Final[int] = 30  # ~1 second at 30 FPS

# Session archival
SESSION_BATCH_SIZE: Final[int] = 30

# Logging
LOG_FILENAME: Final[str] = "adaptive_handtracker.log"
LOG_MAX_BYTES: Final[int] = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT: Final[int] = 3

# Exit codes
EXIT_SUCCESS: Final[int] = 0
EXIT_PROFILE_ERROR: Final[int] = 1
EXIT_CAMERA_ERROR: Final[int] = 2
EXIT_RUNTIME_ERROR: Final[int] = 3


@dataclass
class FilterConfig:
    """Container for landmark smoothing settings (One Euro Filter)."""

    enabled: bool = FILTER_ENABLED
    min_cutoff: float = FILTER_MIN_CUTOFF
    beta: float = FILTER_BETA
    d_cutoff: float = FILTER_D_CUTOFF
    release_timeout_s: float = SLOT_RELEASE_TIMEOUT_S

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        if self.min_cutoff <= 0:
            raise ValueError(f"min_cutoff must be positive, got {self.min_cutoff}")
        if self.d_cutoff <= 0:
            raise ValueError(f"d_cutoff must be positive, got {self.d_cutoff}")
        if self.beta < 0:
            raise ValueError(f"beta must be non-negative, got {self.beta}")
        if self.release_timeout_s <= 0:
            raise ValueError("release_timeout_s must be positive")


@dataclass
class ROIConfig:
    """Container for ROI prediction settings (normalized frame units)."""

    min_roi_size: float = ROI_MIN_SIZE
    max_roi_size: float = ROI_MAX_SIZE
    velocity_multiplier: float = ROI_VELOCITY_MULTIPLIER
    movement_threshold: float = ROI_MOVEMENT_THRESHOLD
    max_time_between_full_frames_ms: float = ROI_MAX_TIME_BETWEEN_FULL_FRAMES_MS

    def validate(self) -> None:
        """Raise ValueError if the ROI could leave the unit square."""
        if not 0.0 < self.min_roi_size <= self.max_roi_size <= 1.0:
            raise ValueError(
                "ROI sizes must satisfy 0 < min_roi_size <= max_roi_size <= 1, "
                f"got min={self.min_roi_size}, max={self.max_roi_size}"
            )
        if self.velocity_multiplier < 0:
            raise ValueError("velocity_multiplier must be non-negative")
        if self.movement_threshold <= 0:
            raise ValueError("movement_threshold must be positive")
        if self.max_time_between_full_frames_ms <= 0:
            raise ValueError("max_time_between_full_frames_ms must be positive")


@dataclass
class SchedulerConfig:
    """Container for the adaptive frame scheduler."""

    target_fps: float = TARGET_FPS
    tick_rate_hz: float = TICK_RATE_HZ
    adaptive_skip: bool = True
    max_skip_level: int = MAX_SKIP_LEVEL
    max_stall_ms: float = MAX_STALL_MS
    max_num_hands: int = MAX_NUM_HANDS
    hand_lost_reset_s: float = HAND_LOST_RESET_S
    use_roi_crop: bool = True

    @property
    def target_interval_ms(self) -> float:
        """Desired time between processed frames."""
        return 1000.0 / self.target_fps

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        if self.target_fps <= 0 or self.tick_rate_hz <= 0:
            raise ValueError("target_fps and tick_rate_hz must be positive")
        if self.max_skip_level < 0:
            raise ValueError("max_skip_level must be non-negative")
        if self.max_num_hands < 1:
            raise ValueError("max_num_hands must be at least 1")


@dataclass
class RegionTrackerConfig:
    """Container for feature-based marker tracking."""

    enabled: bool = True
    max_features: int = TRACKER_MAX_FEATURES
    min_keypoints: int = TRACKER_MIN_KEYPOINTS
    min_matches: int = TRACKER_MIN_MATCHES
    ransac_reproj_threshold: float = TRACKER_RANSAC_REPROJ_THRESHOLD
    min_confidence: float = TRACKER_MIN_CONFIDENCE

    def validate(self) -> None:
        """Raise ValueError if OpenCV would reject or misuse a setting."""
        if self.max_features < 1:
            raise ValueError(f"max_features must be at least 1, got {self.max_features}")
        if self.min_matches < 4:
            raise ValueError(
                f"min_matches must be at least 4 for a homography, got {self.min_matches}"
            )
        if self.min_keypoints < self.min_matches:
            raise ValueError("min_keypoints must be at least min_matches")
        if self.ransac_reproj_threshold <= 0:
            raise ValueError("ransac_reproj_threshold must be positive")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be within [0, 1], got {self.min_confidence}")

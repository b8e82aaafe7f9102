"""
Profile loader for AdaptiveHandtracker.

Loads and validates JSON pipeline profiles. Profile properties use camelCase
to match the Launcher's JSON format; every section is optional and falls back
to the defaults in config.py.

Example profile:
    {
        "name": "Low-end laptop",
        "oneEuroFilter": {"minCutoff": 0.8, "beta": 0.01},
        "roiOptimization": {"minROISize": 0.25, "maxTimeBetweenFullFrames": 400},
        "scheduler": {"targetFps": 20},
        "markerTracking": {"enabled": false},
        "camera": {"index": 1, "width": 1280, "height": 720},
        "session": {"enabled": true, "outputDir": "sessions"}
    }
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .logger import get_logger
from .config import (
    FilterConfig,
    ROIConfig,
    SchedulerConfig,
    RegionTrackerConfig,
    CAMERA_WIDTH,
    CAMERA_HEIGHT,
    CAMERA_FPS,
    SESSION_BATCH_SIZE,
)

logger = get_logger("ProfileLoader")


class ProfileLoadError(Exception):
    """Raised when profile loading or validation fails."""
    pass


@dataclass
class CameraSettings:
    """Capture device settings. index -1 selects the first available camera."""

    index: int = -1
    width: int = CAMERA_WIDTH
    height: int = CAMERA_HEIGHT
    fps: int = CAMERA_FPS
    flip_horizontal: bool = False


@dataclass
class SessionSettings:
    """Session archival settings."""

    enabled: bool = False
    output_dir: Optional[str] = None
    batch_size: int = SESSION_BATCH_SIZE


@dataclass
class PipelineProfile:
    """
    Profile configuration loaded from JSON.

    Attributes:
        name: Profile display name.
        filter: Landmark smoothing settings (oneEuroFilter).
        roi: ROI prediction settings (roiOptimization).
        scheduler: Frame scheduler settings (scheduler).
        tracker: Marker tracking settings (markerTracking).
        camera: Capture device settings (camera).
        session: Session archival settings (session).
    """

    name: str = "Default"
    filter: FilterConfig = field(default_factory=FilterConfig)
    roi: ROIConfig = field(default_factory=ROIConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    tracker: RegionTrackerConfig = field(default_factory=RegionTrackerConfig)
    camera: CameraSettings = field(default_factory=CameraSettings)
    session: SessionSettings = field(default_factory=SessionSettings)

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the camelCase JSON layout."""
        return {
            "name": self.name,
            "oneEuroFilter": _dump(self.filter, _FILTER_KEYS),
            "roiOptimization": _dump(self.roi, _ROI_KEYS),
            "scheduler": _dump(self.scheduler, _SCHEDULER_KEYS),
            "markerTracking": _dump(self.tracker, _TRACKER_KEYS),
            "camera": _dump(self.camera, _CAMERA_KEYS),
            "session": _dump(self.session, _SESSION_KEYS),
        }


# camelCase key -> (attribute, accepted type)
_FILTER_KEYS: dict[str, tuple[str, type]] = {
    "enabled": ("enabled", bool),
    "minCutoff": ("min_cutoff", float),
    "beta": ("beta", float),
    "dCutoff": ("d_cutoff", float),
    "releaseTimeoutSeconds": ("release_timeout_s", float),
}

_ROI_KEYS: dict[str, tuple[str, type]] = {
    "minROISize": ("min_roi_size", float),
    "maxROISize": ("max_roi_size", float),
    "velocityMultiplier": ("velocity_multiplier", float),
    "movementThreshold": ("movement_threshold", float),
    "maxTimeBetweenFullFrames": ("max_time_between_full_frames_ms", float),
}

_SCHEDULER_KEYS: dict[str, tuple[str, type]] = {
    "targetFps": ("target_fps", float),
    "tickRateHz": ("tick_rate_hz", float),
    "adaptiveSkip": ("adaptive_skip", bool),
    "maxSkipLevel": ("max_skip_level", int),
    "maxStallMs": ("max_stall_ms", float),
    "maxNumHands": ("max_num_hands", int),
    "handLostResetSeconds": ("hand_lost_reset_s", float),
    "useRoiCrop": ("use_roi_crop", bool),
}

_TRACKER_KEYS: dict[str, tuple[str, type]] = {
    "enabled": ("enabled", bool),
    "maxFeatures": ("max_features", int),
    "minKeypoints": ("min_keypoints", int),
    "minMatches": ("min_matches", int),
    "ransacReprojThreshold": ("ransac_reproj_threshold", float),
    "minConfidence": ("min_confidence", float),
}

_CAMERA_KEYS: dict[str, tuple[str, type]] = {
    "index": ("index", int),
    "width": ("width", int),
    "height": ("height", int),
    "fps": ("fps", int),
    "flipHorizontal": ("flip_horizontal", bool),
}

_SESSION_KEYS: dict[str, tuple[str, type]] = {
    "enabled": ("enabled", bool),
    "outputDir": ("output_dir", str),
    "batchSize": ("batch_size", int),
}


def _coerce(section: str, key: str, value: Any, expected: type) -> Any:
    """Check a JSON value against the expected type. bool is not a number here."""
    if expected is bool:
        if isinstance(value, bool):
            return value
    elif expected is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif expected is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif expected is str:
        if value is None or isinstance(value, str):
            return value

    raise ProfileLoadError(
        f"Invalid value for {section}.{key}: {value!r} (expected {expected.__name__})"
    )


def _read_section(
    data: dict[str, Any],
    section: str,
    keys: dict[str, tuple[str, type]]
) -> dict[str, Any]:
    """Translate one camelCase section into dataclass keyword arguments."""
    raw = data.get(section)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ProfileLoadError(f"Profile section '{section}' must be an object")

    kwargs = {}
    for key, value in raw.items():
        if key not in keys:
            logger.warning(f"Ignoring unknown setting {section}.{key}")
            continue
        attr, expected = keys[key]
        kwargs[attr] = _coerce(section, key, value, expected)
    return kwargs


def _dump(obj: Any, keys: dict[str, tuple[str, type]]) -> dict[str, Any]:
    return {key: getattr(obj, attr) for key, (attr, _) in keys.items()}


def load_profile(profile_path: str | Path) -> PipelineProfile:
    """
    Load and validate a profile from a JSON file.

    Args:
        profile_path: Path to the JSON profile file.

    Returns:
        Validated PipelineProfile instance.

    Raises:
        ProfileLoadError: If file cannot be read or validation fails.
    """
    path = Path(profile_path)
    logger.info(f"Loading profile from: {path}")

    # Check file exists
    if not path.exists():
        raise ProfileLoadError(f"Profile file not found: {path}")

    if not path.is_file():
        raise ProfileLoadError(f"Profile path is not a file: {path}")

    # Read and parse JSON
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ProfileLoadError(f"Invalid JSON in profile: {e}")
    except IOError as e:
        raise ProfileLoadError(f"Cannot read profile file: {e}")

    return parse_profile(data)


def parse_profile(data: Any) -> PipelineProfile:
    """
    Parse and validate profile data from dictionary.

    Args:
        data: Dictionary with camelCase profile properties.

    Returns:
        Validated PipelineProfile instance.

    Raises:
        ProfileLoadError: If a section or value is invalid.
    """
    if not isinstance(data, dict):
        raise ProfileLoadError("Profile root must be a JSON object")

    name = data.get("name", "Default")
    if not isinstance(name, str):
        raise ProfileLoadError("Profile name must be a string")

    try:
        profile = PipelineProfile(
            name=name,
            filter=FilterConfig(**_read_section(data, "oneEuroFilter", _FILTER_KEYS)),
            roi=ROIConfig(**_read_section(data, "roiOptimization", _ROI_KEYS)),
            scheduler=SchedulerConfig(**_read_section(data, "scheduler", _SCHEDULER_KEYS)),
            tracker=RegionTrackerConfig(**_read_section(data, "markerTracking", _TRACKER_KEYS)),
            camera=CameraSettings(**_read_section(data, "camera", _CAMERA_KEYS)),
            session=SessionSettings(**_read_section(data, "session", _SESSION_KEYS)),
        )
        profile.filter.validate()
        profile.roi.validate()
        profile.scheduler.validate()
        profile.tracker.validate()
    except ValueError as e:
        raise ProfileLoadError(f"Invalid profile value: {e}") from e

    if profile.session.batch_size < 1:
        raise ProfileLoadError("session.batchSize must be at least 1")

    logger.info(f"Loaded profile: {profile.name}")
    logger.debug(f"  Filter: enabled={profile.filter.enabled}, minCutoff={profile.filter.min_cutoff}, beta={profile.filter.beta}")
    logger.debug(f"  ROI: size={profile.roi.min_roi_size}-{profile.roi.max_roi_size}")
    logger.debug(f"  Scheduler: targetFps={profile.scheduler.target_fps}, adaptiveSkip={profile.scheduler.adaptive_skip}")
    logger.debug(f"  Marker tracking enabled: {profile.tracker.enabled}")
    logger.debug(f"  Camera index: {profile.camera.index}")

    return profile


def create_default_profile() -> PipelineProfile:
    """
    Create a default profile with standard settings.

    Returns:
        PipelineProfile with default values.
    """
    return PipelineProfile()

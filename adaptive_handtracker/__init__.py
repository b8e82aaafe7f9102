"""
AdaptiveHandtracker - Real-time hand tracking with adaptive frame skipping.

Schedules MediaPipe hand detection against a frame budget, crops detection
to a predicted region of interest, smooths landmarks with One Euro filters
and tracks user-drawn planar regions with ORB features.
"""

__version__ = "1.0.0"
__author__ = "AROverlay Team"

from .config import FilterConfig, ROIConfig, SchedulerConfig, RegionTrackerConfig
from .profile_loader import PipelineProfile, ProfileLoadError, load_profile
from .camera_manager import CameraManager, CameraError
from .hand_detector import HandDetector, HandLandmarks, Landmark, DetectorInitError
from .one_euro_filter import OneEuroFilter, OneEuroFilterArray
from .landmark_smoother import LandmarkSmoother, LandmarkFilterBank
from .roi_predictor import ROI, ROIPredictor
from .region_tracker import RegionTracker, TrackingResult
from .event_bus import EventBus, EventType
from .frame_orchestrator import FrameOrchestrator, PipelineState
from .workers import DetectorWorker, VisionWorker, WorkerStoppedError

__all__ = [
    "FilterConfig",
    "ROIConfig",
    "SchedulerConfig",
    "RegionTrackerConfig",
    "PipelineProfile",
    "ProfileLoadError",
    "load_profile",
    "CameraManager",
    "CameraError",
    "HandDetector",
    "HandLandmarks",
    "Landmark",
    "DetectorInitError",
    "OneEuroFilter",
    "OneEuroFilterArray",
    "LandmarkSmoother",
    "LandmarkFilterBank",
    "ROI",
    "ROIPredictor",
    "RegionTracker",
    "TrackingResult",
    "EventBus",
    "EventType",
    "FrameOrchestrator",
    "PipelineState",
    "DetectorWorker",
    "VisionWorker",
    "WorkerStoppedError",
]

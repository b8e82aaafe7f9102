"""
Hand detector using MediaPipe Hands.

Provides the hand landmark data model and MediaPipe integration.
Supports both Solutions API (Python 3.9-3.12) and Tasks API (Python 3.13+).
MediaPipe is imported when the detector is initialized, so the data model
and ROI helpers work without it.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .logger import get_logger
from .config import (
    MEDIAPIPE_MODEL_COMPLEXITY,
    MAX_NUM_HANDS,
    MEDIAPIPE_MIN_DETECTION_CONFIDENCE,
    MEDIAPIPE_MIN_TRACKING_CONFIDENCE,
    NUM_LANDMARKS,
)
from .roi_predictor import ROI

logger = get_logger("HandDetector")


class DetectorInitError(Exception):
    """Raised when MediaPipe is unavailable or the model can't be loaded."""
    pass


# MediaPipe landmark indices
class LandmarkIndex:
    """MediaPipe hand landmark indices."""
    WRIST = 0
    THUMB_CMC = 1
    THUMB_MCP = 2
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_MCP = 5
    INDEX_PIP = 6
    INDEX_DIP = 7
    INDEX_TIP = 8
    MIDDLE_MCP = 9
    MIDDLE_PIP = 10
    MIDDLE_DIP = 11
    MIDDLE_TIP = 12
    RING_MCP = 13
    RING_PIP = 14
    RING_DIP = 15
    RING_TIP = 16
    PINKY_MCP = 17
    PINKY_PIP = 18
    PINKY_DIP = 19
    PINKY_TIP = 20


# Hand connections (same as MediaPipe)
HAND_CONNECTIONS: tuple[tuple[int, int], ...] = (
    (0, 1), (1, 2), (2, 3), (3, 4),  # Thumb
    (0, 5), (5, 6), (6, 7), (7, 8),  # Index
    (0, 9), (9, 10), (10, 11), (11, 12),  # Middle
    (0, 13), (13, 14), (14, 15), (15, 16),  # Ring
    (0, 17), (17, 18), (18, 19), (19, 20),  # Pinky
    (5, 9), (9, 13), (13, 17)  # Palm
)


@dataclass(frozen=True)
class Landmark:
    """Single hand landmark with 3D coordinates and visibility."""
    x: float  # Normalized x [0, 1]
    y: float  # Normalized y [0, 1]
    z: float  # Relative depth
    visibility: float = 1.0


@dataclass(frozen=True)
class HandLandmarks:
    """
    Complete hand landmark data.

    Attributes:
        landmarks: Tuple of 21 hand landmarks, in LandmarkIndex order.
        handedness: 'Left' or 'Right'.
        score: Detection confidence score.
    """
    landmarks: tuple[Landmark, ...]
    handedness: str
    score: float

    def __post_init__(self) -> None:
        if len(self.landmarks) != NUM_LANDMARKS:
            raise ValueError(
                f"HandLandmarks requires {NUM_LANDMARKS} landmarks, "
                f"got {len(self.landmarks)}"
            )
        if not isinstance(self.landmarks, tuple):
            object.__setattr__(self, "landmarks", tuple(self.landmarks))

    def get_landmark(self, index: int) -> Optional[Landmark]:
        """Get landmark by index."""
        if 0 <= index < len(self.landmarks):
            return self.landmarks[index]
        return None

    @property
    def wrist(self) -> Landmark:
        """Get wrist landmark."""
        return self.landmarks[LandmarkIndex.WRIST]

    @property
    def index_tip(self) -> Landmark:
        """Get index finger tip landmark."""
        return self.landmarks[LandmarkIndex.INDEX_TIP]

    def centroid(self) -> tuple[float, float]:
        """
        Mean position of all 21 landmarks.

        Returns:
            (x, y) normalized coordinates.
        """
        n = len(self.landmarks)
        x = sum(lm.x for lm in self.landmarks) / n
        y = sum(lm.y for lm in self.landmarks) / n
        return (x, y)

    def to_dict(self) -> dict:
        """Serializable form used for publication and session archival."""
        return {
            "handedness": self.handedness,
            "score": self.score,
            "landmarks": [
                {"x": lm.x, "y": lm.y, "z": lm.z, "visibility": lm.visibility}
                for lm in self.landmarks
            ],
        }


def crop_to_roi(
    frame: np.ndarray,
    roi: ROI
) -> tuple[np.ndarray, tuple[int, int, int, int]]:
    """
    Crop a frame to a normalized ROI.

    Args:
        frame: Full input frame (H, W, C).
        roi: Normalized region inside [0, 1] x [0, 1].

    Returns:
        Tuple of (cropped_frame, (x_offset, y_offset, roi_w, roi_h)) in pixels,
        for mapping landmarks back to full frame coordinates.
    """
    h, w = frame.shape[:2]
    x1 = max(0, min(w - 1, int(math.floor(roi.x * w))))
    y1 = max(0, min(h - 1, int(math.floor(roi.y * h))))
    x2 = max(x1 + 1, min(w, int(math.ceil((roi.x + roi.width) * w))))
    y2 = max(y1 + 1, min(h, int(math.ceil((roi.y + roi.height) * h))))
    return frame[y1:y2, x1:x2], (x1, y1, x2 - x1, y2 - y1)


def remap_landmarks(
    hand: HandLandmarks,
    crop: tuple[int, int, int, int],
    frame_size: tuple[int, int]
) -> HandLandmarks:
    """
    Map landmarks detected in a crop back to full-frame normalized coordinates.

    Args:
        hand: Landmarks normalized to the cropped image.
        crop: (x_offset, y_offset, roi_w, roi_h) as returned by crop_to_roi.
        frame_size: (height, width) of the full frame.

    Returns:
        HandLandmarks normalized to the full frame.
    """
    x_off, y_off, roi_w, roi_h = crop
    h, w = frame_size
    remapped = tuple(
        Landmark(
            x=(lm.x * roi_w + x_off) / w,
            y=(lm.y * roi_h + y_off) / h,
            z=lm.z,
            visibility=lm.visibility
        )
        for lm in hand.landmarks
    )
    return HandLandmarks(landmarks=remapped, handedness=hand.handedness, score=hand.score)


class HandDetector:
    """
    Hand detector using MediaPipe Hands.

    Detects hand landmarks in RGB images using the MediaPipe
    Hands solution with configurable model complexity.
    Supports both Solutions API (Python 3.9-3.12) and Tasks API (Python 3.13+).
    """

    def __init__(
        self,
        model_complexity: int = MEDIAPIPE_MODEL_COMPLEXITY,
        max_num_hands: int = MAX_NUM_HANDS,
        min_detection_confidence: float = MEDIAPIPE_MIN_DETECTION_CONFIDENCE,
        min_tracking_confidence: float = MEDIAPIPE_MIN_TRACKING_CONFIDENCE
    ):
        """
        Initialize hand detector.

        Args:
            model_complexity: Model complexity (0=Lite, 1=Full).
            max_num_hands: Maximum number of hands to detect.
            min_detection_confidence: Minimum detection confidence.
            min_tracking_confidence: Minimum tracking confidence.
        """
        self.model_complexity = model_complexity
        self.max_num_hands = max_num_hands
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence

        self._mp = None
        self._hands = None  # Solutions API Hands object
        self._landmarker = None  # Tasks API HandLandmarker object
        self._is_initialized = False
        self._using_tasks_api = False
        self._timestamp_ms = 0
        self._frame_count = 0

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @property
    def frame_count(self) -> int:
        return self._frame_count

    def initialize(self) -> None:
        """
        Initialize MediaPipe Hands model.

        Raises:
            DetectorInitError: If MediaPipe is missing or the model fails to load.
        """
        if self._is_initialized:
            return

        try:
            import mediapipe as mp
        except ImportError as e:
            raise DetectorInitError(
                "MediaPipe is required. Install with: pip install mediapipe"
            ) from e

        self._mp = mp
        logger.debug(f"MediaPipe version: {getattr(mp, '__version__', 'unknown')}")

        try:
            # Try legacy Solutions API first (Python 3.9-3.12)
            if hasattr(mp, "solutions") and hasattr(mp.solutions, "hands"):
                self._initialize_solutions_api()
            # Fallback to Tasks API (Python 3.13+)
            elif hasattr(mp, "tasks"):
                self._initialize_tasks_api()
            else:
                raise DetectorInitError(
                    "MediaPipe installation incomplete. "
                    "Neither Solutions API nor Tasks API found."
                )
        except DetectorInitError:
            raise
        except Exception as e:
            raise DetectorInitError(f"Failed to initialize MediaPipe Hands: {e}") from e

        self._is_initialized = True

    def _initialize_solutions_api(self) -> None:
        """Initialize using Solutions API (Python 3.9-3.12)."""
        logger.debug("Initializing MediaPipe Hands (Solutions API)...")

        self._hands = self._mp.solutions.hands.Hands(
            static_image_mode=False,
            model_complexity=self.model_complexity,
            max_num_hands=self.max_num_hands,
            min_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence
        )
        self._using_tasks_api = False

        logger.info(
            f"MediaPipe Hands initialized (Solutions API, complexity={self.model_complexity}, "
            f"max_hands={self.max_num_hands})"
        )

    def _initialize_tasks_api(self) -> None:
        """Initialize using Tasks API (Python 3.13+)."""
        from mediapipe.tasks import python as mp_python
        from mediapipe.tasks.python import vision as mp_vision

        from .model_manager import ensure_hand_landmarker_model

        logger.debug("Checking for hand landmarker model...")
        model_path = ensure_hand_landmarker_model()
        logger.debug(f"Model path: {model_path}")

        base_options = mp_python.BaseOptions(model_asset_path=model_path)
        options = mp_vision.HandLandmarkerOptions(
            base_options=base_options,
            running_mode=mp_vision.RunningMode.VIDEO,
            num_hands=self.max_num_hands,
            min_hand_detection_confidence=self.min_detection_confidence,
            min_hand_presence_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence
        )

        self._landmarker = mp_vision.HandLandmarker.create_from_options(options)
        self._timestamp_ms = 0
        self._using_tasks_api = True

        logger.info(f"MediaPipe Hands initialized (Tasks API, max_hands={self.max_num_hands})")

    def close(self) -> None:
        """Release MediaPipe resources."""
        if self._hands:
            self._hands.close()
            self._hands = None
        if self._landmarker:
            self._landmarker.close()
            self._landmarker = None
        self._is_initialized = False
        logger.debug("HandDetector closed")

    def detect(self, rgb_image: np.ndarray, roi: Optional[ROI] = None) -> list[HandLandmarks]:
        """
        Detect hand landmarks in an RGB image.

        Args:
            rgb_image: RGB image as numpy array (H, W, 3).
            roi: Optional normalized search region. Landmarks found inside it
                 are remapped to full-frame coordinates.

        Returns:
            Detected hands in detector order (empty if none).
        """
        if not self._is_initialized:
            self.initialize()

        self._frame_count += 1

        image = rgb_image
        crop = None
        if roi is not None:
            image, crop = crop_to_roi(rgb_image, roi)

        if self._using_tasks_api:
            hands = self._detect_tasks_api(image)
        else:
            hands = self._detect_solutions_api(image)

        if crop is not None:
            frame_size = rgb_image.shape[:2]
            hands = [remap_landmarks(hand, crop, frame_size) for hand in hands]

        return hands

    def _detect_solutions_api(self, rgb_image: np.ndarray) -> list[HandLandmarks]:
        """Detect using Solutions API (Python 3.9-3.12)."""
        results = self._hands.process(rgb_image)

        if not results.multi_hand_landmarks:
            return []

        hands = []
        for i, hand_landmarks in enumerate(results.multi_hand_landmarks):
            handedness = "Right"
            score = 1.0
            if results.multi_handedness and i < len(results.multi_handedness):
                classification = results.multi_handedness[i].classification[0]
                handedness = classification.label
                score = classification.score

            hands.append(HandLandmarks(
                landmarks=tuple(_to_landmark(lm) for lm in hand_landmarks.landmark),
                handedness=handedness,
                score=score
            ))

        return hands

    def _detect_tasks_api(self, rgb_image: np.ndarray) -> list[HandLandmarks]:
        """Detect using Tasks API (Python 3.13+)."""
        mp = self._mp

        # Ensure image is contiguous and in correct format
        if not rgb_image.flags["C_CONTIGUOUS"]:
            rgb_image = np.ascontiguousarray(rgb_image)

        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_image)

        # VIDEO mode: maintain tracking state with timestamp
        self._timestamp_ms += 33  # ~30 FPS
        result = self._landmarker.detect_for_video(mp_image, self._timestamp_ms)

        if not result.hand_landmarks:
            return []

        hands = []
        for i, hand_landmarks in enumerate(result.hand_landmarks):
            handedness = "Right"
            score = 1.0
            if result.handedness and i < len(result.handedness):
                handedness_info = result.handedness[i][0]
                handedness = handedness_info.category_name
                score = handedness_info.score

            hands.append(HandLandmarks(
                landmarks=tuple(_to_landmark(lm) for lm in hand_landmarks),
                handedness=handedness,
                score=score
            ))

        return hands

    def __enter__(self) -> "HandDetector":
        """Context manager entry."""
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()


def _to_landmark(lm) -> Landmark:
    return Landmark(
        x=lm.x,
        y=lm.y,
        z=lm.z,
        visibility=getattr(lm, "visibility", 1.0)
    )

"""
Feature-based planar region (marker) tracking.

A user-drawn region of a frame is stored as a reference set of ORB keypoints
and binary descriptors. Every later frame is matched against each reference
with a cross-checked Hamming matcher, and a RANSAC homography gives the
region's position, outline and rotation in the current frame.

Losing track of a region is a normal state and is reported through
TrackingResult, never raised.
"""

import math
import time
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .config import RegionTrackerConfig, TRACKER_MAX_FEATURES
from .logger import get_logger

logger = get_logger("RegionTracker")


@dataclass
class FeatureSet:
    """
    Keypoints and descriptors extracted from one image.

    Attributes:
        keypoints: (N, 2) float32 array of keypoint positions in pixels.
        descriptors: (N, 32) uint8 ORB descriptors, or None when N == 0.
        width: Source image width in pixels.
        height: Source image height in pixels.
        timestamp: Extraction time in seconds.
    """
    keypoints: np.ndarray
    descriptors: Optional[np.ndarray]
    width: int
    height: int
    timestamp: float
    released: bool = False

    @property
    def keypoint_count(self) -> int:
        return 0 if self.released else len(self.keypoints)

    def release(self) -> None:
        """Drop the arrays held by this set. Safe to call more than once."""
        self.keypoints = np.empty((0, 2), dtype=np.float32)
        self.descriptors = None
        self.released = True


@dataclass(frozen=True)
class TrackingResult:
    """Outcome of one tracking attempt for one region."""
    is_tracked: bool
    match_count: int = 0
    inlier_count: int = 0
    confidence: float = 0.0
    homography: Optional[np.ndarray] = None
    center: Optional[tuple[float, float]] = None
    corners: Optional[tuple[tuple[float, float], ...]] = None
    rotation: Optional[float] = None  # Radians

    @classmethod
    def not_tracked(cls, match_count: int = 0, inlier_count: int = 0) -> "TrackingResult":
        confidence = inlier_count / match_count if match_count else 0.0
        return cls(
            is_tracked=False,
            match_count=match_count,
            inlier_count=inlier_count,
            confidence=confidence
        )

    def to_dict(self) -> dict:
        """Serializable form (camelCase keys, homography as nested lists)."""
        data = {
            "isTracked": self.is_tracked,
            "matchCount": self.match_count,
            "inlierCount": self.inlier_count,
            "confidence": self.confidence,
        }
        if self.homography is not None:
            data["homography"] = self.homography.tolist()
        if self.center is not None:
            data["center"] = {"x": self.center[0], "y": self.center[1]}
        if self.corners is not None:
            data["corners"] = [{"x": x, "y": y} for x, y in self.corners]
        if self.rotation is not None:
            data["rotation"] = self.rotation
        return data


def rotation_from_homography(homography: np.ndarray) -> float:
    """
    Approximate in-plane rotation of a homography in radians.

    Averages the two angle estimates of the upper-left 2x2 block. This is
    not a full pose decomposition.
    """
    a = homography[0, 0]
    b = homography[0, 1]
    c = homography[1, 0]
    d = homography[1, 1]
    return float((math.atan2(b, a) + math.atan2(-c, d)) / 2.0)


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    channels = image.shape[2]
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image[:, :, 0]


class VisionEngine:
    """
    Thin wrapper around the OpenCV primitives used for tracking.

    Not usable until initialize() has created the ORB detector; until then
    extraction returns None.
    """

    def __init__(self, max_features: int = TRACKER_MAX_FEATURES):
        self.max_features = max_features
        self._orb = None
        self._orb_features = 0
        self._init_failed = False

    @property
    def is_ready(self) -> bool:
        return self._orb is not None

    def initialize(self) -> bool:
        """
        Create the ORB detector.

        Returns:
            True if the engine is ready.
        """
        if self._orb is not None:
            return True
        try:
            self._orb = cv2.ORB_create(nfeatures=self.max_features)
            self._orb_features = self.max_features
        except cv2.error as e:
            if not self._init_failed:
                logger.error(f"Failed to initialize OpenCV ORB: {e}")
            self._init_failed = True
            return False

        logger.info(f"VisionEngine initialized (OpenCV {cv2.__version__}, max_features={self.max_features})")
        return True

    def extract(
        self,
        image: np.ndarray,
        max_features: Optional[int] = None,
        timestamp: Optional[float] = None
    ) -> Optional[FeatureSet]:
        """
        Detect ORB keypoints and compute descriptors.

        Args:
            image: BGR, BGRA or grayscale image.
            max_features: Keypoint budget. Defaults to the engine's.
            timestamp: Extraction time in seconds. If None, uses current time.

        Returns:
            FeatureSet, or None if the engine is not initialized yet.
        """
        if self._orb is None:
            return None

        budget = max_features or self.max_features
        if budget != self._orb_features:
            self._orb.setMaxFeatures(budget)
            self._orb_features = budget

        if timestamp is None:
            timestamp = time.perf_counter()

        gray = _to_gray(image)
        keypoints, descriptors = self._orb.detectAndCompute(gray, None)

        if descriptors is None or not keypoints:
            points = np.empty((0, 2), dtype=np.float32)
            descriptors = None
        else:
            points = np.array([kp.pt for kp in keypoints], dtype=np.float32)

        h, w = image.shape[:2]
        return FeatureSet(
            keypoints=points,
            descriptors=descriptors,
            width=w,
            height=h,
            timestamp=timestamp
        )


class ReferenceStore:
    """
    Owned mapping of region id to reference FeatureSet.

    Holds at most one live reference per region. Replacing or clearing a
    reference releases the previous one first.
    """

    def __init__(self):
        self._references: dict[str, FeatureSet] = {}

    def save(self, region_id: str, features: FeatureSet) -> None:
        old = self._references.pop(region_id, None)
        if old is not None and old is not features:
            old.release()
        self._references[region_id] = features

    def get(self, region_id: str) -> Optional[FeatureSet]:
        return self._references.get(region_id)

    def clear(self, region_id: str) -> bool:
        """Release and remove one reference. Returns False if it didn't exist."""
        features = self._references.pop(region_id, None)
        if features is None:
            return False
        features.release()
        return True

    def clear_all(self) -> None:
        for features in self._references.values():
            features.release()
        self._references.clear()

    def region_ids(self) -> list[str]:
        return list(self._references)

    def __contains__(self, region_id: str) -> bool:
        return region_id in self._references

    def __len__(self) -> int:
        return len(self._references)


class RegionTracker:
    """
    Re-identifies user-drawn planar regions across frames.

    Attributes:
        config: Tracker configuration.
        engine: OpenCV primitives wrapper.
        references: Reference features by region id.
    """

    def __init__(
        self,
        config: Optional[RegionTrackerConfig] = None,
        engine: Optional[VisionEngine] = None,
        references: Optional[ReferenceStore] = None
    ):
        self.config = config or RegionTrackerConfig()
        self.config.validate()
        self.engine = engine or VisionEngine(self.config.max_features)
        self.references = references if references is not None else ReferenceStore()
        self._not_ready_logged = False

    @property
    def is_ready(self) -> bool:
        return self.engine.is_ready

    def initialize(self) -> bool:
        return self.engine.initialize()

    def extract_features(
        self,
        image: np.ndarray,
        max_features: Optional[int] = None,
        timestamp: Optional[float] = None
    ) -> Optional[FeatureSet]:
        """
        Extract features from an image.

        Returns:
            FeatureSet, or None if the vision engine isn't ready yet.
        """
        features = self.engine.extract(image, max_features or self.config.max_features, timestamp)
        if features is None:
            if not self._not_ready_logged:
                logger.info("Vision engine not ready, skipping feature extraction")
                self._not_ready_logged = True
            return None

        logger.debug(f"Extracted {features.keypoint_count} keypoints from {features.width}x{features.height} image")
        return features

    def extract_region_features(
        self,
        frame: np.ndarray,
        bbox: tuple[int, int, int, int],
        timestamp: Optional[float] = None
    ) -> Optional[FeatureSet]:
        """
        Extract features from a drawn region of a frame.

        Args:
            frame: Full frame.
            bbox: (x, y, w, h) in pixels; clamped to the frame.
            timestamp: Extraction time in seconds.

        Returns:
            FeatureSet in region coordinates, or None if the region is empty
            or the engine isn't ready.
        """
        h, w = frame.shape[:2]
        x, y, bw, bh = (int(round(v)) for v in bbox)
        x1, y1 = max(0, x), max(0, y)
        x2, y2 = min(w, x + bw), min(h, y + bh)

        if x2 <= x1 or y2 <= y1:
            logger.warning(f"Region {bbox} lies outside the {w}x{h} frame")
            return None

        return self.extract_features(frame[y1:y2, x1:x2], timestamp=timestamp)

    def save_reference(self, region_id: str, features: FeatureSet) -> None:
        """Store the reference for a region, releasing any previous one."""
        self.references.save(region_id, features)
        logger.info(f"Saved reference features for region {region_id}: {features.keypoint_count} keypoints")

    def set_reference_from_frame(
        self,
        region_id: str,
        frame: np.ndarray,
        bbox: tuple[int, int, int, int]
    ) -> bool:
        """
        Crop, extract and save a region's reference in one step.

        Returns:
            True if a reference was stored.
        """
        features = self.extract_region_features(frame, bbox)
        if features is None:
            return False
        self.save_reference(region_id, features)
        return True

    def clear_reference(self, region_id: str) -> bool:
        cleared = self.references.clear(region_id)
        if cleared:
            logger.info(f"Cleared reference features for region {region_id}")
        return cleared

    def has_reference(self, region_id: str) -> bool:
        return region_id in self.references

    @property
    def region_ids(self) -> list[str]:
        return self.references.region_ids()

    def match(self, region_id: str, current: FeatureSet) -> TrackingResult:
        """
        Match a frame's features against a region's reference.

        Args:
            region_id: Region to look for.
            current: Features of the current frame.

        Returns:
            TrackingResult; not tracked when there is no reference, too few
            keypoints, too few matches or too few RANSAC inliers.
        """
        reference = self.references.get(region_id)
        if reference is None or current.keypoint_count < self.config.min_keypoints:
            return TrackingResult.not_tracked()
        if reference.descriptors is None or current.descriptors is None:
            return TrackingResult.not_tracked()

        matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=True)
        try:
            matches = matcher.match(reference.descriptors, current.descriptors)
            match_count = len(matches)

            if match_count < self.config.min_matches:
                return TrackingResult.not_tracked(match_count)

            src = reference.keypoints[[m.queryIdx for m in matches]].reshape(-1, 1, 2)
            dst = current.keypoints[[m.trainIdx for m in matches]].reshape(-1, 1, 2)

            homography, mask = cv2.findHomography(
                src, dst, cv2.RANSAC, self.config.ransac_reproj_threshold
            )
            if homography is None or mask is None:
                return TrackingResult.not_tracked(match_count)

            inlier_count = int(np.count_nonzero(mask))
            confidence = inlier_count / match_count

            if confidence <= self.config.min_confidence:
                return TrackingResult.not_tracked(match_count, inlier_count)

            return self._build_result(reference, homography, match_count, inlier_count, confidence)
        except cv2.error as e:
            logger.warning(f"Matching failed for region {region_id}: {e}")
            return TrackingResult.not_tracked()
        finally:
            matcher.clear()

    def _build_result(
        self,
        reference: FeatureSet,
        homography: np.ndarray,
        match_count: int,
        inlier_count: int,
        confidence: float
    ) -> TrackingResult:
        w, h = reference.width, reference.height
        points = np.array(
            [[w / 2, h / 2], [0, 0], [w, 0], [w, h], [0, h]],
            dtype=np.float32
        ).reshape(-1, 1, 2)
        projected = cv2.perspectiveTransform(points, homography).reshape(-1, 2)

        homography = homography.copy()
        homography.flags.writeable = False

        center = (float(projected[0, 0]), float(projected[0, 1]))
        corners = tuple((float(px), float(py)) for px, py in projected[1:])

        return TrackingResult(
            is_tracked=True,
            match_count=match_count,
            inlier_count=inlier_count,
            confidence=confidence,
            homography=homography,
            center=center,
            corners=corners,
            rotation=rotation_from_homography(homography)
        )

    def track(self, frame: np.ndarray, timestamp: Optional[float] = None) -> dict[str, TrackingResult]:
        """
        Track every region with a reference in one frame.

        Features are extracted once per frame and released afterwards.

        Returns:
            TrackingResult per region id (empty when nothing is registered or
            the engine isn't ready).
        """
        if not self.config.enabled or len(self.references) == 0:
            return {}

        current = self.extract_features(frame, timestamp=timestamp)
        if current is None:
            return {}

        try:
            return {region_id: self.match(region_id, current) for region_id in self.region_ids}
        finally:
            current.release()

    def cleanup(self) -> None:
        """Release every reference."""
        self.references.clear_all()
        logger.debug("RegionTracker cleaned up")

import math

import cv2
import numpy as np
import pytest

from adaptive_handtracker.config import RegionTrackerConfig
from adaptive_handtracker.region_tracker import (
    FeatureSet,
    ReferenceStore,
    RegionTracker,
    TrackingResult,
    VisionEngine,
    rotation_from_homography,
)


@pytest.fixture
def tracker():
    t = RegionTracker()
    assert t.initialize()
    return t


def shifted(image, dx, dy):
    h, w = image.shape[:2]
    m = np.float32([[1, 0, dx], [0, 1, dy]])
    return cv2.warpAffine(image, m, (w, h), borderValue=(127, 127, 127))


def test_engine_not_ready_until_initialized(scene):
    engine = VisionEngine()
    assert not engine.is_ready
    assert engine.extract(scene) is None
    assert engine.initialize()
    assert engine.is_ready


def test_extract_features(scene):
    engine = VisionEngine(max_features=300)
    engine.initialize()
    features = engine.extract(scene, timestamp=5.0)

    assert 10 < features.keypoint_count <= 300
    assert features.keypoints.shape == (features.keypoint_count, 2)
    assert features.descriptors.shape == (features.keypoint_count, 32)
    assert (features.width, features.height) == (640, 480)
    assert features.timestamp == 5.0


def test_blank_image_has_no_features(tracker):
    features = tracker.extract_features(np.zeros((480, 640, 3), dtype=np.uint8))
    assert features.keypoint_count == 0
    assert features.descriptors is None


def test_identical_frame_tracks_with_identity(tracker, scene):
    assert tracker.set_reference_from_frame("marker", scene, (0, 0, 640, 480))

    results = tracker.track(scene)
    result = results["marker"]

    assert result.is_tracked
    assert result.confidence > 0.9
    assert result.match_count >= 8
    np.testing.assert_allclose(result.homography / result.homography[2, 2], np.eye(3), atol=1e-2)
    assert result.center == pytest.approx((320.0, 240.0), abs=1.0)
    assert result.rotation == pytest.approx(0.0, abs=1e-2)


def test_region_follows_translation(tracker, scene):
    bbox = (120, 90, 400, 300)
    assert tracker.set_reference_from_frame("card", scene, bbox)

    result = tracker.track(shifted(scene, 15, 10))["card"]

    assert result.is_tracked
    # Region coordinates map to frame coordinates: offset + shift
    assert result.center == pytest.approx((120 + 200 + 15, 90 + 150 + 10), abs=2.0)
    (x0, y0), (x1, y1), (x2, y2), (x3, y3) = result.corners
    assert (x0, y0) == pytest.approx((135, 100), abs=2.0)
    assert (x2, y2) == pytest.approx((535, 400), abs=2.0)
    assert result.rotation == pytest.approx(0.0, abs=2e-2)


def test_blank_frame_is_not_tracked(tracker, scene):
    tracker.set_reference_from_frame("marker", scene, (0, 0, 640, 480))
    result = tracker.track(np.zeros((480, 640, 3), dtype=np.uint8))["marker"]
    assert result == TrackingResult.not_tracked()
    assert result.homography is None


def test_too_few_reference_keypoints_is_not_tracked(tracker, scene):
    current = tracker.extract_features(scene)
    sparse = FeatureSet(
        keypoints=current.keypoints[:5].copy(),
        descriptors=current.descriptors[:5].copy(),
        width=640,
        height=480,
        timestamp=0.0
    )
    tracker.save_reference("sparse", sparse)

    result = tracker.match("sparse", current)
    assert not result.is_tracked
    assert result.match_count <= 5


def test_unknown_region_is_not_tracked(tracker, scene):
    current = tracker.extract_features(scene)
    assert not tracker.match("nope", current).is_tracked


def test_track_without_references_returns_empty(tracker, scene):
    assert tracker.track(scene) == {}


def test_region_outside_frame_is_rejected(tracker, scene):
    assert tracker.extract_region_features(scene, (700, 500, 50, 50)) is None
    assert not tracker.set_reference_from_frame("off", scene, (700, 500, 50, 50))
    assert not tracker.has_reference("off")


def test_clear_reference_releases_features(tracker, scene):
    tracker.set_reference_from_frame("a", scene, (0, 0, 320, 240))
    features = tracker.references.get("a")

    assert tracker.clear_reference("a")
    assert features.released
    assert features.keypoint_count == 0
    assert not tracker.clear_reference("a")
    assert tracker.region_ids == []


def test_reference_store_releases_replaced_set(scene):
    engine = VisionEngine()
    engine.initialize()
    store = ReferenceStore()
    first = engine.extract(scene)
    second = engine.extract(scene)

    store.save("r", first)
    store.save("r", second)
    assert first.released
    assert not second.released
    assert len(store) == 1

    store.clear_all()
    assert second.released
    assert "r" not in store


def test_disabled_tracker_tracks_nothing(scene):
    tracker = RegionTracker(RegionTrackerConfig(enabled=False))
    tracker.initialize()
    tracker.set_reference_from_frame("a", scene, (0, 0, 640, 480))
    assert tracker.track(scene) == {}


def test_rotation_from_homography_sign():
    # Counter-clockwise matrix in image coordinates reads as a negative angle
    angle = math.radians(30)
    h = np.array([
        [math.cos(angle), -math.sin(angle), 10.0],
        [math.sin(angle), math.cos(angle), 5.0],
        [0.0, 0.0, 1.0],
    ])
    assert rotation_from_homography(h) == pytest.approx(-angle)
    assert rotation_from_homography(h.T) == pytest.approx(angle)
    assert rotation_from_homography(np.eye(3)) == 0.0


def test_tracking_result_to_dict(tracker, scene):
    tracker.set_reference_from_frame("m", scene, (0, 0, 640, 480))
    data = tracker.track(scene)["m"].to_dict()

    assert data["isTracked"] is True
    assert len(data["homography"]) == 3
    assert set(data["center"]) == {"x", "y"}
    assert len(data["corners"]) == 4

    lost = TrackingResult.not_tracked(10, 3).to_dict()
    assert lost == {"isTracked": False, "matchCount": 10, "inlierCount": 3, "confidence": 0.3}


def test_homography_is_read_only(tracker, scene):
    tracker.set_reference_from_frame("m", scene, (0, 0, 640, 480))
    result = tracker.track(scene)["m"]
    with pytest.raises(ValueError):
        result.homography[0, 0] = 2.0


@pytest.mark.parametrize("settings", [
    {"max_features": 0},
    {"min_matches": 3},
    {"min_keypoints": 6, "min_matches": 8},
    {"ransac_reproj_threshold": 0.0},
    {"min_confidence": -0.1},
])
def test_invalid_tracker_config_is_rejected(settings):
    with pytest.raises(ValueError):
        RegionTracker(RegionTrackerConfig(**settings))

from types import SimpleNamespace

import numpy as np
import pytest

from adaptive_handtracker.hand_detector import (
    HAND_CONNECTIONS,
    HandDetector,
    HandLandmarks,
    Landmark,
    LandmarkIndex,
    crop_to_roi,
    remap_landmarks,
)
from adaptive_handtracker.roi_predictor import ROI

from conftest import make_hand


class FakeHands:
    """Mimics mediapipe.solutions.hands.Hands.process() output."""

    def __init__(self, points):
        self.points = points
        self.shapes = []

    def process(self, image):
        self.shapes.append(image.shape)
        landmark = [SimpleNamespace(x=x, y=y, z=0.0) for x, y in self.points]
        classification = SimpleNamespace(label="Left", score=0.8)
        return SimpleNamespace(
            multi_hand_landmarks=[SimpleNamespace(landmark=landmark)],
            multi_handedness=[SimpleNamespace(classification=[classification])]
        )

    def close(self):
        pass


def test_hand_requires_21_landmarks():
    with pytest.raises(ValueError):
        HandLandmarks(landmarks=(Landmark(0, 0, 0),) * 5, handedness="Right", score=1.0)


def test_hand_accessors(hand):
    assert isinstance(hand.landmarks, tuple)
    assert hand.wrist is hand.landmarks[LandmarkIndex.WRIST]
    assert hand.index_tip is hand.landmarks[LandmarkIndex.INDEX_TIP]
    assert hand.get_landmark(21) is None
    assert hand.centroid() == pytest.approx((0.5, 0.5))


def test_list_of_landmarks_is_frozen_to_tuple():
    hand = HandLandmarks(landmarks=[Landmark(0.1, 0.2, 0.0)] * 21, handedness="Left", score=0.5)
    assert isinstance(hand.landmarks, tuple)


def test_to_dict():
    data = make_hand(handedness="Left", score=0.75).to_dict()
    assert data["handedness"] == "Left"
    assert data["score"] == 0.75
    assert len(data["landmarks"]) == 21
    assert set(data["landmarks"][0]) == {"x", "y", "z", "visibility"}


def test_connections_reference_valid_landmarks():
    assert len(HAND_CONNECTIONS) == 23
    assert all(0 <= a < 21 and 0 <= b < 21 for a, b in HAND_CONNECTIONS)


def test_crop_to_roi():
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    crop, (x, y, w, h) = crop_to_roi(frame, ROI(0.25, 0.5, 0.25, 0.25))
    assert (x, y, w, h) == (160, 240, 160, 120)
    assert crop.shape == (120, 160, 3)


def test_crop_is_clamped_to_frame():
    frame = np.zeros((100, 100, 3), dtype=np.uint8)
    crop, (x, y, w, h) = crop_to_roi(frame, ROI(0.9, 0.9, 0.5, 0.5))
    assert (x, y) == (90, 90)
    assert (w, h) == (10, 10)
    assert crop.shape[:2] == (10, 10)


def test_remap_landmarks_to_full_frame():
    local = make_hand(0.5, 0.5)
    remapped = remap_landmarks(local, (160, 240, 160, 120), (480, 640))
    cx, cy = remapped.centroid()
    assert cx == pytest.approx((0.5 * 160 + 160) / 640)
    assert cy == pytest.approx((0.5 * 120 + 240) / 480)
    assert remapped.handedness == local.handedness
    assert remapped.landmarks[3].z == local.landmarks[3].z


def test_detect_in_roi_returns_full_frame_coordinates():
    detector = HandDetector()
    fake = FakeHands([(0.5, 0.5)] * 21)
    detector._hands = fake
    detector._is_initialized = True

    rgb = np.zeros((480, 640, 3), dtype=np.uint8)
    hands = detector.detect(rgb, ROI(0.25, 0.5, 0.25, 0.25))

    assert fake.shapes == [(120, 160, 3)]
    assert len(hands) == 1
    hand = hands[0]
    assert hand.handedness == "Left"
    assert hand.score == 0.8
    assert hand.wrist.x == pytest.approx(240 / 640)
    assert hand.wrist.y == pytest.approx(300 / 480)
    assert hand.wrist.visibility == 1.0
    assert detector.frame_count == 1


def test_detect_full_frame():
    detector = HandDetector()
    fake = FakeHands([(0.2, 0.3)] * 21)
    detector._hands = fake
    detector._is_initialized = True

    hands = detector.detect(np.zeros((48, 64, 3), dtype=np.uint8))
    assert fake.shapes == [(48, 64, 3)]
    assert hands[0].wrist.x == pytest.approx(0.2)

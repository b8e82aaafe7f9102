"""Shared fixtures: manual clock, synthetic hands and textured images."""

import cv2
import numpy as np
import pytest

from adaptive_handtracker.config import NUM_LANDMARKS
from adaptive_handtracker.hand_detector import HandLandmarks, Landmark


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def make_hand(cx: float = 0.5, cy: float = 0.5, spread: float = 0.05,
              handedness: str = "Right", score: float = 0.9) -> HandLandmarks:
    """21 landmarks placed symmetrically around (cx, cy) so the centroid is exact."""
    offsets = [(0.0, 0.0)]
    for i in range(NUM_LANDMARKS - 1):
        angle = 2 * np.pi * (i // 2) / 10
        sign = 1 if i % 2 == 0 else -1
        offsets.append((sign * spread * np.cos(angle), sign * spread * np.sin(angle)))
    landmarks = [
        Landmark(x=cx + dx, y=cy + dy, z=-0.01 * i)
        for i, (dx, dy) in enumerate(offsets)
    ]
    return HandLandmarks(landmarks=tuple(landmarks), handedness=handedness, score=score)


def textured_image(width: int = 640, height: int = 480, seed: int = 7) -> np.ndarray:
    """BGR image of random filled rectangles and circles, rich in ORB corners."""
    rng = np.random.default_rng(seed)
    image = np.full((height, width, 3), 127, dtype=np.uint8)
    for _ in range(60):
        x1, y1 = int(rng.integers(0, width - 20)), int(rng.integers(0, height - 20))
        x2 = min(width - 1, x1 + int(rng.integers(10, 80)))
        y2 = min(height - 1, y1 + int(rng.integers(10, 80)))
        color = tuple(int(c) for c in rng.integers(0, 256, size=3))
        cv2.rectangle(image, (x1, y1), (x2, y2), color, -1)
    for _ in range(30):
        center = (int(rng.integers(0, width)), int(rng.integers(0, height)))
        color = tuple(int(c) for c in rng.integers(0, 256, size=3))
        cv2.circle(image, center, int(rng.integers(5, 25)), color, -1)
    return image


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def hand():
    return make_hand()


@pytest.fixture
def scene():
    return textured_image()

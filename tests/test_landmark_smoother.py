import pytest

from adaptive_handtracker.config import FilterConfig
from adaptive_handtracker.landmark_smoother import LandmarkFilterBank, LandmarkSmoother

from conftest import make_hand


def test_first_frame_passes_through(hand):
    smoother = LandmarkSmoother()
    out = smoother.smooth(hand, t=0.0)
    assert out.landmarks == hand.landmarks
    assert out.handedness == hand.handedness
    assert out.score == hand.score
    assert smoother.smoothed_count == 1


def test_jump_is_damped():
    smoother = LandmarkSmoother(FilterConfig(beta=0.0))
    smoother.smooth(make_hand(0.3, 0.3), t=0.0)
    out = smoother.smooth(make_hand(0.6, 0.3), t=1 / 30)
    cx, cy = out.centroid()
    assert 0.3 < cx < 0.6
    assert cy == pytest.approx(0.3)


def test_visibility_is_preserved(hand):
    smoother = LandmarkSmoother()
    smoother.smooth(hand, t=0.0)
    out = smoother.smooth(hand, t=0.1)
    assert all(lm.visibility == 1.0 for lm in out.landmarks)


def test_reset_restarts_filters():
    smoother = LandmarkSmoother()
    smoother.smooth(make_hand(0.2, 0.2), t=0.0)
    smoother.reset()
    target = make_hand(0.8, 0.8)
    assert smoother.smooth(target, t=0.1).landmarks == target.landmarks


def test_bank_creates_one_smoother_per_slot():
    bank = LandmarkFilterBank()
    bank.smooth(0, make_hand(0.2, 0.5), t=0.0)
    bank.smooth(1, make_hand(0.8, 0.5), t=0.0)
    assert bank.active_slots == [0, 1]

    # Each slot filters against its own history
    out0 = bank.smooth(0, make_hand(0.2, 0.5), t=0.1)
    out1 = bank.smooth(1, make_hand(0.8, 0.5), t=0.1)
    assert out0.centroid()[0] == pytest.approx(0.2)
    assert out1.centroid()[0] == pytest.approx(0.8)


def test_bank_disabled_returns_input(hand):
    bank = LandmarkFilterBank(FilterConfig(enabled=False))
    assert bank.smooth(0, hand, t=0.0) is hand
    assert bank.active_slots == []


def test_release_stale_drops_absent_slots():
    bank = LandmarkFilterBank(FilterConfig(release_timeout_s=0.5))
    bank.smooth(0, make_hand(), t=0.0)
    bank.smooth(1, make_hand(), t=0.4)

    assert bank.release_stale(0.45) == []
    assert bank.release_stale(0.6) == [0]
    assert bank.active_slots == [1]


def test_released_slot_starts_fresh():
    bank = LandmarkFilterBank()
    bank.smooth(0, make_hand(0.2, 0.2), t=0.0)
    bank.release(0)
    target = make_hand(0.7, 0.7)
    assert bank.smooth(0, target, t=0.05).landmarks == target.landmarks


def test_update_options_reaches_live_and_future_filters():
    bank = LandmarkFilterBank()
    bank.smooth(0, make_hand(), t=0.0)
    bank.update_options(min_cutoff=3.0, beta=0.1)

    assert bank.config.min_cutoff == 3.0
    live = bank._smoothers[0]._filters[0].filters[0]
    assert live.min_cutoff == 3.0
    assert live.beta == 0.1

    bank.smooth(1, make_hand(), t=0.0)
    fresh = bank._smoothers[1]._filters[0].filters[0]
    assert fresh.min_cutoff == 3.0

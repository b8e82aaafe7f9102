import math

import pytest

from adaptive_handtracker.one_euro_filter import OneEuroFilter, OneEuroFilterArray


def test_first_sample_passes_through():
    f = OneEuroFilter()
    assert f.filter(0.42, t=1.0) == 0.42


def test_constant_signal_is_unchanged():
    f = OneEuroFilter()
    for i in range(10):
        assert f.filter(0.5, t=i / 30) == pytest.approx(0.5)


def test_step_is_smoothed_towards_target():
    f = OneEuroFilter(min_cutoff=1.0, beta=0.0)
    f.filter(0.0, t=0.0)
    out = f.filter(1.0, t=1 / 30)

    te = 1 / 30
    tau = 1.0 / (2 * math.pi * 1.0)
    alpha = 1.0 / (1.0 + tau / te)
    assert out == pytest.approx(alpha)
    assert 0.0 < out < 1.0


def test_converges_on_held_step():
    f = OneEuroFilter()
    f.filter(0.0, t=0.0)
    out = 0.0
    for i in range(1, 200):
        out = f.filter(1.0, t=i / 30)
    assert out == pytest.approx(1.0, abs=1e-3)


def test_higher_beta_reduces_lag():
    slow = OneEuroFilter(min_cutoff=1.0, beta=0.0)
    fast = OneEuroFilter(min_cutoff=1.0, beta=10.0)
    for i in range(15):
        t = i / 30
        slow_out = slow.filter(t * 2.0, t)
        fast_out = fast.filter(t * 2.0, t)
    target = (14 / 30) * 2.0
    assert abs(target - fast_out) < abs(target - slow_out)


def test_non_increasing_timestamp_without_history_returns_previous():
    f = OneEuroFilter()
    f.filter(0.3, t=1.0)
    assert f.filter(0.9, t=1.0) == 0.3
    assert f.filter(0.9, t=0.5) == 0.3


def test_non_increasing_timestamp_reuses_last_interval():
    a = OneEuroFilter()
    a.filter(0.0, t=0.0)
    a.filter(0.1, t=0.1)
    repeated = a.filter(0.2, t=0.1)

    b = OneEuroFilter()
    b.filter(0.0, t=0.0)
    b.filter(0.1, t=0.1)
    forward = b.filter(0.2, t=0.2)

    assert repeated == pytest.approx(forward)


def test_reset_forgets_state():
    f = OneEuroFilter()
    f.filter(0.0, t=0.0)
    f.filter(1.0, t=0.1)
    f.reset()
    assert f.filter(0.7, t=0.2) == 0.7


def test_update_options_keeps_state():
    f = OneEuroFilter()
    f.filter(0.2, t=0.0)
    f.update_options(min_cutoff=2.0, beta=0.5)
    state = f.get_state()
    assert state["minCutoff"] == 2.0
    assert state["beta"] == 0.5
    assert state["dCutoff"] == 1.0
    assert state["previousFilteredValue"] == 0.2
    assert state["previousTimestamp"] == 0.0


def test_array_filters_channels_independently():
    arr = OneEuroFilterArray(dimensions=3)
    assert arr.filter([0.1, 0.2, 0.3], t=0.0) == [0.1, 0.2, 0.3]
    out = arr.filter([0.1, 0.5, 0.3], t=1 / 30)
    assert out[0] == pytest.approx(0.1)
    assert 0.2 < out[1] < 0.5
    assert out[2] == pytest.approx(0.3)


def test_array_rejects_wrong_length():
    arr = OneEuroFilterArray(dimensions=3)
    with pytest.raises(ValueError):
        arr.filter([0.1, 0.2], t=0.0)


def test_array_requires_a_channel():
    with pytest.raises(ValueError):
        OneEuroFilterArray(dimensions=0)

"""
One Euro Filter for landmark smoothing.
Used per landmark coordinate by the landmark smoother. Timestamps are seconds.
"""

import math
import time
from typing import Optional, Sequence

from .config import FILTER_MIN_CUTOFF, FILTER_BETA, FILTER_D_CUTOFF


class OneEuroFilter:
    """
    One Euro Filter - adaptive low-pass filter for noisy input.

    Adapts smoothing based on signal speed:
    - Slow movement = heavy smoothing (reduces jitter)
    - Fast movement = light smoothing (reduces latency)

    Reference: Casiez et al. "1€ Filter: A Simple Speed-based Low-pass
    Filter for Noisy Input in Interactive Systems" (CHI 2012)
    """

    def __init__(
        self,
        min_cutoff: float = FILTER_MIN_CUTOFF,
        beta: float = FILTER_BETA,
        d_cutoff: float = FILTER_D_CUTOFF
    ):
        """
        Initialize One Euro Filter.

        Args:
            min_cutoff: Minimum cutoff frequency (Hz). Lower = smoother but more lag.
                        Good starting value: 1.0
            beta: Speed coefficient. Higher = more responsive to fast movements.
                  Good starting value: 0.007
            d_cutoff: Derivative cutoff frequency for velocity smoothing.
        """
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.d_cutoff = d_cutoff

        self._x_raw_prev: Optional[float] = None
        self._x_prev: Optional[float] = None
        self._dx_prev: float = 0.0
        self._t_prev: Optional[float] = None
        self._te_prev: Optional[float] = None

    @staticmethod
    def _smoothing_factor(te: float, cutoff: float) -> float:
        """Calculate smoothing factor alpha from cutoff frequency."""
        tau = 1.0 / (2.0 * math.pi * cutoff)
        return 1.0 / (1.0 + tau / te)

    def filter(self, x: float, t: Optional[float] = None) -> float:
        """
        Apply One Euro Filter to a single value.

        Args:
            x: Input value.
            t: Timestamp in seconds. If None, uses current time.

        Returns:
            Filtered value.
        """
        if t is None:
            t = time.perf_counter()

        if self._x_prev is None:
            self._x_raw_prev = x
            self._x_prev = x
            self._t_prev = t
            return x

        te = t - self._t_prev
        if te <= 0:
            # Non-monotonic timestamp: reuse the last good interval
            if self._te_prev is None:
                self._t_prev = t
                return self._x_prev
            te = self._te_prev

        # Estimate velocity against the previous filtered value
        dx = (x - self._x_prev) / te

        # Smooth the derivative
        a_d = self._smoothing_factor(te, self.d_cutoff)
        dx_smooth = a_d * dx + (1.0 - a_d) * self._dx_prev

        # Adaptive cutoff based on velocity
        cutoff = self.min_cutoff + self.beta * abs(dx_smooth)

        # Filter the signal
        a = self._smoothing_factor(te, cutoff)
        x_filtered = a * x + (1.0 - a) * self._x_prev

        # Update state
        self._x_raw_prev = x
        self._x_prev = x_filtered
        self._dx_prev = dx_smooth
        self._t_prev = t
        self._te_prev = te

        return x_filtered

    def update_options(
        self,
        min_cutoff: Optional[float] = None,
        beta: Optional[float] = None,
        d_cutoff: Optional[float] = None
    ) -> None:
        """Change tuning parameters without discarding filter state."""
        if min_cutoff is not None:
            self.min_cutoff = min_cutoff
        if beta is not None:
            self.beta = beta
        if d_cutoff is not None:
            self.d_cutoff = d_cutoff

    def get_state(self) -> dict:
        """Return the current options and channel state."""
        return {
            "minCutoff": self.min_cutoff,
            "beta": self.beta,
            "dCutoff": self.d_cutoff,
            "previousRawValue": self._x_raw_prev,
            "previousFilteredValue": self._x_prev,
            "previousFilteredDerivative": self._dx_prev,
            "previousTimestamp": self._t_prev,
        }

    def reset(self) -> None:
        """Reset filter state."""
        self._x_raw_prev = None
        self._x_prev = None
        self._dx_prev = 0.0
        self._t_prev = None
        self._te_prev = None


class OneEuroFilterArray:
    """Independent One Euro Filters for a fixed number of channels (e.g. x, y, z)."""

    def __init__(
        self,
        dimensions: int = 3,
        min_cutoff: float = FILTER_MIN_CUTOFF,
        beta: float = FILTER_BETA,
        d_cutoff: float = FILTER_D_CUTOFF
    ):
        if dimensions < 1:
            raise ValueError(f"dimensions must be at least 1, got {dimensions}")
        self.dimensions = dimensions
        self.filters = [
            OneEuroFilter(min_cutoff, beta, d_cutoff) for _ in range(dimensions)
        ]

    def filter(self, values: Sequence[float], t: Optional[float] = None) -> list[float]:
        """
        Filter one sample per channel.

        Args:
            values: One value per channel.
            t: Shared timestamp in seconds. If None, uses current time.

        Returns:
            Filtered values in channel order.

        Raises:
            ValueError: If the number of values doesn't match the dimensions.
        """
        if len(values) != self.dimensions:
            raise ValueError(
                f"Expected {self.dimensions} values, got {len(values)}"
            )
        if t is None:
            t = time.perf_counter()
        return [f.filter(v, t) for f, v in zip(self.filters, values)]

    def update_options(
        self,
        min_cutoff: Optional[float] = None,
        beta: Optional[float] = None,
        d_cutoff: Optional[float] = None
    ) -> None:
        for f in self.filters:
            f.update_options(min_cutoff, beta, d_cutoff)

    def reset(self) -> None:
        for f in self.filters:
            f.reset()

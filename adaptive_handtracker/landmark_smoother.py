"""
Landmark smoother for temporal filtering of hand landmarks.

Applies a One Euro Filter to every coordinate of all 21 hand landmarks to
reduce jitter without introducing noticeable lag. A filter bank keeps one
smoother per tracked hand slot and tears it down when the slot goes away.
"""

import time
from typing import Optional

from .config import FilterConfig, NUM_LANDMARKS
from .hand_detector import HandLandmarks, Landmark
from .logger import get_logger
from .one_euro_filter import OneEuroFilterArray

logger = get_logger("LandmarkSmoother")


class LandmarkSmoother:
    """
    Smooths one hand's landmarks temporally using One Euro Filters.

    Maintains 21 filter arrays of 3 channels (x, y, z) each.

    Attributes:
        config: Smoother configuration.
    """

    def __init__(self, config: Optional[FilterConfig] = None):
        """
        Initialize landmark smoother.

        Args:
            config: Filter configuration. Uses defaults if None.
        """
        self.config = config or FilterConfig()

        self._filters: list[OneEuroFilterArray] = []
        self._smoothed_count: int = 0
        self._initialize_filters()

    def _initialize_filters(self) -> None:
        """Create One Euro Filter arrays for all landmarks."""
        self._filters = [
            OneEuroFilterArray(
                dimensions=3,
                min_cutoff=self.config.min_cutoff,
                beta=self.config.beta,
                d_cutoff=self.config.d_cutoff
            )
            for _ in range(NUM_LANDMARKS)
        ]

    def smooth(self, landmarks: HandLandmarks, t: Optional[float] = None) -> HandLandmarks:
        """
        Apply temporal smoothing to hand landmarks.

        Args:
            landmarks: Raw detected landmarks.
            t: Sample timestamp in seconds. If None, uses current time.

        Returns:
            HandLandmarks with smoothed coordinates.
        """
        if t is None:
            t = time.perf_counter()

        smoothed_landmarks = []
        for filters, lm in zip(self._filters, landmarks.landmarks):
            x, y, z = filters.filter((lm.x, lm.y, lm.z), t)
            smoothed_landmarks.append(Landmark(x=x, y=y, z=z, visibility=lm.visibility))

        self._smoothed_count += 1

        return HandLandmarks(
            landmarks=tuple(smoothed_landmarks),
            handedness=landmarks.handedness,
            score=landmarks.score
        )

    def update_options(
        self,
        min_cutoff: Optional[float] = None,
        beta: Optional[float] = None,
        d_cutoff: Optional[float] = None
    ) -> None:
        """Retune live filters in place."""
        for filters in self._filters:
            filters.update_options(min_cutoff, beta, d_cutoff)

    def reset(self) -> None:
        """Reset all filter states (call when tracking is lost)."""
        self._initialize_filters()
        logger.debug("LandmarkSmoother reset")

    @property
    def smoothed_count(self) -> int:
        """Get total number of frames smoothed."""
        return self._smoothed_count


class LandmarkFilterBank:
    """
    One LandmarkSmoother per hand slot.

    Smoothers are created on the first sample for a slot and released
    explicitly or once the slot has been absent longer than the release
    timeout. Only ever touched from the orchestrator thread.
    """

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config or FilterConfig()
        self._smoothers: dict[int, LandmarkSmoother] = {}
        self._last_seen: dict[int, float] = {}

        if self.config.enabled:
            logger.info(
                f"LandmarkFilterBank initialized (min_cutoff={self.config.min_cutoff}, "
                f"beta={self.config.beta}, d_cutoff={self.config.d_cutoff})"
            )

    @property
    def enabled(self) -> bool:
        """Check if smoothing is enabled."""
        return self.config.enabled

    @property
    def active_slots(self) -> list[int]:
        """Slots that currently own filter state, in ascending order."""
        return sorted(self._smoothers)

    def smooth(self, slot: int, hand: HandLandmarks, t: Optional[float] = None) -> HandLandmarks:
        """
        Smooth one hand's landmarks using the filters of its slot.

        Args:
            slot: Hand slot index.
            hand: Raw landmarks for that slot.
            t: Sample timestamp in seconds. If None, uses current time.

        Returns:
            Smoothed landmarks, or the input unchanged when smoothing is disabled.
        """
        if t is None:
            t = time.perf_counter()

        self._last_seen[slot] = t
        if not self.config.enabled:
            return hand

        smoother = self._smoothers.get(slot)
        if smoother is None:
            smoother = LandmarkSmoother(self.config)
            self._smoothers[slot] = smoother
            logger.debug(f"Created filters for hand slot {slot}")

        return smoother.smooth(hand, t)

    def release(self, slot: int) -> None:
        """Discard the filters of one slot."""
        self._last_seen.pop(slot, None)
        if self._smoothers.pop(slot, None) is not None:
            logger.debug(f"Released filters for hand slot {slot}")

    def release_stale(self, t: float, timeout: Optional[float] = None) -> list[int]:
        """
        Release every slot not seen for longer than the timeout.

        Args:
            t: Current time in seconds.
            timeout: Absence limit in seconds (defaults to config.release_timeout_s).

        Returns:
            The released slots.
        """
        if timeout is None:
            timeout = self.config.release_timeout_s

        stale = [slot for slot, seen in self._last_seen.items() if t - seen > timeout]
        for slot in stale:
            self.release(slot)
        return stale

    def update_options(
        self,
        min_cutoff: Optional[float] = None,
        beta: Optional[float] = None,
        d_cutoff: Optional[float] = None
    ) -> None:
        """Apply new tuning to live filters and to filters created later."""
        if min_cutoff is not None:
            self.config.min_cutoff = min_cutoff
        if beta is not None:
            self.config.beta = beta
        if d_cutoff is not None:
            self.config.d_cutoff = d_cutoff
        for smoother in self._smoothers.values():
            smoother.update_options(min_cutoff, beta, d_cutoff)

    def reset(self) -> None:
        """Release every slot."""
        self._smoothers.clear()
        self._last_seen.clear()

"""
Per-stage timing of the processing pipeline.

Stage durations are accumulated for the frame being processed and frozen
into an immutable PerformanceSample when the frame ends. Consumers only
ever see samples, never the live accumulator.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from .config import PERF_WINDOW_SIZE
from .logger import get_logger

logger = get_logger("PerformanceTracker")


# Stage names
STAGE_FRAME_CAPTURE = "frameCapture"
STAGE_WORKER_COMMUNICATION = "workerCommunication"
STAGE_HAND_DETECTION = "handDetection"
STAGE_REGION_TRACKING = "regionTracking"
STAGE_FILTERING = "filtering"


@dataclass(frozen=True)
class PerformanceSample:
    """
    Immutable snapshot of one processed frame.

    Attributes:
        stages: Read-only mapping of stage name to duration in ms.
        total_ms: Sum of all stage durations.
        estimated_fps: Processed frames per second over the rolling window.
        skipped_frames: Ticks skipped since the previous processed frame.
        skip_level: Adaptive skip counter when the frame ended.
        timestamp: Frame end time in seconds.
    """
    stages: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    total_ms: float = 0.0
    estimated_fps: float = 0.0
    skipped_frames: int = 0
    skip_level: int = 0
    timestamp: float = 0.0

    def to_dict(self) -> dict:
        return {
            "stages": dict(self.stages),
            "totalMs": self.total_ms,
            "fps": self.estimated_fps,
            "skippedFrames": self.skipped_frames,
            "frameSkipLevel": self.skip_level,
            "timestamp": self.timestamp,
        }


class PerformanceTracker:
    """Accumulates stage timings and keeps a rolling window of samples."""

    def __init__(self, window_size: int = PERF_WINDOW_SIZE):
        self.window_size = window_size
        self._samples: deque[PerformanceSample] = deque(maxlen=window_size)
        self._active: dict[str, float] = {}
        self._stages: dict[str, float] = {}
        self._skipped_since_last = 0
        self._total_skipped = 0
        self._skip_level = 0

    def start_timing(self, stage: str, now: Optional[float] = None) -> None:
        """Mark the start of a stage."""
        self._active[stage] = time.perf_counter() if now is None else now

    def end_timing(self, stage: str, now: Optional[float] = None) -> Optional[float]:
        """
        Mark the end of a stage and record its duration.

        Returns:
            Duration in ms, or None if the stage was never started.
        """
        start = self._active.pop(stage, None)
        if start is None:
            logger.debug(f"end_timing('{stage}') without start_timing")
            return None
        end = time.perf_counter() if now is None else now
        duration_ms = max(0.0, (end - start) * 1000.0)
        self.record(stage, duration_ms)
        return duration_ms

    def record(self, stage: str, duration_ms: float) -> None:
        """Add a measured duration to a stage of the current frame."""
        self._stages[stage] = self._stages.get(stage, 0.0) + duration_ms

    def record_skip(self, level: int) -> None:
        """Count a skipped tick and remember the current skip level."""
        self._skipped_since_last += 1
        self._total_skipped += 1
        self._skip_level = level

    def set_skip_level(self, level: int) -> None:
        self._skip_level = level

    def end_frame(self, now: Optional[float] = None) -> PerformanceSample:
        """
        Freeze the current frame's timings into a sample.

        Returns:
            The new sample (also appended to the rolling window).
        """
        if now is None:
            now = time.perf_counter()

        stages = dict(self._stages)
        sample = PerformanceSample(
            stages=MappingProxyType(stages),
            total_ms=sum(stages.values()),
            estimated_fps=self._estimate_fps(now),
            skipped_frames=self._skipped_since_last,
            skip_level=self._skip_level,
            timestamp=now
        )

        self._samples.append(sample)
        self._stages.clear()
        self._active.clear()
        self._skipped_since_last = 0
        return sample

    def _estimate_fps(self, now: float) -> float:
        if not self._samples:
            return 0.0
        oldest = self._samples[0].timestamp
        span = now - oldest
        if span <= 0:
            return 0.0
        return len(self._samples) / span

    @property
    def latest(self) -> Optional[PerformanceSample]:
        return self._samples[-1] if self._samples else None

    @property
    def samples(self) -> tuple[PerformanceSample, ...]:
        return tuple(self._samples)

    @property
    def total_skipped(self) -> int:
        return self._total_skipped

    @property
    def skip_level(self) -> int:
        return self._skip_level

    def average(self) -> dict[str, float]:
        """Mean duration per stage over the rolling window."""
        totals: dict[str, float] = {}
        counts: dict[str, int] = {}
        for sample in self._samples:
            for stage, duration in sample.stages.items():
                totals[stage] = totals.get(stage, 0.0) + duration
                counts[stage] = counts.get(stage, 0) + 1
        return {stage: totals[stage] / counts[stage] for stage in totals}

    def reset(self) -> None:
        self._samples.clear()
        self._active.clear()
        self._stages.clear()
        self._skipped_since_last = 0
        self._total_skipped = 0
        self._skip_level = 0

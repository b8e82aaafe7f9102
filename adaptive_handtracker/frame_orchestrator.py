"""
Frame orchestrator: the adaptive real-time pipeline driver.

Ticks at display-refresh cadence, decides per tick whether to spend detector
time (adaptive frame skipping), hands the frame to the detector and vision
workers, and merges their results as they come back. Filter bank and ROI
predictor state is only ever touched from the ticking thread: worker results
arrive through the inbox queue and are drained at the start of each tick.

Results are merged "most recent wins": a result for a frame older than the
newest one already merged is dropped rather than reordered.
"""

import queue
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from .config import (
    FilterConfig,
    ROIConfig,
    SchedulerConfig,
    SKIP_AHEAD_RATIO,
    SKIP_BEHIND_RATIO,
    ERROR_LOG_INTERVAL_S,
)
from .event_bus import EventBus, EventType
from .hand_detector import HandLandmarks
from .landmark_smoother import LandmarkFilterBank
from .logger import get_logger
from .performance_tracker import (
    PerformanceTracker,
    STAGE_FRAME_CAPTURE,
    STAGE_WORKER_COMMUNICATION,
    STAGE_HAND_DETECTION,
    STAGE_REGION_TRACKING,
    STAGE_FILTERING,
)
from .region_tracker import TrackingResult
from .roi_predictor import ROI, ROIPredictor
from .workers import (
    DETECTOR_WORKER,
    VISION_WORKER,
    ClearReference,
    DetectJob,
    DetectionResult,
    ReferenceUpdated,
    SaveReference,
    TrackJob,
    TrackingUpdate,
    WorkerStatus,
    WorkerStoppedError,
)

logger = get_logger("FrameOrchestrator")

FrameSource = Callable[[], Optional[np.ndarray]]


class PipelineState(Enum):
    """Scheduler state as of the last tick."""
    STOPPED = "stopped"
    ARMED = "armed"  # Started, no tick yet
    IDLE = "idle"  # Nothing in flight
    SKIPPING = "skipping"
    DISPATCHING = "dispatching"
    AWAITING = "awaiting"  # Frame in flight


@dataclass(frozen=True)
class LandmarkEvent:
    """Filtered landmarks of one hand slot (hand is None when it was lost)."""
    slot: int
    hand: Optional[HandLandmarks]
    timestamp: float


@dataclass(frozen=True)
class ROIEvent:
    slot: int
    roi: Optional[ROI]
    requires_full_frame: bool
    timestamp: float


@dataclass(frozen=True)
class RegionEvent:
    region_id: str
    result: TrackingResult
    timestamp: float


@dataclass(frozen=True)
class PipelineStatus:
    detector_ready: bool
    vision_ready: bool
    detector_error: Optional[str] = None
    vision_error: Optional[str] = None


class FrameOrchestrator:
    """
    Drives capture, adaptive skipping, dispatch and result merging.

    Attributes:
        config: Scheduler configuration.
        bus: Event bus results are published on.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        detector_worker: Any,
        vision_worker: Optional[Any] = None,
        config: Optional[SchedulerConfig] = None,
        filter_config: Optional[FilterConfig] = None,
        roi_config: Optional[ROIConfig] = None,
        bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.perf_counter
    ):
        """
        Initialize orchestrator.

        Args:
            frame_source: Returns the next BGR frame, or None if none is available.
            detector_worker: Worker accepting DetectJob messages.
            vision_worker: Optional worker accepting TrackJob/SaveReference/ClearReference.
            config: Scheduler configuration. Uses defaults if None.
            filter_config: Landmark smoothing configuration.
            roi_config: ROI predictor configuration, copied per hand slot.
            bus: Event bus to publish on. A private one is created if None.
            clock: Monotonic clock in seconds.
        """
        self.config = config or SchedulerConfig()
        self.config.validate()
        self.roi_config = roi_config or ROIConfig()
        self.roi_config.validate()
        self.bus = bus or EventBus()

        self._frame_source = frame_source
        self._detector = detector_worker
        self._vision = vision_worker
        self._clock = clock

        self._inbox: queue.Queue = queue.Queue()
        self._stop_event = threading.Event()

        self._detector.bind(self.post)
        if self._vision is not None:
            self._vision.bind(self.post)

        self._filter_bank = LandmarkFilterBank(filter_config or FilterConfig())
        self._predictors: dict[int, ROIPredictor] = {}
        self._slot_last_seen: dict[int, float] = {}
        self._visible_slots: set[int] = set()
        self._regions: set[str] = set()
        self._performance = PerformanceTracker()

        self._state = PipelineState.STOPPED
        self._generation = 0
        self._ready = {DETECTOR_WORKER: False, VISION_WORKER: False}
        self._worker_errors: dict[str, Optional[str]] = {DETECTOR_WORKER: None, VISION_WORKER: None}

        self._reset_scheduler()

    def _reset_scheduler(self) -> None:
        self._skip = 0
        self._last_processed_time: Optional[float] = None
        self._full_frame_requested = False
        self._in_flight = False
        self._pending: set[str] = set()
        self._pending_frame_id = 0
        self._frame_id = 0
        self._newest_detection = 0
        self._newest_tracking = 0
        self._tick_count = 0
        self._dispatch_count = 0
        self._skipped_count = 0
        self._busy_count = 0
        self._last_error_log: Optional[float] = None
        self._suppressed_errors = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def post(self, message: Any) -> None:
        """Deliver a worker message. Safe to call from any thread."""
        self._inbox.put(message)

    def start(self) -> None:
        """Arm the pipeline and start the workers."""
        if self._state is not PipelineState.STOPPED:
            logger.warning("Orchestrator already running")
            return

        self._generation += 1
        self._reset_scheduler()
        self._stop_event.clear()
        self._ready = {DETECTOR_WORKER: False, VISION_WORKER: False}

        self._detector.start(self._generation)
        if self._vision is not None:
            self._vision.start(self._generation)

        self._state = PipelineState.ARMED
        logger.info(
            f"Pipeline started (target {self.config.target_fps:.0f} FPS, "
            f"tick {self.config.tick_rate_hz:.0f} Hz)"
        )

    def request_stop(self) -> None:
        """Ask run() to return after the current tick. Safe from signal handlers."""
        self._stop_event.set()

    def stop(self) -> None:
        """
        Stop the pipeline.

        Cancels the tick loop, stops both workers and silently drops any
        in-flight results.
        """
        self._stop_event.set()
        if self._state is PipelineState.STOPPED:
            return

        # Bump the generation first so late replies are recognized as stale
        self._generation += 1
        self._state = PipelineState.STOPPED

        self._detector.stop()
        if self._vision is not None:
            self._vision.stop()

        dropped = self._drain_discard()
        self._in_flight = False
        self._pending.clear()
        self._ready = {DETECTOR_WORKER: False, VISION_WORKER: False}

        # The vision worker's references die with it
        for region_id in self._regions:
            self.bus.discard(EventType.REGION_TRACKING, region_id)
        if self._regions:
            logger.info(f"Released {len(self._regions)} tracked regions")
        self._regions.clear()

        logger.info(
            f"Pipeline stopped after {self._tick_count} ticks "
            f"({self._dispatch_count} dispatched, {self._skipped_count} skipped, "
            f"{dropped} pending results dropped)"
        )

    def run(self, on_tick: Optional[Callable[[], None]] = None) -> None:
        """
        Tick at the configured rate until stop() or request_stop().

        Args:
            on_tick: Optional callback invoked after every tick (e.g. display).
        """
        if self._state is PipelineState.STOPPED:
            self.start()

        period = 1.0 / self.config.tick_rate_hz
        next_tick = time.perf_counter()

        try:
            while not self._stop_event.is_set():
                self.tick()
                if on_tick is not None:
                    on_tick()

                next_tick += period
                delay = next_tick - time.perf_counter()
                if delay > 0:
                    self._stop_event.wait(delay)
                else:
                    # Fell behind; don't try to catch up with a burst of ticks
                    next_tick = time.perf_counter()
        finally:
            self.stop()

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self, now: Optional[float] = None) -> bool:
        """
        Advance the scheduler by one step.

        Args:
            now: Tick time in seconds. If None, uses the clock.

        Returns:
            True if a frame was dispatched on this tick.
        """
        if self._state is PipelineState.STOPPED:
            return False

        if now is None:
            now = self._clock()
        self._tick_count += 1

        try:
            self._drain_inbox(now)
            return self._schedule(now)
        except Exception as e:
            self._in_flight = False
            self._pending.clear()
            self._state = PipelineState.IDLE
            self._log_tick_error(e, now)
            return False

    def _schedule(self, now: float) -> bool:
        if self._in_flight:
            self._busy_count += 1
            self._state = PipelineState.SKIPPING
            return False

        if self._should_skip(now):
            self._skipped_count += 1
            self._performance.record_skip(self._skip)
            self._state = PipelineState.SKIPPING
            return False

        return self._dispatch(now)

    def _should_skip(self, now: float) -> bool:
        """Adaptive skip counter update and decision."""
        cfg = self.config
        if not cfg.adaptive_skip or self._last_processed_time is None:
            return False

        interval = cfg.target_interval_ms
        elapsed = (now - self._last_processed_time) * 1000.0

        if elapsed < SKIP_AHEAD_RATIO * interval:
            self._skip = max(0, self._skip - 1)
        elif elapsed > SKIP_BEHIND_RATIO * interval:
            self._skip = min(cfg.max_skip_level, self._skip + 1)

        if self._skip == 0:
            return False
        if self._full_frame_requested:
            logger.debug(f"Full frame requested, overriding skip level {self._skip}")
            return False
        if elapsed > cfg.max_stall_ms:
            logger.debug(f"No frame processed for {elapsed:.0f}ms, overriding skip level {self._skip}")
            return False
        return True

    def _dispatch(self, now: float) -> bool:
        self._last_processed_time = now
        self._in_flight = True
        self._state = PipelineState.DISPATCHING
        self._performance.set_skip_level(self._skip)

        targets = []
        if self._ready[DETECTOR_WORKER]:
            targets.append(DETECTOR_WORKER)
        if self._vision is not None and self._ready[VISION_WORKER] and self._regions:
            targets.append(VISION_WORKER)

        if not targets:
            self._in_flight = False
            self._state = PipelineState.IDLE
            return False

        self._performance.start_timing(STAGE_FRAME_CAPTURE, self._clock())
        frame = self._frame_source()
        self._performance.end_timing(STAGE_FRAME_CAPTURE, self._clock())

        if frame is None:
            self._in_flight = False
            self._state = PipelineState.IDLE
            return False

        # Workers may only read the frame
        frame.flags.writeable = False
        self._frame_id += 1
        frame_id = self._frame_id

        self._performance.start_timing(STAGE_WORKER_COMMUNICATION, self._clock())
        if DETECTOR_WORKER in targets:
            self._detector.submit(DetectJob(
                generation=self._generation,
                frame_id=frame_id,
                frame=frame,
                timestamp=now,
                roi=self._roi_hint()
            ))
            self._pending.add(DETECTOR_WORKER)
        if VISION_WORKER in targets:
            self._vision.submit(TrackJob(
                generation=self._generation,
                frame_id=frame_id,
                frame=frame,
                timestamp=now
            ))
            self._pending.add(VISION_WORKER)
        del frame
        self._performance.end_timing(STAGE_WORKER_COMMUNICATION, self._clock())

        self._pending_frame_id = frame_id
        self._full_frame_requested = False
        self._dispatch_count += 1
        self._state = PipelineState.AWAITING
        return True

    def _roi_hint(self) -> Optional[ROI]:
        """ROI to crop detection to, when exactly one hand is being followed."""
        if not self.config.use_roi_crop or self._full_frame_requested:
            return None
        if len(self._visible_slots) != 1:
            return None
        (slot,) = self._visible_slots
        predictor = self._predictors.get(slot)
        return predictor.roi if predictor is not None else None

    def _log_tick_error(self, error: Exception, now: float) -> None:
        """Log a tick failure, at most once per ERROR_LOG_INTERVAL_S."""
        if self._last_error_log is not None and now - self._last_error_log < ERROR_LOG_INTERVAL_S:
            self._suppressed_errors += 1
            return

        suffix = f" ({self._suppressed_errors} similar errors suppressed)" if self._suppressed_errors else ""
        message = f"Frame processing error: {error}{suffix}"
        logger.error(message, exc_info=not isinstance(error, WorkerStoppedError))
        self.bus.publish(EventType.LOG, {"level": "error", "message": message, "timestamp": now})
        self._last_error_log = now
        self._suppressed_errors = 0

    # =========================================================================
    # Result merging
    # =========================================================================

    def _drain_discard(self) -> int:
        dropped = 0
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                return dropped
            dropped += 1

    def _drain_inbox(self, now: float) -> None:
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                return
            if getattr(message, "generation", self._generation) != self._generation:
                continue
            self._handle_message(message, now)

    def _handle_message(self, message: Any, now: float) -> None:
        if isinstance(message, DetectionResult):
            self._merge_detection(message, now)
            self._complete(DETECTOR_WORKER, message.frame_id, now)
        elif isinstance(message, TrackingUpdate):
            self._merge_tracking(message, now)
            self._complete(VISION_WORKER, message.frame_id, now)
        elif isinstance(message, WorkerStatus):
            self._on_worker_status(message)
        elif isinstance(message, ReferenceUpdated):
            self._on_reference_updated(message)
        else:
            logger.warning(f"Unexpected message: {type(message).__name__}")

    def _complete(self, worker: str, frame_id: int, now: float) -> None:
        if not self._in_flight or frame_id != self._pending_frame_id:
            return
        self._pending.discard(worker)
        if self._pending:
            return

        self._in_flight = False
        self._state = PipelineState.IDLE
        sample = self._performance.end_frame(now)
        self.bus.publish(EventType.PERFORMANCE, sample)

    def _merge_detection(self, result: DetectionResult, now: float) -> None:
        if result.error is not None:
            self._log_tick_error(RuntimeError(f"hand detection failed: {result.error}"), now)
            return
        if result.frame_id < self._newest_detection:
            logger.debug(f"Dropping stale detection for frame {result.frame_id}")
            return
        self._newest_detection = result.frame_id
        if result.frame_id == self._pending_frame_id:
            self._performance.record(STAGE_HAND_DETECTION, result.duration_ms)

        start = self._clock()
        self._apply_hands(result.hands, result.timestamp)
        if result.frame_id == self._pending_frame_id:
            self._performance.record(STAGE_FILTERING, (self._clock() - start) * 1000.0)

    def _apply_hands(self, hands: tuple[HandLandmarks, ...], t: float) -> None:
        """Filter, predict and publish one detection cycle."""
        present = set()
        for slot, hand in enumerate(hands[:self.config.max_num_hands]):
            present.add(slot)
            self._slot_last_seen[slot] = t

            smoothed = self._filter_bank.smooth(slot, hand, t)

            predictor = self._predictors.get(slot)
            if predictor is None:
                predictor = ROIPredictor(replace(self.roi_config))
                self._predictors[slot] = predictor

            requires_full_frame = predictor.update(smoothed, t)
            if requires_full_frame:
                self._full_frame_requested = True

            self.bus.publish(EventType.LANDMARKS, LandmarkEvent(slot, smoothed, t), key=slot)
            self.bus.publish(EventType.ROI, ROIEvent(slot, predictor.roi, requires_full_frame, t), key=slot)

        for slot in sorted(set(self._predictors) - present):
            predictor = self._predictors[slot]
            if predictor.update(None, t):
                self._full_frame_requested = True

            if slot in self._visible_slots:
                self.bus.publish(EventType.LANDMARKS, LandmarkEvent(slot, None, t), key=slot)

            if t - self._slot_last_seen.get(slot, t) > self.config.hand_lost_reset_s:
                predictor.reset()
                del self._predictors[slot]
                self._slot_last_seen.pop(slot, None)
                self.bus.publish(EventType.ROI, ROIEvent(slot, None, True, t), key=slot)
                logger.debug(f"Hand slot {slot} lost, ROI state reset")

        self._filter_bank.release_stale(t)
        self._visible_slots = present

    def _merge_tracking(self, update: TrackingUpdate, now: float) -> None:
        if update.error is not None:
            self._log_tick_error(RuntimeError(f"region tracking failed: {update.error}"), now)
            return
        if update.frame_id < self._newest_tracking:
            logger.debug(f"Dropping stale tracking update for frame {update.frame_id}")
            return
        self._newest_tracking = update.frame_id
        if update.frame_id == self._pending_frame_id:
            self._performance.record(STAGE_REGION_TRACKING, update.duration_ms)

        for region_id, result in update.results.items():
            # A region removed while the job was in flight stays removed
            if region_id not in self._regions:
                continue
            self.bus.publish(
                EventType.REGION_TRACKING,
                RegionEvent(region_id, result, update.timestamp),
                key=region_id
            )

    def _on_worker_status(self, status: WorkerStatus) -> None:
        self._ready[status.worker] = status.ready
        self._worker_errors[status.worker] = status.error
        if status.ready:
            logger.info(f"{status.worker} engine ready")
        else:
            logger.warning(f"{status.worker} engine unavailable: {status.error}")
        self.bus.publish(EventType.PIPELINE_STATUS, self.status)

    def _on_reference_updated(self, update: ReferenceUpdated) -> None:
        if update.stored:
            self._regions.add(update.region_id)
            logger.info(f"Region {update.region_id} registered for tracking")
        else:
            self._regions.discard(update.region_id)
            self.bus.discard(EventType.REGION_TRACKING, update.region_id)
            if update.error:
                logger.warning(f"Region {update.region_id} not registered: {update.error}")

    # =========================================================================
    # Regions
    # =========================================================================

    def add_region(self, region_id: str, frame: np.ndarray, bbox: tuple[int, int, int, int]) -> None:
        """
        Register (or redraw) a region to track from a frame and pixel bbox.

        Raises:
            WorkerStoppedError: If there is no running vision worker.
        """
        if self._vision is None:
            raise WorkerStoppedError("No vision worker configured")
        snapshot = np.array(frame, copy=True)
        snapshot.flags.writeable = False
        self._vision.submit(SaveReference(self._generation, region_id, snapshot, tuple(bbox)))

    def remove_region(self, region_id: str) -> None:
        """Stop tracking a region and release its reference."""
        self._regions.discard(region_id)
        self.bus.discard(EventType.REGION_TRACKING, region_id)
        if self._vision is not None and self._vision.is_running:
            self._vision.submit(ClearReference(self._generation, region_id))

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def skip_level(self) -> int:
        return self._skip

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def dispatch_count(self) -> int:
        return self._dispatch_count

    @property
    def skipped_count(self) -> int:
        return self._skipped_count

    @property
    def busy_count(self) -> int:
        return self._busy_count

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def full_frame_requested(self) -> bool:
        return self._full_frame_requested

    @property
    def regions(self) -> frozenset[str]:
        return frozenset(self._regions)

    @property
    def performance(self) -> PerformanceTracker:
        return self._performance

    @property
    def filter_bank(self) -> LandmarkFilterBank:
        return self._filter_bank

    def roi_for_slot(self, slot: int) -> Optional[ROI]:
        predictor = self._predictors.get(slot)
        return predictor.roi if predictor is not None else None

    @property
    def status(self) -> PipelineStatus:
        return PipelineStatus(
            detector_ready=self._ready[DETECTOR_WORKER],
            vision_ready=self._ready[VISION_WORKER],
            detector_error=self._worker_errors[DETECTOR_WORKER],
            vision_error=self._worker_errors[VISION_WORKER]
        )

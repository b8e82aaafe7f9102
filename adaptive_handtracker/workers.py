"""
Background workers for the hand detector and the vision engine.

Each engine runs on its own daemon thread and talks to the orchestrator only
through messages: jobs go into the worker's inbox queue, results come back
through the post callback (normally the orchestrator's inbox). Frames cross
the boundary read-only and are never written by either side.
"""

import queue
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

import cv2
import numpy as np

from .config import RegionTrackerConfig, MAX_NUM_HANDS, WORKER_JOIN_TIMEOUT_S
from .hand_detector import HandDetector, HandLandmarks
from .logger import get_logger
from .region_tracker import RegionTracker, TrackingResult
from .roi_predictor import ROI

logger = get_logger("Workers")

DETECTOR_WORKER = "detector"
VISION_WORKER = "vision"


class WorkerStoppedError(Exception):
    """Raised when a job is submitted to a worker that isn't running."""
    pass


# =============================================================================
# Messages
# =============================================================================

@dataclass(frozen=True)
class DetectJob:
    """Run hand detection on one frame (BGR), optionally inside an ROI."""
    generation: int
    frame_id: int
    frame: np.ndarray
    timestamp: float
    roi: Optional[ROI] = None


@dataclass(frozen=True)
class TrackJob:
    """Track every registered region in one frame (BGR)."""
    generation: int
    frame_id: int
    frame: np.ndarray
    timestamp: float


@dataclass(frozen=True)
class SaveReference:
    """Extract and store a region's reference from a drawn bbox."""
    generation: int
    region_id: str
    frame: np.ndarray
    bbox: tuple[int, int, int, int]


@dataclass(frozen=True)
class ClearReference:
    generation: int
    region_id: str


@dataclass(frozen=True)
class DetectionResult:
    generation: int
    frame_id: int
    timestamp: float
    hands: tuple[HandLandmarks, ...] = ()
    duration_ms: float = 0.0
    error: Optional[str] = None


@dataclass(frozen=True)
class TrackingUpdate:
    generation: int
    frame_id: int
    timestamp: float
    results: Mapping[str, TrackingResult] = field(default_factory=lambda: MappingProxyType({}))
    duration_ms: float = 0.0
    error: Optional[str] = None


@dataclass(frozen=True)
class ReferenceUpdated:
    generation: int
    region_id: str
    stored: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class WorkerStatus:
    """Posted once per start, after the engine finished initializing."""
    generation: int
    worker: str
    ready: bool
    error: Optional[str] = None


_STOP = object()


# =============================================================================
# Workers
# =============================================================================

class EngineWorker:
    """
    Owns one engine on a dedicated daemon thread.

    Subclasses implement _initialize() (runs on the worker thread and returns
    the engine), _handle(engine, message) for jobs, and _shutdown(engine).
    Each start() gets its own engine, so a thread left over from an earlier
    start that is slow to exit never touches the current one. Every job
    produces exactly one reply, with the error field set if handling failed.
    """

    name = "engine"

    def __init__(self, post: Optional[Callable[[Any], None]] = None):
        """
        Initialize worker.

        Args:
            post: Thread-safe callback receiving result messages. Can also be
                  set later with bind().
        """
        self._post = post
        self._inbox: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._ready = False
        self._generation = 0
        self._run_token: Optional[object] = None

    def bind(self, post: Callable[[Any], None]) -> None:
        """Set the callback results are posted to."""
        self._post = post

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_ready(self) -> bool:
        return self._ready

    def start(self, generation: int = 0) -> None:
        """Start the worker thread. Engine initialization happens on it."""
        if self._running:
            logger.warning(f"{self.name} worker already running")
            return
        if self._post is None:
            raise RuntimeError(f"{self.name} worker has no result callback; call bind() first")

        self._generation = generation
        self._inbox = queue.Queue()
        self._ready = False
        self._running = True
        self._run_token = token = object()
        self._thread = threading.Thread(
            target=self._run,
            args=(token, generation, self._inbox),
            daemon=True,
            name=f"{self.name.capitalize()}Worker"
        )
        self._thread.start()
        logger.debug(f"{self.name} worker started (generation {generation})")

    def submit(self, message: Any) -> None:
        """
        Queue a job for the worker.

        Raises:
            WorkerStoppedError: If the worker isn't running.
        """
        if not self._running:
            raise WorkerStoppedError(f"{self.name} worker is not running")
        self._inbox.put(message)

    def stop(self, timeout: float = WORKER_JOIN_TIMEOUT_S) -> None:
        """Stop the worker thread and release its engine."""
        if not self._running:
            return

        self._running = False
        self._inbox.put(_STOP)

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"{self.name} worker did not stop within {timeout:.1f}s")

        self._thread = None
        self._run_token = None
        self._ready = False
        logger.debug(f"{self.name} worker stopped")

    def _is_current(self, token: object) -> bool:
        return self._run_token is token

    def _run(self, token: object, generation: int, inbox: queue.Queue) -> None:
        engine = None
        try:
            engine = self._initialize()
            if self._is_current(token):
                self._ready = True
            self._post(WorkerStatus(generation, self.name, ready=True))
        except Exception as e:
            logger.error(f"{self.name} engine failed to initialize: {e}")
            self._post(WorkerStatus(generation, self.name, ready=False, error=str(e)))

        try:
            while True:
                message = inbox.get()
                if message is _STOP:
                    break
                reply = self._dispatch(engine, message)
                if reply is not None:
                    self._post(reply)
        finally:
            if self._is_current(token):
                self._ready = False
            if engine is not None:
                try:
                    self._shutdown(engine)
                except Exception as e:
                    logger.warning(f"Error shutting down {self.name} engine: {e}")

    def _dispatch(self, engine: Any, message: Any) -> Any:
        if engine is None:
            return self._failed(message, f"{self.name} engine not ready")
        try:
            return self._handle(engine, message)
        except Exception as e:
            logger.debug(f"{self.name} job failed: {e}", exc_info=True)
            return self._failed(message, str(e))

    def _initialize(self) -> Any:
        raise NotImplementedError

    def _handle(self, engine: Any, message: Any) -> Any:
        raise NotImplementedError

    def _failed(self, message: Any, error: str) -> Any:
        raise NotImplementedError

    def _shutdown(self, engine: Any) -> None:
        pass


class DetectorWorker(EngineWorker):
    """Runs the MediaPipe hand detector."""

    name = DETECTOR_WORKER

    def __init__(
        self,
        post: Optional[Callable[[Any], None]] = None,
        max_num_hands: int = MAX_NUM_HANDS,
        detector_factory: Optional[Callable[[], HandDetector]] = None
    ):
        super().__init__(post)
        self.max_num_hands = max_num_hands
        self._detector_factory = detector_factory or (
            lambda: HandDetector(max_num_hands=self.max_num_hands)
        )

    def _initialize(self) -> HandDetector:
        detector = self._detector_factory()
        try:
            detector.initialize()
        except Exception:
            detector.close()
            raise
        return detector

    def _handle(self, detector: HandDetector, message: Any) -> Any:
        if not isinstance(message, DetectJob):
            logger.warning(f"Detector worker ignoring {type(message).__name__}")
            return None

        start = time.perf_counter()
        rgb = cv2.cvtColor(message.frame, cv2.COLOR_BGR2RGB)
        hands = detector.detect(rgb, message.roi)
        duration_ms = (time.perf_counter() - start) * 1000.0

        return DetectionResult(
            generation=message.generation,
            frame_id=message.frame_id,
            timestamp=message.timestamp,
            hands=tuple(hands),
            duration_ms=duration_ms
        )

    def _failed(self, message: Any, error: str) -> Any:
        if isinstance(message, DetectJob):
            return DetectionResult(
                generation=message.generation,
                frame_id=message.frame_id,
                timestamp=message.timestamp,
                error=error
            )
        return None

    def _shutdown(self, detector: HandDetector) -> None:
        detector.close()


class VisionWorker(EngineWorker):
    """Owns the RegionTracker and its reference store."""

    name = VISION_WORKER

    def __init__(
        self,
        post: Optional[Callable[[Any], None]] = None,
        config: Optional[RegionTrackerConfig] = None,
        tracker_factory: Optional[Callable[[], RegionTracker]] = None
    ):
        super().__init__(post)
        self.config = config or RegionTrackerConfig()
        self._tracker_factory = tracker_factory or (lambda: RegionTracker(self.config))

    def _initialize(self) -> RegionTracker:
        tracker = self._tracker_factory()
        if not tracker.initialize():
            tracker.cleanup()
            raise RuntimeError("OpenCV vision engine unavailable")
        return tracker

    def _handle(self, tracker: RegionTracker, message: Any) -> Any:
        if isinstance(message, TrackJob):
            start = time.perf_counter()
            results = tracker.track(message.frame, message.timestamp)
            duration_ms = (time.perf_counter() - start) * 1000.0
            return TrackingUpdate(
                generation=message.generation,
                frame_id=message.frame_id,
                timestamp=message.timestamp,
                results=MappingProxyType(results),
                duration_ms=duration_ms
            )

        if isinstance(message, SaveReference):
            stored = tracker.set_reference_from_frame(
                message.region_id, message.frame, message.bbox
            )
            return ReferenceUpdated(
                message.generation,
                message.region_id,
                stored=stored,
                error=None if stored else "no features extracted"
            )

        if isinstance(message, ClearReference):
            tracker.clear_reference(message.region_id)
            return ReferenceUpdated(message.generation, message.region_id, stored=False)

        logger.warning(f"Vision worker ignoring {type(message).__name__}")
        return None

    def _failed(self, message: Any, error: str) -> Any:
        if isinstance(message, TrackJob):
            return TrackingUpdate(
                generation=message.generation,
                frame_id=message.frame_id,
                timestamp=message.timestamp,
                error=error
            )
        if isinstance(message, (SaveReference, ClearReference)):
            return ReferenceUpdated(message.generation, message.region_id, stored=False, error=error)
        return None

    def _shutdown(self, tracker: RegionTracker) -> None:
        tracker.cleanup()

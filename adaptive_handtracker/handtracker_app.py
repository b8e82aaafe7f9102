#!/usr/bin/env python3
"""
Adaptive Hand Tracker

Main entry point for AdaptiveHandtracker.
Runs real-time hand tracking with adaptive frame skipping, ROI-focused
detection, landmark smoothing and optional planar region tracking.

Usage:
    python -m adaptive_handtracker [--profile <path>] [--camera <index>] [--debug]
                                   [--record <dir>] [--target-fps <fps>]

Debug window keys:
    q / ESC  Quit
    r        Draw a region to track
    c        Clear all tracked regions

Exit Codes:
    0 - Success
    1 - Profile error
    2 - Camera error
    3 - Runtime error
"""

import argparse
import signal
import sys
import time
from typing import Optional

import cv2
import numpy as np

from . import debug_overlay
from .camera_manager import CameraManager, CameraError, select_camera
from .config import (
    EXIT_SUCCESS,
    EXIT_PROFILE_ERROR,
    EXIT_CAMERA_ERROR,
    EXIT_RUNTIME_ERROR,
)
from .event_bus import EventBus, EventType
from .frame_orchestrator import FrameOrchestrator
from .logger import setup_logging, get_logger
from .performance_tracker import PerformanceSample
from .profile_loader import (
    PipelineProfile,
    ProfileLoadError,
    create_default_profile,
    load_profile,
)
from .session_recorder import SessionRecorder
from .workers import DetectorWorker, VisionWorker, WorkerStoppedError


class HandTrackerApp:
    """
    Main application for adaptive hand tracking.

    Wires the camera into the frame orchestrator, starts the detector and
    vision workers, and optionally archives the session and shows a debug
    window.
    """

    def __init__(
        self,
        profile: PipelineProfile,
        camera_index: int = 0,
        debug: bool = False,
        record_dir: Optional[str] = None
    ):
        """
        Initialize hand tracker application.

        Args:
            profile: Loaded profile configuration.
            camera_index: Camera device index.
            debug: Enable debug mode with visualization.
            record_dir: Directory for session archival (overrides the profile).
        """
        self.profile = profile
        self.camera_index = camera_index
        self.debug = debug
        self.record_dir = record_dir or (
            profile.session.output_dir if profile.session.enabled else None
        )

        self._logger = get_logger("App")
        self._camera: Optional[CameraManager] = None
        self._orchestrator: Optional[FrameOrchestrator] = None
        self._recorder: Optional[SessionRecorder] = None
        self._bus = EventBus()

        self._display_frame: Optional[np.ndarray] = None
        self._recorded_frames = 0
        self._region_counter = 0
        self._stopped = False

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def orchestrator(self) -> Optional[FrameOrchestrator]:
        return self._orchestrator

    def initialize(self) -> None:
        """
        Open the camera and build the pipeline.

        Raises:
            CameraError: If the camera can't be opened.
        """
        cam = self.profile.camera
        self._logger.info("Initializing camera...")
        self._camera = CameraManager(
            camera_index=self.camera_index,
            width=cam.width,
            height=cam.height,
            fps=cam.fps,
            flip_horizontal=cam.flip_horizontal
        )
        self._camera.open()

        detector = DetectorWorker(max_num_hands=self.profile.scheduler.max_num_hands)
        vision = None
        if self.profile.tracker.enabled:
            vision = VisionWorker(config=self.profile.tracker)
        else:
            self._logger.info("Marker tracking disabled by profile")

        self._orchestrator = FrameOrchestrator(
            frame_source=self._capture_frame,
            detector_worker=detector,
            vision_worker=vision,
            config=self.profile.scheduler,
            filter_config=self.profile.filter,
            roi_config=self.profile.roi,
            bus=self._bus
        )

        if self.record_dir:
            session_id = time.strftime("%Y%m%d_%H%M%S")
            self._recorder = SessionRecorder(
                session_id,
                self.record_dir,
                batch_size=self.profile.session.batch_size
            )
            self._bus.subscribe(EventType.PERFORMANCE, self._record_frame)
            self._logger.info(f"Recording session to {self._recorder.path}")

        self._bus.subscribe(EventType.LOG, self._on_log_event)
        self._logger.info("Initialization complete")

    def _capture_frame(self) -> Optional[np.ndarray]:
        frame = self._camera.read_frame()
        if self.debug and frame is not None:
            self._display_frame = frame
        return frame

    def _current_hands(self) -> list:
        hands = []
        for slot in range(self.profile.scheduler.max_num_hands):
            event = self._bus.latest(EventType.LANDMARKS, slot)
            if event is not None and event.hand is not None:
                hands.append(event.hand)
        return hands

    def _record_frame(self, sample: PerformanceSample) -> None:
        self._recorded_frames += 1
        self._recorder.record(self._recorded_frames, self._current_hands(), sample)

    def _on_log_event(self, entry: dict) -> None:
        if self.debug:
            self._logger.debug(f"Pipeline notification: {entry.get('message')}")

    def run(self) -> None:
        """Run the tracking loop until stopped."""
        if self._orchestrator is None:
            raise RuntimeError("HandTrackerApp.initialize() must be called before run()")

        self._logger.info("Starting tracking loop...")
        try:
            self._orchestrator.run(on_tick=self._on_tick if self.debug else None)
        except KeyboardInterrupt:
            self._logger.info("Interrupted by user")
        finally:
            self.stop()

    def _on_tick(self) -> None:
        """Refresh the debug window and handle its keys."""
        frame = self._display_frame
        if frame is None:
            return

        rois = []
        for slot in range(self.profile.scheduler.max_num_hands):
            event = self._bus.latest(EventType.ROI, slot)
            if event is not None and event.roi is not None:
                rois.append((event.roi, event.requires_full_frame))

        regions = {}
        for region_id in self._orchestrator.regions:
            event = self._bus.latest(EventType.REGION_TRACKING, region_id)
            if event is not None:
                regions[region_id] = event.result

        display = debug_overlay.render(
            frame,
            hands=self._current_hands(),
            rois=rois,
            regions=regions,
            sample=self._orchestrator.performance.latest,
            state=self._orchestrator.state.value,
            mirror=not self.profile.camera.flip_horizontal
        )
        key = debug_overlay.show(display)

        if key == ord('q') or key == 27:  # q or ESC
            self._logger.info("Quit key pressed")
            self._orchestrator.request_stop()
        elif key == ord('r'):
            self._select_region(frame)
        elif key == ord('c'):
            for region_id in self._orchestrator.regions:
                self._orchestrator.remove_region(region_id)
            self._logger.info("Cleared tracked regions")

    def _select_region(self, frame: np.ndarray) -> None:
        """Let the user drag a box on the current frame and track it."""
        bbox = cv2.selectROI("Select region", frame, showCrosshair=True)
        cv2.destroyWindow("Select region")
        x, y, w, h = (int(v) for v in bbox)
        if w <= 0 or h <= 0:
            return

        self._region_counter += 1
        region_id = f"region-{self._region_counter}"
        try:
            self._orchestrator.add_region(region_id, frame, (x, y, w, h))
        except WorkerStoppedError as e:
            self._logger.warning(f"Can't track {region_id}: {e}")

    def request_stop(self) -> None:
        """Ask the tracking loop to stop. Safe to call from a signal handler."""
        if self._orchestrator is not None:
            self._orchestrator.request_stop()

    def stop(self) -> None:
        """Stop the pipeline and release resources."""
        if self._stopped:
            return
        self._stopped = True
        self._logger.info("Stopping hand tracker...")

        if self._orchestrator is not None:
            self._orchestrator.stop()

        if self._recorder is not None:
            self._recorder.close()
            self._recorder = None

        if self._camera is not None:
            self._camera.close()
            self._camera = None

        if self.debug:
            cv2.destroyAllWindows()

        self._logger.info("Hand tracker stopped")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Adaptive Hand Tracker - real-time hand tracking with adaptive frame skipping",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0  Success
  1  Profile error (file not found, invalid JSON, invalid values)
  2  Camera error (camera not available)
  3  Runtime error (unexpected error)

Examples:
  python -m adaptive_handtracker
  python -m adaptive_handtracker --profile profile.json --camera 1
  python -m adaptive_handtracker --debug --record sessions/
"""
    )

    parser.add_argument(
        "--profile", "-p",
        default=None,
        help="Path to JSON profile file (default: built-in defaults)"
    )

    parser.add_argument(
        "--camera", "-c",
        type=int,
        default=-1,
        help="Camera index (default: profile setting, else auto-detect)"
    )

    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Enable debug mode with visualization window"
    )

    parser.add_argument(
        "--record", "-r",
        default=None,
        metavar="DIR",
        help="Archive processed frames as JSON Lines into DIR"
    )

    parser.add_argument(
        "--target-fps",
        type=float,
        default=None,
        help="Detector frame budget (overrides the profile)"
    )

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code.
    """
    args = parse_args(argv)

    # Setup logging
    logger = setup_logging(debug=args.debug)
    logger.info("Adaptive Hand Tracker starting...")

    # Load profile
    try:
        profile = load_profile(args.profile) if args.profile else create_default_profile()
        if args.target_fps is not None:
            profile.scheduler.target_fps = args.target_fps
            profile.scheduler.validate()
    except ProfileLoadError as e:
        logger.error(f"Failed to load profile: {e}")
        return EXIT_PROFILE_ERROR
    except ValueError as e:
        logger.error(f"Invalid --target-fps: {e}")
        return EXIT_PROFILE_ERROR

    # Determine camera index
    try:
        if args.camera >= 0:
            camera_index = args.camera
        elif profile.camera.index >= 0:
            camera_index = profile.camera.index
        else:
            camera_index = select_camera()
    except CameraError as e:
        logger.error(f"Camera selection failed: {e}")
        return EXIT_CAMERA_ERROR

    app: Optional[HandTrackerApp] = None

    try:
        app = HandTrackerApp(
            profile=profile,
            camera_index=camera_index,
            debug=args.debug,
            record_dir=args.record
        )

        # Setup signal handler for graceful shutdown
        def signal_handler(sig, frame):
            logger.info("Received shutdown signal")
            if app:
                app.request_stop()

        signal.signal(signal.SIGINT, signal_handler)
        # SIGTERM is not available on Windows
        if sys.platform != 'win32':
            signal.signal(signal.SIGTERM, signal_handler)

        app.initialize()
        app.run()

        return EXIT_SUCCESS

    except CameraError as e:
        logger.error(f"Camera error: {e}")
        return EXIT_CAMERA_ERROR
    except Exception as e:
        logger.exception(f"Runtime error: {e}")
        return EXIT_RUNTIME_ERROR
    finally:
        if app:
            app.stop()


if __name__ == "__main__":
    sys.exit(main())

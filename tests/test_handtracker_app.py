import json
import logging
import signal

import pytest

from adaptive_handtracker import handtracker_app
from adaptive_handtracker.camera_manager import CameraError
from adaptive_handtracker.config import (
    EXIT_CAMERA_ERROR,
    EXIT_PROFILE_ERROR,
)
from adaptive_handtracker.logger import APP_LOGGER_NAME, get_log_directory, get_logger, setup_logging


@pytest.fixture(autouse=True)
def log_dir(tmp_path, monkeypatch):
    path = tmp_path / "logs"
    monkeypatch.setenv("ADAPTIVE_HANDTRACKER_LOG_DIR", str(path))
    handlers = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield path
    for sig, handler in handlers.items():
        signal.signal(sig, handler)
    logger = logging.getLogger(APP_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class BrokenCamera:
    def __init__(self, *args, **kwargs):
        pass

    def open(self):
        raise CameraError("no device")

    def close(self):
        pass


def test_parse_args_defaults():
    args = handtracker_app.parse_args([])
    assert args.profile is None
    assert args.camera == -1
    assert args.debug is False
    assert args.record is None
    assert args.target_fps is None


def test_parse_args_overrides():
    args = handtracker_app.parse_args(["-p", "x.json", "-c", "2", "-d", "-r", "out", "--target-fps", "12.5"])
    assert args.profile == "x.json"
    assert args.camera == 2
    assert args.debug is True
    assert args.record == "out"
    assert args.target_fps == 12.5


def test_missing_profile_exits_with_profile_error(tmp_path):
    assert handtracker_app.main(["--profile", str(tmp_path / "missing.json")]) == EXIT_PROFILE_ERROR


def test_invalid_profile_exits_with_profile_error(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"scheduler": {"targetFps": -3}}), encoding="utf-8")
    assert handtracker_app.main(["--profile", str(path)]) == EXIT_PROFILE_ERROR


def test_invalid_target_fps_exits_with_profile_error():
    assert handtracker_app.main(["--target-fps", "0"]) == EXIT_PROFILE_ERROR


def test_no_camera_exits_with_camera_error(monkeypatch):
    def no_camera(*args, **kwargs):
        raise CameraError("No cameras found")

    monkeypatch.setattr(handtracker_app, "select_camera", no_camera)
    assert handtracker_app.main([]) == EXIT_CAMERA_ERROR


def test_camera_open_failure_exits_with_camera_error(monkeypatch):
    monkeypatch.setattr(handtracker_app, "CameraManager", BrokenCamera)
    assert handtracker_app.main(["--camera", "0"]) == EXIT_CAMERA_ERROR


def test_run_requires_initialize():
    app = handtracker_app.HandTrackerApp(handtracker_app.create_default_profile())
    with pytest.raises(RuntimeError):
        app.run()


def test_record_dir_falls_back_to_profile():
    profile = handtracker_app.create_default_profile()
    profile.session.enabled = True
    profile.session.output_dir = "sessions"
    assert handtracker_app.HandTrackerApp(profile).record_dir == "sessions"
    assert handtracker_app.HandTrackerApp(profile, record_dir="other").record_dir == "other"


def test_setup_logging_writes_rotating_file(log_dir):
    logger = setup_logging(debug=True)
    get_logger("Test").info("hello file")
    for handler in logger.handlers:
        handler.flush()

    assert get_log_directory() == log_dir
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    log_files = list(log_dir.iterdir())
    assert len(log_files) == 1
    text = log_files[0].read_text(encoding="utf-8")
    assert "hello file" in text
    assert "MainThread" in text


def test_setup_logging_console_only():
    logger = setup_logging(log_to_file=False)
    assert len(logger.handlers) == 1
    assert logger.level == logging.INFO

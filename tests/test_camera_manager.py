import cv2
import numpy as np
import pytest

from adaptive_handtracker import camera_manager
from adaptive_handtracker.camera_manager import CameraError, CameraManager, list_available_cameras, select_camera


class FakeCapture:
    """Stands in for cv2.VideoCapture; serves queued frames."""

    def __init__(self, index, frames=(), opened=True, size=(640, 480)):
        self.index = index
        self.frames = list(frames)
        self.opened = opened
        self.props = {
            cv2.CAP_PROP_FRAME_WIDTH: size[0],
            cv2.CAP_PROP_FRAME_HEIGHT: size[1],
            cv2.CAP_PROP_FPS: 30.0,
        }
        self.released = False

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        return True

    def get(self, prop):
        return self.props.get(prop, 0)

    def getBackendName(self):
        return "FAKE"

    def read(self):
        if not self.frames:
            return False, None
        frame = self.frames.pop(0)
        return frame is not None, frame

    def release(self):
        self.released = True


def install(monkeypatch, **kwargs):
    created = []

    def factory(index, *args):
        capture = FakeCapture(index, **kwargs)
        created.append(capture)
        return capture

    monkeypatch.setattr(camera_manager.cv2, "VideoCapture", factory)
    return created


def make_frame():
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    frame[:, :10] = 255  # left stripe
    return frame


def test_open_reports_negotiated_settings(monkeypatch):
    install(monkeypatch, size=(320, 240))
    camera = CameraManager(camera_index=1, width=640, height=480)

    info = camera.open()

    assert camera.is_open
    assert (info.index, info.width, info.height, info.backend) == (1, 320, 240, "FAKE")
    assert camera.actual_width == 320
    assert camera.actual_fps == 30.0


def test_open_failure_raises(monkeypatch):
    created = install(monkeypatch, opened=False)
    with pytest.raises(CameraError):
        CameraManager().open()
    assert created[-1].released


def test_read_requires_open():
    with pytest.raises(CameraError):
        CameraManager().read_frame()


def test_read_counts_frames_and_failures(monkeypatch):
    install(monkeypatch, frames=[make_frame(), None, None, make_frame()])
    with CameraManager() as camera:
        assert camera.read_frame() is not None
        assert camera.read_frame() is None
        assert camera.read_frame() is None
        assert camera.consecutive_failures == 2
        assert camera.read_frame() is not None
        assert camera.consecutive_failures == 0
        assert camera.get_frame_count() == 2
    assert not camera.is_open
    assert camera.info is None


def test_flip_horizontal(monkeypatch):
    install(monkeypatch, frames=[make_frame()])
    with CameraManager(flip_horizontal=True) as camera:
        frame = camera.read_frame()
    assert frame[0, -1, 0] == 255
    assert frame[0, 0, 0] == 0


def test_read_frame_rgb(monkeypatch):
    bgr = np.zeros((480, 640, 3), dtype=np.uint8)
    bgr[..., 0] = 200  # blue
    install(monkeypatch, frames=[bgr])
    with CameraManager() as camera:
        rgb = camera.read_frame_rgb()
    assert rgb[0, 0].tolist() == [0, 0, 200]


def test_camera_selection(monkeypatch):
    def factory(index, *args):
        return FakeCapture(index, opened=index in (1, 3))

    monkeypatch.setattr(camera_manager.cv2, "VideoCapture", factory)

    assert list_available_cameras(5) == [1, 3]
    assert select_camera() == 1
    assert select_camera(3) == 3
    assert select_camera(2) == 1


def test_no_camera(monkeypatch):
    install(monkeypatch, opened=False)
    with pytest.raises(CameraError):
        select_camera()

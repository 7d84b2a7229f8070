"""Tests for camera routing into the shared buffers."""
from __future__ import annotations

import threading

import numpy as np

from rov_vision_system.core.camera_manager import FrameSource, open_cameras
from rov_vision_system.config.settings import CameraConfig
from rov_vision_system.core.frame_buffer import FrameBuffers
from tests.fakes import FakeCameraSink, StuckCameraSink, wait_for


def _start(source: FrameSource, buffers: FrameBuffers, sinks) -> threading.Thread:
    thread = threading.Thread(target=source.start_capture, args=(buffers, sinks), daemon=True)
    thread.start()
    return thread


def _frame(value: int) -> np.ndarray:
    return np.full((48, 64, 3), value, dtype=np.uint8)


class TestFrameSource:
    def test_routes_by_alias(self, buffers):
        combined = FakeCameraSink("vision_left_stereo", _frame(10))
        right = FakeCameraSink("right_stereo", _frame(20))
        source = FrameSource()
        thread = _start(source, buffers, [combined, right])

        assert wait_for(lambda: not buffers.vision.empty() and not buffers.right_stereo.empty())
        assert wait_for(lambda: not buffers.left_stereo.empty())

        assert (buffers.vision.reading() == 10).all()
        assert (buffers.left_stereo.reading() == 10).all()
        assert (buffers.right_stereo.reading() == 20).all()
        assert buffers.vision._frame is not buffers.left_stereo._frame

        assert source.stop(timeout=2.0)
        thread.join(2.0)
        assert source.is_stopped
        assert combined.released and right.released

    def test_unmatched_camera_is_ignored(self, buffers):
        stray = FakeCameraSink("rear", _frame(1))
        source = FrameSource()
        thread = _start(source, buffers, [stray])
        source.stop(timeout=1.0)
        thread.join(2.0)

        assert stray.grabs == 0
        assert buffers.vision.empty()

    def test_one_timer_per_role(self):
        source = FrameSource()
        assert len(source.fps_counters) == 3
        assert [source.fps(i) for i in range(3)] == [0, 0, 0]

    def test_no_sinks_stops_immediately(self, buffers):
        source = FrameSource()
        source.start_capture(buffers, [])
        assert source.is_stopped

    def test_stop_before_capture_starts(self, buffers):
        camera = FakeCameraSink("vision", _frame(3))
        source = FrameSource(join_timeout=1.0)

        assert source.stop(timeout=1.0)
        source.start_capture(buffers, [camera])

        assert source.is_stopped
        assert camera.released

    def test_failed_grabs_leave_buffer_empty(self, buffers):
        broken = FakeCameraSink("vision", fail=True)
        source = FrameSource()
        thread = _start(source, buffers, [broken])

        assert wait_for(lambda: broken.grabs >= 2)
        assert buffers.vision.empty()
        assert source.fps(0) == 0

        source.stop(timeout=2.0)
        thread.join(2.0)

    def test_wedged_camera_bounds_shutdown(self, buffers):
        stuck = StuckCameraSink("vision")
        source = FrameSource(join_timeout=0.1)
        thread = _start(source, buffers, [stuck])
        wait_for(lambda: len(source._threads) == 1)

        assert not source.stop(timeout=0.1)

        stuck.unblock.set()
        thread.join(2.0)
        assert source.is_stopped


def test_open_cameras_skips_unopenable(tmp_path):
    configs = [CameraConfig(name="vision", path=str(tmp_path / "missing.mp4"))]
    assert open_cameras(configs, virtual=True) == []

"""Tests for routing processed buffers to output streams."""
from __future__ import annotations

import threading

import numpy as np

from rov_vision_system.core.frame_buffer import FrameBuffers
from rov_vision_system.core.frame_sink import (
    FrameSink, LatestFrameOutput, VideoFileOutput, buffer_for_output,
)
from tests.fakes import RecordingOutput, wait_for


def _publish(shared, value: int):
    with shared.publishing() as writer:
        writer.set(np.full((48, 64, 3), value, dtype=np.uint8))


class TestBufferForOutput:
    def test_aliases(self, buffers):
        assert buffer_for_output("visionProcessed", buffers) is buffers.processed_vision
        assert buffer_for_output("stereoProcessed", buffers) is buffers.processed_stereo
        assert buffer_for_output("rear", buffers) is None


class TestFrameSink:
    def test_routes_processed_streams(self, buffers):
        _publish(buffers.processed_vision, 100)
        _publish(buffers.processed_stereo, 200)
        vision = RecordingOutput("visionProcessed")
        stereo = RecordingOutput("stereoProcessed")
        stray = RecordingOutput("rear")

        sink = FrameSink(startup_delay=0.0)
        thread = threading.Thread(target=sink.show_frames,
                                  args=(buffers, [vision, stereo, stray]), daemon=True)
        thread.start()

        assert wait_for(lambda: vision.frames and stereo.frames)
        assert sink.stop(timeout=2.0)
        thread.join(2.0)

        assert (vision.frames[0] == 100).all()
        assert (stereo.frames[0] == 200).all()
        assert stray.frames == []
        assert vision.closed and stereo.closed and stray.closed
        assert sink.is_stopped

    def test_empty_buffer_shows_nothing(self):
        buffers = FrameBuffers()
        output = RecordingOutput("visionProcessed")
        sink = FrameSink(startup_delay=0.0)
        thread = threading.Thread(target=sink.show_frames, args=(buffers, [output]), daemon=True)
        thread.start()
        wait_for(lambda: len(sink._threads) == 1)

        sink.stop(timeout=2.0)
        thread.join(2.0)
        assert output.frames == []

    def test_one_timer_per_stream(self):
        assert len(FrameSink().fps_counters) == 2

    def test_no_outputs_stops_immediately(self, buffers):
        sink = FrameSink(startup_delay=0.0)
        sink.show_frames(buffers, [])
        assert sink.is_stopped


class TestOutputs:
    def test_latest_frame_output_keeps_a_copy(self):
        output = LatestFrameOutput("visionProcessed")
        frame = np.zeros((2, 2, 3), dtype=np.uint8)
        output.put_frame(frame)
        frame[:] = 9
        assert output.frames_written == 1
        assert not output.latest().any()

    def test_video_file_output_opens_lazily(self, tmp_path):
        path = tmp_path / "vision.avi"
        output = VideoFileOutput("visionProcessed", str(path), fourcc="MJPG")
        assert output.writer is None
        output.put_frame(np.zeros((48, 64, 3), dtype=np.uint8))
        output.close()
        assert path.exists()

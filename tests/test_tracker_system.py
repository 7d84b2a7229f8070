"""Tests for the tracking algorithms and the tracking processor."""
from __future__ import annotations

import numpy as np
import pytest

from rov_vision_system.core.config_store import PipelineParameters
from rov_vision_system.core.detector_engine import DetectionEngine, OutputTensor
from rov_vision_system.core.frame_buffer import SharedFrame
from rov_vision_system.core.state_machine import ModeController, TrackingMode
from rov_vision_system.core.tracker_system import (
    TRENCH_SENTINEL, LineOrientation, PoseStatus, TrackingProcessor, crop_to_tape,
    solve_object_pose, track_line, track_tape, track_trench,
)
from rov_vision_system.utils.logger import RateLimitedLogger
from rov_vision_system.visualization.hud_overlay import draw_fps_text
from tests.conftest import draw_blob, hsv_color_to_bgr
from tests.fakes import FakeBackend


def _processor(mode: TrackingMode, params: PipelineParameters, engine=None) -> TrackingProcessor:
    return TrackingProcessor(SharedFrame("vision"), SharedFrame("processed_vision"),
                             params, ModeController(mode), engine=engine)


def _trench_frame(left_x: int, right_x: int, with_short_blob: bool = True) -> np.ndarray:
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    draw_blob(frame, left_x, 100, 16, 110)
    draw_blob(frame, right_x, 100, 16, 110)
    if with_short_blob:
        draw_blob(frame, 100, 300, 30, 50)
    return frame


def _line_frame() -> np.ndarray:
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    return draw_blob(frame, 0, 230, 640, 20)


@pytest.fixture()
def line_params():
    return PipelineParameters(
        contour_area_min=500.0,
        contour_area_max=50.0,
        hsv_thresholds=[50, 70, 200, 255, 200, 255],
    )


@pytest.fixture()
def tape_params():
    return PipelineParameters(contour_area_min=500.0, contour_area_max=5000.0)


# ---------- Trench ----------

class TestTrench:
    def test_centered_gap_reports_offset(self, green_params):
        frame = _trench_frame(250, 380)
        annotated = frame.copy()

        (center_x, width), mask = track_trench(frame, annotated, green_params)

        assert (center_x, width) != TRENCH_SENTINEL
        # Gap midpoint is about x=323, screen center is 320.
        assert abs(center_x) <= 10
        assert width >= 0
        assert mask.shape == (480, 640)
        assert not np.array_equal(annotated, frame)

    def test_off_center_gap_is_sentinel(self, green_params):
        frame = _trench_frame(500, 600)
        target, _ = track_trench(frame, frame.copy(), green_params)
        assert target == TRENCH_SENTINEL

    def test_single_contour_is_sentinel(self, green_params):
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        draw_blob(frame, 250, 100, 16, 110)
        target, _ = track_trench(frame, frame.copy(), green_params, previous_target=(4, 5))
        assert target == TRENCH_SENTINEL

    def test_too_few_hulls_keeps_previous_target(self, green_params):
        frame = _trench_frame(250, 380, with_short_blob=False)
        target, _ = track_trench(frame, frame.copy(), green_params, previous_target=(7, 9))
        assert target == (7, 9)

    def test_empty_frame_only_gets_fps_overlay(self, green_params, black_frame):
        processor = _processor(TrackingMode.TRENCH, green_params)

        annotated, result = processor.process_frame(black_frame)

        expected = black_frame.copy()
        draw_fps_text(expected, 0, 0)
        assert np.array_equal(annotated, expected)
        assert (result.target_center_x, result.target_center_y) == TRENCH_SENTINEL
        assert (green_params.target_center_x, green_params.target_center_y) == TRENCH_SENTINEL


# ---------- Line ----------

class TestLine:
    def test_horizontal_band_yields_a_point_per_strip(self, line_params):
        orientation = LineOrientation()
        frame = _line_frame()

        values, _ = track_line(frame, frame.copy(), line_params, orientation)

        assert len(values) == 1 + 2 * 8
        assert values[0] == 0.0
        xs, ys = values[1::2], values[2::2]
        assert xs == sorted(xs)
        assert all(abs(y - 239.5) <= 1 for y in ys)
        assert not orientation.vertical

    def test_far_blob_breaks_continuity(self, line_params):
        frame = _line_frame()
        draw_blob(frame, 240, 400, 80, 70)

        values, _ = track_line(frame, frame.copy(), line_params, LineOrientation())

        ys = values[2::2]
        assert len(ys) == 7
        assert all(y < 300 for y in ys)

    def test_no_points_flips_orientation(self, line_params, black_frame):
        orientation = LineOrientation()
        values, _ = track_line(black_frame, black_frame.copy(), line_params, orientation)
        assert values == []
        assert orientation.vertical


# ---------- Tape and pose ----------

class TestTape:
    def _yellow_frame(self):
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        return draw_blob(frame, 200, 150, 60, 40, color=hsv_color_to_bgr(30, 240, 130))

    def test_single_rectangle_is_found(self, tape_params):
        frame = self._yellow_frame()
        tapes, _ = track_tape(frame, frame.copy(), tape_params)
        assert [t.color for t in tapes] == ["yellow"]
        cx, cy = tapes[0].center
        assert abs(cx - 229.5) <= 2 and abs(cy - 169.5) <= 2

    def test_colors_sorted_left_to_right(self, tape_params):
        frame = self._yellow_frame()
        draw_blob(frame, 60, 300, 50, 40, color=hsv_color_to_bgr(64, 240, 180))

        tapes, _ = track_tape(frame, frame.copy(), tape_params)

        assert [t.color for t in tapes] == ["green", "yellow"]

    def test_snapshot_crops_to_rectangle(self, tape_params):
        tape_params.take_snapshot = True
        processor = _processor(TrackingMode.TAPE, tape_params)

        annotated, result = processor.process_frame(self._yellow_frame())

        assert result.tape_order == ["yellow"]
        height, width = annotated.shape[:2]
        assert abs(height - 40) <= 2
        assert abs(width - 60) <= 2

    def test_crop_without_tape_is_identity(self, black_frame):
        assert crop_to_tape(black_frame, []) is black_frame


class TestPose:
    def test_unsolvable_points_give_zeros(self, black_frame):
        warnings = RateLimitedLogger('PoseSolverTest', limit=1)
        annotated = black_frame.copy()

        result = solve_object_pose([(10.0, 10.0), (20.0, 20.0)], annotated, warnings=warnings)

        assert result.status == PoseStatus.UNSOLVABLE
        assert result.values == [0.0] * 6
        assert warnings.count == 1
        assert not np.array_equal(annotated, black_frame)

    def test_warnings_are_capped(self, black_frame):
        warnings = RateLimitedLogger('PoseSolverTest', limit=2)
        for _ in range(5):
            solve_object_pose([(1.0, 1.0)], black_frame.copy(), warnings=warnings)
        assert warnings.count == 2
        assert not warnings.warning("dropped")


# ---------- Processor ----------

class TestTrackingProcessor:
    def test_error_overlay_instead_of_crash(self, green_params):
        processor = _processor(TrackingMode.TRENCH, green_params)
        gray = np.full((480, 640), 255, dtype=np.uint8)

        annotated = processor.process_safely(gray)

        assert annotated.shape == gray.shape
        assert not np.array_equal(annotated, gray)
        assert processor.latest_result().values == []

    def test_fish_without_engine_draws_notice(self, black_frame):
        processor = _processor(TrackingMode.FISH, PipelineParameters())
        annotated, result = processor.process_frame(black_frame)
        assert result.detections == []
        assert annotated[:, :300].any()

    def test_fish_force_onnx_selects_backend(self, black_frame):
        rows = np.array([[[320, 240, 100, 80, 0.9, 0.1, 0.95]]], dtype=np.float32)
        engine = DetectionEngine([FakeBackend([OutputTensor(rows)], name="edgetpu"),
                                  FakeBackend([OutputTensor(rows)], name="onnx")])
        params = PipelineParameters(force_onnx=True, confidence_threshold=0.5)
        processor = _processor(TrackingMode.FISH, params, engine=engine)

        _, result = processor.process_frame(black_frame)

        assert engine.backend_name == "onnx"
        assert [d.class_id for d in result.detections] == [1]

    def test_driving_mode_skips_tracking(self, line_params):
        line_params.driving_mode = True
        processor = _processor(TrackingMode.LINE, line_params)
        _, result = processor.process_frame(_line_frame())
        assert result.values == []

    def test_tuning_mode_shows_mask(self, line_params):
        line_params.tuning_mode = True
        processor = _processor(TrackingMode.LINE, line_params)
        annotated, _ = processor.process_frame(_line_frame())
        assert annotated.shape == (480, 640, 3)
        assert np.array_equal(annotated[..., 0], annotated[..., 1])
        assert annotated[240, 320].tolist() == [255, 255, 255]

"""Shared test fixtures for pipeline tests.

Frames are synthesized with numpy and OpenCV drawing calls so no camera,
dashboard or model file is needed.
"""
from __future__ import annotations

import cv2
import numpy as np
import pytest

from rov_vision_system.config.tuning import TuningStore
from rov_vision_system.core.config_store import InMemoryConfigStore, PipelineParameters, populate_defaults
from rov_vision_system.core.frame_buffer import FrameBuffers


# ---------- Store fixtures ----------

@pytest.fixture()
def store():
    store = InMemoryConfigStore()
    populate_defaults(store)
    return store


@pytest.fixture()
def tuning(tmp_path):
    path = tmp_path / "trackbar_values.json"
    tuning = TuningStore(str(path))
    tuning.flush()
    return tuning


@pytest.fixture()
def green_params():
    """Parameters that keep saturated green and nothing else."""
    return PipelineParameters(
        center_line_tolerance=50,
        contour_area_min=1000.0,
        contour_area_max=2000.0,
        hsv_thresholds=[50, 70, 200, 255, 200, 255],
    )


# ---------- Frame fixtures ----------

@pytest.fixture()
def black_frame():
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture()
def buffers():
    return FrameBuffers()


def draw_blob(frame: np.ndarray, x: int, y: int, w: int, h: int, color=(0, 255, 0)):
    """Filled rectangle covering x..x+w-1, y..y+h-1."""
    cv2.rectangle(frame, (x, y), (x + w - 1, y + h - 1), color, thickness=-1)
    return frame


def hsv_color_to_bgr(h: int, s: int, v: int):
    pixel = np.uint8([[[h, s, v]]])
    b, g, r = cv2.cvtColor(pixel, cv2.COLOR_HSV2BGR)[0, 0]
    return int(b), int(g), int(r)

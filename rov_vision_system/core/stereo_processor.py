# core/stereo_processor.py
"""
Stereo stream processor. Produces the stereo visualization from the left and right buffers.
"""
import numpy as np
import threading
import time
from dataclasses import dataclass
from typing import Optional
from loguru import logger

from rov_vision_system.config.settings import PROCESS_STARTUP_DELAY
from rov_vision_system.core.config_store import ConfigStore, Keys, PipelineParameters
from rov_vision_system.core.frame_buffer import SharedFrame
from rov_vision_system.utils.performance import FrameTimer
from rov_vision_system.visualization.hud_overlay import (
    COLORS, draw_error_text, draw_notice, draw_stereo_fps_text,
)

DISABLED_NOTICE = [
    "Stereo computation is disabled by default to",
    "save resources. Enabled it through the shuffleboard.",
]


@dataclass
class StereoParameters:
    """Block matcher settings from the STEREO tuning block"""
    num_disparities: int = 18
    min_disparity: int = 25
    block_size: int = 50
    prefilter_type: int = 1
    prefilter_size: int = 25
    prefilter_cap: int = 62
    texture_threshold: int = 100
    uniqueness_ratio: int = 100
    speckle_range: int = 100
    speckle_window_size: int = 25
    disp12_max_diff: int = 25

    def refresh(self, store: ConfigStore):
        self.num_disparities = int(store.get(Keys.STEREO_NUM_DISPARITIES, self.num_disparities))
        self.min_disparity = int(store.get(Keys.STEREO_MIN_DISPARITY, self.min_disparity))
        self.block_size = int(store.get(Keys.STEREO_BLOCK_SIZE, self.block_size))
        self.prefilter_type = int(store.get(Keys.STEREO_PREFILTER_TYPE, self.prefilter_type))
        self.prefilter_size = int(store.get(Keys.STEREO_PREFILTER_SIZE, self.prefilter_size))
        self.prefilter_cap = int(store.get(Keys.STEREO_PREFILTER_CAP, self.prefilter_cap))
        self.texture_threshold = int(store.get(Keys.STEREO_TEXTURE_THRESH, self.texture_threshold))
        self.uniqueness_ratio = int(store.get(Keys.STEREO_UNIQUENESS_RATIO, self.uniqueness_ratio))
        self.speckle_range = int(store.get(Keys.STEREO_SPECKLE_RANGE, self.speckle_range))
        self.speckle_window_size = int(store.get(Keys.STEREO_SPECKLE_WINDOW_SIZE, self.speckle_window_size))
        self.disp12_max_diff = int(store.get(Keys.STEREO_DISP12_MAX_DIFF, self.disp12_max_diff))


class StereoProcessor:
    """Stereo visualization thread"""

    def __init__(self, left: SharedFrame, right: SharedFrame, stereo_out: SharedFrame,
                 params: PipelineParameters, frame_source=None):
        self.left = left
        self.right = right
        self.stereo_out = stereo_out
        self.params = params
        self.frame_source = frame_source
        self.stereo_params = StereoParameters()

        self.fps_counter = FrameTimer()
        self._stop_event = threading.Event()
        self._stopped = threading.Event()

    def fps(self) -> int:
        return self.fps_counter.frames_per_second()

    def _camera_fps(self, index: int) -> int:
        return self.frame_source.fps(index) if self.frame_source else 0

    def process_frames(self, left: Optional[np.ndarray], right: Optional[np.ndarray],
                       enabled: bool) -> Optional[np.ndarray]:
        """Build the stereo frame. Returns None when both inputs are empty."""
        left_ok = left is not None and left.size > 0
        right_ok = right is not None and right.size > 0
        if not left_ok and not right_ok:
            return None

        source = left if left_ok else right
        if enabled:
            stereo = source.copy()
        else:
            height, width = source.shape[:2]
            stereo = np.empty((height, width, 3), dtype=np.uint8)
            stereo[:] = COLORS['placeholder']
            draw_notice(stereo, DISABLED_NOTICE)

        draw_stereo_fps_text(stereo, self._camera_fps(1), self._camera_fps(2), self.fps())
        return stereo

    def run(self):
        """Processing thread loop"""
        self._stop_event.wait(PROCESS_STARTUP_DELAY)
        logger.info("✓ Stereo processor started")

        while not self._stop_event.is_set():
            self.fps_counter.increment()
            enabled = self.params.snapshot().stereo_enabled

            with self.stereo_out.publishing() as writer:
                try:
                    stereo = self.process_frames(self.left.reading(), self.right.reading(), enabled)
                    if stereo is not None:
                        writer.set(stereo)
                except Exception as e:
                    logger.warning(f"Stereo frame corrupt or a runtime error occurred, frame dropped: {e}")
                    if writer.frame is not None:
                        previous = writer.frame.copy()
                        draw_error_text(previous, "Stereo image Processing ERROR")
                        writer.set(previous)

            if self.left.empty() and self.right.empty():
                time.sleep(0.01)

        self._stopped.set()
        logger.info("Stereo processor stopped")

    def stop(self):
        self._stop_event.set()

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

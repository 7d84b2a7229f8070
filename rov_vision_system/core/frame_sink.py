# core/frame_sink.py
"""
Output streams for the processed vision and stereo frames
"""
import cv2
import numpy as np
import threading
import time
from typing import List, Optional, Protocol
from loguru import logger

from rov_vision_system.config.settings import (
    MANAGEMENT_LOOP_SLEEP, SHOW_STARTUP_DELAY,
    STEREO_PROCESSED_STREAM_ALIAS, VISION_PROCESSED_STREAM_ALIAS,
)
from rov_vision_system.core.frame_buffer import FrameBuffers, SharedFrame, join_threads
from rov_vision_system.utils.performance import FrameTimer

VISION_OUTPUT_FPS_INDEX = 0
STEREO_OUTPUT_FPS_INDEX = 1


class FrameOutput(Protocol):
    name: str

    def put_frame(self, frame: np.ndarray) -> None:
        ...

    def close(self) -> None:
        ...


class WindowOutput:
    """Local preview window"""

    def __init__(self, name: str):
        self.name = name

    def put_frame(self, frame: np.ndarray):
        cv2.imshow(self.name, frame)
        cv2.waitKey(1)

    def close(self):
        cv2.destroyWindow(self.name)


class VideoFileOutput:
    """Records frames to disk. The writer opens on the first frame so its size is known."""

    def __init__(self, name: str, path: str, fps: float = 30.0, fourcc: str = "mp4v"):
        self.name = name
        self.path = path
        self.fps = fps
        self.fourcc = cv2.VideoWriter_fourcc(*fourcc)
        self.writer: Optional[cv2.VideoWriter] = None

    def put_frame(self, frame: np.ndarray):
        if self.writer is None:
            height, width = frame.shape[:2]
            self.writer = cv2.VideoWriter(self.path, self.fourcc, self.fps, (width, height))
            logger.info(f"Recording {self.name} to {self.path}")
        if frame.ndim == 2:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        self.writer.write(frame)

    def close(self):
        if self.writer is not None:
            self.writer.release()
            self.writer = None


class LatestFrameOutput:
    """Keeps only the most recent frame in memory"""

    def __init__(self, name: str):
        self.name = name
        self.frames_written = 0
        self._frame: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def put_frame(self, frame: np.ndarray):
        with self._lock:
            self._frame = np.array(frame, copy=True)
            self.frames_written += 1

    def latest(self) -> Optional[np.ndarray]:
        with self._lock:
            return None if self._frame is None else self._frame.copy()

    def close(self):
        pass


def buffer_for_output(name: str, buffers: FrameBuffers) -> Optional[SharedFrame]:
    """Match an output stream to the processed buffer it shows"""
    if VISION_PROCESSED_STREAM_ALIAS in name:
        return buffers.processed_vision
    if STEREO_PROCESSED_STREAM_ALIAS in name:
        return buffers.processed_stereo
    return None


class FrameSink:
    """One publishing thread per output stream"""

    def __init__(self, join_timeout: Optional[float] = None, startup_delay: float = SHOW_STARTUP_DELAY):
        self.fps_counters = [FrameTimer() for _ in range(STEREO_OUTPUT_FPS_INDEX + 1)]
        self.join_timeout = join_timeout
        self.startup_delay = startup_delay
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._stopped = threading.Event()

    def fps(self, index: int) -> int:
        return self.fps_counters[index].frames_per_second()

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    def show_frames(self, buffers: FrameBuffers, outputs: List[FrameOutput]):
        """Spawn output threads and block until stop() is called"""
        self._stop_event.wait(self.startup_delay)
        if not outputs:
            logger.warning("No output streams given, nothing will be shown")
            self._stopped.set()
            return

        for output in outputs:
            buffer = buffer_for_output(output.name, buffers)
            if buffer is None:
                logger.warning(f"Output '{output.name}' matches no vision or stereo alias, ignoring")
                continue
            index = VISION_OUTPUT_FPS_INDEX if buffer is buffers.processed_vision else STEREO_OUTPUT_FPS_INDEX
            thread = threading.Thread(target=self._show, args=(output, buffer, self.fps_counters[index]),
                                      name=f"show-{output.name}", daemon=True)
            thread.start()
            self._threads.append(thread)
            logger.debug(f"Output thread started for {output.name}")

        while not self._stop_event.is_set():
            self._stop_event.wait(MANAGEMENT_LOOP_SLEEP)

        join_threads(self._threads, self.join_timeout)
        for output in outputs:
            output.close()
        self._stopped.set()
        logger.info("Frame output stopped")

    def _show(self, output: FrameOutput, buffer: SharedFrame, timer: FrameTimer):
        while not self._stop_event.is_set():
            shown = False
            try:
                with buffer.showing() as frame:
                    if frame is not None and frame.size > 0:
                        output.put_frame(frame)
                        timer.increment()
                        shown = True
            except Exception as e:
                logger.warning(f"Frame corrupt, dropped from {output.name}: {e}")
                time.sleep(0.1)
            # Yield the show lock to the processors between publishes.
            time.sleep(0.001 if shown else 0.01)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal all output threads and wait for them"""
        self._stop_event.set()
        return join_threads(self._threads, timeout)

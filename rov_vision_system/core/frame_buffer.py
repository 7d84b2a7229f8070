# core/frame_buffer.py
"""
Shared frame buffer with separate capture-side and show-side locks
"""
import threading
import time
from contextlib import contextmanager
from typing import Iterator, List, Optional

import numpy as np
from loguru import logger


class FrameWriter:
    """Handle given to the holder of a buffer lock for replacing the frame"""

    def __init__(self, shared: 'SharedFrame'):
        self._shared = shared

    @property
    def frame(self) -> Optional[np.ndarray]:
        return self._shared._frame

    def set(self, frame: np.ndarray):
        self._shared._frame = frame


class SharedFrame:
    """
    One logical stream (raw vision, processed vision, left, right, processed stereo).

    get_lock guards capture writes and processing reads, show_lock guards
    publishing and the output threads. A capture thread never holds show_lock.
    """

    def __init__(self, name: str):
        self.name = name
        self._frame: Optional[np.ndarray] = None
        self.get_lock = threading.Lock()
        self.show_lock = threading.Lock()

    def empty(self) -> bool:
        frame = self._frame
        return frame is None or frame.size == 0

    @contextmanager
    def writing(self) -> Iterator[FrameWriter]:
        """Hold the get lock while capture writes a frame"""
        with self.get_lock:
            yield FrameWriter(self)

    def reading(self, clone: bool = True) -> Optional[np.ndarray]:
        """Copy of the current frame taken under the get lock"""
        with self.get_lock:
            frame = self._frame
            if frame is None:
                return None
            return frame.copy() if clone else frame

    def peek(self) -> Optional[np.ndarray]:
        """Lock-free copy. May observe a frame mid-write."""
        frame = self._frame
        if frame is None:
            return None
        return frame.copy()

    @contextmanager
    def publishing(self) -> Iterator[FrameWriter]:
        """Hold the show lock while a processor writes its annotated frame"""
        with self.show_lock:
            yield FrameWriter(self)

    @contextmanager
    def showing(self) -> Iterator[Optional[np.ndarray]]:
        """Hold the show lock and expose a read-only view for output"""
        with self.show_lock:
            frame = self._frame
            if frame is None:
                yield None
                return
            view = frame.view()
            view.flags.writeable = False
            yield view


class FrameBuffers:
    """The five streams shared between pipeline stages"""

    def __init__(self):
        self.vision = SharedFrame("vision")
        self.left_stereo = SharedFrame("left_stereo")
        self.right_stereo = SharedFrame("right_stereo")
        self.processed_vision = SharedFrame("processed_vision")
        self.processed_stereo = SharedFrame("processed_stereo")


def join_threads(threads: List[threading.Thread], timeout: Optional[float] = None) -> bool:
    """Join threads sharing one deadline. Returns False if any is still alive."""
    deadline = None if timeout is None else time.monotonic() + timeout
    clean = True
    for thread in list(threads):
        if thread.ident is None:
            # Never started, nothing to wait for.
            continue
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        thread.join(remaining)
        if thread.is_alive():
            logger.error(f"Thread {thread.name} did not stop within {timeout}s, abandoning it")
            clean = False
    return clean

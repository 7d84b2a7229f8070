# core/camera_manager.py
"""
Camera capture manager. One grab thread per physical camera feeding the shared buffers.
"""
import cv2
import numpy as np
import threading
import time
from typing import List, Optional, Protocol, Tuple
from loguru import logger

from rov_vision_system.config.settings import (
    CameraConfig, FRAME_GET_TIMEOUT, MANAGEMENT_LOOP_SLEEP,
    VISION_DASHBOARD_ALIAS, LEFT_STEREO_DASHBOARD_ALIAS, RIGHT_STEREO_DASHBOARD_ALIAS,
)
from rov_vision_system.core.frame_buffer import FrameBuffers, SharedFrame, join_threads
from rov_vision_system.exceptions import CameraError
from rov_vision_system.utils.performance import FrameTimer

VISION_FPS_INDEX = 0
LEFT_STEREO_FPS_INDEX = 1
RIGHT_STEREO_FPS_INDEX = 2


class CameraSink(Protocol):
    """Frame provider for one physical camera"""
    name: str

    def grab_frame(self, timeout: float) -> Tuple[int, Optional[np.ndarray]]:
        """Returns (status, frame). Status 0 means no frame was read."""
        ...

    def release(self) -> None:
        ...


class OpenCVCameraSink:
    """USB or network camera read through cv2.VideoCapture"""

    def __init__(self, name: str, path: str, width: int = 640, height: int = 480, fps: int = 30):
        self.name = name
        self.path = path
        source = int(path) if str(path).isdigit() else path
        self.cap = cv2.VideoCapture(source)
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.cap.set(cv2.CAP_PROP_FPS, fps)
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

    @classmethod
    def from_config(cls, config: CameraConfig) -> 'OpenCVCameraSink':
        return cls(config.name, config.path, config.width, config.height, config.fps)

    def is_opened(self) -> bool:
        return self.cap is not None and self.cap.isOpened()

    def grab_frame(self, timeout: float = FRAME_GET_TIMEOUT) -> Tuple[int, Optional[np.ndarray]]:
        ret, frame = self.cap.read()
        if not ret or frame is None:
            return 0, None
        return 1, frame

    def release(self):
        if self.cap is not None:
            self.cap.release()


class VirtualCameraSink(OpenCVCameraSink):
    """Video file played back as a camera, rewound at end of stream"""

    def grab_frame(self, timeout: float = FRAME_GET_TIMEOUT) -> Tuple[int, Optional[np.ndarray]]:
        ret, frame = self.cap.read()
        if not ret:
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ret, frame = self.cap.read()
        if not ret or frame is None:
            return 0, None
        return 1, frame


def open_cameras(configs: List[CameraConfig], virtual: bool = False) -> List[CameraSink]:
    """Open every configured camera, skipping the ones that fail"""
    sink_class = VirtualCameraSink if virtual else OpenCVCameraSink
    sinks = []
    for config in configs:
        sink = sink_class.from_config(config)
        if not sink.is_opened():
            logger.error(f"Failed to open camera '{config.name}' at {config.path}")
            sink.release()
            continue
        logger.info(f"✓ Camera {config.name} started: {config.path}")
        sinks.append(sink)
    return sinks


class FrameSource:
    """Routes camera sinks to the vision and stereo buffers by name alias"""

    def __init__(self, join_timeout: Optional[float] = None):
        self.fps_counters = [FrameTimer() for _ in range(RIGHT_STEREO_FPS_INDEX + 1)]
        self.join_timeout = join_timeout
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._stopped = threading.Event()

    def fps(self, index: int) -> int:
        return self.fps_counters[index].frames_per_second()

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    def start_capture(self, buffers: FrameBuffers, sinks: List[CameraSink]):
        """Spawn grab threads and block until stop() is called"""
        if not sinks:
            logger.warning("No camera sinks given, capture will not start")
            self._stopped.set()
            return

        for sink in sinks:
            try:
                self._start_camera(sink, buffers)
            except Exception as e:
                logger.warning(f"Video data empty or camera not present: {sink.name}: {e}")

        while not self._stop_event.is_set():
            self._stop_event.wait(MANAGEMENT_LOOP_SLEEP)

        join_threads(self._threads, self.join_timeout)
        for sink in sinks:
            sink.release()
        self._stopped.set()
        logger.info("Camera capture stopped")

    def _start_camera(self, sink: CameraSink, buffers: FrameBuffers):
        name = sink.name
        if VISION_DASHBOARD_ALIAS in name:
            if LEFT_STEREO_DASHBOARD_ALIAS in name:
                self._spawn(self._grab_two, sink, buffers.vision, buffers.left_stereo,
                            self.fps_counters[VISION_FPS_INDEX],
                            self.fps_counters[LEFT_STEREO_FPS_INDEX])
            elif RIGHT_STEREO_DASHBOARD_ALIAS in name:
                self._spawn(self._grab_two, sink, buffers.vision, buffers.right_stereo,
                            self.fps_counters[VISION_FPS_INDEX],
                            self.fps_counters[RIGHT_STEREO_FPS_INDEX])
            else:
                self._spawn(self._grab_one, sink, buffers.vision,
                            self.fps_counters[VISION_FPS_INDEX])
        elif LEFT_STEREO_DASHBOARD_ALIAS in name:
            self._spawn(self._grab_one, sink, buffers.left_stereo,
                        self.fps_counters[LEFT_STEREO_FPS_INDEX])
        elif RIGHT_STEREO_DASHBOARD_ALIAS in name:
            self._spawn(self._grab_one, sink, buffers.right_stereo,
                        self.fps_counters[RIGHT_STEREO_FPS_INDEX])
        else:
            logger.warning(f"Camera '{name}' matches no vision or stereo alias, ignoring")

    def _spawn(self, target, sink: CameraSink, *args):
        thread = threading.Thread(target=target, args=(sink, *args),
                                  name=f"capture-{sink.name}", daemon=True)
        thread.start()
        self._threads.append(thread)
        logger.debug(f"Capture thread started for {sink.name}")

    def _read(self, sink: CameraSink) -> np.ndarray:
        status, frame = sink.grab_frame(FRAME_GET_TIMEOUT)
        if status == 0 or frame is None or frame.size == 0:
            raise CameraError(f"Failed to read frame from {sink.name}")
        return frame

    def _grab_one(self, sink: CameraSink, buffer: SharedFrame, timer: FrameTimer):
        """Continuously grab frames into one buffer"""
        while not self._stop_event.is_set():
            try:
                frame = self._read(sink)
                with buffer.writing() as writer:
                    writer.set(frame)
                timer.increment()
            except CameraError as e:
                logger.warning(str(e))
                time.sleep(0.1)
            except Exception as e:
                logger.error(f"Error in capture loop for {sink.name}: {e}")
                time.sleep(0.1)

    def _grab_two(self, sink: CameraSink, primary: SharedFrame, secondary: SharedFrame,
                  primary_timer: FrameTimer, secondary_timer: FrameTimer):
        """Grab once and clone into two buffers. Locks are taken primary first."""
        while not self._stop_event.is_set():
            try:
                frame = self._read(sink)
                with primary.writing() as main_writer, secondary.writing() as second_writer:
                    main_writer.set(frame)
                    second_writer.set(frame.copy())
                primary_timer.increment()
                secondary_timer.increment()
            except CameraError as e:
                logger.warning(str(e))
                time.sleep(0.1)
            except Exception as e:
                logger.error(f"Error in capture loop for {sink.name}: {e}")
                time.sleep(0.1)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal all grab threads and wait for them. Returns False if any is wedged."""
        self._stop_event.set()
        return join_threads(self._threads, timeout)

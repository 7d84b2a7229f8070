# utils/performance.py
import time
import psutil
import numpy as np
from collections import deque
from threading import Lock
from typing import Callable, Dict


class FrameTimer:
    """Rolling one-second iteration counter. Owned by a single thread."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._start_time = clock()
        self._iterations = 0
        self._fps_count = 0

    def increment(self):
        """Count one loop iteration and roll the window once a second has passed"""
        now = self._clock()
        if now - self._start_time >= 1.0:
            # Snapshot the finished second. This iteration opens the next window.
            self._fps_count = self._iterations
            self._iterations = 0
            self._start_time = now

        self._iterations += 1

    def frames_per_second(self) -> int:
        """Iterations counted over the last completed second, 0 before the first"""
        return self._fps_count


class PerformanceMonitor:
    """Monitor processing durations and system load"""

    def __init__(self, window_size: int = 30):
        self.window_size = window_size
        self.cycle_times = deque(maxlen=window_size)
        self.cpu_history = deque(maxlen=window_size)
        self.memory_history = deque(maxlen=window_size)
        self.start_time = time.time()
        self.lock = Lock()

    def log_cycle_time(self, duration: float):
        """Record how long one control cycle took"""
        with self.lock:
            self.cycle_times.append(duration)

    def update_system_stats(self):
        """Update CPU and memory usage"""
        cpu = psutil.cpu_percent()
        memory = psutil.virtual_memory().percent
        with self.lock:
            self.cpu_history.append(cpu)
            self.memory_history.append(memory)

    def get_current_stats(self) -> Dict[str, float]:
        """Get current performance statistics"""
        with self.lock:
            avg_cycle = float(np.mean(self.cycle_times)) if self.cycle_times else 0.0
            return {
                'uptime': time.time() - self.start_time,
                'avg_cycle_time': avg_cycle,
                'cpu_percent': float(np.mean(self.cpu_history)) if self.cpu_history else 0.0,
                'memory_percent': float(np.mean(self.memory_history)) if self.memory_history else 0.0,
            }


def system_info() -> Dict[str, str]:
    """Collect host information for the startup log"""
    import platform

    return {
        'platform': platform.platform(),
        'python': platform.python_version(),
        'cpu_cores': str(psutil.cpu_count()),
        'ram_gb': f"{psutil.virtual_memory().total / (1024 ** 3):.1f}",
    }

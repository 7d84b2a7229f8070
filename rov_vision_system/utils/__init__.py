# utils/__init__.py
"""
Utility modules for the ROV vision system.
Contains frame rate counters and logging setup.
"""

from .performance import FrameTimer, PerformanceMonitor
from .logger import init_logger, get_component_logger, RateLimitedLogger

__version__ = "1.0.0"
__all__ = [
    "FrameTimer",
    "PerformanceMonitor",
    "init_logger",
    "get_component_logger",
    "RateLimitedLogger"
]

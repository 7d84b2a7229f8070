# Root __init__.py for rov_vision_system package
"""
Underwater Robot Vision System
Multi-threaded camera pipeline for an ROV driven from a dashboard.

Features:
- Capture from up to three cameras routed by name to vision and stereo streams
- Trench, line, fish and tape tracking modes switched from the dashboard
- Neural network fish detection on EdgeTPU, Torch or OpenCV DNN
- Tape pose estimation with solvePnP
- Persisted per-mode tuning values
"""

from . import config
from . import core
from . import visualization
from . import utils

__version__ = "1.0.0"
__author__ = "ROV Vision Team"
__description__ = "Underwater Robot Vision System"

__all__ = [
    "config",
    "core",
    "visualization",
    "utils"
]

"""
Configuration module for the ROV vision system.
Handles camera settings, detection models and the persisted tuning file.
"""

from .settings import (
    SystemConfig,
    CameraConfig,
    DetectionConfig,
    TrackingConfig,
    CameraIntrinsics
)

__version__ = "1.0.0"
__all__ = [
    "SystemConfig",
    "CameraConfig",
    "DetectionConfig",
    "TrackingConfig",
    "CameraIntrinsics"
]

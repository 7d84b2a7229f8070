# core/__init__.py
"""
Core processing modules for the ROV vision system.
Contains capture, detection, tracking, stereo and output stages.
"""

from .frame_buffer import SharedFrame, FrameBuffers
from .config_store import ConfigStore, InMemoryConfigStore, PipelineParameters
from .camera_manager import FrameSource, OpenCVCameraSink, VirtualCameraSink
from .detector_engine import DetectionEngine, Detection
from .state_machine import TrackingMode, ModeController, next_state
from .tracker_system import TrackingProcessor, TrackingResult
from .stereo_processor import StereoProcessor
from .frame_sink import FrameSink

__version__ = "1.0.0"
__all__ = [
    "SharedFrame",
    "FrameBuffers",
    "ConfigStore",
    "InMemoryConfigStore",
    "PipelineParameters",
    "FrameSource",
    "OpenCVCameraSink",
    "VirtualCameraSink",
    "DetectionEngine",
    "Detection",
    "TrackingMode",
    "ModeController",
    "next_state",
    "TrackingProcessor",
    "TrackingResult",
    "StereoProcessor",
    "FrameSink"
]

# config/settings.py
"""
Core configuration settings for the ROV vision system
"""
from dataclasses import dataclass, field
from typing import List
import json
import os

import cv2
import numpy as np

from rov_vision_system.exceptions import ConfigurationError

# Camera role aliases matched by substring against camera names.
VISION_DASHBOARD_ALIAS = "vision"
LEFT_STEREO_DASHBOARD_ALIAS = "left_stereo"
RIGHT_STEREO_DASHBOARD_ALIAS = "right_stereo"

# Output stream aliases.
VISION_PROCESSED_STREAM_ALIAS = "vision"
STEREO_PROCESSED_STREAM_ALIAS = "stereo"

FRAME_GET_TIMEOUT = 1.0

SCREEN_WIDTH = 640
SCREEN_HEIGHT = 480

# Thread start staggers and idle sleeps (seconds).
PROCESS_STARTUP_DELAY = 0.8
SHOW_STARTUP_DELAY = 1.0
MANAGEMENT_LOOP_SLEEP = 0.03
CONTROL_LOOP_SLEEP = 0.02

# Image filtering.
BLUR_RADIUS = 3
KERNEL = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))

# Overlay colours, BGR.
DETECTION_COLORS = [(255, 255, 0), (0, 255, 0), (0, 255, 255), (255, 0, 0)]


@dataclass
class CameraConfig:
    """A physical camera entry from the startup config"""
    name: str
    path: str
    width: int = SCREEN_WIDTH
    height: int = SCREEN_HEIGHT
    fps: int = 30


@dataclass
class DetectionConfig:
    """Neural network detection configuration"""
    model_dir: str = "models"
    onnx_model: str = "best.onnx"
    torch_model: str = "best.torchscript"
    tflite_model: str = "best_edgetpu.tflite"
    class_file: str = "classes.txt"
    input_size: int = 640
    confidence_threshold: float = 0.4
    class_score_threshold: float = 0.2
    nms_threshold: float = 0.4
    device: str = "cuda:0"


@dataclass
class TrackingConfig:
    """Tracking algorithm constants"""
    line_splits: int = 8
    trench_min_line_length: int = 50
    screen_width: int = SCREEN_WIDTH
    screen_height: int = SCREEN_HEIGHT


@dataclass
class CameraIntrinsics:
    """Precalibrated camera matrix and distortion coefficients"""
    camera_matrix: np.ndarray = field(default_factory=lambda: np.array([
        [516.5613698781304, 0.0, 320.38297194779585],
        [0.0, 515.9356734667019, 231.73585601568368],
        [0.0, 0.0, 1.0]
    ], dtype=np.float64))
    distortion_coefficients: np.ndarray = field(default_factory=lambda: np.array([
        [-0.0841024904469607, 0.014864043816324026, -0.00013887041018197853,
         -0.0014661216967276468, 0.5671907234987197]
    ], dtype=np.float64))


# Real world reference points of the tracked object, in cm.
OBJECT_REFERENCE_POINTS = np.array([
    [39.50, 0.0, 0.0],
    [29.50, -17.0, 0.0],
    [9.75, -17.0, 0.0],
    [0.0, 0.0, 0.0]
], dtype=np.float64)


@dataclass
class SystemConfig:
    """Main system configuration"""
    team: int = 0
    server: bool = False
    cameras: List[CameraConfig] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)

    # System paths
    tuning_file: str = "trackbar_values.json"
    log_dir: str = "logs"

    def output_names(self) -> List[str]:
        """Configured output streams, or one processed stream per camera"""
        if self.outputs:
            return list(self.outputs)
        return [f"{camera.name}Processed" for camera in self.cameras]

    @classmethod
    def from_dict(cls, data) -> 'SystemConfig':
        """Build configuration from a parsed JSON document"""
        if not isinstance(data, dict):
            raise ConfigurationError("Must be JSON object!")

        try:
            team = int(data["team"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Could not read team number: {e}") from e

        server = False
        if "ntmode" in data:
            mode = str(data["ntmode"]).lower()
            if mode == "server":
                server = True
            elif mode != "client":
                raise ConfigurationError(f"Could not understand ntmode value '{data['ntmode']}'")

        if "cameras" not in data or not isinstance(data["cameras"], list):
            raise ConfigurationError("Could not read cameras")

        cameras = [cls._read_camera(entry) for entry in data["cameras"]]

        detection = DetectionConfig()
        if "model_dir" in data:
            detection.model_dir = str(data["model_dir"])

        config = cls(
            team=team,
            server=server,
            cameras=cameras,
            outputs=[str(name) for name in data.get("outputs", [])],
            detection=detection,
        )
        if "tuning_file" in data:
            config.tuning_file = str(data["tuning_file"])
        if "log_dir" in data:
            config.log_dir = str(data["log_dir"])
        return config

    @staticmethod
    def _read_camera(entry) -> CameraConfig:
        """Read one camera entry"""
        if not isinstance(entry, dict) or "name" not in entry:
            raise ConfigurationError(f"Could not read camera name: {entry!r}")
        name = str(entry["name"])
        if "path" not in entry:
            raise ConfigurationError(f"Camera '{name}': could not read path")

        return CameraConfig(
            name=name,
            path=str(entry["path"]),
            width=int(entry.get("width", SCREEN_WIDTH)),
            height=int(entry.get("height", SCREEN_HEIGHT)),
            fps=int(entry.get("fps", 30)),
        )

    @classmethod
    def load_from_file(cls, filepath: str) -> 'SystemConfig':
        """Load configuration from JSON file"""
        if not os.path.exists(filepath):
            raise ConfigurationError(f"Could not open '{filepath}'")
        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"config error in '{filepath}': {e}") from e
        return cls.from_dict(data)

# core/config_store.py
"""
Dashboard key-value store contract and the pipeline parameter snapshot
"""
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Protocol


class ConfigStore(Protocol):
    """Key-value bus shared with the operator dashboard"""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def put(self, key: str, value: Any) -> None:
        ...


class InMemoryConfigStore:
    """Process-local store. Each get/put is atomic; multi-key reads are not."""

    def __init__(self, initial: Dict[str, Any] = None):
        self._values: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._values.keys())


class Keys:
    """Dashboard key names"""
    WRITE_JSON = "Write JSON"
    RESTART_PROGRAM = "Restart Program"
    CAMERA_SOURCE = "Camera Source"
    TUNING_MODE = "Tuning Mode"
    DRIVING_MODE = "Driving Mode"
    TRENCH_MODE = "Trench Tracking Mode"
    LINE_MODE = "Line Tracking Mode"
    FISH_MODE = "Fish Tracking Mode"
    TAPE_MODE = "Tape Tracking Mode"
    TAKE_SNAPSHOT = "Take Shapshot"
    ENABLE_SOLVEPNP = "Enable SolvePNP"
    ENABLE_STEREO = "Enable StereoVision"
    FORCE_ONNX = "Force ONNX Model"
    X_SETPOINT_OFFSET = "X Setpoint Offset"
    CONTOUR_AREA_MIN = "Contour Area Min Limit"
    CONTOUR_AREA_MAX = "Contour Area Max Limit"
    CENTER_LINE_TOLERANCE = "Center Line Tolerance"
    NN_MIN_CONFIDENCE = "Neural Net Min Confidence"
    HMN = "HMN"
    HMX = "HMX"
    SMN = "SMN"
    SMX = "SMX"
    VMN = "VMN"
    VMX = "VMX"
    TRACKING_RESULTS = "Tracking Results"
    TARGET_CENTER_X = "Target Center X"
    TARGET_WIDTH = "Target Width"
    LINE_IS_VERTICAL = "Line Is Vertical"
    SPNP_VALUES = "SPNP Values"

    STEREO_NUM_DISPARITIES = "Stereo Num Disparities"
    STEREO_MIN_DISPARITY = "Stereo Min Disparity"
    STEREO_BLOCK_SIZE = "Stereo Block Size"
    STEREO_PREFILTER_TYPE = "Stereo PreFilter Type"
    STEREO_PREFILTER_SIZE = "Stereo PreFilter Size"
    STEREO_PREFILTER_CAP = "Stereo PreFilter Cap"
    STEREO_TEXTURE_THRESH = "Stereo TextureThresh"
    STEREO_UNIQUENESS_RATIO = "Stereo Uniqueness Ratio"
    STEREO_SPECKLE_RANGE = "Stereo Speckle Range"
    STEREO_SPECKLE_WINDOW_SIZE = "Stereo Speckle WindowSize"
    STEREO_DISP12_MAX_DIFF = "Stereo Disp12MaxDiff"


DEFAULT_VALUES: Dict[str, Any] = {
    Keys.WRITE_JSON: False,
    Keys.RESTART_PROGRAM: False,
    Keys.CAMERA_SOURCE: False,
    Keys.TUNING_MODE: False,
    Keys.DRIVING_MODE: False,
    Keys.TRENCH_MODE: False,
    Keys.LINE_MODE: False,
    Keys.FISH_MODE: False,
    Keys.TAPE_MODE: False,
    Keys.TAKE_SNAPSHOT: False,
    Keys.ENABLE_SOLVEPNP: False,
    Keys.ENABLE_STEREO: False,
    Keys.FORCE_ONNX: False,
    Keys.X_SETPOINT_OFFSET: 0,
    Keys.CONTOUR_AREA_MIN: 1211,
    Keys.CONTOUR_AREA_MAX: 2000,
    Keys.CENTER_LINE_TOLERANCE: 50,
    Keys.NN_MIN_CONFIDENCE: 0.4,
    Keys.HMN: 48,
    Keys.HMX: 104,
    Keys.SMN: 0,
    Keys.SMX: 128,
    Keys.VMN: 0,
    Keys.VMX: 0,
    Keys.TRACKING_RESULTS: [],
    Keys.STEREO_NUM_DISPARITIES: 18,
    Keys.STEREO_MIN_DISPARITY: 25,
    Keys.STEREO_BLOCK_SIZE: 50,
    Keys.STEREO_PREFILTER_TYPE: 1,
    Keys.STEREO_PREFILTER_SIZE: 25,
    Keys.STEREO_PREFILTER_CAP: 62,
    Keys.STEREO_TEXTURE_THRESH: 100,
    Keys.STEREO_UNIQUENESS_RATIO: 100,
    Keys.STEREO_SPECKLE_RANGE: 100,
    Keys.STEREO_SPECKLE_WINDOW_SIZE: 25,
    Keys.STEREO_DISP12_MAX_DIFF: 25,
}


def populate_defaults(store: ConfigStore):
    """Seed the dashboard with startup values"""
    for key, value in DEFAULT_VALUES.items():
        store.put(key, list(value) if isinstance(value, list) else value)


@dataclass
class PipelineParameters:
    """Tunable values shared by the processing threads"""
    target_center_x: int = 0
    target_center_y: int = 0
    center_line_tolerance: int = 50
    contour_area_min: float = 1211.0
    contour_area_max: float = 2000.0
    hsv_thresholds: List[int] = field(default_factory=lambda: [1, 255, 1, 255, 1, 255])
    confidence_threshold: float = 0.4
    tuning_mode: bool = False
    driving_mode: bool = False
    stereo_enabled: bool = False
    take_snapshot: bool = False
    solve_pnp_enabled: bool = False
    force_onnx: bool = False

    def __post_init__(self):
        self._lock = threading.Lock()

    def refresh(self, store: ConfigStore):
        """Read every tunable from the store. Each key is read individually."""
        values = {
            'center_line_tolerance': int(store.get(Keys.CENTER_LINE_TOLERANCE, 50)),
            'contour_area_min': float(store.get(Keys.CONTOUR_AREA_MIN, 1211.0)),
            'contour_area_max': float(store.get(Keys.CONTOUR_AREA_MAX, 2000.0)),
            'hsv_thresholds': [
                int(store.get(Keys.HMN, 1)),
                int(store.get(Keys.HMX, 255)),
                int(store.get(Keys.SMN, 1)),
                int(store.get(Keys.SMX, 255)),
                int(store.get(Keys.VMN, 1)),
                int(store.get(Keys.VMX, 255)),
            ],
            'confidence_threshold': float(store.get(Keys.NN_MIN_CONFIDENCE, 0.4)),
            'tuning_mode': bool(store.get(Keys.TUNING_MODE, False)),
            'driving_mode': bool(store.get(Keys.DRIVING_MODE, False)),
            'stereo_enabled': bool(store.get(Keys.ENABLE_STEREO, False)),
            'take_snapshot': bool(store.get(Keys.TAKE_SNAPSHOT, False)),
            'solve_pnp_enabled': bool(store.get(Keys.ENABLE_SOLVEPNP, False)),
            'force_onnx': bool(store.get(Keys.FORCE_ONNX, False)),
        }
        with self._lock:
            for name, value in values.items():
                setattr(self, name, value)

    def set_target(self, center_x: int, center_y: int):
        """Store the latest detected target position"""
        with self._lock:
            self.target_center_x = center_x
            self.target_center_y = center_y

    def snapshot(self) -> 'PipelineParameters':
        """Consistent copy for one processing iteration"""
        with self._lock:
            copy = replace(self, hsv_thresholds=list(self.hsv_thresholds))
        return copy

    @property
    def hsv_lower(self):
        return (self.hsv_thresholds[0], self.hsv_thresholds[2], self.hsv_thresholds[4])

    @property
    def hsv_upper(self):
        return (self.hsv_thresholds[1], self.hsv_thresholds[3], self.hsv_thresholds[5])

# config/tuning.py
"""
Persisted tuning parameters, one block per tracking mode plus the stereo block.
The file is read once at boot; the in-memory document is the source of truth
and is only written back on an explicit request.
"""
import copy
import json
import os
import tempfile
import threading
from typing import Dict, List, Tuple

from loguru import logger

from rov_vision_system.core.config_store import ConfigStore, Keys
from rov_vision_system.exceptions import ConfigurationError

STEREO_TUNING_KEY = "STEREO"
TRACKING_TUNING_KEYS = ("TRENCH", "LINE", "FISH", "TAPE")

# (file key, dashboard key, default)
TRACKING_FIELDS: List[Tuple[str, str, int]] = [
    ("ContourAreaMinLimit", Keys.CONTOUR_AREA_MIN, 1211),
    ("ContourAreaMaxLimit", Keys.CONTOUR_AREA_MAX, 2000),
    ("HMN", Keys.HMN, 48),
    ("HMX", Keys.HMX, 104),
    ("SMN", Keys.SMN, 0),
    ("SMX", Keys.SMX, 128),
    ("VMN", Keys.VMN, 0),
    ("VMX", Keys.VMX, 0),
]

STEREO_FIELDS: List[Tuple[str, str, int]] = [
    ("NumDisparities", Keys.STEREO_NUM_DISPARITIES, 18),
    ("MinDisparities", Keys.STEREO_MIN_DISPARITY, 25),
    ("BlockSize", Keys.STEREO_BLOCK_SIZE, 50),
    ("PreFilterType", Keys.STEREO_PREFILTER_TYPE, 1),
    ("PreFilterSize", Keys.STEREO_PREFILTER_SIZE, 25),
    ("PreFilterCap", Keys.STEREO_PREFILTER_CAP, 62),
    ("TextureThresh", Keys.STEREO_TEXTURE_THRESH, 100),
    ("UniquenessRatio", Keys.STEREO_UNIQUENESS_RATIO, 100),
    ("SpeckleRange", Keys.STEREO_SPECKLE_RANGE, 100),
    ("SpeckleWindowSize", Keys.STEREO_SPECKLE_WINDOW_SIZE, 25),
    ("Disp12MaxDiff", Keys.STEREO_DISP12_MAX_DIFF, 25),
]


def _fields_for(mode_key: str) -> List[Tuple[str, str, int]]:
    if mode_key == STEREO_TUNING_KEY:
        return STEREO_FIELDS
    if mode_key in TRACKING_TUNING_KEYS:
        return TRACKING_FIELDS
    raise KeyError(f"Unknown tuning block '{mode_key}'")


def default_document() -> Dict[str, Dict[str, int]]:
    """Tuning document populated with built-in defaults"""
    document = {key: {name: default for name, _, default in TRACKING_FIELDS}
                for key in TRACKING_TUNING_KEYS}
    document[STEREO_TUNING_KEY] = {name: default for name, _, default in STEREO_FIELDS}
    return document


def _as_number(value):
    """Keep integral values as int so the file round-trips exactly"""
    number = float(value)
    if number.is_integer():
        return int(number)
    return number


class TuningStore:
    """In-memory tuning document with wholesale flush to disk"""

    def __init__(self, path: str, document: Dict[str, Dict[str, float]] = None):
        self.path = path
        self.document = document if document is not None else default_document()
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: str) -> 'TuningStore':
        """Read the tuning file once at startup"""
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Unable to find, open, or load tuning JSON file at {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Tuning file {path} must contain a JSON object")

        document = default_document()
        for mode_key, block in document.items():
            loaded = data.get(mode_key)
            if not isinstance(loaded, dict):
                logger.warning(f"Tuning file has no '{mode_key}' block, using defaults")
                continue
            for name in block:
                if name in loaded:
                    block[name] = _as_number(loaded[name])

        logger.info(f"✓ Tuning values loaded from {path}")
        return cls(path, document)

    def values(self, mode_key: str) -> Dict[str, float]:
        with self._lock:
            return dict(self.document[mode_key])

    def apply_to_store(self, store: ConfigStore, mode_key: str = STEREO_TUNING_KEY):
        """Push one block's values onto the dashboard"""
        fields = _fields_for(mode_key)
        with self._lock:
            block = dict(self.document[mode_key])
        for name, store_key, _ in fields:
            store.put(store_key, block[name])

    def capture_from_store(self, store: ConfigStore, mode_key: str = STEREO_TUNING_KEY):
        """Pull current dashboard values into one block"""
        fields = _fields_for(mode_key)
        captured = {name: _as_number(store.get(store_key, default))
                    for name, store_key, default in fields}
        with self._lock:
            self.document[mode_key].update(captured)

    def to_json(self) -> str:
        with self._lock:
            return json.dumps(copy.deepcopy(self.document), indent=4)

    def flush(self):
        """Rewrite the whole tuning file"""
        output = self.to_json()
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(output)
            os.replace(temp_path, self.path)
        except OSError:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

        logger.info(f"Tuning values written to {self.path}")
        logger.debug(f"JSON Data: {output}")

# core/state_machine.py
"""
Tracking mode selection driven by dashboard request flags
"""
import threading
from enum import IntEnum
from typing import Mapping

from loguru import logger

from rov_vision_system.config.tuning import TuningStore
from rov_vision_system.core.config_store import ConfigStore, Keys


class TrackingMode(IntEnum):
    TRENCH = 0
    LINE = 1
    FISH = 2
    TAPE = 3

    @property
    def request_key(self) -> str:
        """Dashboard flag that requests this mode"""
        return _REQUEST_KEYS[self]

    @property
    def tuning_key(self) -> str:
        """Block name in the tuning file"""
        return self.name


_REQUEST_KEYS = {
    TrackingMode.TRENCH: Keys.TRENCH_MODE,
    TrackingMode.LINE: Keys.LINE_MODE,
    TrackingMode.FISH: Keys.FISH_MODE,
    TrackingMode.TAPE: Keys.TAPE_MODE,
}


def next_state(current: TrackingMode, flags: Mapping[TrackingMode, bool]) -> TrackingMode:
    """
    The first requested mode other than the current one wins, in enum order.
    The current mode's own flag is ignored since the controller re-asserts it
    every cycle. With no other request the current mode holds.
    """
    for mode in TrackingMode:
        if mode != current and flags.get(mode, False):
            return mode
    return current


class ModeController:
    """Owns the active mode and swaps tuning values on transitions"""

    def __init__(self, initial: TrackingMode = TrackingMode.LINE):
        self._mode = initial
        self._lock = threading.Lock()
        self.values_loaded = False

    @property
    def mode(self) -> TrackingMode:
        with self._lock:
            return self._mode

    def read_flags(self, store: ConfigStore):
        return {mode: bool(store.get(mode.request_key, False)) for mode in TrackingMode}

    def step(self, store: ConfigStore, tuning: TuningStore) -> TrackingMode:
        """Advance one control cycle. Returns the mode now active."""
        current = self.mode
        target = next_state(current, self.read_flags(store))

        if target != current:
            store.put(current.request_key, False)
            tuning.capture_from_store(store, current.tuning_key)
            with self._lock:
                self._mode = target
            self.values_loaded = False
            logger.info(f"Tracking mode {current.name} -> {target.name}")
            return target

        store.put(current.request_key, True)
        if not self.values_loaded:
            tuning.apply_to_store(store, current.tuning_key)
            self.values_loaded = True
        return current

# shared_store.py
import copy
import math
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import config
from models import MONITORING_IDS, ControlKind

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def default_controls() -> Dict[str, Dict[int, Any]]:
    return {
        "pushButtons": {i: False for i in config.PUSH_BUTTON_IDS},
        "toggles": {i: False for i in config.TOGGLE_IDS},
        "sliders": {i: config.DEFAULT_SLIDER_VALUE for i in config.SLIDER_IDS},
    }


def default_monitoring() -> Dict[str, Dict[int, Any]]:
    return {
        "indicators": {i: False for i in config.INDICATOR_IDS},
        "gauges": {i: 0 for i in config.GAUGE_IDS},
        "variables": {i: 0.0 for i in config.VARIABLE_IDS},
    }


def _valid_control_value(kind: ControlKind, value: Any) -> bool:
    if kind is ControlKind.SLIDER:
        return (
            isinstance(value, int)
            and not isinstance(value, bool)
            and config.SLIDER_MIN <= value <= config.SLIDER_MAX
        )
    return isinstance(value, bool)


def _coerce_monitoring_value(section: str, value: Any):
    """Return the stored form of a monitoring value, or None if it is out of domain."""
    if section == "indicators":
        return value if isinstance(value, bool) else None
    if isinstance(value, bool):
        return None
    if section == "gauges":
        if isinstance(value, int) and config.GAUGE_MIN <= value <= config.GAUGE_MAX:
            return value
        return None
    # NaN/Infinity would be written as invalid JSON to every client
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    return None


class StateStore:
    """Owns the control/monitoring image of the device.

    Every read returns a copy and every mutation runs under one lock, so a
    reader never sees a half-merged patch.
    """

    def __init__(self, clock=_now_ms):
        self._clock = clock
        self._lock = threading.RLock()
        self._controls = default_controls()
        self._monitoring = default_monitoring()
        self._last_update = self._clock()

    def _touch(self) -> int:
        # lastUpdate must strictly increase even if two mutations share a millisecond
        self._last_update = max(self._clock(), self._last_update + 1)
        return self._last_update

    @property
    def last_update(self) -> int:
        with self._lock:
            return self._last_update

    def get_controls(self) -> Dict[str, Dict[int, Any]]:
        with self._lock:
            return copy.deepcopy(self._controls)

    def get_monitoring(self) -> Dict[str, Dict[int, Any]]:
        with self._lock:
            return copy.deepcopy(self._monitoring)

    def snapshot(self) -> Tuple[Dict, Dict, int]:
        with self._lock:
            return copy.deepcopy(self._controls), copy.deepcopy(self._monitoring), self._last_update

    def apply_control_change(self, kind, control_id: int, value: Any) -> Optional[int]:
        """Set one control. Returns the new lastUpdate, or None if the change was ignored."""
        try:
            kind = ControlKind(kind)
        except ValueError:
            logger.warning(f"Ignoring control change of unknown type {kind!r}")
            return None
        if control_id not in kind.ids:
            logger.warning(f"Ignoring {kind.value} change for unknown id {control_id!r}")
            return None
        if not _valid_control_value(kind, value):
            logger.warning(f"Ignoring {kind.value} {control_id} change with invalid value {value!r}")
            return None

        with self._lock:
            self._controls[kind.section][control_id] = value
            return self._touch()

    def apply_monitoring_patch(self, indicators=None, gauges=None, variables=None) -> Dict[str, Dict[int, Any]]:
        """Merge the given keys into MonitoringState and return the full result."""
        patch = {"indicators": indicators, "gauges": gauges, "variables": variables}
        accepted = {}
        for section, values in patch.items():
            if not values:
                continue
            accepted[section] = {}
            for key, value in values.items():
                try:
                    reading_id = int(key)
                except (TypeError, ValueError):
                    reading_id = None
                stored = _coerce_monitoring_value(section, value)
                if reading_id not in MONITORING_IDS[section] or stored is None:
                    logger.warning(f"Ignoring {section} reading {key!r}={value!r}")
                    continue
                accepted[section][reading_id] = stored

        with self._lock:
            for section, values in accepted.items():
                self._monitoring[section].update(values)
            self._touch()
            return copy.deepcopy(self._monitoring)

    def replace_monitoring(self, state: Dict[str, Dict[int, Any]]) -> Dict[str, Dict[int, Any]]:
        """Overwrite MonitoringState entirely; every section and id must be present."""
        fresh = default_monitoring()
        for section, ids in MONITORING_IDS.items():
            for reading_id in ids:
                fresh[section][reading_id] = state[section][reading_id]
        with self._lock:
            self._monitoring = fresh
            self._touch()
            return copy.deepcopy(self._monitoring)

    def reset(self):
        with self._lock:
            self._controls = default_controls()
            self._monitoring = default_monitoring()
            self._touch()


# Global store instance
STORE = StateStore()

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, StrictBool, StrictInt, confloat, conint

import config


class ControlKind(str, Enum):
    PUSH_BUTTON = "pushButton"
    TOGGLE = "toggle"
    SLIDER = "slider"

    @property
    def section(self) -> str:
        return _CONTROL_SECTIONS[self]

    @property
    def ids(self):
        return _CONTROL_IDS[self]


_CONTROL_SECTIONS = {
    ControlKind.PUSH_BUTTON: "pushButtons",
    ControlKind.TOGGLE: "toggles",
    ControlKind.SLIDER: "sliders",
}

_CONTROL_IDS = {
    ControlKind.PUSH_BUTTON: config.PUSH_BUTTON_IDS,
    ControlKind.TOGGLE: config.TOGGLE_IDS,
    ControlKind.SLIDER: config.SLIDER_IDS,
}

MONITORING_IDS = {
    "indicators": config.INDICATOR_IDS,
    "gauges": config.GAUGE_IDS,
    "variables": config.VARIABLE_IDS,
}


# Pydantic models for inbound payloads
class ControlEvent(BaseModel):
    type: ControlKind
    id: StrictInt
    value: Union[StrictBool, StrictInt]
    timestamp: Optional[float] = None  # sender's clock, audit only


class MonitoringPatch(BaseModel):
    indicators: Optional[Dict[int, bool]] = None
    gauges: Optional[Dict[int, conint(ge=config.GAUGE_MIN, le=config.GAUGE_MAX)]] = None
    variables: Optional[Dict[int, confloat(allow_inf_nan=False)]] = None

    def sections(self) -> Dict[str, Dict[int, Any]]:
        return self.model_dump(exclude_none=True)

"""
Device twin state management.
"""

from climate_twin.state.twin_state import (
    FANSTATE_KEY,
    HUMIDITY_KEY,
    MAX_HUMIDITY,
    TEMPERATURE_KEY,
    DeviceTwin,
    FanState,
    TwinState,
)

__all__ = [
    "DeviceTwin",
    "FanState",
    "TwinState",
    "FANSTATE_KEY",
    "HUMIDITY_KEY",
    "MAX_HUMIDITY",
    "TEMPERATURE_KEY",
]

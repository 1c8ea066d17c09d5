"""
Device behaviour: desired-state synchronisation and telemetry.
"""

from climate_twin.devices.state_sync import (
    FieldValidationError,
    StateSyncHandler,
    parse_fan_state,
    parse_setpoint,
)
from climate_twin.devices.telemetry_loop import (
    TelemetryLoop,
    TelemetrySettings,
    build_telemetry_event,
)

__all__ = [
    "FieldValidationError",
    "StateSyncHandler",
    "TelemetryLoop",
    "TelemetrySettings",
    "build_telemetry_event",
    "parse_fan_state",
    "parse_setpoint",
]

# climate_twin/state/twin_state.py
"""
Shared device twin state.

Holds the control setpoints, actuator state and simulated readings of the
device. Both the desired-state handler and the telemetry loop work on the
same record, so every access goes through the DeviceTwin lock.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

# Twin document keys (wire names)
FANSTATE_KEY = "fanstate"
TEMPERATURE_KEY = "temperature"
HUMIDITY_KEY = "humidity"

# Relative humidity never exceeds saturation
MAX_HUMIDITY = 100.0


class FanState(Enum):
    """Fan actuator state. FAILED is terminal for the session."""

    OFF = "off"
    ON = "on"
    FAILED = "failed"


@dataclass
class TwinState:
    """Mutable twin record.

    Attributes:
        fan_state: Current fan state
        desired_temperature: Temperature setpoint
        desired_humidity: Humidity setpoint
        current_temperature: Simulated temperature, written by the physics tick
        current_humidity: Simulated humidity, written by the physics tick
    """

    fan_state: FanState = FanState.OFF
    desired_temperature: float = 60.0
    desired_humidity: float = 79.0
    current_temperature: float = 70.0
    current_humidity: float = 99.0

    @classmethod
    def from_ambient(
        cls,
        ambient_temperature: float,
        ambient_humidity: float,
        max_humidity: float = MAX_HUMIDITY,
    ) -> "TwinState":
        """Create the start-of-session record for the given ambient conditions.

        The seeded humidity reading is clamped to max_humidity.
        """
        return cls(
            fan_state=FanState.OFF,
            desired_temperature=ambient_temperature - 10,
            desired_humidity=ambient_humidity - 20,
            current_temperature=ambient_temperature,
            current_humidity=min(ambient_humidity, max_humidity),
        )

    def reported_document(self) -> dict[str, Any]:
        """Build the reported-state document for the hub."""
        return {
            FANSTATE_KEY: self.fan_state.value,
            HUMIDITY_KEY: self.desired_humidity,
            TEMPERATURE_KEY: self.desired_temperature,
        }


class DeviceTwin:
    """
    Owner of the single TwinState of a device session.

    All reads and writes are serialised by one asyncio lock, so a telemetry
    tick never observes a half-applied desired-state patch.

    Example:
        >>> twin = DeviceTwin(TwinState())
        >>> async with twin.locked() as state:
        ...     state.desired_temperature = 65.0
        >>> snapshot = await twin.snapshot()
    """

    def __init__(self, state: TwinState | None = None):
        self._state = state or TwinState()
        self._lock = asyncio.Lock()

        self.created_at = datetime.now()
        self.last_update: datetime | None = None
        self.tick_count = 0
        self.patch_count = 0

    @asynccontextmanager
    async def locked(self) -> AsyncIterator[TwinState]:
        """Hold the twin lock and yield the mutable record."""
        async with self._lock:
            yield self._state
            self.last_update = datetime.now()

    async def snapshot(self) -> TwinState:
        """Return a copy of the record taken under the lock."""
        async with self._lock:
            return replace(self._state)

    async def record_tick(self) -> None:
        """Count one telemetry tick."""
        async with self._lock:
            self.tick_count += 1

    async def record_patch(self) -> None:
        """Count one desired-state patch."""
        async with self._lock:
            self.patch_count += 1

    def is_locked(self) -> bool:
        return self._lock.locked()

    async def get_summary(self) -> dict[str, Any]:
        """Get a status summary of the twin.

        Returns:
            Dictionary with the current state and counters
        """
        async with self._lock:
            return {
                "fan_state": self._state.fan_state.value,
                "desired_temperature": self._state.desired_temperature,
                "desired_humidity": self._state.desired_humidity,
                "current_temperature": round(self._state.current_temperature, 2),
                "current_humidity": round(self._state.current_humidity, 2),
                "ticks": self.tick_count,
                "patches": self.patch_count,
                "last_update": (
                    self.last_update.isoformat() if self.last_update else None
                ),
            }

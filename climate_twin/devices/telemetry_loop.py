# climate_twin/devices/telemetry_loop.py
"""
Periodic telemetry for the climate twin device.

Each tick advances the climate physics, writes the new readings (and a fan
failure, if one happened) back into the twin, and publishes one telemetry
event with alert attributes derived from the post-tick state.
"""

import asyncio
import json
import random
from dataclasses import dataclass
from typing import Any

from climate_twin.logging_system import (
    AlarmPriority,
    AlarmState,
    DeviceLogger,
    get_logger,
)
from climate_twin.physics.climate_physics import ClimatePhysics
from climate_twin.protocols.device_session import DeviceSession, TelemetryEvent
from climate_twin.state.twin_state import (
    HUMIDITY_KEY,
    TEMPERATURE_KEY,
    DeviceTwin,
    FanState,
    TwinState,
)

__all__ = ["TelemetryLoop", "TelemetrySettings", "build_telemetry_event"]

SENSOR_ID_PROPERTY = "sensorID"
FAN_ALERT_PROPERTY = "fanAlert"
TEMPERATURE_ALERT_PROPERTY = "temperatureAlert"
HUMIDITY_ALERT_PROPERTY = "humidityAlert"


@dataclass
class TelemetrySettings:
    """Telemetry loop settings.

    Attributes:
        sensor_id: Sensor identifier attached to every event
        interval_seconds: Delay between ticks
        temperature_alert_limit: Allowed distance from the temperature setpoint
        humidity_alert_limit: Allowed distance from the humidity setpoint
    """

    sensor_id: str = "S1"
    interval_seconds: float = 5.0
    temperature_alert_limit: float = 5.0
    humidity_alert_limit: float = 10.0


def build_telemetry_event(state: TwinState, settings: TelemetrySettings) -> TelemetryEvent:
    """Serialise the readings and derive the alert attributes.

    Alert attributes are only present when raised; fanAlert is always sent.
    """
    body = json.dumps(
        {
            TEMPERATURE_KEY: round(state.current_temperature, 2),
            HUMIDITY_KEY: round(state.current_humidity, 2),
        }
    )

    properties = {
        SENSOR_ID_PROPERTY: settings.sensor_id,
        FAN_ALERT_PROPERTY: "true" if state.fan_state == FanState.FAILED else "false",
    }
    temperature_error = abs(state.current_temperature - state.desired_temperature)
    if temperature_error > settings.temperature_alert_limit:
        properties[TEMPERATURE_ALERT_PROPERTY] = "true"
    humidity_error = abs(state.current_humidity - state.desired_humidity)
    if humidity_error > settings.humidity_alert_limit:
        properties[HUMIDITY_ALERT_PROPERTY] = "true"

    return TelemetryEvent(body=body, properties=properties)


class TelemetryLoop:
    """
    Drives the climate physics and publishes telemetry on a fixed cadence.

    The loop never ends on its own: it runs until the task is cancelled or
    the session raises a TransportError.

    Example:
        >>> loop = TelemetryLoop(twin, session, ClimatePhysics(), TelemetrySettings())
        >>> task = asyncio.create_task(loop.run())
        >>> ...
        >>> task.cancel()
    """

    def __init__(
        self,
        twin: DeviceTwin,
        session: DeviceSession,
        physics: ClimatePhysics,
        settings: TelemetrySettings | None = None,
        rng: random.Random | None = None,
        device_name: str = "",
    ):
        self.twin = twin
        self.session = session
        self.physics = physics
        self.settings = settings or TelemetrySettings()
        self.rng = rng or random.Random()
        self.device_name = device_name

        if self.settings.interval_seconds <= 0:
            raise ValueError(
                f"interval_seconds must be positive, got {self.settings.interval_seconds}"
            )

        self.ticks = 0
        self.events_published = 0
        self.last_event: TelemetryEvent | None = None
        self._active_alerts: set[str] = set()

        self.logger: DeviceLogger = get_logger(
            self.__class__.__name__, device=device_name
        )

    # ----------------------------------------------------------------
    # Loop
    # ----------------------------------------------------------------

    async def run(self) -> None:
        """Tick forever; publish, then wait one interval.

        Raises:
            TransportError: If a publish fails
        """
        self.logger.info(
            f"Start sending device telemetry every {self.settings.interval_seconds}s"
        )
        try:
            while True:
                await self.tick()
                await asyncio.sleep(self.settings.interval_seconds)
        except asyncio.CancelledError:
            self.logger.info(f"Telemetry stopped after {self.events_published} events")
            raise

    async def tick(self) -> TelemetryEvent:
        """Advance the physics once and publish one event.

        Returns:
            The published event
        """
        async with self.twin.locked() as state:
            step = self.physics.advance(state, self.rng)
            state.current_temperature = step.temperature
            state.current_humidity = step.humidity
            if step.fan_failed and state.fan_state == FanState.ON:
                state.fan_state = FanState.FAILED
            event = build_telemetry_event(state, self.settings)

        self.ticks += 1
        await self.twin.record_tick()

        if step.fan_failed:
            await self.logger.log_alarm(
                "Fan has failed", priority=AlarmPriority.HIGH, component="fan"
            )
        await self._track_alerts(event)

        self.logger.debug(f"Message data: {event.body} {event.properties}")
        await self.session.publish(event)
        self.events_published += 1
        self.last_event = event
        self.logger.info("Message sent")

        return event

    async def _track_alerts(self, event: TelemetryEvent) -> None:
        """Log an alarm when a reading alert is raised or cleared."""
        for name in (TEMPERATURE_ALERT_PROPERTY, HUMIDITY_ALERT_PROPERTY):
            raised = name in event.properties
            if raised and name not in self._active_alerts:
                self._active_alerts.add(name)
                await self.logger.log_alarm(
                    f"{name} raised: {event.body}", priority=AlarmPriority.MEDIUM
                )
            elif not raised and name in self._active_alerts:
                self._active_alerts.discard(name)
                await self.logger.log_alarm(
                    f"{name} cleared: {event.body}",
                    priority=AlarmPriority.MEDIUM,
                    state=AlarmState.CLEARED,
                )

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "ticks": self.ticks,
            "events_published": self.events_published,
            "interval_seconds": self.settings.interval_seconds,
            "active_alerts": sorted(self._active_alerts),
            "last_event": (
                {"body": self.last_event.body, "properties": self.last_event.properties}
                if self.last_event
                else None
            ),
        }

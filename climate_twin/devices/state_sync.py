# climate_twin/devices/state_sync.py
"""
Desired-state synchronisation for the climate twin device.

Applies desired-state patches pushed by the hub (and the desired portion of
the initial twin) to the shared twin record, then echoes the resulting
reported-state document back to the hub.

Each recognised field is validated on its own: a bad value is dropped and
logged, the remaining fields of the same patch still apply, and a report is
published for every patch regardless.
"""

import asyncio
import math
from collections.abc import Mapping
from typing import Any

from climate_twin.logging_system import DeviceLogger, get_logger
from climate_twin.protocols.device_session import DeviceSession
from climate_twin.state.twin_state import (
    FANSTATE_KEY,
    HUMIDITY_KEY,
    TEMPERATURE_KEY,
    DeviceTwin,
    FanState,
    TwinState,
)

__all__ = [
    "FieldValidationError",
    "StateSyncHandler",
    "parse_fan_state",
    "parse_setpoint",
]

VERSION_KEY = "$version"

_SETTABLE_FAN_STATES = {FanState.ON.value: FanState.ON, FanState.OFF.value: FanState.OFF}


class FieldValidationError(ValueError):
    """A single desired-state field could not be parsed."""

    def __init__(self, field_name: str, value: Any):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Illegal {field_name} received: {value!r}")


def parse_fan_state(value: Any) -> FanState:
    """Parse a desired fan state ("on"/"off", any case).

    Raises:
        FieldValidationError: For anything else, including "failed"
    """
    if not isinstance(value, str):
        raise FieldValidationError(FANSTATE_KEY, value)
    fan_state = _SETTABLE_FAN_STATES.get(value.lower())
    if fan_state is None:
        raise FieldValidationError(FANSTATE_KEY, value)
    return fan_state


def parse_setpoint(field_name: str, value: Any) -> float:
    """Parse a temperature/humidity setpoint sent as a string or JSON number.

    Raises:
        FieldValidationError: If the value is not a finite real number
    """
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise FieldValidationError(field_name, value)
    try:
        number = float(value)
    except ValueError as e:
        raise FieldValidationError(field_name, value) from e
    if not math.isfinite(number):
        raise FieldValidationError(field_name, value)
    return number


class StateSyncHandler:
    """
    Validates and applies desired-state patches.

    Invocations are serialised so reports leave in the order the patches
    were applied. Exactly one report is published per invocation.

    Example:
        >>> handler = StateSyncHandler(twin, session, device_name="cave-1")
        >>> session.subscribe_desired_changes(handler.on_desired_change)
        >>> await handler.on_desired_change({"fanstate": "on", "temperature": "65"})
        {'fanstate': 'on', 'humidity': 79.0, 'temperature': 65.0}
    """

    def __init__(self, twin: DeviceTwin, session: DeviceSession, device_name: str = ""):
        self.twin = twin
        self.session = session
        self.device_name = device_name

        self._serial_lock = asyncio.Lock()
        self._last_version: int | None = None
        self._field_versions: dict[str, int] = {}

        self.patches_received = 0
        self.reports_published = 0
        self.fields_rejected = 0
        self.last_report: dict[str, Any] | None = None

        self.logger: DeviceLogger = get_logger(
            self.__class__.__name__, device=device_name
        )

    # ----------------------------------------------------------------
    # Patch handling
    # ----------------------------------------------------------------

    async def on_desired_change(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Apply a desired-state patch and publish the reported state.

        A versioned document only overwrites the keys it is at least as new
        as, so the initial twin snapshot still fills in every key a racing
        patch did not touch.

        Args:
            patch: Desired properties (patch or full desired document)

        Returns:
            The reported-state document that was published

        Raises:
            TransportError: If the report cannot be published
        """
        async with self._serial_lock:
            self.patches_received += 1
            self.logger.info(f"Desired twin property changed: {dict(patch)}")

            version = self._document_version(patch)
            accepted: list[tuple[str, Any]] = []
            async with self.twin.locked() as state:
                self._apply(state, patch, version, accepted)
                report = state.reported_document()

            await self.twin.record_patch()

            for field_name, value in accepted:
                await self.logger.log_audit(
                    f"Set {field_name} to {value}", field_name=field_name, value=value
                )

            await self.session.report_state(report)
            self.reports_published += 1
            self.last_report = report
            self.logger.info(f"Reported twin properties: {report}")

            return report

    def _document_version(self, patch: Mapping[str, Any]) -> int | None:
        version = patch.get(VERSION_KEY)
        if isinstance(version, bool) or not isinstance(version, int):
            return None
        if self._last_version is None or version > self._last_version:
            self._last_version = version
        return version

    def _claim(self, field_name: str, version: int | None) -> bool:
        """Record that a document of this version writes the field.

        Returns False if a newer document already wrote it.
        """
        if version is None:
            return True
        written_at = self._field_versions.get(field_name)
        if written_at is not None and version < written_at:
            self.logger.warning(
                f"Ignoring {field_name} from desired properties v{version}, "
                f"already at v{written_at}"
            )
            return False
        self._field_versions[field_name] = version
        return True

    def _apply(
        self,
        state: TwinState,
        patch: Mapping[str, Any],
        version: int | None,
        accepted: list[tuple[str, Any]],
    ) -> None:
        """Apply every recognised field of the patch. Caller holds the twin lock."""
        if FANSTATE_KEY in patch and self._claim(FANSTATE_KEY, version):
            if state.fan_state == FanState.FAILED:
                self.logger.warning(
                    f"Fan has failed, ignoring fanstate {patch[FANSTATE_KEY]!r}"
                )
            else:
                try:
                    state.fan_state = parse_fan_state(patch[FANSTATE_KEY])
                    accepted.append((FANSTATE_KEY, state.fan_state.value))
                except FieldValidationError as e:
                    self._reject(e)

        if TEMPERATURE_KEY in patch and self._claim(TEMPERATURE_KEY, version):
            try:
                state.desired_temperature = parse_setpoint(
                    TEMPERATURE_KEY, patch[TEMPERATURE_KEY]
                )
                accepted.append((TEMPERATURE_KEY, state.desired_temperature))
            except FieldValidationError as e:
                self._reject(e)

        if HUMIDITY_KEY in patch and self._claim(HUMIDITY_KEY, version):
            try:
                state.desired_humidity = parse_setpoint(
                    HUMIDITY_KEY, patch[HUMIDITY_KEY]
                )
                accepted.append((HUMIDITY_KEY, state.desired_humidity))
            except FieldValidationError as e:
                self._reject(e)

    def _reject(self, error: FieldValidationError) -> None:
        self.fields_rejected += 1
        self.logger.warning(str(error))

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "patches_received": self.patches_received,
            "reports_published": self.reports_published,
            "fields_rejected": self.fields_rejected,
            "last_version": self._last_version,
            "last_report": self.last_report,
        }

#!/usr/bin/env python3
"""
In-memory loopback hub.

- Stands in for the provisioning service and the telemetry hub
- Keeps a versioned desired document, the reported document and every
  published telemetry event
- push_desired() drives the device the way a cloud-side twin edit would
- Failure switches for registration and publishing

Used for local runs without cloud credentials and by the test suite.
"""

import copy
from collections.abc import Mapping
from typing import Any

from climate_twin.logging_system import get_logger
from climate_twin.protocols.device_session import (
    ASSIGNED,
    DesiredChangeHandler,
    DeviceSession,
    Provisioner,
    RegistrationRejected,
    RegistrationResult,
    TelemetryEvent,
    TransportError,
    TwinDocument,
)

VERSION_KEY = "$version"


class LoopbackHub:
    """Hub side of the loopback transport."""

    def __init__(
        self,
        hostname: str = "loopback.local",
        initial_desired: Mapping[str, Any] | None = None,
        registration_status: str = ASSIGNED,
    ):
        self.hostname = hostname
        self.registration_status = registration_status

        self.desired: dict[str, Any] = dict(initial_desired or {})
        self.desired[VERSION_KEY] = 1
        self.reported: dict[str, Any] = {}

        self.events: list[TelemetryEvent] = []
        self.reports: list[dict[str, Any]] = []
        self.sessions: list["LoopbackSession"] = []

        # Failure switches
        self.fail_publish = False
        self.fail_report = False
        self.fail_connect = False
        self.fail_close = False

        self.logger = get_logger(self.__class__.__name__, device=hostname)

    # ------------------------------------------------------------
    # cloud-side actions
    # ------------------------------------------------------------

    async def push_desired(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        """
        Apply a desired-state patch and notify every open session.

        Returns:
            The patch as delivered to devices (with its $version)
        """
        self.desired.update(patch)
        self.desired[VERSION_KEY] += 1

        delivered = dict(patch)
        delivered[VERSION_KEY] = self.desired[VERSION_KEY]

        self.logger.debug(f"Desired patch v{delivered[VERSION_KEY]}: {dict(patch)}")

        for session in list(self.sessions):
            await session.deliver(delivered)

        return delivered

    # ------------------------------------------------------------
    # device-side primitives
    # ------------------------------------------------------------

    def twin(self) -> TwinDocument:
        return TwinDocument(
            desired=copy.deepcopy(self.desired),
            reported=copy.deepcopy(self.reported),
        )

    def record_report(self, document: Mapping[str, Any]) -> None:
        if self.fail_report:
            raise TransportError("Loopback hub rejected reported properties")
        snapshot = dict(document)
        self.reported.update(snapshot)
        self.reports.append(snapshot)

    def record_event(self, event: TelemetryEvent) -> None:
        if self.fail_publish:
            raise TransportError("Loopback hub rejected telemetry message")
        self.events.append(event)


class LoopbackSession(DeviceSession):
    """Device session bound to a LoopbackHub."""

    def __init__(self, hub: LoopbackHub, device_id: str):
        super().__init__(device_id)
        self.hub = hub
        self._handlers: list[DesiredChangeHandler] = []

    # ------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------

    async def connect(self) -> None:
        if self.hub.fail_connect:
            raise TransportError(f"Cannot connect to {self.hub.hostname}")
        self.hub.sessions.append(self)
        self.connected = True

    async def close(self) -> None:
        if self in self.hub.sessions:
            self.hub.sessions.remove(self)
        self._handlers.clear()
        self.connected = False
        if self.hub.fail_close:
            raise TransportError(f"Error closing connection to {self.hub.hostname}")

    # ------------------------------------------------------------
    # twin and telemetry
    # ------------------------------------------------------------

    async def get_twin(self) -> TwinDocument:
        self._ensure_connected()
        return self.hub.twin()

    def subscribe_desired_changes(self, handler: DesiredChangeHandler) -> None:
        self._handlers.append(handler)

    async def report_state(self, document: Mapping[str, Any]) -> None:
        self._ensure_connected()
        self.hub.record_report(document)

    async def publish(self, event: TelemetryEvent) -> None:
        self._ensure_connected()
        self.hub.record_event(event)

    async def deliver(self, patch: Mapping[str, Any]) -> None:
        """Hand a desired patch to the subscribed handlers."""
        for handler in list(self._handlers):
            await handler(patch)

    def _ensure_connected(self) -> None:
        if not self.connected:
            raise TransportError("Loopback session is closed")


class LoopbackProvisioner(Provisioner):
    """Provisioning service side of the loopback transport."""

    def __init__(self, hub: LoopbackHub, device_id: str = "loopback-device-01"):
        self.hub = hub
        self.device_id = device_id

    async def register(self) -> RegistrationResult:
        status = self.hub.registration_status
        if status != ASSIGNED:
            raise RegistrationRejected(status, registration_id=self.device_id)

        return RegistrationResult(
            status=status,
            assigned_hub=self.hub.hostname,
            device_id=self.device_id,
            credential=None,
        )

    async def open_session(self, result: RegistrationResult) -> LoopbackSession:
        session = LoopbackSession(self.hub, result.device_id)
        await session.connect()
        return session

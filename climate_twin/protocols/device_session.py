# climate_twin/protocols/device_session.py
"""
Device session abstraction.

Library-agnostic provisioning and hub session interface. Concrete
transports (in-memory loopback, Azure IoT Hub) implement these classes and
are selected by configuration.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "DesiredChangeHandler",
    "DeviceSession",
    "Provisioner",
    "RegistrationRejected",
    "RegistrationResult",
    "TelemetryEvent",
    "TransportError",
    "TwinDocument",
    "ASSIGNED",
]

ASSIGNED = "assigned"

DesiredChangeHandler = Callable[[Mapping[str, Any]], Awaitable[Any]]


class RegistrationRejected(RuntimeError):
    """Provisioning completed but the device was not assigned to a hub."""

    def __init__(self, status: str, registration_id: str = ""):
        self.status = status
        self.registration_id = registration_id
        super().__init__(
            f"Device registration status is '{status}', expected '{ASSIGNED}'"
            + (f" (registration id {registration_id})" if registration_id else "")
        )


class TransportError(RuntimeError):
    """Open, report, publish or close failed on the underlying transport."""


@dataclass
class RegistrationResult:
    """Outcome of device provisioning.

    Attributes:
        status: Provisioning status ("assigned" on success)
        assigned_hub: Hub host name the device was assigned to
        device_id: Device identity on the hub
        credential: Opaque credential used to open the session
    """

    status: str
    assigned_hub: str = ""
    device_id: str = ""
    credential: Any = None


@dataclass
class TwinDocument:
    """Full twin as fetched from the hub."""

    desired: dict[str, Any] = field(default_factory=dict)
    reported: dict[str, Any] = field(default_factory=dict)


@dataclass
class TelemetryEvent:
    """One outbound telemetry message.

    Attributes:
        body: Serialised JSON payload
        properties: Transport metadata attributes (not part of the body)
    """

    body: str
    properties: dict[str, str] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        """Decode the JSON body."""
        return json.loads(self.body)


class DeviceSession(ABC):
    """
    Open, authenticated session with the telemetry hub.

    Every outbound call is one wire message. Failures raise TransportError.
    """

    def __init__(self, device_id: str):
        self.device_id = device_id
        self.connected = False

    @abstractmethod
    async def get_twin(self) -> TwinDocument:
        """Fetch the current twin (desired and reported portions)."""

    @abstractmethod
    def subscribe_desired_changes(self, handler: DesiredChangeHandler) -> None:
        """Deliver every future desired-state patch to handler."""

    @abstractmethod
    async def report_state(self, document: Mapping[str, Any]) -> None:
        """Patch the reported portion of the twin."""

    @abstractmethod
    async def publish(self, event: TelemetryEvent) -> None:
        """Send one telemetry event."""

    @abstractmethod
    async def close(self) -> None:
        """Close the session."""


class Provisioner(ABC):
    """Registers the device and opens hub sessions."""

    @abstractmethod
    async def register(self) -> RegistrationResult:
        """Register with the provisioning service.

        Raises:
            RegistrationRejected: If the device was not assigned
        """

    @abstractmethod
    async def open_session(self, result: RegistrationResult) -> DeviceSession:
        """Open a connected session for a successful registration.

        Raises:
            TransportError: If the connection cannot be opened
        """

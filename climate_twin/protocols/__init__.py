"""
Device session transports.

Structure:
    climate_twin/protocols/
    ├── device_session.py            # DeviceSession / Provisioner interfaces
    ├── loopback/
    │   └── loopback_hub.py          # In-memory hub (local runs, tests)
    └── azure_iot/
        └── azure_iot_device_2140.py # Azure IoT Hub + DPS (X.509)

Usage:
    from climate_twin.protocols import LoopbackHub, LoopbackProvisioner

    hub = LoopbackHub(initial_desired={"fanstate": "on"})
    provisioner = LoopbackProvisioner(hub)
    result = await provisioner.register()
    session = await provisioner.open_session(result)
"""

from climate_twin.protocols.azure_iot import AzureIoTProvisioner, AzureIoTSession
from climate_twin.protocols.device_session import (
    DeviceSession,
    Provisioner,
    RegistrationRejected,
    RegistrationResult,
    TelemetryEvent,
    TransportError,
    TwinDocument,
)
from climate_twin.protocols.loopback import (
    LoopbackHub,
    LoopbackProvisioner,
    LoopbackSession,
)

__all__ = [
    "AzureIoTProvisioner",
    "AzureIoTSession",
    "DeviceSession",
    "Provisioner",
    "RegistrationRejected",
    "RegistrationResult",
    "TelemetryEvent",
    "TransportError",
    "TwinDocument",
    "LoopbackHub",
    "LoopbackProvisioner",
    "LoopbackSession",
]


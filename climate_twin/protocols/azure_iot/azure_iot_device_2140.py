#!/usr/bin/env python3
"""
Azure IoT adapter using azure-iot-device 2.14.0.

- Registers through the Device Provisioning Service with an X.509 identity
- Opens an IoTHubDeviceClient against the assigned hub
- Desired-property patches are marshalled onto the caller's event loop
- Library exceptions surface as TransportError
"""

import asyncio
from collections.abc import Mapping
from concurrent.futures import Future
from pathlib import Path
from typing import Any

from azure.iot.device import Message, X509
from azure.iot.device.aio import IoTHubDeviceClient, ProvisioningDeviceClient
from azure.iot.device.exceptions import ClientError, ServiceError

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

GLOBAL_DEVICE_ENDPOINT = "global.azure-devices-provisioning.net"

_TRANSPORT_ERRORS = (ClientError, ServiceError)


class AzureIoTSession(DeviceSession):
    """Device session over an azure-iot-device IoTHubDeviceClient."""

    def __init__(self, client: IoTHubDeviceClient, device_id: str, hub: str = ""):
        super().__init__(device_id)
        self.hub = hub
        self._client = client
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handler: DesiredChangeHandler | None = None
        self.logger = get_logger(self.__class__.__name__, device=device_id)

    # ------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------

    async def connect(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            await self._client.connect()
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Cannot connect to {self.hub}: {e}") from e
        self.connected = True

    async def close(self) -> None:
        try:
            await self._client.shutdown()
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Failed to close session: {e}") from e
        finally:
            self.connected = False

    # ------------------------------------------------------------
    # twin
    # ------------------------------------------------------------

    async def get_twin(self) -> TwinDocument:
        try:
            twin = await self._client.get_twin()
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Failed to fetch twin: {e}") from e

        return TwinDocument(
            desired=dict(twin.get("desired", {})),
            reported=dict(twin.get("reported", {})),
        )

    def subscribe_desired_changes(self, handler: DesiredChangeHandler) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._handler = handler
        # The client invokes sync handlers on its own worker thread
        self._client.on_twin_desired_properties_patch_received = self._on_patch

    def _on_patch(self, patch: dict[str, Any]) -> None:
        if self._handler is None or self._loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._handler(patch), self._loop)
        future.add_done_callback(self._log_handler_failure)

    def _log_handler_failure(self, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self.logger.error(f"Desired property handler failed: {error}")

    async def report_state(self, document: Mapping[str, Any]) -> None:
        try:
            await self._client.patch_twin_reported_properties(dict(document))
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Failed to report twin properties: {e}") from e

    # ------------------------------------------------------------
    # telemetry
    # ------------------------------------------------------------

    async def publish(self, event: TelemetryEvent) -> None:
        message = Message(event.body)
        message.content_type = "application/json"
        message.content_encoding = "utf-8"
        for key, value in event.properties.items():
            message.custom_properties[key] = value

        try:
            await self._client.send_message(message)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Failed to send telemetry: {e}") from e


class AzureIoTProvisioner(Provisioner):
    """Device Provisioning Service registration with an X.509 certificate."""

    def __init__(
        self,
        id_scope: str,
        registration_id: str,
        certificate_file: str | Path,
        key_file: str | Path,
        pass_phrase: str | None = None,
        provisioning_host: str = GLOBAL_DEVICE_ENDPOINT,
    ):
        if not id_scope:
            raise ValueError("id_scope cannot be empty")
        if not registration_id:
            raise ValueError("registration_id cannot be empty")

        self.id_scope = id_scope
        self.registration_id = registration_id
        self.provisioning_host = provisioning_host
        self.x509 = X509(
            cert_file=str(certificate_file),
            key_file=str(key_file),
            pass_phrase=pass_phrase,
        )
        self.logger = get_logger(self.__class__.__name__, device=registration_id)

    async def register(self) -> RegistrationResult:
        client = ProvisioningDeviceClient.create_from_x509_certificate(
            provisioning_host=self.provisioning_host,
            registration_id=self.registration_id,
            id_scope=self.id_scope,
            x509=self.x509,
        )

        self.logger.info(f"Registering {self.registration_id} with {self.provisioning_host}")
        try:
            result = await client.register()
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Provisioning request failed: {e}") from e

        if result.status != ASSIGNED:
            raise RegistrationRejected(result.status, self.registration_id)

        state = result.registration_state
        return RegistrationResult(
            status=result.status,
            assigned_hub=state.assigned_hub,
            device_id=state.device_id,
            credential=self.x509,
        )

    async def open_session(self, result: RegistrationResult) -> AzureIoTSession:
        client = IoTHubDeviceClient.create_from_x509_certificate(
            x509=result.credential,
            hostname=result.assigned_hub,
            device_id=result.device_id,
        )
        session = AzureIoTSession(client, result.device_id, hub=result.assigned_hub)
        await session.connect()
        return session

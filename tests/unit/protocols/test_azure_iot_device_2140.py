# tests/unit/protocols/test_azure_iot_device_2140.py
"""Tests for the azure-iot-device adapter.

The Azure clients are patched; no network access is needed.

Test Coverage:
- Provisioner validation and X.509 registration
- Rejected registration
- Session connect/close, twin fetch, reported state
- Telemetry message construction
- Desired patch marshalling from the client thread
- Library exceptions wrapped as TransportError
"""

import asyncio
import threading
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.iot.device.exceptions import ClientError, ConnectionFailedError

from climate_twin.protocols.azure_iot import azure_iot_device_2140 as adapter
from climate_twin.protocols.device_session import (
    RegistrationRejected,
    RegistrationResult,
    TelemetryEvent,
    TransportError,
)

MODULE = "climate_twin.protocols.azure_iot.azure_iot_device_2140"


def make_client() -> MagicMock:
    client = MagicMock()
    client.connect = AsyncMock()
    client.shutdown = AsyncMock()
    client.get_twin = AsyncMock(
        return_value={"desired": {"fanstate": "on", "$version": 4}, "reported": {}}
    )
    client.patch_twin_reported_properties = AsyncMock()
    client.send_message = AsyncMock()
    return client


@pytest.fixture
def provisioner():
    return adapter.AzureIoTProvisioner(
        id_scope="0ne00000000",
        registration_id="cave-device-01",
        certificate_file="certs/device.pem",
        key_file="certs/device.key",
    )


@pytest.fixture
async def azure_session():
    client = make_client()
    session = adapter.AzureIoTSession(client, "cave-device-01", hub="hub.example.net")
    await session.connect()
    return session, client


# ================================================================
# PROVISIONER TESTS
# ================================================================
class TestAzureIoTProvisioner:
    """Test DPS registration."""

    @pytest.mark.parametrize(
        "id_scope,registration_id", [("", "dev"), ("scope", "")]
    )
    def test_requires_scope_and_registration_id(self, id_scope, registration_id):
        with pytest.raises(ValueError, match="cannot be empty"):
            adapter.AzureIoTProvisioner(
                id_scope=id_scope,
                registration_id=registration_id,
                certificate_file="c.pem",
                key_file="k.pem",
            )

    def test_default_endpoint(self, provisioner):
        assert provisioner.provisioning_host == "global.azure-devices-provisioning.net"

    async def test_register_assigned(self, provisioner):
        dps_client = MagicMock()
        dps_client.register = AsyncMock(
            return_value=SimpleNamespace(
                status="assigned",
                registration_state=SimpleNamespace(
                    assigned_hub="hub.example.net", device_id="cave-device-01"
                ),
            )
        )

        with patch(f"{MODULE}.ProvisioningDeviceClient") as dps_class:
            dps_class.create_from_x509_certificate.return_value = dps_client
            result = await provisioner.register()

        dps_class.create_from_x509_certificate.assert_called_once_with(
            provisioning_host="global.azure-devices-provisioning.net",
            registration_id="cave-device-01",
            id_scope="0ne00000000",
            x509=provisioner.x509,
        )
        assert result.status == "assigned"
        assert result.assigned_hub == "hub.example.net"
        assert result.device_id == "cave-device-01"
        assert result.credential is provisioner.x509

    async def test_register_not_assigned(self, provisioner):
        """WHY: The device must not open a hub session without an assignment."""
        dps_client = MagicMock()
        dps_client.register = AsyncMock(
            return_value=SimpleNamespace(status="failed", registration_state=None)
        )

        with patch(f"{MODULE}.ProvisioningDeviceClient") as dps_class:
            dps_class.create_from_x509_certificate.return_value = dps_client
            with pytest.raises(RegistrationRejected) as exc_info:
                await provisioner.register()

        assert exc_info.value.status == "failed"

    async def test_register_client_error(self, provisioner):
        dps_client = MagicMock()
        dps_client.register = AsyncMock(side_effect=ClientError("timed out"))

        with patch(f"{MODULE}.ProvisioningDeviceClient") as dps_class:
            dps_class.create_from_x509_certificate.return_value = dps_client
            with pytest.raises(TransportError, match="Provisioning request failed"):
                await provisioner.register()

    async def test_open_session(self, provisioner):
        client = make_client()
        result = RegistrationResult(
            status="assigned",
            assigned_hub="hub.example.net",
            device_id="cave-device-01",
            credential=provisioner.x509,
        )

        with patch(f"{MODULE}.IoTHubDeviceClient") as hub_class:
            hub_class.create_from_x509_certificate.return_value = client
            session = await provisioner.open_session(result)

        hub_class.create_from_x509_certificate.assert_called_once_with(
            x509=provisioner.x509,
            hostname="hub.example.net",
            device_id="cave-device-01",
        )
        client.connect.assert_awaited_once()
        assert session.connected
        assert session.hub == "hub.example.net"


# ================================================================
# SESSION TESTS
# ================================================================
class TestAzureIoTSession:
    """Test the IoT Hub session."""

    async def test_connect_failure(self):
        client = make_client()
        client.connect.side_effect = ConnectionFailedError("refused")
        session = adapter.AzureIoTSession(client, "dev")

        with pytest.raises(TransportError, match="Cannot connect"):
            await session.connect()

        assert not session.connected

    async def test_get_twin(self, azure_session):
        session, _ = azure_session

        twin = await session.get_twin()

        assert twin.desired == {"fanstate": "on", "$version": 4}
        assert twin.reported == {}

    async def test_report_state(self, azure_session):
        session, client = azure_session

        await session.report_state({"fanstate": "on", "humidity": 85.0})

        client.patch_twin_reported_properties.assert_awaited_once_with(
            {"fanstate": "on", "humidity": 85.0}
        )

    async def test_report_state_failure(self, azure_session):
        session, client = azure_session
        client.patch_twin_reported_properties.side_effect = ClientError("lost")

        with pytest.raises(TransportError, match="reported"):
            await session.report_state({"fanstate": "on"})

    async def test_publish_builds_message(self, azure_session):
        """WHY: Alerts ride as message properties so routes can filter on them."""
        session, client = azure_session
        event = TelemetryEvent(
            body='{"temperature": 70.0, "humidity": 99.0}',
            properties={"sensorID": "S1", "fanAlert": "false"},
        )

        await session.publish(event)

        message = client.send_message.await_args.args[0]
        assert message.data == event.body
        assert message.content_type == "application/json"
        assert message.content_encoding == "utf-8"
        assert message.custom_properties == {"sensorID": "S1", "fanAlert": "false"}

    async def test_publish_failure(self, azure_session):
        session, client = azure_session
        client.send_message.side_effect = ConnectionFailedError("dropped")

        with pytest.raises(TransportError, match="telemetry"):
            await session.publish(TelemetryEvent(body="{}"))

    async def test_close(self, azure_session):
        session, client = azure_session

        await session.close()

        client.shutdown.assert_awaited_once()
        assert not session.connected

    async def test_patch_from_client_thread(self, azure_session):
        """Test a patch delivered on the client's thread runs on our loop."""
        session, client = azure_session
        loop = asyncio.get_running_loop()
        received = []
        done = asyncio.Event()

        async def handler(patch):
            received.append((patch, asyncio.get_running_loop()))
            done.set()

        session.subscribe_desired_changes(handler)
        callback = client.on_twin_desired_properties_patch_received

        thread = threading.Thread(target=callback, args=({"fanstate": "off"},))
        thread.start()
        await asyncio.wait_for(done.wait(), timeout=1.0)
        thread.join()

        assert received == [({"fanstate": "off"}, loop)]

    async def test_handler_failure_is_logged(self, azure_session):
        session, client = azure_session
        done = asyncio.Event()

        async def handler(patch):
            done.set()
            raise TransportError("report failed")

        session.subscribe_desired_changes(handler)
        with patch.object(session.logger, "error") as log_error:
            thread = threading.Thread(
                target=client.on_twin_desired_properties_patch_received,
                args=({"fanstate": "off"},),
            )
            thread.start()
            await asyncio.wait_for(done.wait(), timeout=1.0)
            thread.join()
            await asyncio.sleep(0.01)

        log_error.assert_called_once()
        assert "report failed" in log_error.call_args.args[0]

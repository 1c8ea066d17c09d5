#!/usr/bin/env python3
# tools/device_manager.py
"""
Climate Twin Device Manager - Main Orchestrator

Runs one simulated device session end to end:
- Provisioning (register, then open the hub session)
- Desired-state subscription and initial twin seeding
- Telemetry loop until shutdown
- Graceful session close

Integrates:
- ConfigLoader for configuration
- DeviceTwin for the shared twin record
- ClimatePhysics for the simulated environment
- StateSyncHandler and TelemetryLoop for device behaviour
- Loopback or Azure IoT provisioners for the transport
"""

import argparse
import asyncio
import random
import signal
import sys
import time
from pathlib import Path
from typing import Any

from climate_twin import __version__
from climate_twin.devices.state_sync import StateSyncHandler
from climate_twin.devices.telemetry_loop import TelemetryLoop, TelemetrySettings
from climate_twin.logging_system import configure_logging, get_logger
from climate_twin.physics.climate_physics import ClimateParameters, ClimatePhysics
from climate_twin.protocols.azure_iot import (
    GLOBAL_DEVICE_ENDPOINT,
    AzureIoTProvisioner,
)
from climate_twin.protocols.device_session import (
    DeviceSession,
    Provisioner,
    RegistrationRejected,
    RegistrationResult,
    TransportError,
)
from climate_twin.protocols.loopback import LoopbackHub, LoopbackProvisioner
from climate_twin.security.device_certificate import DeviceCertificateManager
from climate_twin.state.twin_state import DeviceTwin, TwinState
from config.config_loader import ConfigLoader


class DeviceManager:
    """
    Main orchestrator for a simulated device session.

    Example:
        >>> manager = DeviceManager(config_dir="config")
        >>> exit_code = await manager.run()
    """

    def __init__(
        self,
        config_dir: str = "config",
        transport: str | None = None,
        log_dir: str | None = None,
        seed: int | None = None,
        provisioner: Provisioner | None = None,
    ):
        """Initialise device manager.

        Args:
            config_dir: Directory containing configuration files
            transport: Override for transport.kind ("loopback" or "azure")
            log_dir: Override for logging.log_dir
            seed: Override for device.random_seed
            provisioner: Pre-built provisioner (skips transport construction)
        """
        self.config_dir = Path(config_dir)
        self.config_loader = ConfigLoader(config_dir=str(self.config_dir))

        self._transport_override = transport
        self._log_dir_override = log_dir
        self._seed_override = seed

        self.config: dict[str, Any] = {}
        self.device_name = ""
        self.provisioner = provisioner
        self.hub: LoopbackHub | None = None

        # Built by initialise()
        self.params: ClimateParameters | None = None
        self.settings: TelemetrySettings | None = None
        self.physics: ClimatePhysics | None = None
        self.twin: DeviceTwin | None = None
        self.rng: random.Random | None = None

        # Built by run_session()
        self.registration: RegistrationResult | None = None
        self.session: DeviceSession | None = None
        self.state_sync: StateSyncHandler | None = None
        self.telemetry: TelemetryLoop | None = None

        self._initialised = False
        self._running = False
        self._telemetry_task: asyncio.Task | None = None
        self._handler_error: BaseException | None = None
        self._shutdown_event = asyncio.Event()
        self._installed_signals: list[int] = []
        self._start_time = 0.0

        self.logger = get_logger(self.__class__.__name__)

    # ----------------------------------------------------------------
    # Initialisation
    # ----------------------------------------------------------------

    async def initialise(self) -> None:
        """Load configuration and build the device components.

        Raises:
            ValueError: If the configuration is invalid
        """
        if self._initialised:
            self.logger.warning("Device manager already initialised")
            return

        config = self.config_loader.load_all()
        if self._transport_override:
            config["transport"]["kind"] = self._transport_override
        if self._log_dir_override:
            config["logging"]["log_dir"] = self._log_dir_override
        if self._seed_override is not None:
            config["device"]["random_seed"] = self._seed_override
        self.config_loader.validate(config)
        self.config = config

        logging_config = config["logging"]
        configure_logging(
            log_dir=logging_config["log_dir"] if logging_config["json_logs"] else None,
            level=logging_config["level"],
        )
        self.logger = get_logger(self.__class__.__name__)

        self.device_name = config["device"]["name"]
        self.params = self.config_loader.climate_parameters(config)
        self.settings = self.config_loader.telemetry_settings(config)
        self.physics = ClimatePhysics(self.params)
        self.twin = DeviceTwin(
            TwinState.from_ambient(
                self.params.ambient_temperature,
                self.params.ambient_humidity,
                self.params.max_humidity,
            )
        )
        self.rng = random.Random(config["device"].get("random_seed"))

        if self.provisioner is None:
            self.provisioner = self._create_provisioner(config["transport"])

        self._initialised = True
        self.logger.info(
            f"Device '{self.device_name}' initialised "
            f"(transport={config['transport']['kind']}, "
            f"interval={self.settings.interval_seconds}s)"
        )

    def _create_provisioner(self, transport: dict[str, Any]) -> Provisioner:
        """Build the provisioner for the configured transport."""
        if transport["kind"] == "azure":
            azure = transport["azure"]
            certificate_file = azure.get("certificate_file")
            key_file = azure.get("key_file")
            pass_phrase = azure.get("pass_phrase")
            if azure.get("pfx_file"):
                certificates = DeviceCertificateManager(azure.get("cert_dir") or "certs")
                certificate_file, key_file = certificates.export_pfx_to_pem(
                    azure["pfx_file"], azure.get("pfx_password"), azure["registration_id"]
                )
                pass_phrase = None

            return AzureIoTProvisioner(
                id_scope=azure["id_scope"],
                registration_id=azure["registration_id"],
                certificate_file=certificate_file,
                key_file=key_file,
                pass_phrase=pass_phrase,
                provisioning_host=azure.get("provisioning_host") or GLOBAL_DEVICE_ENDPOINT,
            )

        loopback = transport["loopback"]
        self.hub = LoopbackHub(
            hostname=loopback.get("hub", "loopback.local"),
            initial_desired=loopback.get("initial_desired"),
        )
        return LoopbackProvisioner(
            self.hub, device_id=loopback.get("device_id", "loopback-device-01")
        )

    # ----------------------------------------------------------------
    # Session
    # ----------------------------------------------------------------

    async def run_session(self) -> None:
        """Register, open the session, sync the twin and stream telemetry.

        Returns when shutdown is requested. The session is always closed.

        Raises:
            RegistrationRejected: If provisioning did not assign the device
            TransportError: If any hub operation fails
        """
        if not self._initialised:
            await self.initialise()

        self.logger.info("Registering device with provisioning service...")
        self.registration = await self.provisioner.register()
        self.logger.info(
            f"Device registration status: {self.registration.status}; "
            f"assigned hub: {self.registration.assigned_hub}; "
            f"device id: {self.registration.device_id}"
        )

        self.logger.info("Opening device session...")
        self.session = await self.provisioner.open_session(self.registration)

        try:
            self.state_sync = StateSyncHandler(
                self.twin, self.session, device_name=self.device_name
            )
            self.telemetry = TelemetryLoop(
                self.twin,
                self.session,
                self.physics,
                self.settings,
                rng=self.rng,
                device_name=self.device_name,
            )

            self.logger.info("Subscribing to desired property changes...")
            self.session.subscribe_desired_changes(self._on_desired_change)

            self.logger.info("Loading device twin properties...")
            twin_document = await self.session.get_twin()
            await self.state_sync.on_desired_change(twin_document.desired)

            self._running = True
            self._start_time = time.monotonic()
            self._telemetry_task = asyncio.create_task(self.telemetry.run())
            await self._wait_for_stop()

        except BaseException:
            await self._close_session(error_in_flight=True)
            raise

        await self._close_session()

    async def _close_session(self, error_in_flight: bool = False) -> None:
        """Stop telemetry and close the session.

        A close failure is only logged while another error is propagating.
        """
        await self._stop_telemetry()
        self._running = False
        self.logger.info("Closing device session...")
        try:
            await self.session.close()
        except TransportError as e:
            if not error_in_flight:
                raise
            self.logger.error(f"Failed to close device session: {e}")
            return
        self.logger.info("Device session closed")

    async def _on_desired_change(self, patch: dict[str, Any]) -> dict[str, Any]:
        """Desired-change callback; a failed report ends the session."""
        try:
            return await self.state_sync.on_desired_change(patch)
        except TransportError as e:
            self._handler_error = e
            self._shutdown_event.set()
            raise

    async def _wait_for_stop(self) -> None:
        """Wait for a shutdown request or for the telemetry loop to fail."""
        shutdown_waiter = asyncio.create_task(self._shutdown_event.wait())
        try:
            done, _ = await asyncio.wait(
                {self._telemetry_task, shutdown_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            shutdown_waiter.cancel()

        if self._telemetry_task in done:
            # Only ends by raising
            self._telemetry_task.result()
        if self._handler_error is not None:
            raise self._handler_error

    async def _stop_telemetry(self) -> None:
        """Cancel the telemetry task and wait for it to unwind."""
        task = self._telemetry_task
        if task is None:
            return
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._telemetry_task = None

    def request_shutdown(self) -> None:
        """Ask a running session to stop."""
        self._shutdown_event.set()

    # ----------------------------------------------------------------
    # Status and monitoring
    # ----------------------------------------------------------------

    async def get_status(self) -> dict[str, Any]:
        """Get comprehensive device status.

        Returns:
            Dictionary with session, twin and loop status
        """
        return {
            "running": self._running,
            "initialised": self._initialised,
            "device_name": self.device_name,
            "transport": self.config.get("transport", {}).get("kind"),
            "device_id": self.registration.device_id if self.registration else None,
            "hub": self.registration.assigned_hub if self.registration else None,
            "twin": await self.twin.get_summary() if self.twin else None,
            "state_sync": self.state_sync.get_status() if self.state_sync else None,
            "telemetry": self.telemetry.get_status() if self.telemetry else None,
        }

    def _log_final_statistics(self) -> None:
        """Log final session statistics."""
        elapsed = time.monotonic() - self._start_time if self._start_time else 0.0

        self.logger.info("--- Final Statistics ---")
        if self.telemetry:
            self.logger.info(f"Telemetry events sent: {self.telemetry.events_published}")
        if self.state_sync:
            self.logger.info(f"Reports published: {self.state_sync.reports_published}")
            self.logger.info(f"Fields rejected: {self.state_sync.fields_rejected}")
        self.logger.info(f"Session time: {elapsed:.1f}s")
        self.logger.info("------------------------")

    # ----------------------------------------------------------------
    # Signal handling
    # ----------------------------------------------------------------

    def setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(signum, lambda s, _frame: self._handle_signal(s))
            else:
                self._installed_signals.append(signum)

        self.logger.info("Signal handlers configured")

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in self._installed_signals:
            loop.remove_signal_handler(signum)
        self._installed_signals.clear()

    def _handle_signal(self, signum: int) -> None:
        self.logger.info(f"Received signal {signum}")
        self._shutdown_event.set()

    # ----------------------------------------------------------------
    # Main run method
    # ----------------------------------------------------------------

    async def run(self) -> int:
        """Run the complete device lifecycle.

        Returns:
            Process exit code (0 on clean shutdown, 1 on a fatal error)
        """
        try:
            self.setup_signal_handlers()
            await self.initialise()
            self.logger.info("Simulated device running. Press Ctrl+C to stop.")
            await self.run_session()
            return 0

        except RegistrationRejected as e:
            self.logger.error(f"Registration failed: {e}")
            return 1
        except TransportError as e:
            self.logger.error(f"Transport failure: {e}")
            return 1
        except ValueError as e:
            self.logger.error(f"Configuration error: {e}")
            return 1
        finally:
            self.remove_signal_handlers()
            self._log_final_statistics()


# ----------------------------------------------------------------
# Command-line interface
# ----------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="climate-twin",
        description="Simulated cave climate controller with a synchronised device twin",
    )
    parser.add_argument(
        "--config-dir", default="config", help="Directory with device/transport/logging YAML"
    )
    parser.add_argument(
        "--transport",
        choices=["loopback", "azure"],
        help="Override the configured transport",
    )
    parser.add_argument("--log-dir", help="Override the JSON log directory")
    parser.add_argument("--seed", type=int, help="Random seed for a repeatable run")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    manager = DeviceManager(
        config_dir=args.config_dir,
        transport=args.transport,
        log_dir=args.log_dir,
        seed=args.seed,
    )
    return await manager.run()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

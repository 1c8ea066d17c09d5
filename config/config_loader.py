# config/config_loader.py
"""
Config loader module for modular YAML configuration.
"""

from pathlib import Path
from typing import Any

import yaml

from climate_twin.devices.telemetry_loop import TelemetrySettings
from climate_twin.physics.climate_physics import ClimateParameters
from climate_twin.state.twin_state import MAX_HUMIDITY

TRANSPORT_KINDS = ("loopback", "azure")


class ConfigLoader:
    """Loads and merges modular configuration files."""

    def __init__(self, config_dir="config"):
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load_all(self):
        """Load all configuration files and merge them."""
        config = {}

        # Load device config
        device_path = self.config_dir / "device.yml"
        if device_path.exists():
            device_data = self._read(device_path)
        else:
            device_data = self._create_default_device()
            self._save_device(device_data)

        config["device"] = {**self._default_device_section(), **device_data.get("device", {})}
        config["physics"] = device_data.get("physics", {})

        # Load transport config
        transport_path = self.config_dir / "transport.yml"
        if transport_path.exists():
            transport_data = self._read(transport_path).get("transport", {})
            config["transport"] = {
                "kind": transport_data.get("kind", "loopback"),
                "azure": transport_data.get("azure", {}),
                "loopback": transport_data.get("loopback", {}),
            }
        else:
            config["transport"] = {
                "kind": "loopback",
                "azure": {},
                "loopback": {},
            }

        # Load logging config
        logging_path = self.config_dir / "logging.yml"
        if logging_path.exists():
            logging_data = self._read(logging_path).get("logging", {})
            config["logging"] = {
                "log_dir": logging_data.get("log_dir", "logs"),
                "json_logs": logging_data.get("json_logs", True),
                "level": logging_data.get("level", "INFO"),
            }
        else:
            config["logging"] = {
                "log_dir": "logs",
                "json_logs": True,
                "level": "INFO",
            }

        self.validate(config)
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """Reject configuration the device cannot run with.

        Raises:
            ValueError: On an unknown transport, a non-positive interval or
                physics parameters outside their physical range
        """
        kind = config["transport"]["kind"]
        if kind not in TRANSPORT_KINDS:
            raise ValueError(
                f"Unknown transport kind '{kind}', expected one of {TRANSPORT_KINDS}"
            )

        interval_ms = config["device"]["telemetry_interval_ms"]
        if not isinstance(interval_ms, (int, float)) or interval_ms <= 0:
            raise ValueError(
                f"telemetry_interval_ms must be a positive number, got {interval_ms!r}"
            )

        unknown = set(config["physics"]) - set(ClimateParameters.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown physics parameters: {sorted(unknown)}")

        physics = self.climate_parameters(config)
        if not 0 < physics.max_humidity <= MAX_HUMIDITY:
            raise ValueError(
                f"max_humidity must be in (0, {MAX_HUMIDITY}], got {physics.max_humidity}"
            )
        if not 0.0 <= physics.fan_failure_probability <= 1.0:
            raise ValueError(
                "fan_failure_probability must be in [0, 1], "
                f"got {physics.fan_failure_probability}"
            )

        if kind == "azure":
            azure = config["transport"]["azure"]
            # A PFX bundle stands in for the PEM certificate/key pair
            required = ("id_scope", "registration_id")
            if not azure.get("pfx_file"):
                required += ("certificate_file", "key_file")
            missing = [key for key in required if not azure.get(key)]
            if missing:
                raise ValueError(f"Azure transport requires: {', '.join(missing)}")

    # ----------------------------------------------------------------
    # Typed views
    # ----------------------------------------------------------------

    @staticmethod
    def climate_parameters(config: dict[str, Any]) -> ClimateParameters:
        """Build physics parameters from the merged config."""
        return ClimateParameters(
            **{key: float(value) for key, value in config["physics"].items()}
        )

    @staticmethod
    def telemetry_settings(config: dict[str, Any]) -> TelemetrySettings:
        """Build telemetry loop settings from the merged config."""
        device = config["device"]
        return TelemetrySettings(
            sensor_id=str(device["sensor_id"]),
            interval_seconds=device["telemetry_interval_ms"] / 1000.0,
            temperature_alert_limit=float(device["temperature_alert_limit"]),
            humidity_alert_limit=float(device["humidity_alert_limit"]),
        )

    # ----------------------------------------------------------------
    # Defaults
    # ----------------------------------------------------------------

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        with open(path) as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _default_device_section():
        return {
            "name": "cave_climate_1",
            "sensor_id": "S1",
            "telemetry_interval_ms": 5000,
            "temperature_alert_limit": 5.0,
            "humidity_alert_limit": 10.0,
            "random_seed": None,
        }

    def _create_default_device(self):
        """Create default device configuration."""
        return {
            "device": self._default_device_section(),
            "physics": {
                "ambient_temperature": 70.0,
                "ambient_humidity": 99.0,
                "fan_failure_probability": 0.01,
            },
        }

    def _save_device(self, device_data):
        """Save device configuration to file."""
        device_path = self.config_dir / "device.yml"
        with open(device_path, "w") as f:
            yaml.dump(device_data, f, default_flow_style=False)
        print(f"[INFO] Created default device config at {device_path}")

# tests/unit/config/test_config_loader.py
from pathlib import Path

import pytest
import yaml

from config.config_loader import ConfigLoader

REPO_CONFIG_DIR = Path(__file__).resolve().parents[3] / "config"


def test_create_default_device(tmp_path):
    loader = ConfigLoader(config_dir=tmp_path)
    defaults = loader._create_default_device()
    assert defaults["device"]["name"] == "cave_climate_1"
    assert defaults["device"]["telemetry_interval_ms"] == 5000
    assert defaults["physics"]["ambient_temperature"] == 70.0
    assert defaults["physics"]["fan_failure_probability"] == 0.01


def test_save_and_load_device(tmp_path):
    loader = ConfigLoader(config_dir=tmp_path)
    device = loader._create_default_device()
    loader._save_device(device)

    device_path = tmp_path / "device.yml"
    assert device_path.exists()

    with open(device_path) as f:
        data = yaml.safe_load(f)
    assert data == device


def test_load_all_creates_default_device_file(tmp_path):
    loader = ConfigLoader(config_dir=tmp_path)
    config = loader.load_all()

    assert (tmp_path / "device.yml").exists()
    assert config["device"]["sensor_id"] == "S1"
    assert config["transport"]["kind"] == "loopback"
    assert config["logging"] == {"log_dir": "logs", "json_logs": True, "level": "INFO"}


def test_load_all_merges_partial_device_section(temp_config_dir, write_config_file):
    write_config_file({"device": {"sensor_id": "S9"}}, "device.yml")

    config = ConfigLoader(config_dir=temp_config_dir).load_all()

    assert config["device"]["sensor_id"] == "S9"
    assert config["device"]["telemetry_interval_ms"] == 5000
    assert config["physics"] == {}


def test_load_all_reads_every_file(temp_config_dir, write_config_file):
    write_config_file(
        {
            "device": {"name": "cave_2", "telemetry_interval_ms": 250},
            "physics": {"ambient_temperature": 55.0},
        },
        "device.yml",
    )
    write_config_file(
        {"transport": {"kind": "loopback", "loopback": {"device_id": "dev-x"}}},
        "transport.yml",
    )
    write_config_file({"logging": {"level": "DEBUG", "json_logs": False}}, "logging.yml")

    config = ConfigLoader(config_dir=temp_config_dir).load_all()

    assert config["device"]["name"] == "cave_2"
    assert config["physics"] == {"ambient_temperature": 55.0}
    assert config["transport"]["loopback"] == {"device_id": "dev-x"}
    assert config["transport"]["azure"] == {}
    assert config["logging"]["level"] == "DEBUG"
    assert config["logging"]["json_logs"] is False
    assert config["logging"]["log_dir"] == "logs"


def test_shipped_config_is_valid():
    """The config directory in the repository loads cleanly."""
    config = ConfigLoader(config_dir=REPO_CONFIG_DIR).load_all()

    assert config["transport"]["kind"] == "loopback"
    assert config["transport"]["loopback"]["initial_desired"]["fanstate"] == "on"


def test_unknown_transport_rejected(temp_config_dir, write_config_file):
    write_config_file({"transport": {"kind": "mqtt"}}, "transport.yml")

    with pytest.raises(ValueError, match="Unknown transport kind"):
        ConfigLoader(config_dir=temp_config_dir).load_all()


@pytest.mark.parametrize("interval", [0, -5, "fast"])
def test_bad_interval_rejected(temp_config_dir, write_config_file, interval):
    write_config_file({"device": {"telemetry_interval_ms": interval}}, "device.yml")

    with pytest.raises(ValueError, match="telemetry_interval_ms"):
        ConfigLoader(config_dir=temp_config_dir).load_all()


def test_unknown_physics_key_rejected(temp_config_dir, write_config_file):
    write_config_file({"physics": {"ambient_pressure": 1.0}}, "device.yml")

    with pytest.raises(ValueError, match="ambient_pressure"):
        ConfigLoader(config_dir=temp_config_dir).load_all()


@pytest.mark.parametrize("max_humidity", [150, 100.5, 0, "nan"])
def test_max_humidity_above_saturation_rejected(
    temp_config_dir, write_config_file, max_humidity
):
    write_config_file({"physics": {"max_humidity": max_humidity}}, "device.yml")

    with pytest.raises(ValueError, match="max_humidity"):
        ConfigLoader(config_dir=temp_config_dir).load_all()


@pytest.mark.parametrize("probability", [-0.1, 1.5])
def test_fan_failure_probability_out_of_range_rejected(
    temp_config_dir, write_config_file, probability
):
    write_config_file(
        {"physics": {"fan_failure_probability": probability}}, "device.yml"
    )

    with pytest.raises(ValueError, match="fan_failure_probability"):
        ConfigLoader(config_dir=temp_config_dir).load_all()


def test_azure_requires_credentials(temp_config_dir, write_config_file):
    write_config_file(
        {"transport": {"kind": "azure", "azure": {"id_scope": "0ne0001"}}},
        "transport.yml",
    )

    with pytest.raises(ValueError) as exc_info:
        ConfigLoader(config_dir=temp_config_dir).load_all()

    message = str(exc_info.value)
    assert "registration_id" in message
    assert "certificate_file" in message
    assert "id_scope" not in message


def test_climate_parameters(temp_config_dir, write_config_file):
    write_config_file(
        {"physics": {"ambient_temperature": 55, "fan_failure_probability": 0.5}},
        "device.yml",
    )
    config = ConfigLoader(config_dir=temp_config_dir).load_all()

    params = ConfigLoader.climate_parameters(config)

    assert params.ambient_temperature == 55.0
    assert params.fan_failure_probability == 0.5
    assert params.ambient_humidity == 99.0


def test_telemetry_settings(temp_config_dir, write_config_file):
    write_config_file(
        {"device": {"telemetry_interval_ms": 1500, "humidity_alert_limit": 7}},
        "device.yml",
    )
    config = ConfigLoader(config_dir=temp_config_dir).load_all()

    settings = ConfigLoader.telemetry_settings(config)

    assert settings.interval_seconds == 1.5
    assert settings.humidity_alert_limit == 7.0
    assert settings.temperature_alert_limit == 5.0
    assert settings.sensor_id == "S1"


def test_azure_pfx_replaces_pem_pair(temp_config_dir, write_config_file):
    write_config_file(
        {
            "transport": {
                "kind": "azure",
                "azure": {
                    "id_scope": "0ne0001",
                    "registration_id": "cave-1",
                    "pfx_file": "certs/device.pfx",
                },
            }
        },
        "transport.yml",
    )

    config = ConfigLoader(config_dir=temp_config_dir).load_all()

    assert config["transport"]["azure"]["pfx_file"] == "certs/device.pfx"

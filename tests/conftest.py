# tests/conftest.py
"""Shared pytest fixtures for climate twin tests.

Components are tested with real dependencies wherever possible: a real
DeviceTwin, the real ClimatePhysics with a seeded random source, and the
in-memory LoopbackHub as the transport.
"""

import asyncio
import random
from collections.abc import Generator
from pathlib import Path

import pytest
import yaml

from climate_twin.logging_system import configure_logging
from climate_twin.physics.climate_physics import ClimateStep
from climate_twin.protocols.loopback import LoopbackHub, LoopbackProvisioner
from climate_twin.state.twin_state import DeviceTwin, FanState, TwinState


# ----------------------------------------------------------------
# Logging isolation
# ----------------------------------------------------------------
@pytest.fixture(autouse=True)
def reset_logging():
    """Give every test a fresh logger cache without file logging."""
    configure_logging(log_dir=None, level="DEBUG")
    yield
    configure_logging(log_dir=None, level="DEBUG")


# ----------------------------------------------------------------
# Configuration fixtures
# ----------------------------------------------------------------
@pytest.fixture
def temp_config_dir(tmp_path) -> Generator[Path, None, None]:
    """Temporary directory for test configuration files."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    yield config_dir


@pytest.fixture
def write_config_file(temp_config_dir):
    """Factory fixture for writing YAML configuration files.

    Returns:
        Function that writes a config dict to a YAML file
    """

    def _write_config(config: dict, filename: str) -> Path:
        config_file = temp_config_dir / filename
        with open(config_file, "w") as f:
            yaml.dump(config, f)
        return config_file

    return _write_config


# ----------------------------------------------------------------
# Twin and transport fixtures
# ----------------------------------------------------------------
@pytest.fixture
def twin() -> DeviceTwin:
    """Twin seeded with the default cave ambient conditions."""
    return DeviceTwin(TwinState.from_ambient(70.0, 99.0))


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source for repeatable physics."""
    return random.Random(1234)


@pytest.fixture
def hub() -> LoopbackHub:
    return LoopbackHub()


@pytest.fixture
async def session(hub):
    """Connected loopback session; closed after the test."""
    provisioner = LoopbackProvisioner(hub, device_id="test-device")
    result = await provisioner.register()
    session = await provisioner.open_session(result)
    yield session
    await session.close()


class ScriptedPhysics:
    """Physics stand-in that replays fixed readings."""

    def __init__(self, *steps: tuple[float, float]):
        self.steps = list(steps)
        self.calls: list[TwinState] = []

    def advance(self, state: TwinState, rng: random.Random) -> ClimateStep:
        self.calls.append(TwinState(**vars(state)))
        temperature, humidity = self.steps.pop(0) if self.steps else (
            state.current_temperature,
            state.current_humidity,
        )
        return ClimateStep(
            temperature=temperature, humidity=humidity, fan_state=state.fan_state
        )


@pytest.fixture
def scripted_physics():
    """Factory for physics that produces the given (temperature, humidity) steps."""
    return ScriptedPhysics


# ----------------------------------------------------------------
# Async utilities
# ----------------------------------------------------------------
@pytest.fixture
def wait_for_condition():
    """Provide utility for waiting on async conditions.

    Returns:
        Async function that polls a condition until true or timeout
    """

    async def _wait(
        condition_fn,
        timeout: float = 1.0,
        poll_interval: float = 0.005,
        error_msg: str = "Condition not met within timeout",
    ):
        loop = asyncio.get_running_loop()
        start = loop.time()
        while loop.time() - start < timeout:
            if condition_fn():
                return
            await asyncio.sleep(poll_interval)

        raise AssertionError(error_msg)

    return _wait


@pytest.fixture
def failed_fan_twin() -> DeviceTwin:
    """Twin whose fan has already failed."""
    state = TwinState.from_ambient(70.0, 99.0)
    state.fan_state = FanState.FAILED
    return DeviceTwin(state)

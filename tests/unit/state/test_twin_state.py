# tests/unit/state/test_twin_state.py
"""Tests for TwinState and DeviceTwin.

Test Coverage:
- Defaults and ambient-derived initial state
- Reported-state document shape
- Locked access and snapshots
- Tick/patch counters and summary
"""

import asyncio

import pytest

from climate_twin.state.twin_state import (
    FANSTATE_KEY,
    HUMIDITY_KEY,
    TEMPERATURE_KEY,
    DeviceTwin,
    FanState,
    TwinState,
)


# ================================================================
# TWIN STATE TESTS
# ================================================================
class TestTwinState:
    """Test the twin record."""

    def test_defaults(self):
        """Test a fresh record: fan off, setpoints 60/79, readings 70/99."""
        state = TwinState()

        assert state.fan_state == FanState.OFF
        assert state.desired_temperature == 60.0
        assert state.desired_humidity == 79.0
        assert state.current_temperature == 70.0
        assert state.current_humidity == 99.0

    def test_from_ambient(self):
        """WHY: Setpoints start 10F and 20% below the ambient readings."""
        state = TwinState.from_ambient(55.0, 90.0)

        assert state.fan_state == FanState.OFF
        assert state.desired_temperature == 45.0
        assert state.desired_humidity == 70.0
        assert state.current_temperature == 55.0
        assert state.current_humidity == 90.0

    def test_from_default_ambient_matches_defaults(self):
        assert TwinState.from_ambient(70.0, 99.0) == TwinState()

    def test_from_ambient_clamps_seeded_humidity(self):
        """WHY: Readings above saturation must never be observable."""
        assert TwinState.from_ambient(70.0, 105.0).current_humidity == 100.0
        assert TwinState.from_ambient(70.0, 95.0, max_humidity=90.0).current_humidity == 90.0

    def test_reported_document(self):
        state = TwinState(
            fan_state=FanState.ON, desired_temperature=65.0, desired_humidity=85.0
        )

        assert state.reported_document() == {
            FANSTATE_KEY: "on",
            HUMIDITY_KEY: 85.0,
            TEMPERATURE_KEY: 65.0,
        }

    def test_reported_document_keeps_exact_setpoints(self):
        document = TwinState(desired_temperature=65.125).reported_document()

        assert document[TEMPERATURE_KEY] == 65.125

    def test_reported_document_excludes_readings(self):
        """WHY: Readings travel as telemetry, not reported properties."""
        document = TwinState(current_temperature=12.3).reported_document()

        assert 12.3 not in document.values()
        assert set(document) == {FANSTATE_KEY, HUMIDITY_KEY, TEMPERATURE_KEY}

    def test_failed_fan_reported_as_failed(self):
        document = TwinState(fan_state=FanState.FAILED).reported_document()

        assert document[FANSTATE_KEY] == "failed"


# ================================================================
# DEVICE TWIN TESTS
# ================================================================
class TestDeviceTwin:
    """Test lock-guarded access to the shared record."""

    def test_default_state(self):
        twin = DeviceTwin()

        assert twin.tick_count == 0
        assert twin.patch_count == 0
        assert twin.last_update is None
        assert not twin.is_locked()

    async def test_locked_yields_mutable_record(self, twin):
        async with twin.locked() as state:
            state.desired_temperature = 65.0
            assert twin.is_locked()

        snapshot = await twin.snapshot()
        assert snapshot.desired_temperature == 65.0
        assert twin.last_update is not None
        assert not twin.is_locked()

    async def test_snapshot_is_a_copy(self, twin):
        """WHY: Callers must not be able to bypass the lock via a snapshot."""
        snapshot = await twin.snapshot()
        snapshot.desired_temperature = -1.0

        again = await twin.snapshot()
        assert again.desired_temperature == 60.0

    async def test_locked_serialises_writers(self, twin):
        """Test a second writer waits for the first to release the lock."""
        order = []

        async def writer(name: str, delay: float):
            async with twin.locked() as state:
                order.append(f"{name}-start")
                await asyncio.sleep(delay)
                state.desired_humidity += 1
                order.append(f"{name}-end")

        await asyncio.gather(writer("a", 0.02), writer("b", 0.0))

        assert order == ["a-start", "a-end", "b-start", "b-end"]
        assert (await twin.snapshot()).desired_humidity == 81.0

    async def test_counters(self, twin):
        await twin.record_tick()
        await twin.record_tick()
        await twin.record_patch()

        assert twin.tick_count == 2
        assert twin.patch_count == 1

    async def test_get_summary(self, twin):
        async with twin.locked() as state:
            state.fan_state = FanState.ON
            state.current_temperature = 68.123

        summary = await twin.get_summary()

        assert summary["fan_state"] == "on"
        assert summary["current_temperature"] == pytest.approx(68.12)
        assert summary["desired_temperature"] == 60.0
        assert summary["ticks"] == 0
        assert summary["last_update"] is not None

# climate_twin/physics/climate_physics.py
"""
Cave climate physics simulation.

Models the environment around the controller:
- Temperature and humidity nudged towards the setpoints while the fan runs
- Slow creep back to ambient conditions when the fan is off or broken
- Random walk once the readings have settled near ambient
- Fan wear: a running fan can fail on any tick

The model is a pure function of the twin record and a random source. It
does not mutate the record; the telemetry loop writes the step back while
holding the twin lock.
"""

import random
from dataclasses import dataclass

from climate_twin.logging_system import DeviceLogger, get_logger
from climate_twin.state.twin_state import MAX_HUMIDITY, FanState, TwinState

__all__ = ["ClimateParameters", "ClimatePhysics", "ClimateStep"]


@dataclass
class ClimateParameters:
    """Climate model parameters.

    Attributes:
        ambient_temperature: Ambient temperature of the cave, degrees F
        ambient_humidity: Ambient relative humidity, percent
        fan_failure_probability: Chance per tick that a running fan fails
        max_humidity: Upper bound for relative humidity
        ambient_band: Distance from ambient below which readings random-walk
        ambient_drift_max: Largest step per tick when creeping back to ambient
    """

    ambient_temperature: float = 70.0  # a southern cave
    ambient_humidity: float = 99.0
    fan_failure_probability: float = 0.01
    max_humidity: float = MAX_HUMIDITY
    ambient_band: float = 1.0
    ambient_drift_max: float = 0.1


@dataclass
class ClimateStep:
    """Result of one physics tick.

    Attributes:
        temperature: New simulated temperature (unrounded)
        humidity: New simulated humidity (unrounded, clamped)
        fan_state: Fan state after the tick
        fan_failed: True only on the tick the fan failed
    """

    temperature: float
    humidity: float
    fan_state: FanState
    fan_failed: bool = False


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


class ClimatePhysics:
    """
    Simulates temperature/humidity drift and fan failure.

    Example:
        >>> physics = ClimatePhysics()
        >>> step = physics.advance(TwinState(fan_state=FanState.ON), random.Random(1))
        >>> step.humidity <= 100.0
        True
    """

    def __init__(self, params: ClimateParameters | None = None):
        """Initialise climate physics.

        Args:
            params: Model parameters (uses defaults if None)

        Raises:
            ValueError: If the failure probability is outside [0, 1]
        """
        self.params = params or ClimateParameters()

        if not 0.0 <= self.params.fan_failure_probability <= 1.0:
            raise ValueError(
                "fan_failure_probability must be between 0 and 1, "
                f"got {self.params.fan_failure_probability}"
            )

        self.logger: DeviceLogger = get_logger(self.__class__.__name__)
        self.logger.debug(
            f"Climate physics created (ambient {self.params.ambient_temperature}F, "
            f"{self.params.ambient_humidity}% RH, "
            f"fan failure p={self.params.fan_failure_probability})"
        )

    # ----------------------------------------------------------------
    # Physics simulation
    # ----------------------------------------------------------------

    def advance(self, state: TwinState, rng: random.Random) -> ClimateStep:
        """Advance the climate by one tick.

        Args:
            state: Current twin record (read only)
            rng: Random source

        Returns:
            ClimateStep with the new readings and fan state
        """
        temperature = state.current_temperature
        humidity = state.current_humidity
        fan_state = state.fan_state
        fan_failed = False

        if fan_state == FanState.ON:
            temperature = self._drive_towards(
                temperature, state.desired_temperature, rng
            )
            humidity = self._drive_towards(humidity, state.desired_humidity, rng)

            if rng.random() < self.params.fan_failure_probability:
                fan_state = FanState.FAILED
                fan_failed = True
        else:
            temperature = self._drift_to_ambient(
                temperature, self.params.ambient_temperature, rng
            )
            humidity = self._drift_to_ambient(
                humidity, self.params.ambient_humidity, rng
            )

        humidity = min(self.params.max_humidity, humidity)

        return ClimateStep(
            temperature=temperature,
            humidity=humidity,
            fan_state=fan_state,
            fan_failed=fan_failed,
        )

    def _drive_towards(
        self, current: float, desired: float, rng: random.Random
    ) -> float:
        """Biased random walk towards the setpoint (fan running)."""
        direction = _sign(desired - current)
        return current + direction * rng.random() + rng.random() - 0.5

    def _drift_to_ambient(
        self, current: float, ambient: float, rng: random.Random
    ) -> float:
        """Slow creep to ambient, then random walk (fan off or failed)."""
        offset = ambient - current
        if abs(offset) > self.params.ambient_band:
            return current + _sign(offset) * rng.uniform(
                0.0, self.params.ambient_drift_max
            )
        return current + rng.random() - 0.5

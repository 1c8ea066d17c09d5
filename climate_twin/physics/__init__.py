"""
Physics simulation for the climate twin device.

Temperature/humidity drift and fan wear of a cave climate controller.
"""

from climate_twin.physics.climate_physics import (
    ClimateParameters,
    ClimatePhysics,
    ClimateStep,
)

__all__ = [
    "ClimatePhysics",
    "ClimateParameters",
    "ClimateStep",
]

"""
Climate twin device simulator.

A simulated cave climate controller that provisions itself, keeps a device
twin in sync with its hub, and streams synthetic temperature/humidity
telemetry.
"""

__version__ = "0.3.0"

from climate_twin.protocols.loopback.loopback_hub import (
    LoopbackHub,
    LoopbackProvisioner,
    LoopbackSession,
)

__all__ = ["LoopbackHub", "LoopbackProvisioner", "LoopbackSession"]

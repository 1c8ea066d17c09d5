#!/usr/bin/env python3
"""
Example: Driving the Climate Twin from the Cloud Side

Runs one device session against the in-memory loopback hub and plays the
part of an operator editing the twin:
  - initial desired state from config/transport.yml
  - a setpoint change while telemetry is streaming
  - a bad fan state that is rejected field by field

No cloud account needed:
  python examples/loopback_twin_demo.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tools.device_manager import DeviceManager


async def wait_for_events(hub, count: int) -> None:
    while len(hub.events) < count:
        await asyncio.sleep(0.05)


def print_events(hub, start: int) -> None:
    for event in hub.events[start:]:
        alerts = {k: v for k, v in event.properties.items() if k != "sensorID"}
        print(f"  • {event.body}  {alerts}")


async def main():
    """Loopback twin demonstration."""

    print("=" * 70)
    print("Climate Twin Loopback Demo")
    print("=" * 70)
    print()

    # ================================================================
    # STEP 1: Start the device
    # ================================================================
    print("[1/3] Starting device session...")

    manager = DeviceManager(config_dir=str(project_root / "config"), seed=7)
    await manager.initialise()
    manager.settings.interval_seconds = 0.2
    session_task = asyncio.create_task(manager.run_session())

    hub = manager.hub
    await wait_for_events(hub, 3)
    print(f"✓ Reported: {hub.reported}")
    print_events(hub, 0)
    print()

    # ================================================================
    # STEP 2: Change setpoints
    # ================================================================
    print("[2/3] Operator lowers the temperature setpoint to 55...")

    seen = len(hub.events)
    await hub.push_desired({"temperature": "55"})
    await wait_for_events(hub, seen + 5)
    print(f"✓ Reported: {hub.reported}")
    print_events(hub, seen)
    print()

    # ================================================================
    # STEP 3: Bad input
    # ================================================================
    print("[3/3] Operator sends fanstate 'turbo' with humidity 90...")

    await hub.push_desired({"fanstate": "turbo", "humidity": "90"})
    print(f"✓ Reported: {hub.reported}")
    print(f"  • Fields rejected so far: {manager.state_sync.fields_rejected}")
    print()

    manager.request_shutdown()
    await session_task

    print("=" * 70)
    print(f"Session closed after {len(hub.events)} telemetry events")
    print("=" * 70)


if __name__ == "__main__":
    asyncio.run(main())

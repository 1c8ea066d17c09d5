# tests/integration/__init__.py
"""
Integration tests for the climate twin device.

These tests run the real DeviceManager, physics and state handling
against the in-memory loopback hub, covering a full session from
provisioning to shutdown.

Running Integration Tests:
    pytest tests/integration/                    # All integration tests
    pytest tests/integration/ -k lifecycle       # Lifecycle tests only
"""

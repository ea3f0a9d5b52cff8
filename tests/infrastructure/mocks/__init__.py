"""In-memory stand-ins for serial hardware."""

from .serial_mocks import FakeClock, FakePort, FakeSerialBus, ScriptedTransport

__all__ = ["FakeClock", "FakePort", "FakeSerialBus", "ScriptedTransport"]

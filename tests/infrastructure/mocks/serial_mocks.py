"""In-memory serial ports for testing without receivers attached.

``ScriptedTransport`` implements the engine transport interface on top of an
asyncio queue; ``FakeSerialBus`` hands out transports per port/baud so the
scanner and connection manager can be driven end to end.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from scout_gps.devices.port_enumerator import PortDescriptor
from scout_gps.gps_core.transports import BaseGPSTransport

Responder = Callable[[bytes], Optional[bytes]]

_LINK_FAILURE = object()

# What a UART shows when the baud rate does not match the sender
MISMATCHED_BAUD_NOISE = b"\xfe\x1c\x00\x9f\xe0\x13\x7f\x86\x00\xfc"


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class ScriptedTransport(BaseGPSTransport):
    """Transport whose inbound bytes are scripted by the test."""

    def __init__(
        self,
        port: str = "/dev/ttyMOCK0",
        baudrate: int = 9600,
        *,
        chunks: Sequence[bytes] = (),
        responder: Optional[Responder] = None,
        open_error: Optional[str] = None,
    ):
        super().__init__()
        self.port = port
        self.baudrate = baudrate
        self.responder = responder
        self.open_error = open_error
        self.write_ok = True
        self.writes: List[bytes] = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self._queue: asyncio.Queue = asyncio.Queue()
        self._failure_reason = "device disconnected"
        self._open_gate = asyncio.Event()
        self._open_gate.set()
        for chunk in chunks:
            self._queue.put_nowait(chunk)

    # =========================================================================
    # Test controls
    # =========================================================================

    def feed(self, data: bytes) -> None:
        """Queue bytes as if the receiver had sent them."""
        self._queue.put_nowait(data)

    def fail(self, reason: str = "device disconnected") -> None:
        """Make the next read report a link failure."""
        self._failure_reason = reason
        self._queue.put_nowait(_LINK_FAILURE)

    def hold_open(self) -> None:
        """Make connect() block until release_open()."""
        self._open_gate.clear()

    def release_open(self) -> None:
        self._open_gate.set()

    # =========================================================================
    # Transport interface
    # =========================================================================

    async def connect(self) -> bool:
        self.connect_calls += 1
        await self._open_gate.wait()
        if self.open_error:
            self._last_error = self.open_error
            return False
        self._connected = True
        self._last_error = None
        return True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    async def read_chunk(self, timeout: float) -> Optional[bytes]:
        if not self._connected:
            self._last_error = "Not connected"
            return None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return b""
        if item is _LINK_FAILURE:
            self._connected = False
            self._last_error = self._failure_reason
            return None
        return item

    async def write(self, data: bytes, timeout: float) -> bool:
        if not self._connected or not self.write_ok:
            self._last_error = "write failed"
            return False
        self.writes.append(bytes(data))
        if self.responder is not None:
            reply = self.responder(bytes(data))
            if reply:
                self.feed(reply)
        return True


@dataclass
class FakePort:
    descriptor: PortDescriptor
    baud_rate: Optional[int] = None
    chunks: List[bytes] = field(default_factory=list)
    responder: Optional[Responder] = None
    open_error: Optional[str] = None


class FakeSerialBus:
    """A set of serial ports, some with receivers attached.

    ``factory`` matches the engine's TransportFactory signature and
    ``list_ports`` its PortLister.
    """

    def __init__(self) -> None:
        self.ports: Dict[str, FakePort] = {}
        self.opened: List[Tuple[str, int]] = []
        self.transports: List[ScriptedTransport] = []

    def add_port(
        self,
        name: str,
        *,
        likely_gps: bool = False,
        serial_number: Optional[str] = None,
        open_error: Optional[str] = None,
    ) -> FakePort:
        """A port with nothing useful attached."""
        descriptor = PortDescriptor(
            name=name,
            port_type="USB",
            manufacturer="u-blox AG" if likely_gps else "FTDI",
            product="u-blox GNSS receiver" if likely_gps else "FT232R USB UART",
            serial_number=serial_number,
            vid=0x1546 if likely_gps else 0x0403,
            pid=0x01A8 if likely_gps else 0x6001,
            is_likely_gps=likely_gps,
            is_ublox=likely_gps,
        )
        port = FakePort(descriptor=descriptor, open_error=open_error)
        self.ports[name] = port
        return port

    def add_receiver(
        self,
        name: str,
        baud_rate: int,
        chunks: Sequence[bytes],
        *,
        responder: Optional[Responder] = None,
        likely_gps: bool = True,
        serial_number: Optional[str] = "SN-0001",
    ) -> FakePort:
        """A port with a receiver talking at ``baud_rate``."""
        port = self.add_port(name, likely_gps=likely_gps, serial_number=serial_number)
        port.baud_rate = baud_rate
        port.chunks = list(chunks)
        port.responder = responder
        return port

    def factory(self, name: str, baud_rate: int) -> ScriptedTransport:
        self.opened.append((name, baud_rate))
        port = self.ports.get(name)
        if port is None:
            transport = ScriptedTransport(name, baud_rate, open_error=f"could not open port {name}")
        elif port.open_error:
            transport = ScriptedTransport(name, baud_rate, open_error=port.open_error)
        elif port.baud_rate == baud_rate:
            transport = ScriptedTransport(
                name, baud_rate, chunks=port.chunks, responder=port.responder
            )
        elif port.baud_rate is not None:
            transport = ScriptedTransport(name, baud_rate, chunks=[MISMATCHED_BAUD_NOISE])
        else:
            transport = ScriptedTransport(name, baud_rate)
        self.transports.append(transport)
        return transport

    async def list_ports(self) -> List[PortDescriptor]:
        return [port.descriptor for port in self.ports.values()]

    def last_transport(self, name: str) -> ScriptedTransport:
        for transport in reversed(self.transports):
            if transport.port == name:
                return transport
        raise LookupError(name)


__all__ = [
    "FakeClock",
    "FakePort",
    "FakeSerialBus",
    "MISMATCHED_BAUD_NOISE",
    "ScriptedTransport",
]

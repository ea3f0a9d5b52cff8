"""Port x baud discovery of GPS receivers.

The scanner probes every candidate port at each baud rate until one
checksum-valid NMEA sentence arrives. The first hit is handed to the
ConnectionManager; remaining ports are still probed so that additional
receivers are reported for manual switch-over.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..core.errors import BusyError, GPSEngineError, PortIOError
from ..core.logging_utils import get_module_logger
from ..gps_core.connection_manager import ConnectionManager, TransportFactory
from ..gps_core.constants import CANDIDATE_BAUD_RATES, DEFAULT_PROBE_TIMEOUT, DEFAULT_READ_TIMEOUT
from ..gps_core.decoder import ProtocolDecoder
from ..gps_core.transports import SerialGPSTransport
from .port_enumerator import PortDescriptor, likely_gps_first, list_ports

logger = get_module_logger("DeviceScanner")

PortLister = Callable[[], Awaitable[List[PortDescriptor]]]


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    FOUND = "found"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class ScanResult:
    """A port/baud pair that produced valid NMEA."""
    port: PortDescriptor
    baud_rate: int

    def to_dict(self) -> Dict[str, Any]:
        return {"port": self.port.to_dict(), "baud_rate": self.baud_rate}


@dataclass
class ScanStatus:
    state: ScanState = ScanState.IDLE
    current_port: Optional[str] = None
    current_baud: Optional[int] = None
    attempts: int = 0
    found: List[ScanResult] = field(default_factory=list)
    connected: Optional[ScanResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "current_port": self.current_port,
            "current_baud": self.current_baud,
            "attempts": self.attempts,
            "found": [result.to_dict() for result in self.found],
            "connected": self.connected.to_dict() if self.connected else None,
            "error": self.error,
        }


class DeviceScanner:
    """Sequential port x baud discovery with cooperative cancellation."""

    def __init__(
        self,
        connection: ConnectionManager,
        *,
        port_lister: PortLister = list_ports,
        transport_factory: Optional[TransportFactory] = None,
        baud_rates: Sequence[int] = CANDIDATE_BAUD_RATES,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ):
        self._connection = connection
        self._port_lister = port_lister
        self._transport_factory: TransportFactory = transport_factory or SerialGPSTransport
        self._baud_rates = tuple(sorted(baud_rates))
        self._probe_timeout = probe_timeout
        self._read_timeout = read_timeout

        self._status = ScanStatus()
        self._cancel_requested = False

    @property
    def state(self) -> ScanState:
        return self._status.state

    @property
    def is_scanning(self) -> bool:
        return self._status.state is ScanState.SCANNING

    def status(self) -> ScanStatus:
        current = self._status
        return ScanStatus(
            state=current.state,
            current_port=current.current_port,
            current_baud=current.current_baud,
            attempts=current.attempts,
            found=list(current.found),
            connected=current.connected,
            error=current.error,
        )

    def cancel(self) -> bool:
        """Request cancellation. Observed before the next attempt and while probing."""
        if not self.is_scanning:
            return False
        self._cancel_requested = True
        logger.info("Scan cancellation requested")
        return True

    async def probe(
        self,
        port_name: str,
        baud_rate: int,
        timeout: Optional[float] = None,
        *,
        cancellable: bool = False,
    ) -> bool:
        """Open ``port_name`` briefly and wait for one checksum-valid sentence.

        Raises:
            PortIOError: the port could not be opened.
        """
        deadline = time.monotonic() + (self._probe_timeout if timeout is None else timeout)
        decoder = ProtocolDecoder(ubx_enabled=False)
        transport = self._transport_factory(port_name, baud_rate)

        if not await transport.connect():
            raise PortIOError(
                f"{port_name}: {transport.last_error or 'open failed'}", operation="probe"
            )

        try:
            while True:
                if cancellable and self._cancel_requested:
                    return False
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                chunk = await transport.read_chunk(min(self._read_timeout, remaining))
                if chunk is None:
                    logger.debug("Probe read failed on %s: %s", port_name, transport.last_error)
                    return False
                if chunk and any(item.is_nmea for item in decoder.feed(chunk)):
                    return True
        finally:
            await transport.disconnect()

    async def scan(self) -> ScanStatus:
        """Run one discovery pass and return its final status.

        Raises:
            BusyError: a scan is already running.
        """
        if self.is_scanning:
            raise BusyError("a scan is already running", operation="auto_detect")

        self._cancel_requested = False
        self._status = ScanStatus(state=ScanState.SCANNING)
        status = self._status

        try:
            ports = likely_gps_first(await self._port_lister())
            logger.info("Scanning %d ports at %s baud", len(ports), list(self._baud_rates))

            for port in ports:
                if port.name == self._connection.owned_port:
                    logger.debug("Skipping %s (in use by active connection)", port.name)
                    continue
                if await self._scan_port(port, status):
                    return status

            status.state = ScanState.FOUND if status.found else ScanState.NOT_FOUND
        except asyncio.CancelledError:
            status.state = ScanState.CANCELLED
            raise
        except GPSEngineError as exc:
            status.state = ScanState.ERROR
            status.error = exc.user_message()
            logger.error("Scan failed: %s", status.error)
        finally:
            status.current_port = None
            status.current_baud = None

        logger.info("Scan finished: %s (%d found)", status.state.value, len(status.found))
        return status

    async def _scan_port(self, port: PortDescriptor, status: ScanStatus) -> bool:
        """Probe one port at every baud. Returns True if the scan was cancelled."""
        for baud in self._baud_rates:
            if self._cancel_requested:
                status.state = ScanState.CANCELLED
                return True

            status.current_port = port.name
            status.current_baud = baud
            status.attempts += 1
            try:
                matched = await self.probe(port.name, baud, cancellable=True)
            except PortIOError as exc:
                logger.debug("Abandoning %s: %s", port.name, exc.message)
                return False

            if self._cancel_requested:
                status.state = ScanState.CANCELLED
                return True

            if matched:
                result = ScanResult(port=port, baud_rate=baud)
                status.found.append(result)
                logger.info("GPS found on %s at %d baud", port.name, baud)
                if status.connected is None and self._connection.owned_port is None:
                    await self._connect(result, status)
                return False
        return False

    async def _connect(self, result: ScanResult, status: ScanStatus) -> None:
        try:
            await self._connection.connect(result.port.name, result.baud_rate)
        except GPSEngineError as exc:
            logger.warning("Could not connect to %s: %s", result.port.name, exc.message)
            return
        status.connected = result


__all__ = ["DeviceScanner", "ScanResult", "ScanState", "ScanStatus"]

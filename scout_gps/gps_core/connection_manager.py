"""Single serial connection to a GPS receiver.

The manager owns at most one transport and one reader task. The reader task
is the only writer of the NavigationState; decoding a chunk never awaits, so
``snapshot()`` always returns a consistent copy.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from ..core.errors import BusyError, InvalidTransitionError, NotConnectedError, PortIOError
from ..core.logging_utils import get_module_logger
from .constants import DEFAULT_NMEA_HISTORY, DEFAULT_READ_TIMEOUT, DEFAULT_WRITE_TIMEOUT
from .decoder import DecodedItem, ProtocolDecoder
from .parsers.nmea_types import NavigationState
from .parsers.ubx import UbxAck
from .transports import BaseGPSTransport, SerialGPSTransport

logger = get_module_logger("ConnectionManager")

TransportFactory = Callable[[str, int], BaseGPSTransport]

# Awaited after the link is up, with (manager, port, baud)
ConnectHook = Callable[["ConnectionManager", str, int], Awaitable[Any]]


class ConnectionState(Enum):
    """Connection lifecycle."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECEIVING_DATA = "receiving_data"
    ERROR = "error"


_TRANSITIONS: Dict[ConnectionState, frozenset] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.CONNECTED, ConnectionState.ERROR, ConnectionState.DISCONNECTED,
    }),
    ConnectionState.CONNECTED: frozenset({
        ConnectionState.RECEIVING_DATA, ConnectionState.ERROR, ConnectionState.DISCONNECTED,
    }),
    ConnectionState.RECEIVING_DATA: frozenset({
        ConnectionState.ERROR, ConnectionState.DISCONNECTED,
    }),
    ConnectionState.ERROR: frozenset({ConnectionState.DISCONNECTED}),
}

_LINK_UP = frozenset({ConnectionState.CONNECTED, ConnectionState.RECEIVING_DATA})


@dataclass
class ConnectionStatus:
    """Point-in-time view of the connection."""
    state: ConnectionState
    port_name: Optional[str] = None
    baud_rate: Optional[int] = None
    sentences_received: int = 0
    decode_errors: int = 0
    last_error: Optional[str] = None
    last_fix_time: Optional[dt.datetime] = None
    last_decode_monotonic: Optional[float] = None

    def age_seconds(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since the last decoded item, None if nothing decoded yet."""
        if self.last_decode_monotonic is None:
            return None
        current = time.monotonic() if now is None else now
        return max(0.0, current - self.last_decode_monotonic)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "port_name": self.port_name,
            "baud_rate": self.baud_rate,
            "sentences_received": self.sentences_received,
            "decode_errors": self.decode_errors,
            "last_error": self.last_error,
            "last_fix_time": self.last_fix_time.isoformat() if self.last_fix_time else None,
            "data_age_seconds": self.age_seconds(),
        }


def _task_exception_handler(task: asyncio.Task) -> None:
    """Handle exceptions from fire-and-forget tasks."""
    try:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unhandled exception in reader task: %s", exc)
    except asyncio.CancelledError:
        pass


class ConnectionManager:
    """Owns the active receiver connection and its reader task."""

    def __init__(
        self,
        *,
        transport_factory: Optional[TransportFactory] = None,
        ubx_enabled: bool = True,
        history: int = DEFAULT_NMEA_HISTORY,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        on_connect: Optional[ConnectHook] = None,
    ):
        self._transport_factory: TransportFactory = transport_factory or SerialGPSTransport
        self._ubx_enabled = ubx_enabled
        self._on_connect = on_connect
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._port: Optional[str] = None
        self._baud: Optional[int] = None
        self._last_error: Optional[str] = None
        self._last_fix_time: Optional[dt.datetime] = None
        self._last_decode: Optional[float] = None

        self._decoder = ProtocolDecoder(ubx_enabled=ubx_enabled)
        self._transport: Optional[BaseGPSTransport] = None
        self._read_task: Optional[asyncio.Task] = None
        self._sentences: Deque[str] = deque(maxlen=history)

        self._ack_waiters: Dict[Tuple[int, int], List[asyncio.Future]] = {}
        self._poll_waiters: Dict[str, List[asyncio.Future]] = {}

        # connect/disconnect/reset run one at a time
        self._lifecycle_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_link_up(self) -> bool:
        return self._state in _LINK_UP

    @property
    def owned_port(self) -> Optional[str]:
        """Port held by this manager, if any."""
        if self._state is ConnectionState.DISCONNECTED:
            return None
        return self._port

    def snapshot(self) -> NavigationState:
        return self._decoder.state.copy()

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            port_name=self._port,
            baud_rate=self._baud,
            sentences_received=self._decoder.sentences_decoded,
            decode_errors=self._decoder.decode_errors,
            last_error=self._last_error,
            last_fix_time=self._last_fix_time,
            last_decode_monotonic=self._last_decode,
        )

    def data_age(self) -> Optional[float]:
        if self._last_decode is None:
            return None
        return max(0.0, self._clock() - self._last_decode)

    def get_sentence_buffer(self) -> List[str]:
        return list(self._sentences)

    def clear_sentence_buffer(self) -> None:
        self._sentences.clear()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"cannot go from {self._state.value} to {new_state.value}",
                operation="connection",
            )
        logger.debug("%s -> %s", self._state.value, new_state.value)
        self._state = new_state

    async def connect(self, port: str, baud_rate: int) -> None:
        """Open ``port`` and start the reader task.

        Raises:
            BusyError: a connection is already active or being opened.
            InvalidTransitionError: the manager is in error and needs reset().
            PortIOError: the port could not be opened, or the link failed
                while the connect hook was configuring the receiver.
        """
        self._check_can_connect()
        async with self._lifecycle_lock:
            self._check_can_connect()
            await self._open(port, baud_rate)
            if self._on_connect is None:
                return
            await self._on_connect(self, port, baud_rate)
            if self._state is ConnectionState.ERROR:
                raise PortIOError(
                    f"{port} @ {baud_rate}: {self._last_error}", operation="connect"
                )

    def _check_can_connect(self) -> None:
        if self._state in (ConnectionState.CONNECTING, *_LINK_UP):
            raise BusyError(f"already connected to {self._port}", operation="connect")
        if self._state is ConnectionState.ERROR:
            raise InvalidTransitionError(
                "connection is in error state; reset first", operation="connect"
            )

    async def _open(self, port: str, baud_rate: int) -> None:
        self._transition(ConnectionState.CONNECTING)
        self._port = port
        self._baud = baud_rate
        self._last_error = None
        self._last_fix_time = None
        self._last_decode = None
        self._decoder = ProtocolDecoder(ubx_enabled=self._ubx_enabled)
        self._sentences.clear()

        transport = self._transport_factory(port, baud_rate)
        self._transport = transport
        try:
            opened = await transport.connect()
        except asyncio.CancelledError:
            await transport.disconnect()
            self._transport = None
            self._transition(ConnectionState.DISCONNECTED)
            raise

        if not opened:
            reason = transport.last_error or "open failed"
            self._transport = None
            self._fail(reason)
            raise PortIOError(f"{port} @ {baud_rate}: {reason}", operation="connect")

        self._transition(ConnectionState.CONNECTED)
        self._read_task = asyncio.create_task(self._read_loop(transport))
        self._read_task.add_done_callback(_task_exception_handler)
        logger.info("Connected to %s at %d baud", port, baud_rate)

    async def disconnect(self) -> None:
        """Stop reading and close the port. The last state stays readable.

        A disconnect issued while a connect is in flight waits for it, then
        closes whatever it opened.
        """
        async with self._lifecycle_lock:
            await self._close()

    async def reset(self) -> None:
        """Clear an error state."""
        async with self._lifecycle_lock:
            if self._state is not ConnectionState.ERROR:
                raise InvalidTransitionError(
                    f"reset requires error state, not {self._state.value}", operation="reset"
                )
            await self._close()

    async def _close(self) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return

        await self._release_link()
        self._fail_waiters(NotConnectedError("connection closed", operation="disconnect"))
        self._transition(ConnectionState.DISCONNECTED)
        logger.info("Disconnected from %s", self._port)

    async def _release_link(self) -> None:
        """Stop the reader task and close the transport."""
        task = self._read_task
        self._read_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        transport = self._transport
        self._transport = None
        if transport is not None:
            await transport.disconnect()

    def _fail(self, reason: str) -> None:
        if self._state in (ConnectionState.ERROR, ConnectionState.DISCONNECTED):
            # first failure wins; the link is already down
            logger.debug("Ignoring error on %s (%s): %s", self._port, self._state.value, reason)
            return
        self._last_error = reason
        self._transition(ConnectionState.ERROR)
        logger.error("Connection error on %s: %s", self._port, reason)
        self._fail_waiters(PortIOError(reason, operation="read"))

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _read_loop(self, transport: BaseGPSTransport) -> None:
        try:
            while True:
                chunk = await transport.read_chunk(self._read_timeout)
                if chunk is None:
                    self._fail(transport.last_error or "read failed")
                    break
                if chunk:
                    self._process_chunk(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Reader task failed on %s", self._port)
            self._fail(str(exc) or exc.__class__.__name__)
        finally:
            if self._state is ConnectionState.ERROR:
                self._transport = None
                await transport.disconnect()

    def _process_chunk(self, chunk: bytes) -> None:
        items = self._decoder.feed(chunk)
        if not items:
            return

        self._last_decode = self._clock()
        for item in items:
            if item.is_nmea:
                self._on_sentence(item)
            else:
                self._on_ubx(item)

    def _on_sentence(self, item: DecodedItem) -> None:
        self._sentences.append(item.raw)
        if self._state is ConnectionState.CONNECTED:
            self._transition(ConnectionState.RECEIVING_DATA)
        if item.sentence_type == "GGA" and self._decoder.state.has_fix():
            self._last_fix_time = dt.datetime.now(dt.timezone.utc)

    def _on_ubx(self, item: DecodedItem) -> None:
        if item.ack is not None:
            self._resolve(self._ack_waiters, (item.ack.class_id, item.ack.msg_id), item.ack)
        else:
            self._resolve(self._poll_waiters, item.sentence_type, item.message)

    @staticmethod
    def _resolve(waiters: Dict[Any, List[asyncio.Future]], key: Any, value: Any) -> None:
        for future in waiters.pop(key, []):
            if not future.done():
                future.set_result(value)

    def _fail_waiters(self, exc: Exception) -> None:
        for waiters in (self._ack_waiters, self._poll_waiters):
            for futures in waiters.values():
                for future in futures:
                    if not future.done():
                        future.set_exception(exc)
            waiters.clear()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_command(self, frame: bytes) -> None:
        """Write raw bytes to the receiver.

        Raises:
            NotConnectedError: no open link.
            PortIOError: the write failed or timed out (the link goes to error
                and the port is closed).
        """
        transport = self._transport
        if not self.is_link_up or transport is None:
            raise NotConnectedError("no active connection", operation="send_command")

        if not await transport.write(frame, self._write_timeout):
            reason = transport.last_error or "write failed"
            self._fail(reason)
            if self._transport is transport:
                await self._release_link()
            raise PortIOError(reason, operation="send_command")

    async def _send_and_wait(
        self, waiters: Dict[Any, List[asyncio.Future]], key: Any, frame: bytes, timeout: float
    ) -> Any:
        future = asyncio.get_running_loop().create_future()
        waiters.setdefault(key, []).append(future)
        try:
            await self.send_command(frame)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            if future.done() and not future.cancelled():
                future.exception()
            pending = waiters.get(key)
            if pending and future in pending:
                pending.remove(future)
                if not pending:
                    del waiters[key]

    async def send_ubx_and_wait_ack(self, frame: bytes, timeout: float) -> Optional[UbxAck]:
        """Send a UBX command and wait for its ACK-ACK/ACK-NAK.

        Returns None when no acknowledgement arrived within ``timeout``.
        """
        return await self._send_and_wait(self._ack_waiters, (frame[2], frame[3]), frame, timeout)

    async def poll_ubx(self, frame: bytes, identity: str, timeout: float) -> Any:
        """Send a UBX poll and wait for the response message named ``identity``."""
        return await self._send_and_wait(self._poll_waiters, identity, frame, timeout)


__all__ = ["ConnectionManager", "ConnectionState", "ConnectionStatus"]

"""Serial transport for GPS receivers.

This module provides serial transport using serial_asyncio for efficient
non-blocking I/O with USB and UART GPS receivers.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

import serial
import serial_asyncio

from ...core.logging_utils import get_module_logger
from ..constants import (
    DEFAULT_BAUD_RATE,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_READ_SIZE,
    DEFAULT_WRITE_TIMEOUT,
)
from .base_transport import BaseGPSTransport

logger = get_module_logger("SerialTransport")


class SerialGPSTransport(BaseGPSTransport):
    """Serial transport for GPS receivers.

    Example:
        transport = SerialGPSTransport("/dev/ttyACM0", 9600)
        async with transport:
            chunk = await transport.read_chunk(timeout=0.5)
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUD_RATE,
        *,
        open_timeout: float = DEFAULT_PROBE_TIMEOUT,
        read_size: int = DEFAULT_READ_SIZE,
    ):
        """Initialize the serial transport.

        Args:
            port: Serial port path (e.g., '/dev/ttyUSB0' or 'COM3')
            baudrate: Serial baudrate (default 9600 for most GPS)
            open_timeout: Upper bound for opening the port
            read_size: Maximum bytes returned by one read
        """
        super().__init__()
        self.port = port
        self.baudrate = baudrate
        self.open_timeout = open_timeout
        self.read_size = read_size

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def is_connected(self) -> bool:
        """Check if the serial connection is open."""
        return self._connected and self._reader is not None

    async def connect(self) -> bool:
        """Open the serial connection.

        Returns:
            True if connection was successful
        """
        if self.is_connected:
            logger.debug("Already connected to %s", self.port)
            return True

        try:
            self._reader, self._writer = await asyncio.wait_for(
                serial_asyncio.open_serial_connection(url=self.port, baudrate=self.baudrate),
                timeout=self.open_timeout,
            )
            self._connected = True
            self._last_error = None
            logger.info("Opened %s at %d baud", self.port, self.baudrate)
            return True

        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self._last_error = f"timed out opening {self.port}"
        except (serial.SerialException, OSError, ValueError) as exc:
            self._last_error = str(exc) or exc.__class__.__name__

        logger.warning(
            "Failed to open %s at %d baud: %s", self.port, self.baudrate, self._last_error
        )
        self._connected = False
        self._reader = None
        self._writer = None
        return False

    async def disconnect(self) -> None:
        """Close the serial connection."""
        if self._writer is None:
            self._connected = False
            return

        writer = self._writer
        self._writer = None
        self._reader = None
        self._connected = False

        with contextlib.suppress(Exception):
            writer.close()

        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
        except asyncio.TimeoutError:
            logger.debug("Timeout waiting for serial close on %s", self.port)
        except (serial.SerialException, OSError) as exc:
            logger.debug("Error closing serial on %s: %s", self.port, exc)

        logger.info("Closed %s", self.port)

    async def read_chunk(self, timeout: float) -> Optional[bytes]:
        """Read up to ``read_size`` bytes.

        Returns:
            The bytes read, b"" on timeout, or None on EOF/error
        """
        if not self.is_connected or self._reader is None:
            self._last_error = self._last_error or "not connected"
            return None

        try:
            data = await asyncio.wait_for(self._reader.read(self.read_size), timeout=timeout)
        except asyncio.TimeoutError:
            return b""
        except asyncio.CancelledError:
            raise
        except (serial.SerialException, OSError) as exc:
            self._last_error = str(exc) or exc.__class__.__name__
            logger.warning("Read error on %s: %s", self.port, self._last_error)
            return None

        if not data:
            logger.warning("Serial stream ended on %s (EOF)", self.port)
            self._last_error = "Stream ended (EOF)"
            return None
        return data

    async def write(self, data: bytes, timeout: float = DEFAULT_WRITE_TIMEOUT) -> bool:
        if not self.is_connected or self._writer is None:
            self._last_error = "not connected"
            return False

        try:
            self._writer.write(data)
            await asyncio.wait_for(self._writer.drain(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            self._last_error = f"write timed out after {timeout:.1f}s"
        except asyncio.CancelledError:
            raise
        except (serial.SerialException, OSError) as exc:
            self._last_error = str(exc) or exc.__class__.__name__

        logger.warning("Write error on %s: %s", self.port, self._last_error)
        return False

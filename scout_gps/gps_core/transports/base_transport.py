"""Base transport for GPS receivers.

Transports move raw bytes; framing and decoding live in the decoder.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class BaseGPSTransport(ABC):
    """Byte-oriented, bidirectional link to a receiver.

    ``read_chunk`` returns ``b""`` when nothing arrived within the timeout
    and ``None`` when the link failed (see ``last_error``).
    """

    def __init__(self) -> None:
        self._connected = False
        self._last_error: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def last_error(self) -> Optional[str]:
        """Get the last error message, if any."""
        return self._last_error

    @abstractmethod
    async def connect(self) -> bool:
        """Open the link. Returns True on success."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the link. Safe to call more than once."""

    @abstractmethod
    async def read_chunk(self, timeout: float) -> Optional[bytes]:
        """Read whatever bytes are available."""

    @abstractmethod
    async def write(self, data: bytes, timeout: float) -> bool:
        """Write ``data`` and drain. Returns True on success."""

    async def __aenter__(self) -> "BaseGPSTransport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

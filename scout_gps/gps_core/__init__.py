"""GPS protocol decoding and connection handling."""

from .connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from .decoder import DecodedItem, ProtocolDecoder
from .parsers import (
    Constellation,
    FixQuality,
    NMEAParser,
    NavigationState,
    ReceiverIdentity,
    SatelliteRecord,
    UbloxSeries,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "Constellation",
    "DecodedItem",
    "FixQuality",
    "NMEAParser",
    "NavigationState",
    "ProtocolDecoder",
    "ReceiverIdentity",
    "SatelliteRecord",
    "UbloxSeries",
]

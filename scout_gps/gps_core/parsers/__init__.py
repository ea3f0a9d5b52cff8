"""NMEA and UBX parsing."""

from .nmea_parser import NMEAParser, constellation_for, nmea_checksum, validate_checksum
from .nmea_types import (
    Constellation,
    FixQuality,
    NavigationState,
    SatelliteRecord,
)
from .ubx import ReceiverIdentity, UbloxSeries, UbxAck

__all__ = [
    "Constellation",
    "FixQuality",
    "NMEAParser",
    "NavigationState",
    "ReceiverIdentity",
    "SatelliteRecord",
    "UbloxSeries",
    "UbxAck",
    "constellation_for",
    "nmea_checksum",
    "validate_checksum",
]

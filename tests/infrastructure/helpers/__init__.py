"""Test helpers: protocol data generators and async assertions."""

from .assertions import wait_until
from .generators import (
    UbloxResponder,
    ack_frame,
    gga,
    gsa,
    gsv_cycle,
    hdt,
    mon_ver_frame,
    nmea,
    nmea_checksum,
    nmea_stream,
    rmc,
    satellites_with_snr,
    vtg,
)

__all__ = [
    "UbloxResponder",
    "ack_frame",
    "gga",
    "gsa",
    "gsv_cycle",
    "hdt",
    "mon_ver_frame",
    "nmea",
    "nmea_checksum",
    "nmea_stream",
    "rmc",
    "satellites_with_snr",
    "vtg",
    "wait_until",
]

"""u-blox configuration profiles.

Each profile is an ordered list of UBX-CFG commands built with pyubx2.
CFG-CFG (save to non-volatile memory) is always last so a profile
interrupted midway is never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Sequence, Tuple

from pyubx2 import SET, UBXMessage

from ..core.errors import UnsupportedHardwareError
from ..gps_core.parsers.ubx import UbloxSeries

# NMEA standard message ids (class 0xF0)
NMEA_CLASS = 0xF0
NMEA_GGA = 0x00
NMEA_GLL = 0x01
NMEA_GSA = 0x02
NMEA_GSV = 0x03
NMEA_RMC = 0x04
NMEA_VTG = 0x05

DYN_MODEL_SEA = 5
FIX_MODE_AUTO = 3

# u-blox 7 firmware only accepts the 12-byte (version 0) CFG-NMEA layout
CFG_NMEA_V0_LENGTH = 12


class GnssBlock(NamedTuple):
    """One CFG-GNSS configuration block."""
    gnss_id: int
    reserved_channels: int
    max_channels: int
    signals: int = 0x01  # L1 C/A, L1OF or E1


GPS = 0
SBAS = 1
GALILEO = 2
GLONASS = 6

_MARINE_GPS = GnssBlock(GPS, 8, 16)
_MARINE_SBAS = GnssBlock(SBAS, 1, 3)
_MARINE_GALILEO = GnssBlock(GALILEO, 4, 8)
_MARINE_GLONASS = GnssBlock(GLONASS, 8, 14)


@dataclass(frozen=True)
class UbxCommand:
    name: str
    frame: bytes

    @property
    def ids(self) -> Tuple[int, int]:
        return self.frame[2], self.frame[3]


def _cfg(name: str, identity: str, **fields: Any) -> UbxCommand:
    return UbxCommand(name, UBXMessage("CFG", identity, SET, **fields).serialize())


def _gnss_fields(blocks: Sequence[GnssBlock], marine_flags: bool) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "msgVer": 0,
        "numTrkChHw": 0,
        "numTrkChUse": 0xFF,
        "numConfigBlocks": len(blocks),
    }
    for index, block in enumerate(blocks, start=1):
        suffix = f"_{index:02d}"
        fields["gnssId" + suffix] = block.gnss_id
        fields["resTrkCh" + suffix] = block.reserved_channels
        fields["maxTrkCh" + suffix] = block.max_channels
        fields["enable" + suffix] = 1
        if marine_flags:
            # flags 0x01010001
            fields["sigCfMask" + suffix] = block.signals
            fields["reserved3" + suffix] = 1
    return fields


def cfg_gnss(series: UbloxSeries) -> UbxCommand:
    """Series 7 tracks one GNSS plus SBAS; series 8 runs GPS, Galileo and GLONASS concurrently."""
    if series is UbloxSeries.SERIES_7:
        blocks = [_MARINE_GPS, _MARINE_SBAS]
    else:
        blocks = [_MARINE_GPS, _MARINE_SBAS, _MARINE_GALILEO, _MARINE_GLONASS]
    return _cfg("CFG-GNSS", "CFG-GNSS", **_gnss_fields(blocks, marine_flags=True))


def cfg_gnss_multi_constellation() -> UbxCommand:
    """GPS, SBAS and GLONASS with modest channel reservations."""
    blocks = [GnssBlock(GPS, 4, 8), GnssBlock(SBAS, 1, 3), GnssBlock(GLONASS, 4, 8)]
    return _cfg("CFG-GNSS", "CFG-GNSS", **_gnss_fields(blocks, marine_flags=False))


def cfg_nav5_sea() -> UbxCommand:
    """Dynamic model sea, automatic 2D/3D. Only dynModel is applied."""
    return _cfg(
        "CFG-NAV5", "CFG-NAV5",
        dyn=1,
        dynModel=DYN_MODEL_SEA,
        fixMode=FIX_MODE_AUTO,
        fixedAltVar=1,  # m^2
        minElev=5,
        pDop=25,
        tDop=25,
        pAcc=100,
        tAcc=300,
    )


def cfg_rate_1hz() -> UbxCommand:
    return _cfg("CFG-RATE", "CFG-RATE", measRate=1000, navRate=1, timeRef=1)


def cfg_sbas() -> UbxCommand:
    """SBAS ranging, corrections and integrity; auto-scan PRNs."""
    return _cfg(
        "CFG-SBAS", "CFG-SBAS",
        enabled=1, range=1, diffCorr=1, integrity=1, maxSBAS=3,
    )


def cfg_nmea_extended() -> UbxCommand:
    """NMEA 2.3 with extended talker ids for multi-constellation output."""
    extended = UBXMessage(
        "CFG", "CFG-NMEA", SET, nmeaVersion=0x23, consider=1, version=1
    )
    short = UBXMessage(
        "CFG", "CFG-NMEA", SET, payload=extended.payload[:CFG_NMEA_V0_LENGTH]
    )
    return UbxCommand("CFG-NMEA", short.serialize())


def cfg_msg(nmea_id: int, rate: int, label: str) -> UbxCommand:
    """Output rate on UART1 and USB for one NMEA sentence."""
    return _cfg(
        f"CFG-MSG {label}", "CFG-MSG",
        msgClass=NMEA_CLASS, msgID=nmea_id, rateUART1=rate, rateUSB=rate,
    )


def cfg_save_all() -> UbxCommand:
    """Save every section to BBR, flash, EEPROM and SPI flash."""
    return _cfg(
        "CFG-CFG", "CFG-CFG",
        clearMask=b"\x00\x00\x00\x00",
        saveMask=b"\x1f\x1f\x00\x00",
        loadMask=b"\x00\x00\x00\x00",
        devBBR=1, devFlash=1, devEEPROM=1, devSpiFlash=1,
    )


@dataclass(frozen=True)
class OptimizationProfile:
    name: str
    series: UbloxSeries
    commands: Tuple[UbxCommand, ...]


PROFILE_NAMES = {
    UbloxSeries.SERIES_7: "Series 7 Marine (GPS + SBAS)",
    UbloxSeries.SERIES_8: "Series 8 Marine (GPS + GLONASS + Galileo + SBAS)",
}


def marine_profile(series: UbloxSeries) -> OptimizationProfile:
    """Ordered marine profile for ``series``.

    Raises:
        UnsupportedHardwareError: no profile exists for the series.
    """
    if series not in PROFILE_NAMES:
        raise UnsupportedHardwareError(
            f"no profile for u-blox series '{series.value}'", operation="apply_profile"
        )

    commands: List[UbxCommand] = [
        cfg_gnss(series),
        cfg_nav5_sea(),
        cfg_rate_1hz(),
        cfg_sbas(),
        cfg_nmea_extended(),
        cfg_msg(NMEA_GGA, 1, "GGA"),
        cfg_msg(NMEA_RMC, 1, "RMC"),
        cfg_msg(NMEA_VTG, 1, "VTG"),
        cfg_msg(NMEA_GSA, 1, "GSA"),
        cfg_msg(NMEA_GSV, 1, "GSV"),
        cfg_msg(NMEA_GLL, 0, "GLL"),
        cfg_save_all(),
    ]
    return OptimizationProfile(PROFILE_NAMES[series], series, tuple(commands))


def multi_constellation_commands() -> Tuple[UbxCommand, ...]:
    """Commands sent to a u-blox receiver right after connecting.

    Nothing is saved; the receiver returns to its stored configuration on
    the next power cycle.
    """
    return (
        cfg_gnss_multi_constellation(),
        cfg_nmea_extended(),
        cfg_msg(NMEA_GSV, 1, "GSV"),
    )


__all__ = [
    "OptimizationProfile",
    "PROFILE_NAMES",
    "UbxCommand",
    "marine_profile",
    "multi_constellation_commands",
]

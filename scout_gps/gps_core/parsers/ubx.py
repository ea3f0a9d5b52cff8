"""UBX binary protocol support for u-blox receivers.

Frame validation and message parsing are delegated to pyubx2; this module
turns parsed messages into engine types (receiver identity, acknowledgements)
and builds the MON-VER poll. CFG commands live with the profiles that
send them.

References:
    u-blox 8/M8 Receiver Description (UBX-13003221)
    u-blox 7 Receiver Description (GPS.G7-SW-12001)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pyubx2 import POLL, UBXMessage, UBXReader
from pyubx2.exceptions import UBXMessageError, UBXParseError, UBXTypeError
from pyubx2.ubxhelpers import calc_checksum

from ..constants import UBX_SYNC

UBX_ERRORS = (UBXParseError, UBXMessageError, UBXTypeError)


class UbloxSeries(str, Enum):
    """Detected u-blox chip generation."""

    SERIES_7 = "series_7"
    SERIES_8 = "series_8"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return {
            UbloxSeries.SERIES_7: "Series 7",
            UbloxSeries.SERIES_8: "Series 8",
            UbloxSeries.UNKNOWN: "Unknown",
        }[self]


@dataclass(frozen=True, slots=True)
class ReceiverIdentity:
    """Chip identity reported by UBX-MON-VER."""

    sw_version: str
    hw_version: str
    extensions: Tuple[str, ...] = field(default_factory=tuple)
    series: UbloxSeries = UbloxSeries.UNKNOWN
    chip_name: str = "Unknown"

    @property
    def firmware_version(self) -> Optional[str]:
        for ext in self.extensions:
            if ext.startswith("FWVER="):
                return ext[len("FWVER="):]
        return None

    @property
    def is_recognized(self) -> bool:
        return self.series is not UbloxSeries.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sw_version": self.sw_version,
            "hw_version": self.hw_version,
            "extensions": list(self.extensions),
            "series": self.series.value,
            "chip_name": self.chip_name,
            "firmware_version": self.firmware_version,
        }


@dataclass(frozen=True, slots=True)
class UbxAck:
    """ACK-ACK / ACK-NAK for a previously sent command."""

    class_id: int
    msg_id: int
    accepted: bool


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("ascii", errors="ignore")
    return str(value).replace("\x00", "").strip()


def classify_series(hw_version: str, extensions: Tuple[str, ...]) -> Tuple[UbloxSeries, str]:
    """Map MON-VER hardware version and extensions to (series, chip name)."""
    if "G70" in hw_version or hw_version.startswith("00070"):
        return UbloxSeries.SERIES_7, "u-blox 7"

    if "M80" in hw_version or hw_version.startswith("00080"):
        for ext in extensions:
            if ext.startswith("MOD="):
                return UbloxSeries.SERIES_8, ext[len("MOD="):]
        for ext in extensions:
            if ext.startswith("FWVER="):
                fw = ext[len("FWVER="):]
                if fw.startswith("TIM"):
                    return UbloxSeries.SERIES_8, "NEO-M8T"
                if fw.startswith("HPG"):
                    return UbloxSeries.SERIES_8, "NEO-M8P"
                if fw.startswith("ADR"):
                    return UbloxSeries.SERIES_8, "NEO-M8U"
        return UbloxSeries.SERIES_8, "u-blox M8"

    return UbloxSeries.UNKNOWN, f"u-blox (HW: {hw_version})"


def identity_from_mon_ver(msg: UBXMessage) -> ReceiverIdentity:
    """Build a ReceiverIdentity from a parsed UBX-MON-VER message."""
    sw_version = _text(getattr(msg, "swVersion", None))
    hw_version = _text(getattr(msg, "hwVersion", None))

    extensions = []
    index = 1
    while True:
        ext = getattr(msg, f"extension_{index:02d}", None)
        if ext is None:
            break
        text = _text(ext)
        if text:
            extensions.append(text)
        index += 1

    series, chip_name = classify_series(hw_version, tuple(extensions))
    return ReceiverIdentity(
        sw_version=sw_version,
        hw_version=hw_version,
        extensions=tuple(extensions),
        series=series,
        chip_name=chip_name,
    )


def ack_from_message(msg: UBXMessage) -> Optional[UbxAck]:
    if msg.identity not in ("ACK-ACK", "ACK-NAK"):
        return None
    return UbxAck(
        class_id=int(msg.clsID),
        msg_id=int(msg.msgID),
        accepted=msg.identity == "ACK-ACK",
    )


def frame_checksum_ok(frame: bytes) -> bool:
    """Verify the Fletcher checksum over class, id, length and payload."""
    if len(frame) < 8 or not frame.startswith(UBX_SYNC):
        return False
    return calc_checksum(frame[2:-2]) == frame[-2:]


def parse_frame(frame: bytes) -> UBXMessage:
    """Parse a complete, checksum-valid frame. Raises one of UBX_ERRORS."""
    return UBXReader.parse(frame)


# ----------------------------------------------------------------------
# Command construction
# ----------------------------------------------------------------------


def build_mon_ver_poll() -> bytes:
    return UBXMessage("MON", "MON-VER", POLL).serialize()

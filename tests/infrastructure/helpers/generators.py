"""Test data generators for NMEA sentences and UBX frames.

Generated sentences carry valid checksums unless asked otherwise, so tests
can focus on the behaviour under test rather than on protocol details.

Usage:
    from tests.infrastructure.helpers import gga, gsv_cycle, nmea_stream

    data = nmea_stream(gga(satellites=8), *gsv_cycle("GP", [(1, 45, 90, 32)]))
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from pyubx2 import GET, UBXMessage

SatelliteSpec = Tuple[int, Optional[int], Optional[int], Optional[int]]


def nmea_checksum(body: str) -> str:
    """Two-character hex XOR of the characters between ``$`` and ``*``.

    Example:
        >>> nmea_checksum("GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,")
        '47'
    """
    checksum = 0
    for char in body:
        checksum ^= ord(char)
    return f"{checksum:02X}"


def nmea(body: str, *, checksum: Optional[str] = None) -> str:
    """Wrap ``body`` as ``$body*CS``. Pass ``checksum`` to force a bad one."""
    return f"${body}*{checksum if checksum is not None else nmea_checksum(body)}"


def nmea_stream(*sentences: str) -> bytes:
    """CRLF-terminated wire bytes for ``sentences``."""
    return "".join(f"{sentence}\r\n" for sentence in sentences).encode("ascii")


def gga(
    *,
    fix_quality: int = 1,
    satellites: int = 8,
    hdop: Optional[float] = 1.4,
    lat: str = "4807.038",
    ns: str = "N",
    lon: str = "01131.000",
    ew: str = "E",
    altitude: Optional[float] = 545.4,
    time: str = "123519",
    talker: str = "GP",
) -> str:
    hdop_text = "" if hdop is None else f"{hdop:.1f}"
    alt_text = "" if altitude is None else f"{altitude:.1f}"
    return nmea(
        f"{talker}GGA,{time},{lat},{ns},{lon},{ew},{fix_quality},{satellites:02d},"
        f"{hdop_text},{alt_text},M,47.0,M,,"
    )


def rmc(
    *,
    status: str = "A",
    speed_knots: Optional[float] = 22.4,
    course: Optional[float] = 84.4,
    date: str = "230394",
    lat: str = "4807.038",
    ns: str = "N",
    lon: str = "01131.000",
    ew: str = "E",
    time: str = "123519",
    talker: str = "GP",
) -> str:
    speed = "" if speed_knots is None else f"{speed_knots:05.1f}"
    track = "" if course is None else f"{course:05.1f}"
    return nmea(
        f"{talker}RMC,{time},{status},{lat},{ns},{lon},{ew},{speed},{track},{date},003.1,W"
    )


def gsa(
    *,
    mode: int = 3,
    pdop: Optional[float] = 2.1,
    hdop: Optional[float] = 1.4,
    vdop: Optional[float] = 1.0,
    prns: Sequence[int] = (4, 5, 9, 12),
    talker: str = "GP",
) -> str:
    slots = [f"{prn:02d}" for prn in prns][:12]
    slots += [""] * (12 - len(slots))

    def fmt(value: Optional[float]) -> str:
        return "" if value is None else f"{value:.1f}"

    return nmea(f"{talker}GSA,A,{mode},{','.join(slots)},{fmt(pdop)},{fmt(hdop)},{fmt(vdop)}")


def vtg(
    *,
    course: float = 84.4,
    speed_knots: float = 10.0,
    speed_kmh: float = 18.5,
    talker: str = "GP",
) -> str:
    return nmea(f"{talker}VTG,{course:05.1f},T,,M,{speed_knots:05.1f},N,{speed_kmh:05.1f},K")


def hdt(heading: float = 274.1, talker: str = "GP") -> str:
    return nmea(f"{talker}HDT,{heading:.1f},T")


def gsv_cycle(talker: str, satellites: Sequence[SatelliteSpec]) -> List[str]:
    """Complete GSV cycle (four satellites per sentence) for ``talker``.

    Each satellite is ``(prn, elevation, azimuth, snr)``; None leaves a
    field empty.
    """
    def field(value: Optional[int], width: int) -> str:
        return "" if value is None else f"{value:0{width}d}"

    groups = [satellites[i:i + 4] for i in range(0, len(satellites), 4)] or [[]]
    total = len(groups)
    sentences = []
    for part, group in enumerate(groups, 1):
        blocks = [
            f"{prn:02d},{field(elev, 2)},{field(az, 3)},{field(snr, 2)}"
            for prn, elev, az, snr in group
        ]
        body = f"{talker}GSV,{total},{part},{len(satellites):02d}"
        if blocks:
            body += "," + ",".join(blocks)
        sentences.append(nmea(body))
    return sentences


def satellites_with_snr(snrs: Iterable[int], *, first_prn: int = 1) -> List[SatelliteSpec]:
    return [(first_prn + i, 45, (30 * i) % 360, snr) for i, snr in enumerate(snrs)]


# ---------------------------------------------------------------------------
# UBX
# ---------------------------------------------------------------------------

def _fixed(text: str, size: int) -> bytes:
    return text.encode("ascii").ljust(size, b"\x00")[:size]


def mon_ver_frame(
    sw_version: str = "ROM CORE 3.01 (107888)",
    hw_version: str = "00080000",
    extensions: Sequence[str] = ("FWVER=SPG 3.01", "PROTVER=18.00", "MOD=NEO-M8N"),
) -> bytes:
    """UBX-MON-VER response as sent by a receiver."""
    payload = _fixed(sw_version, 30) + _fixed(hw_version, 10)
    payload += b"".join(_fixed(ext, 30) for ext in extensions)
    return UBXMessage("MON", "MON-VER", GET, payload=payload).serialize()


def ack_frame(msg_class: int, msg_id: int, accepted: bool = True) -> bytes:
    """UBX-ACK-ACK (or ACK-NAK) for the command ``msg_class``/``msg_id``."""
    identity = "ACK-ACK" if accepted else "ACK-NAK"
    return UBXMessage("ACK", identity, GET, clsID=msg_class, msgID=msg_id).serialize()


class UbloxResponder:
    """Replies to engine commands like a u-blox receiver would.

    MON-VER polls are answered with ``identity`` (no reply when None) and
    every CFG command is acknowledged unless listed in ``nak`` or ``silent``.
    """

    def __init__(
        self,
        identity: Optional[bytes] = None,
        *,
        nak: Iterable[int] = (),
        silent: Iterable[int] = (),
    ):
        self.identity = identity if identity is not None else mon_ver_frame()
        self.nak = set(nak)
        self.silent = set(silent)
        self.configured: List[Tuple[int, int]] = []

    @classmethod
    def without_ubx(cls) -> "UbloxResponder":
        responder = cls()
        responder.identity = None
        return responder

    def __call__(self, data: bytes) -> Optional[bytes]:
        if len(data) < 6 or data[:2] != b"\xb5\x62":
            return None
        msg_class, msg_id = data[2], data[3]
        if (msg_class, msg_id) == (0x0A, 0x04):
            return self.identity
        if msg_class != 0x06 or self.identity is None or msg_id in self.silent:
            return None
        accepted = msg_id not in self.nak
        if accepted:
            self.configured.append((msg_class, msg_id))
        return ack_frame(msg_class, msg_id, accepted)


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
]

"""NMEA sentence parsing for GPS receivers.

This module provides stateful NMEA sentence parsing that accumulates
navigation data across multiple sentence types into one NavigationState.
"""

from __future__ import annotations

import datetime as dt
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ...core.errors import DecodeError
from ..constants import FIX_MODE_MAP, KMH_PER_KNOT, SATELLITE_GROUP_TTL
from .nmea_types import Constellation, FixQuality, NavigationState, SatelliteRecord
from .ubx import ReceiverIdentity

TALKER_CONSTELLATIONS: Dict[str, Constellation] = {
    "GL": Constellation.GLONASS,
    "GA": Constellation.GALILEO,
    "GB": Constellation.BEIDOU,
    "BD": Constellation.BEIDOU,
    "GQ": Constellation.QZSS,
    "GI": Constellation.NAVIC,
}

# Talkers whose satellites are classified by PRN number
PRN_MAPPED_TALKERS = frozenset({"GP", "GN"})

SUPPORTED_TALKERS = frozenset(TALKER_CONSTELLATIONS) | PRN_MAPPED_TALKERS


def _parse_float(value: str | None) -> Optional[float]:
    """Parse string to float, None on failure."""
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_int(value: str | None) -> Optional[int]:
    """Parse string to int, None on failure."""
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_latlon(
    value: str | None,
    direction: str | None,
    *,
    is_lat: bool
) -> Optional[float]:
    """Parse NMEA lat/lon format (DDMM.MMMM or DDDMM.MMMM) to decimal degrees."""
    if not value or not direction:
        return None
    try:
        deg_len = 2 if is_lat else 3
        if len(value) < deg_len:
            return None
        degrees = int(value[:deg_len])
        minutes = float(value[deg_len:])
    except ValueError:
        return None
    decimal = degrees + minutes / 60.0
    if direction.upper() in {"S", "W"}:
        decimal *= -1.0
    return decimal


def _parse_hms(value: str | None) -> Optional[dt.time]:
    """Parse NMEA time format (HHMMSS.sss) to datetime.time."""
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    main, dot, frac = raw.partition(".")
    main = main.rjust(6, "0")
    try:
        hour = int(main[0:2])
        minute = int(main[2:4])
        second = int(main[4:6])
        micro = int((frac[:6] if dot else "0").ljust(6, "0"))
        return dt.time(hour, minute, second, micro, tzinfo=dt.timezone.utc)
    except ValueError:
        return None


def _parse_date(value: str | None) -> Optional[dt.date]:
    """Parse NMEA date format (DDMMYY) to datetime.date."""
    if not value or len(value) != 6:
        return None
    try:
        return dt.date(2000 + int(value[4:6]), int(value[2:4]), int(value[0:2]))
    except ValueError:
        return None


def _combine_datetime(
    date_obj: Optional[dt.date],
    time_obj: Optional[dt.time],
    fallback: Optional[dt.datetime]
) -> Optional[dt.datetime]:
    """Combine date and time, using fallback if needed."""
    if not time_obj:
        return fallback
    date_value = date_obj
    if not date_value and fallback:
        date_value = fallback.date()
    if not date_value:
        date_value = dt.datetime.now(dt.timezone.utc).date()
    return dt.datetime.combine(date_value, time_obj)


def nmea_checksum(payload: str) -> int:
    """XOR of every character between ``$`` and ``*``."""
    calculated = 0
    for char in payload:
        calculated ^= ord(char)
    return calculated


def validate_checksum(sentence: str) -> bool:
    """Validate NMEA checksum. Sentences without one are rejected."""
    if not sentence.startswith("$") or "*" not in sentence:
        return False
    try:
        payload, checksum_str = sentence[1:].split("*", 1)
        checksum_str = checksum_str.strip()
        if len(checksum_str) != 2:
            return False
        return nmea_checksum(payload) == int(checksum_str, 16)
    except ValueError:
        return False


def split_header(sentence: str) -> Tuple[str, str]:
    """Return (talker, sentence type) of a ``$TTSSS,...`` sentence."""
    header = sentence[1:].split(",", 1)[0].split("*", 1)[0]
    if len(header) < 5:
        return "", header.upper()
    return header[:-3].upper(), header[-3:].upper()


def constellation_for(talker: str, prn: int) -> Constellation:
    """Derive the constellation from the talker, or the PRN for GP/GN talkers."""
    mapped = TALKER_CONSTELLATIONS.get(talker)
    if mapped is not None:
        return mapped
    if 1 <= prn <= 32:
        return Constellation.GPS
    if 33 <= prn <= 64 or 120 <= prn <= 158:
        return Constellation.SBAS
    if 65 <= prn <= 96:
        return Constellation.GLONASS
    if 193 <= prn <= 200:
        return Constellation.QZSS
    if talker == "GP":
        return Constellation.GPS
    return Constellation.UNKNOWN


class _GsvCycle:
    __slots__ = ("total", "last_part", "satellites")

    def __init__(self, total: int) -> None:
        self.total = total
        self.last_part = 0
        self.satellites: List[SatelliteRecord] = []


class NMEAParser:
    """Stateful NMEA sentence parser.

    Accumulates data from multiple NMEA sentence types into a NavigationState.
    Updates are additive: a field parsed as None never erases a known value.
    GSV satellites are staged per talker and published only once a complete
    cycle has arrived, so readers never see a half-updated satellite list.
    """

    def __init__(
        self,
        *,
        satellite_ttl: float = SATELLITE_GROUP_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._state = NavigationState()
        self._last_known_date: Optional[dt.date] = None
        self._satellite_ttl = satellite_ttl
        self._clock = clock
        self._gsv_pending: Dict[str, _GsvCycle] = {}
        self._gsv_groups: Dict[str, Tuple[float, Tuple[SatelliteRecord, ...]]] = {}

    @property
    def state(self) -> NavigationState:
        """Live navigation state. Callers outside the reader take ``copy()``."""
        return self._state

    @property
    def last_known_date(self) -> Optional[dt.date]:
        """Last date received from GPS (used for sentences without date)."""
        return self._last_known_date

    def reset(self) -> None:
        """Reset parser state to initial values."""
        self._state = NavigationState()
        self._last_known_date = None
        self._gsv_pending.clear()
        self._gsv_groups.clear()

    def set_receiver(self, identity: ReceiverIdentity) -> None:
        self._state.receiver = identity

    def handles(self, sentence_type: str) -> bool:
        return hasattr(self, f"_parse_{sentence_type.lower()}")

    def parse_sentence(self, sentence: str) -> Optional[Dict[str, Any]]:
        """Parse one sentence and merge it into the state.

        Returns the parsed values, or None for a checksum-valid sentence of a
        type this parser does not handle.

        Raises:
            DecodeError: bad checksum, unknown talker or malformed fields.
        """
        sentence = sentence.strip()
        if not validate_checksum(sentence):
            raise DecodeError(f"checksum mismatch: {sentence[:40]!r}")

        talker, message_type = split_header(sentence)
        if not self.handles(message_type):
            return None
        if talker not in SUPPORTED_TALKERS:
            raise DecodeError(f"unsupported talker {talker!r} in {message_type}")

        payload = sentence[1:].split("*", 1)[0]
        fields = payload.split(",")[1:]

        handler = getattr(self, f"_parse_{message_type.lower()}")
        data = handler(talker, fields)
        if data is None:
            raise DecodeError(f"malformed {message_type} sentence ({len(fields)} fields)")

        data["sentence_type"] = message_type
        self._apply_update(data)
        return data

    def _apply_update(self, update: Dict[str, Any]) -> None:
        """Apply parsed data to the navigation state."""
        state = self._state

        lat = update.get("latitude")
        lon = update.get("longitude")
        if lat is not None and lon is not None:
            state.latitude = lat
            state.longitude = lon

        timestamp = update.get("timestamp")
        if timestamp:
            state.timestamp = timestamp

        fix_quality = update.get("fix_quality")
        if fix_quality is not None:
            state.fix_quality = fix_quality
            state.fix_type = fix_quality.label

        if update.get("fix_mode"):
            state.fix_mode = update["fix_mode"]

        if update.get("fix_valid") is not None:
            state.fix_valid = bool(update["fix_valid"])

        if update.get("satellites_in_use") is not None:
            state.satellites_in_use = int(update["satellites_in_use"])

        if update.get("altitude_m") is not None:
            state.altitude_m = float(update["altitude_m"])

        for dop in ("hdop", "pdop", "vdop"):
            if update.get(dop) is not None:
                setattr(state, dop, float(update[dop]))

        if update.get("course_deg") is not None:
            state.course_deg = float(update["course_deg"])

        if update.get("heading_deg") is not None:
            state.heading_deg = float(update["heading_deg"])

        speed_knots = update.get("speed_knots")
        if speed_knots is not None:
            state.speed_knots = float(speed_knots)
            state.speed_kmh = state.speed_knots * KMH_PER_KNOT
        elif update.get("speed_kmh") is not None:
            state.speed_kmh = float(update["speed_kmh"])
            state.speed_knots = state.speed_kmh / KMH_PER_KNOT

        if "satellites" in update:
            state.satellites = update["satellites"]

        state.last_sentence = update.get("sentence_type") or state.last_sentence

    # ------------------------------------------------------------------
    # Sentence-specific parsers
    # ------------------------------------------------------------------

    def _parse_rmc(self, talker: str, fields: list[str]) -> Optional[Dict[str, Any]]:
        """Parse RMC: time, status, position, speed, course, date."""
        if len(fields) < 9:
            return None

        status = (fields[1] or "").upper()
        date_obj = _parse_date(fields[8])
        if date_obj:
            self._last_known_date = date_obj
        timestamp = _combine_datetime(
            self._last_known_date, _parse_hms(fields[0]), self._state.timestamp
        )

        return {
            "latitude": _parse_latlon(fields[2], fields[3], is_lat=True),
            "longitude": _parse_latlon(fields[4], fields[5], is_lat=False),
            "speed_knots": _parse_float(fields[6]),
            "course_deg": _parse_float(fields[7]),
            "timestamp": timestamp,
            "fix_valid": status == "A",
        }

    def _parse_gga(self, talker: str, fields: list[str]) -> Optional[Dict[str, Any]]:
        """Parse GGA: time, position, fix quality, satellites, HDOP, altitude."""
        if len(fields) < 9:
            return None

        fix_quality = FixQuality.from_code(_parse_int(fields[5]))
        timestamp = _combine_datetime(
            self._last_known_date, _parse_hms(fields[0]), self._state.timestamp
        )

        return {
            "latitude": _parse_latlon(fields[1], fields[2], is_lat=True),
            "longitude": _parse_latlon(fields[3], fields[4], is_lat=False),
            "fix_quality": fix_quality,
            "satellites_in_use": _parse_int(fields[6]),
            "hdop": _parse_float(fields[7]),
            "altitude_m": _parse_float(fields[8]),
            "timestamp": timestamp,
            "fix_valid": None if fix_quality is None else fix_quality > FixQuality.NO_FIX,
        }

    def _parse_vtg(self, talker: str, fields: list[str]) -> Optional[Dict[str, Any]]:
        """Parse VTG: course and ground speed."""
        if len(fields) < 7:
            return None

        return {
            "course_deg": _parse_float(fields[0]),
            "speed_knots": _parse_float(fields[4]),
            "speed_kmh": _parse_float(fields[6]),
        }

    def _parse_gll(self, talker: str, fields: list[str]) -> Optional[Dict[str, Any]]:
        """Parse GLL: position, time, status."""
        if len(fields) < 5:
            return None

        status = (fields[5] or "").upper() if len(fields) > 5 else ""
        timestamp = _combine_datetime(
            self._last_known_date, _parse_hms(fields[4]), self._state.timestamp
        )

        return {
            "latitude": _parse_latlon(fields[0], fields[1], is_lat=True),
            "longitude": _parse_latlon(fields[2], fields[3], is_lat=False),
            "timestamp": timestamp,
            "fix_valid": status == "A",
        }

    def _parse_gsa(self, talker: str, fields: list[str]) -> Optional[Dict[str, Any]]:
        """Parse GSA: fix mode, PDOP, HDOP, VDOP."""
        if len(fields) < 17:
            return None

        return {
            "fix_mode": FIX_MODE_MAP.get(_parse_int(fields[1]) or 0),
            "pdop": _parse_float(fields[14]),
            "hdop": _parse_float(fields[15]),
            "vdop": _parse_float(fields[16]),
        }

    def _parse_hdt(self, talker: str, fields: list[str]) -> Optional[Dict[str, Any]]:
        """Parse HDT: true heading."""
        if len(fields) < 1:
            return None
        return {"heading_deg": _parse_float(fields[0])}

    def _parse_gsv(self, talker: str, fields: list[str]) -> Optional[Dict[str, Any]]:
        """Parse GSV: satellites in view, staged until the cycle completes."""
        if len(fields) < 3:
            return None

        total = _parse_int(fields[0])
        part = _parse_int(fields[1])
        if total is None or part is None or total < 1 or not 1 <= part <= total:
            return None

        blocks = fields[3:]
        if len(blocks) % 4 == 1:
            blocks = blocks[:-1]  # NMEA 4.1 signal id
        if len(blocks) % 4:
            return None

        records = []
        for i in range(0, len(blocks), 4):
            prn = _parse_int(blocks[i])
            if prn is None:
                continue
            snr = _parse_float(blocks[i + 3])
            records.append(SatelliteRecord(
                prn=prn,
                constellation=constellation_for(talker, prn),
                elevation_deg=_parse_float(blocks[i + 1]),
                azimuth_deg=_parse_float(blocks[i + 2]),
                snr_db=snr if snr else None,
            ))

        update: Dict[str, Any] = {}

        if part == 1:
            cycle = _GsvCycle(total)
            self._gsv_pending[talker] = cycle
        else:
            cycle = self._gsv_pending.get(talker)
            if cycle is None or cycle.total != total or part != cycle.last_part + 1:
                self._gsv_pending.pop(talker, None)
                return update

        cycle.last_part = part
        cycle.satellites.extend(records)

        if part == total:
            del self._gsv_pending[talker]
            update["satellites"] = self._commit_gsv(talker, tuple(cycle.satellites))
        return update

    def _commit_gsv(
        self, talker: str, satellites: Tuple[SatelliteRecord, ...]
    ) -> Tuple[SatelliteRecord, ...]:
        now = self._clock()
        self._gsv_groups[talker] = (now, satellites)
        for other, (committed_at, _) in list(self._gsv_groups.items()):
            if now - committed_at > self._satellite_ttl:
                del self._gsv_groups[other]

        merged: List[SatelliteRecord] = []
        for _, group in self._gsv_groups.values():
            merged.extend(group)
        return tuple(merged)


__all__ = [
    "NMEAParser",
    "constellation_for",
    "nmea_checksum",
    "split_header",
    "validate_checksum",
]

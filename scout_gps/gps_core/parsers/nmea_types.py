"""Navigation state types shared by the decoder and its readers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import datetime as dt
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Tuple

from .ubx import ReceiverIdentity


class FixQuality(IntEnum):
    """GGA fix quality indicator."""

    NO_FIX = 0
    GPS = 1
    DGPS = 2
    PPS = 3
    RTK_FIXED = 4
    RTK_FLOAT = 5
    ESTIMATED = 6
    MANUAL = 7
    SIMULATION = 8

    @property
    def label(self) -> str:
        return FIX_QUALITY_LABELS[self]

    @classmethod
    def from_code(cls, code: Optional[int]) -> Optional["FixQuality"]:
        if code is None:
            return None
        try:
            return cls(code)
        except ValueError:
            return None


FIX_QUALITY_LABELS = {
    FixQuality.NO_FIX: "No Fix",
    FixQuality.GPS: "GPS",
    FixQuality.DGPS: "DGPS",
    FixQuality.PPS: "PPS",
    FixQuality.RTK_FIXED: "RTK",
    FixQuality.RTK_FLOAT: "Float RTK",
    FixQuality.ESTIMATED: "Estimated",
    FixQuality.MANUAL: "Manual",
    FixQuality.SIMULATION: "Simulation",
}


class Constellation(str, Enum):
    """Satellite navigation system a satellite belongs to."""

    GPS = "GPS"
    GLONASS = "GLONASS"
    GALILEO = "Galileo"
    BEIDOU = "BeiDou"
    SBAS = "SBAS"
    QZSS = "QZSS"
    NAVIC = "NavIC"
    UNKNOWN = "Unknown"


@dataclass(frozen=True, slots=True)
class SatelliteRecord:
    """One satellite from a GSV update cycle."""

    prn: int
    constellation: Constellation = Constellation.UNKNOWN
    elevation_deg: Optional[float] = None
    azimuth_deg: Optional[float] = None
    snr_db: Optional[float] = None

    @property
    def key(self) -> Tuple[Constellation, int]:
        return (self.constellation, self.prn)

    @property
    def is_tracked(self) -> bool:
        return self.snr_db is not None and self.snr_db > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prn": self.prn,
            "constellation": self.constellation.value,
            "elevation_deg": self.elevation_deg,
            "azimuth_deg": self.azimuth_deg,
            "snr_db": self.snr_db,
        }


@dataclass(slots=True)
class NavigationState:
    """Current fix snapshot, overwritten field by field as sentences decode."""

    timestamp: Optional[dt.datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude_m: Optional[float] = None
    speed_knots: Optional[float] = None
    speed_kmh: Optional[float] = None
    course_deg: Optional[float] = None
    heading_deg: Optional[float] = None
    fix_quality: Optional[FixQuality] = None
    fix_type: Optional[str] = None
    fix_mode: Optional[str] = None
    fix_valid: bool = False
    satellites_in_use: Optional[int] = None
    hdop: Optional[float] = None
    vdop: Optional[float] = None
    pdop: Optional[float] = None
    satellites: Tuple[SatelliteRecord, ...] = field(default_factory=tuple)
    receiver: Optional[ReceiverIdentity] = None
    last_sentence: Optional[str] = None

    def has_fix(self) -> bool:
        return self.fix_quality is not None and self.fix_quality > FixQuality.NO_FIX

    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def tracked_satellites(self) -> Tuple[SatelliteRecord, ...]:
        return tuple(sat for sat in self.satellites if sat.is_tracked)

    def constellations(self) -> set[Constellation]:
        return {sat.constellation for sat in self.satellites}

    def copy(self) -> "NavigationState":
        """Return an independent snapshot (satellite records are immutable)."""
        return replace(self, satellites=tuple(self.satellites))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude_m": self.altitude_m,
            "speed_knots": self.speed_knots,
            "speed_kmh": self.speed_kmh,
            "course_deg": self.course_deg,
            "heading_deg": self.heading_deg,
            "fix_quality": int(self.fix_quality) if self.fix_quality is not None else None,
            "fix_quality_label": self.fix_quality.label if self.fix_quality is not None else None,
            "fix_type": self.fix_type,
            "fix_mode": self.fix_mode,
            "fix_valid": self.fix_valid,
            "satellites_in_use": self.satellites_in_use,
            "hdop": self.hdop,
            "vdop": self.vdop,
            "pdop": self.pdop,
            "satellites": [sat.to_dict() for sat in self.satellites],
            "receiver": self.receiver.to_dict() if self.receiver else None,
        }

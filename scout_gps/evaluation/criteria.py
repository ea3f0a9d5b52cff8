"""Acceptance criteria and their evaluation against a navigation snapshot."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Mapping, Optional

from ..core.errors import CriteriaValidationError
from ..gps_core.constants import STRONG_SIGNAL_SNR_DB
from ..gps_core.parsers.nmea_types import NavigationState

# Upper bound on the fix quality code (8 = simulation)
MAX_FIX_QUALITY = 8


@dataclass(frozen=True)
class CriteriaSet:
    """Pass/fail thresholds. Defaults suit a u-blox NEO-M8N."""
    min_satellites: int = 6
    max_hdop: float = 2.0
    max_pdop: float = 3.0
    min_avg_snr: float = 25.0
    min_strong_satellites: int = 4
    max_ttff_seconds: int = 60
    min_constellations: int = 2
    min_fix_quality: int = 1
    stability_duration_seconds: int = 10

    def problems(self) -> List[str]:
        found: List[str] = []
        for spec in fields(self):
            value = getattr(self, spec.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                found.append(f"{spec.name} must be a number")
            elif isinstance(value, float) and not math.isfinite(value):
                found.append(f"{spec.name} must be finite")
        if found:
            return found

        if self.min_satellites < 0:
            found.append("min_satellites must be >= 0")
        if self.max_hdop <= 0:
            found.append("max_hdop must be > 0")
        if self.max_pdop <= 0:
            found.append("max_pdop must be > 0")
        if not 0 <= self.min_avg_snr <= 99:
            found.append("min_avg_snr must be between 0 and 99 dB")
        if self.min_strong_satellites < 0:
            found.append("min_strong_satellites must be >= 0")
        if self.max_ttff_seconds <= 0:
            found.append("max_ttff_seconds must be > 0")
        if self.min_constellations < 0:
            found.append("min_constellations must be >= 0")
        if not 0 <= self.min_fix_quality <= MAX_FIX_QUALITY:
            found.append(f"min_fix_quality must be between 0 and {MAX_FIX_QUALITY}")
        if self.stability_duration_seconds < 0:
            found.append("stability_duration_seconds must be >= 0")
        return found

    def validate(self, operation: str = "set_criteria") -> "CriteriaSet":
        """Return self, or raise CriteriaValidationError listing every problem."""
        found = self.problems()
        if found:
            raise CriteriaValidationError(found, operation=operation)
        return self

    @property
    def overall_timeout_seconds(self) -> float:
        """Hard deadline for a run: three TTFF windows plus the stability hold."""
        return 3 * self.max_ttff_seconds + self.stability_duration_seconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], operation: str = "set_criteria") -> "CriteriaSet":
        """Build and validate from a flat record. Missing keys keep defaults."""
        known = {spec.name: spec for spec in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise CriteriaValidationError(
                [f"unknown criterion '{name}'" for name in unknown], operation=operation
            )

        values: Dict[str, Any] = {}
        problems: List[str] = []
        for name, raw in data.items():
            target = int if isinstance(getattr(cls, name), int) else float
            try:
                number = float(raw)
            except (TypeError, ValueError):
                problems.append(f"{name} must be a number")
                continue
            if isinstance(raw, bool):
                problems.append(f"{name} must be a number")
            elif target is int and not number.is_integer():
                problems.append(f"{name} must be a whole number")
            else:
                values[name] = int(number) if target is int else number
        if problems:
            raise CriteriaValidationError(problems, operation=operation)

        return cls(**values).validate(operation)


@dataclass(frozen=True)
class CriterionResult:
    name: str
    passed: bool
    expected: str
    actual: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _fmt(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    return f"{value:.1f}"


def average_snr(state: NavigationState) -> float:
    """Mean SNR over satellites with a signal (SNR > 0). 0.0 when none."""
    values = [sat.snr_db for sat in state.satellites if sat.is_tracked]
    return sum(values) / len(values) if values else 0.0


def strong_satellites(state: NavigationState) -> int:
    return sum(
        1 for sat in state.satellites
        if sat.snr_db is not None and sat.snr_db >= STRONG_SIGNAL_SNR_DB
    )


def evaluate_criteria(
    criteria: CriteriaSet,
    state: NavigationState,
    ttff_seconds: Optional[float] = None,
) -> List[CriterionResult]:
    """Evaluate every criterion independently against ``state``."""
    results: List[CriterionResult] = []

    def add(name: str, passed: bool, expected: str, actual: str) -> None:
        results.append(CriterionResult(name, passed, expected, actual))

    satellites = state.satellites_in_use or 0
    add("Min satellites", satellites >= criteria.min_satellites,
        f"≥{criteria.min_satellites}", str(satellites))

    hdop = state.hdop
    add("Max HDOP", hdop is not None and hdop <= criteria.max_hdop,
        f"≤{_fmt(float(criteria.max_hdop))}", "-" if hdop is None else _fmt(hdop))

    pdop = state.pdop
    add("Max PDOP", pdop is not None and pdop <= criteria.max_pdop,
        f"≤{_fmt(float(criteria.max_pdop))}", "-" if pdop is None else _fmt(pdop))

    snr = average_snr(state)
    add("Min average SNR", snr >= criteria.min_avg_snr,
        f"≥{_fmt(float(criteria.min_avg_snr))}", _fmt(snr))

    strong = strong_satellites(state)
    add("Min strong satellites", strong >= criteria.min_strong_satellites,
        f"≥{criteria.min_strong_satellites}", str(strong))

    constellations = len(state.constellations())
    add("Min constellations", constellations >= criteria.min_constellations,
        f"≥{criteria.min_constellations}", str(constellations))

    quality = int(state.fix_quality) if state.fix_quality is not None else 0
    add("Min fix quality", quality >= criteria.min_fix_quality,
        f"≥{criteria.min_fix_quality}", str(quality))

    add("Max time to first fix",
        ttff_seconds is not None and ttff_seconds <= criteria.max_ttff_seconds,
        f"≤{criteria.max_ttff_seconds}", "-" if ttff_seconds is None else _fmt(ttff_seconds))

    return results


__all__ = [
    "CriteriaSet",
    "CriterionResult",
    "average_snr",
    "evaluate_criteria",
    "strong_satellites",
]

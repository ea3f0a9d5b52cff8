"""Windowed performance metrics for before/after comparison."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Set, Tuple

from ..evaluation.criteria import average_snr
from ..gps_core.parsers.nmea_types import NavigationState


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


@dataclass(frozen=True)
class PerformanceSnapshot:
    """Averages over one sampling window."""
    avg_hdop: float = 0.0
    avg_satellites: float = 0.0
    avg_snr: float = 0.0
    constellation_count: int = 0
    constellations: Tuple[str, ...] = field(default_factory=tuple)
    avg_fix_quality: float = 0.0
    sample_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["constellations"] = list(self.constellations)
        return data


class MetricsCollector:
    """Accumulates samples; fields missing from a sample are simply skipped."""

    def __init__(self) -> None:
        self._hdop: List[float] = []
        self._satellites: List[float] = []
        self._snr: List[float] = []
        self._fix_quality: List[float] = []
        self._constellations: Set[str] = set()

    def add_sample(self, state: NavigationState) -> None:
        if state.hdop is not None:
            self._hdop.append(state.hdop)
        if state.satellites_in_use is not None:
            self._satellites.append(float(state.satellites_in_use))
        if state.fix_quality is not None:
            self._fix_quality.append(float(state.fix_quality))
        if any(sat.is_tracked for sat in state.satellites):
            self._snr.append(average_snr(state))
        self._constellations.update(c.value for c in state.constellations())

    def snapshot(self) -> PerformanceSnapshot:
        constellations = tuple(sorted(self._constellations))
        return PerformanceSnapshot(
            avg_hdop=_mean(self._hdop),
            avg_satellites=_mean(self._satellites),
            avg_snr=_mean(self._snr),
            constellation_count=len(constellations),
            constellations=constellations,
            avg_fix_quality=_mean(self._fix_quality),
            sample_count=max(len(self._hdop), len(self._satellites)),
        )


def percent_change(before: float, after: float) -> float:
    """(after - before) / before in percent, 0 when there is no baseline."""
    if before <= 0:
        return 0.0
    return (after - before) / before * 100.0


__all__ = ["MetricsCollector", "PerformanceSnapshot", "percent_change"]

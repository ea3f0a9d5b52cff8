"""Fixtures for evaluation tests: navigation samples matching common field conditions."""

from typing import Sequence

import pytest

from scout_gps.gps_core.parsers import Constellation, FixQuality, NavigationState, SatelliteRecord

REFERENCE_SNRS = (32, 30, 28, 22, 18, 35, 31, 20)


def make_state(
    *,
    satellites_in_use: int = 8,
    hdop: float = 1.4,
    pdop: float = 2.1,
    snrs: Sequence[float] = REFERENCE_SNRS,
    fix_quality: FixQuality = FixQuality.GPS,
    constellations: Sequence[Constellation] = (Constellation.GPS, Constellation.GLONASS),
) -> NavigationState:
    """Sample whose satellites alternate between ``constellations``."""
    satellites = tuple(
        SatelliteRecord(
            prn=index + 1,
            constellation=constellations[index % len(constellations)],
            elevation_deg=45.0,
            azimuth_deg=float(index * 40),
            snr_db=float(snr),
        )
        for index, snr in enumerate(snrs)
    )
    return NavigationState(
        latitude=48.1173,
        longitude=11.5167,
        fix_quality=fix_quality,
        fix_type=fix_quality.label,
        fix_valid=fix_quality > FixQuality.NO_FIX,
        satellites_in_use=satellites_in_use,
        hdop=hdop,
        pdop=pdop,
        satellites=satellites,
    )


def no_fix_state() -> NavigationState:
    return NavigationState(fix_quality=FixQuality.NO_FIX, satellites_in_use=0)


@pytest.fixture
def good_state() -> NavigationState:
    return make_state()

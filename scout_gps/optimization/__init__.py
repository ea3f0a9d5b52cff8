"""u-blox optimization workflow."""

from .controller import OptimizationController, OptimizationReport, OptimizePhase, OptimizeStatus
from .metrics import MetricsCollector, PerformanceSnapshot
from .profiles import OptimizationProfile, UbxCommand, marine_profile, multi_constellation_commands

__all__ = [
    "MetricsCollector",
    "OptimizationController",
    "OptimizationProfile",
    "OptimizationReport",
    "OptimizePhase",
    "OptimizeStatus",
    "PerformanceSnapshot",
    "UbxCommand",
    "marine_profile",
    "multi_constellation_commands",
]

"""Phased u-blox tuning workflow with before/after measurement.

    idle -> identifying_chip -> collecting_baseline -> applying_profile
         -> stabilizing -> collecting_result -> complete | error

``complete`` and ``error`` hold until reset(). abort() returns to idle from
any running phase; commands already acknowledged are not rolled back.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..core.errors import (
    BusyError,
    GPSEngineError,
    InvalidTransitionError,
    PortIOError,
    UnsupportedHardwareError,
)
from ..core.logging_utils import get_module_logger
from ..gps_core.connection_manager import ConnectionManager
from ..gps_core.constants import (
    DEFAULT_ACK_TIMEOUT,
    DEFAULT_BASELINE_DURATION,
    DEFAULT_IDENTIFY_TIMEOUT,
    DEFAULT_RESULT_DURATION,
    DEFAULT_SAMPLE_INTERVAL,
    DEFAULT_STABILIZATION_DURATION,
)
from ..gps_core.parsers.ubx import ReceiverIdentity, build_mon_ver_poll, identity_from_mon_ver
from .metrics import MetricsCollector, PerformanceSnapshot, percent_change
from .profiles import OptimizationProfile, marine_profile

logger = get_module_logger("Optimizer")


class OptimizePhase(str, Enum):
    IDLE = "idle"
    IDENTIFYING_CHIP = "identifying_chip"
    COLLECTING_BASELINE = "collecting_baseline"
    APPLYING_PROFILE = "applying_profile"
    STABILIZING = "stabilizing"
    COLLECTING_RESULT = "collecting_result"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (OptimizePhase.COMPLETE, OptimizePhase.ERROR)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal and self is not OptimizePhase.IDLE


@dataclass(frozen=True)
class OptimizationReport:
    chip: ReceiverIdentity
    profile_applied: str
    before: PerformanceSnapshot
    after: PerformanceSnapshot
    hdop_improvement_pct: float
    satellite_improvement_pct: float
    snr_improvement_pct: float
    constellation_improvement: int
    timestamp: dt.datetime

    @classmethod
    def compare(
        cls,
        chip: ReceiverIdentity,
        profile: str,
        before: PerformanceSnapshot,
        after: PerformanceSnapshot,
    ) -> "OptimizationReport":
        # HDOP: lower is better, so a decrease is a positive improvement
        return cls(
            chip=chip,
            profile_applied=profile,
            before=before,
            after=after,
            hdop_improvement_pct=-percent_change(before.avg_hdop, after.avg_hdop),
            satellite_improvement_pct=percent_change(before.avg_satellites, after.avg_satellites),
            snr_improvement_pct=percent_change(before.avg_snr, after.avg_snr),
            constellation_improvement=after.constellation_count - before.constellation_count,
            timestamp=dt.datetime.now(dt.timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chip": self.chip.to_dict(),
            "profile_applied": self.profile_applied,
            "before": self.before.to_dict(),
            "after": self.after.to_dict(),
            "hdop_improvement_pct": self.hdop_improvement_pct,
            "satellite_improvement_pct": self.satellite_improvement_pct,
            "snr_improvement_pct": self.snr_improvement_pct,
            "constellation_improvement": self.constellation_improvement,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class OptimizeStatus:
    phase: OptimizePhase = OptimizePhase.IDLE
    chip: Optional[ReceiverIdentity] = None
    profile: Optional[str] = None
    progress_seconds: float = 0.0
    phase_duration_seconds: float = 0.0
    commands_sent: int = 0
    commands_total: int = 0
    error: Optional[str] = None
    baseline: Optional[PerformanceSnapshot] = None
    report: Optional[OptimizationReport] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "chip": self.chip.to_dict() if self.chip else None,
            "profile": self.profile,
            "progress_seconds": self.progress_seconds,
            "phase_duration_seconds": self.phase_duration_seconds,
            "commands_sent": self.commands_sent,
            "commands_total": self.commands_total,
            "error": self.error,
            "baseline": self.baseline.to_dict() if self.baseline else None,
            "report": self.report.to_dict() if self.report else None,
        }


def _task_exception_handler(task: asyncio.Task) -> None:
    """Handle exceptions from fire-and-forget tasks."""
    try:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unhandled exception in optimization task: %s", exc)
    except asyncio.CancelledError:
        pass


class OptimizationController:
    """Runs one optimization at a time against the active connection."""

    def __init__(
        self,
        connection: ConnectionManager,
        *,
        identify_timeout: float = DEFAULT_IDENTIFY_TIMEOUT,
        ack_timeout: float = DEFAULT_ACK_TIMEOUT,
        baseline_duration: float = DEFAULT_BASELINE_DURATION,
        stabilization_duration: float = DEFAULT_STABILIZATION_DURATION,
        result_duration: float = DEFAULT_RESULT_DURATION,
        sample_interval: float = DEFAULT_SAMPLE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._connection = connection
        self._identify_timeout = identify_timeout
        self._ack_timeout = ack_timeout
        self._sample_interval = sample_interval
        self._clock = clock
        self._durations = {
            OptimizePhase.IDENTIFYING_CHIP: identify_timeout,
            OptimizePhase.COLLECTING_BASELINE: baseline_duration,
            OptimizePhase.STABILIZING: stabilization_duration,
            OptimizePhase.COLLECTING_RESULT: result_duration,
        }

        self._status = OptimizeStatus()
        self._phase_started: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def phase(self) -> OptimizePhase:
        return self._status.phase

    @property
    def is_active(self) -> bool:
        return self._status.phase.is_active

    def status(self) -> OptimizeStatus:
        current = self._status
        progress = 0.0
        if current.phase.is_active and self._phase_started is not None:
            progress = self._clock() - self._phase_started
        return OptimizeStatus(
            phase=current.phase,
            chip=current.chip,
            profile=current.profile,
            progress_seconds=progress,
            phase_duration_seconds=self._durations.get(current.phase, 0.0),
            commands_sent=current.commands_sent,
            commands_total=current.commands_total,
            error=current.error,
            baseline=current.baseline,
            report=current.report,
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Launch the workflow in the background.

        Raises:
            BusyError: an optimization is already running.
            InvalidTransitionError: the last run has not been reset.
        """
        if self.is_active:
            raise BusyError("an optimization is already running", operation="start_optimization")
        if self._status.phase.is_terminal:
            raise InvalidTransitionError(
                f"optimization ended in {self._status.phase.value}; reset first",
                operation="start_optimization",
            )

        self._status = OptimizeStatus()
        self._enter(OptimizePhase.IDENTIFYING_CHIP)
        self._task = asyncio.create_task(self._run())
        self._task.add_done_callback(_task_exception_handler)
        return self._task

    async def run(self) -> Optional[OptimizationReport]:
        """Start and wait for the outcome. None when it errored or was aborted."""
        task = self.start()
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        return self._status.report

    async def abort(self) -> bool:
        """Cancel a running workflow and return to idle without a report."""
        if not self.is_active:
            return False
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Optimization aborted during %s", self._status.phase.value)
        self._status = OptimizeStatus()
        self._phase_started = None
        return True

    def reset(self) -> None:
        if self.is_active:
            raise BusyError("an optimization is running; abort it first",
                            operation="reset_optimization")
        self._status = OptimizeStatus()
        self._phase_started = None
        self._task = None

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def _enter(self, phase: OptimizePhase) -> None:
        logger.info("Phase: %s", phase.value)
        self._status.phase = phase
        self._phase_started = self._clock()

    async def _run(self) -> None:
        try:
            identity = await self._identify()
            self._status.chip = identity
            profile = marine_profile(identity.series)
            self._status.profile = profile.name

            self._enter(OptimizePhase.COLLECTING_BASELINE)
            before = await self._collect(OptimizePhase.COLLECTING_BASELINE)
            self._status.baseline = before
            logger.info(
                "Baseline (%d samples): HDOP=%.2f sats=%.1f SNR=%.1f",
                before.sample_count, before.avg_hdop, before.avg_satellites, before.avg_snr,
            )

            self._enter(OptimizePhase.APPLYING_PROFILE)
            await self._apply(profile)

            self._enter(OptimizePhase.STABILIZING)
            await asyncio.sleep(self._durations[OptimizePhase.STABILIZING])

            self._enter(OptimizePhase.COLLECTING_RESULT)
            after = await self._collect(OptimizePhase.COLLECTING_RESULT)

            self._status.report = OptimizationReport.compare(identity, profile.name, before, after)
            self._status.phase = OptimizePhase.COMPLETE
            logger.info("Optimization complete: HDOP %+.1f%%, satellites %+.1f%%",
                        self._status.report.hdop_improvement_pct,
                        self._status.report.satellite_improvement_pct)
        except UnsupportedHardwareError as exc:
            self._error(f"Unsupported hardware: {exc.message}")
        except GPSEngineError as exc:
            self._error(exc.user_message())

    def _error(self, reason: str) -> None:
        logger.error("Optimization failed during %s: %s", self._status.phase.value, reason)
        self._status.error = reason
        self._status.phase = OptimizePhase.ERROR

    async def _identify(self) -> ReceiverIdentity:
        message = await self._connection.poll_ubx(
            build_mon_ver_poll(), "MON-VER", self._identify_timeout
        )
        if message is None:
            raise UnsupportedHardwareError(
                "no MON-VER response; the device may not be u-blox or UBX output is disabled",
                operation="identify_chip",
            )
        identity = identity_from_mon_ver(message)
        logger.info("Chip identified: %s (HW %s, %s)",
                    identity.chip_name, identity.hw_version, identity.series)
        if not identity.is_recognized:
            raise UnsupportedHardwareError(
                f"unrecognized receiver {identity.chip_name}", operation="identify_chip"
            )
        return identity

    async def _collect(self, phase: OptimizePhase) -> PerformanceSnapshot:
        collector = MetricsCollector()
        end = self._clock() + self._durations[phase]
        while True:
            collector.add_sample(self._connection.snapshot())
            if self._clock() >= end:
                return collector.snapshot()
            await asyncio.sleep(self._sample_interval)

    async def _apply(self, profile: OptimizationProfile) -> None:
        self._status.commands_total = len(profile.commands)
        for command in profile.commands:
            ack = await self._connection.send_ubx_and_wait_ack(command.frame, self._ack_timeout)
            if ack is None:
                raise PortIOError(f"no acknowledgement for {command.name}",
                                  operation="apply_profile")
            if not ack.accepted:
                raise UnsupportedHardwareError(f"receiver rejected {command.name}",
                                               operation="apply_profile")
            self._status.commands_sent += 1
            logger.debug("%s acknowledged", command.name)


__all__ = [
    "OptimizationController",
    "OptimizationReport",
    "OptimizePhase",
    "OptimizeStatus",
]

"""Test run state machine: TTFF, fix stability and the final verdict.

    not_started -> running -> pass | fail | timed_out

A run passes once the fix has been held (at or above the minimum fix
quality, with live data) for the stability window and every criterion
passes on the frozen snapshot taken at that moment.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.errors import BusyError, InvalidTransitionError
from ..core.logging_utils import get_module_logger
from ..gps_core.constants import DEFAULT_SAMPLE_INTERVAL, DEFAULT_STALE_AFTER
from ..gps_core.parsers.nmea_types import NavigationState
from ..gps_core.parsers.ubx import ReceiverIdentity
from .criteria import CriteriaSet, CriterionResult, evaluate_criteria

logger = get_module_logger("TestEvaluator")

# (state, seconds since last decoded data) provider for run()
SampleSource = Callable[[], Tuple[NavigationState, Optional[float]]]


class TestVerdict(str, Enum):
    __test__ = False

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASS = "pass"
    FAIL = "fail"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (TestVerdict.PASS, TestVerdict.FAIL, TestVerdict.TIMED_OUT)


@dataclass(frozen=True)
class DeviceInfo:
    """Identity of the device under test, as recorded in reports."""
    port_name: Optional[str] = None
    port_type: str = "Unknown"
    manufacturer: Optional[str] = None
    product: Optional[str] = None
    serial_number: Optional[str] = None
    baud_rate: Optional[int] = None
    receiver: Optional[ReceiverIdentity] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port_name": self.port_name,
            "port_type": self.port_type,
            "manufacturer": self.manufacturer,
            "product": self.product,
            "serial_number": self.serial_number,
            "baud_rate": self.baud_rate,
            "receiver": self.receiver.to_dict() if self.receiver else None,
        }


@dataclass
class TestResult:
    __test__ = False

    verdict: TestVerdict
    criteria_results: List[CriterionResult] = field(default_factory=list)
    ttff_seconds: Optional[float] = None
    test_duration_seconds: float = 0.0
    sample: Optional[NavigationState] = None
    device: DeviceInfo = field(default_factory=DeviceInfo)
    criteria: CriteriaSet = field(default_factory=CriteriaSet)
    started_at: Optional[dt.datetime] = None
    finished_at: Optional[dt.datetime] = None

    @property
    def passed(self) -> bool:
        return self.verdict is TestVerdict.PASS

    @property
    def failed_criteria(self) -> List[CriterionResult]:
        return [result for result in self.criteria_results if not result.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "criteria_results": [result.to_dict() for result in self.criteria_results],
            "ttff_seconds": self.ttff_seconds,
            "test_duration_seconds": self.test_duration_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "device": self.device.to_dict(),
            "criteria": self.criteria.to_dict(),
            "sample": self.sample.to_dict() if self.sample else None,
        }


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class TestEvaluator:
    """Drives one acceptance test at a time."""

    __test__ = False  # not a pytest class

    def __init__(
        self,
        *,
        stale_after: float = DEFAULT_STALE_AFTER,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], dt.datetime] = _utcnow,
    ):
        self._stale_after = stale_after
        self._clock = clock
        self._wall_clock = wall_clock

        self._verdict = TestVerdict.NOT_STARTED
        self._criteria = CriteriaSet()
        self._device = DeviceInfo()
        self._started: Optional[float] = None
        self._started_at: Optional[dt.datetime] = None
        self._ttff: Optional[float] = None
        self._hold_since: Optional[float] = None
        self._live_results: List[CriterionResult] = []
        self._result: Optional[TestResult] = None

    @property
    def verdict(self) -> TestVerdict:
        return self._verdict

    @property
    def is_running(self) -> bool:
        return self._verdict is TestVerdict.RUNNING

    @property
    def criteria(self) -> CriteriaSet:
        return self._criteria

    @property
    def ttff_seconds(self) -> Optional[float]:
        return self._ttff

    @property
    def result(self) -> Optional[TestResult]:
        """Final result of the last completed run."""
        return self._result

    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return self._clock() - self._started

    def status(self) -> TestResult:
        """Live view while running, the final result once finished."""
        if self._verdict.is_terminal and self._result is not None:
            return self._result
        return TestResult(
            verdict=self._verdict,
            criteria_results=list(self._live_results),
            ttff_seconds=self._ttff,
            test_duration_seconds=self.elapsed(),
            device=self._device,
            criteria=self._criteria,
            started_at=self._started_at,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, criteria: CriteriaSet, device: Optional[DeviceInfo] = None) -> None:
        """Begin a run with a private copy of ``criteria``.

        Raises:
            BusyError: a run is already in progress.
            InvalidTransitionError: the previous verdict has not been reset.
            CriteriaValidationError: ``criteria`` is invalid.
        """
        if self._verdict is TestVerdict.RUNNING:
            raise BusyError("a test is already running", operation="start_test")
        if self._verdict.is_terminal:
            raise InvalidTransitionError(
                f"test finished with {self._verdict.value}; reset first", operation="start_test"
            )

        self._criteria = replace(criteria.validate("start_test"))
        self._device = device or DeviceInfo()
        self._started = self._clock()
        self._started_at = self._wall_clock()
        self._ttff = None
        self._hold_since = None
        self._live_results = []
        self._result = None
        self._verdict = TestVerdict.RUNNING
        logger.info("Test started on %s", self._device.port_name or "unknown port")

    def abort(self) -> bool:
        """Stop a running test without producing a result."""
        if self._verdict is not TestVerdict.RUNNING:
            return False
        self._clear()
        logger.info("Test aborted")
        return True

    def reset(self) -> None:
        if self._verdict is TestVerdict.RUNNING:
            raise BusyError("a test is running; abort it first", operation="reset_test")
        self._clear()
        self._result = None

    def _clear(self) -> None:
        self._verdict = TestVerdict.NOT_STARTED
        self._started = None
        self._started_at = None
        self._ttff = None
        self._hold_since = None
        self._live_results = []

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def tick(self, state: NavigationState, data_age: Optional[float] = None) -> TestResult:
        """Advance the run with the latest snapshot.

        ``data_age`` is the time since the receiver last produced decodable
        data; a fix is not considered held while it exceeds ``stale_after``.
        """
        if self._verdict is not TestVerdict.RUNNING:
            return self.status()

        now = self._clock()
        elapsed = now - self._started
        criteria = self._criteria

        if self._ttff is None and state.has_fix():
            self._ttff = elapsed
            logger.info("First fix acquired after %.1fs", elapsed)

        live = data_age is None or data_age <= self._stale_after
        quality = int(state.fix_quality) if state.fix_quality is not None else 0
        if live and quality >= criteria.min_fix_quality and state.has_fix():
            if self._hold_since is None:
                self._hold_since = now
                logger.debug("Fix held, stability timer started")
        elif self._hold_since is not None:
            logger.debug("Fix lost (live=%s, quality=%d), stability timer reset", live, quality)
            self._hold_since = None

        self._live_results = evaluate_criteria(criteria, state, self._ttff)

        if self._hold_since is not None and now - self._hold_since >= criteria.stability_duration_seconds:
            verdict = TestVerdict.PASS if all(r.passed for r in self._live_results) else TestVerdict.FAIL
            return self._finish(verdict, state, self._live_results)

        if self._ttff is None and elapsed > criteria.max_ttff_seconds:
            logger.warning("No fix within %ds", criteria.max_ttff_seconds)
            return self._finish(TestVerdict.TIMED_OUT, state, self._live_results)

        if elapsed > criteria.overall_timeout_seconds:
            logger.warning("Fix never held for %ds within %.0fs",
                           criteria.stability_duration_seconds, elapsed)
            results = self._live_results + [CriterionResult(
                name="Fix stability",
                passed=False,
                expected=f"held {criteria.stability_duration_seconds}s",
                actual="not held",
            )]
            return self._finish(TestVerdict.FAIL, state, results)

        return self.status()

    def _finish(
        self, verdict: TestVerdict, state: NavigationState, results: List[CriterionResult]
    ) -> TestResult:
        sample = state.copy()
        device = self._device
        if sample.receiver is not None and device.receiver is None:
            device = replace(device, receiver=sample.receiver)

        self._verdict = verdict
        self._result = TestResult(
            verdict=verdict,
            criteria_results=list(results),
            ttff_seconds=self._ttff,
            test_duration_seconds=self.elapsed(),
            sample=sample,
            device=device,
            criteria=self._criteria,
            started_at=self._started_at,
            finished_at=self._wall_clock(),
        )
        failed = [r.name for r in results if not r.passed]
        logger.info("Test finished: %s%s", verdict.value.upper(),
                    f" (failed: {', '.join(failed)})" if failed else "")
        return self._result

    async def run(
        self, source: SampleSource, interval: float = DEFAULT_SAMPLE_INTERVAL
    ) -> Optional[TestResult]:
        """Poll ``source`` until the run finishes. None if it was aborted."""
        while self._verdict is TestVerdict.RUNNING:
            state, age = source()
            self.tick(state, age)
            if self._verdict is not TestVerdict.RUNNING:
                break
            await asyncio.sleep(interval)
        return self._result if self._verdict.is_terminal else None


__all__ = ["DeviceInfo", "TestEvaluator", "TestResult", "TestVerdict"]

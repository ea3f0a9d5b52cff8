"""Unit tests for the test run state machine."""

import asyncio
import datetime as dt
from dataclasses import replace

import pytest

from scout_gps.core.errors import BusyError, CriteriaValidationError, InvalidTransitionError
from scout_gps.evaluation import CriteriaSet, DeviceInfo, TestEvaluator, TestVerdict
from scout_gps.gps_core.parsers import ReceiverIdentity, UbloxSeries
from tests.infrastructure.mocks import FakeClock
from tests.unit.evaluation.conftest import make_state, no_fix_state

STARTED_AT = dt.datetime(2026, 10, 19, 9, 0, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def evaluator(clock):
    return TestEvaluator(clock=clock, wall_clock=lambda: STARTED_AT)


def acquire_and_hold(evaluator, clock, state, *, ttff=12.0, hold=10.0):
    """No fix until ``ttff`` seconds, then ``state`` held for ``hold`` seconds."""
    evaluator.tick(no_fix_state(), 0.0)
    clock.advance(ttff)
    evaluator.tick(state, 0.0)
    clock.advance(hold)
    return evaluator.tick(state, 0.0)


def failed_names(result):
    return [criterion.name for criterion in result.failed_criteria]


class TestVerdicts:

    def test_reference_sample_passes(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet(), DeviceInfo(port_name="/dev/ttyACM0", serial_number="SN-1"))

        result = acquire_and_hold(evaluator, clock, good_state)

        assert result.verdict is TestVerdict.PASS
        assert result.passed
        assert result.ttff_seconds == 12.0
        assert result.test_duration_seconds == 22.0
        assert failed_names(result) == []
        assert result.device.serial_number == "SN-1"
        assert evaluator.result is result

    def test_five_satellites_fails_one_criterion(self, evaluator, clock):
        evaluator.start(CriteriaSet())

        result = acquire_and_hold(evaluator, clock, make_state(satellites_in_use=5))

        assert result.verdict is TestVerdict.FAIL
        assert failed_names(result) == ["Min satellites"]
        row = result.failed_criteria[0]
        assert (row.expected, row.actual) == ("≥6", "5")

    def test_unreachable_snr_threshold(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet(min_avg_snr=99.0))

        result = acquire_and_hold(evaluator, clock, good_state)

        assert result.verdict is TestVerdict.FAIL
        assert failed_names(result) == ["Min average SNR"]

    def test_no_fix_times_out(self, evaluator, clock):
        evaluator.start(CriteriaSet())
        evaluator.tick(no_fix_state(), 0.0)
        clock.advance(60)
        assert evaluator.tick(no_fix_state(), 0.0).verdict is TestVerdict.RUNNING

        clock.advance(1)
        result = evaluator.tick(no_fix_state(), 0.0)

        assert result.verdict is TestVerdict.TIMED_OUT
        assert result.ttff_seconds is None
        assert "Max time to first fix" in failed_names(result)

    def test_fix_never_held_fails_stability(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet(max_ttff_seconds=10, stability_duration_seconds=5))
        # Fix reported but the data is stale, so the hold never starts
        evaluator.tick(good_state, 10.0)
        clock.advance(36)

        result = evaluator.tick(good_state, 10.0)

        assert result.verdict is TestVerdict.FAIL
        assert result.ttff_seconds == 0.0
        stability = result.criteria_results[-1]
        assert stability.name == "Fix stability"
        assert not stability.passed
        assert stability.expected == "held 5s"

    def test_sample_is_frozen_at_verdict(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet())
        result = acquire_and_hold(evaluator, clock, good_state)

        good_state.satellites_in_use = 1
        assert result.sample.satellites_in_use == 8

    def test_receiver_identity_recorded(self, evaluator, clock):
        receiver = ReceiverIdentity("ROM CORE 3.01", "00080000", series=UbloxSeries.SERIES_8,
                                    chip_name="NEO-M8N")
        evaluator.start(CriteriaSet())

        result = acquire_and_hold(evaluator, clock, replace(make_state(), receiver=receiver))

        assert result.device.receiver.chip_name == "NEO-M8N"


class TestTiming:

    def test_ttff_recorded_once(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet())
        clock.advance(5)
        evaluator.tick(good_state, 0.0)
        clock.advance(2)
        evaluator.tick(no_fix_state(), 0.0)
        clock.advance(2)
        evaluator.tick(good_state, 0.0)

        assert evaluator.ttff_seconds == 5.0

    def test_lost_fix_restarts_hold(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet())
        evaluator.tick(good_state, 0.0)
        clock.advance(8)
        evaluator.tick(no_fix_state(), 0.0)
        clock.advance(1)
        evaluator.tick(good_state, 0.0)
        clock.advance(9)

        assert evaluator.tick(good_state, 0.0).verdict is TestVerdict.RUNNING
        clock.advance(1)
        assert evaluator.tick(good_state, 0.0).verdict is TestVerdict.PASS

    def test_stale_data_restarts_hold(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet())
        clock.advance(1)
        evaluator.tick(good_state, 0.0)
        clock.advance(5)
        evaluator.tick(good_state, 5.0)
        clock.advance(5)
        evaluator.tick(good_state, 0.0)
        clock.advance(9)

        assert evaluator.tick(good_state, 0.0).verdict is TestVerdict.RUNNING
        clock.advance(1)
        assert evaluator.tick(good_state, 0.0).verdict is TestVerdict.PASS

    def test_fix_below_minimum_quality_not_held(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet(min_fix_quality=2, max_ttff_seconds=5, stability_duration_seconds=1))
        evaluator.tick(good_state, 0.0)
        clock.advance(17)

        result = evaluator.tick(good_state, 0.0)

        assert result.verdict is TestVerdict.FAIL
        assert "Fix stability" in failed_names(result)
        assert "Min fix quality" in failed_names(result)

    def test_custom_stale_after(self, clock, good_state):
        evaluator = TestEvaluator(stale_after=30.0, clock=clock)
        evaluator.start(CriteriaSet())
        evaluator.tick(good_state, 20.0)
        clock.advance(10)

        assert evaluator.tick(good_state, 20.0).verdict is TestVerdict.PASS


class TestTransitions:

    def test_start_while_running_is_busy(self, evaluator):
        evaluator.start(CriteriaSet())
        with pytest.raises(BusyError):
            evaluator.start(CriteriaSet())

    def test_start_after_verdict_requires_reset(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet())
        acquire_and_hold(evaluator, clock, good_state)

        with pytest.raises(InvalidTransitionError):
            evaluator.start(CriteriaSet())

        evaluator.reset()
        assert evaluator.verdict is TestVerdict.NOT_STARTED
        assert evaluator.result is None
        evaluator.start(CriteriaSet())
        assert evaluator.is_running

    def test_reset_while_running_is_busy(self, evaluator):
        evaluator.start(CriteriaSet())
        with pytest.raises(BusyError):
            evaluator.reset()

    def test_abort_discards_run(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet())
        evaluator.tick(good_state, 0.0)

        assert evaluator.abort() is True
        assert evaluator.verdict is TestVerdict.NOT_STARTED
        assert evaluator.result is None
        assert evaluator.ttff_seconds is None
        assert evaluator.abort() is False

    def test_invalid_criteria_rejected(self, evaluator):
        with pytest.raises(CriteriaValidationError) as excinfo:
            evaluator.start(CriteriaSet(max_hdop=-1.0))
        assert excinfo.value.operation == "start_test"
        assert evaluator.verdict is TestVerdict.NOT_STARTED

    def test_tick_when_idle_returns_status(self, evaluator, good_state):
        status = evaluator.tick(good_state, 0.0)
        assert status.verdict is TestVerdict.NOT_STARTED
        assert status.criteria_results == []

    def test_live_status(self, evaluator, clock, good_state):
        evaluator.start(CriteriaSet())
        clock.advance(3)
        evaluator.tick(good_state, 0.0)

        status = evaluator.status()
        assert status.verdict is TestVerdict.RUNNING
        assert status.test_duration_seconds == 3.0
        assert len(status.criteria_results) == 8
        assert status.to_dict()["started_at"] == STARTED_AT.isoformat()


class TestRunLoop:

    @pytest.mark.asyncio
    async def test_run_until_verdict(self, good_state):
        evaluator = TestEvaluator(clock=FakeClock())
        evaluator.start(CriteriaSet(stability_duration_seconds=0))

        result = await evaluator.run(lambda: (good_state, 0.0), interval=0.001)

        assert result is not None
        assert result.verdict is TestVerdict.PASS

    @pytest.mark.asyncio
    async def test_abort_ends_run(self):
        evaluator = TestEvaluator(clock=FakeClock())
        evaluator.start(CriteriaSet())

        task = asyncio.create_task(evaluator.run(lambda: (no_fix_state(), 0.0), interval=0.001))
        await asyncio.sleep(0.01)
        evaluator.abort()

        assert await asyncio.wait_for(task, timeout=1.0) is None

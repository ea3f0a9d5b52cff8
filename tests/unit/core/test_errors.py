"""Unit tests for the engine error taxonomy."""

import pytest

from scout_gps.core.errors import (
    BusyError,
    CriteriaValidationError,
    DecodeError,
    GPSEngineError,
    InvalidTransitionError,
    NotConnectedError,
    PortIOError,
    UnsupportedHardwareError,
)


@pytest.mark.parametrize("error_class,kind", [
    (PortIOError, "io"),
    (DecodeError, "decode"),
    (UnsupportedHardwareError, "unsupported"),
    (BusyError, "busy"),
    (InvalidTransitionError, "state"),
    (NotConnectedError, "not_connected"),
])
def test_kinds(error_class, kind):
    error = error_class("boom")
    assert isinstance(error, GPSEngineError)
    assert error.kind == kind


def test_user_message_names_operation():
    assert PortIOError("device unplugged", operation="connect").user_message() == (
        "connect failed: device unplugged"
    )


def test_user_message_without_operation():
    assert BusyError("scan running").user_message() == "scan running"


def test_criteria_problems_joined():
    error = CriteriaValidationError(["max_hdop must be > 0", "min_satellites must be >= 0"])
    assert error.kind == "configuration"
    assert str(error) == "max_hdop must be > 0; min_satellites must be >= 0"
    assert error.problems == ["max_hdop must be > 0", "min_satellites must be >= 0"]

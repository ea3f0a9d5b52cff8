"""Typed error taxonomy for the GPS verification engine.

Every error carries the name of the operation that failed so the command
surface can turn it into a short, user-visible message.
"""

from __future__ import annotations

from typing import Optional


class GPSEngineError(Exception):
    """Base class for all engine errors."""

    kind = "engine"

    def __init__(self, message: str, *, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def user_message(self) -> str:
        if self.operation:
            return f"{self.operation} failed: {self.message}"
        return self.message


class PortIOError(GPSEngineError):
    """Opening, reading or writing a serial port failed."""

    kind = "io"


class DecodeError(GPSEngineError):
    """A fragment could not be decoded. Recovered locally, never fatal."""

    kind = "decode"


class UnsupportedHardwareError(GPSEngineError):
    """A vendor command was aimed at hardware that does not support it."""

    kind = "unsupported"


class CriteriaValidationError(GPSEngineError):
    """Criteria values were rejected before being applied."""

    kind = "configuration"

    def __init__(self, problems: list[str], *, operation: Optional[str] = None):
        super().__init__("; ".join(problems), operation=operation)
        self.problems = list(problems)


class BusyError(GPSEngineError):
    """A scan, connection, test or optimization is already active."""

    kind = "busy"


class InvalidTransitionError(GPSEngineError):
    """A state machine was asked for a transition it does not allow."""

    kind = "state"


class NotConnectedError(GPSEngineError):
    """The operation needs an active connection."""

    kind = "not_connected"


__all__ = [
    "BusyError",
    "CriteriaValidationError",
    "DecodeError",
    "GPSEngineError",
    "InvalidTransitionError",
    "NotConnectedError",
    "PortIOError",
    "UnsupportedHardwareError",
]

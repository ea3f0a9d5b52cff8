"""Command surface for display and automation clients."""

from .controller import CommandResult, GPSTestEngine

__all__ = ["CommandResult", "GPSTestEngine"]

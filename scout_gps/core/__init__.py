"""Engine-wide plumbing: logging, errors and config loading."""

from .config_loader import ConfigLoader, load_config_file
from .errors import (
    BusyError,
    CriteriaValidationError,
    DecodeError,
    GPSEngineError,
    InvalidTransitionError,
    NotConnectedError,
    PortIOError,
    UnsupportedHardwareError,
)
from .logging_utils import (
    StructuredLogger,
    configure_logging,
    ensure_structured_logger,
    get_module_logger,
)

__all__ = [
    "BusyError",
    "ConfigLoader",
    "CriteriaValidationError",
    "DecodeError",
    "GPSEngineError",
    "InvalidTransitionError",
    "NotConnectedError",
    "PortIOError",
    "StructuredLogger",
    "UnsupportedHardwareError",
    "configure_logging",
    "ensure_structured_logger",
    "get_module_logger",
    "load_config_file",
]

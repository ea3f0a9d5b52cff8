"""Scout GPS - acquisition and acceptance testing for serial GPS receivers."""

from .api import CommandResult, GPSTestEngine
from .config import EngineConfig
from .core.errors import GPSEngineError

__version__ = "0.3.0"

__all__ = ["CommandResult", "EngineConfig", "GPSEngineError", "GPSTestEngine", "__version__"]

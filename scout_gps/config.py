"""Typed configuration for the GPS verification engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .core.config_loader import ConfigLoader
from .core.logging_utils import get_module_logger
from .gps_core import constants

logger = get_module_logger("Config")

DEFAULT_CONFIG_PATH = Path("config.txt")


def _parse_baud_rates(value: Any, default: Tuple[int, ...]) -> Tuple[int, ...]:
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = [part.strip() for part in str(value).split(",") if part.strip()]
    try:
        rates = tuple(sorted({int(item) for item in items}))
    except ValueError:
        logger.warning("Invalid baud_rates '%s', using default", value)
        return default
    return rates or default


@dataclass(slots=True)
class EngineConfig:
    """Typed configuration for the engine."""

    # Discovery
    baud_rates: Tuple[int, ...] = constants.CANDIDATE_BAUD_RATES
    probe_timeout_s: float = constants.DEFAULT_PROBE_TIMEOUT

    # Sampling
    sample_interval_s: float = constants.DEFAULT_SAMPLE_INTERVAL
    stale_after_s: float = constants.DEFAULT_STALE_AFTER
    nmea_history: int = constants.DEFAULT_NMEA_HISTORY
    ubx_enabled: bool = True
    ublox_auto_config: bool = True

    # Optimization timing
    identify_timeout_s: float = constants.DEFAULT_IDENTIFY_TIMEOUT
    ack_timeout_s: float = constants.DEFAULT_ACK_TIMEOUT
    baseline_duration_s: float = constants.DEFAULT_BASELINE_DURATION
    stabilization_duration_s: float = constants.DEFAULT_STABILIZATION_DURATION
    result_duration_s: float = constants.DEFAULT_RESULT_DURATION

    # Output
    results_dir: Path = field(default_factory=lambda: Path.home() / "scout-gps-results")
    log_level: str = "info"
    log_file: str = ""
    console_output: bool = True

    @classmethod
    def from_file(cls, path: Optional[Path] = None, args: Any = None) -> "EngineConfig":
        """Load ``path`` (key = value) on top of defaults, then apply CLI overrides."""
        defaults = cls()
        loader_defaults = defaults.to_file_dict()
        values = ConfigLoader.load(path or DEFAULT_CONFIG_PATH, defaults=loader_defaults, strict=True)

        config = cls(
            baud_rates=_parse_baud_rates(values["baud_rates"], defaults.baud_rates),
            probe_timeout_s=values["probe_timeout_s"],
            sample_interval_s=values["sample_interval_s"],
            stale_after_s=values["stale_after_s"],
            nmea_history=values["nmea_history"],
            ubx_enabled=values["ubx_enabled"],
            ublox_auto_config=values["ublox_auto_config"],
            identify_timeout_s=values["identify_timeout_s"],
            ack_timeout_s=values["ack_timeout_s"],
            baseline_duration_s=values["baseline_duration_s"],
            stabilization_duration_s=values["stabilization_duration_s"],
            result_duration_s=values["result_duration_s"],
            results_dir=Path(values["results_dir"]).expanduser(),
            log_level=values["log_level"],
            log_file=values["log_file"],
            console_output=values["console_output"],
        )

        if args is not None:
            config = config._apply_args_override(args)
        return config

    def _apply_args_override(self, args: Any) -> "EngineConfig":
        """Apply CLI argument overrides to config values."""
        values = asdict(self)

        arg_mappings = {
            "baud_rates": "baud_rates",
            "probe_timeout": "probe_timeout_s",
            "interval": "sample_interval_s",
            "results_dir": "results_dir",
            "log_level": "log_level",
            "log_file": "log_file",
            "no_ubx": "ubx_enabled",
            "no_ublox_config": "ublox_auto_config",
        }

        for arg_name, config_key in arg_mappings.items():
            if hasattr(args, arg_name):
                val = getattr(args, arg_name)
                if val is None:
                    continue
                if arg_name in ("no_ubx", "no_ublox_config"):
                    if val:
                        values[config_key] = False
                    continue
                if config_key == "baud_rates":
                    val = _parse_baud_rates(val, self.baud_rates)
                elif config_key == "results_dir":
                    val = Path(val).expanduser()
                values[config_key] = val

        return EngineConfig(**values)

    def to_file_dict(self) -> Dict[str, Any]:
        """Values as written in config.txt (scalars only)."""
        return {
            spec.name: ConfigLoader.format_value(getattr(self, spec.name))
            if isinstance(getattr(self, spec.name), (tuple, Path))
            else getattr(self, spec.name)
            for spec in fields(self)
        }

    def to_dict(self) -> Dict[str, Any]:
        """Export config values as dictionary."""
        return asdict(self)


__all__ = ["DEFAULT_CONFIG_PATH", "EngineConfig"]

"""Shared logging helpers for the scout-gps engine."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

MODULE_LOGGER_NAMESPACE = "scout_gps"
DEFAULT_COMPONENT = "Core"
DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def _normalize_logger_name(name: Optional[str]) -> str:
    if not name:
        return MODULE_LOGGER_NAMESPACE
    if name.startswith(MODULE_LOGGER_NAMESPACE):
        return name
    return f"{MODULE_LOGGER_NAMESPACE}.{name}"


def _derive_component(name: str) -> str:
    if not name:
        return DEFAULT_COMPONENT
    if name.startswith(MODULE_LOGGER_NAMESPACE):
        suffix = name[len(MODULE_LOGGER_NAMESPACE):].lstrip(".")
        return suffix or DEFAULT_COMPONENT
    return name


class StructuredLogger:
    """Thin wrapper that prefixes every message with its component name."""

    __slots__ = ("_logger", "_component")

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        object.__setattr__(self, "_logger", logger)
        resolved_component = component or _derive_component(logger.name)
        object.__setattr__(self, "_component", resolved_component or DEFAULT_COMPONENT)

    def __getattr__(self, item):
        return getattr(self._logger, item)

    def __setattr__(self, key, value):
        if key in self.__slots__:
            object.__setattr__(self, key, value)
        else:
            setattr(self._logger, key, value)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"StructuredLogger({self._logger!r}, component={self._component!r})"

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def component(self) -> str:
        return self._component

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _compose(self, message: object, args: tuple) -> str:
        text = str(message)
        if args:
            try:
                text = text % args
            except (TypeError, ValueError):
                safe_args = " ".join(str(arg) for arg in args)
                text = f"{text} | args={safe_args}"
        prefix = self._component or DEFAULT_COMPONENT
        if prefix and not text.startswith(f"[{prefix}]"):
            text = f"[{prefix}] {text}"
        return text

    def _emit(self, method: str, message: object, *args, **kwargs) -> None:
        if not self._logger.isEnabledFor(getattr(logging, method.upper())):
            return
        formatted = self._compose(message, args)
        getattr(self._logger, method)(formatted, **kwargs)

    def log(self, level: int, message: object, *args, **kwargs) -> None:
        formatted = self._compose(message, args)
        self._logger.log(level, formatted, **kwargs)

    def debug(self, message: object, *args, **kwargs) -> None:
        self._emit("debug", message, *args, **kwargs)

    def info(self, message: object, *args, **kwargs) -> None:
        self._emit("info", message, *args, **kwargs)

    def warning(self, message: object, *args, **kwargs) -> None:
        self._emit("warning", message, *args, **kwargs)

    def error(self, message: object, *args, **kwargs) -> None:
        self._emit("error", message, *args, **kwargs)

    def exception(self, message: object, *args, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self._emit("error", message, *args, **kwargs)

    def critical(self, message: object, *args, **kwargs) -> None:
        self._emit("critical", message, *args, **kwargs)

    def getChild(self, suffix: str) -> "StructuredLogger":
        child = self._logger.getChild(suffix)
        child_component = f"{self._component}.{suffix}" if self._component else suffix
        return StructuredLogger(child, component=child_component)


LoggerLike = Union[StructuredLogger, logging.Logger, logging.LoggerAdapter, None]


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Return a StructuredLogger wrapping ``logger`` (or a new module logger)."""

    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.LoggerAdapter):
        return StructuredLogger(
            logger.logger,
            component=component or _derive_component(logger.logger.name),
        )
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    return get_module_logger(fallback_name)


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    """Return a structured logger scoped to the scout_gps namespace."""
    normalized = _normalize_logger_name(name)
    base = logging.getLogger(normalized)
    return StructuredLogger(base)


def configure_logging(
    level_name: str,
    log_file: Optional[Path] = None,
    *,
    suppressed_loggers: Iterable[str] = ("asyncio",),
    fmt: str = DEFAULT_LOG_FORMAT,
    datefmt: str = "%H:%M:%S",
    console_output: bool = True,
) -> None:
    """Configure root logging with optional file output.

    Only entry points call this; library modules just ask for a logger.

    Args:
        level_name: Logging level (debug, info, warning, error, critical)
        log_file: Optional path to write logs to file
        suppressed_loggers: Logger names to quiet down (set to WARNING level)
        fmt: Log message format
        datefmt: Date/time format
        console_output: If True, also log to console
    """
    level = LOG_LEVELS.get(level_name.lower())
    if level is None:
        valid = ", ".join(sorted(LOG_LEVELS))
        raise ValueError(f"Invalid log level '{level_name}'. Choose from: {valid}")

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(level)
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    if console_output:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    if log_file:
        log_file_path = Path(log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if level != logging.DEBUG:
        for name in suppressed_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)


__all__ = [
    "LOG_LEVELS",
    "StructuredLogger",
    "configure_logging",
    "ensure_structured_logger",
    "get_module_logger",
]

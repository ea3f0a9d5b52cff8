"""JSON test reports, one file per completed run."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional, Protocol

from ..core.logging_utils import get_module_logger
from .evaluator import TestResult

logger = get_module_logger("ReportWriter")

DEFAULT_RESULTS_DIR = Path.home() / "scout-gps-results"

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class ReportWriter(Protocol):
    def save(self, result: TestResult) -> Path: ...


def report_filename(result: TestResult) -> str:
    """``gps-test_<serial|unknown>_<timestamp>.json`` with a filesystem-safe timestamp."""
    serial = result.device.serial_number or "unknown"
    serial = _UNSAFE.sub("-", serial).strip("-") or "unknown"
    stamp = result.finished_at or result.started_at
    ts = stamp.isoformat() if stamp else "undated"
    ts = ts.replace(":", "-").replace(".", "-").replace("+", "_")
    return f"gps-test_{serial}_{ts}.json"


class JsonReportWriter:
    """Writes TestResult.to_dict() as pretty-printed JSON."""

    def __init__(self, results_dir: Optional[Path] = None):
        self.results_dir = Path(results_dir) if results_dir else DEFAULT_RESULTS_DIR

    def save(self, result: TestResult) -> Path:
        """Write ``result`` and return the file path. OSError propagates."""
        self.results_dir.mkdir(parents=True, exist_ok=True)
        path = self.results_dir / report_filename(result)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info("Test report saved to %s", path)
        return path


__all__ = ["DEFAULT_RESULTS_DIR", "JsonReportWriter", "ReportWriter", "report_filename"]

"""Acceptance criteria, test runs and reports."""

from .criteria import CriteriaSet, CriterionResult, evaluate_criteria
from .evaluator import DeviceInfo, TestEvaluator, TestResult, TestVerdict
from .report import JsonReportWriter, report_filename

__all__ = [
    "CriteriaSet",
    "CriterionResult",
    "DeviceInfo",
    "JsonReportWriter",
    "TestEvaluator",
    "TestResult",
    "TestVerdict",
    "evaluate_criteria",
    "report_filename",
]

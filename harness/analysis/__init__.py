"""Post-run analysis: concurrency timeline and outcome grading."""

from harness.analysis.grading import (
    ValidationSummary,
    compute_exit_code,
    grade_results,
)
from harness.analysis.timeline import ConcurrencyReport, Verdict, analyze_concurrency

__all__ = [
    "ConcurrencyReport",
    "ValidationSummary",
    "Verdict",
    "analyze_concurrency",
    "compute_exit_code",
    "grade_results",
]

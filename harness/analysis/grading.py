"""Outcome grading and the analyser exit code.

Each run result is classified (timed out, else success, else failure) and
compared with what the scenario table expects for its branch, commit and
commit message. A match grades the run ``SUCCESS``, a mismatch ``ERROR``.
Mismatches are advisory: they never turn a compliant concurrency verdict
into a failure, they only make the exit code neutral.

Exit codes::

    +------------------------------+-----------------+------+
    | concurrency verdict          | mismatches      | exit |
    +------------------------------+-----------------+------+
    | FAIL                         | (any)           | 1    |
    | PASS                         | none            | 0    |
    | PASS                         | one or more     | 2    |
    | NO_DATA                      | -               | 2    |
    +------------------------------+-----------------+------+
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from harness.analysis.timeline import ConcurrencyReport, Verdict
from harness.monitoring.results import (
    RunResult,
    WorkerProduct,
    sanitize_branch,
)
from harness.scenarios.outcome import Outcome
from harness.scenarios.table import ScenarioTable

EXIT_OK = 0
EXIT_CONCURRENCY_FAIL = 1
EXIT_NEUTRAL = 2

# Validation score at or above which expectations are considered met
PASS_THRESHOLD = 75.0


class GradeStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


@dataclass
class RunGrade:
    """Expected versus actual outcome for one run."""

    result: RunResult
    commit_message: str
    expected: Outcome
    actual: Outcome

    @property
    def status(self) -> GradeStatus:
        if self.expected is self.actual:
            return GradeStatus.SUCCESS
        return GradeStatus.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch": self.result.branch,
            "commit": self.result.commit,
            "commit_message": self.commit_message,
            "expected": self.expected.value,
            "actual": self.actual.value,
            "status": self.status.value,
        }


@dataclass
class ValidationSummary:
    """Tallies of expected and actual outcomes across all graded runs."""

    grades: list[RunGrade] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.grades)

    @property
    def correct(self) -> int:
        return sum(1 for g in self.grades if g.status is GradeStatus.SUCCESS)

    @property
    def mismatches(self) -> list[RunGrade]:
        return [g for g in self.grades if g.status is GradeStatus.ERROR]

    @property
    def score(self) -> float:
        """Percentage of correct predictions; 0.0 with nothing graded."""
        if not self.grades:
            return 0.0
        return self.correct / self.total * 100.0

    @property
    def passed(self) -> bool:
        return self.total > 0 and self.score >= PASS_THRESHOLD

    def expected_count(self, outcome: Outcome) -> int:
        return sum(1 for g in self.grades if g.expected is outcome)

    def actual_count(self, outcome: Outcome) -> int:
        return sum(1 for g in self.grades if g.actual is outcome)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tests": self.total,
            "expected_successes": self.expected_count(Outcome.SUCCESS),
            "expected_failures": self.expected_count(Outcome.FAILURE),
            "expected_timeouts": self.expected_count(Outcome.TIMEOUT),
            "actual_successes": self.actual_count(Outcome.SUCCESS),
            "actual_failures": self.actual_count(Outcome.FAILURE),
            "actual_timeouts": self.actual_count(Outcome.TIMEOUT),
            "correct_predictions": self.correct,
            "validation_score": round(self.score, 1),
            "runs": [g.to_dict() for g in self.grades],
        }


MessageLookup = Callable[[RunResult], str]


def make_message_lookup(
    git_lookup: Callable[[str], str | None] | None = None,
    products: dict[tuple[str, str], WorkerProduct] | None = None,
) -> MessageLookup:
    """Build a commit-message lookup for grading.

    Args:
        git_lookup: Maps a commit hash to its subject line, or None when
            git cannot resolve it.
        products: Worker products keyed by (branch-sanitised, commit8),
            consulted when git has no answer.

    Returns:
        Function from a run result to its commit message ("" if unknown).
    """
    products = products or {}

    def lookup(result: RunResult) -> str:
        if git_lookup is not None:
            message = git_lookup(result.commit)
            if message is not None:
                return message
        product = products.get(
            (sanitize_branch(result.branch), result.short_commit)
        )
        if product is not None:
            return product.commit_message
        return ""

    return lookup


def grade_results(
    results: Iterable[RunResult],
    table: ScenarioTable,
    message_for: MessageLookup,
) -> ValidationSummary:
    """Grade every result against the scenario table."""
    summary = ValidationSummary()
    for result in results:
        message = message_for(result)
        summary.grades.append(RunGrade(
            result=result,
            commit_message=message,
            expected=table.expected_outcome(result.branch, result.commit, message),
            actual=result.outcome,
        ))
    return summary


def find_cleaned_timeout(results: Iterable[RunResult]) -> RunResult | None:
    """First timed-out run whose cleanup was executed, if any."""
    for result in results:
        if result.timed_out and result.cleanup_executed:
            return result
    return None


def compute_exit_code(
    report: ConcurrencyReport, summary: ValidationSummary
) -> int:
    """Exit code for an analysis; see the module docstring table."""
    if report.verdict is Verdict.FAIL:
        return EXIT_CONCURRENCY_FAIL
    if report.verdict is Verdict.NO_DATA:
        return EXIT_NEUTRAL
    if summary.mismatches:
        return EXIT_NEUTRAL
    return EXIT_OK

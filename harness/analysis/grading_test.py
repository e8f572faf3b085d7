"""Unit tests for outcome grading and exit codes."""

from __future__ import annotations

import datetime

import pytest

from harness.analysis.grading import (
    EXIT_CONCURRENCY_FAIL,
    EXIT_NEUTRAL,
    EXIT_OK,
    GradeStatus,
    compute_exit_code,
    find_cleaned_timeout,
    grade_results,
    make_message_lookup,
)
from harness.analysis.timeline import analyze_concurrency
from harness.monitoring.results import RunResult, WorkerProduct
from harness.scenarios.outcome import Outcome
from harness.scenarios.table import load_scenarios

T0 = datetime.datetime(2025, 3, 1, 10, 0, 0, tzinfo=datetime.timezone.utc)


def _run(
    branch: str,
    commit: str,
    success: bool = True,
    timed_out: bool = False,
    start: float = 0,
    end: float = 5,
    cleanup_executed: bool = False,
) -> RunResult:
    return RunResult(
        branch=branch,
        commit=commit,
        start_time=T0 + datetime.timedelta(seconds=start),
        end_time=T0 + datetime.timedelta(seconds=end),
        success=success,
        timed_out=timed_out,
        cleanup_executed=cleanup_executed,
    )


def _messages(mapping: dict[str, str]):
    return make_message_lookup(git_lookup=mapping.get)


class TestGradeResults:
    """Tests for per-run grading against the bundled expectations."""

    def test_literal_scenarios(self):
        """Each kind of rule graded against a matching outcome."""
        results = [
            _run("main", "a1b2c3d4e5"),
            _run("feature/test2", "0badc0de00", success=False),
            _run("main", "7e57700000", success=False, timed_out=True),
            _run("bugfix/xyz", "f1f1f1f1f1", success=False),
        ]
        messages = {
            "a1b2c3d4e5": "Add foo",
            "0badc0de00": "Progress",
            "7e57700000": "TIMEOUT: stress",
            "f1f1f1f1f1": "fix",
        }
        summary = grade_results(results, load_scenarios(), _messages(messages))
        assert [g.expected for g in summary.grades] == [
            Outcome.SUCCESS, Outcome.FAILURE, Outcome.TIMEOUT, Outcome.FAILURE,
        ]
        assert all(g.status is GradeStatus.SUCCESS for g in summary.grades)
        assert summary.score == 100.0
        assert summary.passed

    def test_mismatch_is_error(self):
        summary = grade_results(
            [_run("main", "abc", success=False)],
            load_scenarios(),
            _messages({"abc": "Add foo"}),
        )
        grade = summary.grades[0]
        assert grade.status is GradeStatus.ERROR
        assert grade.expected is Outcome.SUCCESS
        assert grade.actual is Outcome.FAILURE
        assert summary.mismatches == [grade]
        assert not summary.passed

    def test_tallies(self):
        results = [
            _run("main", "1"),
            _run("main", "2", success=False),
            _run("main", "3", success=False, timed_out=True),
            _run("main", "4"),
        ]
        messages = {"1": "SUCCESS", "2": "FAIL", "3": "TIMEOUT", "4": "FAIL"}
        summary = grade_results(results, load_scenarios(), _messages(messages))
        data = summary.to_dict()
        assert data["total_tests"] == 4
        assert data["expected_successes"] == 1
        assert data["expected_failures"] == 2
        assert data["expected_timeouts"] == 1
        assert data["actual_successes"] == 2
        assert data["actual_failures"] == 1
        assert data["actual_timeouts"] == 1
        assert data["correct_predictions"] == 3
        assert data["validation_score"] == 75.0
        assert summary.passed

    def test_empty(self):
        summary = grade_results([], load_scenarios(), _messages({}))
        assert summary.total == 0
        assert summary.score == 0.0
        assert not summary.passed


class TestMessageLookup:
    """Tests for the git-then-product message lookup."""

    def test_git_first(self):
        products = {
            ("main", "abcdef12"): WorkerProduct(
                "main", "abcdef12", "from product", "success"
            ),
        }
        lookup = make_message_lookup(
            git_lookup={"abcdef1234": "from git"}.get, products=products
        )
        assert lookup(_run("main", "abcdef1234")) == "from git"

    def test_product_fallback(self):
        products = {
            ("feature-x", "abcdef12"): WorkerProduct(
                "feature/x", "abcdef12", "FAIL: from product", "failure"
            ),
        }
        lookup = make_message_lookup(git_lookup=lambda c: None, products=products)
        assert lookup(_run("feature/x", "abcdef1234")) == "FAIL: from product"

    def test_unknown_is_empty(self):
        assert make_message_lookup()(_run("main", "x")) == ""


class TestExitCode:
    """Tests for compute_exit_code."""

    def _summary(self, results, messages):
        return grade_results(results, load_scenarios(), _messages(messages))

    def test_pass_without_mismatch(self):
        results = [_run("main", "a")]
        report = analyze_concurrency(results, 1)
        assert compute_exit_code(report, self._summary(results, {})) == EXIT_OK

    def test_pass_with_mismatch_is_neutral(self):
        results = [_run("main", "a", success=False)]
        report = analyze_concurrency(results, 1)
        assert compute_exit_code(
            report, self._summary(results, {})
        ) == EXIT_NEUTRAL

    def test_concurrency_fail(self):
        results = [_run(f"b{i}", str(i), start=0, end=30) for i in range(4)]
        report = analyze_concurrency(results, 2)
        assert compute_exit_code(
            report, self._summary(results, {})
        ) == EXIT_CONCURRENCY_FAIL

    def test_no_data_is_neutral(self):
        report = analyze_concurrency([], 2)
        assert compute_exit_code(report, self._summary([], {})) == EXIT_NEUTRAL


class TestFindCleanedTimeout:

    @pytest.mark.parametrize("timed_out,cleanup,found", [
        (True, True, True),
        (True, False, False),
        (False, True, False),
    ])
    def test_find(self, timed_out, cleanup, found):
        run = _run("bugfix/critical", "c0ffee", success=False,
                   timed_out=timed_out, cleanup_executed=cleanup)
        assert (find_cleaned_timeout([run]) is run) == found

"""Console and file reports for a harness run.

Collects the concurrency analysis, the outcome grading and the observer
statistics, prints them as plain-text sections and writes them as a JSON
or YAML document.
"""

from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any

import yaml

from harness.analysis.grading import (
    PASS_THRESHOLD,
    GradeStatus,
    ValidationSummary,
    compute_exit_code,
)
from harness.analysis.timeline import (
    ConcurrencyReport,
    EventKind,
    TimelineEntry,
    Verdict,
)
from harness.scenarios.outcome import Outcome


def timeline_marker(entry: TimelineEntry, limit: int) -> str:
    """Marker for a timeline row: START rows are compared to the limit."""
    if entry.event.kind is EventKind.END:
        return "END"
    if entry.running > limit:
        return "OVER"
    if entry.running == limit:
        return "LIMIT"
    return "OK"


def _format_time(value: datetime.datetime) -> str:
    return value.strftime("%H:%M:%S.") + f"{value.microsecond // 1000:03d}"


class AnalysisReporter:
    """Collects analysis results and renders them.

    Sections are optional: a reporter with only a concurrency report
    prints and serializes only that section.
    """

    def __init__(self) -> None:
        self.concurrency: ConcurrencyReport | None = None
        self.validation: ValidationSummary | None = None
        self.statistics: dict[str, Any] | None = None
        self.suite: str | None = None

    def set_concurrency(self, report: ConcurrencyReport) -> None:
        self.concurrency = report

    def set_validation(self, summary: ValidationSummary) -> None:
        self.validation = summary

    def set_statistics(self, statistics: dict[str, Any]) -> None:
        """Set harness statistics (commits, branches, tests detected...)."""
        self.statistics = statistics

    def set_suite(self, suite: str) -> None:
        self.suite = suite

    def generate_report(self) -> dict[str, Any]:
        """Generate the report data structure.

        Returns:
            Dictionary suitable for JSON or YAML serialization.
        """
        now = datetime.datetime.now(tz=datetime.timezone.utc).isoformat()
        report: dict[str, Any] = {"generated_at": now}
        if self.suite:
            report["suite"] = self.suite
        if self.concurrency is not None:
            report["concurrency"] = self.concurrency.to_dict()
        if self.validation is not None:
            report["validation"] = self.validation.to_dict()
        if self.statistics is not None:
            report["statistics"] = dict(self.statistics)
        if self.concurrency is not None and self.validation is not None:
            report["exit_code"] = compute_exit_code(
                self.concurrency, self.validation
            )
        return report

    def write_report(self, path: Path) -> None:
        """Write the report as a JSON file."""
        report = self.generate_report()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(report, f, indent=2)
            f.write("\n")

    def write_yaml(self, path: Path) -> None:
        """Write the report as a YAML file under a top-level ``report`` key."""
        report = self.generate_report()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump({"report": report}, f, sort_keys=False)

    def write(self, path: Path) -> None:
        """Write JSON or YAML depending on the file suffix."""
        if path.suffix in (".yaml", ".yml"):
            self.write_yaml(path)
        else:
            self.write_report(path)

    def print_timeline(self) -> None:
        """Print the execution timeline as a table."""
        if self.concurrency is None:
            return
        report = self.concurrency
        print("Execution timeline:")
        if not report.timeline:
            print("  (no runs)")
            return
        print(f"  {'TIME':<12} {'MARK':<6} {'ACTION':<6} {'RUN':<40} RUNNING")
        for entry in report.timeline:
            event = entry.event
            run = f"{event.branch}@{event.commit[:8]}"
            marker = timeline_marker(entry, report.max_concurrent_runs)
            print(
                f"  {_format_time(event.time):<12} [{marker:<4}] "
                f"{event.kind.value:<6} {run:<40} "
                f"{entry.running}/{report.max_concurrent_runs}"
            )
        print()

    def print_concurrency(self) -> None:
        """Print the concurrency verdict and any violations."""
        if self.concurrency is None:
            return
        report = self.concurrency
        print("Concurrency analysis:")
        print(f"  Runs analysed: {report.total_runs}")
        print(f"  Limit (max_concurrent_runs): {report.max_concurrent_runs}")
        if report.verdict is Verdict.NO_DATA:
            print("  Verdict: NO DATA (no run results found)")
            return
        peak_at = f" at {_format_time(report.peak_at)}" if report.peak_at else ""
        print(f"  Peak concurrency: {report.peak}{peak_at}")
        print(f"  Verdict: {report.verdict.value}")
        if report.violations:
            print(f"  Violations ({len(report.violations)}):")
            for v in report.violations:
                print(
                    f"    {_format_time(v.time)} running={v.count} "
                    f"started {v.branch}@{v.commit[:8]}"
                )
        print()

    def print_validation(self) -> None:
        """Print per-run grades and the expected/actual tallies."""
        if self.validation is None:
            return
        summary = self.validation
        print("Test expectations validation:")
        if summary.total == 0:
            print("  No runs to validate")
            return
        for grade in summary.grades:
            icon = "OK" if grade.status is GradeStatus.SUCCESS else "ERROR"
            print(
                f"  [{icon}] {grade.result.branch}@{grade.result.short_commit} "
                f"expected={grade.expected.value} actual={grade.actual.value} "
                f"({grade.commit_message or 'no message'})"
            )
        print(f"  Total tests validated: {summary.total}")
        print(
            "  Expected: "
            f"Success={summary.expected_count(Outcome.SUCCESS)}, "
            f"Failure={summary.expected_count(Outcome.FAILURE)}, "
            f"Timeout={summary.expected_count(Outcome.TIMEOUT)}"
        )
        print(
            "  Actual: "
            f"Success={summary.actual_count(Outcome.SUCCESS)}, "
            f"Failure={summary.actual_count(Outcome.FAILURE)}, "
            f"Timeout={summary.actual_count(Outcome.TIMEOUT)}"
        )
        print(
            f"  Correct predictions: {summary.correct}/{summary.total} "
            f"({summary.score:.1f}%)"
        )
        if summary.passed:
            print("  Test expectations validation passed")
        else:
            print(
                f"  Test expectations validation below {PASS_THRESHOLD:.0f}%"
            )
        print()

    def print_statistics(self) -> None:
        """Print harness statistics as aligned key/value lines."""
        if self.statistics is None:
            return
        print("Test statistics:")
        for key, value in self.statistics.items():
            label = key.replace("_", " ").capitalize()
            print(f"  {label}: {value}")
        print()

    def print_all(self) -> None:
        self.print_statistics()
        self.print_timeline()
        self.print_concurrency()
        self.print_validation()

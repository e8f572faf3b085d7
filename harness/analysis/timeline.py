"""Concurrency timeline reconstructed from finished run results.

Each run contributes a START event at its start time and an END event at
its end time. Events are sorted by time with END before START at equal
instants, then by branch and commit, so the order is the same on every
analysis of the same inputs. A sweep over the sorted events gives the
number of runs in flight after each event; its maximum is the observed
peak concurrency.

Example: runs A=[0,10], B=[5,15], C=[10,20] with a limit of 2 peak at 2.
At t=10 END(A) is applied before START(C), so three runs are never in
flight at once.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from harness.monitoring.results import RunResult


class EventKind(str, Enum):
    START = "START"
    END = "END"


# END sorts before START at the same instant
_KIND_RANK = {EventKind.END: 0, EventKind.START: 1}


class Verdict(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    NO_DATA = "NO_DATA"


@dataclass(frozen=True)
class Event:
    """A run starting or ending."""

    time: datetime.datetime
    kind: EventKind
    branch: str
    commit: str

    def sort_key(self) -> tuple[datetime.datetime, int, str, str]:
        return (self.time, _KIND_RANK[self.kind], self.branch, self.commit)


@dataclass(frozen=True)
class TimelineEntry:
    """An event together with the number of runs in flight after it."""

    event: Event
    running: int


@dataclass(frozen=True)
class Violation:
    """A START that pushed the in-flight count over the limit."""

    time: datetime.datetime
    count: int
    branch: str
    commit: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time.isoformat(),
            "count": self.count,
            "branch": self.branch,
            "commit": self.commit,
        }


@dataclass
class ConcurrencyReport:
    """Result of sweeping the event timeline against the configured limit."""

    max_concurrent_runs: int
    total_runs: int = 0
    peak: int = 0
    peak_at: datetime.datetime | None = None
    timeline: list[TimelineEntry] = field(default_factory=list)
    violations: list[Violation] = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return self.peak <= self.max_concurrent_runs

    @property
    def verdict(self) -> Verdict:
        if self.total_runs == 0:
            return Verdict.NO_DATA
        return Verdict.PASS if self.compliant else Verdict.FAIL

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "max_concurrent_runs": self.max_concurrent_runs,
            "total_runs": self.total_runs,
            "peak_concurrency": self.peak,
            "peak_at": self.peak_at.isoformat() if self.peak_at else None,
            "violations": [v.to_dict() for v in self.violations],
        }


def build_events(results: Iterable[RunResult]) -> list[Event]:
    """Two events per result, in input order."""
    events: list[Event] = []
    for r in results:
        events.append(Event(r.start_time, EventKind.START, r.branch, r.commit))
        events.append(Event(r.end_time, EventKind.END, r.branch, r.commit))
    return events


def sort_events(events: Iterable[Event]) -> list[Event]:
    """Sort chronologically with END before START at equal times."""
    return sorted(events, key=Event.sort_key)


def sweep(
    events: list[Event], max_concurrent_runs: int
) -> tuple[list[TimelineEntry], int, datetime.datetime | None, list[Violation]]:
    """Walk sorted events, tracking the in-flight count.

    Returns:
        (timeline, peak, time the peak was first reached, violations).
    """
    timeline: list[TimelineEntry] = []
    violations: list[Violation] = []
    running = 0
    peak = 0
    peak_at: datetime.datetime | None = None

    for event in events:
        if event.kind is EventKind.START:
            running += 1
            if running > peak:
                peak = running
                peak_at = event.time
            if running > max_concurrent_runs:
                violations.append(
                    Violation(event.time, running, event.branch, event.commit)
                )
        else:
            running -= 1
        timeline.append(TimelineEntry(event, running))

    return timeline, peak, peak_at, violations


def analyze_concurrency(
    results: list[RunResult], max_concurrent_runs: int
) -> ConcurrencyReport:
    """Compute peak concurrency and compliance for ``results``.

    Raises:
        ValueError: If ``max_concurrent_runs`` is less than 1.
    """
    if max_concurrent_runs < 1:
        raise ValueError(
            f"max_concurrent_runs must be at least 1, got {max_concurrent_runs}"
        )
    events = sort_events(build_events(results))
    timeline, peak, peak_at, violations = sweep(events, max_concurrent_runs)
    return ConcurrencyReport(
        max_concurrent_runs=max_concurrent_runs,
        total_runs=len(results),
        peak=peak,
        peak_at=peak_at,
        timeline=timeline,
        violations=violations,
    )

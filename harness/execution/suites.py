"""Named harness run profiles.

A suite fixes everything about a run except the working directory: how
the test repository is laid out, what activity is simulated while the
daemon runs, how long the run lasts, how long to wait for in-flight runs
afterwards and which daemon settings differ from the defaults.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

# Repository layouts
LAYOUT_SINGLE = "single"
LAYOUT_MULTI_TYPE = "multi-type"
LAYOUT_MULTI_BRANCH = "multi-branch"

# Activity plans
ACTIVITY_NONE = "none"
ACTIVITY_PERIODIC = "periodic"
ACTIVITY_CONCURRENT = "concurrent"
ACTIVITY_CONTINUOUS = "continuous"

DEFAULT_DURATION = "3m"
DEFAULT_SETTLE_SECONDS = 30.0

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


@dataclass(frozen=True)
class Suite:
    """One run profile.

    Duration policy: ``fixed_duration`` wins over everything; otherwise the
    requested duration is used, capped at ``max_duration`` when set.
    """

    name: str
    description: str
    layout: str
    activity: str
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    fixed_duration: float | None = None
    max_duration: float | None = None
    single_commit_message: str = ""
    multi_type_prefix: str = ""
    daemon_overrides: dict[str, Any] = field(default_factory=dict)

    @property
    def config_file_name(self) -> str:
        return f"config-{self.name}.yaml"

    @property
    def is_single_commit(self) -> bool:
        return self.layout == LAYOUT_SINGLE


SUITES: dict[str, Suite] = {
    suite.name: suite for suite in [
        Suite(
            name="success",
            description="Single commit that should pass",
            layout=LAYOUT_SINGLE,
            activity=ACTIVITY_NONE,
            settle_seconds=20.0,
            fixed_duration=30.0,
            single_commit_message="SUCCESS: This commit should pass",
            daemon_overrides={"check_interval": "5s", "test_timeout": "30s"},
        ),
        Suite(
            name="fail",
            description="Single commit that should fail",
            layout=LAYOUT_SINGLE,
            activity=ACTIVITY_NONE,
            settle_seconds=20.0,
            fixed_duration=30.0,
            single_commit_message="FAIL: This commit should fail",
            daemon_overrides={"check_interval": "5s", "test_timeout": "30s"},
        ),
        Suite(
            name="timeout",
            description="Single commit whose run outlives test_timeout",
            layout=LAYOUT_SINGLE,
            activity=ACTIVITY_NONE,
            settle_seconds=60.0,
            fixed_duration=60.0,
            single_commit_message="TIMEOUT: This commit should timeout",
            daemon_overrides={
                "check_interval": "5s",
                "test_timeout": "15s",
                "max_concurrent_runs": 1,
                "options": "--timeout-test",
            },
        ),
        Suite(
            name="quick",
            description="One success, one failure and one timeout branch",
            layout=LAYOUT_MULTI_TYPE,
            activity=ACTIVITY_NONE,
            max_duration=30.0,
            multi_type_prefix="Quick",
            daemon_overrides={"check_interval": "5s", "test_timeout": "20s"},
        ),
        Suite(
            name="normal",
            description="Multi-branch repository with periodic commits",
            layout=LAYOUT_MULTI_BRANCH,
            activity=ACTIVITY_PERIODIC,
            daemon_overrides={"check_interval": "10s", "test_timeout": "30s"},
        ),
        Suite(
            name="long",
            description="Like normal, for long soak runs",
            layout=LAYOUT_MULTI_BRANCH,
            activity=ACTIVITY_PERIODIC,
            daemon_overrides={"check_interval": "30s", "test_timeout": "60s"},
        ),
        Suite(
            name="concurrent-limit",
            description="Burst of long runs against max_concurrent_runs",
            layout=LAYOUT_MULTI_BRANCH,
            activity=ACTIVITY_CONCURRENT,
            settle_seconds=60.0,
            fixed_duration=120.0,
            daemon_overrides={
                "check_interval": "2s",
                "test_timeout": "30s",
                "max_concurrent_runs": 2,
            },
        ),
        Suite(
            name="continuous-ci",
            description="Commits at irregular intervals while runs are in flight",
            layout=LAYOUT_MULTI_BRANCH,
            activity=ACTIVITY_CONTINUOUS,
            settle_seconds=45.0,
            fixed_duration=75.0,
            daemon_overrides={
                "check_interval": "3s",
                "test_timeout": "20s",
                "max_concurrent_runs": 3,
            },
        ),
    ]
}


def get_suite(name: str) -> Suite:
    """Look up a suite by name.

    Raises:
        ValueError: If no suite has that name.
    """
    try:
        return SUITES[name]
    except KeyError:
        valid = ", ".join(SUITES)
        raise ValueError(
            f"unknown test type '{name}' (expected one of: {valid})"
        ) from None


def parse_duration(text: str) -> float:
    """Parse a duration like ``30s``, ``3m`` or ``1h30m`` into seconds.

    A bare number is taken as seconds.

    Raises:
        ValueError: If the string is not a duration.
    """
    value = text.strip()
    if not value:
        raise ValueError("empty duration")
    try:
        return float(value)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(value) or pos == 0:
        raise ValueError(f"invalid duration format: '{text}'")
    return total


def resolve_duration(suite: Suite, requested: float) -> float:
    """Apply the suite's duration policy to the requested duration."""
    if suite.fixed_duration is not None:
        return suite.fixed_duration
    if suite.max_duration is not None and requested > suite.max_duration:
        return suite.max_duration
    return requested

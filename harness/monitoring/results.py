"""Readers for the artifacts the daemon and the worker leave on disk.

The daemon writes one JSON file per finished run into ``<repo>/.home-ci/``
named ``<YYYYMMDD-HHMMSS>_<branch-sanitised>_<commit8>.json`` plus a
singleton ``state.json`` listing the runs still in flight. The worker
writes ``<branch-sanitised>-<commit8>_run-product.json`` into its data
directory.

Readers here never raise on a bad individual file: a half-written or
foreign file is reported as a warning and skipped.
"""

from __future__ import annotations

import datetime
import json
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from harness.scenarios.outcome import Outcome

STATE_FILE_NAME = "state.json"
DAEMON_DIR_NAME = ".home-ci"
PRODUCT_SUFFIX = "_run-product.json"

_FRACTION_RE = re.compile(r"\.(\d+)")
_NANOSECONDS = 1_000_000_000


def daemon_data_dir(repo_path: str | Path) -> Path:
    """Directory where the daemon keeps results for ``repo_path``."""
    return Path(repo_path) / DAEMON_DIR_NAME


def sanitize_branch(branch: str) -> str:
    """Branch name as it appears in result and product file names."""
    return branch.replace("/", "-")


def parse_timestamp(value: str) -> datetime.datetime:
    """Parse an RFC 3339 timestamp into an aware datetime.

    Accepts a trailing ``Z`` and fractional seconds of any precision
    (the daemon writes nanoseconds, which ``fromisoformat`` rejects).
    Naive timestamps are taken as UTC.

    Raises:
        ValueError: If the string is not a timestamp.
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(
        lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1
    )
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"invalid timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


@dataclass
class RunResult:
    """One finished worker execution as recorded by the daemon."""

    branch: str
    commit: str
    start_time: datetime.datetime
    end_time: datetime.datetime
    success: bool = False
    timed_out: bool = False
    log_file: str = ""
    duration: float = 0.0  # seconds
    cleanup_executed: bool = False
    cleanup_success: bool = False
    github_actions_notified: bool = False
    github_actions_success: bool = False
    error_message: str = ""
    cleanup_error_message: str = ""
    github_actions_error_message: str = ""
    source: Path | None = None

    @property
    def outcome(self) -> Outcome:
        """Actual outcome: timed out beats success beats failure."""
        if self.timed_out:
            return Outcome.TIMEOUT
        if self.success:
            return Outcome.SUCCESS
        return Outcome.FAILURE

    @property
    def short_commit(self) -> str:
        return self.commit[:8]

    @classmethod
    def from_dict(
        cls, data: Any, source: Path | None = None
    ) -> RunResult:
        """Build a result from the daemon's JSON document.

        ``duration`` is written by the daemon as integer nanoseconds; it is
        derived from the timestamps when absent.

        Raises:
            ValueError: If a required field is missing or the times are
                out of order.
        """
        if not isinstance(data, dict):
            raise ValueError("result document must be a JSON object")
        for key in ("branch", "commit", "start_time", "end_time"):
            if key not in data:
                raise ValueError(f"missing field '{key}'")
        branch = data["branch"]
        commit = data["commit"]
        if not isinstance(branch, str) or not isinstance(commit, str):
            raise ValueError("'branch' and 'commit' must be strings")

        start = parse_timestamp(data["start_time"])
        end = parse_timestamp(data["end_time"])
        if start > end:
            raise ValueError(
                f"start_time {data['start_time']} is after end_time "
                f"{data['end_time']}"
            )

        raw_duration = data.get("duration")
        if isinstance(raw_duration, (int, float)) and not isinstance(
            raw_duration, bool
        ):
            duration = raw_duration / _NANOSECONDS
        else:
            duration = (end - start).total_seconds()

        return cls(
            branch=branch,
            commit=commit,
            start_time=start,
            end_time=end,
            success=bool(data.get("success", False)),
            timed_out=bool(data.get("timed_out", False)),
            log_file=str(data.get("log_file", "")),
            duration=duration,
            cleanup_executed=bool(data.get("cleanup_executed", False)),
            cleanup_success=bool(data.get("cleanup_success", False)),
            github_actions_notified=bool(
                data.get("github_actions_notified", False)
            ),
            github_actions_success=bool(
                data.get("github_actions_success", False)
            ),
            error_message=str(data.get("error_message") or ""),
            cleanup_error_message=str(data.get("cleanup_error_message") or ""),
            github_actions_error_message=str(
                data.get("github_actions_error_message") or ""
            ),
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serializable summary used in reports."""
        data: dict[str, Any] = {
            "branch": self.branch,
            "commit": self.commit,
            "log_file": self.log_file,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "success": self.success,
            "timed_out": self.timed_out,
            "cleanup_executed": self.cleanup_executed,
            "cleanup_success": self.cleanup_success,
            "outcome": self.outcome.value,
        }
        if self.error_message:
            data["error_message"] = self.error_message
        if self.source is not None:
            data["file"] = self.source.name
        return data


@dataclass(frozen=True)
class ResultFileName:
    """Parts of a result file name."""

    timestamp: str
    branch_sanitised: str
    commit8: str


def parse_result_filename(name: str) -> ResultFileName | None:
    """Split ``<timestamp>_<branch>_<commit8>.json``; None if it does not fit."""
    if not name.endswith(".json") or name == STATE_FILE_NAME:
        return None
    stem = name[: -len(".json")]
    timestamp, sep, rest = stem.partition("_")
    if not sep:
        return None
    branch, sep, commit8 = rest.rpartition("_")
    if not sep or not branch or not commit8:
        return None
    return ResultFileName(timestamp, branch, commit8)


def list_result_files(data_dir: str | Path) -> list[Path]:
    """Result files in ``data_dir`` sorted by name, ``state.json`` excluded.

    A missing directory yields an empty list.
    """
    directory = Path(data_dir)
    try:
        entries = list(directory.iterdir())
    except OSError:
        return []
    return sorted(
        p for p in entries
        if p.suffix == ".json" and p.name != STATE_FILE_NAME and p.is_file()
    )


def load_run_result(path: Path) -> RunResult:
    """Read one result file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If it is not valid JSON or not a valid result.
    """
    text = path.read_text(encoding="utf-8")
    return RunResult.from_dict(json.loads(text), source=path)


def load_run_results(data_dir: str | Path) -> list[RunResult]:
    """Read every result file in ``data_dir``, skipping unreadable ones."""
    results: list[RunResult] = []
    for path in list_result_files(data_dir):
        try:
            results.append(load_run_result(path))
        except (OSError, ValueError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            print(f"Warning: skipping {path.name}: {e}", file=sys.stderr)
    return results


@dataclass
class RunningRun:
    """An in-flight run listed in ``state.json``."""

    branch: str
    commit: str
    log_file: str = ""
    start_time: datetime.datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        """(branch-sanitised, commit8), matching the result file name."""
        return sanitize_branch(self.branch), self.commit[:8]


@dataclass
class LiveState:
    """Snapshot of the daemon's ``state.json``."""

    running: list[RunningRun] = field(default_factory=list)


def read_live_state(data_dir: str | Path) -> LiveState | None:
    """Read ``state.json``; None when it is absent or unreadable this tick.

    The daemon rewrites the file in place, so a torn read is expected now
    and then and is not reported.
    """
    path = Path(data_dir) / STATE_FILE_NAME
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    running: list[RunningRun] = []
    for entry in data.get("running_tests") or []:
        if not isinstance(entry, dict):
            continue
        branch = entry.get("branch")
        commit = entry.get("commit")
        if not isinstance(branch, str) or not isinstance(commit, str):
            continue
        start_time = None
        raw_start = entry.get("start_time")
        if raw_start:
            try:
                start_time = parse_timestamp(raw_start)
            except ValueError:
                start_time = None
        running.append(RunningRun(
            branch=branch,
            commit=commit,
            log_file=str(entry.get("log_file", "")),
            start_time=start_time,
        ))
    return LiveState(running=running)


@dataclass
class WorkerProduct:
    """Per-run product document written by the worker."""

    branch: str
    commit: str
    commit_message: str
    expected_behavior: str
    working_dir: str = ""
    test_type: str = "e2e"
    timestamp: str = ""
    source: Path | None = None

    @property
    def key(self) -> tuple[str, str]:
        return sanitize_branch(self.branch), self.commit[:8]


def load_run_products(
    data_dir: str | Path,
) -> dict[tuple[str, str], WorkerProduct]:
    """Worker products keyed by (branch-sanitised, commit8).

    When the same run was executed more than once the product written
    last (by file name order) wins.
    """
    products: dict[tuple[str, str], WorkerProduct] = {}
    directory = Path(data_dir)
    try:
        paths = sorted(directory.glob(f"*{PRODUCT_SUFFIX}"))
    except OSError:
        return products
    for path in paths:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            print(f"Warning: skipping {path.name}: {e}", file=sys.stderr)
            continue
        if not isinstance(data, dict) or "branch" not in data or "commit" not in data:
            print(
                f"Warning: skipping {path.name}: not a worker product",
                file=sys.stderr,
            )
            continue
        product = WorkerProduct(
            branch=str(data["branch"]),
            commit=str(data["commit"]),
            commit_message=str(data.get("commit_message", "")),
            expected_behavior=str(data.get("expected_behavior", "")),
            working_dir=str(data.get("working_dir", "")),
            test_type=str(data.get("test_type", "e2e")),
            timestamp=str(data.get("timestamp", "")),
            source=path,
        )
        products[product.key] = product
    return products

"""Polling observer for the daemon's data directory.

While the daemon runs, the observer reconciles the harness view of its
progress about once per second: it counts result files, replaces the set
of in-flight runs from ``state.json`` and notices the first timed-out
result. It owns the counters in ``HarnessStats``; nothing else writes
them while it runs.
"""

from __future__ import annotations

import asyncio
import datetime
import sys
from dataclasses import dataclass, field
from pathlib import Path

from harness.monitoring.results import (
    RunningRun,
    list_result_files,
    load_run_result,
    parse_result_filename,
    read_live_state,
    sanitize_branch,
)


@dataclass
class HarnessStats:
    """Counters maintained by the observer."""

    running_tests: list[RunningRun] = field(default_factory=list)
    total_distinct_completed: int = 0
    timeout_detected: bool = False
    state_file_read: bool = False
    vanished_runs: list[RunningRun] = field(default_factory=list)


class RunObserver:
    """Reconciles ``HarnessStats`` with the files in ``data_dir``.

    Result files are counted by name, so a file seen on many ticks is
    counted once. A file that fails to parse (typically still being
    written) is retried on later ticks for the timeout check and warned
    about once.
    """

    def __init__(
        self,
        data_dir: Path,
        stats: HarnessStats | None = None,
        interval: float = 1.0,
        display_every: int = 15,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.stats = stats if stats is not None else HarnessStats()
        self.interval = interval
        self.display_every = display_every
        self.ticks = 0
        self._seen: set[str] = set()
        self._parsed: set[str] = set()
        self._warned: set[str] = set()
        self._completed_keys: set[tuple[str, str]] = set()
        # In-flight runs seen in state.json with no result file yet
        self._pending: dict[tuple[str, str], RunningRun] = {}

    def tick(self) -> None:
        """Run one reconciliation pass."""
        self.ticks += 1

        for path in list_result_files(self.data_dir):
            name = path.name
            if name not in self._seen:
                self._seen.add(name)
                parts = parse_result_filename(name)
                if parts is not None:
                    self._completed_keys.add(
                        (parts.branch_sanitised, parts.commit8)
                    )
            if name in self._parsed:
                continue
            try:
                result = load_run_result(path)
            except (OSError, ValueError) as e:
                if name not in self._warned:
                    self._warned.add(name)
                    print(f"Warning: cannot read result {name} yet: {e}",
                          file=sys.stderr)
                continue
            self._parsed.add(name)
            self._completed_keys.add(
                (sanitize_branch(result.branch), result.short_commit)
            )
            if result.timed_out and not self.stats.timeout_detected:
                self.stats.timeout_detected = True
                print(f"Timeout detected: found timeout in result file {name}")

        self.stats.total_distinct_completed = len(self._seen)

        live = read_live_state(self.data_dir)
        if live is None:
            self.stats.running_tests = []
        else:
            self.stats.state_file_read = True
            self.stats.running_tests = list(live.running)
            for run in live.running:
                self._pending.setdefault(run.key, run)

        for key in [k for k in self._pending if k in self._completed_keys]:
            del self._pending[key]

        if self.display_every and self.ticks % self.display_every == 0:
            self.display_running_tests()

    def display_running_tests(self) -> None:
        """Print the in-flight runs from the latest tick."""
        running = self.stats.running_tests
        if not running:
            if self.stats.state_file_read:
                print("No tests currently running")
            else:
                print("Waiting for test state information...")
            return

        now = datetime.datetime.now(tz=datetime.timezone.utc)
        print(f"Currently running tests ({len(running)}):")
        for i, run in enumerate(running, 1):
            print(f"  {i}. Branch: {run.branch}, Commit: {run.commit[:8]}")
            elapsed = ""
            if run.start_time is not None:
                elapsed = f", Running: {int((now - run.start_time).total_seconds())}s"
            print(f"     LogFile: {run.log_file}{elapsed}")

    def finalize(self) -> list[RunningRun]:
        """Report in-flight runs that never produced a result file.

        Returns:
            The vanished runs, also stored in ``stats.vanished_runs``.
        """
        vanished = list(self._pending.values())
        self.stats.vanished_runs = vanished
        for run in vanished:
            print(
                f"Warning: run {run.branch}@{run.commit[:8]} was in flight "
                f"but left no result file",
                file=sys.stderr,
            )
        return vanished

    async def run(self, stop: asyncio.Event) -> HarnessStats:
        """Tick every ``interval`` seconds until ``stop`` is set.

        File access runs in the default executor so the event loop stays
        free for the simulator and the daemon watcher.
        """
        loop = asyncio.get_running_loop()
        while not stop.is_set():
            await loop.run_in_executor(None, self.tick)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
        await loop.run_in_executor(None, self.tick)
        self.finalize()
        return self.stats

"""End-to-end harness orchestration for one suite.

A run goes through these phases:

1. Prepare ``<work_dir>/<suite>/``: synthesise the repository under
   ``repo/``, create the worker data directory ``data/`` and write
   ``config-<suite>.yaml``.
2. Start the daemon and run three tasks side by side: the observer, the
   activity simulator and a watcher that notices the daemon exiting on
   its own.
3. After the activity phase, wait the suite's settle time so in-flight
   runs can finish, then stop the daemon (SIGTERM, grace, SIGKILL).
4. Save a summary of the results into the data directory, print the
   statistics and the analysis, and compute the harness verdict.

SIGINT and SIGTERM cut every wait short; the daemon is still stopped and
the collected results are still saved and analysed.
"""

from __future__ import annotations

import asyncio
import datetime
import json
import shutil
import signal
import sys
from pathlib import Path
from typing import Any

from harness.analysis.grading import (
    ValidationSummary,
    find_cleaned_timeout,
    grade_results,
    make_message_lookup,
)
from harness.analysis.timeline import Verdict, analyze_concurrency
from harness.execution.config import DaemonConfig, render_daemon_config
from harness.execution.daemon import DEFAULT_DAEMON, DaemonProcess
from harness.execution.git_repo import TestRepository
from harness.execution.simulator import DEFAULT_COMMIT_INTERVAL, ActivitySimulator
from harness.execution.suites import SUITES, Suite, resolve_duration
from harness.monitoring.observer import RunObserver
from harness.monitoring.results import (
    RunResult,
    daemon_data_dir,
    load_run_products,
    load_run_results,
    sanitize_branch,
)
from harness.reporting.reporter import AnalysisReporter
from harness.scenarios.table import ScenarioTable, load_scenarios

DEFAULT_WORK_DIR = Path("/tmp/home-ci/e2e")
TIMEOUT_SUITE = "timeout"
REPORT_FILE_NAME = "analysis-report.json"
DAEMON_LOG_NAME = "daemon.log"

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


async def wait_or_stop(stop: asyncio.Event, seconds: float) -> bool:
    """Sleep ``seconds`` unless ``stop`` is set first.

    Returns:
        True if ``stop`` is set.
    """
    if seconds > 0 and not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
    return stop.is_set()


def suite_dir(work_dir: Path, suite: Suite) -> Path:
    return Path(work_dir) / suite.name


def write_suite_config(work_dir: Path, suite: Suite) -> Path:
    """Write ``config-<suite>.yaml`` for ``suite`` and return its path."""
    base = suite_dir(work_dir, suite)
    config = render_daemon_config(suite, base / "repo")
    return config.save(base / suite.config_file_name)


def init_environment(work_dir: Path, suite: Suite) -> int:
    """Prepare configs for every suite and the repository for ``suite``.

    The daemon is not started.

    Returns:
        Process exit code.
    """
    work_dir = Path(work_dir)
    print(f"Initializing test environment in {work_dir}")
    for other in SUITES.values():
        path = write_suite_config(work_dir, other)
        print(f"  Wrote {path}")
    harness = E2EHarness(suite, work_dir, duration=0.0)
    try:
        harness.prepare()
    except (OSError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    harness.repo.describe()
    print(f"Environment ready. Run the daemon with: "
          f"{DEFAULT_DAEMON} -c {harness.config_path}")
    return EXIT_PASSED


class E2EHarness:
    """Drives one suite end to end against a daemon executable.

    Args:
        suite: Run profile.
        work_dir: Parent of the per-suite directory.
        duration: Requested activity duration in seconds; the suite's
            duration policy decides the effective value.
        daemon: Daemon executable.
        verbosity: Daemon ``-v`` level.
        keep_artifacts: Keep the synthesised repository after the run.
        table: Scenario table for grading; the packaged default if None.
        poll_interval: Observer tick interval in seconds.
        commit_interval: Seconds between periodic commits.
    """

    def __init__(
        self,
        suite: Suite,
        work_dir: Path = DEFAULT_WORK_DIR,
        duration: float = 180.0,
        daemon: str = DEFAULT_DAEMON,
        verbosity: int = 2,
        keep_artifacts: bool = False,
        table: ScenarioTable | None = None,
        poll_interval: float = 1.0,
        commit_interval: float = DEFAULT_COMMIT_INTERVAL,
        display_every: int = 15,
    ) -> None:
        self.suite = suite
        self.base_dir = suite_dir(work_dir, suite)
        self.repo_dir = self.base_dir / "repo"
        self.data_dir = self.base_dir / "data"
        self.config_path = self.base_dir / suite.config_file_name
        self.results_dir = daemon_data_dir(self.repo_dir)
        self.duration = resolve_duration(suite, duration)
        self.keep_artifacts = keep_artifacts
        self.table = table
        self.repo = TestRepository(self.repo_dir)
        self.config: DaemonConfig | None = None
        self.daemon = DaemonProcess(
            self.config_path,
            self.data_dir,
            executable=daemon,
            verbosity=verbosity,
            log_path=self.base_dir / DAEMON_LOG_NAME,
        )
        self.observer = RunObserver(
            self.results_dir, interval=poll_interval, display_every=display_every
        )
        self.simulator = ActivitySimulator(
            self.repo, suite, self.duration, commit_interval=commit_interval
        )
        self.interrupted = False
        self.daemon_exit_code: int | None = None
        self.started_at: datetime.datetime | None = None
        self.finished_at: datetime.datetime | None = None
        self._stopping = False

    def prepare(self) -> DaemonConfig:
        """Create a fresh suite directory, repository and config file.

        Raises:
            RuntimeError: If a git command fails.
        """
        if self.base_dir.exists():
            shutil.rmtree(self.base_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        print(f"Setting up test repository for '{self.suite.name}' "
              f"in {self.repo_dir}")
        self.repo.setup(self.suite)
        config = render_daemon_config(self.suite, self.repo_dir)
        config.save(self.config_path)
        self.config = config
        print(f"Wrote daemon configuration {self.config_path}")
        print(f"  Worker: {config.test_script} {config.options}".rstrip())
        print(f"  Limits: {config.max_concurrent_runs} concurrent runs, "
              f"check every {config.check_interval:.0f}s, "
              f"timeout {config.test_timeout:.0f}s")
        print(f"  Cleanup after e2e: "
              f"{'on' if config.cleanup_after_e2e else 'off'}")
        return self.config

    def run(self) -> int:
        """Prepare, execute and analyse the suite.

        Returns:
            0 if the harness verdict passed, 1 if it failed, 130 if the
            run was interrupted.
        """
        try:
            self.prepare()
        except (OSError, RuntimeError) as e:
            print(f"Error: failed to prepare test environment: {e}",
                  file=sys.stderr)
            return EXIT_FAILED
        try:
            code = asyncio.run(self.run_async())
        finally:
            if not self.keep_artifacts:
                self.cleanup()
        return code

    async def run_async(self) -> int:
        """Execute the suite against the daemon and analyse the results."""
        loop = asyncio.get_running_loop()
        shutdown = asyncio.Event()
        installed = self._install_signal_handlers(loop, shutdown)

        print(f"Starting E2E test '{self.suite.name}': {self.suite.description}")
        print(f"  Duration: {self.duration:.0f}s, settle: "
              f"{self.suite.settle_seconds:.0f}s")
        self.started_at = datetime.datetime.now(tz=datetime.timezone.utc)
        try:
            self.daemon.start()
        except RuntimeError as e:
            print(f"Error: {e}", file=sys.stderr)
            self._remove_signal_handlers(loop, installed)
            return EXIT_FAILED

        observer_stop = asyncio.Event()
        observer_task = asyncio.create_task(self.observer.run(observer_stop))
        watcher_task = asyncio.create_task(self._watch_daemon(shutdown))
        try:
            await self._activity_phase(shutdown)
            if not shutdown.is_set():
                print(f"Waiting {self.suite.settle_seconds:.0f}s for in-flight "
                      f"runs to finish...")
                await wait_or_stop(shutdown, self.suite.settle_seconds)
        finally:
            self._stopping = True
            print(f"Stopping {self.daemon.executable}...")
            await loop.run_in_executor(None, self.daemon.stop)
            await watcher_task
            observer_stop.set()
            await observer_task
            self._remove_signal_handlers(loop, installed)
            self.finished_at = datetime.datetime.now(tz=datetime.timezone.utc)

        results = load_run_results(self.results_dir)
        self.save_summary(results)
        passed = self.analyze(results)
        if self.interrupted:
            print("Test interrupted")
            return EXIT_INTERRUPTED
        return EXIT_PASSED if passed else EXIT_FAILED

    async def _activity_phase(self, shutdown: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.duration
        await self.simulator.run(shutdown)
        await wait_or_stop(shutdown, deadline - loop.time())

    async def _watch_daemon(self, shutdown: asyncio.Event) -> None:
        code = await self.daemon.wait_async()
        self.daemon_exit_code = code
        if not self._stopping:
            print(f"Error: {self.daemon.executable} exited unexpectedly "
                  f"with code {code}", file=sys.stderr)
            shutdown.set()

    def _install_signal_handlers(
        self, loop: asyncio.AbstractEventLoop, shutdown: asyncio.Event
    ) -> list[signal.Signals]:
        def on_signal(signum: signal.Signals) -> None:
            if not self.interrupted:
                print(f"Received {signum.name}, shutting down...")
            self.interrupted = True
            shutdown.set()

        installed = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, on_signal, signum)
            except (NotImplementedError, RuntimeError):
                continue
            installed.append(signum)
        return installed

    @staticmethod
    def _remove_signal_handlers(
        loop: asyncio.AbstractEventLoop, installed: list[signal.Signals]
    ) -> None:
        for signum in installed:
            loop.remove_signal_handler(signum)

    def statistics(self) -> dict[str, Any]:
        stats = self.observer.stats
        return {
            "commits_created": self.repo.commits_created,
            "branches_created": self.repo.branches_created,
            "running_tests": len(stats.running_tests),
            "total_tests_detected": stats.total_distinct_completed,
            "timeout_detected": stats.timeout_detected,
            "vanished_runs": len(stats.vanished_runs),
            "daemon_exit_code": self.daemon_exit_code,
        }

    def summary_path(self, results: list[RunResult]) -> Path:
        """Summary file name: keyed by the timed-out run for the timeout suite."""
        if self.suite.name == TIMEOUT_SUITE:
            timed_out = find_cleaned_timeout(results) or next(
                (r for r in results if r.timed_out), None
            )
            if timed_out is not None:
                name = (f"{sanitize_branch(timed_out.branch)}-"
                        f"{timed_out.short_commit}_timeout-test-summary.json")
                return self.data_dir / name
        return self.data_dir / f"{self.suite.name}_harness-summary.json"

    def save_summary(self, results: list[RunResult]) -> Path | None:
        """Preserve the run outcome in the data directory.

        The synthesised repository, and with it the daemon's result files,
        may be removed after the run; the summary keeps a copy.
        """
        path = self.summary_path(results)
        summary = {
            "suite": self.suite.name,
            "start_time": self.started_at.isoformat() if self.started_at else None,
            "end_time": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration,
            "interrupted": self.interrupted,
            "statistics": self.statistics(),
            "results": [r.to_dict() for r in results],
        }
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(summary, f, indent=2)
                f.write("\n")
        except OSError as e:
            print(f"Warning: could not save summary {path}: {e}",
                  file=sys.stderr)
            return None
        print(f"Saved run summary to {path}")
        return path

    def analyze(self, results: list[RunResult]) -> bool:
        """Print the analysis and return the harness verdict."""
        table = self.table or load_scenarios()
        config = self.config or render_daemon_config(self.suite, self.repo_dir)
        limit = config.max_concurrent_runs
        concurrency = analyze_concurrency(results, limit)
        lookup = make_message_lookup(
            self.repo.commit_message, load_run_products(self.data_dir)
        )
        validation = grade_results(results, table, lookup)

        reporter = AnalysisReporter()
        reporter.set_suite(self.suite.name)
        reporter.set_statistics(self.statistics())
        reporter.set_concurrency(concurrency)
        reporter.set_validation(validation)
        reporter.print_all()
        reporter.write_report(self.base_dir / REPORT_FILE_NAME)

        passed = self.verdict(results, validation)
        if concurrency.verdict is Verdict.FAIL:
            passed = False
        if passed:
            print(f"[PASS] E2E test '{self.suite.name}' passed")
        else:
            print(f"[FAIL] E2E test '{self.suite.name}' failed")
        return passed

    def verdict(
        self, results: list[RunResult], validation: ValidationSummary
    ) -> bool:
        """Results were detected and every run matched its expectation.

        The timeout suite also requires an observed timeout, and one whose
        cleanup ran when the daemon is configured to clean up after e2e runs.
        """
        stats = self.observer.stats
        if stats.total_distinct_completed == 0 or validation.total == 0:
            print("No test results were detected")
            return False
        if validation.mismatches:
            return False
        if self.suite.name == TIMEOUT_SUITE:
            if not stats.timeout_detected:
                print("Timeout suite: no timed-out run was observed")
                return False
            config = self.config or render_daemon_config(self.suite, self.repo_dir)
            if config.cleanup_after_e2e and find_cleaned_timeout(results) is None:
                print("Timeout suite: no timed-out run had its cleanup executed")
                return False
        return True

    def cleanup(self) -> None:
        """Remove the synthesised repository, keeping the data directory."""
        if self.repo_dir.exists():
            shutil.rmtree(self.repo_dir, ignore_errors=True)
            print(f"Removed test repository {self.repo_dir}")

"""Development activity simulated while the daemon runs.

Commits are created through ``TestRepository`` in the default executor so
the observer keeps ticking. Every wait is cut short by the shutdown
event, and a failed commit is reported and skipped rather than ending the
simulation.
"""

from __future__ import annotations

import asyncio
import sys

from harness.execution.git_repo import TestRepository
from harness.execution.suites import (
    ACTIVITY_CONCURRENT,
    ACTIVITY_CONTINUOUS,
    ACTIVITY_NONE,
    ACTIVITY_PERIODIC,
    Suite,
)

DEFAULT_COMMIT_INTERVAL = 45.0

PERIODIC_BRANCHES = [
    "main",
    "feature/new-feature",
    "bugfix/critical-fix",
    "feature/enhancement",
]

# Four long runs hold the slots while a timeout and a failure queue up
CONCURRENT_PLAN = [
    ("concurrent/test1", "CONCURRENT_TEST: Test 1 - Should run in first batch"),
    ("concurrent/test2", "CONCURRENT_TEST: Test 2 - Should run in first batch"),
    ("concurrent/test3", "CONCURRENT_TEST: Test 3 - Should run in second batch"),
    ("concurrent/test4", "CONCURRENT_TEST: Test 4 - Should run in second batch"),
    ("concurrent/timeout-test", "TIMEOUT_TEST: This test should time out"),
    ("concurrent/fail-test", "FAIL_TEST: This test should fail deliberately"),
]
CONCURRENT_DELAY = 0.5

CONTINUOUS_INITIAL = [
    ("main", "INIT: Main branch setup (success)"),
    ("feature/existing", "INIT: Existing feature work (success)"),
    ("bugfix/slow", "INIT: Slow running bugfix (failure)"),
]
CONTINUOUS_INITIAL_DELAY = 0.2

# (seconds to wait before the commit, branch, message)
CONTINUOUS_PLAN = [
    (8.0, "main", "ADD: New main feature (success)"),
    (12.0, "feature/new-api", "NEW: API development start (success)"),
    (6.0, "bugfix/slow", "FIX: Performance improvement (failure)"),
    (15.0, "hotfix/urgent", "NEW: Critical security fix (success)"),
    (10.0, "feature/existing", "UPDATE: Feature enhancement (success)"),
    (7.0, "main", "MERGE: Integrate hotfix (success)"),
]


class ActivitySimulator:
    """Generates commits according to the suite's activity plan."""

    def __init__(
        self,
        repo: TestRepository,
        suite: Suite,
        duration: float,
        commit_interval: float = DEFAULT_COMMIT_INTERVAL,
        time_scale: float = 1.0,
    ) -> None:
        self.repo = repo
        self.suite = suite
        self.duration = duration
        self.commit_interval = commit_interval
        # Multiplies every fixed delay of the burst and continuous plans
        self.time_scale = time_scale
        self.commits: list[tuple[str, str]] = []
        self._deadline = 0.0

    async def run(self, stop: asyncio.Event) -> int:
        """Run the activity plan until done, the duration ends or ``stop``.

        Returns:
            Number of commits created.
        """
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.duration
        activity = self.suite.activity
        if activity == ACTIVITY_NONE:
            kind = "Single commit" if self.suite.is_single_commit else "Fixed layout"
            print(f"{kind} test ({self.suite.name}) - "
                  f"no additional activity needed")
        elif activity == ACTIVITY_PERIODIC:
            await self._periodic(stop)
        elif activity == ACTIVITY_CONCURRENT:
            await self._concurrent(stop)
        elif activity == ACTIVITY_CONTINUOUS:
            await self._continuous(stop)
        else:
            raise ValueError(f"Unknown activity plan: {activity}")
        return len(self.commits)

    async def _wait(self, stop: asyncio.Event, seconds: float) -> bool:
        """Sleep up to ``seconds`` but not past the deadline.

        Returns:
            True if the plan should continue, False on stop or deadline.
        """
        loop = asyncio.get_running_loop()
        remaining = self._deadline - loop.time()
        timeout = min(seconds, remaining)
        if timeout > 0:
            try:
                await asyncio.wait_for(stop.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
        if stop.is_set():
            return False
        return seconds <= remaining

    async def _commit(self, branch: str, message: str | None = None) -> str | None:
        loop = asyncio.get_running_loop()
        try:
            commit = await loop.run_in_executor(
                None, self.repo.commit, branch, message
            )
        except RuntimeError as e:
            print(f"Error: failed to create commit on {branch}: {e}",
                  file=sys.stderr)
            return None
        self.commits.append((branch, commit))
        return commit

    async def _periodic(self, stop: asyncio.Event) -> None:
        print(f"Starting activity simulation for {self.duration:.0f}s, "
              f"one commit every {self.commit_interval:.0f}s")
        index = 0
        while await self._wait(stop, self.commit_interval):
            branch = PERIODIC_BRANCHES[index % len(PERIODIC_BRANCHES)]
            await self._commit(branch)
            index += 1
        print("Activity simulation completed")

    async def _concurrent(self, stop: asyncio.Event) -> None:
        print(f"Starting concurrent limit test - creating "
              f"{len(CONCURRENT_PLAN)} commits on {len(CONCURRENT_PLAN)} branches")
        for branch, message in CONCURRENT_PLAN:
            if stop.is_set():
                return
            await self._commit(branch, message)
            if not await self._wait(stop, CONCURRENT_DELAY * self.time_scale):
                return
        print("All concurrent test commits created")

    async def _continuous(self, stop: asyncio.Event) -> None:
        print("Starting continuous CI test - simulating active development")
        for branch, message in CONTINUOUS_INITIAL:
            if stop.is_set():
                return
            await self._commit(branch, message)
            if not await self._wait(stop, CONTINUOUS_INITIAL_DELAY * self.time_scale):
                return
        for delay, branch, message in CONTINUOUS_PLAN:
            if not await self._wait(stop, delay * self.time_scale):
                print("Continuous CI simulation stopped before the plan finished")
                return
            await self._commit(branch, message)
        print(f"Continuous development simulation completed - "
              f"{len(self.commits)} commits created")

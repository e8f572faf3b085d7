#!/usr/bin/env python3
"""Scripted e2e worker run by the daemon for each (branch, commit).

Picks an outcome from the commit message and the branch name, records a
product JSON in the data directory and then acts it out: a short
successful run, a short failing run, or a run that sleeps well past the
daemon's ``test_timeout``.

This file is copied into the synthesised repository and executed by
whatever ``python3`` the daemon finds, so it only uses the standard
library.
"""

from __future__ import annotations

import argparse
import datetime
import fnmatch
import json
import os
import subprocess
import sys
import time
from pathlib import Path

DATA_DIR_ENV = "HOME_CI_DATA_DIR"
DEFAULT_DATA_DIR = "/tmp/home-ci/e2e/data"
STOP_SENTINEL = "/tmp/stop_e2e_test"

SUCCESS = "success"
FAILURE = "failure"
TIMEOUT = "timeout"

TIMEOUT_STEPS = 60
CONCURRENT_TEST_SECONDS = 15

# Exact branches first, then globs; first match wins
BRANCH_LADDER = [
    ("main", SUCCESS),
    ("feature/test1", SUCCESS),
    ("feature/test2", FAILURE),
    ("bugfix/critical", TIMEOUT),
    ("feature/*", SUCCESS),
    ("bugfix/*", FAILURE),
]


def determine_behavior(
    branch: str, message: str | None, timeout_mode: bool = False
) -> tuple[str, bool]:
    """Return (outcome, long_run) for a commit.

    ``long_run`` is set for ``CONCURRENT_TEST`` commits, which succeed
    after holding a concurrency slot for a while.
    """
    message = message or ""
    if timeout_mode:
        if "SUCCESS" in message:
            return SUCCESS, False
        if "FAIL" in message:
            return FAILURE, False
        return TIMEOUT, False

    if "FAIL" in message:
        return FAILURE, False
    if "TIMEOUT" in message:
        return TIMEOUT, False
    if "SUCCESS" in message:
        return SUCCESS, False
    if "CONCURRENT_TEST" in message:
        return SUCCESS, True

    for pattern, outcome in BRANCH_LADDER:
        if fnmatch.fnmatchcase(branch, pattern):
            return outcome, False
    return SUCCESS, False


def _git(*args: str) -> str | None:
    try:
        proc = subprocess.run(
            ["git", *args], capture_output=True, text=True, check=False
        )
    except OSError:
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout.strip()


def resolve_git_info() -> tuple[str, str, str]:
    """(branch, commit8, message) of the working copy, with fallbacks."""
    branch = _git("branch", "--show-current") or "detached"
    commit = (_git("rev-parse", "HEAD") or "unknown")[:8]
    message = _git("log", "-1", "--pretty=format:%s") or "unknown"
    return branch, commit, message


def run_id(branch: str, commit: str) -> str:
    return f"{branch.replace('/', '-')}-{commit}"


def write_product(
    data_dir: Path, branch: str, commit: str, message: str, behavior: str
) -> Path:
    """Write the per-run product JSON and return its path."""
    path = Path(data_dir) / f"{run_id(branch, commit)}_run-product.json"
    product = {
        "working_dir": os.getcwd(),
        "test_type": "e2e",
        "branch": branch,
        "commit": commit,
        "commit_message": message,
        "expected_behavior": behavior,
        "timestamp": datetime.datetime.now().astimezone().isoformat(timespec="seconds"),
    }
    with open(path, "w") as f:
        json.dump(product, f, indent=2)
        f.write("\n")
    return path


def write_marker(
    data_dir: Path, branch: str, commit: str, suffix: str, text: str
) -> Path:
    path = Path(data_dir) / f"{run_id(branch, commit)}_{suffix}.txt"
    path.write_text(text + "\n")
    return path


def act_out(
    behavior: str,
    long_run: bool,
    data_dir: Path,
    branch: str,
    commit: str,
    stop_file: str | Path = STOP_SENTINEL,
) -> int:
    """Perform the chosen behavior and return the exit code."""
    if behavior == SUCCESS:
        print("Environment setup...")
        time.sleep(1)
        print("Running tests...")
        time.sleep(CONCURRENT_TEST_SECONDS - 2 if long_run else 2)
        print("Performance validation...")
        time.sleep(1)
        print("All tests passed")
        write_marker(data_dir, branch, commit, "SUCCESS",
                     "Test completed successfully")
        return 0

    if behavior == FAILURE:
        print("Environment setup...")
        time.sleep(1)
        print("Running tests...")
        time.sleep(2)
        print("Test suite failed: Mock error for testing", file=sys.stderr)
        print("Error details: Simulated failure based on branch/commit pattern",
              file=sys.stderr)
        write_marker(data_dir, branch, commit, "FAILURE",
                     "Test failed as expected")
        return 1

    print("Environment setup...")
    time.sleep(1)
    print("Running tests...")
    print("Long-running operation starting...")
    write_marker(data_dir, branch, commit, "TIMEOUT", "Test will timeout")
    stop = Path(stop_file)
    for i in range(1, TIMEOUT_STEPS + 1):
        if i % 10 == 0:
            print(f"Step {i}/{TIMEOUT_STEPS}... (this should timeout)", flush=True)
        time.sleep(1)
        if stop.exists():
            print("Early termination requested")
            stop.unlink(missing_ok=True)
            return 0
    print("Test completed (should not reach here if timeout works)")
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="home-ci e2e worker")
    parser.add_argument(
        "--timeout-test",
        action="store_true",
        help="Force a timeout unless the commit message says SUCCESS or FAIL",
    )
    args, _unknown = parser.parse_known_args(argv)
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    data_dir = Path(os.environ.get(DATA_DIR_ENV) or DEFAULT_DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)

    branch, commit, message = resolve_git_info()
    print("=== E2E Test Suite ===")
    print(f"Branch: {branch} | Commit: {commit}")
    print(f"Message: {message}")
    if args.timeout_test:
        print("Mode: Timeout Test")

    behavior, long_run = determine_behavior(branch, message, args.timeout_test)
    print(f"Expected behavior: {behavior}")
    product = write_product(data_dir, branch, commit, message, behavior)
    print(f"Test result: {product}", flush=True)

    return act_out(behavior, long_run, data_dir, branch, commit)


if __name__ == "__main__":
    sys.exit(main())

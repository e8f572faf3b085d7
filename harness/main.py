"""Entry point for the home-ci end-to-end harness.

Synthesises a test repository for the selected suite, runs the home-ci
daemon against it while simulating development activity, and grades the
runs the daemon reports.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from harness.execution.daemon import DEFAULT_DAEMON
from harness.execution.harness import DEFAULT_WORK_DIR, E2EHarness, init_environment
from harness.execution.simulator import DEFAULT_COMMIT_INTERVAL
from harness.execution.suites import (
    DEFAULT_DURATION,
    SUITES,
    get_suite,
    parse_duration,
)
from harness.scenarios.table import load_scenarios


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    suites = "\n".join(
        f"  {name:<18} {suite.description}" for name, suite in SUITES.items()
    )
    parser = argparse.ArgumentParser(
        description="End-to-end test harness for the home-ci daemon",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"test types:\n{suites}",
    )
    parser.add_argument(
        "-t", "--type",
        default="normal",
        choices=list(SUITES),
        metavar="TYPE",
        help="Test type to run (default: normal)",
    )
    parser.add_argument(
        "-d", "--duration",
        default=DEFAULT_DURATION,
        help="Activity duration, e.g. 30s, 3m, 1h "
             f"(default: {DEFAULT_DURATION}; some test types fix or cap it)",
    )
    parser.add_argument(
        "--no-cleanup",
        action="store_true",
        default=False,
        help="Keep the synthesised repository after the run",
    )
    parser.add_argument(
        "-i", "--init",
        action="store_true",
        default=False,
        help="Only prepare configs and the test repository, do not run",
    )
    parser.add_argument(
        "--work-dir",
        type=Path,
        default=DEFAULT_WORK_DIR,
        help=f"Directory for per-suite repositories and data "
             f"(default: {DEFAULT_WORK_DIR})",
    )
    parser.add_argument(
        "--daemon",
        default=DEFAULT_DAEMON,
        help=f"Daemon executable (default: {DEFAULT_DAEMON})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Verbose daemon logging and more frequent progress output",
    )
    parser.add_argument(
        "--expectations",
        type=Path,
        default=None,
        help="Expectations YAML used for grading (default: bundled file)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=1.0,
        help="Seconds between data directory polls (default: 1.0)",
    )
    parser.add_argument(
        "--commit-interval",
        type=float,
        default=DEFAULT_COMMIT_INTERVAL,
        help="Seconds between simulated commits for periodic test types "
             f"(default: {DEFAULT_COMMIT_INTERVAL:.0f})",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        suite = get_suite(args.type)
        duration = parse_duration(args.duration)
        table = load_scenarios(args.expectations)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.init:
        return init_environment(args.work_dir, suite)

    harness = E2EHarness(
        suite,
        work_dir=args.work_dir,
        duration=duration,
        daemon=args.daemon,
        verbosity=3 if args.verbose else 2,
        keep_artifacts=args.no_cleanup,
        table=table,
        poll_interval=args.poll_interval,
        commit_interval=args.commit_interval,
        display_every=5 if args.verbose else 15,
    )
    return harness.run()


if __name__ == "__main__":
    sys.exit(main())

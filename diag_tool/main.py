"""Diagnostics entry point for a repository the home-ci daemon has run on.

Provides analyze, check-concurrency, and branches subcommands. Each one
starts from a daemon configuration file, which names the repository and
the concurrency limit; the daemon's results are read from the
repository's ``.home-ci`` directory.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from harness.analysis.grading import (
    EXIT_CONCURRENCY_FAIL,
    EXIT_OK,
    compute_exit_code,
    grade_results,
    make_message_lookup,
)
from harness.analysis.timeline import Verdict, analyze_concurrency
from harness.execution.config import DaemonConfig
from harness.execution.git_repo import TestRepository
from harness.monitoring.results import (
    STATE_FILE_NAME,
    RunResult,
    daemon_data_dir,
    load_run_products,
    load_run_results,
)
from harness.reporting.reporter import AnalysisReporter
from harness.scenarios.outcome import Outcome
from harness.scenarios.table import load_scenarios

_STATUS_LABELS = {
    Outcome.SUCCESS: "PASSED",
    Outcome.FAILURE: "FAILED",
    Outcome.TIMEOUT: "TIMEOUT",
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Diagnostics for a repository tested by the home-ci daemon"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # analyze subcommand
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Check concurrency and grade every run against expectations",
    )
    analyze_parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to the daemon configuration file",
    )
    analyze_parser.add_argument(
        "--expectations",
        type=Path,
        default=None,
        help="Expectations YAML (default: bundled file)",
    )
    analyze_parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Worker data directory holding run products "
             "(default: 'data' next to the repository)",
    )
    analyze_parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the analysis report to this file (.json, .yaml or .yml)",
    )

    # check-concurrency subcommand
    concurrency_parser = subparsers.add_parser(
        "check-concurrency",
        help="Check that max_concurrent_runs was respected",
    )
    concurrency_parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to the daemon configuration file",
    )

    # branches subcommand
    branches_parser = subparsers.add_parser(
        "branches",
        help="Show each branch with its test results and the live state",
    )
    branches_parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to the daemon configuration file",
    )
    return parser.parse_args(argv)


def _load_config(path: Path) -> DaemonConfig | None:
    """Load a config naming an existing repository; None after an error."""
    try:
        config = DaemonConfig.load(path)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None
    if not config.repo_path.is_dir():
        print(f"Error: repository path does not exist: {config.repo_path}",
              file=sys.stderr)
        return None
    return config


def cmd_analyze(args: argparse.Namespace) -> int:
    """Handle analyze subcommand.

    Exit code 0 when the concurrency limit held and every run matched its
    expectation, 1 on a concurrency violation, 2 otherwise (no data or
    outcome mismatches).
    """
    config = _load_config(args.config)
    if config is None:
        return 1
    try:
        table = load_scenarios(args.expectations)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    repo_path = config.repo_path
    data_dir = args.data_dir or repo_path.parent / "data"
    results = load_run_results(daemon_data_dir(repo_path))
    print(f"Analysing {len(results)} run results in {daemon_data_dir(repo_path)}")

    repo = TestRepository(repo_path)
    lookup = make_message_lookup(
        repo.commit_message,
        load_run_products(data_dir),
    )
    concurrency = analyze_concurrency(results, config.max_concurrent_runs)
    validation = grade_results(results, table, lookup)

    reporter = AnalysisReporter()
    reporter.set_concurrency(concurrency)
    reporter.set_validation(validation)
    reporter.print_timeline()
    reporter.print_concurrency()
    reporter.print_validation()

    if args.output:
        try:
            reporter.write(args.output)
        except OSError as e:
            print(f"Error: cannot write report {args.output}: {e}",
                  file=sys.stderr)
            return 1
        print(f"Report written to {args.output}")

    return compute_exit_code(concurrency, validation)


def cmd_check_concurrency(args: argparse.Namespace) -> int:
    """Handle check-concurrency subcommand.

    Prints the execution timeline and the verdict; exits 1 only when the
    limit was exceeded.
    """
    config = _load_config(args.config)
    if config is None:
        return 1

    limit = config.max_concurrent_runs
    print(f"Checking concurrency compliance (max_concurrent_runs = {limit})")
    results = load_run_results(daemon_data_dir(config.repo_path))
    report = analyze_concurrency(results, limit)

    reporter = AnalysisReporter()
    reporter.set_concurrency(report)
    reporter.print_timeline()
    reporter.print_concurrency()

    if report.verdict is Verdict.FAIL:
        print(f"Found {report.peak} concurrent runs, which exceeds the "
              f"limit of {limit}")
        return EXIT_CONCURRENCY_FAIL
    return EXIT_OK


def _print_branch_results(
    repo: TestRepository, branch: str, results: list[RunResult]
) -> None:
    print(f"\n{branch}")
    if not results:
        print("   No test results found for this branch")
        return
    for result in sorted(results, key=lambda r: r.start_time, reverse=True):
        message = repo.commit_message(result.commit)
        print(f"   - Commit: {result.commit}")
        if message:
            print(f"     Message: {message}")
        print(f"     Status: {_STATUS_LABELS[result.outcome]}")
        print(f"     Start:  {result.start_time:%Y-%m-%d %H:%M:%S}")
        print(f"     End:    {result.end_time:%Y-%m-%d %H:%M:%S}")
        print(f"     Duration: {round(result.duration)}s")
        if result.error_message:
            print(f"     Error: {result.error_message}")


def cmd_branches(args: argparse.Namespace) -> int:
    """Handle branches subcommand.

    Lists every local branch, plus branches known only from results, with
    their runs newest first, then dumps the daemon's live state.
    """
    config = _load_config(args.config)
    if config is None:
        return 1

    repo_path = config.repo_path
    if not (repo_path / ".git").exists():
        print(f"Error: not a git repository: {repo_path}", file=sys.stderr)
        return 1

    repo = TestRepository(repo_path)
    try:
        branches = repo.branches()
    except RuntimeError as e:
        print(f"Warning: cannot list branches: {e}", file=sys.stderr)
        branches = []

    results_dir = daemon_data_dir(repo_path)
    by_branch: dict[str, list[RunResult]] = {}
    for result in load_run_results(results_dir):
        by_branch.setdefault(result.branch, []).append(result)
    names = sorted(set(branches) | set(by_branch))

    print(f"Git branches with test results ({repo_path}):")
    for branch in names:
        _print_branch_results(repo, branch, by_branch.get(branch, []))

    print("\nHome-CI state:")
    state_path = results_dir / STATE_FILE_NAME
    try:
        print(state_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        print("No state.json found")
    except OSError as e:
        print(f"Error reading state.json: {e}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return 1

    if args.command == "analyze":
        return cmd_analyze(args)
    elif args.command == "check-concurrency":
        return cmd_check_concurrency(args)
    elif args.command == "branches":
        return cmd_branches(args)
    else:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""Live observation of the daemon's result and state files."""

from harness.monitoring.observer import HarnessStats, RunObserver
from harness.monitoring.results import RunResult, load_run_results, read_live_state

__all__ = [
    "HarnessStats",
    "RunObserver",
    "RunResult",
    "load_run_results",
    "read_live_state",
]

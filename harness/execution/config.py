"""Daemon configuration files written for each suite.

The harness renders a YAML configuration from ``DEFAULT_DAEMON_CONFIG``
plus the suite's overrides and the per-run paths, and reads it back
through ``DaemonConfig`` when analysing a finished run. Unlike the
expectations document, a configuration that cannot be read is fatal.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from harness.execution.suites import Suite, parse_duration

WORKER_DIR = "e2e"
WORKER_SCRIPT = f"./{WORKER_DIR}/run-e2e.py"
CLEANUP_SCRIPT = f"./{WORKER_DIR}/cleanup.py"

DEFAULT_DAEMON_CONFIG: dict[str, Any] = {
    "repo_path": "",
    "check_interval": "10s",
    "test_script": WORKER_SCRIPT,
    "max_concurrent_runs": 2,
    "options": "",
    "recent_commits_within": "240h",
    "test_timeout": "30s",
    "fetch_remote": False,
    "keep_time": "0s",
    "cleanup": {
        "after_e2e": True,
        "script": CLEANUP_SCRIPT,
    },
    "github_actions_dispatch": {
        "enabled": False,
        "github_repo": "",
        "github_token_file": "",
        "dispatch_type": "",
    },
}


class DaemonConfig:
    """Typed view over a daemon configuration mapping."""

    def __init__(
        self, data: dict[str, Any] | None = None, path: Path | None = None
    ) -> None:
        self.path = path
        self._data: dict[str, Any] = copy.deepcopy(DEFAULT_DAEMON_CONFIG)
        if data:
            for key, value in data.items():
                if isinstance(value, dict) and isinstance(self._data.get(key), dict):
                    self._data[key] = {**self._data[key], **value}
                else:
                    self._data[key] = value

    @classmethod
    def load(cls, path: Path) -> DaemonConfig:
        """Read a configuration file.

        Raises:
            ValueError: If the file is missing, is not YAML, is not a
                mapping, or lacks a valid repo_path or max_concurrent_runs.
        """
        try:
            text = Path(path).read_text()
        except OSError as e:
            raise ValueError(f"cannot read configuration file '{path}': {e}") from None
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(
                f"cannot parse configuration file '{path}': {e}"
            ) from None
        if not isinstance(data, dict):
            raise ValueError(f"configuration file '{path}' must be a mapping")
        config = cls(data, path=Path(path))
        # Validate the fields the harness relies on
        repo_path = config._data.get("repo_path")
        if not isinstance(repo_path, str) or not repo_path.strip():
            raise ValueError(
                f"configuration file '{path}' must set repo_path, got {repo_path!r}"
            )
        _ = config.max_concurrent_runs
        return config

    def save(self, path: Path | None = None) -> Path:
        """Write the configuration as YAML and return the path written."""
        target = path or self.path
        if target is None:
            raise ValueError("No config file path specified")
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w") as f:
            yaml.safe_dump(self._data, f, sort_keys=False)
        self.path = target
        return target

    @property
    def config(self) -> dict[str, Any]:
        """Get the full configuration dict."""
        return copy.deepcopy(self._data)

    @property
    def repo_path(self) -> Path:
        return Path(str(self._data.get("repo_path") or ""))

    @property
    def max_concurrent_runs(self) -> int:
        """Get the concurrency limit the daemon enforces."""
        value = self._data.get("max_concurrent_runs")
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(
                f"max_concurrent_runs must be a positive integer, got {value!r}"
            )
        return value

    @property
    def check_interval(self) -> float:
        return parse_duration(str(self._data.get("check_interval")))

    @property
    def test_timeout(self) -> float:
        return parse_duration(str(self._data.get("test_timeout")))

    @property
    def test_script(self) -> str:
        return str(self._data.get("test_script", WORKER_SCRIPT))

    @property
    def options(self) -> str:
        return str(self._data.get("options") or "")

    @property
    def cleanup_after_e2e(self) -> bool:
        return bool(self._data.get("cleanup", {}).get("after_e2e", False))


def render_daemon_config(suite: Suite, repo_path: Path) -> DaemonConfig:
    """Build the daemon configuration for ``suite`` against ``repo_path``."""
    data = dict(suite.daemon_overrides)
    data["repo_path"] = str(repo_path)
    return DaemonConfig(data)

"""Synthesis of the git repository the daemon watches.

The git binary is driven through ``subprocess``; any failing command
raises ``RuntimeError`` carrying the command line and its output.
"""

from __future__ import annotations

import os
import shutil
import stat
import subprocess
import time
from pathlib import Path

import e2e_worker
from harness.execution.config import WORKER_DIR
from harness.execution.suites import (
    LAYOUT_MULTI_BRANCH,
    LAYOUT_MULTI_TYPE,
    LAYOUT_SINGLE,
    Suite,
)

GIT_USER_NAME = "CI Test"
GIT_USER_EMAIL = "ci-test@example.com"
DEFAULT_BRANCH = "main"
GIT_PAGER = "cat"

INITIAL_FILES = {
    "README.md": "# Test Repository\n",
    ".gitignore": "node_modules/\n*.log\n.home-ci/\n",
    "app.py": "# Main application file\nprint('Hello from test app')\n",
}

# (source in e2e_worker, name inside the repository)
WORKER_FILES = [
    ("run_e2e.py", "run-e2e.py"),
    ("cleanup.py", "cleanup.py"),
]

# Branches of the multi-branch layout: (branch, file, content, commit messages)
MULTI_BRANCH_LAYOUT = [
    ("feature/test1", "feature1.txt", "Feature 1 content\n",
     ["Add feature 1", "Update feature 1"]),
    ("feature/test2", "feature2.txt", "Feature 2 content\n",
     ["Add feature 2"]),
    ("bugfix/critical", "bugfix.txt", "Bug fix content\n",
     ["Fix critical bug"]),
]
MAIN_UPDATES = ["Main update 1", "Main update 2"]


def git_available() -> bool:
    return shutil.which("git") is not None


class TestRepository:
    """A local git repository with a known topology of branches and commits.

    Counters ``commits_created`` and ``branches_created`` track activity
    after setup, i.e. commits made through ``commit``.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.commits_created = 0
        self.branches_created = 0
        self._env = {**os.environ, "GIT_PAGER": GIT_PAGER}

    def git(self, *args: str) -> str:
        """Run a git command in the repository and return its stdout.

        Raises:
            RuntimeError: If git is missing or the command fails.
        """
        cmd = ["git", *args]
        try:
            proc = subprocess.run(
                cmd,
                cwd=self.path,
                env=self._env,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            raise RuntimeError("git executable not found") from None
        if proc.returncode != 0:
            output = (proc.stdout + proc.stderr).strip()
            raise RuntimeError(
                f"git command failed: {' '.join(cmd)}\n{output}"
            )
        return proc.stdout

    def init(self) -> None:
        """Create an empty, configured repository at ``path``."""
        self.path.mkdir(parents=True, exist_ok=True)
        git_dir = self.path / ".git"
        if git_dir.exists():
            shutil.rmtree(git_dir)
        self.git("init")
        for key, value in [
            ("user.name", GIT_USER_NAME),
            ("user.email", GIT_USER_EMAIL),
            ("advice.detachedHead", "false"),
            ("init.defaultBranch", DEFAULT_BRANCH),
            ("commit.gpgsign", "false"),
            ("pager.branch", "false"),
            ("pager.log", "false"),
            ("core.pager", GIT_PAGER),
        ]:
            self.git("config", key, value)

    def write_file(self, name: str, content: str) -> Path:
        path = self.path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    def install_worker(self) -> list[Path]:
        """Copy the worker programs into ``e2e/`` as executables."""
        source_dir = Path(e2e_worker.__file__).parent
        installed = []
        for source_name, target_name in WORKER_FILES:
            target = self.path / WORKER_DIR / target_name
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source_dir / source_name, target)
            mode = target.stat().st_mode
            target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            installed.append(target)
        return installed

    def create_initial_commit(self) -> str:
        """Write the initial files and worker, commit them on ``main``."""
        for name, content in INITIAL_FILES.items():
            self.write_file(name, content)
        self.install_worker()
        self.git("add", ".")
        self.git("commit", "-m", "Initial commit")
        self.git("branch", "-M", DEFAULT_BRANCH)
        return self.head()

    def setup(self, suite: Suite) -> None:
        """Initialise the repository with the suite's layout."""
        self.init()
        self.create_initial_commit()
        if suite.layout == LAYOUT_SINGLE:
            self._setup_single(suite.single_commit_message)
        elif suite.layout == LAYOUT_MULTI_TYPE:
            self._setup_multi_type(suite.multi_type_prefix or "Multi-type")
        elif suite.layout == LAYOUT_MULTI_BRANCH:
            self._setup_multi_branch()
        else:
            raise ValueError(f"Unknown repository layout: {suite.layout}")

    def _commit_file(self, name: str, content: str, message: str) -> None:
        self.write_file(name, content)
        self.git("add", name)
        self.git("commit", "-m", message)

    def _setup_single(self, message: str) -> None:
        self._commit_file("test-commit.txt", f"{message}\n", message)

    def _setup_multi_type(self, prefix: str) -> None:
        lower = prefix.lower()
        cases = [
            (DEFAULT_BRANCH, f"SUCCESS: {prefix} test success case", "success"),
            ("feature/test-fail", f"FAIL: {prefix} test failure case", "fail"),
            ("bugfix/timeout", f"TIMEOUT: {prefix} test timeout case", "timeout"),
        ]
        for branch, message, kind in cases:
            if branch == DEFAULT_BRANCH:
                self.git("checkout", DEFAULT_BRANCH)
            else:
                self.git("checkout", "-b", branch)
            self._commit_file(
                f"{lower}-{kind}.txt",
                f"This should {kind} with {lower}\n",
                message,
            )
        self.git("checkout", DEFAULT_BRANCH)

    def _setup_multi_branch(self) -> None:
        for branch, name, content, messages in MULTI_BRANCH_LAYOUT:
            self.git("checkout", "-b", branch)
            for i, message in enumerate(messages):
                body = content + "Updated\n" * i
                self._commit_file(name, body, message)
        self.git("checkout", DEFAULT_BRANCH)
        lines = ""
        for message in MAIN_UPDATES:
            lines += f"{message}\n"
            self._commit_file("main-update.txt", lines, message)

    def branch_exists(self, branch: str) -> bool:
        try:
            self.git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}")
        except RuntimeError:
            return False
        return True

    def commit(self, branch: str, message: str | None = None) -> str:
        """Commit a new file on ``branch``, creating the branch if needed.

        Args:
            branch: Target branch.
            message: Commit message; generated from the file name if None.

        Returns:
            The new commit hash.
        """
        if self.branch_exists(branch):
            self.git("checkout", branch)
        else:
            self.git("checkout", "-b", branch)
            self.branches_created += 1
            print(f"Created new branch: {branch}")

        safe_branch = branch.replace("/", "_")
        name = f"file_{safe_branch}_{time.time_ns()}.txt"
        stamp = time.strftime("%Y-%m-%dT%H:%M:%S%z")
        if message is None:
            message = f"Add {name} on branch {branch}"
        self._commit_file(
            name,
            f"Content for {branch} at {stamp}\nCommit message: {message}\n",
            message,
        )
        self.commits_created += 1
        print(f"Created commit on {branch}: {message}")
        return self.head()

    def head(self, ref: str = "HEAD") -> str:
        return self.git("rev-parse", ref).strip()

    def commit_message(self, commit: str) -> str | None:
        """Subject line of ``commit``; None if git cannot resolve it."""
        try:
            return self.git("log", "--format=%s", "-n", "1", commit).strip()
        except RuntimeError:
            return None

    def branches(self) -> list[str]:
        output = self.git("for-each-ref", "--format=%(refname:short)", "refs/heads")
        return [line for line in output.splitlines() if line]

    def describe(self) -> None:
        """Print the branches and the most recent commits."""
        print("Available branches:")
        for branch in self.branches():
            print(f"  {branch}")
        print("Recent commits:")
        for line in self.git("log", "--oneline", "--all", "-5").splitlines():
            print(f"  {line}")

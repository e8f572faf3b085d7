"""The home-ci daemon as a child process of the harness."""

from __future__ import annotations

import asyncio
import os
import subprocess
import sys
from pathlib import Path

DEFAULT_DAEMON = "home-ci"
DATA_DIR_ENV = "HOME_CI_DATA_DIR"
DEFAULT_GRACE_SECONDS = 10.0


class DaemonProcess:
    """Starts, awaits and stops one daemon process.

    The daemon is launched as ``<executable> -c <config> -v <verbosity>``
    with ``HOME_CI_DATA_DIR`` pointing at the worker data directory.
    """

    def __init__(
        self,
        config_path: Path,
        data_dir: Path,
        executable: str = DEFAULT_DAEMON,
        verbosity: int = 2,
        log_path: Path | None = None,
    ) -> None:
        self.config_path = Path(config_path)
        self.data_dir = Path(data_dir)
        self.executable = executable
        self.verbosity = verbosity
        self.log_path = log_path
        self.proc: subprocess.Popen[bytes] | None = None
        self._log_file = None

    @property
    def command(self) -> list[str]:
        return [
            self.executable,
            "-c", str(self.config_path),
            "-v", str(self.verbosity),
        ]

    @property
    def running(self) -> bool:
        return self.proc is not None and self.proc.poll() is None

    @property
    def returncode(self) -> int | None:
        return None if self.proc is None else self.proc.returncode

    def start(self) -> None:
        """Launch the daemon.

        Raises:
            RuntimeError: If the executable cannot be started.
        """
        env = {**os.environ, DATA_DIR_ENV: str(self.data_dir)}
        stdout = None
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = open(self.log_path, "wb")
            stdout = self._log_file
        try:
            self.proc = subprocess.Popen(
                self.command,
                env=env,
                stdout=stdout,
                stderr=subprocess.STDOUT if stdout is not None else None,
            )
        except OSError as e:
            self._close_log()
            raise RuntimeError(
                f"failed to start daemon {self.executable}: {e}"
            ) from None
        print(f"Started {self.executable} (pid {self.proc.pid}) "
              f"with config {self.config_path}")

    async def wait_async(self) -> int:
        """Wait for the daemon to exit without blocking the event loop."""
        if self.proc is None:
            raise RuntimeError("daemon not started")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.proc.wait)

    def stop(self, grace: float = DEFAULT_GRACE_SECONDS) -> int | None:
        """Send SIGTERM, wait up to ``grace`` seconds, then SIGKILL.

        Returns:
            The exit code, or None if the daemon was never started.
        """
        if self.proc is None:
            return None
        if self.proc.poll() is None:
            self.proc.terminate()
            try:
                self.proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                print(f"Warning: {self.executable} did not stop within "
                      f"{grace:.0f}s, killing it", file=sys.stderr)
                self.proc.kill()
                self.proc.wait()
        self._close_log()
        return self.proc.returncode

    def _close_log(self) -> None:
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

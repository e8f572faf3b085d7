"""Unit tests for the polling observer."""

from __future__ import annotations

import asyncio
import json
import tempfile
from pathlib import Path

from harness.monitoring.observer import HarnessStats, RunObserver


def _write_result(directory: Path, name: str, **overrides) -> None:
    doc = {
        "branch": "main",
        "commit": "a1b2c3d4e5f6",
        "start_time": "2025-03-01T10:00:00Z",
        "end_time": "2025-03-01T10:00:05Z",
        "success": True,
        "timed_out": False,
    }
    doc.update(overrides)
    (directory / name).write_text(json.dumps(doc))


def _write_state(directory: Path, running: list[dict]) -> None:
    (directory / "state.json").write_text(json.dumps({"running_tests": running}))


class TestTick:
    """Tests for a single reconciliation pass."""

    def test_counts_distinct_files_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            _write_result(d, "20250301-100000_main_a1b2c3d4.json")
            observer = RunObserver(d, display_every=0)
            observer.tick()
            observer.tick()
            assert observer.stats.total_distinct_completed == 1

            _write_result(d, "20250301-100100_main_ffffffff.json",
                          commit="ffffffff00")
            observer.tick()
            assert observer.stats.total_distinct_completed == 2

    def test_count_excludes_state_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            _write_state(d, [])
            _write_result(d, "20250301-100000_main_a1b2c3d4.json")
            observer = RunObserver(d, display_every=0)
            observer.tick()
            assert observer.stats.total_distinct_completed == 1
            assert observer.stats.state_file_read

    def test_timeout_detected(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            observer = RunObserver(d, display_every=0)
            observer.tick()
            assert not observer.stats.timeout_detected

            _write_result(d, "20250301-100000_bugfix-x_a1b2c3d4.json",
                          branch="bugfix/x", success=False, timed_out=True)
            observer.tick()
            assert observer.stats.timeout_detected
            assert "Timeout detected" in capsys.readouterr().out

    def test_half_written_file_retried(self, capsys):
        """A file that fails to parse counts now and is re-read later."""
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            name = "20250301-100000_main_a1b2c3d4.json"
            (d / name).write_text('{"branch": "main", "timed_')
            observer = RunObserver(d, display_every=0)
            observer.tick()
            observer.tick()
            assert observer.stats.total_distinct_completed == 1
            assert not observer.stats.timeout_detected
            assert capsys.readouterr().err.count("Warning:") == 1

            _write_result(d, name, success=False, timed_out=True)
            observer.tick()
            assert observer.stats.timeout_detected

    def test_running_tests_replaced_each_tick(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            _write_state(d, [
                {"branch": "main", "commit": "a1b2c3d4e5", "log_file": "l1"},
                {"branch": "feature/x", "commit": "1234567890", "log_file": "l2"},
            ])
            observer = RunObserver(d, display_every=0)
            observer.tick()
            assert [r.branch for r in observer.stats.running_tests] == [
                "main", "feature/x",
            ]

            _write_state(d, [{"branch": "feature/x", "commit": "1234567890"}])
            observer.tick()
            assert [r.branch for r in observer.stats.running_tests] == ["feature/x"]

            (d / "state.json").unlink()
            observer.tick()
            assert observer.stats.running_tests == []
            assert observer.stats.state_file_read

    def test_display_every(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            observer = RunObserver(d, display_every=2)
            observer.tick()
            assert capsys.readouterr().out == ""
            observer.tick()
            assert "Waiting for test state information" in capsys.readouterr().out

            _write_state(d, [{
                "branch": "main",
                "commit": "a1b2c3d4e5",
                "log_file": "run.log",
                "start_time": "2025-03-01T10:00:00Z",
            }])
            observer.tick()
            observer.tick()
            out = capsys.readouterr().out
            assert "Currently running tests (1):" in out
            assert "Commit: a1b2c3d4" in out


class TestVanishedRuns:
    """In-flight runs that never produce a result file."""

    def test_matched_run_is_not_vanished(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            observer = RunObserver(d, display_every=0)
            _write_state(d, [{"branch": "feature/x", "commit": "1234567890ab"}])
            observer.tick()
            _write_state(d, [])
            _write_result(d, "20250301-100000_feature-x_12345678.json",
                          branch="feature/x", commit="1234567890ab")
            observer.tick()
            assert observer.finalize() == []

    def test_unmatched_run_is_reported(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            observer = RunObserver(d, display_every=0)
            _write_state(d, [{"branch": "bugfix/y", "commit": "deadbeef99"}])
            observer.tick()
            _write_state(d, [])
            observer.tick()
            vanished = observer.finalize()
            assert [r.branch for r in vanished] == ["bugfix/y"]
            assert observer.stats.vanished_runs == vanished
            assert "left no result file" in capsys.readouterr().err


class TestRunLoop:
    """Tests for the async polling loop."""

    def test_run_stops_on_event(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            _write_result(d, "20250301-100000_main_a1b2c3d4.json")
            stats = HarnessStats()
            observer = RunObserver(d, stats, interval=0.01, display_every=0)

            async def scenario():
                stop = asyncio.Event()
                task = asyncio.create_task(observer.run(stop))
                await asyncio.sleep(0.05)
                stop.set()
                return await asyncio.wait_for(task, timeout=5)

            result = asyncio.run(scenario())
            assert result is stats
            assert stats.total_distinct_completed == 1
            assert observer.ticks >= 2

    def test_final_tick_after_stop(self):
        """Files written just before shutdown are still counted."""
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            observer = RunObserver(d, interval=60, display_every=0)

            async def scenario():
                stop = asyncio.Event()
                task = asyncio.create_task(observer.run(stop))
                await asyncio.sleep(0.05)
                _write_result(d, "20250301-100000_main_a1b2c3d4.json")
                stop.set()
                await asyncio.wait_for(task, timeout=5)

            asyncio.run(scenario())
            assert observer.stats.total_distinct_completed == 1

"""Unit tests for the result, state and product readers."""

from __future__ import annotations

import datetime
import json
import tempfile
from pathlib import Path

import pytest

from harness.monitoring.results import (
    RunResult,
    daemon_data_dir,
    list_result_files,
    load_run_products,
    load_run_results,
    parse_result_filename,
    parse_timestamp,
    read_live_state,
    sanitize_branch,
)
from harness.scenarios.outcome import Outcome


def _result_doc(**overrides) -> dict:
    doc = {
        "branch": "main",
        "commit": "a1b2c3d4e5f60718",
        "log_file": "/tmp/x.log",
        "start_time": "2025-03-01T10:00:00.123456789Z",
        "end_time": "2025-03-01T10:00:05.5Z",
        "duration": 5_376_543_211,
        "success": True,
        "timed_out": False,
        "cleanup_executed": False,
        "cleanup_success": False,
        "github_actions_notified": False,
        "github_actions_success": False,
    }
    doc.update(overrides)
    return doc


class TestParseTimestamp:
    """Tests for RFC 3339 parsing."""

    def test_nanosecond_fraction(self):
        ts = parse_timestamp("2025-03-01T10:00:00.123456789Z")
        assert ts.microsecond == 123456
        assert ts.tzinfo == datetime.timezone.utc

    def test_offset_and_short_fraction(self):
        ts = parse_timestamp("2025-03-01T12:00:00.5+02:00")
        assert ts.microsecond == 500000
        assert ts.utcoffset() == datetime.timedelta(hours=2)

    def test_naive_is_utc(self):
        ts = parse_timestamp("2025-03-01T10:00:00")
        assert ts.tzinfo == datetime.timezone.utc

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestRunResult:
    """Tests for RunResult.from_dict and outcome classification."""

    def test_from_dict(self):
        r = RunResult.from_dict(_result_doc())
        assert r.branch == "main"
        assert r.short_commit == "a1b2c3d4"
        assert r.duration == pytest.approx(5.376543211)
        assert r.outcome is Outcome.SUCCESS

    def test_duration_derived_when_missing(self):
        doc = _result_doc()
        del doc["duration"]
        r = RunResult.from_dict(doc)
        assert r.duration == pytest.approx(5.5 - 0.123456, abs=1e-6)

    @pytest.mark.parametrize("success,timed_out,expected", [
        (True, False, Outcome.SUCCESS),
        (False, False, Outcome.FAILURE),
        (False, True, Outcome.TIMEOUT),
        (True, True, Outcome.TIMEOUT),
    ])
    def test_outcome_classification(self, success, timed_out, expected):
        r = RunResult.from_dict(
            _result_doc(success=success, timed_out=timed_out)
        )
        assert r.outcome is expected

    def test_start_after_end_rejected(self):
        with pytest.raises(ValueError, match="after end_time"):
            RunResult.from_dict(_result_doc(
                start_time="2025-03-01T10:00:10Z",
                end_time="2025-03-01T10:00:00Z",
            ))

    def test_equal_times_allowed(self):
        r = RunResult.from_dict(_result_doc(
            start_time="2025-03-01T10:00:00Z",
            end_time="2025-03-01T10:00:00Z",
            duration=0,
        ))
        assert r.start_time == r.end_time

    def test_missing_field_rejected(self):
        doc = _result_doc()
        del doc["commit"]
        with pytest.raises(ValueError, match="commit"):
            RunResult.from_dict(doc)

    def test_to_dict_includes_outcome(self):
        r = RunResult.from_dict(_result_doc(error_message="boom", success=False))
        data = r.to_dict()
        assert data["outcome"] == "failure"
        assert data["error_message"] == "boom"


class TestResultFiles:
    """Tests for listing and loading result files."""

    def test_filename_parsing(self):
        parts = parse_result_filename("20250301-100000_feature-x_y_a1b2c3d4.json")
        assert parts is not None
        assert parts.timestamp == "20250301-100000"
        assert parts.branch_sanitised == "feature-x_y"
        assert parts.commit8 == "a1b2c3d4"

    @pytest.mark.parametrize("name", [
        "state.json", "notes.txt", "nounderscore.json", "a_b.json",
    ])
    def test_filename_rejected(self, name):
        assert parse_result_filename(name) is None

    def test_sanitize_branch(self):
        assert sanitize_branch("feature/a/b") == "feature-a-b"

    def test_daemon_data_dir(self):
        assert daemon_data_dir("/r") == Path("/r/.home-ci")

    def test_list_excludes_state_and_non_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            (d / "state.json").write_text("{}")
            (d / "b_main_11111111.json").write_text("{}")
            (d / "a_main_22222222.json").write_text("{}")
            (d / "a_main_22222222.log").write_text("log")
            (d / "sub.json").mkdir()
            names = [p.name for p in list_result_files(d)]
            assert names == ["a_main_22222222.json", "b_main_11111111.json"]

    def test_list_missing_directory(self):
        assert list_result_files("/nonexistent/dir/for/harness") == []

    def test_malformed_files_are_skipped(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            (d / "1_main_aaaaaaaa.json").write_text(json.dumps(_result_doc()))
            (d / "2_main_bbbbbbbb.json").write_text('{"branch": "main",')
            (d / "3_main_cccccccc.json").write_bytes(b"\xff\xfe\x00")
            (d / "4_main_dddddddd.json").write_text(json.dumps([1, 2]))
            results = load_run_results(d)
            assert len(results) == 1
            assert results[0].source.name == "1_main_aaaaaaaa.json"
            err = capsys.readouterr().err
            assert err.count("Warning: skipping") == 3


class TestLiveState:
    """Tests for reading state.json."""

    def test_absent_is_none(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert read_live_state(tmpdir) is None

    def test_torn_file_is_none(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "state.json").write_text('{"running_tests": [')
            assert read_live_state(tmpdir) is None

    def test_running_entries(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "state.json").write_text(json.dumps({
                "running_tests": [
                    {
                        "branch": "feature/x",
                        "commit": "0123456789abcdef",
                        "log_file": "/tmp/l.log",
                        "start_time": "2025-03-01T10:00:00Z",
                    },
                    {"branch": 3},
                ]
            }))
            state = read_live_state(tmpdir)
            assert state is not None
            assert len(state.running) == 1
            run = state.running[0]
            assert run.key == ("feature-x", "01234567")
            assert run.start_time is not None

    def test_null_running_list(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "state.json").write_text('{"running_tests": null}')
            state = read_live_state(tmpdir)
            assert state is not None
            assert state.running == []


class TestWorkerProducts:
    """Tests for loading worker product documents."""

    def test_products_keyed_by_branch_and_commit(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            (d / "feature-x-01234567_run-product.json").write_text(json.dumps({
                "working_dir": "/w",
                "test_type": "e2e",
                "branch": "feature/x",
                "commit": "01234567",
                "commit_message": "FAIL: broken",
                "expected_behavior": "failure",
                "timestamp": "2025-03-01T10:00:00Z",
            }))
            (d / "junk_run-product.json").write_text("not json")
            products = load_run_products(d)
            assert list(products) == [("feature-x", "01234567")]
            assert products[("feature-x", "01234567")].commit_message == "FAIL: broken"

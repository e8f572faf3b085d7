"""Unit tests for the scenario table."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from harness.scenarios.outcome import Outcome
from harness.scenarios.table import (
    DEFAULT_EXPECTATIONS_PATH,
    ExpectationsError,
    ScenarioTable,
    load_scenarios,
    parse_scenarios,
)


TIMEOUT_PATTERN_DOC = """
global_scenarios:
  commit_patterns:
    - pattern: "*TIMEOUT*"
      expected_result: timeout
      description: "forced timeout"
branch_scenarios:
  main:
    default_result: success
"""


class TestOutcome:
    """Tests for the Outcome variant."""

    def test_parse_known_values(self):
        """Every document string maps to its variant."""
        assert Outcome.parse("success") is Outcome.SUCCESS
        assert Outcome.parse("failure") is Outcome.FAILURE
        assert Outcome.parse("timeout") is Outcome.TIMEOUT

    def test_parse_unknown_value_raises(self):
        """Unknown strings are rejected with the valid choices listed."""
        with pytest.raises(ValueError, match="expected one of"):
            Outcome.parse("flaky")

    def test_str_is_document_value(self):
        assert str(Outcome.TIMEOUT) == "timeout"


class TestGlobalPatterns:
    """Global commit patterns dominate every branch rule."""

    def test_timeout_pattern_on_main(self):
        """A TIMEOUT message on main is expected to time out."""
        table = parse_scenarios(TIMEOUT_PATTERN_DOC)
        assert table.expected_outcome(
            "main", "a1b2c3d4e5", "TIMEOUT: stress"
        ) is Outcome.TIMEOUT

    def test_first_matching_pattern_wins(self):
        """Patterns are tried in document order."""
        table = parse_scenarios("""
global_scenarios:
  commit_patterns:
    - {pattern: "*FAIL*", expected_result: failure}
    - {pattern: "*TIMEOUT*", expected_result: timeout}
""")
        assert table.expected_outcome(
            "main", "abc", "FAIL then TIMEOUT"
        ) is Outcome.FAILURE

    def test_pattern_beats_special_case(self):
        """A matching global pattern beats a matching hash prefix."""
        table = parse_scenarios("""
global_scenarios:
  commit_patterns:
    - {pattern: "*SUCCESS*", expected_result: success}
branch_scenarios:
  main:
    default_result: failure
    special_cases:
      - {commit_hash_prefix: "dead", expected_result: timeout}
""")
        assert table.expected_outcome(
            "main", "deadbeef", "SUCCESS: ok"
        ) is Outcome.SUCCESS

    def test_glob_is_case_sensitive(self):
        table = parse_scenarios(TIMEOUT_PATTERN_DOC)
        assert table.expected_outcome(
            "main", "abc", "timeout in lowercase"
        ) is Outcome.SUCCESS


class TestBranchScenarios:
    """Exact and wildcard branch lookup."""

    def test_exact_branch_default(self):
        """Main with a plain message uses its default."""
        table = parse_scenarios("""
branch_scenarios:
  main:
    default_result: success
""")
        assert table.expected_outcome(
            "main", "a1b2c3d4", "Add foo"
        ) is Outcome.SUCCESS

    def test_special_case_prefix_beats_default(self):
        table = parse_scenarios("""
branch_scenarios:
  main:
    default_result: success
    special_cases:
      - {commit_hash_prefix: "a1b2", expected_result: failure}
      - {commit_hash_prefix: "a1", expected_result: timeout}
""")
        assert table.expected_outcome("main", "a1b2c3", "x") is Outcome.FAILURE
        assert table.expected_outcome("main", "a1ffff", "x") is Outcome.TIMEOUT
        assert table.expected_outcome("main", "ffa1b2", "x") is Outcome.SUCCESS

    def test_prefix_match_is_case_sensitive(self):
        table = parse_scenarios("""
branch_scenarios:
  main:
    default_result: success
    special_cases:
      - {commit_hash_prefix: "ABCD", expected_result: failure}
""")
        assert table.expected_outcome("main", "abcdef", "x") is Outcome.SUCCESS

    def test_exact_key_beats_wildcard(self):
        """feature/test2 is an exact key even though feature/* matches."""
        table = load_scenarios()
        assert table.expected_outcome(
            "feature/test2", "0123abcd", "Progress"
        ) is Outcome.FAILURE

    def test_wildcard_branch(self):
        """bugfix/xyz falls through to the bugfix/* wildcard."""
        table = load_scenarios()
        assert table.expected_outcome(
            "bugfix/xyz", "0123abcd", "fix"
        ) is Outcome.FAILURE

    def test_wildcards_use_document_order(self):
        """The first wildcard written in the document wins."""
        table = parse_scenarios("""
branch_scenarios:
  "team/*":
    default_result: timeout
  "team/a*":
    default_result: failure
""")
        assert table.expected_outcome("team/alpha", "x", "m") is Outcome.TIMEOUT

        reordered = parse_scenarios("""
branch_scenarios:
  "team/a*":
    default_result: failure
  "team/*":
    default_result: timeout
""")
        assert reordered.expected_outcome("team/alpha", "x", "m") is Outcome.FAILURE

    def test_wildcard_ignores_special_cases(self):
        table = parse_scenarios("""
branch_scenarios:
  "feature/*":
    default_result: success
    special_cases:
      - {commit_hash_prefix: "ab", expected_result: failure}
""")
        assert table.expected_outcome("feature/x", "abcd", "m") is Outcome.SUCCESS

    def test_fallback_is_success(self):
        table = parse_scenarios(TIMEOUT_PATTERN_DOC)
        assert table.expected_outcome("release/1.0", "abc", "Bump") is Outcome.SUCCESS


class TestTotality:
    """expected_outcome never fails at query time."""

    @pytest.mark.parametrize("branch,commit,message", [
        ("", "", ""),
        ("main", "", "SUCCESS"),
        ("weird[branch", "zz", "[unclosed"),
        ("feature/a/b/c", "0" * 40, "\n"),
        ("bugfix/critical", "deadbeef", None),
    ])
    def test_always_returns_an_outcome(self, branch, commit, message):
        table = load_scenarios()
        assert table.expected_outcome(branch, commit, message) in set(Outcome)

    def test_empty_document(self):
        table = parse_scenarios("")
        assert table.expected_outcome("main", "abc", "x") is Outcome.SUCCESS


class TestLoading:
    """Load-time validation of expectations documents."""

    def test_bundled_default_loads(self):
        """The packaged expectations file parses into a table."""
        assert DEFAULT_EXPECTATIONS_PATH.exists()
        table = load_scenarios()
        keys = [s.key for s in table.branch_scenarios]
        assert keys[0] == "main"
        assert "bugfix/*" in keys
        assert [p.pattern for p in table.commit_patterns] == [
            "*FAIL*", "*TIMEOUT*", "*SUCCESS*",
        ]

    def test_load_from_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "expectations.yaml"
            path.write_text(TIMEOUT_PATTERN_DOC)
            table = load_scenarios(path)
            assert len(table.commit_patterns) == 1

    def test_missing_file_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ExpectationsError, match="cannot read"):
                load_scenarios(Path(tmpdir) / "missing.yaml")

    def test_malformed_yaml_raises(self):
        with pytest.raises(ExpectationsError, match="invalid expectations YAML"):
            parse_scenarios("branch_scenarios: [unclosed")

    def test_unknown_outcome_raises(self):
        with pytest.raises(ExpectationsError, match="unknown outcome 'flaky'"):
            parse_scenarios("""
branch_scenarios:
  main:
    default_result: flaky
""")

    def test_unknown_outcome_in_pattern_raises(self):
        with pytest.raises(ExpectationsError, match="commit_patterns\\[0\\]"):
            parse_scenarios("""
global_scenarios:
  commit_patterns:
    - {pattern: "*X*", expected_result: passed}
""")

    def test_missing_default_result_raises(self):
        with pytest.raises(ExpectationsError, match="default_result"):
            parse_scenarios("""
branch_scenarios:
  main:
    description: no default here
""")

    def test_non_mapping_document_raises(self):
        with pytest.raises(ExpectationsError, match="must be a mapping"):
            parse_scenarios("- just\n- a list\n")

    def test_expectations_error_is_value_error(self):
        assert issubclass(ExpectationsError, ValueError)

    def test_from_dict_none_is_empty_table(self):
        table = ScenarioTable.from_dict(None)
        assert table.commit_patterns == ()
        assert table.branch_scenarios == ()

"""Scenario table: expected run outcomes from a YAML expectations document.

The document has two sections::

    global_scenarios:
      commit_patterns:
        - {pattern: "*TIMEOUT*", expected_result: timeout}
    branch_scenarios:
      main:
        default_result: success
        special_cases:
          - {commit_hash_prefix: "a1b2", expected_result: failure}
      "bugfix/*":
        default_result: failure

Lookup priority for ``expected_outcome(branch, commit, message)``:

1. Global commit patterns, in document order (glob on the message).
2. Exact branch key: first matching ``commit_hash_prefix`` special case,
   else the branch default.
3. Wildcard branch keys (containing ``*``), in document order.
4. ``success``.

PyYAML builds mappings in document order, so insertion order of the
branch keys is the order they were written in.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from harness.scenarios.outcome import Outcome

DEFAULT_EXPECTATIONS_PATH = Path(__file__).parent / "expectations.yaml"


class ExpectationsError(ValueError):
    """Raised when an expectations document cannot be loaded."""


@dataclass(frozen=True)
class CommitPattern:
    """Glob on the commit message that fixes the outcome for every branch."""

    pattern: str
    outcome: Outcome
    description: str = ""


@dataclass(frozen=True)
class SpecialCase:
    """Commit-hash prefix override inside a branch scenario."""

    commit_hash_prefix: str
    outcome: Outcome
    description: str = ""


@dataclass(frozen=True)
class BranchScenario:
    """Expected outcome for one branch name or branch glob."""

    key: str
    default_outcome: Outcome
    special_cases: tuple[SpecialCase, ...] = ()
    description: str = ""

    @property
    def is_wildcard(self) -> bool:
        return "*" in self.key


class ScenarioTable:
    """Immutable, queryable form of the expectations document."""

    def __init__(
        self,
        commit_patterns: list[CommitPattern] | tuple[CommitPattern, ...] = (),
        branch_scenarios: list[BranchScenario] | tuple[BranchScenario, ...] = (),
    ) -> None:
        self._commit_patterns = tuple(commit_patterns)
        self._branches: dict[str, BranchScenario] = {}
        for scenario in branch_scenarios:
            self._branches[scenario.key] = scenario
        self._wildcards = tuple(
            s for s in self._branches.values() if s.is_wildcard
        )

    @property
    def commit_patterns(self) -> tuple[CommitPattern, ...]:
        return self._commit_patterns

    @property
    def branch_scenarios(self) -> tuple[BranchScenario, ...]:
        return tuple(self._branches.values())

    def expected_outcome(
        self, branch: str, commit: str, commit_message: str
    ) -> Outcome:
        """Return the outcome the run for (branch, commit) should have.

        Never raises: any query falls through to ``Outcome.SUCCESS``.
        """
        message = commit_message or ""
        for pattern in self._commit_patterns:
            if fnmatch.fnmatchcase(message, pattern.pattern):
                return pattern.outcome

        scenario = self._branches.get(branch)
        if scenario is not None:
            for case in scenario.special_cases:
                if commit.startswith(case.commit_hash_prefix):
                    return case.outcome
            return scenario.default_outcome

        for scenario in self._wildcards:
            if fnmatch.fnmatchcase(branch, scenario.key):
                return scenario.default_outcome

        return Outcome.SUCCESS

    @classmethod
    def from_dict(cls, data: Any) -> ScenarioTable:
        """Build a table from a parsed expectations document.

        Raises:
            ExpectationsError: If the document structure or an outcome
                string is invalid.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ExpectationsError("expectations document must be a mapping")

        patterns: list[CommitPattern] = []
        global_section = data.get("global_scenarios") or {}
        if not isinstance(global_section, dict):
            raise ExpectationsError("'global_scenarios' must be a mapping")
        raw_patterns = global_section.get("commit_patterns") or []
        if not isinstance(raw_patterns, list):
            raise ExpectationsError("'commit_patterns' must be a list")
        for i, entry in enumerate(raw_patterns):
            where = f"commit_patterns[{i}]"
            entry = _require_mapping(entry, where)
            patterns.append(CommitPattern(
                pattern=_require_str(entry, "pattern", where),
                outcome=_parse_outcome(entry, "expected_result", where),
                description=str(entry.get("description", "")),
            ))

        scenarios: list[BranchScenario] = []
        branch_section = data.get("branch_scenarios") or {}
        if not isinstance(branch_section, dict):
            raise ExpectationsError("'branch_scenarios' must be a mapping")
        for key, entry in branch_section.items():
            where = f"branch_scenarios[{key!r}]"
            entry = _require_mapping(entry, where)
            raw_cases = entry.get("special_cases") or []
            if not isinstance(raw_cases, list):
                raise ExpectationsError(f"{where}.special_cases must be a list")
            cases = []
            for j, case in enumerate(raw_cases):
                case_where = f"{where}.special_cases[{j}]"
                case = _require_mapping(case, case_where)
                cases.append(SpecialCase(
                    commit_hash_prefix=_require_str(
                        case, "commit_hash_prefix", case_where
                    ),
                    outcome=_parse_outcome(case, "expected_result", case_where),
                    description=str(case.get("description", "")),
                ))
            scenarios.append(BranchScenario(
                key=str(key),
                default_outcome=_parse_outcome(entry, "default_result", where),
                special_cases=tuple(cases),
                description=str(entry.get("description", "")),
            ))

        return cls(patterns, scenarios)


def _require_mapping(entry: Any, where: str) -> dict[str, Any]:
    if not isinstance(entry, dict):
        raise ExpectationsError(f"{where} must be a mapping")
    return entry


def _require_str(entry: dict[str, Any], key: str, where: str) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value:
        raise ExpectationsError(f"{where}.{key} must be a non-empty string")
    return value


def _parse_outcome(entry: dict[str, Any], key: str, where: str) -> Outcome:
    value = entry.get(key)
    if not isinstance(value, str):
        raise ExpectationsError(f"{where}.{key} is missing")
    try:
        return Outcome.parse(value)
    except ValueError as e:
        raise ExpectationsError(f"{where}.{key}: {e}") from None


def parse_scenarios(text: str) -> ScenarioTable:
    """Parse an expectations document from YAML text."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ExpectationsError(f"invalid expectations YAML: {e}") from None
    return ScenarioTable.from_dict(data)


def load_scenarios(path: str | Path | None = None) -> ScenarioTable:
    """Load the expectations document at ``path``.

    Args:
        path: YAML file to read. ``None`` loads the bundled default
            expectations.

    Raises:
        ExpectationsError: If the file cannot be read or is invalid.
    """
    file_path = Path(path) if path is not None else DEFAULT_EXPECTATIONS_PATH
    try:
        text = file_path.read_text()
    except OSError as e:
        raise ExpectationsError(
            f"cannot read expectations file {file_path}: {e}"
        ) from None
    return parse_scenarios(text)

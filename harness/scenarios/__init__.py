"""Scenario table: expected outcome per (branch, commit, message)."""

from harness.scenarios.outcome import Outcome
from harness.scenarios.table import (
    BranchScenario,
    CommitPattern,
    ExpectationsError,
    ScenarioTable,
    SpecialCase,
    load_scenarios,
    parse_scenarios,
)

__all__ = [
    "BranchScenario",
    "CommitPattern",
    "ExpectationsError",
    "Outcome",
    "ScenarioTable",
    "SpecialCase",
    "load_scenarios",
    "parse_scenarios",
]

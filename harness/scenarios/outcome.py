"""Run outcomes shared by the scenario table, the worker and the analyser."""

from __future__ import annotations

from enum import Enum


class Outcome(str, Enum):
    """Closed set of outcomes a CI run can have."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"

    @classmethod
    def parse(cls, value: str) -> Outcome:
        """Convert a document string into an Outcome.

        Raises:
            ValueError: If the string is not one of the known outcomes.
        """
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(o.value for o in cls)
            raise ValueError(
                f"unknown outcome '{value}' (expected one of: {valid})"
            ) from None

    def __str__(self) -> str:
        return self.value

"""Failures surfaced by the rule evaluation engine."""

from __future__ import annotations

from typing import Optional


class MalformedReading(ValueError):
    """A reading lacks a field that a check cannot do without."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.field_name = field_name


class EvaluationFailed(Exception):
    """Evaluation of a reading could not complete; never means "no alert"."""

    kind = "evaluation"

    def __init__(self, message: str, rule_code: int) -> None:
        super().__init__(message)
        self.rule_code = rule_code


class QueryFailure(EvaluationFailed):
    """A rule's store query failed before its condition could be decided."""

    kind = "query"


class WriteFailure(EvaluationFailed):
    """A rule matched but its alert record could not be persisted."""

    kind = "write"

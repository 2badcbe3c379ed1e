"""Condition evaluation for workflow triggers.

Conditions are combined with AND. A condition whose payload field is missing, or
whose operand types do not fit the operator, evaluates to False instead of
raising.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from enum import Enum
from typing import Any

from ..core.config import ConditionSpec
from ..core.logger import get_logger

logger = get_logger("automation.conditions")

_MISSING = object()


class ConditionOperator(str, Enum):
    """Supported condition operators."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    MATCHES_REGEX = "matches_regex"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def _contains(haystack: Any, needle: Any) -> bool | None:
    """Membership test; None when the operand types do not fit."""
    if isinstance(haystack, str):
        if not isinstance(needle, str):
            return None
        return needle in haystack
    if isinstance(haystack, (list, tuple)):
        return needle in haystack
    return None


def _comparable(actual: Any, expected: Any) -> bool:
    if _is_number(actual) and _is_number(expected):
        return True
    return actual is None or expected is None or type(actual) is type(expected)


def _equals(actual: Any, expected: Any) -> bool:
    return _comparable(actual, expected) and actual == expected


def _not_equals(actual: Any, expected: Any) -> bool:
    return _comparable(actual, expected) and actual != expected


def _greater_than(actual: Any, expected: Any) -> bool:
    return _is_number(actual) and _is_number(expected) and actual > expected


def _less_than(actual: Any, expected: Any) -> bool:
    return _is_number(actual) and _is_number(expected) and actual < expected


def _not_contains(actual: Any, expected: Any) -> bool:
    found = _contains(actual, expected)
    return found is False


def _starts_with(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and isinstance(expected, str) and actual.startswith(expected)


def _ends_with(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and isinstance(expected, str) and actual.endswith(expected)


def _matches_regex(actual: Any, expected: Any) -> bool:
    if not isinstance(actual, str) or not isinstance(expected, str):
        return False
    try:
        return re.search(expected, actual) is not None
    except re.error as exc:
        logger.warning("Invalid regex in condition '%s': %s", expected, exc)
        return False


_OPERATORS: dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: _not_equals,
    ConditionOperator.GREATER_THAN: _greater_than,
    ConditionOperator.LESS_THAN: _less_than,
    ConditionOperator.CONTAINS: lambda actual, expected: _contains(actual, expected) is True,
    ConditionOperator.NOT_CONTAINS: _not_contains,
    ConditionOperator.STARTS_WITH: _starts_with,
    ConditionOperator.ENDS_WITH: _ends_with,
    ConditionOperator.IS_EMPTY: lambda actual, _: _is_empty(actual),
    ConditionOperator.IS_NOT_EMPTY: lambda actual, _: not _is_empty(actual),
    ConditionOperator.MATCHES_REGEX: _matches_regex,
}


def extract_field(payload: Mapping[str, Any], path: str) -> Any:
    """Extract a value from the payload using dot notation.

    Returns a private sentinel when any segment of the path is missing, so a
    stored ``None`` can be told apart from an absent field.
    """
    if not path:
        return _MISSING
    if path in payload:
        return payload[path]
    current: Any = payload
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, str) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


class ConditionEvaluator:
    """Evaluates condition specs against trigger payloads."""

    def evaluate(
        self,
        conditions: Iterable[ConditionSpec | Mapping[str, Any]],
        payload: Mapping[str, Any] | None,
    ) -> bool:
        """Return True when every condition holds (True for an empty list)."""
        data = payload or {}
        return all(self.evaluate_condition(condition, data) for condition in conditions)

    def evaluate_condition(
        self,
        condition: ConditionSpec | Mapping[str, Any],
        payload: Mapping[str, Any] | None,
    ) -> bool:
        """Evaluate a single condition. Never raises."""
        try:
            spec = self._coerce(condition)
        except ValueError as exc:
            logger.warning("Ignoring malformed condition %r: %s", condition, exc)
            return False

        try:
            operator = ConditionOperator(spec.operator)
        except ValueError:
            logger.warning("Unsupported condition operator: %s", spec.operator)
            return False

        actual = extract_field(payload or {}, spec.field)
        if actual is _MISSING:
            return False

        try:
            return bool(_OPERATORS[operator](actual, spec.value))
        except Exception as exc:
            logger.debug(
                "Condition %s %s %r failed to evaluate: %s",
                spec.field,
                spec.operator,
                spec.value,
                exc,
            )
            return False

    def explain(
        self,
        conditions: Iterable[ConditionSpec | Mapping[str, Any]],
        payload: Mapping[str, Any] | None,
    ) -> list[tuple[ConditionSpec | Mapping[str, Any], bool]]:
        """Evaluate each condition separately, for diagnostics."""
        return [(condition, self.evaluate_condition(condition, payload)) for condition in conditions]

    @staticmethod
    def _coerce(condition: ConditionSpec | Mapping[str, Any]) -> ConditionSpec:
        if isinstance(condition, ConditionSpec):
            return condition
        try:
            return ConditionSpec.model_validate(dict(condition))
        except Exception as exc:
            raise ValueError(str(exc)) from exc


__all__ = ["ConditionOperator", "ConditionEvaluator", "extract_field"]

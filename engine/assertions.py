"""Comparison operators used by assertion records."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .errors import AssertionMismatch, UnsupportedCondition

log = logging.getLogger(__name__)

_TRUTHY = {"true", "1", "yes", "on"}
_FALSY = {"false", "0", "no", "off", ""}


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = _as_text(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise AssertionMismatch(f"Value '{value}' is not a boolean")


def _as_number(value: Any, role: str) -> float:
    try:
        return float(_as_text(value).strip())
    except ValueError:
        raise AssertionMismatch(f"{role} value '{value}' is not numeric") from None


def assert_condition(actual: Any, expected: Optional[str], operator: str) -> None:
    """Raise :class:`AssertionMismatch` unless ``actual`` satisfies ``operator``.

    ``equals`` and ``contains`` compare text, except that ``equals`` on a
    boolean probe coerces ``expected`` to a boolean as well. ``true`` and
    ``false`` coerce the actual value and ignore ``expected``; ``greaterThan`` and
    ``lessThan`` coerce both sides to floats.
    """

    if operator == "equals" and isinstance(actual, bool):
        ok = actual is _as_bool(expected)
    elif operator == "equals":
        ok = _as_text(actual) == _as_text(expected)
    elif operator == "contains":
        ok = _as_text(expected) in _as_text(actual)
    elif operator == "true":
        ok = _as_bool(actual) is True
    elif operator == "false":
        ok = _as_bool(actual) is False
    elif operator == "greaterThan":
        ok = _as_number(actual, "Actual") > _as_number(expected, "Expected")
    elif operator == "lessThan":
        ok = _as_number(actual, "Actual") < _as_number(expected, "Expected")
    else:
        raise UnsupportedCondition(f"Unsupported condition: {operator}")

    if not ok:
        raise AssertionMismatch(
            f"Expected '{_as_text(actual)}' {operator} '{_as_text(expected)}'",
            details={"actual": _as_text(actual), "expected": expected, "operator": operator},
        )
    log.debug("Assertion passed: '%s' %s '%s'", actual, operator, expected)

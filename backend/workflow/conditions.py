"""Condition evaluation for condition steps.

``evaluate`` compares one context field against an expected value. It never
raises: unknown operators and evaluation errors both yield False, so a
misconfigured condition fails closed.

Coercion rules:
- equals: None only equals None; number vs numeric string compares
  numerically; booleans match real booleans or "true"/"false"; strings
  compare case-insensitively
- contains: case-insensitive substring for strings, element membership
  (using the equals rule) for lists
- gt/gte/lt/lte: numeric coercion first, then dates, then plain string order
- is_empty: None, blank strings, empty lists and empty dicts
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

import structlog

from core.constants import ConditionLogic, ConditionOperator
from workflow.templating import get_nested_value, stringify

logger = structlog.get_logger(__name__)

_NUMERIC = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

OPERATOR_LABELS = {
    ConditionOperator.EQUALS: "equals",
    ConditionOperator.NOT_EQUALS: "does not equal",
    ConditionOperator.CONTAINS: "contains",
    ConditionOperator.NOT_CONTAINS: "does not contain",
    ConditionOperator.STARTS_WITH: "starts with",
    ConditionOperator.ENDS_WITH: "ends with",
    ConditionOperator.GT: "is greater than",
    ConditionOperator.GTE: "is greater than or equal to",
    ConditionOperator.LT: "is less than",
    ConditionOperator.LTE: "is less than or equal to",
    ConditionOperator.IS_EMPTY: "is empty",
    ConditionOperator.IS_NOT_EMPTY: "is not empty",
    ConditionOperator.IN: "is one of",
    ConditionOperator.NOT_IN: "is not one of",
}


# ─── Coercion helpers ─────────────────────────────────────────

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> Optional[float]:
    """Numeric value of a number or numeric string, else None.

    Blank strings count as 0.
    """
    if _is_number(value):
        return None if value != value else float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _NUMERIC.match(text):
            return float(text)
    return None


def to_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings, datetimes and epoch milliseconds into aware UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif _is_number(value):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


# ─── Operators ────────────────────────────────────────────────

def is_equal(field_value: Any, expected: Any) -> bool:
    if field_value is None:
        return expected is None

    if _strict_equal(field_value, expected):
        return True

    if _is_number(field_value) and isinstance(expected, str):
        return field_value == to_number(expected)
    if isinstance(field_value, str) and _is_number(expected):
        return to_number(field_value) == expected

    if isinstance(field_value, bool):
        if expected == "true" or expected is True:
            return field_value is True
        if expected == "false" or expected is False:
            return field_value is False

    if isinstance(field_value, str) and isinstance(expected, str):
        return field_value.lower() == expected.lower()

    return False


def contains(field_value: Any, expected: Any) -> bool:
    if isinstance(field_value, str) and isinstance(expected, str):
        return expected.lower() in field_value.lower()
    if isinstance(field_value, list):
        return any(is_equal(item, expected) for item in field_value)
    return False


def starts_with(field_value: Any, expected: Any) -> bool:
    if isinstance(field_value, str) and isinstance(expected, str):
        return field_value.lower().startswith(expected.lower())
    return False


def ends_with(field_value: Any, expected: Any) -> bool:
    if isinstance(field_value, str) and isinstance(expected, str):
        return field_value.lower().endswith(expected.lower())
    return False


def _compare(field_value: Any, expected: Any) -> Optional[int]:
    """-1/0/1 using the first coercion that works for both sides."""
    left_num, right_num = to_number(field_value), to_number(expected)
    if left_num is not None and right_num is not None:
        return (left_num > right_num) - (left_num < right_num)

    left_date, right_date = to_datetime(field_value), to_datetime(expected)
    if left_date is not None and right_date is not None:
        return (left_date > right_date) - (left_date < right_date)

    if isinstance(field_value, str) and isinstance(expected, str):
        return (field_value > expected) - (field_value < expected)
    return None


def greater_than(field_value: Any, expected: Any) -> bool:
    return _compare(field_value, expected) == 1


def less_than(field_value: Any, expected: Any) -> bool:
    return _compare(field_value, expected) == -1


def is_empty(field_value: Any) -> bool:
    if field_value is None:
        return True
    if isinstance(field_value, str):
        return field_value.strip() == ""
    if isinstance(field_value, (list, tuple, dict)):
        return len(field_value) == 0
    return False


def is_in(field_value: Any, expected: Any) -> bool:
    if not isinstance(expected, list):
        return False
    return any(is_equal(field_value, item) for item in expected)


_OPERATORS = {
    ConditionOperator.EQUALS: is_equal,
    ConditionOperator.NOT_EQUALS: lambda f, e: not is_equal(f, e),
    ConditionOperator.CONTAINS: contains,
    ConditionOperator.NOT_CONTAINS: lambda f, e: not contains(f, e),
    ConditionOperator.STARTS_WITH: starts_with,
    ConditionOperator.ENDS_WITH: ends_with,
    ConditionOperator.GT: greater_than,
    ConditionOperator.GTE: lambda f, e: greater_than(f, e) or is_equal(f, e),
    ConditionOperator.LT: less_than,
    ConditionOperator.LTE: lambda f, e: less_than(f, e) or is_equal(f, e),
    ConditionOperator.IS_EMPTY: lambda f, e: is_empty(f),
    ConditionOperator.IS_NOT_EMPTY: lambda f, e: not is_empty(f),
    ConditionOperator.IN: is_in,
    ConditionOperator.NOT_IN: lambda f, e: not is_in(f, e),
}


# ─── Public API ───────────────────────────────────────────────

def evaluate(field: str, operator: Any, expected: Any, context: Mapping[str, Any]) -> bool:
    """Evaluate ``context[field] <operator> expected``."""
    try:
        op = ConditionOperator(operator)
    except ValueError:
        logger.warning("unknown_condition_operator", operator=operator)
        return False

    field_value = get_nested_value(context, field)
    try:
        result = bool(_OPERATORS[op](field_value, expected))
    except Exception as e:
        logger.error(
            "condition_evaluation_error",
            field=field,
            operator=op.value,
            error=str(e),
        )
        return False

    logger.debug(
        "condition_evaluated",
        field=field,
        operator=op.value,
        expected=expected,
        actual=field_value,
        result=result,
    )
    return result


def evaluate_condition(condition: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
    """Evaluate a ``{field, operator, value}`` mapping."""
    return evaluate(
        condition.get("field", ""),
        condition.get("operator"),
        condition.get("value"),
        context,
    )


def evaluate_conditions(
    conditions: Iterable[Mapping[str, Any]],
    context: Mapping[str, Any],
    logic: Any = ConditionLogic.AND,
) -> bool:
    """Combine several conditions; an empty list is true."""
    conditions = list(conditions)
    if not conditions:
        return True
    results = (evaluate_condition(c, context) for c in conditions)
    if ConditionLogic(logic) == ConditionLogic.AND:
        return all(results)
    return any(results)


def describe_condition(condition: Mapping[str, Any]) -> str:
    """Human readable label, e.g. ``deal.value is greater than 1000``."""
    field = condition.get("field", "")
    operator = condition.get("operator")
    value = condition.get("value")
    try:
        label = OPERATOR_LABELS[ConditionOperator(operator)]
    except ValueError:
        label = str(operator)

    if operator in (ConditionOperator.IS_EMPTY.value, ConditionOperator.IS_NOT_EMPTY.value):
        return f"{field} {label}"

    if isinstance(value, list):
        rendered = "[" + ", ".join(stringify(v) for v in value) + "]"
    else:
        rendered = json.dumps(value, default=str)
    return f"{field} {label} {rendered}"

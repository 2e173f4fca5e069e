"""
Utility functions for the workflow automation engine.

Includes:
- UTC datetime helpers
- JSON-safe conversion for values stored in JSON columns
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """
    Get current UTC datetime as a naive value.

    Stored timestamps are naive UTC so that comparisons behave the same
    on every backend (SQLite drops tzinfo on write).

    Returns:
        Current datetime in UTC without tzinfo
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def isoformat_utc(value: datetime) -> str:
    """ISO-8601 string with an explicit UTC offset."""
    return as_utc(value).replace(tzinfo=timezone.utc).isoformat()


def json_safe(value: Any) -> Any:
    """Recursively convert a value into something a JSON column accepts."""
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(v) for v in value]
    if isinstance(value, datetime):
        return isoformat_utc(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    return value

"""Value coercion helpers shared by the analysis modules.

Telemetry rows arrive untyped: numbers may be strings, timestamps may be
ISO strings, epoch numbers or datetime objects.  Everything here is
lenient and returns ``None`` instead of raising.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any


def is_missing(value: Any) -> bool:
    """True for ``None`` and empty strings."""
    return value is None or value == ""


def to_number(value: Any) -> float | None:
    """Coerce *value* to float; booleans and unparseable values give None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            return float(text)
        except ValueError:
            return None
    return None


def parse_number(value: Any) -> int | float | None:
    """Like :func:`to_number` but keeps integral values as ``int``."""
    num = to_number(value)
    if num is None:
        return None
    if num.is_integer() and not (isinstance(value, float)):
        return int(num)
    return num


def to_datetime(value: Any) -> datetime | None:
    """Parse a timestamp-like value.

    Accepts ``datetime``/``date`` objects, ISO-8601 strings (with or without
    a trailing ``Z``) and epoch seconds or milliseconds.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
        for fmt in ("%Y/%m/%d", "%Y-%m-%d %H:%M:%S", "%d-%m-%Y", "%m/%d/%Y"):
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
    return None


def day_key(value: Any) -> str | None:
    """Return the ``YYYY-MM-DD`` calendar day of a timestamp-like value."""
    dt = to_datetime(value)
    if dt is None:
        return None
    return dt.date().isoformat()


def days_between(start: str, end: str) -> int:
    """Whole days from one ``YYYY-MM-DD`` key to another."""
    return (date.fromisoformat(end) - date.fromisoformat(start)).days

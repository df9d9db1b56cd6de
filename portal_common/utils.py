"""
Utility functions shared by the portal packages.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a backend timestamp into an aware datetime.

    Accepts ISO-8601 strings (including a trailing ``Z``), ``datetime`` and
    ``date`` objects. Naive values are treated as UTC. Anything unparseable
    yields ``None``.

    Args:
        value: Raw value from a record

    Returns:
        Aware datetime or None
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
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


def parse_date(value: Any) -> date | None:
    """Parse a calendar date (``YYYY-MM-DD`` or any timestamp) into a ``date``."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def isoformat(value: datetime | date | None) -> str | None:
    """Serialize a timestamp the way the hosted backend does."""
    if value is None:
        return None
    return value.isoformat()


def days_ago(days: float, now: datetime | None = None) -> datetime:
    """Return the instant ``days`` before ``now``."""
    return (now or utcnow()) - timedelta(days=days)


def coerce_int(value: Any, default: int = 0) -> int:
    """Best-effort integer conversion for loosely typed counters."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def coerce_float(value: Any, default: float = 0.0) -> float:
    """Best-effort float conversion for loosely typed numeric fields."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return default

"""Shared datetime and request helpers.

as_utc:          normalise naive SQLite datetimes to UTC-aware
utcnow:          timezone-aware "now"
parse_datetime:  ISO-8601 input -> UTC-aware datetime (raises ValueError)
parse_int:       lenient int coercion for query strings and headers
"""
from datetime import date, datetime, time, timezone


def as_utc(dt):
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    Every comparison against ``utcnow()`` goes through this helper so the same
    code works in both environments.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow():
    return datetime.now(timezone.utc)


def parse_datetime(value):
    """Parse an ISO datetime (or date) string to a UTC-aware datetime.

    Returns None for empty input. A bare date means midnight UTC.
    A trailing ``Z`` is accepted.

    Raises:
        ValueError: unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError as exc:
        raise ValueError(f"Invalid datetime: {value!r}. Use ISO-8601.") from exc


def parse_int(value, default=None):
    """Coerce to int, returning ``default`` for empty/invalid input."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

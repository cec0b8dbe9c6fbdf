"""Date normalization and whole-day arithmetic.

All renewal math runs on date-only values so time-of-day and timezone drift
cannot shift a boundary by one day.
"""
import re
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Optional

DATE_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def normalize_date(value: Any) -> Optional[str]:
    """
    Normalize a date-like value to a `YYYY-MM-DD` string.

    Accepts date/datetime objects or strings starting with a real calendar
    date. Anything else returns None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        match = DATE_PREFIX.match(value.strip())
        if not match:
            return None
        year, month, day = (int(part) for part in match.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            return None
    return None


def to_date(value: Any) -> Optional[date]:
    """Parse a date-like value into a date, or None when malformed."""
    normalized = normalize_date(value)
    if normalized is None:
        return None
    return date.fromisoformat(normalized)


def days_between(start: date, end: date) -> int:
    """Signed whole days from start to end."""
    return (end - start).days


def business_today(now: datetime, tz: tzinfo) -> date:
    """The calendar day `now` falls on in the business timezone."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz).date()


class SystemClock:
    """Wall clock returning timezone-aware UTC datetimes."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

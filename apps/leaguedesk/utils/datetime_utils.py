"""
Datetime utility functions.
"""

from datetime import date, datetime
from typing import Optional, Union
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def utctoday() -> date:
    """Current date in UTC."""
    return utcnow().date()


def parse_date(value: Optional[Union[str, date, datetime]]) -> Optional[date]:
    """
    Normalize a date-like value to a ``date``.

    Accepts ISO strings ("2026-01-21" or a full ISO timestamp), ``date`` and
    ``datetime`` objects. ``None`` passes through.

    Raises:
        ValueError: If a string cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) > 10:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def isoformat_or_none(value: Optional[Union[date, datetime]]) -> Optional[str]:
    """Serialize a date/datetime to ISO format, keeping None."""
    return value.isoformat() if value is not None else None

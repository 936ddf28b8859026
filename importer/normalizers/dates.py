"""
Date recognition and timestamp parsing utilities.
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Optional

ISO_DATE_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d{1,6})?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)
ISO_DATETIME_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
ISO_DAY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SLASH_DATE_PATTERN = re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}$")

# Tried in order for strings that are not ISO 8601
TEXT_DATE_FORMATS = (
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d/%m/%y",
    "%m/%d/%y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%d %B %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%b %d, %Y",
)

# Unix timestamps between 2001-09 and 2286, in seconds or milliseconds
UNIX_SECONDS_RANGE = (1_000_000_000, 9_999_999_999)
UNIX_MILLIS_RANGE = (1_000_000_000_000, 9_999_999_999_999)


def parse_iso_datetime(value: str) -> Optional[datetime]:
    """Parse an ISO 8601 date or datetime string into an aware UTC datetime."""
    if not value or not ISO_DATE_PATTERN.match(value):
        return None
    text = value.replace(" ", "T", 1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return _as_utc(parsed)


def is_date_string(value: str) -> bool:
    """Check whether a string looks like a calendar date.

    ISO dates must also be real calendar dates; ``d/m/yyyy`` style values
    are accepted on shape alone since day/month order is ambiguous.
    """
    if ISO_DATE_PATTERN.match(value):
        return parse_iso_datetime(value) is not None
    return bool(SLASH_DATE_PATTERN.match(value))


def is_unix_timestamp(value: Any) -> bool:
    """Check whether a number falls in the plausible unix timestamp ranges."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return (
        UNIX_SECONDS_RANGE[0] < value < UNIX_SECONDS_RANGE[1]
        or UNIX_MILLIS_RANGE[0] < value < UNIX_MILLIS_RANGE[1]
    )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a cell value into an aware UTC datetime.

    Accepts datetime/date objects, ISO 8601 strings, common textual day
    formats and unix timestamps in seconds or milliseconds.

    Args:
        value: Raw cell value

    Returns:
        Parsed datetime, or None when the value is not a recognisable date
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if UNIX_MILLIS_RANGE[0] < value < UNIX_MILLIS_RANGE[1]:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        if UNIX_SECONDS_RANGE[0] < value < UNIX_SECONDS_RANGE[1]:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    parsed = parse_iso_datetime(text)
    if parsed:
        return parsed

    for fmt in TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

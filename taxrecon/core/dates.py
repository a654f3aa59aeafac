"""
Date Utilities

Calendar-day handling for date-range filters and for comparing the date
values the reconciliation service returns.

Key Concepts:
- Calendar day: the date the user picked, read in the time zone the value
  carries (naive values are read as-is, i.e. as the caller's local day)
- Day bounds: a calendar day is sent to the service as the UTC instants
  00:00:00.000 and 23:59:59.999 of that same day, so the selected day
  survives any caller offset
- Service dates: OData v2 JSON encodes instants as "/Date(<ms>)/", optionally
  with an offset suffix; ISO-8601 strings are accepted as well
"""
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple

_ODATA_DATE_RE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")

END_OF_DAY = time(23, 59, 59, 999000)


def parse_date_value(value: Any) -> Optional[datetime]:
    """
    Parse a date-like value into a datetime.

    Accepts datetime, date, OData "/Date(ms)/" strings and ISO-8601 strings.
    Returns None for anything else. Aware inputs stay aware; naive inputs
    stay naive.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        text = value.strip()
        match = _ODATA_DATE_RE.match(text)
        if match:
            millis = int(match.group(1))
            return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=millis)
        try:
            # fromisoformat does not accept a trailing "Z" before 3.11
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def calendar_day(value: Any) -> date:
    """
    Get the calendar day a date-like value denotes.

    An aware datetime is read in its own time zone, so 2024-03-05T15:00+09:00
    is March 5th even though it is March 5th 06:00 UTC. A naive datetime is
    taken to be in the caller's local time and its date is used directly.

    Raises:
        ValueError: if the value is not date-like
    """
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_date_value(value)
    if parsed is None:
        raise ValueError(f"Not a date value: {value!r}")
    return parsed.date()


def day_start_utc(day: date) -> datetime:
    """Midnight of the calendar day as a UTC instant."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def day_end_utc(day: date) -> datetime:
    """23:59:59.999 of the calendar day as a UTC instant."""
    return datetime.combine(day, END_OF_DAY, tzinfo=timezone.utc)


def day_bounds_utc(low: Any, high: Any) -> Tuple[datetime, datetime]:
    """Normalize a low/high pair to the UTC bounds of their calendar days."""
    return day_start_utc(calendar_day(low)), day_end_utc(calendar_day(high))


def to_instant(value: Any) -> Optional[datetime]:
    """
    Convert a date-like value to an aware UTC datetime for comparisons.

    Naive values coming back from the service are UTC.
    """
    parsed = parse_date_value(value)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_odata_datetime(value: datetime) -> str:
    """Format an instant as an OData v2 datetime literal body (UTC, millisecond precision)."""
    instant = to_instant(value)
    return instant.strftime("%Y-%m-%dT%H:%M:%S.") + f"{instant.microsecond // 1000:03d}"


def to_odata_json_date(value: Any) -> str:
    """Encode a date-like value as OData v2 JSON "/Date(<ms>)/"; plain dates become UTC midnight."""
    if isinstance(value, date) and not isinstance(value, datetime):
        instant = day_start_utc(value)
    else:
        instant = to_instant(value)
        if instant is None:
            raise ValueError(f"Not a date value: {value!r}")
    return f"/Date({int(instant.timestamp() * 1000)})/"

"""Date parsing utilities."""

from datetime import date, datetime, timedelta
import re

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_US_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")

# Fixed fallback so partial dates never depend on the current day
_PARSE_DEFAULT = datetime(2000, 1, 1)


def parse_import_date(date_str: str) -> date:
    """Parse a date as found in an import file.

    Accepts ISO ``YYYY-MM-DD``, US ``MM/DD/YYYY`` and ``MM-DD-YYYY``, and
    anything else python-dateutil understands. Relative words like "today"
    are not accepted here, so the same file always parses the same way.

    Raises:
        ValueError: If the string is empty or not a valid date
    """
    if date_str is None or not date_str.strip():
        raise ValueError("Empty date string")

    value = date_str.strip()

    match = _ISO_DATE.match(value)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _build_date(value, year, month, day)

    match = _US_DATE.match(value)
    if match:
        month, day, year = (int(part) for part in match.groups())
        return _build_date(value, year, month, day)

    try:
        return date_parser.parse(value, default=_PARSE_DEFAULT).date()
    except (ValueError, OverflowError, TypeError) as e:
        raise ValueError(f"Could not parse date '{value}': {e}")


def _build_date(value: str, year: int, month: int, day: int) -> date:
    try:
        return date(year, month, day)
    except ValueError as e:
        raise ValueError(f"Could not parse date '{value}': {e}")


def parse_date(date_str: str) -> date:
    """Parse a date string into a date object.

    Supports various formats including relative dates:
    - Absolute dates: "2024-01-15", "January 15, 2024", etc.
    - Relative dates: "today", "yesterday", "tomorrow", "next month", etc.

    Args:
        date_str: Date string in various formats

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    value = date_str.strip().lower()
    today = date.today()

    relative_dates = {
        "today": today,
        "yesterday": today - timedelta(days=1),
        "tomorrow": today + timedelta(days=1),
    }

    if value in relative_dates:
        return relative_dates[value]

    if value.startswith("next "):
        period = value[5:]
        if period == "week":
            return today + timedelta(days=(7 - today.weekday()))
        elif period == "month":
            return (today + relativedelta(months=1)).replace(day=1)
        elif period == "year":
            return today.replace(month=1, day=1) + relativedelta(years=1)

    return parse_import_date(date_str)


def add_months(start: date, months: int, day_of_month: int) -> date:
    """Move ``start`` by whole months and pin it to ``day_of_month``.

    Days past the end of the target month clamp to its last day, so an anchor
    of 31 lands on Feb 28/29.
    """
    shifted = start + relativedelta(months=months)
    last_day = (shifted.replace(day=1) + relativedelta(months=1) - timedelta(days=1)).day
    return shifted.replace(day=min(day_of_month, last_day))

"""Tests for date parsing and month arithmetic."""

from datetime import date, timedelta

import pytest

from homeledger.utils.date_parser import add_months, parse_date, parse_import_date


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-03-01", date(2024, 3, 1)),
        ("03/01/2024", date(2024, 3, 1)),
        ("03-01-2024", date(2024, 3, 1)),
        ("March 1, 2024", date(2024, 3, 1)),
        (" 2024-3-1 ", date(2024, 3, 1)),
    ],
)
def test_parse_import_date_formats(value, expected):
    """Import dates accept ISO, US and free-form spellings."""
    assert parse_import_date(value) == expected


@pytest.mark.parametrize("value", ["", "2024-02-30", "13/45/2024", "not a date", "today"])
def test_parse_import_date_invalid(value):
    """Invalid dates, and relative words, are rejected for imports."""
    with pytest.raises(ValueError):
        parse_import_date(value)


def test_parse_date_relative():
    """The CLI parser understands relative words."""
    assert parse_date("today") == date.today()
    assert parse_date("Yesterday") == date.today() - timedelta(days=1)
    assert parse_date("tomorrow") == date.today() + timedelta(days=1)


def test_parse_date_next_month_is_first_day():
    """'next month' is the first day of the following month."""
    result = parse_date("next month")
    assert result.day == 1
    assert result > date.today()


def test_parse_date_absolute():
    """Absolute dates fall through to import parsing."""
    assert parse_date("2024-01-15") == date(2024, 1, 15)


@pytest.mark.parametrize(
    "start, months, anchor, expected",
    [
        (date(2024, 1, 31), 1, 31, date(2024, 2, 29)),
        (date(2023, 1, 31), 1, 31, date(2023, 2, 28)),
        (date(2024, 2, 29), 1, 31, date(2024, 3, 31)),
        (date(2024, 11, 15), 3, 15, date(2025, 2, 15)),
    ],
)
def test_add_months_clamps_to_month_end(start, months, anchor, expected):
    """Month arithmetic keeps the anchor day, clamped to the month's length."""
    assert add_months(start, months, anchor) == expected

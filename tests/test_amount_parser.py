"""Tests for amount parsing."""

from decimal import Decimal

import pytest

from homeledger.utils.amount_parser import parse_amount, resolve_amount_sign


@pytest.mark.parametrize(
    "value, expected",
    [
        ("123.45", "123.45"),
        ("$123.45", "123.45"),
        ("-123.45", "-123.45"),
        ("-$123.45", "-123.45"),
        ("$-123.45", "-123.45"),
        ("1,234.56", "1234.56"),
        ("(123.45)", "-123.45"),
        (" 42 ", "42"),
    ],
)
def test_parse_amount_formats(value, expected):
    """Common bank export formats parse to exact decimals."""
    assert parse_amount(value) == Decimal(expected)


@pytest.mark.parametrize("value", ["", "   ", "abc", "NaN", "Infinity"])
def test_parse_amount_invalid(value):
    """Unparseable or non-finite amounts raise ValueError."""
    with pytest.raises(ValueError):
        parse_amount(value)


@pytest.mark.parametrize(
    "amount, type_value, expected",
    [
        ("42.50", "Debit", "-42.50"),
        ("-42.50", "withdrawal", "-42.50"),
        ("-100", "Credit", "100"),
        ("100", "income", "100"),
        ("-7", "", "-7"),
        ("-7", "transfer", "-7"),
        ("-7", None, "-7"),
    ],
)
def test_resolve_amount_sign(amount, type_value, expected):
    """Type values force the sign; unknown types leave it alone."""
    assert resolve_amount_sign(Decimal(amount), type_value) == Decimal(expected)

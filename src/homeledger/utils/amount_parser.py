"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation
from typing import Optional
import re

DEBIT_TYPES = frozenset({"expense", "debit", "withdrawal"})
CREDIT_TYPES = frozenset({"income", "credit", "deposit"})


def parse_amount(amount_str: str) -> Decimal:
    """Parse an amount string into a Decimal.

    Handles various formats:
    - "123.45"
    - "$123.45"
    - "-123.45"
    - "-$123.45"
    - "1,234.56"
    - "(123.45)" (negative in parentheses)

    Args:
        amount_str: Amount string

    Returns:
        Decimal amount

    Raises:
        ValueError: If amount string cannot be parsed
    """
    if not amount_str or not amount_str.strip():
        raise ValueError("Empty amount string")

    amount_str = amount_str.strip()

    # Handle parentheses notation (negative)
    is_negative = False
    if amount_str.startswith("(") and amount_str.endswith(")"):
        is_negative = True
        amount_str = amount_str[1:-1]

    amount_str = re.sub(r"[$€£¥,\s]", "", amount_str)

    # "-$5.00" leaves "-5.00", "$-5.00" the same
    try:
        amount = Decimal(amount_str)
    except InvalidOperation:
        raise ValueError(f"Could not parse amount '{amount_str}'")
    if not amount.is_finite():
        raise ValueError(f"Could not parse amount '{amount_str}'")
    return -amount if is_negative else amount


def resolve_amount_sign(amount: Decimal, type_value: Optional[str]) -> Decimal:
    """Force the sign of an amount from a "Type" column value.

    Debit-like types make the amount negative, credit-like types positive.
    Unknown or empty types leave it untouched.
    """
    if not type_value:
        return amount

    normalized = type_value.strip().lower()
    if normalized in DEBIT_TYPES:
        return -abs(amount)
    if normalized in CREDIT_TYPES:
        return abs(amount)
    return amount

"""Utility functions for homeledger."""

from homeledger.utils.date_parser import parse_date, parse_import_date
from homeledger.utils.amount_parser import parse_amount, resolve_amount_sign
from homeledger.utils.cache import TTLCache

__all__ = ["parse_date", "parse_import_date", "parse_amount", "resolve_amount_sign", "TTLCache"]

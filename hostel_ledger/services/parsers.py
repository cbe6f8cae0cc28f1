"""Parsing utilities for ledger values arriving from the transport layer.

Amount fields may arrive as strings, numbers or null. Ledger math never sees a
float or a NaN: everything is converted to Decimal, and anything unparseable
counts as zero.

Example:
    >>> parse_amount("1500.50")
    Decimal('1500.50')

    >>> parse_amount(None)
    Decimal('0')

    >>> parse_fee_month("2024-03")
    '2024-03'

    >>> next_month("2024-12")
    '2025-01'
"""

import calendar
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from hostel_ledger.services.errors import InvalidFeeMonthError

CENT = Decimal("0.01")
ZERO = Decimal("0")

FEE_MONTH_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def parse_amount(value: Any) -> Decimal:
    """
    Parse a transport amount to Decimal, treating missing or invalid values as zero.

    Args:
        value: String, int, float, Decimal or None

    Returns:
        Decimal value; Decimal("0") for None, empty, unparseable, NaN or infinite input

    Examples:
        >>> parse_amount("2 500")
        Decimal('2500')
        >>> parse_amount(99.9)
        Decimal('99.9')
        >>> parse_amount("abc")
        Decimal('0')
    """
    if value is None or isinstance(value, bool):
        return ZERO

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        # str() keeps the shortest repr, so 0.1 stays 0.1 rather than its binary expansion
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return ZERO
    elif isinstance(value, str):
        normalized = value.strip().replace(" ", "").replace("\xa0", "").replace(",", "")
        if not normalized:
            return ZERO
        try:
            result = Decimal(normalized)
        except InvalidOperation:
            return ZERO
    else:
        return ZERO

    if not result.is_finite():
        return ZERO
    return result


def is_whole_cents(amount: Decimal) -> bool:
    """Return True if amount has no precision below one cent."""
    return amount == amount.quantize(CENT)


def format_amount(amount: Optional[Decimal]) -> str:
    """Format amount as a fixed two-decimal string for the wire."""
    if amount is None:
        amount = ZERO
    return str(Decimal(amount).quantize(CENT))


def parse_fee_month(value: Optional[str]) -> str:
    """
    Validate a fee month key.

    Args:
        value: Month string in "YYYY-MM" format

    Returns:
        The stripped month key

    Raises:
        InvalidFeeMonthError: If value is empty or not a valid "YYYY-MM" month (a ValueError)
    """
    if not value or not isinstance(value, str):
        raise InvalidFeeMonthError(f"Cannot parse fee month {value!r} (expected YYYY-MM)")

    value = value.strip()
    if not FEE_MONTH_PATTERN.match(value):
        raise InvalidFeeMonthError(f"Cannot parse fee month '{value}' (expected YYYY-MM)")
    return value


def month_key(day: date) -> str:
    """Return the "YYYY-MM" key of the month containing day."""
    return f"{day.year:04d}-{day.month:02d}"


def next_month(fee_month: str) -> str:
    """Return the month key following fee_month."""
    year, month = (int(part) for part in parse_fee_month(fee_month).split("-"))
    if month == 12:
        return f"{year + 1:04d}-01"
    return f"{year:04d}-{month + 1:02d}"


def due_date_for_month(fee_month: str, day_of_month: int) -> date:
    """Return day_of_month within fee_month, clamped to the month length."""
    year, month = (int(part) for part in parse_fee_month(fee_month).split("-"))
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day_of_month, 1), last_day))


def parse_iso_date(value: Any) -> Optional[date]:
    """Parse an ISO date (or datetime) string; None for empty or invalid input."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    value = value.strip()
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None

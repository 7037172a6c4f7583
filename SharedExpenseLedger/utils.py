"""
Utilities Module

This module provides small helpers shared across the shared expense ledger.

Features:
    - Conversion between major-unit amounts and integer minor units
    - Formatting minor units for display
    - Random identifier generation for persisted records
    - UTC timestamp helpers

Functions:
    amount_as_minor_units: Convert a major-unit amount to integer minor units.
    amount_as_decimal: Convert integer minor units to a Decimal major amount.
    format_amount_as_decimal: Format integer minor units as a plain string.
    generate_id: Generate a unique identifier for records.
    utc_now: Current UTC time.
    utc_now_minute: Current UTC time truncated to the minute.
    as_utc: Normalize a datetime to aware UTC.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Union


Number = Union[int, float, str, Decimal]


def amount_as_minor_units(amount: Number, decimal_digits: int = 2) -> int:
    """
    Convert a major-unit amount (e.g. 12.34 dollars) to minor units (1234 cents).

    Args:
        amount: Amount in major units. Strings may use a comma as decimal separator.
        decimal_digits: Number of minor-unit digits of the currency.

    Returns:
        int: Amount in minor units, rounded half away from zero.

    Raises:
        ValueError: If the amount cannot be parsed as a number.
    """
    if isinstance(amount, str):
        amount = amount.strip().replace(",", ".")
    try:
        value = Decimal(str(amount))
    except ArithmeticError:
        raise ValueError(f"amount must be a number, got: {amount}")

    scaled = value.scaleb(decimal_digits)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def amount_as_decimal(minor_units: int, decimal_digits: int = 2) -> Decimal:
    """Convert integer minor units back to a Decimal major-unit amount."""
    return Decimal(minor_units).scaleb(-decimal_digits)


def format_amount_as_decimal(minor_units: int, decimal_digits: int = 2) -> str:
    """
    Format minor units with exactly `decimal_digits` fraction digits.

    Examples:
        format_amount_as_decimal(1234) -> "12.34"
        format_amount_as_decimal(1000, decimal_digits=0) -> "1000"
    """
    value = amount_as_decimal(minor_units, decimal_digits)
    return f"{value:.{decimal_digits}f}"


def generate_id() -> str:
    """Generate a unique identifier for a persisted record."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_minute() -> datetime:
    """Return the current UTC time with seconds and microseconds dropped."""
    return utc_now().replace(second=0, microsecond=0)


def as_utc(value: datetime) -> datetime:
    """
    Return `value` as an aware UTC datetime.

    Naive datetimes are taken to already be in UTC; aware ones are converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

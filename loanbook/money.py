"""
Monetary Amount Module

Parsing and rounding helpers for monetary values. NEVER uses float for
arithmetic: every amount entering the ledger is converted to Decimal here.
"""

from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_HALF_UP, getcontext
from typing import Any

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')
CENT = Decimal('0.01')
UNIT = Decimal('1')


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert an incoming value to Decimal

    Args:
        value: Decimal, int, float or numeric string
        field_name: Name used in the error message

    Returns:
        Decimal value

    Raises:
        ValidationError: If value is missing or not a finite number
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")

    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip() if isinstance(value, str) else str(value)
        if not text:
            raise ValidationError(f"{field_name} must be a number")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be a number, got {value!r}")

    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result


def quantize_cents(value: Decimal) -> Decimal:
    """Round to two decimal places (ROUND_HALF_UP)"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def ceil_units(value: Decimal) -> Decimal:
    """Round UP to a whole currency unit, kept at cent precision"""
    return value.to_integral_value(rounding=ROUND_CEILING).quantize(CENT)


def parse_amount(value: Any, field_name: str = "amount") -> Decimal:
    """
    Parse and round an amount to cents

    Raises:
        ValidationError: If value is not a number or too large to hold at
            cent precision
    """
    value = to_decimal(value, field_name)
    try:
        return quantize_cents(value)
    except InvalidOperation:
        raise ValidationError(f"{field_name} is out of range")

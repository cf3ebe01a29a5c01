"""
Decimal helpers for monetary arithmetic.

Amounts are handled as Decimal, rate factors as exact Fractions, and
results are rounded once, to cents, at the end of a computation.
"""

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from fractions import Fraction
from typing import Any

from .errors import ValidationError

CENT = Decimal("0.01")


def to_decimal(value: Any, label: str = "value") -> Decimal:
    """Parse a numeric value into a finite Decimal.

    Accepts ints, floats, Decimals and numeric strings. Floats go through
    their shortest repr so 1.8 becomes Decimal("1.8"), not its binary expansion.

    Args:
        value: Value to parse
        label: Name used in error messages

    Returns:
        Finite Decimal

    Raises:
        ValidationError: If the value is not numeric or not finite
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label} must be a number, got {value!r}")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{label} must be a number, got {value!r}")
    else:
        raise ValidationError(f"{label} must be a number, got {type(value).__name__}")

    if not result.is_finite():
        raise ValidationError(f"{label} must be finite, got {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_fraction(value: Any, label: str = "value") -> Fraction:
    """Parse a numeric value into an exact Fraction.

    Accepts everything to_decimal does plus Fractions and "n/d" strings.

    Raises:
        ValidationError: If the value is not numeric or not finite
    """
    if isinstance(value, Fraction):
        return value
    if isinstance(value, str) and "/" in value:
        try:
            return Fraction(value.strip())
        except (ValueError, ZeroDivisionError):
            raise ValidationError(f"{label} must be a number, got {value!r}")
    return Fraction(to_decimal(value, label))


def round_fraction(value: Fraction) -> Decimal:
    """Round an exact value to 2 decimal places, half away from zero.

    Matches ROUND_HALF_UP on Decimal without an inexact division first.
    """
    cents = abs(value) * 100
    rounded = math.floor(cents + Fraction(1, 2))
    if value < 0:
        rounded = -rounded
    return Decimal(rounded).scaleb(-2)

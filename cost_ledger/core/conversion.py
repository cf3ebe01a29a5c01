"""
Currency conversion arithmetic.

Converts amounts between currency codes using a canonical rate table.
"""

import math
from typing import Any, Mapping, Optional, Union

from .currency import DEFAULT_CURRENCY, RateTable, normalize_code, normalize_rate_table
from .errors import ConversionError
from .money import round_fraction, to_fraction


def convert(
    amount: Any,
    from_code: Any,
    to_code: Any,
    table: Union[RateTable, Mapping[str, Any], None],
    default: str = DEFAULT_CURRENCY
) -> Any:
    """Convert an amount from one currency to another.

    With canonical factors in units of pivot per unit of currency, the
    value is amount * rate[from] / rate[to], whichever currency is the pivot.
    The product is computed exactly and rounded to 2 decimal places
    (half up) once, at the end.

    Two cases return the amount unchanged, without rounding:
    - both codes normalize to the same currency
    - no rate table is available (None); the caller must report that the
      value is not truly converted

    Args:
        amount: Amount in the source currency
        from_code: Source currency code
        to_code: Target currency code
        table: Rate table in either shape, a RateTable, or None
        default: Code used for missing or empty currency codes

    Returns:
        Converted amount as a float, or the input amount for identity cases

    Raises:
        ValidationError: If the amount is not a finite number or the table is malformed
        ConversionError: If either code is missing from the rate table, or
            the converted amount does not fit a float
    """
    value = to_fraction(amount, "amount")

    source = normalize_code(from_code, default)
    target = normalize_code(to_code, default)
    if source == target:
        return amount

    if table is None:
        return amount

    rates = normalize_rate_table(table, default)
    ratio = rates.factor(source) / rates.factor(target)

    result = float(round_fraction(value * ratio))
    if not math.isfinite(result):
        raise ConversionError(f"Converted amount out of range: {amount} {source} to {target}", target)
    return result


def cross_rate(
    from_code: Any,
    to_code: Any,
    table: Union[RateTable, Mapping[str, Any], None]
) -> Optional[float]:
    """Get the unrounded number of to_code units per one unit of from_code.

    Returns None when there is no rate table.
    """
    if table is None:
        return None
    source = normalize_code(from_code)
    target = normalize_code(to_code)
    if source == target:
        return 1.0
    rates = normalize_rate_table(table)
    try:
        return float(rates.factor(source) / rates.factor(target))
    except OverflowError:
        raise ConversionError(f"Cross rate out of range: {source} to {target}", target)

"""
Currency code and rate table normalization.

Reconciles the two spellings of the Euro and the two historical rate
table shapes into one canonical representation before any arithmetic runs.

Rate table shapes accepted:
1. Flat - {"USD": 1, "GBP": 1.8, "EUR": 0.7}; the entry equal to 1 is the
   pivot and each factor is units of pivot per one unit of that currency
2. Wrapped - {"base": "USD", "rates": {"GBP": 1.8, "EUR": 0.7}}; each factor
   is units of that currency per one unit of base, and base is implicitly 1

The canonical table uses the flat orientation. Wrapped factors are
inverted once here, as exact fractions, so conversion never sees the shape.
"""

import math
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import ConversionError, ValidationError
from .money import to_fraction

DEFAULT_CURRENCY = "USD"

# Alias spelling -> canonical spelling
CURRENCY_ALIASES: Dict[str, str] = {
    "EURO": "EUR",
}


def normalize_code(code: Any, default: str = DEFAULT_CURRENCY) -> str:
    """Canonicalize a currency code.

    Uppercases and trims the input and maps aliases (EURO) to their
    canonical spelling (EUR). Missing or empty input yields the default code.

    Args:
        code: Raw currency code
        default: Code returned for missing or empty input

    Returns:
        Canonical currency code
    """
    text = "" if code is None else str(code).strip().upper()
    if not text:
        text = str(default or DEFAULT_CURRENCY).strip().upper() or DEFAULT_CURRENCY
    return CURRENCY_ALIASES.get(text, text)


@dataclass(frozen=True)
class FlatTable:
    """Rate table keyed directly by currency code."""
    entries: Mapping[Any, Any]


@dataclass(frozen=True)
class WrappedTable:
    """Rate table with an explicit base currency."""
    base: Any
    entries: Mapping[Any, Any]


RawTable = Union[FlatTable, WrappedTable]


@dataclass(frozen=True)
class RateTable:
    """Canonical rate table.

    Each factor is an exact positive Fraction giving units of the pivot
    per one unit of the keyed currency. The pivot, when known, is the
    first entry and has factor 1.
    """
    base: Optional[str]
    rates: Mapping[str, Fraction] = field(default_factory=dict)

    def factor(self, code: str) -> Fraction:
        """Get the factor for a canonical currency code.

        Raises:
            ConversionError: If the code is not in the table
        """
        if code not in self.rates:
            raise ConversionError(f"Unknown currency in rate table: {code}", code)
        return self.rates[code]

    @property
    def currencies(self) -> List[str]:
        """Canonical codes in the table, pivot first when known."""
        return list(self.rates)

    def to_dict(self, exact: bool = False) -> Dict[str, Any]:
        """Render as a flat mapping of code to factor.

        Factors are floats, or "n/d" strings when exact is set. The exact
        form normalizes back to an equal table.
        """
        if exact:
            return {code: str(value) for code, value in self.rates.items()}
        return {code: float(value) for code, value in self.rates.items()}


def parse_rate_table(table: Any) -> RawTable:
    """Detect the shape of a raw rate table.

    A "rates" sub-mapping marks the wrapped shape; anything else
    mapping-like is flat.

    Raises:
        ValidationError: If the table is missing or not a mapping
    """
    if table is None or not isinstance(table, Mapping):
        raise ValidationError("rate table must be a non-null mapping")

    if isinstance(table.get("rates"), Mapping):
        return WrappedTable(base=table.get("base"), entries=table["rates"])
    return FlatTable(entries=table)


def normalize_rate_table(
    table: Union[RateTable, Mapping[str, Any], None],
    default: str = DEFAULT_CURRENCY
) -> RateTable:
    """Resolve either rate table shape into a canonical RateTable.

    Keys are rewritten through normalize_code. When an alias and its
    canonical spelling are both present, the canonical value is kept and
    the alias discarded. Idempotent: a RateTable is returned as is, and
    its to_dict(exact=True) form normalizes to an equal table.

    Args:
        table: Raw rate table (flat or wrapped) or an existing RateTable
        default: Base used for wrapped tables that do not declare one

    Returns:
        Canonical RateTable

    Raises:
        ValidationError: If the table is malformed or any factor is not
            a positive number that, like its inverse, fits a float
    """
    if isinstance(table, RateTable):
        return table

    raw = parse_rate_table(table)
    entries = _merge_entries(raw.entries)

    if isinstance(raw, WrappedTable):
        if raw.base is not None and not isinstance(raw.base, str):
            raise ValidationError(f"rate table base must be a currency code, got {raw.base!r}")
        base = normalize_code(raw.base, default)
        rates = {base: Fraction(1)}
        for code, value in entries.items():
            if code != base:
                rates[code] = 1 / value
        return RateTable(base=base, rates=rates)

    if not entries:
        raise ValidationError("rate table is empty")

    pivot = next((code for code, value in entries.items() if value == 1), None)
    return RateTable(base=pivot, rates=entries)


def _merge_entries(entries: Mapping[Any, Any]) -> Dict[str, Fraction]:
    """Canonicalize keys and validate factors, merging alias spellings."""
    winners: Dict[str, tuple] = {}
    for key, value in entries.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError(f"rate table key must be a currency code, got {key!r}")

        code = normalize_code(key)
        factor = to_fraction(value, f"rate for {key}")
        if factor <= 0:
            raise ValidationError(f"rate for {key} must be > 0, got {value!r}")
        if not (_fits_float(factor) and _fits_float(1 / factor)):
            raise ValidationError(f"rate for {key} is out of range, got {value!r}")

        rank = _spelling_rank(key, code)
        current = winners.get(code)
        if current is None or rank < current[0]:
            winners[code] = (rank, factor)

    return {code: factor for code, (_, factor) in winners.items()}


def _fits_float(value: Fraction) -> bool:
    """True if a positive value is a finite, non-zero float."""
    try:
        return float(value) > 0 and math.isfinite(float(value))
    except OverflowError:
        return False


def _spelling_rank(key: str, code: str) -> int:
    """Rank how closely a raw key matches its canonical code (lower wins)."""
    if key == code:
        return 0
    if key.strip().upper() == code:
        return 1
    return 2

"""
Cost Ledger.

Personal expense ledger with multi-currency reporting.
"""

import logging

from .core.conversion import convert
from .core.currency import RateTable, normalize_code, normalize_rate_table
from .core.errors import ConversionError, LedgerError, StorageError, ValidationError
from .core.report import get_category_breakdown, get_report, get_year_summary
from .storage.repository import LedgerStore, open_ledger

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Alias matching the external operation name
normalize_currency_code = normalize_code

__all__ = [
    "ConversionError",
    "LedgerError",
    "LedgerStore",
    "RateTable",
    "StorageError",
    "ValidationError",
    "convert",
    "get_category_breakdown",
    "get_report",
    "get_year_summary",
    "normalize_code",
    "normalize_currency_code",
    "normalize_rate_table",
    "open_ledger",
]

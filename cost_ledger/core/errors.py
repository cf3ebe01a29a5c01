"""
Error types raised by the ledger.

Every failure reaches the immediate caller as one of these types.
"""


class LedgerError(Exception):
    """Base class for all ledger failures."""


class ValidationError(LedgerError, ValueError):
    """Raised when caller input is rejected (bad sum, malformed rate table)."""


class StorageError(LedgerError):
    """Raised when the store cannot be opened or a transaction fails."""


class ConversionError(LedgerError):
    """Raised when a currency code is missing from an existing rate table.

    Distinct from having no rate table at all, which degrades to identity.
    """
    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code

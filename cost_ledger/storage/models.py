"""
Data models for storage layer.

Defines stored entities and the shapes returned to callers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any

from cost_ledger.core.currency import RateTable

LATEST_RATES_KEY = "latest"


@dataclass(frozen=True)
class CostRecord:
    """Immutable expense entry as stored in the ledger.

    Append-only: once written, a record is never updated or deleted.
    Date parts are captured at write time and never recomputed.
    """
    id: int
    sum: float
    currency: str
    category: str
    description: str
    timestamp: int  # epoch milliseconds
    year: int
    month: int
    day: int

    @property
    def created_at(self) -> datetime:
        """Creation instant as a local datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000)


@dataclass(frozen=True)
class StoredCost:
    """Write confirmation for add_cost.

    Carries only the caller-supplied fields so the shape stays stable
    regardless of how records are stored.
    """
    sum: float
    currency: str
    category: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sum": self.sum,
            "currency": self.currency,
            "category": self.category,
            "description": self.description,
        }


@dataclass(frozen=True)
class RateSnapshot:
    """The single retained rate table and when it was written."""
    table: RateTable
    updated_at: int  # epoch milliseconds
    id: str = LATEST_RATES_KEY

"""
Report aggregation over a period of cost records.

Each report converts every record into the requested currency using the
rate snapshot live at query time. Converted amounts are never written
back to the ledger, so an old period reported today uses today's rates.

Aggregates:
1. Monthly report - per-record rows plus a grand total
2. Category breakdown - converted amounts summed per raw category string
3. Year summary - twelve monthly totals
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from .conversion import convert
from .currency import DEFAULT_CURRENCY, RateTable, normalize_code
from .errors import ValidationError
from .money import round_money, to_decimal
from cost_ledger.storage.models import CostRecord

if TYPE_CHECKING:
    from cost_ledger.storage.repository import LedgerStore


@dataclass(frozen=True)
class ReportItem:
    """One cost row as shown in a report, in its original currency."""
    sum: float
    currency: str
    category: str
    description: str
    day: int
    converted_sum: float = field(compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sum": self.sum,
            "currency": self.currency,
            "category": self.category,
            "description": self.description,
            "day": self.day,
        }


@dataclass(frozen=True)
class ReportTotal:
    """Grand total of a report in the requested currency."""
    currency: str
    total: float


@dataclass(frozen=True)
class Report:
    """Monthly report.

    converted is False when no rate snapshot existed and amounts were
    summed unconverted.
    """
    year: int
    month: int
    costs: List[ReportItem]
    total: ReportTotal
    converted: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "costs": [item.to_dict() for item in self.costs],
            "total": {"currency": self.total.currency, "total": self.total.total},
        }


def validate_period(year: Any, month: Any) -> Tuple[int, int]:
    """Coerce and check a (year, month) pair.

    Raises:
        ValidationError: If year is not an integer or month is outside 1-12
    """
    if isinstance(year, bool) or isinstance(month, bool):
        raise ValidationError("year and month must be integers")
    try:
        year, month = int(year), int(month)
    except (TypeError, ValueError):
        raise ValidationError(f"year and month must be integers, got {year!r}, {month!r}")
    if not 1 <= month <= 12:
        raise ValidationError(f"month must be between 1 and 12, got {month}")
    return year, month


def build_report(
    year: int,
    month: int,
    currency: str,
    records: Sequence[CostRecord],
    rates: Optional[RateTable]
) -> Report:
    """Convert and total a period's records.

    Each item is converted exactly once; the grand total is accumulated in
    Decimal and rounded to 2 decimal places.

    Args:
        year: Report year
        month: Report month (1-12)
        currency: Canonical target currency
        records: Records of the period
        rates: Rate table, or None to sum unconverted

    Returns:
        Report with per-record rows and the grand total

    Raises:
        ConversionError: If a record's currency is missing from the rate table
    """
    items = []
    running = Decimal(0)
    for record in records:
        converted = convert(record.sum, record.currency, currency, rates)
        running += to_decimal(converted, "converted sum")
        items.append(ReportItem(
            sum=record.sum,
            currency=record.currency,
            category=record.category,
            description=record.description,
            day=record.day,
            converted_sum=converted
        ))

    return Report(
        year=year,
        month=month,
        costs=items,
        total=ReportTotal(currency=currency, total=float(round_money(running))),
        converted=rates is not None
    )


async def get_report(
    store: "LedgerStore",
    year: Any,
    month: Any,
    currency: Optional[str] = None
) -> Report:
    """Query one period and build its report.

    The period's records and the rate snapshot are read in a single
    transaction, and that snapshot is used for every conversion.

    Args:
        store: Opened ledger store
        year: Report year
        month: Report month (1-12)
        currency: Target currency; the store default when omitted

    Returns:
        Report for the period
    """
    year, month = validate_period(year, month)
    target = normalize_code(currency, getattr(store, "default_currency", DEFAULT_CURRENCY))
    records, rates = await store.read_period(year, month)
    return build_report(year, month, target, records, rates)


def summarize_by_category(report: Report) -> Dict[str, float]:
    """Sum a report's converted amounts per category.

    Keys are the raw category strings (case-sensitive), in order of first appearance.
    """
    totals: Dict[str, Decimal] = {}
    for item in report.costs:
        totals[item.category] = totals.get(item.category, Decimal(0)) + to_decimal(item.converted_sum)
    return {category: float(round_money(value)) for category, value in totals.items()}


async def get_category_breakdown(
    store: "LedgerStore",
    year: Any,
    month: Any,
    currency: Optional[str] = None
) -> Dict[str, float]:
    """Category totals for one period in the given currency."""
    report = await get_report(store, year, month, currency)
    return summarize_by_category(report)


async def get_year_summary(
    store: "LedgerStore",
    year: Any,
    currency: Optional[str] = None
) -> Dict[int, float]:
    """Monthly totals for a whole year, keyed by month number.

    The twelve reports run concurrently; each sees whichever snapshot is
    live when its own transaction starts.
    """
    reports = await asyncio.gather(*(
        get_report(store, year, month, currency) for month in range(1, 13)
    ))
    return {report.month: report.total.total for report in reports}

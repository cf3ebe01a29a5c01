"""
Ledger store for cost records and exchange rates.

Owns the on-disk layout of both collections and runs every operation as
one atomic SQLite transaction. Public operations are coroutines; blocking
SQLite work runs in a worker thread.
"""

import asyncio
import json
import logging
import math
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

from cost_ledger.core.currency import (
    DEFAULT_CURRENCY,
    RateTable,
    normalize_code,
    normalize_rate_table,
)
from cost_ledger.core.errors import StorageError, ValidationError
from cost_ledger.core.money import to_decimal
from cost_ledger.core.report import Report, get_report, validate_period

from .db import store_path, transaction
from .models import LATEST_RATES_KEY, CostRecord, RateSnapshot, StoredCost

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"

COST_COLUMNS = "id, sum, currency, category, description, ts, year, month, day"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS costs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sum REAL NOT NULL CHECK (sum > 0),
        currency TEXT NOT NULL,
        category TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        ts INTEGER NOT NULL,
        year INTEGER NOT NULL,
        month INTEGER NOT NULL CHECK (month BETWEEN 1 AND 12),
        day INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS by_year_month ON costs (year, month)",
    "CREATE INDEX IF NOT EXISTS by_category ON costs (category)",
    """
    CREATE TABLE IF NOT EXISTS rates (
        id TEXT PRIMARY KEY,
        updated_at INTEGER NOT NULL,
        payload TEXT NOT NULL
    )
    """,
)


def initialize_schema(db_path: Union[str, Path], schema_version: int) -> int:
    """Create or upgrade the store schema.

    Runs under an immediate transaction so concurrent opens of the same
    store serialize. The version lives in PRAGMA user_version.

    Args:
        db_path: Path to SQLite database file
        schema_version: Version the caller expects

    Returns:
        Version found before the call (0 for a new store)

    Raises:
        StorageError: If the store is newer than schema_version or cannot be written
    """
    with transaction(db_path, immediate=True) as conn:
        current = conn.execute("PRAGMA user_version").fetchone()[0]
        if current > schema_version:
            raise StorageError(
                f"Store {db_path} is at schema version {current}, "
                f"cannot open with older version {schema_version}"
            )
        if current < schema_version:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
            conn.execute(f"PRAGMA user_version = {int(schema_version)}")
    return current


async def open_ledger(
    store_name: str,
    schema_version: int = 1,
    data_dir: Union[str, Path] = ".",
    default_currency: str = DEFAULT_CURRENCY,
    clock: Callable[[], datetime] = datetime.now
) -> "LedgerStore":
    """Open a named, versioned ledger store, creating it on first use.

    Args:
        store_name: Store name; the file is <data_dir>/<store_name>.sqlite3
        schema_version: Expected schema version (>= 1)
        data_dir: Directory holding the store file
        default_currency: Code used for missing or empty currency input
        clock: Wall-clock source used to stamp writes

    Returns:
        Handle to the opened store

    Raises:
        ValidationError: If the name or version is invalid
        StorageError: If the store cannot be opened
    """
    if not isinstance(store_name, str) or not store_name.strip():
        raise ValidationError("store name must be a non-empty string")
    if "/" in store_name or "\\" in store_name:
        raise ValidationError(f"store name cannot contain path separators: {store_name!r}")
    if isinstance(schema_version, bool) or not isinstance(schema_version, int) or schema_version < 1:
        raise ValidationError(f"schema version must be an integer >= 1, got {schema_version!r}")

    directory = Path(data_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Storage directory unavailable: {directory}: {e}") from e

    db_path = store_path(directory, store_name.strip())
    previous = await asyncio.to_thread(initialize_schema, db_path, schema_version)
    if previous == 0:
        logger.debug("Created store %s at version %d", db_path, schema_version)
    elif previous < schema_version:
        logger.debug("Upgraded store %s from version %d to %d", db_path, previous, schema_version)

    return LedgerStore(
        db_path,
        schema_version=schema_version,
        default_currency=default_currency,
        clock=clock,
    )


class LedgerStore:
    """Handle to an opened ledger store.

    Holds no connection between calls; every operation opens its own
    connection and transaction, so concurrent calls never share state.
    Obtain instances through open_ledger.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        schema_version: int = 1,
        default_currency: str = DEFAULT_CURRENCY,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.db_path = Path(db_path)
        self.schema_version = schema_version
        self.default_currency = normalize_code(default_currency)
        self._clock = clock

    def __repr__(self) -> str:
        return f"LedgerStore({str(self.db_path)!r}, schema_version={self.schema_version})"

    # Costs

    async def add_cost(self, cost: Mapping[str, Any]) -> StoredCost:
        """Append one cost record.

        Args:
            cost: Mapping with sum, currency, category and description

        Returns:
            The stored semantic fields (sum, currency, category, description)

        Raises:
            ValidationError: If sum is not a finite number > 0, or does not
                fit a float as one
            StorageError: If the write fails
        """
        if not isinstance(cost, Mapping):
            raise ValidationError("cost must be a mapping")

        amount = to_decimal(cost.get("sum"), "sum")
        if amount <= 0:
            raise ValidationError(f"sum must be > 0, got {cost.get('sum')!r}")

        # The stored REAL must itself be finite and > 0
        value = float(amount)
        if not math.isfinite(value) or value <= 0:
            raise ValidationError(f"sum is out of range, got {cost.get('sum')!r}")

        stored = StoredCost(
            sum=value,
            currency=normalize_code(cost.get("currency"), self.default_currency),
            category=str(cost.get("category") or DEFAULT_CATEGORY),
            description=str(cost.get("description") or ""),
        )

        now = self._clock()
        row = (
            stored.sum,
            stored.currency,
            stored.category,
            stored.description,
            int(now.timestamp() * 1000),
            now.year,
            now.month,
            now.day,
        )
        record_id = await asyncio.to_thread(self._insert_cost, row)
        logger.debug("Appended cost %d: %s %s (%s)", record_id, stored.sum, stored.currency, stored.category)
        return stored

    def _insert_cost(self, row: Tuple) -> int:
        with transaction(self.db_path, immediate=True) as conn:
            cursor = conn.execute(
                """
                INSERT INTO costs (sum, currency, category, description, ts, year, month, day)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                row,
            )
            return cursor.lastrowid

    async def get_costs(self, year: int, month: int) -> List[CostRecord]:
        """Get all cost records for one (year, month) period, oldest first."""
        year, month = validate_period(year, month)
        return await asyncio.to_thread(self._read_costs_for_period, year, month)

    def _read_costs_for_period(self, year: int, month: int) -> List[CostRecord]:
        with transaction(self.db_path) as conn:
            return _select_period(conn, year, month)

    async def get_costs_by_category(self, category: str) -> List[CostRecord]:
        """Get all cost records with exactly this category, oldest first."""
        return await asyncio.to_thread(self._read_costs_for_category, category)

    def _read_costs_for_category(self, category: str) -> List[CostRecord]:
        with transaction(self.db_path) as conn:
            cursor = conn.execute(
                f"SELECT {COST_COLUMNS} FROM costs INDEXED BY by_category "
                "WHERE category = ? ORDER BY id",
                (category,),
            )
            return [_row_to_record(row) for row in cursor.fetchall()]

    # Rates

    async def set_rates(self, table: Union[RateTable, Mapping[str, Any]]) -> RateSnapshot:
        """Replace the rate snapshot.

        The table is normalized before writing and replaces the previous
        snapshot wholesale.

        Args:
            table: Rate table in flat or wrapped shape

        Returns:
            The stored snapshot

        Raises:
            ValidationError: If the table is missing or malformed
            StorageError: If the write fails
        """
        if table is None:
            raise ValidationError("rate table must be a non-null mapping")

        canonical = normalize_rate_table(table, self.default_currency)
        updated_at = int(self._clock().timestamp() * 1000)
        payload = json.dumps(canonical.to_dict(exact=True))

        await asyncio.to_thread(self._replace_rates, updated_at, payload)
        logger.debug("Replaced rate snapshot (%d currencies, base %s)", len(canonical.rates), canonical.base)
        return RateSnapshot(table=canonical, updated_at=updated_at)

    def _replace_rates(self, updated_at: int, payload: str) -> None:
        with transaction(self.db_path, immediate=True) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO rates (id, updated_at, payload) VALUES (?, ?, ?)",
                (LATEST_RATES_KEY, updated_at, payload),
            )

    async def get_rates_snapshot(self) -> Optional[RateSnapshot]:
        """Get the stored snapshot with its update time, or None if never set."""
        return await asyncio.to_thread(self._read_snapshot)

    def _read_snapshot(self) -> Optional[RateSnapshot]:
        with transaction(self.db_path) as conn:
            return _select_snapshot(conn, self.default_currency)

    async def get_latest_rates(self) -> Optional[RateTable]:
        """Get the normalized rate table, or None if none was ever stored.

        None means no conversion is possible; it does not mean every rate is 1.
        """
        snapshot = await self.get_rates_snapshot()
        return snapshot.table if snapshot else None

    # Reports

    async def read_period(self, year: int, month: int) -> Tuple[List[CostRecord], Optional[RateTable]]:
        """Read a period's records and the current rate table in one transaction."""
        year, month = validate_period(year, month)
        return await asyncio.to_thread(self._read_period_with_rates, year, month)

    def _read_period_with_rates(self, year: int, month: int) -> Tuple[List[CostRecord], Optional[RateTable]]:
        with transaction(self.db_path) as conn:
            snapshot = _select_snapshot(conn, self.default_currency)
            records = _select_period(conn, year, month)
        return records, (snapshot.table if snapshot else None)

    async def get_report(self, year: int, month: int, currency: Optional[str] = None) -> Report:
        """Build the monthly report for a period in the given currency."""
        return await get_report(self, year, month, currency)


def _select_period(conn: sqlite3.Connection, year: int, month: int) -> List[CostRecord]:
    cursor = conn.execute(
        f"SELECT {COST_COLUMNS} FROM costs INDEXED BY by_year_month "
        "WHERE year = ? AND month = ? ORDER BY id",
        (year, month),
    )
    return [_row_to_record(row) for row in cursor.fetchall()]


def _select_snapshot(conn: sqlite3.Connection, default_currency: str) -> Optional[RateSnapshot]:
    row = conn.execute(
        "SELECT id, updated_at, payload FROM rates WHERE id = ?",
        (LATEST_RATES_KEY,),
    ).fetchone()
    if row is None:
        return None

    try:
        table = normalize_rate_table(json.loads(row["payload"]), default_currency)
    except (ValueError, TypeError) as e:
        raise StorageError(f"Stored rate snapshot is unreadable: {e}") from e
    return RateSnapshot(table=table, updated_at=row["updated_at"], id=row["id"])


def _row_to_record(row: sqlite3.Row) -> CostRecord:
    return CostRecord(
        id=row["id"],
        sum=row["sum"],
        currency=row["currency"],
        category=row["category"],
        description=row["description"],
        timestamp=row["ts"],
        year=row["year"],
        month=row["month"],
        day=row["day"],
    )

"""
Unit tests for storage layer.

Tests schema creation, cost insertion, rate snapshots and retrieval operations.
"""

import asyncio
import os
import tempfile
from datetime import datetime
from fractions import Fraction

import pytest

from cost_ledger.core.errors import StorageError, ValidationError
from cost_ledger.storage.db import get_connection, store_path, transaction
from cost_ledger.storage.models import StoredCost
from cost_ledger.storage.repository import COST_COLUMNS, LedgerStore, initialize_schema, open_ledger


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, when: datetime):
        self.when = when

    def __call__(self) -> datetime:
        return self.when


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as directory:
        yield directory


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 15, 12, 30, 0))


@pytest.fixture
def store(temp_dir, clock):
    db_path = store_path(temp_dir, "costsdb")
    initialize_schema(db_path, 1)
    return LedgerStore(db_path, clock=clock)


class TestStoreSchema:
    """Test store creation and schema versioning."""

    @pytest.mark.asyncio
    async def test_schema_creation(self, temp_dir):
        """Verify tables and indexes are created on first open."""
        store = await open_ledger("costsdb", 1, data_dir=temp_dir)
        assert store.db_path == store_path(temp_dir, "costsdb")
        assert os.path.exists(store.db_path)

        conn = get_connection(store.db_path)
        try:
            tables = {row[0] for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )}
            assert {"costs", "rates"} <= tables

            indexes = {row[0] for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'costs'"
            )}
            assert {"by_year_month", "by_category"} <= indexes

            columns = [col[1] for col in conn.execute("PRAGMA table_info(costs)")]
            assert columns == [c.strip() for c in COST_COLUMNS.split(",")]

            assert conn.execute("PRAGMA user_version").fetchone()[0] == 1
        finally:
            conn.close()

    @pytest.mark.asyncio
    async def test_open_is_idempotent(self, temp_dir, clock):
        """Verify reopening keeps existing data."""
        first = await open_ledger("costsdb", 1, data_dir=temp_dir, clock=clock)
        await first.add_cost({"sum": 10, "currency": "USD"})

        second = await open_ledger("costsdb", 1, data_dir=temp_dir, clock=clock)
        assert len(await second.get_costs(2024, 3)) == 1

    @pytest.mark.asyncio
    async def test_upgrade_in_place(self, temp_dir, clock):
        """Verify opening with a newer version upgrades without losing data."""
        first = await open_ledger("costsdb", 1, data_dir=temp_dir, clock=clock)
        await first.add_cost({"sum": 10, "currency": "USD"})

        upgraded = await open_ledger("costsdb", 2, data_dir=temp_dir, clock=clock)
        assert upgraded.schema_version == 2
        assert len(await upgraded.get_costs(2024, 3)) == 1

        conn = get_connection(upgraded.db_path)
        try:
            assert conn.execute("PRAGMA user_version").fetchone()[0] == 2
        finally:
            conn.close()

    @pytest.mark.asyncio
    async def test_older_version_rejected(self, temp_dir):
        """Verify a store is never opened with an older schema version."""
        await open_ledger("costsdb", 3, data_dir=temp_dir)
        with pytest.raises(StorageError, match="schema version"):
            await open_ledger("costsdb", 2, data_dir=temp_dir)

    @pytest.mark.asyncio
    async def test_concurrent_opens(self, temp_dir):
        """Verify simultaneous first opens of one store all succeed."""
        stores = await asyncio.gather(*(
            open_ledger("costsdb", 1, data_dir=temp_dir) for _ in range(5)
        ))
        assert len(stores) == 5

    @pytest.mark.asyncio
    async def test_unavailable_directory(self, temp_dir):
        """Verify a data directory that cannot be created is a storage error."""
        blocker = os.path.join(temp_dir, "not_a_dir")
        with open(blocker, "w") as f:
            f.write("x")

        with pytest.raises(StorageError):
            await open_ledger("costsdb", 1, data_dir=blocker)

    @pytest.mark.parametrize("name", ["", "   ", "a/b", None])
    @pytest.mark.asyncio
    async def test_invalid_store_name(self, temp_dir, name):
        """Verify store names are checked."""
        with pytest.raises(ValidationError):
            await open_ledger(name, 1, data_dir=temp_dir)

    @pytest.mark.parametrize("version", [0, -1, "1", 1.5, True])
    @pytest.mark.asyncio
    async def test_invalid_schema_version(self, temp_dir, version):
        """Verify schema versions must be integers >= 1."""
        with pytest.raises(ValidationError):
            await open_ledger("costsdb", version, data_dir=temp_dir)


class TestAddCost:
    """Test cost record insertion."""

    @pytest.mark.asyncio
    async def test_returns_semantic_fields_only(self, store):
        """Verify the write confirmation carries only caller fields."""
        stored = await store.add_cost({
            "sum": 100,
            "currency": "gbp",
            "category": "Food",
            "description": "lunch",
        })

        assert stored == StoredCost(sum=100.0, currency="GBP", category="Food", description="lunch")
        assert stored.to_dict() == {
            "sum": 100.0,
            "currency": "GBP",
            "category": "Food",
            "description": "lunch",
        }

    @pytest.mark.asyncio
    async def test_record_stamped_from_clock(self, store, clock):
        """Verify creation time and date parts are captured at write time."""
        await store.add_cost({"sum": 12.5, "currency": "Euro", "category": "Books"})

        records = await store.get_costs(2024, 3)
        assert len(records) == 1
        record = records[0]
        assert record.sum == 12.5
        assert record.currency == "EUR"
        assert (record.year, record.month, record.day) == (2024, 3, 15)
        assert record.timestamp == int(clock.when.timestamp() * 1000)
        assert record.created_at == clock.when

    @pytest.mark.asyncio
    async def test_ids_increase(self, store):
        """Verify surrogate keys are monotonically increasing."""
        for amount in (1, 2, 3):
            await store.add_cost({"sum": amount})

        ids = [record.id for record in await store.get_costs(2024, 3)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    @pytest.mark.asyncio
    async def test_defaults(self, store):
        """Verify missing optional fields get defaults."""
        stored = await store.add_cost({"sum": 5})
        assert stored.currency == "USD"
        assert stored.category == "General"
        assert stored.description == ""

    @pytest.mark.asyncio
    async def test_store_default_currency(self, temp_dir, clock):
        """Verify the configured default code is used for missing currency."""
        store = await open_ledger("costsdb", 1, data_dir=temp_dir, default_currency="ils", clock=clock)
        assert (await store.add_cost({"sum": 5})).currency == "ILS"

    @pytest.mark.asyncio
    async def test_numeric_string_accepted(self, store):
        """Verify a numeric string sum is parsed."""
        assert (await store.add_cost({"sum": " 12.50 "})).sum == 12.5

    @pytest.mark.parametrize("amount", [
        0, -5, float("nan"), "abc", float("inf"), None, True, "", [10], "1e400", "1e-400",
    ])
    @pytest.mark.asyncio
    async def test_invalid_sum_rejected(self, store, amount):
        """Verify non-finite, non-positive and non-numeric sums are rejected."""
        with pytest.raises(ValidationError):
            await store.add_cost({"sum": amount, "currency": "USD"})

        assert await store.get_costs(2024, 3) == []

    @pytest.mark.asyncio
    async def test_non_mapping_rejected(self, store):
        """Verify the input must be a mapping."""
        with pytest.raises(ValidationError):
            await store.add_cost([("sum", 10)])

    @pytest.mark.asyncio
    async def test_concurrent_inserts(self, store):
        """Verify interleaved inserts are each committed once."""
        await asyncio.gather(*(
            store.add_cost({"sum": i + 1, "category": "Bulk"}) for i in range(10)
        ))
        records = await store.get_costs(2024, 3)
        assert len(records) == 10
        assert len({record.id for record in records}) == 10
        assert sorted(record.sum for record in records) == [float(i) for i in range(1, 11)]


class TestCostRetrieval:
    """Test period and category queries."""

    @pytest.mark.asyncio
    async def test_period_query_exact_match(self, store, clock):
        """Verify only records of the requested (year, month) are returned."""
        for when in (datetime(2024, 3, 1), datetime(2024, 4, 1), datetime(2023, 3, 31)):
            clock.when = when
            await store.add_cost({"sum": 10, "description": when.isoformat()})

        records = await store.get_costs(2024, 3)
        assert [record.description for record in records] == [datetime(2024, 3, 1).isoformat()]
        assert await store.get_costs(2025, 1) == []

    def test_period_query_uses_index(self, store):
        """Verify the period query is answered from the composite index."""
        conn = get_connection(store.db_path)
        try:
            plan = " ".join(
                str(row[-1]) for row in conn.execute(
                    f"EXPLAIN QUERY PLAN SELECT {COST_COLUMNS} FROM costs INDEXED BY by_year_month "
                    "WHERE year = ? AND month = ? ORDER BY id",
                    (2024, 3),
                )
            )
            assert "by_year_month" in plan
        finally:
            conn.close()

    @pytest.mark.asyncio
    async def test_invalid_period(self, store):
        """Verify the month must be 1-12."""
        with pytest.raises(ValidationError):
            await store.get_costs(2024, 13)

    @pytest.mark.asyncio
    async def test_category_query_is_case_sensitive(self, store):
        """Verify category matching is exact."""
        await store.add_cost({"sum": 10, "category": "Food"})
        await store.add_cost({"sum": 20, "category": "food"})
        await store.add_cost({"sum": 30, "category": "Food"})

        records = await store.get_costs_by_category("Food")
        assert [record.sum for record in records] == [10.0, 30.0]

    @pytest.mark.asyncio
    async def test_persistence_across_handles(self, store, temp_dir):
        """Verify data persists for a new handle on the same file."""
        await store.add_cost({"sum": 10})

        other = LedgerStore(store.db_path)
        assert len(await other.get_costs(2024, 3)) == 1


class TestRates:
    """Test the latest rate snapshot."""

    @pytest.mark.asyncio
    async def test_no_snapshot(self, store):
        """Verify None is returned before any rates are stored."""
        assert await store.get_latest_rates() is None
        assert await store.get_rates_snapshot() is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, store, clock):
        """Verify the stored table is normalized and stamped."""
        snapshot = await store.set_rates({"usd": 1, "GBP": 1.8, "EURO": 0.7})
        assert snapshot.id == "latest"
        assert snapshot.updated_at == int(clock.when.timestamp() * 1000)

        table = await store.get_latest_rates()
        assert table == snapshot.table
        assert table.base == "USD"
        assert table.rates == {"USD": 1, "GBP": Fraction(9, 5), "EUR": Fraction(7, 10)}

    @pytest.mark.asyncio
    async def test_wrapped_table_round_trips(self, store):
        """Verify a wrapped table is stored exactly."""
        snapshot = await store.set_rates({"base": "USD", "rates": {"GBP": 1.8, "EUR": 0.7}})
        table = await store.get_latest_rates()
        assert table == snapshot.table
        assert table.rates["EUR"] == Fraction(10, 7)

    @pytest.mark.asyncio
    async def test_replace_wholesale(self, store):
        """Verify a new snapshot fully replaces the previous one."""
        await store.set_rates({"USD": 1, "GBP": 1.8, "ILS": 3.4})
        await store.set_rates({"USD": 1, "EUR": 0.7})

        table = await store.get_latest_rates()
        assert set(table.rates) == {"USD", "EUR"}

        conn = get_connection(store.db_path)
        try:
            assert conn.execute("SELECT COUNT(*) FROM rates").fetchone()[0] == 1
        finally:
            conn.close()

    @pytest.mark.asyncio
    async def test_alias_merge_persisted(self, store):
        """Verify only the canonical spelling reaches the store."""
        await store.set_rates({"USD": 1, "EURO": 0.9, "EUR": 0.7})
        table = await store.get_latest_rates()
        assert table.rates["EUR"] == Fraction(7, 10)
        assert "EURO" not in table.rates

    @pytest.mark.parametrize("table", [None, [], "rates", {"USD": 1, "GBP": -1}, {"USD": 1, "GBP": "x"}])
    @pytest.mark.asyncio
    async def test_invalid_table_rejected(self, store, table):
        """Verify malformed tables are rejected and the old snapshot kept."""
        await store.set_rates({"USD": 1, "GBP": 1.8})

        with pytest.raises(ValidationError):
            await store.set_rates(table)

        assert set((await store.get_latest_rates()).rates) == {"USD", "GBP"}

    @pytest.mark.asyncio
    async def test_unreadable_snapshot(self, store):
        """Verify a corrupted stored snapshot is reported as a storage error."""
        await store.set_rates({"USD": 1})
        conn = get_connection(store.db_path)
        try:
            conn.execute("UPDATE rates SET payload = 'not json'")
        finally:
            conn.close()

        with pytest.raises(StorageError):
            await store.get_latest_rates()


class TestTransactions:
    """Test transaction boundaries."""

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, store):
        """Verify nothing is written when the block fails."""
        with pytest.raises(RuntimeError):
            with transaction(store.db_path, immediate=True) as conn:
                conn.execute(
                    "INSERT INTO costs (sum, currency, category, description, ts, year, month, day) "
                    "VALUES (1, 'USD', 'General', '', 0, 2024, 3, 1)"
                )
                raise RuntimeError("boom")

        assert await store.get_costs(2024, 3) == []

    def test_sqlite_error_becomes_storage_error(self, store):
        """Verify engine failures surface as StorageError."""
        with pytest.raises(StorageError):
            with transaction(store.db_path) as conn:
                conn.execute("SELECT * FROM missing_table")

    def test_constraint_violation_becomes_storage_error(self, store):
        """Verify the stored sum must stay positive even below the API."""
        with pytest.raises(StorageError):
            with transaction(store.db_path, immediate=True) as conn:
                conn.execute(
                    "INSERT INTO costs (sum, currency, category, description, ts, year, month, day) "
                    "VALUES (0, 'USD', 'General', '', 0, 2024, 3, 1)"
                )

    @pytest.mark.asyncio
    async def test_missing_store_file_directory(self, temp_dir):
        """Verify operations on an unreachable file fail with StorageError."""
        store = LedgerStore(os.path.join(temp_dir, "missing", "costsdb.sqlite3"))
        with pytest.raises(StorageError):
            await store.get_costs(2024, 3)

"""
Database connection management.

Provides SQLite connections and per-operation transactions.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from cost_ledger.core.errors import StorageError

STORE_SUFFIX = ".sqlite3"


def store_path(data_dir: Union[str, Path], store_name: str) -> Path:
    """Return the database file path for a named store."""
    return Path(data_dir) / f"{store_name}{STORE_SUFFIX}"


def get_connection(db_path: Union[str, Path], timeout: float = 5.0) -> sqlite3.Connection:
    """Create and return a SQLite connection in manual transaction mode.

    Transactions are opened explicitly with BEGIN so each ledger operation
    controls its own atomic boundary.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait on a locked database

    Returns:
        SQLite connection with row access by column name
    """
    conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA synchronous = FULL")
    return conn


@contextmanager
def transaction(db_path: Union[str, Path], immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Run a block inside one SQLite transaction.

    Commits when the block completes, rolls back on any exception.
    SQLite failures are re-raised as StorageError; other exceptions
    propagate unchanged.

    Args:
        db_path: Path to SQLite database file
        immediate: Take the write lock at BEGIN (for writes and schema changes)
    """
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise StorageError(f"Cannot open store {db_path}: {e}") from e

    try:
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        yield conn
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise StorageError(f"Transaction failed on {db_path}: {e}") from e
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()

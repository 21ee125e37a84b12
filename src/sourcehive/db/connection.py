"""SQLite connection layer with sqlite-vec extension.

Every store (session, registry, global) is a WAL-mode SQLite file. Writes go
through ``transaction()``, which serialises writers per physical store and
rolls back the whole unit of work on failure.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec

from sourcehive.errors import PersistenceError

_LOCKS_GUARD = threading.Lock()
_WRITE_LOCKS: dict[str, threading.RLock] = {}


def write_lock_for(db_path: Path | str) -> threading.RLock:
    """Return the process-wide writer lock for the store at *db_path*.

    Two Database objects pointing at the same file share one lock.
    """
    key = str(Path(db_path).expanduser().resolve())
    with _LOCKS_GUARD:
        lock = _WRITE_LOCKS.get(key)
        if lock is None:
            lock = _WRITE_LOCKS[key] = threading.RLock()
        return lock


class Database:
    """One SQLite store with sqlite-vec vector functions loaded."""

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def write_lock(self) -> threading.RLock:
        return write_lock_for(self.db_path)

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None


@contextmanager
def transaction(
    conn: sqlite3.Connection, lock: threading.RLock | None = None
) -> Iterator[sqlite3.Connection]:
    """Run the enclosed block as one write transaction.

    Commits on success. On any exception the whole transaction is rolled back;
    ``sqlite3.Error`` is re-raised as PersistenceError, anything else as-is.
    A nested call joins the already open transaction.

    Args:
        conn: Open connection.
        lock: Writer lock of the store (see write_lock_for). Optional.
    """
    if lock is not None:
        lock.acquire()
    try:
        if conn.in_transaction:
            yield conn
            return
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"transaction rolled back: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
    finally:
        if lock is not None:
            lock.release()

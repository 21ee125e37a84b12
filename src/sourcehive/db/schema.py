"""Schema initialization for session, registry and global stores."""

from __future__ import annotations

import sqlite3

from sourcehive.db.migrations import MIGRATIONS, run_migrations

STORE_KINDS: tuple[str, ...] = tuple(MIGRATIONS)


def initialize(conn: sqlite3.Connection, kind: str = "session") -> None:
    """Initialize the schema of a *kind* store via the migration runner (idempotent)."""
    run_migrations(conn, kind)

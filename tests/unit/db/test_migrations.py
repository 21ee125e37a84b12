"""Tests for the forward-only migration runner."""

from __future__ import annotations

import pytest

from sourcehive.db.connection import Database
from sourcehive.db.migrations import MIGRATIONS, current_version, run_migrations
from sourcehive.db.schema import STORE_KINDS, initialize


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone() is not None


def test_store_kinds():
    assert set(STORE_KINDS) == {"session", "registry", "global"}


@pytest.mark.parametrize("kind", ["session", "registry", "global"])
def test_records_latest_version(tmp_path, kind):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn, kind)
    assert current_version(conn) == MIGRATIONS[kind][-1][0]
    conn.close()


@pytest.mark.parametrize("kind", ["session", "registry", "global"])
def test_idempotent(tmp_path, kind):
    conn = _fresh_conn(tmp_path)
    initialize(conn, kind)
    initialize(conn, kind)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS[kind])
    conn.close()


def test_session_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn, "session")
    for table in (
        "sources",
        "chunks",
        "chunks_fts",
        "jobs",
        "job_steps",
        "citations",
        "claims",
        "reports",
        "store_meta",
    ):
        assert _table_exists(conn, table), table
    conn.close()


def test_registry_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn, "registry")
    assert _table_exists(conn, "sessions")
    assert not _table_exists(conn, "chunks")
    conn.close()


def test_global_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn, "global")
    assert _table_exists(conn, "global_chunks")
    assert _table_exists(conn, "global_chunks_fts")
    conn.close()


def test_unknown_kind_raises(tmp_path):
    conn = _fresh_conn(tmp_path)
    with pytest.raises(ValueError, match="Unknown store kind"):
        run_migrations(conn, "archive")
    conn.close()


def test_fts_uses_porter_tokenizer(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn, "session")
    conn.execute("INSERT INTO chunks_fts(rowid, text) VALUES (1, 'running batteries')")
    hit = conn.execute(
        "SELECT rowid FROM chunks_fts WHERE chunks_fts MATCH 'battery'"
    ).fetchone()
    assert hit is not None
    conn.close()

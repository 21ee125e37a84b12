"""Tests for SessionManager: registry, per-session stores and deletion."""

from __future__ import annotations

import sqlite3

import pytest

from sourcehive.db.models import DomainPack, GlobalChunk, SessionStatus, SourceType
from sourcehive.errors import SessionNotFound
from sourcehive.sessions import SessionManager


@pytest.fixture
def manager(hive_config):
    with SessionManager(hive_config) as m:
        yield m


def test_layout_under_data_root(manager, hive_config):
    root = hive_config.storage.root
    assert (root / "registry.db").exists()
    assert (root / "global.db").exists()


def test_create_session_creates_store(manager):
    session = manager.create_session("  Solar survey ", domain_pack=DomainPack.MAKER_MATERIALS, tags=["pv"])
    assert session.title == "Solar survey"
    assert manager.store_path(session.id).exists()
    stored = manager.get_session(session.id)
    assert stored.domain_pack == DomainPack.MAKER_MATERIALS
    assert stored.tags == ["pv"]


def test_create_session_rejects_blank_title(manager):
    with pytest.raises(ValueError):
        manager.create_session("   ")


def test_get_unknown_session(manager):
    with pytest.raises(SessionNotFound):
        manager.get_session("nope")
    with pytest.raises(SessionNotFound):
        manager.open_store("nope")


def test_list_and_update_sessions(manager):
    first = manager.create_session("one")
    manager.create_session("two")
    first.status = SessionStatus.ARCHIVED
    manager.update_session(first)
    assert [s.id for s in manager.list_sessions(SessionStatus.ARCHIVED)] == [first.id]
    assert len(manager.list_sessions()) == 2


def test_open_store_is_cached(manager):
    session = manager.create_session("cached")
    assert manager.open_store(session.id) is manager.open_store(session.id)


def test_delete_session_removes_store_and_global_chunks(manager):
    session = manager.create_session("doomed")
    manager.open_store(session.id)
    manager.global_repo.upsert_chunks(
        [GlobalChunk(id="g1", session_id=session.id, source_type=SourceType.REPORT, text="kept?")]
    )
    path = manager.store_path(session.id)

    assert manager.delete_session(session.id) is True

    assert not path.exists()
    assert manager.global_repo.count() == 0
    with pytest.raises(SessionNotFound):
        manager.get_session(session.id)
    assert manager.delete_session(session.id) is False


def test_delete_session_can_keep_global_chunks(manager):
    session = manager.create_session("kept")
    manager.global_repo.upsert_chunks(
        [GlobalChunk(id="g1", session_id=session.id, source_type=SourceType.REPORT, text="kept")]
    )
    manager.delete_session(session.id, purge_global=False)
    assert manager.global_repo.count() == 1


def test_close_closes_connections(hive_config):
    manager = SessionManager(hive_config)
    session = manager.create_session("short lived")
    repo = manager.open_store(session.id)
    manager.close()
    with pytest.raises(sqlite3.ProgrammingError):
        repo.count_chunks()

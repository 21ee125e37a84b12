"""Tests for RegistryRepository."""

from __future__ import annotations

import pytest

from sourcehive.db.connection import Database
from sourcehive.db.models import DomainPack, Session, SessionStatus
from sourcehive.db.registry import RegistryRepository
from sourcehive.db.schema import initialize
from sourcehive.errors import SessionNotFound


@pytest.fixture
def registry(tmp_path):
    conn = Database(tmp_path / "registry.db").connect()
    initialize(conn, "registry")
    yield RegistryRepository(conn)
    conn.close()


def _session(id="s1", title="Solar survey", status=SessionStatus.ACTIVE):
    return Session(
        id=id,
        title=title,
        domain_pack=DomainPack.MAKER_MATERIALS,
        status=status,
        tags=["energy"],
    )


def test_add_and_get(registry):
    registry.add_session(_session())
    session = registry.get_session("s1")
    assert session.title == "Solar survey"
    assert session.domain_pack == DomainPack.MAKER_MATERIALS
    assert session.tags == ["energy"]


def test_get_missing(registry):
    assert registry.get_session("nope") is None


def test_update_bumps_updated_utc(registry):
    session = _session()
    registry.add_session(session)
    before = session.updated_utc
    session.last_report_summary = "Panels work."
    registry.update_session(session)
    stored = registry.get_session("s1")
    assert stored.last_report_summary == "Panels work."
    assert stored.updated_utc >= before


def test_update_missing_raises(registry):
    with pytest.raises(SessionNotFound):
        registry.update_session(_session(id="ghost"))


def test_list_by_status(registry):
    registry.add_session(_session("a"))
    registry.add_session(_session("b", status=SessionStatus.ARCHIVED))
    assert {s.id for s in registry.list_sessions()} == {"a", "b"}
    assert [s.id for s in registry.list_sessions(SessionStatus.ARCHIVED)] == ["b"]


def test_delete(registry):
    registry.add_session(_session())
    assert registry.delete_session("s1") is True
    assert registry.delete_session("s1") is False

"""Repository for the process-wide session registry."""

from __future__ import annotations

import json
import sqlite3
import threading

from sourcehive.db.connection import transaction
from sourcehive.db.models import DomainPack, Session, SessionStatus, utc_now
from sourcehive.errors import SessionNotFound


class RegistryRepository:
    """CRUD for Session records. One row per session store on disk."""

    def __init__(
        self, conn: sqlite3.Connection, write_lock: threading.RLock | None = None
    ) -> None:
        self._conn = conn
        self._lock = write_lock

    def add_session(self, session: Session) -> None:
        with transaction(self._conn, self._lock):
            self._conn.execute(
                """
                INSERT INTO sessions (id, title, description, domain_pack, status, tags,
                                      created_utc, updated_utc, workspace_path, last_report_summary)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                _values(session),
            )

    def update_session(self, session: Session) -> None:
        """Overwrite every mutable field of *session* and bump updated_utc.

        Raises:
            SessionNotFound: If no row has the session's id.
        """
        session.updated_utc = utc_now()
        with transaction(self._conn, self._lock):
            cur = self._conn.execute(
                """
                UPDATE sessions
                SET title = ?, description = ?, domain_pack = ?, status = ?, tags = ?,
                    created_utc = ?, updated_utc = ?, workspace_path = ?, last_report_summary = ?
                WHERE id = ?
                """,
                (*_values(session)[1:], session.id),
            )
            if cur.rowcount == 0:
                raise SessionNotFound(session.id)

    def get_session(self, session_id: str) -> Session | None:
        row = self._conn.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return _row_to_session(row) if row else None

    def list_sessions(self, status: SessionStatus | None = None) -> list[Session]:
        """Return sessions most recently updated first."""
        if status is None:
            rows = self._conn.execute(
                "SELECT * FROM sessions ORDER BY updated_utc DESC, id"
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM sessions WHERE status = ? ORDER BY updated_utc DESC, id",
                (status.value,),
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_session(self, session_id: str) -> bool:
        with transaction(self._conn, self._lock):
            cur = self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return cur.rowcount > 0


def _values(s: Session) -> tuple[object, ...]:
    return (
        s.id,
        s.title,
        s.description,
        s.domain_pack.value,
        s.status.value,
        json.dumps(s.tags),
        s.created_utc,
        s.updated_utc,
        s.workspace_path,
        s.last_report_summary,
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        domain_pack=DomainPack(row["domain_pack"]),
        status=SessionStatus(row["status"]),
        tags=json.loads(row["tags"]),
        created_utc=row["created_utc"],
        updated_utc=row["updated_utc"],
        workspace_path=row["workspace_path"],
        last_report_summary=row["last_report_summary"],
    )

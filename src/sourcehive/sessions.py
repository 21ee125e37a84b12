"""Session registry plus the per-session stores it indexes.

Layout under ``storage.data_root``::

    registry.db            sessions index
    global.db              promoted chunks (global memory)
    sessions/<id>.db       one store per session
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from sourcehive.config import HiveConfig
from sourcehive.db.connection import Database
from sourcehive.db.global_store import GlobalRepository
from sourcehive.db.models import DomainPack, Session, SessionStatus, new_id
from sourcehive.db.registry import RegistryRepository
from sourcehive.db.repository import SessionRepository
from sourcehive.db.schema import initialize
from sourcehive.errors import SessionNotFound

logger = logging.getLogger(__name__)


class SessionManager:
    """Opens the registry, the global store and session stores on demand.

    Connections are cached per store and closed by ``close()``; use the
    manager as a context manager in short-lived callers.
    """

    def __init__(self, config: HiveConfig) -> None:
        self._config = config
        self._conns: dict[str, sqlite3.Connection] = {}
        self._stores: dict[str, SessionRepository] = {}

        registry_db = Database(config.storage.registry_path)
        self._registry_conn = registry_db.connect()
        initialize(self._registry_conn, "registry")
        self._registry = RegistryRepository(self._registry_conn, registry_db.write_lock)

        global_db = Database(config.storage.global_path)
        self._global_conn = global_db.connect()
        initialize(self._global_conn, "global")
        self._global = GlobalRepository(self._global_conn, global_db.write_lock)

    def __enter__(self) -> SessionManager:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def registry(self) -> RegistryRepository:
        return self._registry

    @property
    def global_repo(self) -> GlobalRepository:
        return self._global

    def store_path(self, session_id: str) -> Path:
        return self._config.storage.sessions_dir / f"{session_id}.db"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        title: str,
        *,
        description: str = "",
        domain_pack: DomainPack = DomainPack.GENERAL_RESEARCH,
        tags: list[str] | None = None,
        workspace_path: str | None = None,
    ) -> Session:
        """Register a session and create its (empty) store."""
        if not title.strip():
            raise ValueError("session title must not be empty")
        session = Session(
            id=new_id(),
            title=title.strip(),
            description=description,
            domain_pack=domain_pack,
            tags=list(tags or []),
            workspace_path=workspace_path,
        )
        self.open_store(session.id, create=True)
        self._registry.add_session(session)
        logger.info("session_created", extra={"session_id": session.id, "title": session.title})
        return session

    def get_session(self, session_id: str) -> Session:
        """Raises SessionNotFound if *session_id* is not registered."""
        session = self._registry.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list_sessions(self, status: SessionStatus | None = None) -> list[Session]:
        return self._registry.list_sessions(status)

    def update_session(self, session: Session) -> None:
        self._registry.update_session(session)

    def delete_session(self, session_id: str, *, purge_global: bool = True) -> bool:
        """Remove a session, its store file and (by default) its promoted chunks.

        Returns False if the session was not registered.
        """
        if self._registry.get_session(session_id) is None:
            return False
        conn = self._conns.pop(session_id, None)
        self._stores.pop(session_id, None)
        if conn is not None:
            conn.close()

        path = self.store_path(session_id)
        for suffix in ("", "-wal", "-shm"):
            Path(f"{path}{suffix}").unlink(missing_ok=True)

        purged = self._global.delete_by_session(session_id) if purge_global else 0
        self._registry.delete_session(session_id)
        logger.info(
            "session_deleted", extra={"session_id": session_id, "global_chunks_purged": purged}
        )
        return True

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def open_store(self, session_id: str, *, create: bool = False) -> SessionRepository:
        """Return the (cached) repository of a session store.

        Raises:
            SessionNotFound: If the session is unknown and *create* is False.
        """
        if session_id in self._stores:
            return self._stores[session_id]
        if not create and self._registry.get_session(session_id) is None:
            raise SessionNotFound(session_id)

        db = Database(self.store_path(session_id))
        conn = db.connect()
        initialize(conn, "session")
        repo = SessionRepository(conn, db.write_lock)
        self._conns[session_id] = conn
        self._stores[session_id] = repo
        return repo

    def close(self) -> None:
        for conn in self._conns.values():
            conn.close()
        self._conns.clear()
        self._stores.clear()
        self._registry_conn.close()
        self._global_conn.close()

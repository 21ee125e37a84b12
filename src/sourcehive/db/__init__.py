"""SourceHive storage layer."""

from sourcehive.db.connection import Database, transaction, write_lock_for
from sourcehive.db.global_store import GlobalRepository
from sourcehive.db.migrations import MIGRATIONS, run_migrations
from sourcehive.db.registry import RegistryRepository
from sourcehive.db.repository import SessionRepository, SourceDeletion
from sourcehive.db.schema import initialize

__all__ = [
    "Database",
    "GlobalRepository",
    "MIGRATIONS",
    "RegistryRepository",
    "SessionRepository",
    "SourceDeletion",
    "initialize",
    "run_migrations",
    "transaction",
    "write_lock_for",
]

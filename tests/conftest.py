"""Shared pytest fixtures."""

from __future__ import annotations

import re
import zlib

import pytest

from sourcehive.config import HiveConfig, JobsCfg, RoutingCfg, StorageCfg
from sourcehive.db.connection import Database
from sourcehive.db.global_store import GlobalRepository
from sourcehive.db.repository import SessionRepository
from sourcehive.db.schema import initialize
from sourcehive.llm.providers import LlmResponse

# Works as a plan (bullet queries), a synthesis draft (cited claims with
# the two named sections) and a summary.
DEFAULT_REPLY = """Plan: look at panel output and storage.
- solar panel efficiency
- battery storage capacity

## Most Supported View
Solar panels convert sunlight into electricity with rising efficiency [1].

## Credible Alternatives
Battery storage capacity limits how much solar output is usable at night [2].
"""


class FakeEmbedder:
    """Deterministic bag-of-words vectors; shared words give close vectors."""

    dimensions = 16

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise ConnectionError("embedding endpoint unreachable")
        vector = [0.01] * self.dimensions
        for word in re.findall(r"[a-z]+", text.lower()):
            vector[zlib.crc32(word.encode()) % self.dimensions] += 1.0
        return vector


class FakeProvider:
    """LlmProvider double that records calls and replies with canned text."""

    def __init__(
        self,
        name: str = "local",
        reply: str = DEFAULT_REPLY,
        *,
        fail: bool = False,
        truncated: bool = False,
    ) -> None:
        self.name = name
        self.reply = reply
        self.fail = fail
        self.truncated = truncated
        self.calls: list[dict] = []

    async def generate(self, prompt, system_prompt=None, max_tokens=None, model=None):
        self.calls.append(
            {
                "prompt": prompt,
                "system_prompt": system_prompt,
                "max_tokens": max_tokens,
                "model": model,
            }
        )
        if self.fail:
            raise ConnectionError(f"{self.name} unavailable")
        return LlmResponse(
            text=self.reply,
            was_truncated=self.truncated,
            model=model or "fake-model",
            duration_ms=1,
        )


@pytest.fixture
def tmp_db(tmp_path):
    """File-based session store in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "session.db")
    conn = db.connect()
    initialize(conn, "session")
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return SessionRepository(tmp_db)


@pytest.fixture
def global_db(tmp_path):
    db = Database(tmp_path / "global.db")
    conn = db.connect()
    initialize(conn, "global")
    yield conn
    conn.close()


@pytest.fixture
def global_repo(global_db):
    return GlobalRepository(global_db)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def make_embedder():
    return FakeEmbedder


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def hive_config(tmp_path) -> HiveConfig:
    """Offline config: local-only routing, no backoff, small job limits."""
    return HiveConfig(
        storage=StorageCfg(data_root=str(tmp_path / "data")),
        routing=RoutingCfg(
            strategy="local_only",
            cloud=None,
            max_attempts=2,
            backoff_base_seconds=0.0,
            jitter=False,
            failure_threshold=3,
        ),
        jobs=JobsCfg(target_source_count=3, max_iterations=2),
    )

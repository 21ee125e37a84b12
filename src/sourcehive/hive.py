"""SourceHive facade: one object wiring config, stores, retrieval, routing and jobs.

Exposes the public operations (hybrid search, job submission and control,
citations and the claim ledger, global memory) keyed by session id.
Collaborators are injected so tests can run without network access; use
``SourceHive.from_config`` for the litellm-backed defaults.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from sourcehive.concurrency import ResourcePools
from sourcehive.config import HiveConfig
from sourcehive.db.models import (
    Citation,
    ClaimLedgerEntry,
    JobState,
    JobStep,
    JobType,
    Report,
    ResearchJob,
    SearchFilter,
    SourceType,
)
from sourcehive.db.repository import SessionRepository, SourceDeletion
from sourcehive.errors import IntegrityViolation
from sourcehive.evidence.ledger import ClaimLedger
from sourcehive.ingest.indexer import Indexer, IndexResult
from sourcehive.jobs.acquire import (
    FetchingAcquirer,
    LocalCorpusAcquirer,
    PageFetcher,
    SourceAcquirer,
)
from sourcehive.jobs.runner import ResearchJobRunner
from sourcehive.jobs.service import JobService
from sourcehive.llm.providers import (
    EmbeddingProvider,
    LiteLlmEmbedder,
    LiteLlmProvider,
    LlmProvider,
)
from sourcehive.llm.router import ModelRouter
from sourcehive.memory.global_memory import GlobalMemory, MemoryScope
from sourcehive.retrieval.hybrid import HybridRetriever, ScoredChunk
from sourcehive.sessions import SessionManager

logger = logging.getLogger(__name__)

AcquirerFactory = Callable[[SessionRepository, HybridRetriever], SourceAcquirer]


class SourceHive:
    """Process-level entry point.

    Args:
        config: Loaded HiveConfig.
        providers: LLM providers keyed ``"local"`` / ``"cloud"``.
        embedder: Embedding provider; None disables the semantic lane.
        acquirer_factory: Builds the Searching-phase acquirer for a session
            store. Without one, a FetchingAcquirer is used when *fetcher* is
            given and a LocalCorpusAcquirer otherwise.
        fetcher: Network/browser collaborator for web acquisition.
        sleep: Coroutine used for retry backoff; injectable for tests.
    """

    def __init__(
        self,
        config: HiveConfig,
        *,
        providers: dict[str, LlmProvider],
        embedder: EmbeddingProvider | None = None,
        acquirer_factory: AcquirerFactory | None = None,
        fetcher: PageFetcher | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._sessions = SessionManager(config)
        self._pools = ResourcePools(config.concurrency)
        self._embedder = embedder
        self._router = ModelRouter(config.routing, providers, sleep=sleep)
        self._retriever = HybridRetriever(config.retrieval, embedder, self._pools)
        self._memory = GlobalMemory(
            self._sessions.global_repo, self._retriever, self._router, embedder
        )
        self._acquirer_factory = acquirer_factory
        self._fetcher = fetcher
        self._services: dict[str, JobService] = {}

    @classmethod
    def from_config(cls, config: HiveConfig) -> SourceHive:
        """Build a hive backed by litellm for every provider in *config*."""
        timeout = config.routing.timeout_seconds
        providers: dict[str, LlmProvider] = {
            "local": LiteLlmProvider("local", config.routing.local, timeout)
        }
        if config.routing.cloud is not None:
            providers["cloud"] = LiteLlmProvider("cloud", config.routing.cloud, timeout)
        return cls(config, providers=providers, embedder=LiteLlmEmbedder(config.embedding))

    def __enter__(self) -> SourceHive:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        self._sessions.close()

    @property
    def config(self) -> HiveConfig:
        return self._config

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def router(self) -> ModelRouter:
        return self._router

    @property
    def memory(self) -> GlobalMemory:
        return self._memory

    def store(self, session_id: str) -> SessionRepository:
        return self._sessions.open_store(session_id)

    # ------------------------------------------------------------------
    # Ingestion and retrieval
    # ------------------------------------------------------------------

    async def ingest(
        self,
        session_id: str,
        paths: list[Path],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[IndexResult]:
        """Index local files into a session store, one atomic write per file.

        Raises:
            OperationCancelled: If *cancel_event* is set; files indexed before
                the request stay stored.
        """
        indexer = Indexer(self.store(session_id), self._embedder, self._pools)
        return [
            await indexer.index_file(session_id, path, cancel_event=cancel_event)
            for path in paths
        ]

    async def hybrid_search(
        self,
        session_id: str,
        query: str,
        *,
        source_types: tuple[SourceType, ...] | None = None,
        top_k: int | None = None,
    ) -> list[ScoredChunk]:
        return await self._retriever.search(
            self.store(session_id), query, SearchFilter(source_types=source_types), top_k
        )

    def delete_source(self, session_id: str, source_id: str) -> SourceDeletion:
        return self.store(session_id).delete_source(source_id)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def jobs(self, session_id: str) -> JobService:
        """The JobService of a session (built on first use)."""
        if session_id in self._services:
            return self._services[session_id]
        session = self._sessions.get_session(session_id)
        repo = self.store(session_id)
        runner = ResearchJobRunner(
            repo,
            self._router,
            self._retriever,
            self._acquirer(repo),
            self._config.jobs,
            memory=self._memory,
            domain_pack=session.domain_pack,
        )
        service = JobService(repo, runner, self._config.jobs)
        self._services[session_id] = service
        return service

    def _acquirer(self, repo: SessionRepository) -> SourceAcquirer:
        if self._acquirer_factory is not None:
            return self._acquirer_factory(repo, self._retriever)
        if self._fetcher is not None:
            indexer = Indexer(repo, self._embedder, self._pools)
            return FetchingAcquirer(repo, indexer, self._pools, self._fetcher)
        return LocalCorpusAcquirer(repo, self._retriever)

    def submit(
        self,
        session_id: str,
        prompt: str,
        job_type: JobType = JobType.RESEARCH,
        *,
        target_source_count: int | None = None,
        max_iterations: int | None = None,
    ) -> ResearchJob:
        return self.jobs(session_id).submit(
            session_id,
            prompt,
            job_type,
            target_source_count=target_source_count,
            max_iterations=max_iterations,
        )

    async def run(self, session_id: str, job_id: str) -> ResearchJob:
        """Run a submitted (or interrupted) job to a terminal state."""
        return await self.jobs(session_id).run(job_id)

    def start(self, session_id: str, job_id: str) -> asyncio.Task[ResearchJob]:
        return self.jobs(session_id).start(job_id)

    def resume(self, session_id: str, job_id: str) -> asyncio.Task[ResearchJob]:
        return self.jobs(session_id).resume(job_id)

    def cancel(self, session_id: str, job_id: str) -> bool:
        return self.jobs(session_id).cancel(job_id)

    def get_job(self, session_id: str, job_id: str) -> ResearchJob | None:
        return self.store(session_id).get_job(job_id)

    def list_jobs(
        self, session_id: str, states: list[JobState] | None = None
    ) -> list[ResearchJob]:
        return self.store(session_id).list_jobs(states)

    def get_job_steps(self, session_id: str, job_id: str) -> list[JobStep]:
        return self.store(session_id).get_job_steps(job_id)

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def get_citations(self, session_id: str, job_id: str) -> list[Citation]:
        return self.store(session_id).get_citations(job_id)

    def get_claim_ledger(self, session_id: str, job_id: str) -> list[ClaimLedgerEntry]:
        return self.store(session_id).get_claim_ledger(job_id)

    def get_reports(self, session_id: str, job_id: str) -> list[Report]:
        return self.store(session_id).get_reports(job_id)

    def verify_claims(self, session_id: str, job_id: str) -> list[IntegrityViolation]:
        """Re-run the integrity check on a job's ledger; defects are downgraded."""
        return ClaimLedger(self.store(session_id)).verify(job_id)

    # ------------------------------------------------------------------
    # Global memory
    # ------------------------------------------------------------------

    def promote(
        self,
        session_id: str,
        *,
        chunk_ids: list[str] | None = None,
        job_id: str | None = None,
        repo_url: str | None = None,
        max_chunks: int = 100,
    ) -> int:
        """Copy session chunks into global memory. Idempotent.

        With *chunk_ids* exactly those chunks are promoted; otherwise the
        session's most valuable embedded chunks, up to *max_chunks*.
        """
        session = self._sessions.get_session(session_id)
        repo = self.store(session_id)
        if chunk_ids is None:
            return self._memory.promote_session(
                repo, domain_pack=session.domain_pack, max_chunks=max_chunks, repo_url=repo_url
            )
        chunks = [c for c in (repo.get_chunk(cid) for cid in chunk_ids) if c is not None]
        return self._memory.promote(
            chunks, job_id=job_id, domain_pack=session.domain_pack, repo_url=repo_url
        )

    async def query_global(
        self,
        query: str,
        scope: MemoryScope = MemoryScope.HIVE_MIND,
        *,
        session_id: str | None = None,
        repo_url: str | None = None,
        source_types: tuple[SourceType, ...] | None = None,
        top_k: int | None = None,
    ) -> list[ScoredChunk]:
        """Search global memory. A this_domain scope uses the session's domain pack."""
        domain_pack = None
        if scope == MemoryScope.THIS_DOMAIN and session_id is not None:
            domain_pack = self._sessions.get_session(session_id).domain_pack
        return await self._memory.query_global(
            query,
            scope,
            session_id=session_id,
            repo_url=repo_url,
            domain_pack=domain_pack,
            source_types=source_types,
            top_k=top_k,
        )

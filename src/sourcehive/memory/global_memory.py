"""Cross-session global memory ("hive mind").

Promotion COPIES session chunks into the global store under the id
``promo_{session_id}_{chunk_id}``; re-promoting overwrites that row, so the
operation is idempotent. Queries reuse the hybrid retriever, scoped to one
session, one repository, one domain pack, or everything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sourcehive.db.global_store import GlobalRepository
from sourcehive.db.models import (
    Chunk,
    DomainPack,
    GlobalChunk,
    ResearchJob,
    SearchFilter,
    SourceType,
)
from sourcehive.db.repository import SessionRepository
from sourcehive.errors import PersistenceError, RoutingExhaustedError
from sourcehive.llm.providers import EmbeddingProvider
from sourcehive.llm.router import ModelRouter
from sourcehive.retrieval.hybrid import HybridRetriever, ScoredChunk

logger = logging.getLogger(__name__)

# Lower sorts first when choosing which session chunks to promote.
_PROMOTION_PRIORITY: dict[SourceType, int] = {
    SourceType.REPORT: 0,
    SourceType.REPO_DOC: 1,
    SourceType.REPO_CODE: 2,
}

_STRATEGY_SYSTEM = (
    "You are a research methodology expert. Extract reusable strategies from "
    "completed research jobs. Be concrete and specific."
)

_ASK_SYSTEM = (
    "You are a research analyst with access to a knowledge base spanning multiple "
    "research sessions. Answer using ONLY the provided context. If the context is "
    "insufficient, say so."
)


class MemoryScope(str, Enum):
    THIS_SESSION = "this_session"
    THIS_REPO = "this_repo"
    THIS_DOMAIN = "this_domain"
    HIVE_MIND = "hive_mind"


@dataclass
class MemoryStats:
    total_chunks: int
    strategy_count: int
    source_types: list[SourceType]


def promoted_id(session_id: str, chunk_id: str) -> str:
    return f"promo_{session_id}_{chunk_id}"


def scope_filter(
    scope: MemoryScope,
    *,
    session_id: str | None = None,
    repo_url: str | None = None,
    domain_pack: DomainPack | None = None,
    source_types: tuple[SourceType, ...] | None = None,
) -> SearchFilter:
    """Build the global-store filter for *scope*.

    Raises:
        ValueError: If the scope needs a key that was not given.
    """
    if scope == MemoryScope.THIS_SESSION:
        if not session_id:
            raise ValueError("scope this_session needs a session_id")
        return SearchFilter(source_types=source_types, session_id=session_id)
    if scope == MemoryScope.THIS_REPO:
        if not repo_url:
            raise ValueError("scope this_repo needs a repo_url")
        return SearchFilter(source_types=source_types, repo_url=repo_url)
    if scope == MemoryScope.THIS_DOMAIN:
        if domain_pack is None:
            raise ValueError("scope this_domain needs a domain_pack")
        return SearchFilter(source_types=source_types, domain_pack=domain_pack)
    return SearchFilter(source_types=source_types)


class GlobalMemory:
    """Promote, query and curate the global store.

    Args:
        repo: Global store repository.
        retriever: Shared hybrid retriever.
        router: Model router for strategy extraction and ``ask``; optional.
        embedder: Embeds extracted strategies; optional.
    """

    def __init__(
        self,
        repo: GlobalRepository,
        retriever: HybridRetriever,
        router: ModelRouter | None = None,
        embedder: EmbeddingProvider | None = None,
    ) -> None:
        self._repo = repo
        self._retriever = retriever
        self._router = router
        self._embedder = embedder

    @property
    def repo(self) -> GlobalRepository:
        return self._repo

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def promote(
        self,
        chunks: list[Chunk],
        *,
        job_id: str | None = None,
        domain_pack: DomainPack | None = None,
        repo_url: str | None = None,
    ) -> int:
        """Copy *chunks* into the global store. Returns how many were written.

        Empty chunks are skipped. The session chunks are not modified.
        """
        promoted = [
            GlobalChunk(
                id=promoted_id(c.session_id, c.id),
                session_id=c.session_id,
                job_id=job_id,
                source_type=c.source_type,
                repo_url=repo_url,
                domain_pack=domain_pack,
                text=c.text,
                embedding=list(c.embedding) if c.embedding is not None else None,
                tags=[f"session:{c.session_id}", f"source:{c.source_type.value}"],
            )
            for c in chunks
            if c.text.strip()
        ]
        count = self._repo.upsert_chunks(promoted)
        logger.info("chunks_promoted", extra={"count": count, "job_id": job_id})
        return count

    def promote_session(
        self,
        session_repo: SessionRepository,
        *,
        domain_pack: DomainPack | None = None,
        max_chunks: int = 100,
        repo_url: str | None = None,
    ) -> int:
        """Promote a session's most valuable embedded chunks.

        Reports first, then repository docs, then repository code, then the
        rest; earlier chunks of a source before later ones.
        """
        candidates = [
            c for c in session_repo.list_chunks() if c.embedding is not None and c.text.strip()
        ]
        candidates.sort(
            key=lambda c: (_PROMOTION_PRIORITY.get(c.source_type, 3), c.chunk_index, c.id)
        )
        return self.promote(
            candidates[:max_chunks], domain_pack=domain_pack, repo_url=repo_url
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query_global(
        self,
        query: str,
        scope: MemoryScope = MemoryScope.HIVE_MIND,
        *,
        session_id: str | None = None,
        repo_url: str | None = None,
        domain_pack: DomainPack | None = None,
        source_types: tuple[SourceType, ...] | None = None,
        top_k: int | None = None,
    ) -> list[ScoredChunk[GlobalChunk]]:
        filt = scope_filter(
            scope,
            session_id=session_id,
            repo_url=repo_url,
            domain_pack=domain_pack,
            source_types=source_types,
        )
        return await self._retriever.search(self._repo, query, filt, top_k)

    async def ask(
        self,
        question: str,
        scope: MemoryScope = MemoryScope.HIVE_MIND,
        **scope_keys: object,
    ) -> str:
        """Answer *question* from global memory through the model router.

        Raises:
            RoutingExhaustedError: If no provider answered.
        """
        if self._router is None:
            raise RuntimeError("GlobalMemory.ask needs a model router")
        hits = await self.query_global(question, scope, **scope_keys)  # type: ignore[arg-type]
        if not hits:
            return "No relevant knowledge in global memory yet."
        context = "\n\n---\n\n".join(
            f"[{h.chunk.source_type.value}] (session: {h.chunk.session_id})\n{h.chunk.text}"
            for h in hits
        )
        response = await self._router.generate(
            f"Using this cross-session knowledge base:\n\n{context}\n\nQuestion: {question}",
            _ASK_SYSTEM,
            max_tokens=3000,
        )
        return response.text

    # ------------------------------------------------------------------
    # Strategy extraction
    # ------------------------------------------------------------------

    async def extract_strategy(
        self, job: ResearchJob, domain_pack: DomainPack | None = None
    ) -> GlobalChunk | None:
        """Distil a reusable strategy from a finished job into ``strategy_{job_id}``.

        Best effort: routing or storage failures are logged and yield None.
        """
        if self._router is None or not (job.full_report or job.executive_summary):
            return None

        excerpt = (job.full_report or "")[:3000]
        prompt = (
            "Analyze this completed research job and extract a reusable strategy.\n\n"
            f"Job prompt: {job.prompt}\n"
            f"Executive summary: {job.executive_summary or ''}\n"
            f"Report excerpt: {excerpt}\n"
            f"Outcome: {job.state.value}\n\n"
            "Give: task pattern, what worked, what to avoid, key insight, "
            "and a short reusable checklist. Under 500 words."
        )
        try:
            response = await self._router.generate(
                prompt, _STRATEGY_SYSTEM, max_tokens=800, tier="mini"
            )
            if not response.text.strip():
                return None
            embedding = None
            if self._embedder is not None:
                try:
                    embedding = await self._embedder.embed(response.text)
                except Exception as exc:
                    # Strategy without a vector is still keyword-searchable
                    logger.warning("strategy_embedding_failed", extra={"error": str(exc)})
            strategy = GlobalChunk(
                id=f"strategy_{job.id}",
                session_id=job.session_id,
                job_id=job.id,
                source_type=SourceType.STRATEGY,
                domain_pack=domain_pack,
                text=response.text,
                embedding=embedding,
                tags=[
                    f"session:{job.session_id}",
                    f"job:{job.id}",
                    "strategy",
                    f"outcome:{job.state.value}",
                ],
            )
            self._repo.upsert_chunks([strategy])
        except (RoutingExhaustedError, PersistenceError, ValueError) as exc:
            logger.warning(
                "strategy_extraction_failed", extra={"job_id": job.id, "error": str(exc)}
            )
            return None
        logger.info("strategy_extracted", extra={"job_id": job.id})
        return strategy

    # ------------------------------------------------------------------
    # Curation
    # ------------------------------------------------------------------

    def stats(self) -> MemoryStats:
        return MemoryStats(
            total_chunks=self._repo.count(),
            strategy_count=self._repo.count(SearchFilter(source_types=(SourceType.STRATEGY,))),
            source_types=self._repo.source_types(),
        )

    def browse(
        self, filt: SearchFilter | None = None, *, limit: int = 50, offset: int = 0
    ) -> list[GlobalChunk]:
        return self._repo.list_chunks(filt, limit=limit, offset=offset)

    def delete_chunk(self, chunk_id: str) -> bool:
        return self._repo.delete_chunk(chunk_id)

    def delete_session_chunks(self, session_id: str) -> int:
        return self._repo.delete_by_session(session_id)

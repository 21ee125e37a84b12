"""Hybrid retriever: BM25 (FTS5) + cosine (sqlite-vec), fused by weighted min-max.

  1. Keyword lane   store.search_keyword()   up to top_k * 4 hits
  2. Semantic lane  store.search_semantic()  up to top_k * 3 hits, restricted
                    to the sources the keyword lane found unless that leaves
                    fewer than top_k * 2 candidates
  3. Each lane is min-max normalised on its own, then
       combined = w_sem * norm_sem + w_kw * norm_kw
     with 0 for a lane that did not return the item.
  4. Deduplicate by id keeping the best score, sort, truncate to top_k.

A lane that errors degrades to the other one. The same retriever serves the
per-session store and the global store; both implement the store protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from sourcehive.concurrency import ResourcePools
from sourcehive.config import RetrievalCfg
from sourcehive.db.models import SearchFilter
from sourcehive.errors import RetrievalError
from sourcehive.llm.providers import EmbeddingProvider

logger = logging.getLogger(__name__)


class Identified(Protocol):
    id: str


T = TypeVar("T", bound=Identified)


class SearchableStore(Protocol[T]):
    def has_embeddings(self) -> bool: ...

    def search_keyword(self, query: str, filt: SearchFilter, limit: int = 10) -> list[tuple[T, float]]: ...

    def search_semantic(
        self,
        embedding: list[float],
        filt: SearchFilter,
        limit: int = 10,
        candidate_source_ids: set[str] | None = None,
    ) -> list[tuple[T, float]]: ...


@dataclass
class ScoredChunk(Generic[T]):
    """A retrieved item with its fused score and per-lane normalised scores.

    Attributes:
        chunk: Chunk (session store) or GlobalChunk (global store).
        score: Weighted fusion score in [0, 1]; higher = more relevant.
        semantic_score: Normalised semantic score, None if the lane missed it.
        keyword_score: Normalised keyword score, None if the lane missed it.
    """

    chunk: T
    score: float
    semantic_score: float | None = None
    keyword_score: float | None = None


# ------------------------------------------------------------------
# Fusion
# ------------------------------------------------------------------


def min_max_normalize(hits: list[tuple[T, float]]) -> dict[str, float]:
    """Map item id → score scaled to [0, 1]. Duplicate ids keep their best raw score.

    When every score is equal (including a single hit) all items get 1.0.
    """
    best: dict[str, float] = {}
    for item, raw in hits:
        if item.id not in best or raw > best[item.id]:
            best[item.id] = raw
    if not best:
        return {}
    lo, hi = min(best.values()), max(best.values())
    if hi - lo <= 1e-12:
        return {item_id: 1.0 for item_id in best}
    return {item_id: (raw - lo) / (hi - lo) for item_id, raw in best.items()}


def fuse(
    semantic: list[tuple[T, float]],
    keyword: list[tuple[T, float]],
    *,
    semantic_weight: float,
    keyword_weight: float,
    top_k: int,
) -> list[ScoredChunk[T]]:
    """Weighted min-max fusion of two ranked lists. Pure and deterministic.

    Ties are broken by item id so equal inputs always give equal output.
    """
    sem_norm = min_max_normalize(semantic)
    kw_norm = min_max_normalize(keyword)

    items: dict[str, T] = {}
    for item, _ in keyword:
        items.setdefault(item.id, item)
    for item, _ in semantic:
        items.setdefault(item.id, item)

    scored = [
        ScoredChunk(
            chunk=item,
            score=semantic_weight * sem_norm.get(item_id, 0.0)
            + keyword_weight * kw_norm.get(item_id, 0.0),
            semantic_score=sem_norm.get(item_id),
            keyword_score=kw_norm.get(item_id),
        )
        for item_id, item in items.items()
    ]
    scored.sort(key=lambda s: (-s.score, s.chunk.id))
    return scored[:top_k]


# ------------------------------------------------------------------
# Retriever
# ------------------------------------------------------------------


class HybridRetriever:
    """Ranks items of any SearchableStore for a free-text query.

    Args:
        config: Retrieval section of HiveConfig (weights, top_k, prefilter).
        embedder: Query embedder. None disables the semantic lane.
        pools: Resource pools; query embeddings take an embedding permit.
    """

    def __init__(
        self,
        config: RetrievalCfg,
        embedder: EmbeddingProvider | None = None,
        pools: ResourcePools | None = None,
    ) -> None:
        self._config = config
        self._embedder = embedder
        self._pools = pools

    @property
    def config(self) -> RetrievalCfg:
        return self._config

    async def search(
        self,
        store: SearchableStore[T],
        query: str,
        filt: SearchFilter | None = None,
        top_k: int | None = None,
    ) -> list[ScoredChunk[T]]:
        """Return at most *top_k* unique items, best first.

        Never raises for a single failed lane; an empty list means nothing matched.
        """
        filt = filt or SearchFilter()
        top_k = top_k or self._config.top_k

        keyword: list[tuple[T, float]] = []
        try:
            keyword = store.search_keyword(query, filt, limit=top_k * 4)
        except RetrievalError as exc:
            logger.warning("keyword_lane_failed", extra={"query": query, "error": str(exc)})

        semantic = await self._semantic_lane(store, query, filt, top_k, keyword)

        results = fuse(
            semantic,
            keyword,
            semantic_weight=self._config.semantic_weight,
            keyword_weight=self._config.keyword_weight,
            top_k=top_k,
        )
        logger.debug(
            "hybrid_search",
            extra={
                "query": query,
                "keyword_hits": len(keyword),
                "semantic_hits": len(semantic),
                "results": len(results),
            },
        )
        return results

    async def _semantic_lane(
        self,
        store: SearchableStore[T],
        query: str,
        filt: SearchFilter,
        top_k: int,
        keyword: list[tuple[T, float]],
    ) -> list[tuple[T, float]]:
        if self._embedder is None or not query.strip() or not store.has_embeddings():
            return []

        try:
            embedding = await self._embed(query)
        except Exception as exc:
            # Fall back to keyword ranking
            logger.warning("query_embedding_failed", extra={"query": query, "error": str(exc)})
            return []

        candidates: set[str] | None = None
        if self._config.candidate_prefilter:
            source_ids = {getattr(item, "source_id", None) for item, _ in keyword}
            source_ids.discard(None)
            candidates = source_ids or None  # type: ignore[assignment]

        limit = top_k * 3
        try:
            hits = store.search_semantic(embedding, filt, limit, candidates)
            if candidates is not None and len(hits) < top_k * 2:
                # Too few candidates: scan the whole scope instead
                hits = store.search_semantic(embedding, filt, limit, None)
        except RetrievalError as exc:
            logger.warning("semantic_lane_failed", extra={"query": query, "error": str(exc)})
            return []
        return hits

    async def _embed(self, text: str) -> list[float]:
        assert self._embedder is not None
        if self._pools is None:
            return await self._embedder.embed(text)
        async with self._pools.embedding_slot():
            return await self._embedder.embed(text)

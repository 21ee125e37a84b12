"""Indexer: extract → chunk → embed → write one source and its chunks atomically.

Embeddings are produced through the bounded embedding pool. A chunk whose
embedding fails is still stored (keyword-searchable) and can be back-filled
later with ``embed_missing``. Chunks are embedded in batches and an optional
cancel event is checked before each batch; a cancelled index writes nothing.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

from sourcehive.concurrency import ResourcePools
from sourcehive.db.models import Chunk, Source, SourceType, new_id
from sourcehive.db.repository import SessionRepository
from sourcehive.errors import OperationCancelled
from sourcehive.ingest.chunker import TextChunker
from sourcehive.ingest.extract import extract_text, source_type_for
from sourcehive.llm.providers import EmbeddingProvider

logger = logging.getLogger(__name__)

EMBED_BATCH_SIZE = 32


@dataclass
class IndexResult:
    locator: str
    source_id: str
    chunks: int = 0
    embedded: int = 0
    unchanged: bool = False
    replaced_source_id: str | None = None


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class Indexer:
    """Writes documents into one session store.

    Args:
        repo: Target session store.
        embedder: Embedding provider; None stores chunks without vectors.
        pools: Resource pools bounding concurrent embedding calls.
        chunker: Chunker to use; defaults to 512-token windows.
        batch_size: Chunks embedded per batch; a cancel request is checked
            before each batch.
    """

    def __init__(
        self,
        repo: SessionRepository,
        embedder: EmbeddingProvider | None = None,
        pools: ResourcePools | None = None,
        chunker: TextChunker | None = None,
        batch_size: int = EMBED_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._repo = repo
        self._embedder = embedder
        self._pools = pools
        self._chunker = chunker or TextChunker()
        self._batch_size = batch_size

    async def index_file(
        self,
        session_id: str,
        path: Path,
        *,
        source_type: SourceType | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IndexResult:
        """Index a local file. Raises ValueError for unsupported file types."""
        title, text = extract_text(path)
        return await self.index_text(
            session_id,
            str(path.resolve()),
            text,
            title=title,
            source_type=source_type or source_type_for(path),
            cancel_event=cancel_event,
        )

    async def index_text(
        self,
        session_id: str,
        locator: str,
        text: str,
        *,
        title: str = "",
        source_type: SourceType = SourceType.ARTIFACT,
        cancel_event: asyncio.Event | None = None,
    ) -> IndexResult:
        """Index *text* as the source at *locator*.

        Re-indexing identical content is a no-op. Changed content replaces the
        previous source (and prunes its citations) in the same transaction
        that writes the new one.

        Raises:
            OperationCancelled: If *cancel_event* is set before the write;
                nothing is stored.
        """
        digest = content_hash(text)
        existing = self._repo.get_source_by_locator(locator)
        if existing is not None and existing.content_hash == digest:
            logger.debug("index_unchanged", extra={"locator": locator})
            return IndexResult(locator=locator, source_id=existing.id, unchanged=True)

        source = Source(
            id=new_id(),
            session_id=session_id,
            source_type=source_type,
            locator=locator,
            title=title,
            content_hash=digest,
        )
        chunks = self._chunker.chunk(source, text)
        embedded = await self._embed_chunks(chunks, cancel_event)
        if _cancelled(cancel_event):
            logger.info("index_cancelled", extra={"locator": locator, "embedded": embedded})
            raise OperationCancelled(f"indexing {locator} cancelled")
        self._repo.store_source(
            source, chunks, replaces=existing.id if existing is not None else None
        )
        logger.info(
            "source_indexed",
            extra={"locator": locator, "chunks": len(chunks), "embedded": embedded},
        )
        return IndexResult(
            locator=locator,
            source_id=source.id,
            chunks=len(chunks),
            embedded=embedded,
            replaced_source_id=existing.id if existing is not None else None,
        )

    async def embed_missing(
        self, limit: int = 500, *, cancel_event: asyncio.Event | None = None
    ) -> int:
        """Back-fill embeddings for stored chunks that have none. Returns the count.

        A cancel request stops before the next batch; vectors already produced
        are still attached.
        """
        if self._embedder is None:
            return 0
        chunks = self._repo.chunks_without_embedding(limit)
        await self._embed_chunks(chunks, cancel_event)
        done = {c.id: c.embedding for c in chunks if c.embedding is not None}
        return self._repo.attach_embeddings(done) if done else 0  # type: ignore[arg-type]

    async def _embed_chunks(
        self, chunks: list[Chunk], cancel_event: asyncio.Event | None = None
    ) -> int:
        if self._embedder is None or not chunks:
            return 0
        embedded = 0
        for start in range(0, len(chunks), self._batch_size):
            if _cancelled(cancel_event):
                logger.info(
                    "embedding_cancelled",
                    extra={"done": start, "total": len(chunks)},
                )
                break
            batch = chunks[start : start + self._batch_size]
            results = await asyncio.gather(*(self._embed_one(c) for c in batch))
            embedded += sum(results)
        return embedded

    async def _embed_one(self, chunk: Chunk) -> bool:
        assert self._embedder is not None
        try:
            if self._pools is None:
                chunk.embedding = await self._embedder.embed(chunk.text)
            else:
                async with self._pools.embedding_slot():
                    chunk.embedding = await self._embedder.embed(chunk.text)
        except Exception as exc:
            # The chunk stays keyword-searchable
            logger.warning(
                "chunk_embedding_failed",
                extra={
                    "source_id": chunk.source_id,
                    "chunk_index": chunk.chunk_index,
                    "error": str(exc),
                },
            )
            return False
        return True


def _cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()

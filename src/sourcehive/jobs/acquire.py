"""Source acquisition collaborators for the Searching phase.

A SourceAcquirer turns search queries into Sources (and their Chunks) in the
session store and returns the ids it acquired. LocalCorpusAcquirer works
offline over sources that are already indexed in the session.
FetchingAcquirer drives an external PageFetcher (the network or browser
capture layer) through the shared resource pools and indexes what it returns.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from sourcehive.concurrency import ResourcePools, canonicalize_url
from sourcehive.db.models import ResearchJob, SearchFilter, SourceType
from sourcehive.db.repository import SessionRepository
from sourcehive.errors import FetchError, OriginCoolingDown
from sourcehive.ingest.extract import html_to_text
from sourcehive.ingest.indexer import Indexer
from sourcehive.retrieval.hybrid import HybridRetriever

logger = logging.getLogger(__name__)


class SourceAcquirer(Protocol):
    async def acquire(
        self,
        job: ResearchJob,
        queries: list[str],
        wanted: int,
        exclude: set[str],
    ) -> list[str]:
        """Return up to *wanted* new source ids (none of them in *exclude*), best first."""
        ...


class LocalCorpusAcquirer:
    """Acquires already-indexed session sources that match the search queries.

    Args:
        repo: Session store to search.
        retriever: Hybrid retriever used to rank chunks per query.
        source_types: Lanes to search; defaults to the job's search_lanes.
    """

    def __init__(
        self,
        repo: SessionRepository,
        retriever: HybridRetriever,
        source_types: tuple[SourceType, ...] | None = None,
    ) -> None:
        self._repo = repo
        self._retriever = retriever
        self._source_types = source_types

    async def acquire(
        self,
        job: ResearchJob,
        queries: list[str],
        wanted: int,
        exclude: set[str],
    ) -> list[str]:
        if wanted <= 0:
            return []
        types = self._source_types
        if types is None and job.search_lanes:
            types = tuple(SourceType(lane) for lane in job.search_lanes)
        filt = SearchFilter(source_types=types)

        acquired: list[str] = []
        for query in queries:
            hits = await self._retriever.search(self._repo, query, filt)
            for hit in hits:
                source_id = hit.chunk.source_id
                if source_id in exclude or source_id in acquired:
                    continue
                acquired.append(source_id)
                if len(acquired) >= wanted:
                    break
            if len(acquired) >= wanted:
                break

        logger.info(
            "local_sources_acquired",
            extra={"job_id": job.id, "queries": len(queries), "acquired": len(acquired)},
        )
        return acquired


# ----------------------------------------------------------------------
# Fetched sources
# ----------------------------------------------------------------------


@dataclass
class FetchedPage:
    """One page as returned by a fetch collaborator."""

    url: str
    body: str
    content_type: str = "text/html"
    status: int = 200


class PageFetcher(Protocol):
    async def locate(self, query: str, limit: int) -> list[str]:
        """Candidate URLs for *query*, best first, at most *limit*."""
        ...

    async def fetch(self, url: str, *, render: bool = False) -> FetchedPage:
        """Fetch *url*; *render* asks for a browser-rendered capture."""
        ...


class FetchingAcquirer:
    """Acquires web sources through a PageFetcher.

    Every fetch runs inside a fetch slot (per-origin and global permits plus
    origin spacing), and inside a browser slot as well when *render* is set.
    Each is bounded by ``fetch_timeout_seconds``. Pages are indexed as
    snapshot sources keyed by canonical URL; a URL already stored in the
    session is reused without fetching. A failed, refused or timed-out fetch
    is logged and skipped, so it only lowers the number of sources found.

    Args:
        repo: Session store receiving the snapshots.
        indexer: Indexer writing into *repo*.
        pools: Shared resource pools.
        fetcher: Network/browser collaborator.
        render: Fetch through the browser pool.
    """

    def __init__(
        self,
        repo: SessionRepository,
        indexer: Indexer,
        pools: ResourcePools,
        fetcher: PageFetcher,
        *,
        render: bool = False,
    ) -> None:
        self._repo = repo
        self._indexer = indexer
        self._pools = pools
        self._fetcher = fetcher
        self._render = render

    async def acquire(
        self,
        job: ResearchJob,
        queries: list[str],
        wanted: int,
        exclude: set[str],
    ) -> list[str]:
        if wanted <= 0:
            return []
        acquired: list[str] = []
        fetched = 0
        for query in queries:
            try:
                urls = await self._fetcher.locate(query, wanted * 2)
            except Exception as exc:
                logger.warning(
                    "source_locate_failed",
                    extra={"job_id": job.id, "query": query, "error": str(exc)},
                )
                continue

            to_fetch: list[str] = []
            for url in dict.fromkeys(canonicalize_url(u) for u in urls):
                existing = self._repo.get_source_by_locator(url)
                if existing is None:
                    to_fetch.append(url)
                elif existing.id not in exclude and existing.id not in acquired:
                    acquired.append(existing.id)

            needed = wanted - len(acquired)
            if needed > 0 and to_fetch:
                results = await asyncio.gather(
                    *(self._fetch_one(job, url) for url in to_fetch[:needed])
                )
                for source_id in results:
                    if source_id is not None and source_id not in exclude and source_id not in acquired:
                        acquired.append(source_id)
                        fetched += 1
            if len(acquired) >= wanted:
                break

        logger.info(
            "web_sources_acquired",
            extra={"job_id": job.id, "acquired": len(acquired[:wanted]), "fetched": fetched},
        )
        return acquired[:wanted]

    async def _fetch_one(self, job: ResearchJob, url: str) -> str | None:
        timeout = self._pools.config.fetch_timeout_seconds
        try:
            async with self._pools.fetch_slot(url) as locator:
                page = await asyncio.wait_for(self._fetch_page(locator), timeout)
                if not 200 <= page.status < 300:
                    raise FetchError(locator, f"HTTP {page.status}")
                if "html" in page.content_type:
                    title, text = html_to_text(page.body, default_title=locator)
                else:
                    title, text = locator, page.body.strip()
                if not text:
                    raise FetchError(locator, "empty page")
        except OriginCoolingDown as exc:
            logger.info("fetch_refused", extra={"job_id": job.id, "url": url, "error": str(exc)})
            return None
        except Exception as exc:
            logger.warning(
                "fetch_failed",
                extra={"job_id": job.id, "url": url, "error": str(exc) or type(exc).__name__},
            )
            return None

        result = await self._indexer.index_text(
            job.session_id, locator, text, title=title, source_type=SourceType.SNAPSHOT
        )
        return result.source_id

    async def _fetch_page(self, url: str) -> FetchedPage:
        if not self._render:
            return await self._fetcher.fetch(url)
        async with self._pools.browser_slot():
            return await self._fetcher.fetch(url, render=True)

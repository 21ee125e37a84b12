"""Tests for FetchingAcquirer and its use of the fetch and browser pools."""

from __future__ import annotations

import asyncio
import logging

import pytest

from sourcehive.concurrency import ResourcePools
from sourcehive.config import ConcurrencyCfg
from sourcehive.db.models import JobType, ResearchJob, Source, SourceType
from sourcehive.ingest.chunker import TextChunker
from sourcehive.ingest.indexer import Indexer
from sourcehive.jobs.acquire import FetchedPage, FetchingAcquirer

PAGES = {
    "https://solar.example/panels": FetchedPage(
        "https://solar.example/panels",
        "<html><head><title>Panels</title></head><body><p>Panel efficiency keeps rising.</p></body></html>",
    ),
    "https://grid.example/storage": FetchedPage(
        "https://grid.example/storage", "Battery storage notes.", content_type="text/plain"
    ),
    "https://down.example/x": ConnectionError("connection reset"),
    "https://gone.example/y": FetchedPage("https://gone.example/y", "", status=404),
    "https://slow.example/z": None,
}


class FakeFetcher:
    """Serves PAGES; an exception value is raised, None never answers."""

    def __init__(self, located, *, locate_error=None):
        self.located = located
        self.locate_error = locate_error
        self.fetched: list[tuple[str, bool]] = []

    async def locate(self, query, limit):
        if self.locate_error is not None:
            raise self.locate_error
        return self.located.get(query, [])[:limit]

    async def fetch(self, url, *, render=False):
        self.fetched.append((url, render))
        page = PAGES[url]
        if page is None:
            await asyncio.Event().wait()
        if isinstance(page, Exception):
            raise page
        return page


def _pools():
    return ResourcePools(
        ConcurrencyCfg(
            min_origin_delay_seconds=0.0,
            max_origin_delay_seconds=0.0,
            fetch_timeout_seconds=0.05,
        )
    )


def _acquirer(repo, embedder, fetcher, pools=None, render=False):
    pools = pools or _pools()
    indexer = Indexer(repo, embedder, pools, TextChunker(chunk_size=64, overlap=0.0))
    return FetchingAcquirer(repo, indexer, pools, fetcher, render=render)


def _job():
    return ResearchJob(id="job-1", session_id="s1", job_type=JobType.RESEARCH, prompt="solar")


def test_fetched_pages_become_snapshot_sources(repo, embedder):
    fetcher = FakeFetcher(
        {"solar": ["https://Solar.example/panels/", "https://grid.example/storage"]}
    )

    ids = asyncio.run(_acquirer(repo, embedder, fetcher).acquire(_job(), ["solar"], 2, set()))

    assert len(ids) == 2
    sources = {s.locator: s for s in repo.list_sources()}
    assert set(sources) == {"https://solar.example/panels", "https://grid.example/storage"}
    assert all(s.source_type == SourceType.SNAPSHOT for s in sources.values())
    assert sources["https://solar.example/panels"].title == "Panels"
    assert sources["https://grid.example/storage"].title == "https://grid.example/storage"
    assert "efficiency" in repo.list_chunks(source_id=ids[0])[0].text
    assert [render for _, render in fetcher.fetched] == [False, False]


def test_stored_url_is_reused_without_fetching(repo, embedder):
    repo.add_source(
        Source(
            id="kept",
            session_id="s1",
            source_type=SourceType.SNAPSHOT,
            locator="https://solar.example/panels",
        )
    )
    fetcher = FakeFetcher({"solar": ["https://solar.example/panels"]})

    ids = asyncio.run(_acquirer(repo, embedder, fetcher).acquire(_job(), ["solar"], 1, set()))

    assert ids == ["kept"]
    assert fetcher.fetched == []


def test_excluded_stored_url_is_skipped(repo, embedder):
    repo.add_source(
        Source(
            id="kept",
            session_id="s1",
            source_type=SourceType.SNAPSHOT,
            locator="https://solar.example/panels",
        )
    )
    fetcher = FakeFetcher({"solar": ["https://solar.example/panels"]})

    ids = asyncio.run(
        _acquirer(repo, embedder, fetcher).acquire(_job(), ["solar"], 1, {"kept"})
    )

    assert ids == []


def test_failed_fetches_are_skipped_and_counted(repo, embedder, caplog):
    pools = _pools()
    fetcher = FakeFetcher(
        {
            "bad": [
                "https://down.example/x",
                "https://gone.example/y",
                "https://slow.example/z",
            ],
            "good": ["https://grid.example/storage"],
        }
    )

    with caplog.at_level(logging.WARNING, logger="sourcehive.jobs.acquire"):
        ids = asyncio.run(
            _acquirer(repo, embedder, fetcher, pools).acquire(_job(), ["bad", "good"], 3, set())
        )

    assert len(ids) == 1
    assert [s.locator for s in repo.list_sources()] == ["https://grid.example/storage"]
    failed = [r for r in caplog.records if r.getMessage() == "fetch_failed"]
    assert len(failed) == 3
    assert set(pools._failures) == {"down.example", "gone.example", "slow.example"}


def test_locate_error_moves_to_next_query(repo, embedder):
    fetcher = FakeFetcher({}, locate_error=ConnectionError("search backend down"))
    ids = asyncio.run(_acquirer(repo, embedder, fetcher).acquire(_job(), ["a", "b"], 2, set()))
    assert ids == []


def test_render_fetches_through_browser_pool(repo, embedder):
    pools = ResourcePools(
        ConcurrencyCfg(
            min_origin_delay_seconds=0.0, max_origin_delay_seconds=0.0, max_browser_contexts=1
        )
    )
    active, peak = 0, 0

    class RenderingFetcher(FakeFetcher):
        async def fetch(self, url, *, render=False):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1
            return await super().fetch(url, render=render)

    fetcher = RenderingFetcher(
        {"solar": ["https://solar.example/panels", "https://grid.example/storage"]}
    )

    ids = asyncio.run(
        _acquirer(repo, embedder, fetcher, pools, render=True).acquire(_job(), ["solar"], 2, set())
    )

    assert len(ids) == 2
    assert peak == 1
    assert {render for _, render in fetcher.fetched} == {True}


@pytest.mark.parametrize("wanted", [0, -1])
def test_nothing_wanted(repo, embedder, wanted):
    fetcher = FakeFetcher({"solar": ["https://solar.example/panels"]})
    assert asyncio.run(_acquirer(repo, embedder, fetcher).acquire(_job(), ["solar"], wanted, set())) == []
    assert fetcher.fetched == []

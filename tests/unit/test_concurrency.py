"""Tests for URL canonicalisation and the bounded resource pools."""

from __future__ import annotations

import asyncio
import random

import pytest

from sourcehive.concurrency import ResourcePools, canonicalize_url, origin_of
from sourcehive.config import ConcurrencyCfg
from sourcehive.errors import OriginCoolingDown


class Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    "url, expected",
    [
        ("HTTPS://Example.COM/Path/", "https://example.com/Path"),
        ("https://example.com/a?b=1", "https://example.com/a?b=1"),
        ("  http://example.com  ", "http://example.com"),
        ("Not A URL/", "not a url"),
    ],
)
def test_canonicalize_url(url, expected):
    assert canonicalize_url(url) == expected


def test_origin_of():
    assert origin_of("https://Docs.Example.com:8443/x") == "docs.example.com"
    assert origin_of("relative/path") == "unknown"


def _pools(clock, slept, **overrides):
    values = dict(origin_failure_threshold=2, origin_cooldown_seconds=60)
    values.update(overrides)

    async def sleep(seconds: float) -> None:
        slept.append(seconds)
        clock.now += seconds

    return ResourcePools(ConcurrencyCfg(**values), clock=clock, sleep=sleep, rng=random.Random(1))


def test_fetch_slot_yields_canonical_url():
    pools = _pools(Clock(), [])

    async def go():
        async with pools.fetch_slot("https://Example.com/page/") as url:
            return url

    assert asyncio.run(go()) == "https://example.com/page"


def test_same_origin_requests_are_spaced():
    clock, slept = Clock(), []
    pools = _pools(clock, slept, min_origin_delay_seconds=1.5, max_origin_delay_seconds=3.0)

    async def go():
        for _ in range(2):
            async with pools.fetch_slot("https://example.com/a"):
                pass
        async with pools.fetch_slot("https://other.org/a"):
            pass

    asyncio.run(go())
    assert len(slept) == 1
    assert 1.5 <= slept[0] <= 3.0


def test_failing_origin_cools_down_then_recovers():
    clock, slept = Clock(), []
    pools = _pools(clock, slept, min_origin_delay_seconds=0.0, max_origin_delay_seconds=0.0)

    async def fail_once():
        with pytest.raises(ConnectionError):
            async with pools.fetch_slot("https://flaky.net/x"):
                raise ConnectionError("reset")

    async def go():
        await fail_once()
        await fail_once()
        with pytest.raises(OriginCoolingDown):
            async with pools.fetch_slot("https://flaky.net/y"):
                pass
        clock.now += 61
        async with pools.fetch_slot("https://flaky.net/z") as url:
            return url

    assert asyncio.run(go()) == "https://flaky.net/z"
    assert not pools.is_cooling_down("flaky.net")


def test_success_resets_failure_count():
    pools = _pools(Clock(), [])
    pools.record_failure("https://a.io/1")
    pools.record_success("https://a.io/2")
    pools.record_failure("https://a.io/3")
    assert not pools.is_cooling_down("a.io")


def test_embedding_pool_bounds_concurrency():
    pools = ResourcePools(ConcurrencyCfg(embedding_concurrency=2))
    active, peak = 0, 0

    async def work():
        nonlocal active, peak
        async with pools.embedding_slot():
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1

    async def go():
        await asyncio.gather(*(work() for _ in range(6)))

    asyncio.run(go())
    assert peak == 2


def test_waiting_on_busy_origin_leaves_global_permit_free():
    pools = _pools(
        Clock(),
        [],
        max_concurrent_fetches=2,
        max_concurrent_per_origin=1,
        min_origin_delay_seconds=0.0,
        max_origin_delay_seconds=0.0,
    )
    order: list[str] = []

    async def go():
        release = asyncio.Event()

        async def hold():
            async with pools.fetch_slot("https://busy.com/1"):
                order.append("busy-1")
                await release.wait()

        async def queued():
            async with pools.fetch_slot("https://busy.com/2"):
                order.append("busy-2")

        async def other():
            async with pools.fetch_slot("https://other.org/1"):
                order.append("other")

        first = asyncio.create_task(hold())
        await asyncio.sleep(0)
        second = asyncio.create_task(queued())
        await asyncio.sleep(0)
        # Only two global permits: busy-2 must not be sitting on the second one.
        await asyncio.wait_for(other(), timeout=1)
        release.set()
        await asyncio.gather(first, second)

    asyncio.run(go())
    assert order == ["busy-1", "other", "busy-2"]


def test_idle_origin_state_is_released():
    clock = Clock()
    pools = _pools(clock, [], min_origin_delay_seconds=0.0, max_origin_delay_seconds=1.0)

    async def go():
        for i in range(50):
            async with pools.fetch_slot(f"https://site{i}.example/a"):
                pass
            clock.now += 2

    asyncio.run(go())
    assert pools._origins == {}
    assert pools._origin_users == {}
    assert list(pools._last_request) == ["site49.example"]


def test_old_failure_streak_is_forgotten():
    clock = Clock()
    pools = _pools(clock, [], min_origin_delay_seconds=0.0, max_origin_delay_seconds=0.0)

    async def fail(url):
        with pytest.raises(ConnectionError):
            async with pools.fetch_slot(url):
                raise ConnectionError("reset")

    async def go():
        await fail("https://flaky.net/1")
        clock.now += 61
        async with pools.fetch_slot("https://other.org/"):
            pass
        assert "flaky.net" not in pools._failures
        await fail("https://flaky.net/2")

    asyncio.run(go())
    assert not pools.is_cooling_down("flaky.net")


def test_browser_pool_bounds_concurrency():
    pools = ResourcePools(ConcurrencyCfg(max_browser_contexts=1))
    active, peak = 0, 0

    async def render():
        nonlocal active, peak
        async with pools.browser_slot():
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            active -= 1

    async def go():
        await asyncio.gather(*(render() for _ in range(3)))

    asyncio.run(go())
    assert peak == 1

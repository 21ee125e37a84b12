"""Bounded resource pools for network fetches, embeddings and render contexts.

All pools are asyncio.Semaphore instances, which wake waiters in FIFO order.
A fetch holds two permits: one from the stricter per-origin pool, taken
first, and one from the global fetch pool. Consecutive fetches to the same
origin are spaced by a randomised delay, and an origin that keeps failing is
refused until its cool-down expires. Per-origin state is dropped once an
origin is idle and its spacing window and failure streak have lapsed.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from urllib.parse import urlsplit

from sourcehive.config import ConcurrencyCfg
from sourcehive.errors import OriginCoolingDown

logger = logging.getLogger(__name__)


def canonicalize_url(url: str) -> str:
    """scheme://host/path?query with the host lowercased and no trailing slash."""
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        return url.strip().lower().rstrip("/")
    canonical = f"{parts.scheme.lower()}://{parts.netloc.lower()}{parts.path}"
    if parts.query:
        canonical += f"?{parts.query}"
    return canonical.rstrip("/")


def origin_of(url: str) -> str:
    host = urlsplit(url.strip()).hostname
    return host.lower() if host else "unknown"


class ResourcePools:
    """Process-wide concurrency limits, built once from ConcurrencyCfg.

    Args:
        config: Pool sizes, origin delays and origin cool-down policy.
        clock: Monotonic clock; injectable for tests.
        sleep: Coroutine used for origin spacing; injectable for tests.
        rng: Source of the per-origin delay jitter.
    """

    def __init__(
        self,
        config: ConcurrencyCfg,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._fetch = asyncio.Semaphore(config.max_concurrent_fetches)
        self._embedding = asyncio.Semaphore(config.embedding_concurrency)
        self._browser = asyncio.Semaphore(config.max_browser_contexts)
        self._origins: dict[str, asyncio.Semaphore] = {}
        self._last_request: dict[str, float] = {}
        self._origin_users: dict[str, int] = {}
        self._failures: dict[str, tuple[int, float]] = {}
        self._cooling_until: dict[str, float] = {}

    @property
    def config(self) -> ConcurrencyCfg:
        return self._config

    # ------------------------------------------------------------------
    # Embedding and browser pools
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def embedding_slot(self) -> AsyncIterator[None]:
        async with self._embedding:
            yield

    @asynccontextmanager
    async def browser_slot(self) -> AsyncIterator[None]:
        async with self._browser:
            yield

    # ------------------------------------------------------------------
    # Fetch pool with origin courtesy
    # ------------------------------------------------------------------

    def is_cooling_down(self, origin: str) -> bool:
        until = self._cooling_until.get(origin)
        if until is None:
            return False
        if self._clock() >= until:
            del self._cooling_until[origin]
            self._failures.pop(origin, None)
            return False
        return True

    def record_success(self, url: str) -> None:
        self._failures.pop(origin_of(url), None)

    def record_failure(self, url: str) -> None:
        origin = origin_of(url)
        now = self._clock()
        failures = self._failures.get(origin, (0, now))[0] + 1
        self._failures[origin] = (failures, now)
        if failures >= self._config.origin_failure_threshold:
            self._cooling_until[origin] = now + self._config.origin_cooldown_seconds
            logger.warning(
                "origin_cooling_down",
                extra={"origin": origin, "failures": failures},
            )

    @asynccontextmanager
    async def fetch_slot(self, url: str) -> AsyncIterator[str]:
        """Hold a per-origin and a global fetch permit for the body of the block.

        The origin permit (and the courtesy delay) come first, so a fetch
        waiting on a busy origin never holds one of the global permits.
        Yields the canonical URL. An exception raised inside the block counts
        as a failure for the origin; a clean exit resets its failure count.

        Raises:
            OriginCoolingDown: If the origin failed too often recently.
        """
        origin = origin_of(url)
        if self.is_cooling_down(origin):
            raise OriginCoolingDown(origin, self._cooling_until[origin] - self._clock())

        origin_pool = self._origins.get(origin)
        if origin_pool is None:
            origin_pool = self._origins[origin] = asyncio.Semaphore(
                self._config.max_concurrent_per_origin
            )
        self._origin_users[origin] = self._origin_users.get(origin, 0) + 1
        try:
            async with origin_pool:
                await self._space_request(origin)
                async with self._fetch:
                    self._last_request[origin] = self._clock()
                    try:
                        yield canonicalize_url(url)
                    except BaseException as exc:
                        if not isinstance(exc, asyncio.CancelledError):
                            self.record_failure(url)
                        raise
                    self.record_success(url)
        finally:
            self._release_origin(origin)

    async def _space_request(self, origin: str) -> None:
        last = self._last_request.get(origin)
        if last is None:
            return
        target = self._rng.uniform(
            self._config.min_origin_delay_seconds,
            self._config.max_origin_delay_seconds,
        )
        elapsed = self._clock() - last
        if elapsed < target:
            await self._sleep(target - elapsed)

    def _release_origin(self, origin: str) -> None:
        users = self._origin_users[origin] - 1
        if users:
            self._origin_users[origin] = users
            return
        # Idle origin: its semaphore is rebuilt on the next fetch.
        del self._origin_users[origin]
        del self._origins[origin]
        self._prune(self._clock())

    def _prune(self, now: float) -> None:
        horizon = now - self._config.max_origin_delay_seconds
        for origin, last in list(self._last_request.items()):
            if last < horizon and origin not in self._origin_users:
                del self._last_request[origin]
        for origin, until in list(self._cooling_until.items()):
            if now >= until:
                del self._cooling_until[origin]
                self._failures.pop(origin, None)
        # A failure streak older than one cool-down no longer counts.
        stale = now - self._config.origin_cooldown_seconds
        for origin, (_, last_failure) in list(self._failures.items()):
            if last_failure < stale and origin not in self._cooling_until:
                del self._failures[origin]

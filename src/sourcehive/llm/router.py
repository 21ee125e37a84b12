"""Model routing with retry, backoff and circuit-breaker fallback.

Strategy → provider order:
  local_only                 local
  local_with_cloud_fallback  local, cloud
  cloud_primary              cloud, local
  cloud_only                 cloud

route() names the first provider in that order whose breaker admits a call.
generate() walks the same order: each provider gets up to max_attempts tries
(backoff base * 2^attempt, jittered, capped) and an exhausted provider counts
as ONE breaker failure before the next provider is tried. A half-open breaker
gets a single trial attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sourcehive.config import ProviderCfg, RoutingCfg
from sourcehive.errors import RoutingExhaustedError
from sourcehive.llm.circuit_breaker import CircuitBreaker
from sourcehive.llm.providers import LlmProvider, LlmResponse

logger = logging.getLogger(__name__)

TIERS: tuple[str, ...] = ("default", "mini", "full")

STRATEGY_ORDER: dict[str, tuple[str, ...]] = {
    "local_only": ("local",),
    "local_with_cloud_fallback": ("local", "cloud"),
    "cloud_primary": ("cloud", "local"),
    "cloud_only": ("cloud",),
}

_JITTER = 0.25


@dataclass(frozen=True)
class Route:
    provider: str
    model: str


class ModelRouter:
    """Routes every LLM call for a process.

    Args:
        config: Routing section of HiveConfig.
        providers: ``{"local": ..., "cloud": ...}``; a missing cloud provider
            simply drops out of every strategy order.
        clock: Monotonic clock shared by the breakers.
        sleep: Backoff sleep coroutine; injectable for tests.
        rng: Jitter source.
    """

    def __init__(
        self,
        config: RoutingCfg,
        providers: dict[str, LlmProvider],
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._providers = providers
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._provider_cfgs: dict[str, ProviderCfg] = {"local": config.local}
        if config.cloud is not None:
            self._provider_cfgs["cloud"] = config.cloud
        self._breakers = {
            name: CircuitBreaker(
                name,
                failure_threshold=config.failure_threshold,
                cooldown_seconds=config.cooldown_seconds,
                clock=clock,
            )
            for name in providers
        }

    @property
    def strategy(self) -> str:
        return self._config.strategy

    def breaker(self, provider: str) -> CircuitBreaker:
        return self._breakers[provider]

    def model_for(self, provider: str, tier: str = "default") -> str:
        """Model id for *tier* on *provider*; unset mini/full tiers use the default model."""
        if tier not in TIERS:
            raise ValueError(f"Unknown model tier '{tier}'")
        return self._provider_cfgs[provider].model_for(tier)

    def eligible(self, strategy: str | None = None) -> list[str]:
        strategy = strategy or self._config.strategy
        if strategy not in STRATEGY_ORDER:
            raise ValueError(f"Unknown routing strategy '{strategy}'")
        return [
            name
            for name in STRATEGY_ORDER[strategy]
            if name in self._providers and name in self._provider_cfgs
        ]

    def route(self, tier: str = "default", strategy: str | None = None) -> Route:
        """Pick the provider and model the next call would use.

        Deterministic for a given breaker state; reserves nothing.

        Raises:
            RoutingExhaustedError: If every eligible breaker refuses calls.
        """
        attempts: list[tuple[str, str]] = []
        for name in self.eligible(strategy):
            if self._breakers[name].can_attempt():
                return Route(provider=name, model=self.model_for(name, tier))
            attempts.append((name, "circuit open"))
        raise RoutingExhaustedError(
            f"No provider available under strategy '{strategy or self._config.strategy}'",
            attempts,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (0-based)."""
        delay = self._config.backoff_base_seconds * (2**attempt)
        if self._config.jitter:
            delay *= 1.0 + self._rng.uniform(-_JITTER, _JITTER)
        return min(delay, self._config.backoff_max_seconds)

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        *,
        tier: str = "default",
        strategy: str | None = None,
    ) -> LlmResponse:
        """Run one logical LLM call through the strategy's providers.

        Raises:
            RoutingExhaustedError: Every eligible provider failed or was open.
        """
        attempts: list[tuple[str, str]] = []
        for name in self.eligible(strategy):
            breaker = self._breakers[name]
            if not breaker.try_acquire():
                attempts.append((name, "circuit open"))
                continue

            provider = self._providers[name]
            model = self.model_for(name, tier)
            tries = 1 if breaker.trial_in_flight else self._config.max_attempts
            last_error = ""
            for attempt in range(tries):
                try:
                    response = await asyncio.wait_for(
                        provider.generate(prompt, system_prompt, max_tokens, model),
                        self._config.timeout_seconds,
                    )
                except asyncio.CancelledError:
                    breaker.release_trial()
                    raise
                except Exception as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                    logger.warning(
                        "llm_attempt_failed",
                        extra={
                            "provider": name,
                            "model": model,
                            "attempt": attempt + 1,
                            "error": last_error,
                        },
                    )
                    if attempt + 1 < tries:
                        await self._sleep(self.backoff_delay(attempt))
                    continue
                breaker.record_success()
                response.provider = response.provider or name
                return response

            breaker.record_failure()
            attempts.append((name, last_error))

        raise RoutingExhaustedError(
            "All providers failed: "
            + "; ".join(f"{p}: {reason}" for p, reason in attempts),
            attempts,
        )

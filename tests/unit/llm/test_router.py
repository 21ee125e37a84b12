"""Tests for ModelRouter: strategy order, retry, breaker fallback, tiers."""

from __future__ import annotations

import asyncio
import random

import pytest

from sourcehive.config import ProviderCfg, RoutingCfg
from sourcehive.errors import RoutingExhaustedError
from sourcehive.llm.circuit_breaker import BreakerState
from sourcehive.llm.router import ModelRouter


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _no_sleep(seconds: float) -> None:
    return None


def _config(**overrides) -> RoutingCfg:
    values = dict(
        strategy="local_with_cloud_fallback",
        local=ProviderCfg(model="ollama/llama3.1:8b"),
        cloud=ProviderCfg(
            model="openai/gpt-4o", mini_model="openai/gpt-4.1-mini", full_model="openai/gpt-4.1"
        ),
        max_attempts=2,
        backoff_base_seconds=0.0,
        jitter=False,
        failure_threshold=2,
        cooldown_seconds=60,
    )
    values.update(overrides)
    return RoutingCfg(**values)


@pytest.fixture
def clock():
    return Clock()


def _router(config, providers, clock=None, sleep=_no_sleep):
    return ModelRouter(config, providers, clock=clock or Clock(), sleep=sleep)


# ------------------------------------------------------------------
# Strategy order and tiers
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "strategy, expected",
    [
        ("local_only", ["local"]),
        ("local_with_cloud_fallback", ["local", "cloud"]),
        ("cloud_primary", ["cloud", "local"]),
        ("cloud_only", ["cloud"]),
    ],
)
def test_eligible_order(make_provider, strategy, expected):
    router = _router(
        _config(strategy=strategy), {"local": make_provider("local"), "cloud": make_provider("cloud")}
    )
    assert router.eligible() == expected


def test_missing_cloud_drops_out(make_provider):
    router = _router(_config(cloud=None), {"local": make_provider("local")})
    assert router.eligible("cloud_primary") == ["local"]
    assert router.eligible("cloud_only") == []


def test_unknown_strategy_raises(make_provider):
    router = _router(_config(), {"local": make_provider("local")})
    with pytest.raises(ValueError):
        router.eligible("fastest")


def test_model_for_tiers_fall_back_to_default(make_provider):
    router = _router(_config(), {"local": make_provider("local"), "cloud": make_provider("cloud")})
    assert router.model_for("cloud", "mini") == "openai/gpt-4.1-mini"
    assert router.model_for("cloud", "full") == "openai/gpt-4.1"
    assert router.model_for("local", "full") == "ollama/llama3.1:8b"
    with pytest.raises(ValueError):
        router.model_for("local", "huge")


def test_route_is_deterministic(make_provider):
    router = _router(_config(), {"local": make_provider("local"), "cloud": make_provider("cloud")})
    assert router.route() == router.route()
    assert router.route().provider == "local"


# ------------------------------------------------------------------
# generate()
# ------------------------------------------------------------------


def test_generate_uses_primary(make_provider):
    local, cloud = make_provider("local", "local says hi"), make_provider("cloud")
    router = _router(_config(), {"local": local, "cloud": cloud})
    response = asyncio.run(router.generate("Hi", max_tokens=10, tier="mini"))
    assert response.text == "local says hi"
    assert response.provider == "local"
    assert local.calls[0]["model"] == "ollama/llama3.1:8b"
    assert local.calls[0]["max_tokens"] == 10
    assert cloud.calls == []


def test_generate_retries_then_falls_back(make_provider):
    local = make_provider("local", fail=True)
    cloud = make_provider("cloud", "cloud answer")
    router = _router(_config(), {"local": local, "cloud": cloud})
    response = asyncio.run(router.generate("Hi", tier="full"))
    assert response.provider == "cloud"
    assert len(local.calls) == 2
    assert cloud.calls[0]["model"] == "openai/gpt-4.1"
    assert router.breaker("local").consecutive_failures == 1


def test_backoff_sleeps_between_attempts(make_provider):
    slept: list[float] = []

    async def sleep(seconds: float) -> None:
        slept.append(seconds)

    config = _config(max_attempts=3, backoff_base_seconds=1.0, backoff_max_seconds=8.0)
    router = _router(config, {"local": make_provider("local", fail=True)}, sleep=sleep)
    with pytest.raises(RoutingExhaustedError):
        asyncio.run(router.generate("Hi", strategy="local_only"))
    assert slept == [1.0, 2.0]


def test_backoff_delay_capped_and_jittered(make_provider):
    router = ModelRouter(
        _config(backoff_base_seconds=1.0, backoff_max_seconds=4.0, jitter=True),
        {"local": make_provider("local")},
        rng=random.Random(7),
    )
    assert router.backoff_delay(10) == 4.0
    assert 0.75 <= router.backoff_delay(0) <= 1.25


def test_exhausted_lists_attempts(make_provider):
    router = _router(
        _config(),
        {"local": make_provider("local", fail=True), "cloud": make_provider("cloud", fail=True)},
    )
    with pytest.raises(RoutingExhaustedError) as excinfo:
        asyncio.run(router.generate("Hi"))
    assert [name for name, _ in excinfo.value.attempts] == ["local", "cloud"]
    assert "ConnectionError" in excinfo.value.attempts[0][1]


def test_open_breaker_skips_provider(make_provider, clock):
    local = make_provider("local", fail=True)
    cloud = make_provider("cloud", "ok")
    router = _router(_config(), {"local": local, "cloud": cloud}, clock=clock)
    asyncio.run(router.generate("one"))
    asyncio.run(router.generate("two"))
    assert router.breaker("local").state == BreakerState.OPEN
    assert router.route().provider == "cloud"

    local_calls = len(local.calls)
    asyncio.run(router.generate("three"))
    assert len(local.calls) == local_calls


def test_half_open_trial_gets_single_attempt(make_provider, clock):
    local = make_provider("local", fail=True)
    cloud = make_provider("cloud", "ok")
    router = _router(_config(max_attempts=3), {"local": local, "cloud": cloud}, clock=clock)
    asyncio.run(router.generate("one"))
    asyncio.run(router.generate("two"))
    assert router.breaker("local").state == BreakerState.OPEN

    clock.now = 61
    before = len(local.calls)
    asyncio.run(router.generate("trial"))
    assert len(local.calls) == before + 1
    assert router.breaker("local").state == BreakerState.OPEN


def test_trial_success_closes_breaker(make_provider, clock):
    local = make_provider("local", fail=True)
    router = _router(
        _config(), {"local": local, "cloud": make_provider("cloud", "ok")}, clock=clock
    )
    asyncio.run(router.generate("one"))
    asyncio.run(router.generate("two"))
    local.fail = False
    clock.now = 61
    response = asyncio.run(router.generate("trial"))
    assert response.provider == "local"
    assert router.breaker("local").state == BreakerState.CLOSED


def test_all_open_raises_without_calling(make_provider, clock):
    local = make_provider("local", fail=True)
    router = _router(_config(cloud=None), {"local": local}, clock=clock)
    for _ in range(2):
        with pytest.raises(RoutingExhaustedError):
            asyncio.run(router.generate("x"))
    calls = len(local.calls)
    with pytest.raises(RoutingExhaustedError, match="circuit open"):
        asyncio.run(router.generate("x"))
    assert len(local.calls) == calls
    with pytest.raises(RoutingExhaustedError):
        router.route()

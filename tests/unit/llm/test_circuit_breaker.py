"""Tests for the per-provider circuit breaker."""

from __future__ import annotations

import pytest

from sourcehive.llm.circuit_breaker import BreakerState, CircuitBreaker


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("local", failure_threshold=3, cooldown_seconds=60, clock=clock)


def _fail(breaker, times):
    for _ in range(times):
        assert breaker.try_acquire()
        breaker.record_failure()


def test_starts_closed(breaker):
    assert breaker.state == BreakerState.CLOSED
    assert breaker.can_attempt()


def test_opens_at_threshold(breaker):
    _fail(breaker, 2)
    assert breaker.state == BreakerState.CLOSED
    _fail(breaker, 1)
    assert breaker.state == BreakerState.OPEN
    assert not breaker.can_attempt()
    assert not breaker.try_acquire()


def test_success_resets_failure_count(breaker):
    _fail(breaker, 2)
    breaker.record_success()
    assert breaker.consecutive_failures == 0
    _fail(breaker, 2)
    assert breaker.state == BreakerState.CLOSED


def test_half_open_after_cooldown(breaker, clock):
    _fail(breaker, 3)
    clock.now = 59.9
    assert breaker.state == BreakerState.OPEN
    clock.now = 60.0
    assert breaker.state == BreakerState.HALF_OPEN


def test_half_open_admits_single_trial(breaker, clock):
    _fail(breaker, 3)
    clock.now = 61
    assert breaker.try_acquire()
    assert breaker.trial_in_flight
    assert not breaker.try_acquire()
    assert not breaker.can_attempt()


def test_trial_success_closes(breaker, clock):
    _fail(breaker, 3)
    clock.now = 61
    breaker.try_acquire()
    breaker.record_success()
    assert breaker.state == BreakerState.CLOSED
    assert not breaker.trial_in_flight


def test_trial_failure_reopens_with_fresh_cooldown(breaker, clock):
    _fail(breaker, 3)
    clock.now = 61
    breaker.try_acquire()
    breaker.record_failure()
    assert breaker.state == BreakerState.OPEN
    clock.now = 100
    assert breaker.state == BreakerState.OPEN
    clock.now = 121
    assert breaker.state == BreakerState.HALF_OPEN


def test_release_trial_without_verdict(breaker, clock):
    _fail(breaker, 3)
    clock.now = 61
    breaker.try_acquire()
    breaker.release_trial()
    assert breaker.try_acquire()


def test_rejects_bad_threshold():
    with pytest.raises(ValueError):
        CircuitBreaker("x", failure_threshold=0)

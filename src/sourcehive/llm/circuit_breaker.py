"""Per-provider circuit breaker.

CLOSED     calls flow; consecutive failures are counted
OPEN       calls refused until the cool-down has elapsed
HALF_OPEN  exactly one trial call is let through

Trial success closes the breaker, trial failure re-opens it with a fresh
cool-down. Any success resets the failure count.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        self.name = name
        self._threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        """Current state; an expired OPEN reads as HALF_OPEN."""
        if self._state == BreakerState.OPEN and self._cooldown_elapsed():
            return BreakerState.HALF_OPEN
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self._cooldown

    def can_attempt(self) -> bool:
        """True if a call would be allowed right now. Does not reserve the trial."""
        state = self.state
        if state == BreakerState.CLOSED:
            return True
        if state == BreakerState.HALF_OPEN:
            return not self._trial_in_flight
        return False

    def try_acquire(self) -> bool:
        """Reserve permission for one call.

        In HALF_OPEN this claims the single trial; a second caller is refused
        until the trial reports back.
        """
        state = self.state
        if state == BreakerState.CLOSED:
            return True
        if state == BreakerState.HALF_OPEN and not self._trial_in_flight:
            self._state = BreakerState.HALF_OPEN
            self._trial_in_flight = True
            logger.info("breaker_trial", extra={"provider": self.name})
            return True
        return False

    @property
    def trial_in_flight(self) -> bool:
        return self._trial_in_flight

    def record_success(self) -> None:
        if self._state != BreakerState.CLOSED:
            logger.info("breaker_closed", extra={"provider": self.name})
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        if self._trial_in_flight or self._state == BreakerState.HALF_OPEN:
            self._open()
            return
        self._failures += 1
        if self._state == BreakerState.CLOSED and self._failures >= self._threshold:
            self._open()

    def release_trial(self) -> None:
        """Give the trial back without a verdict (e.g. the call was cancelled)."""
        self._trial_in_flight = False

    def _open(self) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning(
            "breaker_opened",
            extra={"provider": self.name, "failures": self._failures},
        )

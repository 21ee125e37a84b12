"""Research job state machine.

    Pending → Planning → Searching ⇄ Verifying → Synthesizing → Completed

Failed and Cancelled are reachable from every non-terminal state. Searching
may go straight to Synthesizing when acquisition is exhausted. A job being
resumed from its checkpoint may re-enter any working phase, but never Pending.
"""

from __future__ import annotations

from sourcehive.db.models import JobState
from sourcehive.errors import InvalidTransition

TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.PLANNING}),
    JobState.PLANNING: frozenset({JobState.SEARCHING}),
    JobState.SEARCHING: frozenset({JobState.VERIFYING, JobState.SYNTHESIZING}),
    JobState.VERIFYING: frozenset({JobState.SEARCHING, JobState.SYNTHESIZING}),
    JobState.SYNTHESIZING: frozenset({JobState.COMPLETED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}

WORKING_STATES: frozenset[JobState] = frozenset(
    {JobState.PLANNING, JobState.SEARCHING, JobState.VERIFYING, JobState.SYNTHESIZING}
)


def can_transition(current: JobState, target: JobState, *, resuming: bool = False) -> bool:
    if current.is_terminal:
        return False
    if target in (JobState.FAILED, JobState.CANCELLED):
        return True
    if resuming:
        return target in WORKING_STATES
    return target in TRANSITIONS[current]


def check_transition(current: JobState, target: JobState, *, resuming: bool = False) -> None:
    """Raise InvalidTransition unless *current* → *target* is allowed."""
    if not can_transition(current, target, resuming=resuming):
        raise InvalidTransition(f"{current.value} → {target.value} is not allowed")

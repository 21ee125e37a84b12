"""Tests for research job state transitions."""

from __future__ import annotations

import pytest

from sourcehive.db.models import JobState
from sourcehive.errors import InvalidTransition
from sourcehive.jobs.state import WORKING_STATES, can_transition, check_transition


@pytest.mark.parametrize(
    "current, target",
    [
        (JobState.PENDING, JobState.PLANNING),
        (JobState.PLANNING, JobState.SEARCHING),
        (JobState.SEARCHING, JobState.VERIFYING),
        (JobState.VERIFYING, JobState.SEARCHING),
        (JobState.VERIFYING, JobState.SYNTHESIZING),
        (JobState.SEARCHING, JobState.SYNTHESIZING),
        (JobState.SYNTHESIZING, JobState.COMPLETED),
    ],
)
def test_forward_transitions_allowed(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (JobState.PENDING, JobState.SEARCHING),
        (JobState.PLANNING, JobState.SYNTHESIZING),
        (JobState.SEARCHING, JobState.COMPLETED),
        (JobState.SYNTHESIZING, JobState.SEARCHING),
        (JobState.PLANNING, JobState.PENDING),
    ],
)
def test_skipping_or_backwards_rejected(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransition):
        check_transition(current, target)


@pytest.mark.parametrize("current", [s for s in JobState if not s.is_terminal])
@pytest.mark.parametrize("target", [JobState.FAILED, JobState.CANCELLED])
def test_failed_and_cancelled_reachable_from_non_terminal(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current", [JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED])
@pytest.mark.parametrize("target", list(JobState))
def test_terminal_states_are_final(current, target):
    assert not can_transition(current, target)
    assert not can_transition(current, target, resuming=True)


def test_resuming_allows_any_working_phase_but_not_pending():
    for target in WORKING_STATES:
        assert can_transition(JobState.SEARCHING, target, resuming=True)
    assert not can_transition(JobState.SEARCHING, JobState.PENDING, resuming=True)

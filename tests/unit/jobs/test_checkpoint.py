"""Tests for the versioned job checkpoint payload."""

from __future__ import annotations

import json

import pytest

from sourcehive.errors import CheckpointError
from sourcehive.jobs.checkpoint import CHECKPOINT_VERSION, Checkpoint


def test_json_carries_version_and_fields():
    checkpoint = Checkpoint(
        phase="searching",
        iteration=2,
        acquired_source_ids=("s1", "s2"),
        search_queries=("solar",),
        plan="Look at panels",
    )
    data = json.loads(checkpoint.to_json())
    assert data == {
        "version": CHECKPOINT_VERSION,
        "phase": "searching",
        "iteration": 2,
        "acquired_source_ids": ["s1", "s2"],
        "search_queries": ["solar"],
        "plan": "Look at panels",
    }
    assert Checkpoint.from_json(checkpoint.to_json()) == checkpoint


def test_optional_fields_default():
    checkpoint = Checkpoint.from_json('{"version": 1, "phase": "planning", "iteration": 0}')
    assert checkpoint.acquired_source_ids == ()
    assert checkpoint.plan is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"version": 2, "phase": "planning", "iteration": 0}',
        '{"phase": "planning", "iteration": 0}',
        '{"version": 1, "iteration": 0}',
        '{"version": 1, "phase": "synthesizing", "iteration": 0}',
        '{"version": 1, "phase": "planning", "iteration": "many"}',
        '{"version": 1, "phase": "planning", "iteration": -1}',
    ],
)
def test_bad_payloads_rejected(raw):
    with pytest.raises(CheckpointError):
        Checkpoint.from_json(raw)


def test_unknown_phase_rejected_on_construction():
    with pytest.raises(CheckpointError):
        Checkpoint(phase="pending", iteration=0)


def test_coverage_fields_only_written_when_scored():
    scored = Checkpoint(
        phase="verifying",
        iteration=1,
        coverage_score=0.2,
        gaps=("battery storage capacity",),
    )
    data = json.loads(scored.to_json())
    assert data["coverage_score"] == 0.2
    assert data["gaps"] == ["battery storage capacity"]
    assert Checkpoint.from_json(scored.to_json()) == scored

    unscored = json.loads(Checkpoint(phase="verifying", iteration=1).to_json())
    assert "coverage_score" not in unscored
    assert "gaps" not in unscored


def test_coverage_score_out_of_range_rejected():
    with pytest.raises(CheckpointError):
        Checkpoint.from_json(
            '{"version": 1, "phase": "verifying", "iteration": 1, "coverage_score": 1.5}'
        )

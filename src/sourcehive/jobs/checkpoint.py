"""Versioned checkpoint payload stored in ``jobs.checkpoint_data``.

    {"version": 1, "phase": "searching", "iteration": 2,
     "acquired_source_ids": [...], "search_queries": [...], "plan": "...",
     "coverage_score": 0.4, "gaps": [...]}

``phase`` names the last phase that COMPLETED. ``coverage_score`` and
``gaps`` appear only when a verifying pass scored coverage; a resumed job
reuses them rather than evaluating again. A payload with an unknown
version or phase, or one that is not valid JSON, raises CheckpointError.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from sourcehive.errors import CheckpointError

CHECKPOINT_VERSION = 1
CHECKPOINT_PHASES: tuple[str, ...] = ("planning", "searching", "verifying")


@dataclass(frozen=True)
class Checkpoint:
    phase: str
    iteration: int
    acquired_source_ids: tuple[str, ...] = field(default_factory=tuple)
    search_queries: tuple[str, ...] = field(default_factory=tuple)
    plan: str | None = None
    coverage_score: float | None = None
    gaps: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.phase not in CHECKPOINT_PHASES:
            raise CheckpointError(f"unknown checkpoint phase '{self.phase}'")
        if self.iteration < 0:
            raise CheckpointError(f"negative checkpoint iteration {self.iteration}")
        if self.coverage_score is not None and not 0.0 <= self.coverage_score <= 1.0:
            raise CheckpointError(f"coverage score {self.coverage_score} outside [0, 1]")

    def to_json(self) -> str:
        payload = {
            "version": CHECKPOINT_VERSION,
            "phase": self.phase,
            "iteration": self.iteration,
            "acquired_source_ids": list(self.acquired_source_ids),
            "search_queries": list(self.search_queries),
            "plan": self.plan,
        }
        if self.coverage_score is not None:
            payload["coverage_score"] = self.coverage_score
            payload["gaps"] = list(self.gaps)
        return json.dumps(payload)

    @classmethod
    def from_json(cls, raw: str) -> Checkpoint:
        """Parse a stored payload.

        Raises:
            CheckpointError: If the payload is malformed or from another version.
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise CheckpointError(f"checkpoint is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise CheckpointError("checkpoint payload must be a JSON object")

        version = data.get("version")
        if version != CHECKPOINT_VERSION:
            raise CheckpointError(f"unsupported checkpoint version {version!r}")

        try:
            score = data.get("coverage_score")
            return cls(
                phase=str(data["phase"]),
                iteration=int(data["iteration"]),
                acquired_source_ids=tuple(str(s) for s in data.get("acquired_source_ids", [])),
                search_queries=tuple(str(q) for q in data.get("search_queries", [])),
                plan=data.get("plan"),
                coverage_score=None if score is None else float(score),
                gaps=tuple(str(g) for g in data.get("gaps", [])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CheckpointError(f"checkpoint payload incomplete: {exc}") from exc

"""SourceHive error taxonomy.

RetrievalError        degrade to the remaining signal, never abort a phase
RoutingExhaustedError no eligible provider produced a response; the job fails
PersistenceError      transaction rolled back in full, re-raised to the caller
IntegrityViolation    claim/citation defect; logged and the claim downgraded
OriginCoolingDown     an origin failed too often; fetches to it are refused for a while
FetchError            a fetch returned no usable page; counted against the origin, source skipped
OperationCancelled    a cancel request stopped an ingest before it wrote anything
"""

from __future__ import annotations

from dataclasses import dataclass


class SourceHiveError(Exception):
    """Base class for all SourceHive errors."""


class RetrievalError(SourceHiveError):
    """A single retrieval signal (keyword or semantic) could not be produced."""


class PersistenceError(SourceHiveError):
    """A store transaction failed and was rolled back."""


class RoutingExhaustedError(SourceHiveError):
    """Every provider eligible under the active strategy failed or was circuit-open.

    Attributes:
        attempts: ``(provider, reason)`` pairs in the order they were tried.
    """

    def __init__(self, message: str, attempts: list[tuple[str, str]] | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts or []


class CheckpointError(SourceHiveError):
    """A stored checkpoint is malformed or written by an unknown version."""


class InvalidTransition(SourceHiveError):
    """A job state change not permitted by the state machine."""


class JobNotFound(SourceHiveError):
    """No job with the requested id exists in the session store."""


class SessionNotFound(SourceHiveError):
    """No session with the requested id exists in the registry."""


@dataclass(eq=False)
class IntegrityViolation(SourceHiveError):
    """A claim that cannot stand as presented.

    Returned (not raised) by the integrity check so callers can log and
    report every defect found in one pass.
    """

    claim_id: str
    job_id: str
    reason: str
    missing_citation_ids: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"claim {self.claim_id} (job {self.job_id}): {self.reason}"


class OriginCoolingDown(SourceHiveError):
    """Fetches to an origin are suspended after repeated failures."""

    def __init__(self, origin: str, retry_after: float) -> None:
        super().__init__(f"origin {origin} is cooling down for {retry_after:.0f}s")
        self.origin = origin
        self.retry_after = retry_after


class FetchError(SourceHiveError):
    """A fetch collaborator answered, but not with a usable page."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class OperationCancelled(SourceHiveError):
    """A cancellation request was observed before the operation's write."""

"""Domain models for the SourceHive storage layer.

Tagged variants are plain ``str`` enums so they round-trip through SQLite text
columns unchanged. Timestamps are ISO-8601 UTC strings; list/map fields are
decoded from JSON text by the repositories.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> str:
    """Return the current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid.uuid4().hex


# ------------------------------------------------------------------
# Tagged variants
# ------------------------------------------------------------------


class SourceType(str, Enum):
    SNAPSHOT = "snapshot"
    ARTIFACT = "artifact"
    CAPTURE = "capture"
    REPO_CODE = "repo_code"
    REPO_DOC = "repo_doc"
    REPORT = "report"
    STRATEGY = "strategy"  # global store only


class CitationType(str, Enum):
    WEB_SNAPSHOT = "web_snapshot"
    PDF = "pdf"
    OCR_IMAGE = "ocr_image"
    FILE = "file"
    REPO = "repo"


# Default citation type for evidence coming from each source type.
CITATION_TYPE_FOR_SOURCE: dict[SourceType, CitationType] = {
    SourceType.SNAPSHOT: CitationType.WEB_SNAPSHOT,
    SourceType.ARTIFACT: CitationType.FILE,
    SourceType.CAPTURE: CitationType.OCR_IMAGE,
    SourceType.REPO_CODE: CitationType.REPO,
    SourceType.REPO_DOC: CitationType.REPO,
    SourceType.REPORT: CitationType.FILE,
    SourceType.STRATEGY: CitationType.FILE,
}


class SupportLevel(str, Enum):
    SUPPORTED = "supported"
    PARTIALLY_SUPPORTED = "partially_supported"
    DISPUTED = "disputed"
    UNVERIFIED = "unverified"


class JobType(str, Enum):
    RESEARCH = "research"
    DISCOVERY = "discovery"
    MATERIALS = "materials"
    PROGRAMMING_IP = "programming_ip"
    FUSION = "fusion"


class JobState(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    SEARCHING = "searching"
    VERIFYING = "verifying"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class DomainPack(str, Enum):
    GENERAL_RESEARCH = "general_research"
    HISTORY_PHILOSOPHY = "history_philosophy"
    MATH = "math"
    MAKER_MATERIALS = "maker_materials"
    CHEMISTRY_SAFE = "chemistry_safe"
    PROGRAMMING_RESEARCH_IP = "programming_research_ip"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ReportType(str, Enum):
    EXECUTIVE = "executive"
    FULL = "full"
    ACTIVITY = "activity"


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------


@dataclass
class Source:
    id: str
    session_id: str
    source_type: SourceType
    locator: str
    title: str = ""
    content_hash: str = ""
    created_utc: str = field(default_factory=utc_now)


@dataclass
class Chunk:
    id: str
    session_id: str
    source_id: str
    source_type: SourceType
    text: str
    start_offset: int
    end_offset: int
    chunk_index: int
    embedding: list[float] | None = None
    created_utc: str = field(default_factory=utc_now)
    rowid: int | None = None  # set after insert; None for unsaved chunks


@dataclass
class Citation:
    id: str
    session_id: str
    job_id: str
    citation_type: CitationType
    source_id: str
    excerpt: str
    label: str
    chunk_id: str | None = None
    start_offset: int | None = None
    end_offset: int | None = None
    page: int | None = None
    box: list[float] | None = None  # [x, y, width, height] on a capture
    created_utc: str = field(default_factory=utc_now)


@dataclass
class ClaimLedgerEntry:
    """One assertion of a report and the citations backing it.

    ``citation_ids`` may be empty only when ``support`` is UNVERIFIED.
    """

    id: str
    job_id: str
    claim: str
    support: SupportLevel
    citation_ids: list[str] = field(default_factory=list)
    explanation: str = ""
    position: int = 0


@dataclass
class JobStep:
    id: str
    job_id: str
    step_number: int
    action: str
    detail: str
    state_after: JobState
    timestamp_utc: str = field(default_factory=utc_now)
    success: bool = True
    error: str | None = None


@dataclass
class ReplayEntry:
    id: str
    order: int
    title: str
    description: str
    entry_type: str
    linked_source_id: str | None = None
    linked_citation_id: str | None = None
    timestamp_utc: str = field(default_factory=utc_now)
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order": self.order,
            "title": self.title,
            "description": self.description,
            "entry_type": self.entry_type,
            "linked_source_id": self.linked_source_id,
            "linked_citation_id": self.linked_citation_id,
            "timestamp_utc": self.timestamp_utc,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ReplayEntry:
        return cls(
            id=raw["id"],
            order=int(raw["order"]),
            title=raw.get("title", ""),
            description=raw.get("description", ""),
            entry_type=raw.get("entry_type", ""),
            linked_source_id=raw.get("linked_source_id"),
            linked_citation_id=raw.get("linked_citation_id"),
            timestamp_utc=raw.get("timestamp_utc") or utc_now(),
            data=raw.get("data"),
        )


@dataclass
class ResearchJob:
    id: str
    session_id: str
    job_type: JobType
    prompt: str
    state: JobState = JobState.PENDING
    plan: str | None = None
    search_queries: list[str] = field(default_factory=list)
    search_lanes: list[str] = field(default_factory=list)
    acquired_source_ids: list[str] = field(default_factory=list)
    target_source_count: int = 5
    max_iterations: int = 3
    current_iteration: int = 0
    created_utc: str = field(default_factory=utc_now)
    updated_utc: str = field(default_factory=utc_now)
    completed_utc: str | None = None
    error_message: str | None = None
    checkpoint_data: str | None = None
    most_supported_view: str | None = None
    credible_alternatives: str | None = None
    executive_summary: str | None = None
    full_report: str | None = None
    activity_report: str | None = None
    grounding_score: float | None = None
    replay_entries: list[ReplayEntry] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass
class GlobalChunk:
    id: str
    session_id: str
    source_type: SourceType
    text: str
    job_id: str | None = None
    repo_url: str | None = None
    domain_pack: DomainPack | None = None
    embedding: list[float] | None = None
    tags: list[str] = field(default_factory=list)
    promoted_utc: str = field(default_factory=utc_now)
    rowid: int | None = None


@dataclass
class Session:
    id: str
    title: str
    description: str = ""
    domain_pack: DomainPack = DomainPack.GENERAL_RESEARCH
    status: SessionStatus = SessionStatus.ACTIVE
    tags: list[str] = field(default_factory=list)
    created_utc: str = field(default_factory=utc_now)
    updated_utc: str = field(default_factory=utc_now)
    workspace_path: str | None = None
    last_report_summary: str | None = None


@dataclass
class Report:
    id: str
    session_id: str
    job_id: str
    report_type: ReportType
    title: str
    content: str
    format: str = "markdown"
    created_utc: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class SearchFilter:
    """Restrictions applied to both retrieval signals.

    Session stores honour ``source_types`` only; the global store honours all
    four fields. ``None`` means unrestricted.
    """

    source_types: tuple[SourceType, ...] | None = None
    domain_pack: DomainPack | None = None
    session_id: str | None = None
    repo_url: str | None = None

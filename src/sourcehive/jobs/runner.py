"""Research job runner: plan → search ⇄ verify → synthesize.

Each phase starts with an atomic state write (``update_job_state``) and ends
with a full job save that stores a checkpoint naming the completed phase.
A restarted job resumes after its last checkpoint, so at most one phase is
redone; a job with no usable checkpoint restarts at Planning.

The Searching ⇄ Verifying loop ends when the job holds
``target_source_count`` sources or has run ``max_iterations`` searches. A
shortfall is recorded as a step and synthesis goes ahead with what was found.
While another search is still possible, Verifying asks the mini tier to score
how well the evidence covers the search questions. The unanswered questions
(gaps) steer the next search: below ``COVERAGE_PIVOT`` they are searched
directly, otherwise they are handed to the refinement prompt.

Cancellation is cooperative: an asyncio.Event set by the caller, or a
Cancelled state written to the store by another process, is honoured between
phases and inside the acquisition loop.

Any other exception escaping a phase fails the job: the Failed state, the
error message and a failed step are written before ``run`` returns.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass

from sourcehive.config import JobsCfg
from sourcehive.db.models import (
    Citation,
    DomainPack,
    JobState,
    JobType,
    ReplayEntry,
    Report,
    ReportType,
    ResearchJob,
    SearchFilter,
    Source,
    SourceType,
    new_id,
    utc_now,
)
from sourcehive.db.repository import SessionRepository
from sourcehive.errors import (
    CheckpointError,
    InvalidTransition,
    JobNotFound,
    PersistenceError,
    RoutingExhaustedError,
)
from sourcehive.evidence.ledger import (
    ClaimLedger,
    build_citations,
    dedupe_by_source,
    extract_claims,
    grounding_score,
)
from sourcehive.jobs.acquire import SourceAcquirer
from sourcehive.jobs.checkpoint import Checkpoint
from sourcehive.jobs.state import check_transition
from sourcehive.llm.router import ModelRouter
from sourcehive.memory.global_memory import GlobalMemory
from sourcehive.retrieval.hybrid import HybridRetriever, ScoredChunk

logger = logging.getLogger(__name__)

MAX_PLAN_QUERIES = 6

# At or above SUFFICIENT the gaps are ignored; below PIVOT they replace
# the refinement call as the next queries.
COVERAGE_SUFFICIENT = 0.7
COVERAGE_PIVOT = 0.25
MAX_GAP_QUERIES = 5
MAX_COVERAGE_QUESTIONS = 10
MAX_COVERAGE_SOURCES = 10
COVERAGE_EXCERPT_CHARS = 300

# Source types searched for each job type.
SEARCH_LANES: dict[JobType, tuple[SourceType, ...]] = {
    JobType.RESEARCH: (SourceType.SNAPSHOT, SourceType.ARTIFACT, SourceType.CAPTURE, SourceType.REPORT),
    JobType.DISCOVERY: (SourceType.SNAPSHOT, SourceType.ARTIFACT, SourceType.REPO_DOC),
    JobType.MATERIALS: (SourceType.SNAPSHOT, SourceType.ARTIFACT, SourceType.CAPTURE),
    JobType.PROGRAMMING_IP: (SourceType.REPO_CODE, SourceType.REPO_DOC, SourceType.SNAPSHOT),
    JobType.FUSION: (SourceType.REPO_CODE, SourceType.REPO_DOC, SourceType.REPORT),
}

_PLAN_SYSTEM = (
    "You are a research planner. Break the research question into focused search "
    "queries. Reply with a short plan, then one search query per line prefixed with '- '."
)
_REFINE_SYSTEM = (
    "You are a research planner. Suggest new search queries that cover what the "
    "previous queries missed. One query per line prefixed with '- '."
)
_SYNTH_SYSTEM = (
    "You are a careful research analyst. Write a report using ONLY the numbered "
    "evidence. Cite every factual sentence with its evidence label, e.g. [1]. "
    "Include the sections '## Most Supported View' and '## Credible Alternatives'."
)
_SUMMARY_SYSTEM = "Summarise the report in 3-5 sentences for a busy reader. Keep citation labels."
_COVERAGE_SYSTEM = (
    "You are evaluating research coverage. Given numbered sub-questions and the "
    "evidence collected, decide which are answered, partially answered or unanswered. "
    'Reply with JSON only, e.g. {"answered": [1], "partial": [2], "unanswered": [3], '
    '"score": 0.65}. Use the sub-question numbers; score is overall coverage from 0.0 to 1.0.'
)

_QUERY_LINE = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+(.+?)\s*$")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class _CancelRequested(Exception):
    """Raised inside the runner when a cancellation request is observed."""


@dataclass(frozen=True)
class Coverage:
    """How well the evidence answers the search questions; *gaps* are the unanswered ones."""

    score: float
    gaps: tuple[str, ...] = ()

    @property
    def sufficient(self) -> bool:
        return self.score >= COVERAGE_SUFFICIENT


def parse_queries(text: str, limit: int = MAX_PLAN_QUERIES) -> list[str]:
    """Bullet or numbered lines of an LLM reply, de-duplicated, at most *limit*."""
    queries: list[str] = []
    for line in text.splitlines():
        match = _QUERY_LINE.match(line)
        if not match:
            continue
        query = match.group(1).strip().strip('"')
        if query and query.lower() not in (q.lower() for q in queries):
            queries.append(query)
        if len(queries) >= limit:
            break
    return queries


def extract_section(text: str, heading: str) -> str | None:
    """Body of the markdown section titled *heading* (any level), or None."""
    pattern = re.compile(
        rf"^#+\s*{re.escape(heading)}\s*$(.*?)(?=^#+\s|\Z)",
        re.IGNORECASE | re.MULTILINE | re.DOTALL,
    )
    match = pattern.search(text)
    if not match:
        return None
    body = match.group(1).strip()
    return body or None


def parse_coverage(text: str, questions: list[str]) -> Coverage | None:
    """Coverage from an evaluator reply, or None if it holds no usable JSON object.

    ``unanswered`` lists 1-based positions in *questions*; positions out of
    range are ignored. A missing ``score`` counts as 0.5 and the score is
    clamped to [0, 1].
    """
    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        score = float(data.get("score", 0.5))
        positions = [int(p) for p in data.get("unanswered") or []]
    except (TypeError, ValueError):
        return None
    if math.isnan(score):
        return None
    gaps = [questions[p - 1] for p in positions if 1 <= p <= len(questions)]
    return Coverage(score=min(max(score, 0.0), 1.0), gaps=tuple(dict.fromkeys(gaps)))


class ResearchJobRunner:
    """Drives one session's research jobs through their phases.

    Args:
        repo: Session store holding the job.
        router: Routes every LLM call.
        retriever: Ranks evidence for synthesis.
        acquirer: Supplies sources during Searching.
        config: Job defaults and citation/claim caps.
        memory: Global memory for post-completion strategy extraction.
        domain_pack: Domain pack recorded on extracted strategies.
    """

    def __init__(
        self,
        repo: SessionRepository,
        router: ModelRouter,
        retriever: HybridRetriever,
        acquirer: SourceAcquirer,
        config: JobsCfg,
        memory: GlobalMemory | None = None,
        domain_pack: DomainPack | None = None,
    ) -> None:
        self._repo = repo
        self._router = router
        self._retriever = retriever
        self._acquirer = acquirer
        self._config = config
        self._memory = memory
        self._domain_pack = domain_pack
        self._ledger = ClaimLedger(repo)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, job_id: str, cancel_event: asyncio.Event | None = None) -> ResearchJob:
        """Run (or resume) *job_id* to a terminal state and return the final job.

        An exception escaping a phase marks the job Failed and the failed job
        is returned; only cancellation of the calling task propagates.

        Raises:
            JobNotFound: If the job does not exist.
            PersistenceError: If even the Failed state cannot be written; the
                original error is re-raised and the job keeps its last
                committed state and checkpoint.
        """
        job = self._repo.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if job.is_terminal:
            return job

        resuming = job.state != JobState.PENDING
        checkpoint = self._load_checkpoint(job)
        logger.info(
            "job_started",
            extra={
                "job_id": job.id,
                "state": job.state.value,
                "resume_phase": checkpoint.phase if checkpoint else None,
            },
        )

        coverage: Coverage | None = None
        try:
            if checkpoint is None:
                await self._plan(job, cancel_event, resuming=resuming)
                next_state = JobState.SEARCHING
            else:
                self._restore(job, checkpoint)
                if checkpoint.coverage_score is not None:
                    coverage = Coverage(checkpoint.coverage_score, checkpoint.gaps)
                self._step(job, "resumed", f"Resuming after {checkpoint.phase}", job.state)
                next_state = self._after(checkpoint.phase, job)
            resuming = resuming and checkpoint is not None

            while True:
                self._check_cancel(job, cancel_event)
                if next_state == JobState.SEARCHING:
                    await self._search(job, cancel_event, coverage, resuming=resuming)
                    next_state = JobState.VERIFYING
                elif next_state == JobState.VERIFYING:
                    coverage = await self._verify(job, cancel_event, resuming=resuming)
                    next_state = self._after("verifying", job)
                else:
                    await self._synthesize(job, cancel_event, resuming=resuming)
                    break
                resuming = False

        except _CancelRequested:
            return self._mark_cancelled(job)
        except asyncio.CancelledError:
            self._mark_cancelled(job)
            raise
        except Exception as exc:
            try:
                return self._mark_failed(job, exc)
            except (PersistenceError, InvalidTransition):
                logger.error(
                    "job_failure_unrecorded", extra={"job_id": job.id, "error": str(exc)}
                )
                raise exc from None

        await self._extract_strategy(job)
        return job

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _plan(
        self, job: ResearchJob, cancel_event: asyncio.Event | None, *, resuming: bool
    ) -> None:
        self._transition(job, JobState.PLANNING, cancel_event, resuming=resuming)
        response = await self._router.generate(
            f"Research question: {job.prompt}", _PLAN_SYSTEM, max_tokens=800
        )
        queries = parse_queries(response.text) or [job.prompt]
        job.plan = response.text.strip()
        job.search_queries = queries
        job.search_lanes = [t.value for t in SEARCH_LANES[job.job_type]]
        self._replay(job, "planning", "Research plan", job.plan or "", data={"queries": queries})
        self._step(job, "planned", f"{len(queries)} search queries", JobState.PLANNING)
        self._checkpoint(job, "planning")

    async def _search(
        self,
        job: ResearchJob,
        cancel_event: asyncio.Event | None,
        coverage: Coverage | None,
        *,
        resuming: bool,
    ) -> None:
        self._transition(job, JobState.SEARCHING, cancel_event, resuming=resuming)
        job.current_iteration += 1

        if job.current_iteration == 1:
            queries = list(job.search_queries)
        else:
            queries = await self._next_queries(job, coverage)

        acquired: list[str] = []
        for query in queries:
            self._check_cancel(job, cancel_event)
            wanted = job.target_source_count - len(job.acquired_source_ids)
            if wanted <= 0:
                break
            new_ids = await self._acquirer.acquire(
                job, [query], wanted, exclude=set(job.acquired_source_ids)
            )
            for source_id in new_ids:
                if source_id not in job.acquired_source_ids:
                    job.acquired_source_ids.append(source_id)
                    acquired.append(source_id)
                    self._replay(
                        job, "source", "Source acquired", query, linked_source_id=source_id
                    )

        self._step(
            job,
            "searched",
            f"Iteration {job.current_iteration}: {len(acquired)} new sources "
            f"({len(job.acquired_source_ids)}/{job.target_source_count})",
            JobState.SEARCHING,
        )
        self._checkpoint(job, "searching")

    async def _next_queries(self, job: ResearchJob, coverage: Coverage | None) -> list[str]:
        """Queries for a repeat search: the coverage gaps, or an LLM refinement."""
        gaps = list(coverage.gaps) if coverage is not None and not coverage.sufficient else []
        if gaps and coverage.score < COVERAGE_PIVOT:
            queries = gaps[:MAX_GAP_QUERIES]
            self._replay(
                job,
                "pivot",
                "Searching coverage gaps",
                f"{len(queries)} unanswered questions searched directly",
                data={"queries": queries},
            )
            return queries

        prompt = f"Research question: {job.prompt}\nPrevious queries:\n" + "\n".join(
            f"- {q}" for q in job.search_queries
        )
        if gaps:
            prompt += "\nStill unanswered:\n" + "\n".join(f"- {g}" for g in gaps)
        response = await self._router.generate(prompt, _REFINE_SYSTEM, max_tokens=400, tier="mini")
        used = {q.lower() for q in job.search_queries}
        queries = [q for q in parse_queries(response.text) if q.lower() not in used]
        queries = queries or gaps or list(job.search_queries)
        job.search_queries.extend(q for q in queries if q.lower() not in used)
        return queries

    async def _verify(
        self, job: ResearchJob, cancel_event: asyncio.Event | None, *, resuming: bool
    ) -> Coverage | None:
        """Record source coverage; score question coverage while another search can follow."""
        self._transition(job, JobState.VERIFYING, cancel_event, resuming=resuming)
        have, want = len(job.acquired_source_ids), job.target_source_count
        coverage = None if self._loop_done(job) else await self._evaluate_coverage(job)

        detail = f"Coverage {have}/{want} sources"
        if coverage is not None:
            verdict = "sufficient" if coverage.sufficient else f"{len(coverage.gaps)} gaps"
            detail += f", score {coverage.score:.0%} ({verdict})"
            self._replay(
                job,
                "evaluate",
                "Coverage evaluation",
                detail,
                data={"score": coverage.score, "gaps": list(coverage.gaps)},
            )
        self._step(job, "verified", detail, JobState.VERIFYING)
        if have < want and job.current_iteration >= job.max_iterations:
            self._step(
                job,
                "search_shortfall",
                f"Stopped after {job.current_iteration} iterations with {have}/{want} sources",
                JobState.VERIFYING,
            )
        self._checkpoint(job, "verifying", coverage)
        return coverage

    async def _evaluate_coverage(self, job: ResearchJob) -> Coverage | None:
        """Ask the mini tier which search questions the evidence leaves unanswered."""
        if not job.acquired_source_ids:
            return Coverage(score=0.0)
        questions = job.search_queries[:MAX_COVERAGE_QUESTIONS]
        excerpts = []
        for source_id in job.acquired_source_ids[:MAX_COVERAGE_SOURCES]:
            chunks = self._repo.list_chunks(source_id=source_id)
            if chunks:
                excerpts.append(f"- {chunks[0].text[:COVERAGE_EXCERPT_CHARS]}")
        numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(questions, 1))
        response = await self._router.generate(
            f"Research question: {job.prompt}\n\nSub-questions:\n{numbered}\n\n"
            "Evidence collected:\n" + ("\n".join(excerpts) or "(none)"),
            _COVERAGE_SYSTEM,
            max_tokens=300,
            tier="mini",
        )
        coverage = parse_coverage(response.text, questions)
        if coverage is None:
            logger.warning("coverage_unscored", extra={"job_id": job.id})
        return coverage

    async def _synthesize(
        self, job: ResearchJob, cancel_event: asyncio.Event | None, *, resuming: bool
    ) -> None:
        self._transition(job, JobState.SYNTHESIZING, cancel_event, resuming=resuming)
        # A re-run must not stack a second set of citations and claims.
        self._repo.clear_job_evidence(job.id)

        evidence = await self._gather_evidence(job, cancel_event)
        sources = {s.id: s for s in self._repo.list_sources() if s.id in job.acquired_source_ids}
        citations = build_citations(job.session_id, job.id, evidence, sources)
        self._repo.add_citations(citations)
        self._step(job, "cited", f"{len(citations)} citations from evidence", JobState.SYNTHESIZING)

        evidence_block = "\n\n".join(
            f"{c.label} {sources[c.source_id].title if c.source_id in sources else c.source_id}\n{c.excerpt}"
            for c in citations
        ) or "(no evidence was found)"
        self._check_cancel(job, cancel_event)
        draft = await self._router.generate(
            f"Research question: {job.prompt}\n\nEvidence:\n{evidence_block}",
            _SYNTH_SYSTEM,
            max_tokens=self._config.synthesis_max_tokens,
            tier="full",
        )
        if draft.was_truncated:
            self._step(job, "draft_truncated", "Report hit the token limit", JobState.SYNTHESIZING)

        claims = extract_claims(draft.text, self._config.max_claims)
        self._ledger.record(job.id, claims, citations)
        violations = self._ledger.verify(job.id)
        job.grounding_score = grounding_score(claims)
        self._step(
            job,
            "claims_recorded",
            f"{len(claims)} claims, grounding {job.grounding_score:.0%}, "
            f"{len(violations)} downgraded",
            JobState.SYNTHESIZING,
        )

        self._check_cancel(job, cancel_event)
        summary = await self._router.generate(draft.text, _SUMMARY_SYSTEM, max_tokens=600, tier="mini")

        job.full_report = _full_report(job, draft.text, citations, sources)
        job.executive_summary = summary.text.strip()
        job.most_supported_view = extract_section(draft.text, "Most Supported View")
        job.credible_alternatives = extract_section(draft.text, "Credible Alternatives")
        job.activity_report = self._activity_report(job, len(citations), len(claims))
        self._replay(
            job,
            "grounding",
            "Grounding score",
            f"{job.grounding_score:.0%} of {len(claims)} claims cited",
        )
        for report_type, title, content in (
            (ReportType.EXECUTIVE, "Executive Summary", job.executive_summary),
            (ReportType.FULL, "Full Report", job.full_report),
            (ReportType.ACTIVITY, "Activity Report", job.activity_report),
        ):
            self._repo.save_report(
                Report(
                    id=new_id(),
                    session_id=job.session_id,
                    job_id=job.id,
                    report_type=report_type,
                    title=f"{title}: {job.prompt[:60]}",
                    content=content,
                )
            )

        self._repo.save_job(job)
        self._write_state(job, JobState.COMPLETED)
        job.completed_utc = job.updated_utc
        self._step(job, "completed", "Reports written", JobState.COMPLETED)
        logger.info(
            "job_completed",
            extra={
                "job_id": job.id,
                "sources": len(job.acquired_source_ids),
                "citations": len(citations),
                "grounding_score": job.grounding_score,
            },
        )

    async def _gather_evidence(
        self, job: ResearchJob, cancel_event: asyncio.Event | None
    ) -> list[ScoredChunk]:
        """Best chunk per acquired source across the prompt and all search queries."""
        lanes = tuple(SourceType(t) for t in job.search_lanes) or None
        filt = SearchFilter(source_types=lanes)
        allowed = set(job.acquired_source_ids)
        best: dict[str, ScoredChunk] = {}
        for query in [job.prompt, *job.search_queries]:
            self._check_cancel(job, cancel_event)
            for hit in await self._retriever.search(
                self._repo, query, filt, top_k=self._config.evidence_top_k
            ):
                if hit.chunk.source_id not in allowed:
                    continue
                current = best.get(hit.chunk.id)
                if current is None or hit.score > current.score:
                    best[hit.chunk.id] = hit
        ranked = sorted(best.values(), key=lambda h: (-h.score, h.chunk.id))
        return dedupe_by_source(ranked, self._config.max_citations)

    # ------------------------------------------------------------------
    # State, steps, checkpoints
    # ------------------------------------------------------------------

    def _transition(
        self,
        job: ResearchJob,
        target: JobState,
        cancel_event: asyncio.Event | None,
        *,
        resuming: bool = False,
    ) -> None:
        self._check_cancel(job, cancel_event)
        check_transition(job.state, target, resuming=resuming)
        self._write_state(job, target)

    def _write_state(
        self, job: ResearchJob, target: JobState, *, error_message: str | None = None
    ) -> None:
        try:
            job.updated_utc = self._repo.update_job_state(
                job.id, target, error_message=error_message
            )
        except InvalidTransition:
            # Only a cancellation from another connection can end the job under us.
            if self._repo.get_job_state(job.id) == JobState.CANCELLED:
                raise _CancelRequested() from None
            raise
        job.state = target

    def _check_cancel(self, job: ResearchJob, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _CancelRequested()
        if self._repo.get_job_state(job.id) == JobState.CANCELLED:
            raise _CancelRequested()

    def _step(self, job: ResearchJob, action: str, detail: str, state: JobState, **kw) -> None:
        self._repo.add_step(job.id, action, detail, state, **kw)

    def _replay(
        self,
        job: ResearchJob,
        entry_type: str,
        title: str,
        description: str,
        *,
        linked_source_id: str | None = None,
        data: dict | None = None,
    ) -> None:
        job.replay_entries.append(
            ReplayEntry(
                id=new_id(),
                order=len(job.replay_entries) + 1,
                title=title,
                description=description,
                entry_type=entry_type,
                linked_source_id=linked_source_id,
                data=data,
            )
        )

    def _checkpoint(self, job: ResearchJob, phase: str, coverage: Coverage | None = None) -> None:
        job.checkpoint_data = Checkpoint(
            phase=phase,
            iteration=job.current_iteration,
            acquired_source_ids=tuple(job.acquired_source_ids),
            search_queries=tuple(job.search_queries),
            plan=job.plan,
            coverage_score=coverage.score if coverage is not None else None,
            gaps=coverage.gaps if coverage is not None else (),
        ).to_json()
        self._repo.save_job(job)

    def _load_checkpoint(self, job: ResearchJob) -> Checkpoint | None:
        if not job.checkpoint_data:
            return None
        try:
            return Checkpoint.from_json(job.checkpoint_data)
        except CheckpointError as exc:
            logger.warning("checkpoint_rejected", extra={"job_id": job.id, "error": str(exc)})
            self._step(
                job,
                "checkpoint_rejected",
                "Restarting from planning",
                job.state,
                success=False,
                error=str(exc),
            )
            return None

    @staticmethod
    def _restore(job: ResearchJob, checkpoint: Checkpoint) -> None:
        job.current_iteration = checkpoint.iteration
        job.acquired_source_ids = list(checkpoint.acquired_source_ids)
        job.search_queries = list(checkpoint.search_queries)
        job.plan = checkpoint.plan
        if not job.search_lanes:
            job.search_lanes = [t.value for t in SEARCH_LANES[job.job_type]]

    def _after(self, phase: str, job: ResearchJob) -> JobState:
        """The phase that follows completed *phase*."""
        if phase == "planning":
            return JobState.SEARCHING
        if phase == "searching":
            return JobState.VERIFYING
        if self._loop_done(job):
            return JobState.SYNTHESIZING
        return JobState.SEARCHING

    @staticmethod
    def _loop_done(job: ResearchJob) -> bool:
        return (
            len(job.acquired_source_ids) >= job.target_source_count
            or job.current_iteration >= job.max_iterations
        )

    def _mark_cancelled(self, job: ResearchJob) -> ResearchJob:
        if self._repo.get_job_state(job.id) != JobState.CANCELLED:
            job.updated_utc = self._repo.update_job_state(job.id, JobState.CANCELLED)
        job.state = JobState.CANCELLED
        self._step(job, "cancelled", "Cancelled; last checkpoint kept", JobState.CANCELLED)
        logger.info("job_cancelled", extra={"job_id": job.id})
        return self._repo.get_job(job.id) or job

    def _mark_failed(self, job: ResearchJob, exc: Exception) -> ResearchJob:
        phase = job.state
        message = str(exc) or type(exc).__name__
        try:
            self._write_state(job, JobState.FAILED, error_message=message)
        except _CancelRequested:
            return self._mark_cancelled(job)
        job.error_message = message
        if isinstance(exc, RoutingExhaustedError):
            detail = f"LLM routing exhausted during {phase.value}"
        else:
            detail = f"{type(exc).__name__} during {phase.value}"
        self._step(job, "failed", detail, JobState.FAILED, success=False, error=message)
        logger.error(
            "job_failed",
            extra={"job_id": job.id, "phase": phase.value, "error": message},
            exc_info=not isinstance(exc, RoutingExhaustedError),
        )
        return job

    async def _extract_strategy(self, job: ResearchJob) -> None:
        if self._memory is None:
            return
        await self._memory.extract_strategy(job, self._domain_pack)

    def _activity_report(self, job: ResearchJob, citations: int, claims: int) -> str:
        lines = [
            f"# Activity Report: {job.prompt}",
            "",
            f"*Sources: {len(job.acquired_source_ids)}/{job.target_source_count} | "
            f"Iterations: {job.current_iteration}/{job.max_iterations} | "
            f"Citations: {citations} | Claims: {claims} | "
            f"Grounding: {(job.grounding_score or 0.0):.0%}*",
            "",
        ]
        for step in self._repo.get_job_steps(job.id):
            mark = "ok" if step.success else "FAILED"
            lines.append(
                f"{step.step_number}. [{step.state_after.value}] {step.action}: {step.detail} ({mark})"
            )
        lines.append(f"\nGenerated {utc_now()}")
        return "\n".join(lines)


def _full_report(
    job: ResearchJob, draft: str, citations: list[Citation], sources: dict[str, Source]
) -> str:
    lines = [f"# {job.prompt}", "", draft.strip(), "", "## Sources", ""]
    for c in citations:
        source = sources.get(c.source_id)
        where = f"{source.title or source.locator} ({source.locator})" if source else c.source_id
        lines.append(f"{c.label} {where}")
    return "\n".join(lines)

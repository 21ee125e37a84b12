"""Citation tracker and claim ledger.

Pipeline for one synthesis pass:
  1. dedupe_by_source()   best-scoring chunk per source, capped at max_citations
  2. build_citations()    numbered citations [1]..[n] with trimmed excerpts
  3. extract_claims()     assertion lines of the drafted report
  4. ClaimLedger.record() bind each claim's [n] labels to citation ids and
                          classify support by lexical overlap with the excerpts
  5. ClaimLedger.verify() integrity check; defective claims are downgraded

Invariant: a claim whose support is not UNVERIFIED cites at least one existing
citation of the same job.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from sourcehive.db.models import (
    CITATION_TYPE_FOR_SOURCE,
    Chunk,
    Citation,
    CitationType,
    ClaimLedgerEntry,
    Source,
    SupportLevel,
    new_id,
)
from sourcehive.db.repository import SessionRepository
from sourcehive.errors import IntegrityViolation
from sourcehive.retrieval.hybrid import ScoredChunk

logger = logging.getLogger(__name__)

EXCERPT_LIMIT = 400
SUPPORTED_OVERLAP = 0.3

_CITATION_REF = re.compile(r"\[(\d+)\]")
_WORD = re.compile(r"[a-z0-9]+")


# ------------------------------------------------------------------
# Evidence → citations
# ------------------------------------------------------------------


def dedupe_by_source(hits: Iterable[ScoredChunk[Chunk]], limit: int) -> list[ScoredChunk[Chunk]]:
    """Keep the first (best) hit per source, preserving rank order, at most *limit*."""
    seen: set[str] = set()
    result: list[ScoredChunk[Chunk]] = []
    for hit in hits:
        if hit.chunk.source_id in seen:
            continue
        seen.add(hit.chunk.source_id)
        result.append(hit)
        if len(result) >= limit:
            break
    return result


def trim_excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def citation_type_for(chunk: Chunk, source: Source | None = None) -> CitationType:
    if source is not None and source.locator.lower().endswith(".pdf"):
        return CitationType.PDF
    return CITATION_TYPE_FOR_SOURCE.get(chunk.source_type, CitationType.FILE)


def build_citations(
    session_id: str,
    job_id: str,
    evidence: list[ScoredChunk[Chunk]],
    sources: dict[str, Source] | None = None,
) -> list[Citation]:
    """One citation per evidence hit, labelled [1]..[n] in evidence order."""
    sources = sources or {}
    citations: list[Citation] = []
    for number, hit in enumerate(evidence, start=1):
        chunk = hit.chunk
        citations.append(
            Citation(
                id=new_id(),
                session_id=session_id,
                job_id=job_id,
                citation_type=citation_type_for(chunk, sources.get(chunk.source_id)),
                source_id=chunk.source_id,
                chunk_id=chunk.id,
                start_offset=chunk.start_offset,
                end_offset=chunk.end_offset,
                excerpt=trim_excerpt(chunk.text),
                label=f"[{number}]",
            )
        )
    return citations


# ------------------------------------------------------------------
# Claims
# ------------------------------------------------------------------


def extract_claims(text: str, max_claims: int = 20) -> list[str]:
    """Assertion lines of a report: longer than 20 chars, not headings or emphasis lines."""
    claims: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if len(stripped) <= 20 or stripped.startswith(("#", "*")):
            continue
        claims.append(stripped)
        if len(claims) >= max_claims:
            break
    return claims


def cited_labels(claim: str) -> list[str]:
    """``[n]`` labels in order of first appearance, without repeats."""
    labels: list[str] = []
    for number in _CITATION_REF.findall(claim):
        label = f"[{int(number)}]"
        if label not in labels:
            labels.append(label)
    return labels


def grounding_score(claims: list[str]) -> float:
    """Fraction of claims carrying at least one [n] reference; 0.0 for no claims."""
    if not claims:
        return 0.0
    return sum(1 for c in claims if _CITATION_REF.search(c)) / len(claims)


def _terms(text: str) -> set[str]:
    return {w for w in _WORD.findall(text.lower()) if len(w) > 3}


def lexical_overlap(claim: str, excerpts: Iterable[str]) -> float:
    """Share of the claim's content words (len > 3) found in the cited excerpts."""
    claim_terms = _terms(_CITATION_REF.sub(" ", claim))
    if not claim_terms:
        return 0.0
    evidence_terms: set[str] = set()
    for excerpt in excerpts:
        evidence_terms |= _terms(excerpt)
    return len(claim_terms & evidence_terms) / len(claim_terms)


def classify_support(claim: str, cited: list[Citation]) -> tuple[SupportLevel, str]:
    if not cited:
        return SupportLevel.UNVERIFIED, "No citation supports this claim."
    overlap = lexical_overlap(claim, (c.excerpt for c in cited))
    labels = ", ".join(c.label for c in cited)
    if overlap >= SUPPORTED_OVERLAP:
        return SupportLevel.SUPPORTED, f"{overlap:.0%} of claim terms found in {labels}."
    return (
        SupportLevel.PARTIALLY_SUPPORTED,
        f"Only {overlap:.0%} of claim terms found in {labels}.",
    )


class ClaimLedger:
    """Records claims for a job and enforces the claim/citation invariant."""

    def __init__(self, repo: SessionRepository) -> None:
        self._repo = repo

    def record_claim(
        self,
        job_id: str,
        claim: str,
        citation_ids: list[str],
        support: SupportLevel | None = None,
        explanation: str = "",
        position: int = 0,
    ) -> ClaimLedgerEntry:
        """Persist one claim.

        With no citation ids the claim is stored as UNVERIFIED whatever
        *support* says. With no *support* it is classified from the excerpts.

        Raises:
            IntegrityViolation: If a citation id is unknown or belongs to another job.
        """
        ids = list(dict.fromkeys(citation_ids))
        found = self._repo.get_citations_by_ids(ids)
        bad = tuple(i for i in ids if i not in found or found[i].job_id != job_id)
        if bad:
            raise IntegrityViolation(
                claim_id="(new)",
                job_id=job_id,
                reason="cites citations that do not exist in this job",
                missing_citation_ids=bad,
            )

        cited = [found[i] for i in ids]
        if not cited:
            support = SupportLevel.UNVERIFIED
            explanation = explanation or "No citation supports this claim."
        elif support is None:
            support, explanation = classify_support(claim, cited)

        entry = ClaimLedgerEntry(
            id=new_id(),
            job_id=job_id,
            claim=claim,
            support=support,
            citation_ids=ids,
            explanation=explanation,
            position=position,
        )
        self._repo.add_claims([entry])
        return entry

    def record(
        self, job_id: str, claims: list[str], citations: list[Citation]
    ) -> list[ClaimLedgerEntry]:
        """Bind each claim's [n] labels to *citations* and store the whole batch at once.

        Labels with no matching citation are dropped from the claim's ids.
        """
        by_label = {c.label: c for c in citations if c.job_id == job_id}
        entries: list[ClaimLedgerEntry] = []
        for position, claim in enumerate(claims):
            cited = [by_label[label] for label in cited_labels(claim) if label in by_label]
            support, explanation = classify_support(claim, cited)
            entries.append(
                ClaimLedgerEntry(
                    id=new_id(),
                    job_id=job_id,
                    claim=claim,
                    support=support,
                    citation_ids=[c.id for c in cited],
                    explanation=explanation,
                    position=position,
                )
            )
        self._repo.add_claims(entries)
        return entries

    def verify(self, job_id: str) -> list[IntegrityViolation]:
        """Integrity check: downgrade every claim whose citations do not hold up.

        A claim other than UNVERIFIED is defective if it has no citation ids,
        or if any id is missing or belongs to another job. Defective claims
        keep only their valid ids and become UNVERIFIED. The job is untouched.
        """
        entries = self._repo.get_claim_ledger(job_id)
        all_ids = {i for e in entries for i in e.citation_ids}
        found = self._repo.get_citations_by_ids(all_ids)

        violations: list[IntegrityViolation] = []
        for entry in entries:
            if entry.support == SupportLevel.UNVERIFIED:
                continue
            bad = tuple(
                i for i in entry.citation_ids if i not in found or found[i].job_id != job_id
            )
            if entry.citation_ids and not bad:
                continue
            reason = (
                "no citations" if not entry.citation_ids
                else f"{len(bad)} citation(s) missing or from another job"
            )
            violation = IntegrityViolation(
                claim_id=entry.id, job_id=job_id, reason=reason, missing_citation_ids=bad
            )
            logger.warning(
                "claim_downgraded",
                extra={"claim_id": entry.id, "job_id": job_id, "reason": reason},
            )
            kept = [i for i in entry.citation_ids if i not in bad]
            self._repo.update_claim(
                entry.id,
                SupportLevel.UNVERIFIED,
                kept,
                f"Downgraded by integrity check: {reason}.",
            )
            violations.append(violation)
        return violations

"""Tests for citation building and the claim ledger."""

from __future__ import annotations

import pytest

from sourcehive.db.models import (
    Chunk,
    CitationType,
    JobType,
    ResearchJob,
    Source,
    SourceType,
    SupportLevel,
)
from sourcehive.errors import IntegrityViolation
from sourcehive.evidence.ledger import (
    EXCERPT_LIMIT,
    ClaimLedger,
    build_citations,
    cited_labels,
    classify_support,
    dedupe_by_source,
    extract_claims,
    grounding_score,
    lexical_overlap,
)
from sourcehive.retrieval.hybrid import ScoredChunk


def _hit(id, source_id, text="solar panels convert sunlight into electricity", score=1.0):
    chunk = Chunk(
        id=id,
        session_id="s1",
        source_id=source_id,
        source_type=SourceType.ARTIFACT,
        text=text,
        start_offset=10,
        end_offset=10 + len(text),
        chunk_index=0,
    )
    return ScoredChunk(chunk=chunk, score=score)


@pytest.fixture
def ledger(repo):
    for job_id in ("job-1", "job-2"):
        repo.create_job(
            ResearchJob(id=job_id, session_id="s1", job_type=JobType.RESEARCH, prompt="q")
        )
    return ClaimLedger(repo)


def _cite(repo, job_id="job-1", hits=None):
    citations = build_citations("s1", job_id, hits or [_hit("c1", "a"), _hit("c2", "b", "battery storage capacity")])
    repo.add_citations(citations)
    return citations


# ------------------------------------------------------------------
# Evidence → citations
# ------------------------------------------------------------------


def test_dedupe_by_source_keeps_best_per_source():
    hits = [_hit("c1", "a", score=0.9), _hit("c2", "a", score=0.8), _hit("c3", "b", score=0.7)]
    assert [h.chunk.id for h in dedupe_by_source(hits, 10)] == ["c1", "c3"]
    assert [h.chunk.id for h in dedupe_by_source(hits, 1)] == ["c1"]


def test_build_citations_labels_and_offsets():
    citations = build_citations("s1", "job-1", [_hit("c1", "a"), _hit("c2", "b")])
    assert [c.label for c in citations] == ["[1]", "[2]"]
    assert citations[0].chunk_id == "c1"
    assert citations[0].start_offset == 10
    assert citations[0].citation_type == CitationType.FILE


def test_build_citations_pdf_type_and_trimmed_excerpt():
    long_text = "x" * (EXCERPT_LIMIT + 50)
    source = Source(id="a", session_id="s1", source_type=SourceType.ARTIFACT, locator="/p/doc.PDF")
    [citation] = build_citations("s1", "job-1", [_hit("c1", "a", long_text)], {"a": source})
    assert citation.citation_type == CitationType.PDF
    assert citation.excerpt.endswith("...")
    assert len(citation.excerpt) == EXCERPT_LIMIT + 3


# ------------------------------------------------------------------
# Claims
# ------------------------------------------------------------------


def test_extract_claims_skips_headings_and_short_lines():
    text = "# Title\nShort line.\n*Emphasis line that is quite long*\n" \
           "Solar output doubled over the decade [1].\n\nBatteries store the surplus [2]."
    assert extract_claims(text) == [
        "Solar output doubled over the decade [1].",
        "Batteries store the surplus [2].",
    ]
    assert len(extract_claims(text, max_claims=1)) == 1


def test_cited_labels_unique_in_order():
    assert cited_labels("A [2] and [1] and [2] again [01]") == ["[2]", "[1]"]


def test_grounding_score():
    assert grounding_score([]) == 0.0
    assert grounding_score(["cited claim [1]", "bare claim"]) == 0.5


def test_lexical_overlap_ignores_labels_and_short_words():
    assert lexical_overlap("Solar panels work [1]", ["solar panels"]) == pytest.approx(2 / 3)
    assert lexical_overlap("a an [1]", ["anything"]) == 0.0


def test_classify_support(repo):
    citations = build_citations("s1", "job-1", [_hit("c1", "a")])
    assert classify_support("anything", [])[0] == SupportLevel.UNVERIFIED
    level, _ = classify_support("Solar panels convert sunlight [1].", citations)
    assert level == SupportLevel.SUPPORTED
    level, _ = classify_support("Hydroelectric reservoirs flood valleys [1].", citations)
    assert level == SupportLevel.PARTIALLY_SUPPORTED


# ------------------------------------------------------------------
# ClaimLedger
# ------------------------------------------------------------------


def test_record_binds_labels(repo, ledger):
    citations = _cite(repo)
    entries = ledger.record(
        "job-1",
        [
            "Solar panels convert sunlight into electricity [1].",
            "Battery storage capacity matters [2][9].",
            "Nothing cites this sentence at all.",
        ],
        citations,
    )
    assert entries[0].support == SupportLevel.SUPPORTED
    assert entries[0].citation_ids == [citations[0].id]
    assert entries[1].citation_ids == [citations[1].id]
    assert entries[2].support == SupportLevel.UNVERIFIED
    assert entries[2].citation_ids == []
    assert [e.position for e in repo.get_claim_ledger("job-1")] == [0, 1, 2]


def test_every_non_unverified_claim_cites_its_job(repo, ledger):
    citations = _cite(repo)
    ledger.record("job-1", ["Solar panels convert sunlight [1]", "Plain text claim here"], citations)
    job_citations = {c.id for c in repo.get_citations("job-1")}
    for entry in repo.get_claim_ledger("job-1"):
        if entry.support != SupportLevel.UNVERIFIED:
            assert entry.citation_ids
            assert set(entry.citation_ids) <= job_citations


def test_record_claim_without_citations_is_unverified(ledger):
    entry = ledger.record_claim("job-1", "Unsupported statement", [], SupportLevel.SUPPORTED)
    assert entry.support == SupportLevel.UNVERIFIED


def test_record_claim_rejects_foreign_citation(repo, ledger):
    other = _cite(repo, job_id="job-2")
    with pytest.raises(IntegrityViolation) as excinfo:
        ledger.record_claim("job-1", "Solar panels [1]", [other[0].id])
    assert excinfo.value.missing_citation_ids == (other[0].id,)
    assert repo.get_claim_ledger("job-1") == []


def test_record_claim_classifies_when_support_missing(repo, ledger):
    citations = _cite(repo)
    entry = ledger.record_claim("job-1", "Solar panels convert sunlight", [citations[0].id])
    assert entry.support == SupportLevel.SUPPORTED


def test_verify_downgrades_defective_claims(repo, ledger):
    citations = _cite(repo)
    other = _cite(repo, job_id="job-2")
    good = ledger.record_claim("job-1", "Solar panels convert sunlight", [citations[0].id])
    bad = ledger.record_claim("job-1", "Battery storage capacity", [citations[1].id])
    # Simulate a defect written behind the ledger's back.
    repo.update_claim(bad.id, SupportLevel.SUPPORTED, [citations[1].id, other[0].id], "")

    violations = ledger.verify("job-1")

    assert [v.claim_id for v in violations] == [bad.id]
    assert violations[0].missing_citation_ids == (other[0].id,)
    claims = {c.id: c for c in repo.get_claim_ledger("job-1")}
    assert claims[good.id].support == SupportLevel.SUPPORTED
    assert claims[bad.id].support == SupportLevel.UNVERIFIED
    assert claims[bad.id].citation_ids == [citations[1].id]


def test_verify_clean_ledger(repo, ledger):
    citations = _cite(repo)
    ledger.record("job-1", ["Solar panels convert sunlight [1]"], citations)
    assert ledger.verify("job-1") == []

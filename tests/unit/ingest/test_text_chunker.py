"""Tests for TextChunker."""

from __future__ import annotations

import pytest

from sourcehive.db.models import Source, SourceType
from sourcehive.ingest.chunker import TextChunker

SOURCE = Source(id="src-1", session_id="s1", source_type=SourceType.SNAPSHOT, locator="/a.html")


def test_default_settings():
    chunker = TextChunker()
    assert chunker.chunk_size == 512
    assert chunker.overlap == pytest.approx(0.10)


@pytest.mark.parametrize("kwargs", [{"chunk_size": 0}, {"overlap": 1.0}, {"overlap": -0.1}])
def test_rejects_bad_settings(kwargs):
    with pytest.raises(ValueError):
        TextChunker(**kwargs)


def test_blank_text_has_no_chunks():
    assert TextChunker().split("") == []
    assert TextChunker().chunk(SOURCE, "  \n\t ") == []


def test_short_text_single_trimmed_chunk():
    text = "\n  Short text.  \n"
    [chunk] = TextChunker().chunk(SOURCE, text)
    assert chunk.text == "Short text."
    assert text[chunk.start_offset : chunk.end_offset] == chunk.text


def test_offsets_match_text_for_every_chunk():
    words = " ".join(f"word{i}" for i in range(400))
    text = f"  {words}\n\n   trailing paragraph  "
    chunks = TextChunker(chunk_size=20, overlap=0.25).chunk(SOURCE, text)
    assert len(chunks) > 1
    for chunk in chunks:
        assert text[chunk.start_offset : chunk.end_offset] == chunk.text
        assert chunk.text == chunk.text.strip()


def test_chunks_inherit_source_and_are_indexed_in_order():
    chunks = TextChunker(chunk_size=10, overlap=0.0).chunk(SOURCE, "a" * 200)
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert all(c.source_id == "src-1" and c.session_id == "s1" for c in chunks)
    assert all(c.source_type == SourceType.SNAPSHOT for c in chunks)
    assert [c.start_offset for c in chunks] == sorted(c.start_offset for c in chunks)


def test_window_size_and_overlap():
    # 10 tokens = 40 chars per window; 25% overlap = step of 30 chars.
    spans = TextChunker(chunk_size=10, overlap=0.25).split("x" * 100)
    assert spans == [(0, 40), (30, 70), (60, 100)]


def test_no_overlap_windows_are_disjoint():
    spans = TextChunker(chunk_size=10, overlap=0.0).split("y" * 100)
    assert spans == [(0, 40), (40, 80), (80, 100)]


def test_blank_windows_are_skipped():
    text = "a" * 40 + " " * 40 + "b" * 40
    spans = TextChunker(chunk_size=10, overlap=0.0).split(text)
    assert spans == [(0, 40), (80, 120)]


def test_count_tokens_approximation():
    assert TextChunker.count_tokens("") == 1
    assert TextChunker.count_tokens("x" * 40) == 10

"""Tests for embedding BLOB helpers and the per-store dimension guard."""

from __future__ import annotations

import pytest

from sourcehive.db.vectors import (
    deserialize_embedding,
    ensure_dimensions,
    serialize_embedding,
    stored_dimensions,
)


def test_serialize_is_float32_blob():
    blob = serialize_embedding([0.5, 1.0, -2.0])
    assert isinstance(blob, bytes)
    assert len(blob) == 12
    assert deserialize_embedding(blob) == [0.5, 1.0, -2.0]


def test_deserialize_none():
    assert deserialize_embedding(None) is None


def test_dimensions_unset_on_fresh_store(tmp_db):
    assert stored_dimensions(tmp_db) is None


def test_ensure_dimensions_records_first_length(tmp_db):
    assert ensure_dimensions(tmp_db, 16) == 16
    assert stored_dimensions(tmp_db) == 16
    assert ensure_dimensions(tmp_db, 16) == 16


def test_ensure_dimensions_rejects_other_length(tmp_db):
    ensure_dimensions(tmp_db, 16)
    with pytest.raises(ValueError, match="does not match"):
        ensure_dimensions(tmp_db, 8)


def test_ensure_dimensions_rejects_zero(tmp_db):
    with pytest.raises(ValueError, match=">= 1"):
        ensure_dimensions(tmp_db, 0)


def test_cosine_distance_on_blobs(tmp_db):
    a = serialize_embedding([1.0, 0.0])
    b = serialize_embedding([0.0, 1.0])
    same = tmp_db.execute("SELECT vec_distance_cosine(?, ?)", (a, a)).fetchone()[0]
    orthogonal = tmp_db.execute("SELECT vec_distance_cosine(?, ?)", (a, b)).fetchone()[0]
    assert same == pytest.approx(0.0, abs=1e-6)
    assert orthogonal == pytest.approx(1.0, abs=1e-6)

"""Embedding storage helpers built on sqlite-vec.

Embeddings live in BLOB columns as packed float32 (sqlite-vec's native vector
format) so that ``vec_distance_cosine(embedding, ?)`` can rank them with
arbitrary SQL filters applied. Every store records its embedding length in
``store_meta`` the first time a vector is written; later writes must match.
"""

from __future__ import annotations

import sqlite3
import struct

import sqlite_vec

_DIMENSIONS_KEY = "embedding_dimensions"


def serialize_embedding(embedding: list[float]) -> bytes:
    """Pack *embedding* into the float32 BLOB layout sqlite-vec expects."""
    return sqlite_vec.serialize_float32(embedding)


def deserialize_embedding(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    count = len(blob) // 4
    return list(struct.unpack(f"{count}f", blob))


def stored_dimensions(conn: sqlite3.Connection) -> int | None:
    """Return the embedding length recorded for this store, or None if unset."""
    row = conn.execute(
        "SELECT value FROM store_meta WHERE key = ?", (_DIMENSIONS_KEY,)
    ).fetchone()
    return int(row["value"]) if row else None


def ensure_dimensions(conn: sqlite3.Connection, dimensions: int) -> int:
    """Record *dimensions* on first use; reject a different length afterwards.

    Must be called inside the write transaction that stores the vector.

    Raises:
        ValueError: If *dimensions* < 1 or differs from the recorded length.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    existing = stored_dimensions(conn)
    if existing is None:
        conn.execute(
            "INSERT INTO store_meta (key, value) VALUES (?, ?)",
            (_DIMENSIONS_KEY, str(dimensions)),
        )
        return dimensions
    if existing != dimensions:
        raise ValueError(
            f"Embedding length {dimensions} does not match this store's "
            f"length {existing}. Re-index with the original embedding model."
        )
    return existing

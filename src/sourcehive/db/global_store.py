"""Repository for the process-wide global memory store.

Holds chunks promoted out of session stores. Promotion is an upsert keyed by
chunk id: the row keeps its rowid and its FTS row is replaced, so promoting
the same chunk twice leaves exactly one copy.
"""

from __future__ import annotations

import json
import sqlite3
import threading

from sourcehive.db.connection import transaction
from sourcehive.db.models import DomainPack, GlobalChunk, SearchFilter, SourceType
from sourcehive.db.repository import _placeholders, fts_match_expression
from sourcehive.db.vectors import (
    deserialize_embedding,
    ensure_dimensions,
    serialize_embedding,
    stored_dimensions,
)
from sourcehive.errors import RetrievalError

_COLUMNS = (
    "g.rowid AS rowid, g.id, g.session_id, g.job_id, g.source_type, g.repo_url, "
    "g.domain_pack, g.text, g.embedding, g.tags, g.promoted_utc"
)


class GlobalRepository:
    """Data access layer for promoted chunks (global store)."""

    def __init__(
        self, conn: sqlite3.Connection, write_lock: threading.RLock | None = None
    ) -> None:
        self._conn = conn
        self._lock = write_lock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_chunks(self, chunks: list[GlobalChunk]) -> int:
        """Insert or overwrite *chunks* by id in one transaction. Returns the count."""
        with transaction(self._conn, self._lock):
            for chunk in chunks:
                blob = None
                if chunk.embedding is not None:
                    ensure_dimensions(self._conn, len(chunk.embedding))
                    blob = serialize_embedding(chunk.embedding)
                self._conn.execute(
                    """
                    INSERT INTO global_chunks (id, session_id, job_id, source_type, repo_url,
                                               domain_pack, text, embedding, tags, promoted_utc)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        session_id   = excluded.session_id,
                        job_id       = excluded.job_id,
                        source_type  = excluded.source_type,
                        repo_url     = excluded.repo_url,
                        domain_pack  = excluded.domain_pack,
                        text         = excluded.text,
                        embedding    = excluded.embedding,
                        tags         = excluded.tags,
                        promoted_utc = excluded.promoted_utc
                    """,
                    (
                        chunk.id,
                        chunk.session_id,
                        chunk.job_id,
                        chunk.source_type.value,
                        chunk.repo_url,
                        chunk.domain_pack.value if chunk.domain_pack else None,
                        chunk.text,
                        blob,
                        json.dumps(chunk.tags),
                        chunk.promoted_utc,
                    ),
                )
                rowid = self._conn.execute(
                    "SELECT rowid FROM global_chunks WHERE id = ?", (chunk.id,)
                ).fetchone()[0]
                self._conn.execute("DELETE FROM global_chunks_fts WHERE rowid = ?", (rowid,))
                self._conn.execute(
                    "INSERT INTO global_chunks_fts(rowid, text) VALUES (?, ?)",
                    (rowid, chunk.text),
                )
                chunk.rowid = rowid
        return len(chunks)

    def delete_chunk(self, chunk_id: str) -> bool:
        with transaction(self._conn, self._lock):
            row = self._conn.execute(
                "SELECT rowid FROM global_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
            if row is None:
                return False
            self._conn.execute("DELETE FROM global_chunks_fts WHERE rowid = ?", (row[0],))
            self._conn.execute("DELETE FROM global_chunks WHERE id = ?", (chunk_id,))
        return True

    def delete_by_session(self, session_id: str) -> int:
        """Remove every promoted chunk that came from *session_id*. Returns the count."""
        with transaction(self._conn, self._lock):
            rowids = [
                r[0]
                for r in self._conn.execute(
                    "SELECT rowid FROM global_chunks WHERE session_id = ?", (session_id,)
                ).fetchall()
            ]
            if rowids:
                self._conn.execute(
                    f"DELETE FROM global_chunks_fts WHERE rowid IN ({_placeholders(rowids)})",
                    rowids,
                )
            self._conn.execute("DELETE FROM global_chunks WHERE session_id = ?", (session_id,))
        return len(rowids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_chunk(self, chunk_id: str) -> GlobalChunk | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM global_chunks g WHERE g.id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_global_chunk(row) if row else None

    def count(self, filt: SearchFilter | None = None) -> int:
        sql, params = _apply_filter(
            "SELECT COUNT(*) FROM global_chunks g WHERE 1=1", [], filt or SearchFilter()
        )
        return self._conn.execute(sql, params).fetchone()[0]

    def list_chunks(
        self,
        filt: SearchFilter | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[GlobalChunk]:
        """Return promoted chunks newest first, paginated."""
        sql, params = _apply_filter(
            f"SELECT {_COLUMNS} FROM global_chunks g WHERE 1=1", [], filt or SearchFilter()
        )
        sql += " ORDER BY g.promoted_utc DESC, g.id LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [_row_to_global_chunk(r) for r in self._conn.execute(sql, params).fetchall()]

    def source_types(self) -> list[SourceType]:
        rows = self._conn.execute(
            "SELECT DISTINCT source_type FROM global_chunks ORDER BY source_type"
        ).fetchall()
        return [SourceType(r[0]) for r in rows]

    # ------------------------------------------------------------------
    # Search (store protocol used by HybridRetriever)
    # ------------------------------------------------------------------

    def has_embeddings(self) -> bool:
        return (
            self._conn.execute(
                "SELECT 1 FROM global_chunks WHERE embedding IS NOT NULL LIMIT 1"
            ).fetchone()
            is not None
        )

    def search_keyword(
        self, query: str, filt: SearchFilter, limit: int = 10
    ) -> list[tuple[GlobalChunk, float]]:
        """BM25 search over promoted chunks; higher score = better.

        Raises:
            RetrievalError: If FTS5 rejects the query.
        """
        expression = fts_match_expression(query)
        if expression is None:
            return []
        sql, params = _apply_filter(
            f"SELECT {_COLUMNS}, bm25(global_chunks_fts) AS bm25_score "
            "FROM global_chunks_fts JOIN global_chunks g ON g.rowid = global_chunks_fts.rowid "
            "WHERE global_chunks_fts MATCH ?",
            [expression],
            filt,
        )
        sql += " ORDER BY bm25_score, g.id LIMIT ?"
        params.append(limit)
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise RetrievalError(f"global keyword search failed: {exc}") from exc
        return [(_row_to_global_chunk(r), -float(r["bm25_score"])) for r in rows]

    def search_semantic(
        self,
        embedding: list[float],
        filt: SearchFilter,
        limit: int = 10,
        candidate_source_ids: set[str] | None = None,
    ) -> list[tuple[GlobalChunk, float]]:
        """Cosine search over promoted embeddings; (chunk, similarity) best-first.

        Promoted chunks carry no source id, so *candidate_source_ids* is ignored.

        Raises:
            RetrievalError: On a dimension mismatch or a sqlite-vec error.
        """
        dims = stored_dimensions(self._conn)
        if dims is not None and dims != len(embedding):
            raise RetrievalError(
                f"query embedding has {len(embedding)} dimensions, global store has {dims}"
            )
        sql, params = _apply_filter(
            f"SELECT {_COLUMNS}, vec_distance_cosine(g.embedding, ?) AS distance "
            "FROM global_chunks g WHERE g.embedding IS NOT NULL",
            [serialize_embedding(embedding)],
            filt,
        )
        sql += " ORDER BY distance, g.id LIMIT ?"
        params.append(limit)
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise RetrievalError(f"global semantic search failed: {exc}") from exc
        return [(_row_to_global_chunk(r), 1.0 - float(r["distance"])) for r in rows]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _apply_filter(
    sql: str, params: list[object], filt: SearchFilter
) -> tuple[str, list[object]]:
    if filt.source_types is not None:
        types = [t.value for t in filt.source_types]
        sql += f" AND g.source_type IN ({_placeholders(types)})"
        params.extend(types)
    if filt.domain_pack is not None:
        sql += " AND g.domain_pack = ?"
        params.append(filt.domain_pack.value)
    if filt.session_id is not None:
        sql += " AND g.session_id = ?"
        params.append(filt.session_id)
    if filt.repo_url is not None:
        sql += " AND g.repo_url = ?"
        params.append(filt.repo_url)
    return sql, params


def _row_to_global_chunk(row: sqlite3.Row) -> GlobalChunk:
    return GlobalChunk(
        rowid=row["rowid"],
        id=row["id"],
        session_id=row["session_id"],
        job_id=row["job_id"],
        source_type=SourceType(row["source_type"]),
        repo_url=row["repo_url"],
        domain_pack=DomainPack(row["domain_pack"]) if row["domain_pack"] else None,
        text=row["text"],
        embedding=deserialize_embedding(row["embedding"]),
        tags=json.loads(row["tags"]),
        promoted_utc=row["promoted_utc"],
    )

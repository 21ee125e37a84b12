"""Repository for one session store.

Single interface for: sources, chunks, FTS5 search, embeddings and cosine
search, citations, jobs, job steps, claim ledger, reports. Every write is one
transaction (see sourcehive.db.connection.transaction).
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
from dataclasses import dataclass
from typing import Iterable

from sourcehive.db.connection import transaction
from sourcehive.db.models import (
    Chunk,
    Citation,
    CitationType,
    ClaimLedgerEntry,
    JobState,
    JobStep,
    JobType,
    ReplayEntry,
    Report,
    ReportType,
    ResearchJob,
    SearchFilter,
    Source,
    SourceType,
    SupportLevel,
    new_id,
    utc_now,
)
from sourcehive.db.vectors import (
    deserialize_embedding,
    ensure_dimensions,
    serialize_embedding,
    stored_dimensions,
)
from sourcehive.errors import InvalidTransition, JobNotFound, RetrievalError

logger = logging.getLogger(__name__)

_CHUNK_COLUMNS = (
    "c.rowid AS rowid, c.id, c.session_id, c.source_id, c.source_type, c.text, "
    "c.start_offset, c.end_offset, c.chunk_index, c.embedding, c.created_utc"
)


def fts_match_expression(query: str) -> str | None:
    """Turn free text into an FTS5 MATCH expression, or None if no terms remain.

    FTS5 treats punctuation and bare keywords (AND, NEAR, ...) as syntax, so
    every word is quoted and the terms are OR-ed together.
    """
    terms = re.findall(r"\w+", query)
    if not terms:
        return None
    return " OR ".join(f'"{t}"' for t in terms)


@dataclass
class SourceDeletion:
    """What a cascading source deletion removed."""

    source_id: str
    chunks_deleted: int = 0
    citations_pruned: int = 0
    claims_downgraded: int = 0


class SessionRepository:
    """Data access layer for one session store.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(
        self, conn: sqlite3.Connection, write_lock: threading.RLock | None = None
    ) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and the
                session schema initialised (see sourcehive.db.schema.initialize).
            write_lock: Writer lock shared by every connection to this store.
        """
        self._conn = conn
        self._lock = write_lock

    def _tx(self):
        return transaction(self._conn, self._lock)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> None:
        with self._tx():
            self._conn.execute(
                """
                INSERT INTO sources (id, session_id, source_type, locator, title, content_hash, created_utc)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source.id,
                    source.session_id,
                    source.source_type.value,
                    source.locator,
                    source.title,
                    source.content_hash,
                    source.created_utc,
                ),
            )

    def get_source(self, source_id: str) -> Source | None:
        row = self._conn.execute(
            "SELECT * FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def get_source_by_locator(self, locator: str) -> Source | None:
        """Return the most recent source stored for a URL or path, or None."""
        row = self._conn.execute(
            "SELECT * FROM sources WHERE locator = ? ORDER BY created_utc DESC LIMIT 1",
            (locator,),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(
        self, source_types: Iterable[SourceType] | None = None
    ) -> list[Source]:
        """Return sources oldest first, optionally restricted to *source_types*."""
        sql = "SELECT * FROM sources"
        params: list[object] = []
        if source_types is not None:
            types = [t.value for t in source_types]
            sql += f" WHERE source_type IN ({_placeholders(types)})"
            params.extend(types)
        sql += " ORDER BY created_utc, id"
        return [_row_to_source(r) for r in self._conn.execute(sql, params).fetchall()]

    def delete_source(self, source_id: str) -> SourceDeletion:
        """Delete a source with everything that depends on it, in one transaction.

        Removes its chunks and their FTS rows, prunes citations that point at
        the source, and strips those citation ids from claims. A claim left
        without citations is downgraded to UNVERIFIED.
        """
        result = SourceDeletion(source_id=source_id)
        with self._tx():
            rowids = [
                r[0]
                for r in self._conn.execute(
                    "SELECT rowid FROM chunks WHERE source_id = ?", (source_id,)
                ).fetchall()
            ]
            if rowids:
                self._conn.execute(
                    f"DELETE FROM chunks_fts WHERE rowid IN ({_placeholders(rowids)})",
                    rowids,
                )
            result.chunks_deleted = self._conn.execute(
                "DELETE FROM chunks WHERE source_id = ?", (source_id,)
            ).rowcount

            cited = self._conn.execute(
                "SELECT id, job_id FROM citations WHERE source_id = ?", (source_id,)
            ).fetchall()
            pruned = {r["id"] for r in cited}
            for job_id in sorted({r["job_id"] for r in cited}):
                for entry in self.get_claim_ledger(job_id):
                    if not pruned.intersection(entry.citation_ids):
                        continue
                    remaining = [c for c in entry.citation_ids if c not in pruned]
                    support, explanation = entry.support, entry.explanation
                    if not remaining and support != SupportLevel.UNVERIFIED:
                        support = SupportLevel.UNVERIFIED
                        explanation = "All cited evidence was removed with its source."
                        result.claims_downgraded += 1
                    self._update_claim(entry.id, support, remaining, explanation)
            if pruned:
                self._conn.execute(
                    "DELETE FROM citations WHERE source_id = ?", (source_id,)
                )
            result.citations_pruned = len(pruned)
            self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))

        logger.info(
            "source_deleted",
            extra={
                "source_id": source_id,
                "chunks_deleted": result.chunks_deleted,
                "citations_pruned": result.citations_pruned,
                "claims_downgraded": result.claims_downgraded,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: list[Chunk]) -> list[int]:
        """Insert *chunks* and their FTS rows as one transaction.

        Returns the new rowids in input order.

        Raises:
            ValueError: If an embedding length differs from the session's.
            PersistenceError: On a duplicate (source_id, chunk_index) or other
                database error; nothing from the batch is kept.
        """
        rowids: list[int] = []
        with self._tx():
            for chunk in chunks:
                blob = None
                if chunk.embedding is not None:
                    ensure_dimensions(self._conn, len(chunk.embedding))
                    blob = serialize_embedding(chunk.embedding)
                cur = self._conn.execute(
                    """
                    INSERT INTO chunks (id, session_id, source_id, source_type, text,
                                        start_offset, end_offset, chunk_index, embedding, created_utc)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        chunk.id,
                        chunk.session_id,
                        chunk.source_id,
                        chunk.source_type.value,
                        chunk.text,
                        chunk.start_offset,
                        chunk.end_offset,
                        chunk.chunk_index,
                        blob,
                        chunk.created_utc,
                    ),
                )
                rowid = cur.lastrowid
                # Keep FTS5 in sync with explicit rowid mapping
                self._conn.execute(
                    "INSERT INTO chunks_fts(rowid, text) VALUES (?, ?)", (rowid, chunk.text)
                )
                chunk.rowid = rowid
                rowids.append(rowid)
        return rowids

    def add_chunk(self, chunk: Chunk) -> int:
        return self.add_chunks([chunk])[0]

    def store_source(
        self, source: Source, chunks: list[Chunk], *, replaces: str | None = None
    ) -> list[int]:
        """Write *source* with its *chunks* in one transaction.

        If *replaces* names an existing source it is deleted (with its
        dependants) inside the same transaction.
        """
        with self._tx():
            if replaces is not None:
                self.delete_source(replaces)
            self.add_source(source)
            return self.add_chunks(chunks)

    def attach_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        """Attach embeddings to existing chunks by id in one transaction.

        Returns the number of chunks updated.
        """
        updated = 0
        with self._tx():
            for chunk_id, embedding in embeddings.items():
                ensure_dimensions(self._conn, len(embedding))
                updated += self._conn.execute(
                    "UPDATE chunks SET embedding = ? WHERE id = ?",
                    (serialize_embedding(embedding), chunk_id),
                ).rowcount
        return updated

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def list_chunks(
        self,
        source_id: str | None = None,
        source_types: Iterable[SourceType] | None = None,
    ) -> list[Chunk]:
        """Return chunks ordered by source then chunk_index."""
        clauses: list[str] = []
        params: list[object] = []
        if source_id is not None:
            clauses.append("c.source_id = ?")
            params.append(source_id)
        if source_types is not None:
            types = [t.value for t in source_types]
            clauses.append(f"c.source_type IN ({_placeholders(types)})")
            params.extend(types)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c{where} ORDER BY c.source_id, c.chunk_index",
            params,
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunks_without_embedding(self, limit: int = 500) -> list[Chunk]:
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.embedding IS NULL "
            "ORDER BY c.rowid LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, source_id: str | None = None) -> int:
        if source_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def embedding_dimensions(self) -> int | None:
        return stored_dimensions(self._conn)

    # ------------------------------------------------------------------
    # Search (store protocol used by HybridRetriever)
    # ------------------------------------------------------------------

    def has_embeddings(self) -> bool:
        return (
            self._conn.execute(
                "SELECT 1 FROM chunks WHERE embedding IS NOT NULL LIMIT 1"
            ).fetchone()
            is not None
        )

    def search_keyword(
        self, query: str, filt: SearchFilter, limit: int = 10
    ) -> list[tuple[Chunk, float]]:
        """BM25 full-text search. Returns (chunk, score) sorted best-first.

        bm25() is negative with lower = better; the sign is flipped so that a
        higher score is always better. An empty query yields no hits.

        Raises:
            RetrievalError: If FTS5 rejects the query or the index is unusable.
        """
        expression = fts_match_expression(query)
        if expression is None:
            return []
        sql = (
            f"SELECT {_CHUNK_COLUMNS}, bm25(chunks_fts) AS bm25_score "
            "FROM chunks_fts JOIN chunks c ON c.rowid = chunks_fts.rowid "
            "WHERE chunks_fts MATCH ?"
        )
        params: list[object] = [expression]
        sql, params = _apply_type_filter(sql, params, filt)
        sql += " ORDER BY bm25_score, c.id LIMIT ?"
        params.append(limit)
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise RetrievalError(f"keyword search failed: {exc}") from exc
        return [(_row_to_chunk(r), -float(r["bm25_score"])) for r in rows]

    def search_semantic(
        self,
        embedding: list[float],
        filt: SearchFilter,
        limit: int = 10,
        candidate_source_ids: set[str] | None = None,
    ) -> list[tuple[Chunk, float]]:
        """Cosine search over stored embeddings. Returns (chunk, similarity) best-first.

        Raises:
            RetrievalError: If the query length differs from the store's or
                sqlite-vec rejects the comparison.
        """
        dims = stored_dimensions(self._conn)
        if dims is not None and dims != len(embedding):
            raise RetrievalError(
                f"query embedding has {len(embedding)} dimensions, store has {dims}"
            )
        sql = (
            f"SELECT {_CHUNK_COLUMNS}, vec_distance_cosine(c.embedding, ?) AS distance "
            "FROM chunks c WHERE c.embedding IS NOT NULL"
        )
        params: list[object] = [serialize_embedding(embedding)]
        sql, params = _apply_type_filter(sql, params, filt)
        if candidate_source_ids is not None:
            ids = sorted(candidate_source_ids)
            sql += f" AND c.source_id IN ({_placeholders(ids)})"
            params.extend(ids)
        sql += " ORDER BY distance, c.id LIMIT ?"
        params.append(limit)
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise RetrievalError(f"semantic search failed: {exc}") from exc
        return [(_row_to_chunk(r), 1.0 - float(r["distance"])) for r in rows]

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, job: ResearchJob) -> None:
        with self._tx():
            self._conn.execute(
                f"INSERT INTO jobs ({', '.join(_JOB_COLUMNS)}) "
                f"VALUES ({_placeholders(_JOB_COLUMNS)})",
                _job_values(job),
            )

    def save_job(self, job: ResearchJob) -> None:
        """Save progress, checkpoint, results and replay.

        State columns are left alone; only update_job_state writes them, so a
        cancellation recorded by another connection is never overwritten.
        """
        job.updated_utc = utc_now()
        values = dict(zip(_JOB_COLUMNS, _job_values(job)))
        columns = [c for c in _JOB_COLUMNS if c not in _STATE_COLUMNS]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self._tx():
            cur = self._conn.execute(
                f"UPDATE jobs SET {assignments} WHERE id = ?",
                (*(values[c] for c in columns), job.id),
            )
            if cur.rowcount == 0:
                raise JobNotFound(job.id)

    def update_job_state(
        self,
        job_id: str,
        state: JobState,
        *,
        error_message: str | None = None,
    ) -> str:
        """Atomically write ``state`` + ``updated_utc`` (and terminal fields).

        Returns the new updated_utc timestamp.

        Raises:
            JobNotFound: If the job does not exist.
            InvalidTransition: If the stored job is already terminal.
        """
        now = utc_now()
        completed = now if state.is_terminal else None
        with self._tx():
            cur = self._conn.execute(
                """
                UPDATE jobs
                SET state = ?, updated_utc = ?,
                    completed_utc = COALESCE(?, completed_utc),
                    error_message = COALESCE(?, error_message)
                WHERE id = ? AND state NOT IN (?, ?, ?)
                """,
                (state.value, now, completed, error_message, job_id, *_TERMINAL_STATES),
            )
            if cur.rowcount == 0:
                current = self.get_job_state(job_id)
                if current is None:
                    raise JobNotFound(job_id)
                raise InvalidTransition(
                    f"job {job_id} is already {current.value}; cannot move to {state.value}"
                )
        return now

    def get_job_state(self, job_id: str) -> JobState | None:
        row = self._conn.execute(
            "SELECT state FROM jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return JobState(row["state"]) if row else None

    def get_job(self, job_id: str) -> ResearchJob | None:
        row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self, states: Iterable[JobState] | None = None, limit: int | None = None
    ) -> list[ResearchJob]:
        """Return jobs newest first, optionally restricted to *states*."""
        sql = "SELECT * FROM jobs"
        params: list[object] = []
        if states is not None:
            values = [s.value for s in states]
            sql += f" WHERE state IN ({_placeholders(values)})"
            params.extend(values)
        sql += " ORDER BY created_utc DESC, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_job(r) for r in self._conn.execute(sql, params).fetchall()]

    # ------------------------------------------------------------------
    # Job steps (append-only)
    # ------------------------------------------------------------------

    def add_step(
        self,
        job_id: str,
        action: str,
        detail: str,
        state_after: JobState,
        *,
        success: bool = True,
        error: str | None = None,
    ) -> JobStep:
        """Append one step; its number is MAX+1 for the job, assigned in-transaction."""
        with self._tx():
            row = self._conn.execute(
                "SELECT COALESCE(MAX(step_number), 0) FROM job_steps WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            step = JobStep(
                id=new_id(),
                job_id=job_id,
                step_number=row[0] + 1,
                action=action,
                detail=detail,
                state_after=state_after,
                success=success,
                error=error,
            )
            self._conn.execute(
                """
                INSERT INTO job_steps (id, job_id, step_number, action, detail, state_after,
                                       timestamp_utc, success, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    step.id,
                    step.job_id,
                    step.step_number,
                    step.action,
                    step.detail,
                    step.state_after.value,
                    step.timestamp_utc,
                    int(step.success),
                    step.error,
                ),
            )
        return step

    def get_job_steps(self, job_id: str) -> list[JobStep]:
        rows = self._conn.execute(
            "SELECT * FROM job_steps WHERE job_id = ? ORDER BY step_number", (job_id,)
        ).fetchall()
        return [_row_to_step(r) for r in rows]

    # ------------------------------------------------------------------
    # Citations (immutable once created)
    # ------------------------------------------------------------------

    def add_citations(self, citations: list[Citation]) -> None:
        with self._tx():
            for c in citations:
                self._conn.execute(
                    """
                    INSERT INTO citations (id, session_id, job_id, citation_type, source_id, chunk_id,
                                           start_offset, end_offset, page, box, excerpt, label,
                                           created_utc)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        c.id,
                        c.session_id,
                        c.job_id,
                        c.citation_type.value,
                        c.source_id,
                        c.chunk_id,
                        c.start_offset,
                        c.end_offset,
                        c.page,
                        json.dumps(c.box) if c.box is not None else None,
                        c.excerpt,
                        c.label,
                        c.created_utc,
                    ),
                )

    def get_citations(self, job_id: str) -> list[Citation]:
        rows = self._conn.execute(
            "SELECT * FROM citations WHERE job_id = ? ORDER BY created_utc, rowid", (job_id,)
        ).fetchall()
        return [_row_to_citation(r) for r in rows]

    def get_citations_by_ids(self, citation_ids: Iterable[str]) -> dict[str, Citation]:
        ids = list(citation_ids)
        if not ids:
            return {}
        rows = self._conn.execute(
            f"SELECT * FROM citations WHERE id IN ({_placeholders(ids)})", ids
        ).fetchall()
        return {r["id"]: _row_to_citation(r) for r in rows}

    # ------------------------------------------------------------------
    # Claim ledger
    # ------------------------------------------------------------------

    def add_claims(self, entries: list[ClaimLedgerEntry]) -> None:
        with self._tx():
            for e in entries:
                self._conn.execute(
                    """
                    INSERT INTO claims (id, job_id, position, claim, support, citation_ids, explanation)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        e.id,
                        e.job_id,
                        e.position,
                        e.claim,
                        e.support.value,
                        json.dumps(e.citation_ids),
                        e.explanation,
                    ),
                )

    def get_claim_ledger(self, job_id: str) -> list[ClaimLedgerEntry]:
        rows = self._conn.execute(
            "SELECT * FROM claims WHERE job_id = ? ORDER BY position, rowid", (job_id,)
        ).fetchall()
        return [_row_to_claim(r) for r in rows]

    def update_claim(
        self,
        claim_id: str,
        support: SupportLevel,
        citation_ids: list[str],
        explanation: str,
    ) -> None:
        with self._tx():
            self._update_claim(claim_id, support, citation_ids, explanation)

    def _update_claim(
        self,
        claim_id: str,
        support: SupportLevel,
        citation_ids: list[str],
        explanation: str,
    ) -> None:
        self._conn.execute(
            "UPDATE claims SET support = ?, citation_ids = ?, explanation = ? WHERE id = ?",
            (support.value, json.dumps(citation_ids), explanation, claim_id),
        )

    def clear_job_evidence(self, job_id: str) -> None:
        """Remove a job's claims, citations and reports (before a synthesis re-run)."""
        with self._tx():
            self._conn.execute("DELETE FROM claims WHERE job_id = ?", (job_id,))
            self._conn.execute("DELETE FROM citations WHERE job_id = ?", (job_id,))
            self._conn.execute("DELETE FROM reports WHERE job_id = ?", (job_id,))

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def save_report(self, report: Report) -> None:
        with self._tx():
            self._conn.execute(
                """
                INSERT INTO reports (id, session_id, job_id, report_type, title, content, format, created_utc)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    report.id,
                    report.session_id,
                    report.job_id,
                    report.report_type.value,
                    report.title,
                    report.content,
                    report.format,
                    report.created_utc,
                ),
            )

    def get_reports(self, job_id: str | None = None) -> list[Report]:
        if job_id is None:
            rows = self._conn.execute(
                "SELECT * FROM reports ORDER BY created_utc, rowid"
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM reports WHERE job_id = ? ORDER BY created_utc, rowid", (job_id,)
            ).fetchall()
        return [_row_to_report(r) for r in rows]


# ------------------------------------------------------------------
# SQL helpers
# ------------------------------------------------------------------

_JOB_COLUMNS: tuple[str, ...] = (
    "id",
    "session_id",
    "job_type",
    "state",
    "prompt",
    "plan",
    "search_queries",
    "search_lanes",
    "acquired_source_ids",
    "target_source_count",
    "max_iterations",
    "current_iteration",
    "created_utc",
    "updated_utc",
    "completed_utc",
    "error_message",
    "checkpoint_data",
    "most_supported_view",
    "credible_alternatives",
    "executive_summary",
    "full_report",
    "activity_report",
    "grounding_score",
    "replay_entries",
)

# Immutable after create_job, or written only by update_job_state.
_STATE_COLUMNS = frozenset(
    {"id", "session_id", "created_utc", "state", "completed_utc", "error_message"}
)
_TERMINAL_STATES = tuple(s.value for s in JobState if s.is_terminal)


def _placeholders(values: Iterable[object]) -> str:
    return ",".join("?" * len(list(values)))


def _apply_type_filter(
    sql: str, params: list[object], filt: SearchFilter
) -> tuple[str, list[object]]:
    if filt.source_types is not None:
        types = [t.value for t in filt.source_types]
        sql += f" AND c.source_type IN ({_placeholders(types)})"
        params.extend(types)
    return sql, params


def _job_values(job: ResearchJob) -> tuple[object, ...]:
    return (
        job.id,
        job.session_id,
        job.job_type.value,
        job.state.value,
        job.prompt,
        job.plan,
        json.dumps(job.search_queries),
        json.dumps(job.search_lanes),
        json.dumps(job.acquired_source_ids),
        job.target_source_count,
        job.max_iterations,
        job.current_iteration,
        job.created_utc,
        job.updated_utc,
        job.completed_utc,
        job.error_message,
        job.checkpoint_data,
        job.most_supported_view,
        job.credible_alternatives,
        job.executive_summary,
        job.full_report,
        job.activity_report,
        job.grounding_score,
        json.dumps([e.to_dict() for e in job.replay_entries]),
    )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        session_id=row["session_id"],
        source_type=SourceType(row["source_type"]),
        locator=row["locator"],
        title=row["title"],
        content_hash=row["content_hash"],
        created_utc=row["created_utc"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["rowid"],
        id=row["id"],
        session_id=row["session_id"],
        source_id=row["source_id"],
        source_type=SourceType(row["source_type"]),
        text=row["text"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        chunk_index=row["chunk_index"],
        embedding=deserialize_embedding(row["embedding"]),
        created_utc=row["created_utc"],
    )


def _row_to_job(row: sqlite3.Row) -> ResearchJob:
    return ResearchJob(
        id=row["id"],
        session_id=row["session_id"],
        job_type=JobType(row["job_type"]),
        state=JobState(row["state"]),
        prompt=row["prompt"],
        plan=row["plan"],
        search_queries=json.loads(row["search_queries"]),
        search_lanes=json.loads(row["search_lanes"]),
        acquired_source_ids=json.loads(row["acquired_source_ids"]),
        target_source_count=row["target_source_count"],
        max_iterations=row["max_iterations"],
        current_iteration=row["current_iteration"],
        created_utc=row["created_utc"],
        updated_utc=row["updated_utc"],
        completed_utc=row["completed_utc"],
        error_message=row["error_message"],
        checkpoint_data=row["checkpoint_data"],
        most_supported_view=row["most_supported_view"],
        credible_alternatives=row["credible_alternatives"],
        executive_summary=row["executive_summary"],
        full_report=row["full_report"],
        activity_report=row["activity_report"],
        grounding_score=row["grounding_score"],
        replay_entries=[ReplayEntry.from_dict(e) for e in json.loads(row["replay_entries"])],
    )


def _row_to_step(row: sqlite3.Row) -> JobStep:
    return JobStep(
        id=row["id"],
        job_id=row["job_id"],
        step_number=row["step_number"],
        action=row["action"],
        detail=row["detail"],
        state_after=JobState(row["state_after"]),
        timestamp_utc=row["timestamp_utc"],
        success=bool(row["success"]),
        error=row["error"],
    )


def _row_to_citation(row: sqlite3.Row) -> Citation:
    return Citation(
        id=row["id"],
        session_id=row["session_id"],
        job_id=row["job_id"],
        citation_type=CitationType(row["citation_type"]),
        source_id=row["source_id"],
        chunk_id=row["chunk_id"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        page=row["page"],
        box=json.loads(row["box"]) if row["box"] else None,
        excerpt=row["excerpt"],
        label=row["label"],
        created_utc=row["created_utc"],
    )


def _row_to_claim(row: sqlite3.Row) -> ClaimLedgerEntry:
    return ClaimLedgerEntry(
        id=row["id"],
        job_id=row["job_id"],
        position=row["position"],
        claim=row["claim"],
        support=SupportLevel(row["support"]),
        citation_ids=json.loads(row["citation_ids"]),
        explanation=row["explanation"],
    )


def _row_to_report(row: sqlite3.Row) -> Report:
    return Report(
        id=row["id"],
        session_id=row["session_id"],
        job_id=row["job_id"],
        report_type=ReportType(row["report_type"]),
        title=row["title"],
        content=row["content"],
        format=row["format"],
        created_utc=row["created_utc"],
    )

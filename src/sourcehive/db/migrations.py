"""Forward-only migration runner for SourceHive's three store kinds.

  session   sources, chunks (+FTS5, embeddings), citations, jobs, steps, claims, reports
  registry  sessions index
  global    promoted chunks (+FTS5, embeddings)

Embeddings are float32 BLOBs on the chunk rows, compared with sqlite-vec's
vec_distance_cosine(); no vec0 virtual table is involved.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_SESSION_V1 = """
CREATE TABLE IF NOT EXISTS store_meta (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sources (
    id              TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL,
    source_type     TEXT NOT NULL,
    locator         TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    content_hash    TEXT NOT NULL DEFAULT '',
    created_utc     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id              TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL,
    source_id       TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    source_type     TEXT NOT NULL,
    text            TEXT NOT NULL,
    start_offset    INTEGER NOT NULL,
    end_offset      INTEGER NOT NULL,
    chunk_index     INTEGER NOT NULL,
    embedding       BLOB,
    created_utc     TEXT NOT NULL,
    UNIQUE (source_id, chunk_index)
);
CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source_id);
CREATE INDEX IF NOT EXISTS idx_chunks_type ON chunks(source_type);

CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(text, tokenize='porter ascii');

CREATE TABLE IF NOT EXISTS jobs (
    id                      TEXT PRIMARY KEY,
    session_id              TEXT NOT NULL,
    job_type                TEXT NOT NULL,
    state                   TEXT NOT NULL,
    prompt                  TEXT NOT NULL,
    plan                    TEXT,
    search_queries          TEXT NOT NULL DEFAULT '[]',
    search_lanes            TEXT NOT NULL DEFAULT '[]',
    acquired_source_ids     TEXT NOT NULL DEFAULT '[]',
    target_source_count     INTEGER NOT NULL DEFAULT 5,
    max_iterations          INTEGER NOT NULL DEFAULT 3,
    current_iteration       INTEGER NOT NULL DEFAULT 0,
    created_utc             TEXT NOT NULL,
    updated_utc             TEXT NOT NULL,
    completed_utc           TEXT,
    error_message           TEXT,
    checkpoint_data         TEXT,
    most_supported_view     TEXT,
    credible_alternatives   TEXT,
    executive_summary       TEXT,
    full_report             TEXT,
    activity_report         TEXT,
    grounding_score         REAL,
    replay_entries          TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_jobs_state ON jobs(state);

CREATE TABLE IF NOT EXISTS job_steps (
    id              TEXT PRIMARY KEY,
    job_id          TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    step_number     INTEGER NOT NULL,
    action          TEXT NOT NULL,
    detail          TEXT NOT NULL DEFAULT '',
    state_after     TEXT NOT NULL,
    timestamp_utc   TEXT NOT NULL,
    success         INTEGER NOT NULL DEFAULT 1,
    error           TEXT,
    UNIQUE (job_id, step_number)
);

CREATE TABLE IF NOT EXISTS citations (
    id              TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL,
    job_id          TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    citation_type   TEXT NOT NULL,
    source_id       TEXT NOT NULL,
    chunk_id        TEXT,
    start_offset    INTEGER,
    end_offset      INTEGER,
    page            INTEGER,
    box             TEXT,
    excerpt         TEXT NOT NULL,
    label           TEXT NOT NULL,
    created_utc     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_citations_job ON citations(job_id);
CREATE INDEX IF NOT EXISTS idx_citations_source ON citations(source_id);

CREATE TABLE IF NOT EXISTS claims (
    id              TEXT PRIMARY KEY,
    job_id          TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    position        INTEGER NOT NULL DEFAULT 0,
    claim           TEXT NOT NULL,
    support         TEXT NOT NULL,
    citation_ids    TEXT NOT NULL DEFAULT '[]',
    explanation     TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_claims_job ON claims(job_id);

CREATE TABLE IF NOT EXISTS reports (
    id              TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL,
    job_id          TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    report_type     TEXT NOT NULL,
    title           TEXT NOT NULL,
    content         TEXT NOT NULL,
    format          TEXT NOT NULL DEFAULT 'markdown',
    created_utc     TEXT NOT NULL
);
"""

_REGISTRY_V1 = """
CREATE TABLE IF NOT EXISTS sessions (
    id                  TEXT PRIMARY KEY,
    title               TEXT NOT NULL,
    description         TEXT NOT NULL DEFAULT '',
    domain_pack         TEXT NOT NULL,
    status              TEXT NOT NULL,
    tags                TEXT NOT NULL DEFAULT '[]',
    created_utc         TEXT NOT NULL,
    updated_utc         TEXT NOT NULL,
    workspace_path      TEXT,
    last_report_summary TEXT
);
"""

_GLOBAL_V1 = """
CREATE TABLE IF NOT EXISTS store_meta (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS global_chunks (
    id              TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL,
    job_id          TEXT,
    source_type     TEXT NOT NULL,
    repo_url        TEXT,
    domain_pack     TEXT,
    text            TEXT NOT NULL,
    embedding       BLOB,
    tags            TEXT NOT NULL DEFAULT '[]',
    promoted_utc    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_global_session ON global_chunks(session_id);
CREATE INDEX IF NOT EXISTS idx_global_pack ON global_chunks(domain_pack);
CREATE INDEX IF NOT EXISTS idx_global_repo ON global_chunks(repo_url);

CREATE VIRTUAL TABLE IF NOT EXISTS global_chunks_fts USING fts5(text, tokenize='porter ascii');
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
SESSION_MIGRATIONS: list[tuple[int, str]] = [
    (1, _SESSION_V1),
]

REGISTRY_MIGRATIONS: list[tuple[int, str]] = [
    (1, _REGISTRY_V1),
]

GLOBAL_MIGRATIONS: list[tuple[int, str]] = [
    (1, _GLOBAL_V1),
]

MIGRATIONS: dict[str, list[tuple[int, str]]] = {
    "session": SESSION_MIGRATIONS,
    "registry": REGISTRY_MIGRATIONS,
    "global": GLOBAL_MIGRATIONS,
}


def current_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def run_migrations(conn: sqlite3.Connection, kind: str = "session") -> None:
    """Apply all pending migrations of store *kind* in ascending version order.

    Idempotent: safe to call on a database at any version.

    Raises:
        ValueError: If *kind* is not one of session, registry, global.
    """
    if kind not in MIGRATIONS:
        raise ValueError(f"Unknown store kind '{kind}'")

    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    current = current_version(conn)
    for version, sql in MIGRATIONS[kind]:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()

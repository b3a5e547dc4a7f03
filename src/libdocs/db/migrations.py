"""Forward-only migration runner for the libdocs database schema.

Embeddings live in ``chunks.embedding`` as float32 blobs and are compared with
sqlite-vec's scalar distance functions, so no vec0 virtual tables are managed here.
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

_V1_SQL = """
CREATE TABLE IF NOT EXISTS library_configs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    version_spec    TEXT NOT NULL DEFAULT 'latest',
    current_version TEXT,
    features        TEXT NOT NULL DEFAULT '[]',
    expected_chunks INTEGER NOT NULL DEFAULT 0,
    enabled         INTEGER NOT NULL DEFAULT 1,
    embedding_model TEXT,
    dimensions      INTEGER,
    last_checked    DATETIME,
    last_populated  DATETIME,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (name, version_spec)
);

CREATE INDEX IF NOT EXISTS idx_library_configs_name ON library_configs(name);
CREATE INDEX IF NOT EXISTS idx_library_configs_enabled ON library_configs(enabled);

CREATE TABLE IF NOT EXISTS population_jobs (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    library_config_id INTEGER NOT NULL REFERENCES library_configs(id) ON DELETE CASCADE,
    status            TEXT NOT NULL
                      CHECK (status IN ('pending', 'running', 'completed', 'failed')),
    stage             TEXT NOT NULL DEFAULT 'requested',
    started_at        DATETIME,
    completed_at      DATETIME,
    error_message     TEXT,
    chunks_populated  INTEGER,
    skipped_items     INTEGER NOT NULL DEFAULT 0,
    created_at        DATETIME NOT NULL DEFAULT (datetime('now'))
);

-- Single-flight: at most one pending/running job per library configuration.
CREATE UNIQUE INDEX IF NOT EXISTS idx_population_jobs_active
    ON population_jobs(library_config_id)
    WHERE status IN ('pending', 'running');

CREATE INDEX IF NOT EXISTS idx_population_jobs_status ON population_jobs(status);

CREATE TABLE IF NOT EXISTS chunks (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    library_config_id INTEGER NOT NULL REFERENCES library_configs(id) ON DELETE CASCADE,
    version           TEXT NOT NULL,
    item_path         TEXT NOT NULL,
    part              INTEGER NOT NULL DEFAULT 0,
    text              TEXT NOT NULL,
    token_count       INTEGER NOT NULL,
    char_count        INTEGER NOT NULL,
    source_url        TEXT NOT NULL DEFAULT '',
    embedding         BLOB NOT NULL,
    created_at        DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_chunks_library ON chunks(library_config_id, version);

CREATE TABLE IF NOT EXISTS library_stats (
    library_config_id INTEGER PRIMARY KEY REFERENCES library_configs(id) ON DELETE CASCADE,
    chunk_count       INTEGER NOT NULL DEFAULT 0,
    total_tokens      INTEGER NOT NULL DEFAULT 0,
    last_updated      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS store_settings (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    # Read-only when the schema is current, so opening never queues behind a writer.
    bootstrapped = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if bootstrapped is None:
        conn.execute(_CREATE_SCHEMA_VERSION)
        conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()

"""Vector store: library configs, population jobs, chunk vectors and similarity search.

Single interface over the SQLite database for every persisted record kind.
The connection is owned by the store; open one store per thread (see
``open_store``) and close it after use.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from libdocs.db.connection import Database
from libdocs.db.models import (
    JOB_TRANSITIONS,
    Chunk,
    JobStatus,
    LibraryConfig,
    LibraryStats,
    PopulationJob,
    ScoredChunk,
)
from libdocs.db.schema import initialize
from libdocs.db.vectors import check_dimensions, distance_function, serialize
from libdocs.errors import (
    AlreadyInProgress,
    ConfigMismatch,
    InvalidTransition,
    NotFound,
    StorageError,
)

_CONFIG_COLUMNS = (
    "id, name, version_spec, current_version, features, expected_chunks, enabled, "
    "embedding_model, dimensions, last_checked, last_populated, created_at, updated_at"
)
_JOB_COLUMNS = (
    "id, library_config_id, status, stage, started_at, completed_at, error_message, "
    "chunks_populated, skipped_items, created_at"
)


class VectorStore:
    """Data access layer for all libdocs records.

    Args:
        conn: An open sqlite3.Connection with sqlite-vec loaded and the schema
            initialised (see libdocs.db.schema.initialize).
        metric: Similarity metric for this deployment, ``cosine`` or ``l2``.
    """

    def __init__(self, conn: sqlite3.Connection, metric: str = "cosine") -> None:
        self._distance_fn = distance_function(metric)
        self._conn = conn
        self.metric = metric

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> VectorStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        """Roll back and re-raise any sqlite3 error as StorageError."""
        try:
            yield
        except sqlite3.Error as exc:
            if self._conn.in_transaction:
                self._conn.rollback()
            raise StorageError(f"Failed to {action}: {exc}") from exc

    # ------------------------------------------------------------------
    # Store settings
    # ------------------------------------------------------------------

    def ensure_metric(self) -> None:
        """Record the metric on first use; refuse to open with a different one.

        Opening an already-pinned database only reads, so it never waits on
        another connection's write transaction.

        Raises:
            ConfigMismatch: If the database was built with another metric.
        """
        with self._storage_errors("check similarity metric"):
            row = self._conn.execute(
                "SELECT value FROM store_settings WHERE key = 'metric'"
            ).fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT OR IGNORE INTO store_settings (key, value) VALUES ('metric', ?)",
                    (self.metric,),
                )
                self._conn.commit()
                row = self._conn.execute(
                    "SELECT value FROM store_settings WHERE key = 'metric'"
                ).fetchone()
        if row["value"] != self.metric:
            raise ConfigMismatch(
                f"Database uses the '{row['value']}' metric but '{self.metric}' is "
                "configured. Change retrieval.metric back or rebuild the database."
            )

    # ------------------------------------------------------------------
    # Library configs
    # ------------------------------------------------------------------

    def upsert_library_config(self, config: LibraryConfig) -> LibraryConfig:
        """Insert *config* or update the user-controlled fields of an existing row.

        Resolved version, embedding identity and timestamps are left alone;
        only the orchestrator changes those.

        Returns:
            The stored LibraryConfig (with ``id`` set).
        """
        with self._storage_errors("upsert library config"):
            self._conn.execute(
                """
                INSERT INTO library_configs (name, version_spec, features, expected_chunks, enabled)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(name, version_spec) DO UPDATE SET
                    features = excluded.features,
                    expected_chunks = excluded.expected_chunks,
                    enabled = excluded.enabled,
                    updated_at = datetime('now')
                """,
                (
                    config.name,
                    config.version_spec,
                    json.dumps(list(config.features)),
                    config.expected_chunks,
                    int(config.enabled),
                ),
            )
            self._conn.commit()
        stored = self.get_library_config(config.name, config.version_spec)
        assert stored is not None
        return stored

    def get_library_config(self, name: str, version_spec: str) -> LibraryConfig | None:
        """Return the config for (*name*, *version_spec*), or None if not configured."""
        with self._storage_errors("get library config"):
            row = self._conn.execute(
                f"SELECT {_CONFIG_COLUMNS} FROM library_configs WHERE name = ? AND version_spec = ?",
                (name, version_spec),
            ).fetchone()
        return _row_to_config(row) if row else None

    def get_library_config_by_id(self, config_id: int) -> LibraryConfig | None:
        with self._storage_errors("get library config"):
            row = self._conn.execute(
                f"SELECT {_CONFIG_COLUMNS} FROM library_configs WHERE id = ?", (config_id,)
            ).fetchone()
        return _row_to_config(row) if row else None

    def resolve_library(self, name: str, version_spec: str | None = None) -> LibraryConfig | None:
        """Pick the config a query for *name* should use.

        With *version_spec* the lookup is exact. Without it, populated configs
        win over unpopulated ones, then ``latest`` over pinned specs, then the
        most recently populated.
        """
        if version_spec is not None:
            return self.get_library_config(name, version_spec)
        with self._storage_errors("resolve library"):
            row = self._conn.execute(
                f"""
                SELECT {_CONFIG_COLUMNS} FROM library_configs
                WHERE name = ?
                ORDER BY (last_populated IS NULL), (version_spec != 'latest'),
                         last_populated DESC, version_spec
                LIMIT 1
                """,
                (name,),
            ).fetchone()
        return _row_to_config(row) if row else None

    def list_library_configs(self, enabled_only: bool = False) -> list[LibraryConfig]:
        """Return configs ordered by name then version_spec."""
        sql = f"SELECT {_CONFIG_COLUMNS} FROM library_configs"
        if enabled_only:
            sql += " WHERE enabled = 1"
        sql += " ORDER BY name, version_spec"
        with self._storage_errors("list library configs"):
            rows = self._conn.execute(sql).fetchall()
        return [_row_to_config(r) for r in rows]

    def list_configs_needing_population(
        self, stale_after_hours: float | None = None
    ) -> list[LibraryConfig]:
        """Return enabled configs with no successful population.

        If *stale_after_hours* is given, ``latest`` configs not checked within
        that window are included too, so new upstream releases get picked up.
        """
        sql = (
            f"SELECT {_CONFIG_COLUMNS} FROM library_configs "
            "WHERE enabled = 1 AND (last_populated IS NULL OR current_version IS NULL"
        )
        params: list[object] = []
        if stale_after_hours is not None:
            sql += (
                " OR (version_spec = 'latest'"
                " AND (last_checked IS NULL OR last_checked < datetime('now', ?)))"
            )
            params.append(f"-{float(stale_after_hours)} hours")
        sql += ") ORDER BY name, version_spec"
        with self._storage_errors("list configs needing population"):
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_config(r) for r in rows]

    def delete_library_config(self, name: str, version_spec: str) -> bool:
        """Delete a config; chunks, jobs and stats cascade. Returns False if absent."""
        with self._storage_errors("delete library config"):
            cur = self._conn.execute(
                "DELETE FROM library_configs WHERE name = ? AND version_spec = ?",
                (name, version_spec),
            )
            self._conn.commit()
        return cur.rowcount > 0

    def touch_last_checked(self, config_id: int) -> None:
        """Record that the documentation host was consulted for *config_id*."""
        with self._storage_errors("update last_checked"):
            self._conn.execute(
                "UPDATE library_configs SET last_checked = datetime('now') WHERE id = ?",
                (config_id,),
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Population jobs
    # ------------------------------------------------------------------

    def create_job(self, config_id: int) -> PopulationJob:
        """Create a pending job for *config_id*.

        Raises:
            NotFound: If the config does not exist.
            AlreadyInProgress: If a pending or running job already exists.
        """
        if self.get_library_config_by_id(config_id) is None:
            raise NotFound(f"No library configuration with id {config_id}")
        with self._storage_errors("create population job"):
            try:
                cur = self._conn.execute(
                    "INSERT INTO population_jobs (library_config_id, status) VALUES (?, 'pending')",
                    (config_id,),
                )
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                active = self.get_active_job(config_id)
                job_ref = f" (job {active.id}, {active.status.value})" if active else ""
                raise AlreadyInProgress(
                    f"Population already in progress for library config {config_id}{job_ref}"
                ) from exc
            self._conn.commit()
        job = self.get_job(cur.lastrowid)
        assert job is not None
        return job

    def transition_job(
        self,
        job_id: int,
        new_status: JobStatus | str,
        *,
        stage: str | None = None,
        error_message: str | None = None,
        chunks_populated: int | None = None,
        skipped_items: int | None = None,
    ) -> PopulationJob:
        """Move a job to *new_status*, enforcing the legal transition set.

        The update is a compare-and-set on the current status, so two writers
        racing on one job cannot both succeed.

        Raises:
            NotFound: If the job does not exist.
            InvalidTransition: If the move is illegal or the job changed underneath us.
        """
        new = JobStatus(new_status)
        job = self.get_job(job_id)
        if job is None:
            raise NotFound(f"No population job with id {job_id}")
        if new not in JOB_TRANSITIONS[job.status]:
            raise InvalidTransition(
                f"Job {job_id} cannot move from {job.status.value} to {new.value}"
            )

        sets = ["status = ?"]
        params: list[object] = [new.value]
        if new is JobStatus.RUNNING:
            sets.append("started_at = datetime('now')")
        if new in (JobStatus.COMPLETED, JobStatus.FAILED):
            sets.append("completed_at = datetime('now')")
        for column, value in (
            ("stage", stage),
            ("error_message", error_message),
            ("chunks_populated", chunks_populated),
            ("skipped_items", skipped_items),
        ):
            if value is not None:
                sets.append(f"{column} = ?")
                params.append(value)

        with self._storage_errors("update population job"):
            cur = self._conn.execute(
                f"UPDATE population_jobs SET {', '.join(sets)} WHERE id = ? AND status = ?",
                (*params, job_id, job.status.value),
            )
            if cur.rowcount == 0:
                self._conn.rollback()
                raise InvalidTransition(f"Job {job_id} changed status concurrently")
            self._conn.commit()
        updated = self.get_job(job_id)
        assert updated is not None
        return updated

    def update_job_stage(self, job_id: int, stage: str) -> None:
        """Record progress within a running job without changing its status."""
        with self._storage_errors("update job stage"):
            self._conn.execute(
                "UPDATE population_jobs SET stage = ? WHERE id = ?", (stage, job_id)
            )
            self._conn.commit()

    def get_job(self, job_id: int) -> PopulationJob | None:
        with self._storage_errors("get population job"):
            row = self._conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM population_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return _row_to_job(row) if row else None

    def get_job_status(self, job_id: int) -> JobStatus:
        """Return the status of *job_id*.

        Raises:
            NotFound: If the job does not exist.
        """
        job = self.get_job(job_id)
        if job is None:
            raise NotFound(f"No population job with id {job_id}")
        return job.status

    def get_active_job(self, config_id: int) -> PopulationJob | None:
        """Return the pending/running job for *config_id*, if any."""
        with self._storage_errors("get active job"):
            row = self._conn.execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM population_jobs
                WHERE library_config_id = ? AND status IN ('pending', 'running')
                """,
                (config_id,),
            ).fetchone()
        return _row_to_job(row) if row else None

    def get_latest_job(self, config_id: int) -> PopulationJob | None:
        jobs = self.list_jobs(config_id, limit=1)
        return jobs[0] if jobs else None

    def list_jobs(self, config_id: int, limit: int = 20) -> list[PopulationJob]:
        """Return jobs for *config_id*, newest first."""
        with self._storage_errors("list population jobs"):
            rows = self._conn.execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM population_jobs
                WHERE library_config_id = ? ORDER BY id DESC LIMIT ?
                """,
                (config_id, limit),
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def fail_interrupted_jobs(self, reason: str) -> int:
        """Mark every pending/running job failed. Returns the number of jobs changed.

        Only safe when no other process is populating against this database,
        e.g. at startup after a crash left jobs stuck in ``running``.
        """
        with self._storage_errors("fail interrupted jobs"):
            cur = self._conn.execute(
                """
                UPDATE population_jobs
                SET status = 'failed', completed_at = datetime('now'), error_message = ?
                WHERE status IN ('pending', 'running')
                """,
                (reason,),
            )
            self._conn.commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def replace_chunks(
        self,
        config: LibraryConfig,
        version: str,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        embedding_model: str,
    ) -> int:
        """Atomically swap the chunk set of *config* for a new one.

        Old chunks are deleted and new ones inserted inside a single
        ``BEGIN IMMEDIATE`` transaction that also records the resolved
        version, embedding identity and statistics. Readers see either the
        old corpus or the new one. On any error the transaction is rolled back
        and the old corpus stays in place.

        Returns:
            The number of chunk rows written.

        Raises:
            NotFound: If the config no longer exists.
            ConfigMismatch: If vectors do not share one dimensionality.
            StorageError: On any database failure.
        """
        if len(chunks) != len(vectors):
            raise ValueError(f"{len(chunks)} chunks but {len(vectors)} vectors")
        if not chunks:
            raise ValueError("replace_chunks needs at least one chunk")
        dims = check_dimensions(vectors)

        rows = [
            (
                config.id,
                version,
                chunk.item_path,
                chunk.part,
                chunk.text,
                chunk.token_count,
                chunk.char_count,
                chunk.source_url,
                serialize(vector),
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        total_tokens = sum(chunk.token_count for chunk in chunks)

        try:
            self._conn.execute("BEGIN IMMEDIATE")
            exists = self._conn.execute(
                "SELECT 1 FROM library_configs WHERE id = ?", (config.id,)
            ).fetchone()
            if exists is None:
                raise NotFound(f"Library '{config.label}' was removed during population")
            self._conn.execute("DELETE FROM chunks WHERE library_config_id = ?", (config.id,))
            self._conn.executemany(
                """
                INSERT INTO chunks (library_config_id, version, item_path, part, text,
                                    token_count, char_count, source_url, embedding)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            self._conn.execute(
                """
                INSERT INTO library_stats (library_config_id, chunk_count, total_tokens)
                VALUES (?, ?, ?)
                ON CONFLICT(library_config_id) DO UPDATE SET
                    chunk_count = excluded.chunk_count,
                    total_tokens = excluded.total_tokens,
                    last_updated = datetime('now')
                """,
                (config.id, len(rows), total_tokens),
            )
            self._conn.execute(
                """
                UPDATE library_configs SET
                    current_version = ?,
                    embedding_model = ?,
                    dimensions = ?,
                    last_populated = datetime('now'),
                    last_checked = datetime('now'),
                    updated_at = datetime('now')
                WHERE id = ?
                """,
                (version, embedding_model, dims, config.id),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise StorageError(f"Failed to replace chunks for {config.label}: {exc}") from exc
        except BaseException:
            self._conn.rollback()
            raise
        return len(rows)

    def count_chunks(self, config_id: int) -> int:
        with self._storage_errors("count chunks"):
            return self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE library_config_id = ?", (config_id,)
            ).fetchone()[0]

    def get_library_stats(self, config_id: int) -> LibraryStats | None:
        with self._storage_errors("get library stats"):
            row = self._conn.execute(
                """
                SELECT library_config_id, chunk_count, total_tokens, last_updated
                FROM library_stats WHERE library_config_id = ?
                """,
                (config_id,),
            ).fetchone()
        if row is None:
            return None
        return LibraryStats(
            library_config_id=row["library_config_id"],
            chunk_count=row["chunk_count"],
            total_tokens=row["total_tokens"],
            last_updated=row["last_updated"],
        )

    def similarity_search(
        self, config_id: int, query_vector: Sequence[float], k: int
    ) -> list[ScoredChunk]:
        """Return the *k* chunks nearest to *query_vector*, closest first.

        Only chunks of the library's current version are searched, in a single
        statement so a concurrent swap is never observed half-done. Ties are
        broken by item path then part. Returns ``[]`` when the library has no chunks.

        Raises:
            NotFound: If *config_id* does not exist.
            ConfigMismatch: If the query vector's dimensionality differs from the corpus.
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        config = self.get_library_config_by_id(config_id)
        if config is None:
            raise NotFound(f"No library configuration with id {config_id}")
        if config.dimensions is not None and len(query_vector) != config.dimensions:
            raise ConfigMismatch(
                f"Query vector has {len(query_vector)} dimensions but {config.label} "
                f"was indexed with {config.dimensions}"
            )

        with self._storage_errors("search chunks"):
            rows = self._conn.execute(
                f"""
                SELECT c.id AS rowid, c.library_config_id, c.version, c.item_path, c.part,
                       c.text, c.token_count, c.source_url, c.created_at,
                       {self._distance_fn}(c.embedding, ?) AS distance
                FROM chunks c
                JOIN library_configs lc
                  ON lc.id = c.library_config_id AND lc.current_version = c.version
                WHERE c.library_config_id = ?
                ORDER BY distance ASC, c.item_path ASC, c.part ASC, c.id ASC
                LIMIT ?
                """,
                (serialize(query_vector), config_id, k),
            ).fetchall()
        return [ScoredChunk(chunk=_row_to_chunk(r), distance=r["distance"]) for r in rows]


def open_store(database: Database, metric: str = "cosine") -> VectorStore:
    """Open a connection on *database*, migrate it, and return a VectorStore.

    Raises:
        ConfigMismatch: If the database was built with a different metric.
    """
    conn = database.connect()
    try:
        initialize(conn)
        store = VectorStore(conn, metric=metric)
        store.ensure_metric()
    except BaseException:
        conn.close()
        raise
    return store


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_config(row: sqlite3.Row) -> LibraryConfig:
    return LibraryConfig(
        id=row["id"],
        name=row["name"],
        version_spec=row["version_spec"],
        current_version=row["current_version"],
        features=json.loads(row["features"]),
        expected_chunks=row["expected_chunks"],
        enabled=bool(row["enabled"]),
        embedding_model=row["embedding_model"],
        dimensions=row["dimensions"],
        last_checked=row["last_checked"],
        last_populated=row["last_populated"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_job(row: sqlite3.Row) -> PopulationJob:
    return PopulationJob(
        id=row["id"],
        library_config_id=row["library_config_id"],
        status=JobStatus(row["status"]),
        stage=row["stage"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        error_message=row["error_message"],
        chunks_populated=row["chunks_populated"],
        skipped_items=row["skipped_items"],
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["rowid"],
        library_config_id=row["library_config_id"],
        version=row["version"],
        item_path=row["item_path"],
        part=row["part"],
        text=row["text"],
        token_count=row["token_count"],
        source_url=row["source_url"],
        created_at=row["created_at"],
    )

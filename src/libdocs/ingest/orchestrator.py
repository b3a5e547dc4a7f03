"""Population orchestrator: drives fetch → chunk → embed → store for one library.

Each job walks an explicit stage machine::

    idle → requested → fetching → chunking → embedding → storing → completed
                 └──────────┴──────────┴──────────┴──────────┴──→ failed

Stages map onto the persisted job status (requested = pending, fetching
through storing = running). Single-flight per library is enforced by the
store's ``create_job`` constraint, not by an in-process lock, so it holds
across restarts and processes.

Jobs for different libraries run concurrently on a bounded thread pool. Each
run opens its own store connection.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from enum import Enum

from libdocs.db.connection import Database
from libdocs.db.models import JobStatus, PopulationJob
from libdocs.db.store import VectorStore, open_store
from libdocs.db.vectors import check_dimensions
from libdocs.errors import (
    AlreadyInProgress,
    InvalidTransition,
    NotFound,
    ParseError,
    RateLimited,
    describe,
)
from libdocs.ingest.base import BaseChunker
from libdocs.ingest.embeddings import EmbeddingProvider, iter_batches
from libdocs.ingest.fetcher import DocsFetcher

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    FETCHING = "fetching"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    COMPLETED = "completed"
    FAILED = "failed"


TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.IDLE: frozenset({Stage.REQUESTED}),
    Stage.REQUESTED: frozenset({Stage.FETCHING, Stage.FAILED}),
    Stage.FETCHING: frozenset({Stage.CHUNKING, Stage.FAILED}),
    Stage.CHUNKING: frozenset({Stage.EMBEDDING, Stage.FAILED}),
    Stage.EMBEDDING: frozenset({Stage.STORING, Stage.FAILED}),
    Stage.STORING: frozenset({Stage.COMPLETED, Stage.FAILED}),
    Stage.COMPLETED: frozenset(),
    Stage.FAILED: frozenset(),
}

STAGE_STATUS: dict[Stage, JobStatus] = {
    Stage.REQUESTED: JobStatus.PENDING,
    Stage.FETCHING: JobStatus.RUNNING,
    Stage.CHUNKING: JobStatus.RUNNING,
    Stage.EMBEDDING: JobStatus.RUNNING,
    Stage.STORING: JobStatus.RUNNING,
    Stage.COMPLETED: JobStatus.COMPLETED,
    Stage.FAILED: JobStatus.FAILED,
}


@dataclass
class JobOutcome:
    """Result of one population run."""

    job_id: int
    library: str
    status: JobStatus
    stage: Stage
    version: str | None = None
    chunks_populated: int = 0
    skipped_items: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.COMPLETED


class Orchestrator:
    """Schedule and run population jobs.

    Args:
        database: Shared Database; every run opens its own connection.
        fetcher: Documentation fetcher.
        chunker: Chunker for fetched pages.
        provider: Embedding provider.
        workers: Maximum concurrent population jobs.
        retry_budget: Total embedding attempts per batch on RateLimited.
        backoff_base: First retry delay in seconds; doubles per attempt.
        backoff_max: Ceiling on a single retry delay.
        metric: Similarity metric the store is opened with.
        sleep: Injected sleep function (tests pass a no-op).
    """

    def __init__(
        self,
        database: Database,
        fetcher: DocsFetcher,
        chunker: BaseChunker,
        provider: EmbeddingProvider,
        *,
        workers: int = 2,
        retry_budget: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        metric: str = "cosine",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if retry_budget < 1:
            raise ValueError("retry_budget must be >= 1")
        self._database = database
        self._fetcher = fetcher
        self._chunker = chunker
        self._provider = provider
        self.retry_budget = retry_budget
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.metric = metric
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="libdocs-populate")
        self._futures: dict[int, Future[JobOutcome]] = {}
        self._futures_lock = threading.Lock()

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()

    def _open_store(self) -> VectorStore:
        return open_store(self._database, metric=self.metric)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def request(self, name: str, version_spec: str = "latest") -> PopulationJob:
        """Create a pending job for a configured library (idle → requested).

        Raises:
            NotFound: If the library is not configured.
            AlreadyInProgress: If a job is already pending or running for it.
        """
        with self._open_store() as store:
            config = store.get_library_config(name, version_spec)
            if config is None:
                raise NotFound(f"Library '{name}@{version_spec}' is not configured")
            job = store.create_job(config.id)
        logger.info("Population requested for %s (job %d)", config.label, job.id)
        return job

    def submit(self, name: str, version_spec: str = "latest") -> PopulationJob:
        """Request a job and run it on the worker pool. Returns the pending job at once."""
        job = self.request(name, version_spec)
        try:
            future = self._executor.submit(self.run, job.id)
        except RuntimeError as exc:
            with self._open_store() as store:
                store.transition_job(
                    job.id, JobStatus.FAILED, stage=Stage.FAILED.value, error_message=describe(exc)
                )
            raise
        with self._futures_lock:
            self._futures[job.id] = future
        return job

    def populate(self, name: str, version_spec: str = "latest") -> JobOutcome:
        """Request a job and run it on the calling thread."""
        job = self.request(name, version_spec)
        return self.run(job.id)

    def scan(self, stale_after_hours: float | None = None) -> list[PopulationJob]:
        """Submit every enabled library that has never been populated successfully.

        With *stale_after_hours*, ``latest`` libraries not checked within that
        window are refreshed too. Libraries already in progress are skipped.
        """
        with self._open_store() as store:
            configs = store.list_configs_needing_population(stale_after_hours)

        jobs: list[PopulationJob] = []
        for config in configs:
            try:
                jobs.append(self.submit(config.name, config.version_spec))
            except AlreadyInProgress:
                logger.info("Skipping %s: population already in progress", config.label)
        logger.info("Startup scan queued %d of %d library(ies)", len(jobs), len(configs))
        return jobs

    def wait(self, timeout: float | None = None) -> list[JobOutcome]:
        """Block until submitted jobs finish; return their outcomes in job order."""
        with self._futures_lock:
            pending = dict(self._futures)
        done, _not_done = wait_futures(pending.values(), timeout=timeout)
        outcomes: list[JobOutcome] = []
        for job_id in sorted(pending):
            future = pending[job_id]
            if future in done:
                outcomes.append(future.result())
                with self._futures_lock:
                    self._futures.pop(job_id, None)
        return outcomes

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def run(self, job_id: int) -> JobOutcome:
        """Drive a pending job through every stage.

        Any failure marks the job failed with ``"<ErrorType>: <message>"`` and
        leaves the library's stored chunks untouched.

        Raises:
            NotFound: If the job does not exist.
            StorageError: If the job's own state cannot be recorded.
        """
        with self._open_store() as store:
            job = store.get_job(job_id)
            if job is None:
                raise NotFound(f"No population job with id {job_id}")
            config = store.get_library_config_by_id(job.library_config_id)
            if config is None:
                raise NotFound(f"Library config {job.library_config_id} for job {job_id} was removed")

            stage = Stage.REQUESTED
            skipped = 0
            version: str | None = None
            try:
                stage = self._advance(store, job_id, stage, Stage.FETCHING)
                fetched = self._fetcher.fetch(config.name, config.version_spec)
                store.touch_last_checked(config.id)
                version = fetched.version or config.version_spec

                stage = self._advance(store, job_id, stage, Stage.CHUNKING)
                chunked = self._chunker.chunk(fetched.pages)
                skipped = chunked.skipped
                if not chunked.chunks:
                    raise ParseError(
                        f"No chunks produced from {len(fetched.pages)} page(s) for {config.label}"
                    )

                stage = self._advance(store, job_id, stage, Stage.EMBEDDING)
                vectors = self._embed_all([chunk.text for chunk in chunked.chunks])
                check_dimensions(vectors, self._provider.dimensions)

                stage = self._advance(store, job_id, stage, Stage.STORING)
                written = store.replace_chunks(
                    config, version, chunked.chunks, vectors, self._provider.model
                )

                stage = self._advance(
                    store, job_id, stage, Stage.COMPLETED,
                    chunks_populated=written, skipped_items=skipped,
                )
            except Exception as exc:
                message = describe(exc)
                logger.error("Population of %s failed during %s: %s", config.label, stage.value, message)
                self._fail(store, job_id, stage, message, skipped)
                return JobOutcome(
                    job_id=job_id,
                    library=config.label,
                    status=JobStatus.FAILED,
                    stage=stage,
                    version=version,
                    skipped_items=skipped,
                    error=message,
                )

        logger.info(
            "Populated %s at version %s: %d chunk(s), %d page(s) skipped",
            config.label, version, written, skipped,
        )
        return JobOutcome(
            job_id=job_id,
            library=config.label,
            status=JobStatus.COMPLETED,
            stage=Stage.COMPLETED,
            version=version,
            chunks_populated=written,
            skipped_items=skipped,
        )

    def _advance(
        self,
        store: VectorStore,
        job_id: int,
        current: Stage,
        new: Stage,
        **fields: object,
    ) -> Stage:
        """Move the job from *current* to *new*, persisting the stage and status."""
        if new not in TRANSITIONS[current]:
            raise InvalidTransition(f"Job {job_id} cannot move from stage {current.value} to {new.value}")
        new_status = STAGE_STATUS[new]
        if new_status is not STAGE_STATUS.get(current):
            store.transition_job(job_id, new_status, stage=new.value, **fields)
        else:
            store.update_job_stage(job_id, new.value)
        logger.debug("Job %d: %s -> %s", job_id, current.value, new.value)
        return new

    @staticmethod
    def _fail(store: VectorStore, job_id: int, stage: Stage, message: str, skipped: int) -> None:
        """Record a failure; the job row keeps the stage at which it failed."""
        if Stage.FAILED not in TRANSITIONS[stage]:
            return
        try:
            store.transition_job(
                job_id, JobStatus.FAILED, stage=stage.value, error_message=message, skipped_items=skipped
            )
        except (NotFound, InvalidTransition) as exc:
            logger.warning("Could not record failure of job %d: %s", job_id, exc)

    # ------------------------------------------------------------------
    # Embedding with retry
    # ------------------------------------------------------------------

    def _embed_all(self, texts: Sequence[str]) -> list[list[float]]:
        provider = self._provider
        vectors: list[list[float]] = []
        batches = iter_batches(
            texts, provider.max_batch_items, provider.max_batch_tokens, provider.count_tokens
        )
        for number, batch in enumerate(batches, start=1):
            vectors.extend(self._embed_with_retry(batch, number))
        return vectors

    def _embed_with_retry(self, batch: list[str], number: int) -> list[list[float]]:
        """Embed one batch, retrying RateLimited up to ``retry_budget`` total attempts."""
        for attempt in range(1, self.retry_budget + 1):
            try:
                return self._provider.embed(batch)
            except RateLimited as exc:
                if attempt == self.retry_budget:
                    raise
                delay = min(self.backoff_base * 2 ** (attempt - 1), self.backoff_max)
                logger.warning(
                    "Batch %d rate limited (attempt %d/%d), retrying in %.1fs: %s",
                    number, attempt, self.retry_budget, delay, exc,
                )
                self._sleep(delay)
        raise AssertionError("unreachable")

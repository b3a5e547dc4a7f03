"""DocsService: the operations exposed to assistants and the CLI.

Wires the store, orchestrator and query engine together. Every call opens its
own store connection, so a service instance can be shared between threads.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from libdocs.config import LibdocsConfig
from libdocs.db.connection import Database
from libdocs.db.models import LibraryConfig, LibraryStats, PopulationJob
from libdocs.db.store import VectorStore, open_store
from libdocs.errors import AlreadyInProgress, LibdocsError, NotFound, describe
from libdocs.ingest.embeddings import EmbeddingProvider, create_provider
from libdocs.ingest.fetcher import DocsFetcher
from libdocs.ingest.orchestrator import JobOutcome, Orchestrator
from libdocs.ingest.rustdoc import RustdocChunker
from libdocs.rag.query import QueryEngine, QueryResult
from libdocs.rag.summarizer import AnswerSummarizer

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_VERSION_RE = re.compile(r"^\d+(\.\d+){0,2}([-+][0-9A-Za-z.-]+)?$")


def validate_name(name: str) -> str:
    """Return *name* stripped, or raise ValueError if it is not a valid library name."""
    name = name.strip()
    if not _NAME_RE.match(name):
        raise ValueError(
            f"Invalid library name '{name}': use 1-64 letters, digits, '-' or '_'"
        )
    return name


def validate_version_spec(version_spec: str) -> str:
    """Return *version_spec* stripped, or raise ValueError if it is not ``latest`` or a version."""
    version_spec = version_spec.strip()
    if version_spec != "latest" and not _VERSION_RE.match(version_spec):
        raise ValueError(
            f"Invalid version '{version_spec}': use 'latest' or a version such as 1.2.3"
        )
    return version_spec


@dataclass
class LibrarySpec:
    """One entry of a bulk add request."""

    name: str
    version_spec: str = "latest"
    features: list[str] = field(default_factory=list)
    expected_chunks: int = 0
    enabled: bool = True


@dataclass
class AddResult:
    name: str
    version_spec: str
    job: PopulationJob | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class LibrarySummary:
    config: LibraryConfig
    stats: LibraryStats | None = None
    latest_job: PopulationJob | None = None


@dataclass
class LibraryStatus:
    """Population state of one library as seen by an assistant."""

    config: LibraryConfig
    chunk_count: int = 0
    latest_job: PopulationJob | None = None
    active_job: PopulationJob | None = None

    @property
    def queryable(self) -> bool:
        return self.config.is_populated and self.chunk_count > 0


class DocsService:
    """Library management, population and query operations.

    Args:
        database: Shared Database.
        orchestrator: Population orchestrator (owns the worker pool).
        provider: Embedding provider used for queries.
        metric: Similarity metric the store is opened with.
        top_k: Chunks returned per query.
        summarizer: Optional answer summarizer.
        stale_after_hours: Age after which ``latest`` libraries are refreshed by
            ``startup_scan``; None disables refreshing.
    """

    def __init__(
        self,
        database: Database,
        orchestrator: Orchestrator,
        provider: EmbeddingProvider,
        *,
        metric: str = "cosine",
        top_k: int = 5,
        summarizer: AnswerSummarizer | None = None,
        stale_after_hours: float | None = None,
    ) -> None:
        self.database = database
        self.orchestrator = orchestrator
        self.provider = provider
        self.metric = metric
        self.top_k = top_k
        self.summarizer = summarizer
        self.stale_after_hours = stale_after_hours

    @classmethod
    def from_config(cls, cfg: LibdocsConfig) -> DocsService:
        """Build a service and all its collaborators from *cfg*."""
        database = Database(cfg.database.path, busy_timeout=cfg.database.busy_timeout)
        provider = create_provider(cfg.embedding)
        fetcher = DocsFetcher(
            base_url=cfg.fetcher.base_url,
            max_pages=cfg.fetcher.max_pages,
            timeout=cfg.fetcher.timeout,
            max_retries=cfg.fetcher.max_retries,
            request_delay=cfg.fetcher.request_delay,
        )
        orchestrator = Orchestrator(
            database,
            fetcher,
            RustdocChunker(max_tokens=cfg.chunker.max_tokens),
            provider,
            workers=cfg.population.workers,
            retry_budget=cfg.population.retry_budget,
            backoff_base=cfg.population.backoff_base,
            backoff_max=cfg.population.backoff_max,
            metric=cfg.retrieval.metric,
        )
        summarizer = None
        if cfg.summarization.enabled:
            summarizer = AnswerSummarizer(
                model=cfg.summarization.model,
                max_tokens=cfg.summarization.max_tokens,
                timeout=cfg.summarization.timeout,
            )
        return cls(
            database,
            orchestrator,
            provider,
            metric=cfg.retrieval.metric,
            top_k=cfg.retrieval.top_k,
            summarizer=summarizer,
            stale_after_hours=cfg.population.stale_after_hours,
        )

    def __enter__(self) -> DocsService:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self, wait: bool = True) -> None:
        self.orchestrator.shutdown(wait=wait)

    def _store(self) -> VectorStore:
        return open_store(self.database, metric=self.metric)

    # ------------------------------------------------------------------
    # Library management
    # ------------------------------------------------------------------

    def add_library(
        self,
        name: str,
        version_spec: str = "latest",
        features: Sequence[str] | None = None,
        expected_chunks: int = 0,
        enabled: bool = True,
    ) -> PopulationJob | None:
        """Configure a library and queue its population.

        Returns the pending job immediately, or None when the library is
        added disabled.

        Raises:
            ValueError: If the name or version is malformed.
            AlreadyInProgress: If a population job is already active for it.
        """
        name = validate_name(name)
        version_spec = validate_version_spec(version_spec)
        with self._store() as store:
            config = store.upsert_library_config(
                LibraryConfig(
                    name=name,
                    version_spec=version_spec,
                    features=list(features or []),
                    expected_chunks=expected_chunks,
                    enabled=enabled,
                )
            )
        logger.info("Configured %s", config.label)
        if not enabled:
            return None
        return self.orchestrator.submit(name, version_spec)

    def add_libraries(
        self, specs: Sequence[LibrarySpec], fail_fast: bool = False
    ) -> list[AddResult]:
        """Add several libraries. With *fail_fast* the first error is raised."""
        results: list[AddResult] = []
        for spec in specs:
            try:
                job = self.add_library(
                    spec.name,
                    spec.version_spec,
                    features=spec.features,
                    expected_chunks=spec.expected_chunks,
                    enabled=spec.enabled,
                )
            except (LibdocsError, ValueError) as exc:
                if fail_fast:
                    raise
                logger.warning("Could not add %s@%s: %s", spec.name, spec.version_spec, exc)
                results.append(AddResult(spec.name, spec.version_spec, error=describe(exc)))
                continue
            results.append(AddResult(spec.name, spec.version_spec, job=job))
        return results

    def remove_library(self, name: str, version_spec: str = "latest") -> None:
        """Remove a library with its chunks, jobs and statistics.

        Raises:
            NotFound: If the library is not configured.
            AlreadyInProgress: If a population job is active for it.
        """
        with self._store() as store:
            config = store.get_library_config(name, version_spec)
            if config is None:
                raise NotFound(f"Library '{name}@{version_spec}' is not configured")
            active = store.get_active_job(config.id)
            if active is not None:
                raise AlreadyInProgress(
                    f"Cannot remove {config.label} while job {active.id} is {active.status.value}"
                )
            store.delete_library_config(name, version_spec)
        logger.info("Removed %s", config.label)

    def list_libraries(self, enabled_only: bool = False) -> list[LibrarySummary]:
        with self._store() as store:
            return [
                LibrarySummary(
                    config=config,
                    stats=store.get_library_stats(config.id),
                    latest_job=store.get_latest_job(config.id),
                )
                for config in store.list_library_configs(enabled_only=enabled_only)
            ]

    def check_status(self, name: str, version_spec: str | None = None) -> LibraryStatus:
        """Report the population state of a library.

        Raises:
            NotFound: If the library is not configured.
        """
        with self._store() as store:
            config = store.resolve_library(name, version_spec)
            if config is None:
                label = f"{name}@{version_spec}" if version_spec else name
                raise NotFound(f"Library '{label}' is not configured")
            return LibraryStatus(
                config=config,
                chunk_count=store.count_chunks(config.id),
                latest_job=store.get_latest_job(config.id),
                active_job=store.get_active_job(config.id),
            )

    # ------------------------------------------------------------------
    # Population and query
    # ------------------------------------------------------------------

    def populate(self, name: str, version_spec: str = "latest") -> JobOutcome:
        """Populate a configured library on the calling thread."""
        return self.orchestrator.populate(name, version_spec)

    def startup_scan(self) -> list[PopulationJob]:
        """Queue population for every library that needs it."""
        return self.orchestrator.scan(stale_after_hours=self.stale_after_hours)

    def recover_interrupted(self) -> int:
        """Fail jobs left pending/running by a previous process. Returns the count."""
        with self._store() as store:
            count = store.fail_interrupted_jobs("Interrupted: process exited before the job finished")
        if count:
            logger.warning("Marked %d interrupted job(s) as failed", count)
        return count

    def query(
        self,
        name: str,
        question: str,
        version_spec: str | None = None,
        summarize: bool = True,
    ) -> QueryResult:
        """Answer *question* from library *name*'s documentation."""
        with self._store() as store:
            engine = QueryEngine(store, self.provider, top_k=self.top_k, summarizer=self.summarizer)
            return engine.answer(name, question, version_spec=version_spec, summarize=summarize)

"""Domain models for the libdocs database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.PENDING, JobStatus.RUNNING})

# Legal persisted status transitions. Jobs never regress.
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass
class LibraryConfig:
    """One (name, version_spec) pair the system is willing to serve."""

    name: str
    version_spec: str = "latest"
    current_version: str | None = None
    features: list[str] = field(default_factory=list)
    expected_chunks: int = 0
    enabled: bool = True
    embedding_model: str | None = None
    dimensions: int | None = None
    last_checked: str | None = None
    last_populated: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None  # set after insert

    @property
    def is_populated(self) -> bool:
        return self.last_populated is not None and self.current_version is not None

    @property
    def label(self) -> str:
        return f"{self.name}@{self.version_spec}"


@dataclass
class PopulationJob:
    library_config_id: int
    status: JobStatus = JobStatus.PENDING
    stage: str = "requested"
    started_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None
    chunks_populated: int | None = None
    skipped_items: int = 0
    created_at: str | None = None
    id: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass
class Chunk:
    """One documentation unit. ``rowid`` and ``version`` are set once stored."""

    item_path: str
    text: str
    part: int = 0
    token_count: int = 0
    source_url: str = ""
    library_config_id: int | None = None
    version: str | None = None
    created_at: str | None = None
    rowid: int | None = None

    @property
    def char_count(self) -> int:
        return len(self.text)


@dataclass
class ScoredChunk:
    """A retrieved chunk with its distance to the query vector (smaller = closer)."""

    chunk: Chunk
    distance: float

    @property
    def similarity(self) -> float:
        """1 - distance; meaningful for the cosine metric."""
        return 1.0 - self.distance


@dataclass
class LibraryStats:
    library_config_id: int
    chunk_count: int = 0
    total_tokens: int = 0
    last_updated: str | None = None

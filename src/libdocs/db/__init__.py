"""libdocs database layer."""

from libdocs.db.connection import Database
from libdocs.db.migrations import MIGRATIONS, run_migrations
from libdocs.db.schema import initialize
from libdocs.db.store import VectorStore, open_store
from libdocs.db.vectors import METRICS, check_dimensions, distance_function, serialize

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "VectorStore",
    "open_store",
    "METRICS",
    "check_dimensions",
    "distance_function",
    "serialize",
]

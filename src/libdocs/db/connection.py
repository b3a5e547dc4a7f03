"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

# Seconds a writer waits for the database lock before raising "database is locked".
_BUSY_TIMEOUT = 30.0


class Database:
    """SQLite database with sqlite-vec distance functions loaded.

    A ``Database`` is only a path plus connection settings; it is safe to share
    between threads. Every thread (population worker or query) opens its own
    connection with ``connect()``.
    """

    def __init__(self, db_path: Path | str, busy_timeout: float = _BUSY_TIMEOUT) -> None:
        """Store the database path. Call connect() to open a connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            busy_timeout: Seconds to wait on a locked database before failing.
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        # WAL gives readers a stable snapshot while a chunk swap is being written.
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None

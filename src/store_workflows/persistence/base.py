"""Shared SQLite plumbing for the persistence stores."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


class SQLiteStore:
    """Base class owning one SQLite connection.

    A single connection is shared by every thread and guarded by a
    re-entrant lock. An in-memory database only exists on the connection
    that created it, so per-thread connections would each see an empty
    database.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. None for in-memory database.
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._init_db()

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for a cursor inside one transaction."""
        with self._lock:
            cursor = self._connection.cursor()
            try:
                yield cursor
                self._connection.commit()
            except Exception:
                self._connection.rollback()
                raise
            finally:
                cursor.close()

    def _init_db(self) -> None:
        """Create tables. Subclasses override."""

    def close(self) -> None:
        with self._lock:
            self._connection.close()

"""SQLiteSessionStore — local file-based key-value store for review sessions.

Why SQLite as the default store:
- Batteries included: ships with Python, no extra dependencies.
- Conditional writes: a single ``UPDATE ... WHERE record = ?`` is atomic, which
  gives compare_and_set without any extra locking protocol, even across
  processes sharing the same database file.
- Survives restarts, unlike MemorySessionStore.

Schema:
  review_sessions — one row per session, keyed by ``review_session_<id>``.
                    ``reclaim_at`` is the store-level TTL (epoch seconds);
                    rows past it are invisible to get() and removed by
                    purge_expired().
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from typing import Callable

from patchgate_store.base import BaseSessionStore, build_session_key

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS review_sessions (
    key         TEXT PRIMARY KEY,
    record      TEXT NOT NULL,
    reclaim_at  REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_review_sessions_reclaim ON review_sessions (reclaim_at);
"""


class SQLiteSessionStore(BaseSessionStore):
    """Stores serialized sessions in a local SQLite database file.

    The database file path defaults to `.patchgate.db` in the current working
    directory. Configure via .patchgate.yml: `store_path: /path/to/patchgate.db`.
    """

    def __init__(self, db_path: str = ".patchgate.db", clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        # The API serves requests from a thread pool; the lock serializes use of
        # the single connection.
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def get(self, session_id: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT record FROM review_sessions WHERE key=? AND reclaim_at>?",
                (build_session_key(session_id), self._clock()),
            ).fetchone()
        return row["record"] if row else None

    def put(self, session_id: str, record: str, ttl_seconds: int) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO review_sessions (key, record, reclaim_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET record=excluded.record, reclaim_at=excluded.reclaim_at
                """,
                (build_session_key(session_id), record, self._reclaim_at(ttl_seconds)),
            )
            # Expired rows are reclaimed on every put.
            self._conn.execute("DELETE FROM review_sessions WHERE reclaim_at<=?", (self._clock(),))
            self._conn.commit()

    def compare_and_set(self, session_id: str, expected: str, record: str, ttl_seconds: int) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE review_sessions SET record=?, reclaim_at=?
                WHERE key=? AND record=? AND reclaim_at>?
                """,
                (record, self._reclaim_at(ttl_seconds), build_session_key(session_id), expected, self._clock()),
            )
            self._conn.commit()
        swapped = cursor.rowcount == 1
        if not swapped:
            logger.debug("compare_and_set lost for session %s", session_id)
        return swapped

    def purge_expired(self) -> int:
        """Delete rows past their TTL hint. Returns the number removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM review_sessions WHERE reclaim_at<=?", (self._clock(),))
            self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()

    def _reclaim_at(self, ttl_seconds: int) -> float:
        return self._clock() + max(1, ttl_seconds)

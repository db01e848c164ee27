"""In-process session store.

Good for tests and single-process development servers. Records live in a
dict guarded by a lock, so compare_and_set is atomic for every thread in
this process and for nobody else.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from patchgate_store.base import BaseSessionStore, build_session_key


class MemorySessionStore(BaseSessionStore):
    """Keeps ``key -> (record, reclaim_at)`` in memory.

    ``clock`` returns epoch seconds; tests pass a fake one to exercise TTL
    reclamation without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        record, reclaim_at = entry
        if self._clock() >= reclaim_at:
            del self._data[key]
            return None
        return record

    def get(self, session_id: str) -> str | None:
        with self._lock:
            return self._live(build_session_key(session_id))

    def put(self, session_id: str, record: str, ttl_seconds: int) -> None:
        with self._lock:
            self._sweep()
            self._data[build_session_key(session_id)] = (record, self._clock() + max(1, ttl_seconds))

    def purge_expired(self) -> int:
        """Drop every entry past its TTL hint. Returns the number removed."""
        with self._lock:
            return self._sweep()

    def _sweep(self) -> int:
        # Caller holds self._lock.
        now = self._clock()
        stale = [key for key, (_, reclaim_at) in self._data.items() if now >= reclaim_at]
        for key in stale:
            del self._data[key]
        return len(stale)

    def compare_and_set(self, session_id: str, expected: str, record: str, ttl_seconds: int) -> bool:
        key = build_session_key(session_id)
        with self._lock:
            if self._live(key) != expected:
                return False
            self._data[key] = (record, self._clock() + max(1, ttl_seconds))
            return True

    def keys(self) -> list[str]:
        """Return the storage keys currently held (for debugging and tests)."""
        with self._lock:
            return sorted(k for k in list(self._data) if self._live(k) is not None)

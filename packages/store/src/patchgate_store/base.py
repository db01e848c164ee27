"""Abstract session store interface.

Any key-value backend (SQLite, in-memory, Redis, Cloudflare KV) implements
this interface. The lifecycle code depends on BaseSessionStore, not on a
concrete backend, so backends are swappable without touching core code.

Stores deal in serialized records only. Turning a record into a
ReviewSession is the serializer's job, and deciding whether a transition is
legal is the lifecycle guard's.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

SESSION_KEY_PREFIX = "review_session_"


def build_session_key(session_id: str) -> str:
    """Return the storage key for a session id: ``review_session_<id>``."""
    return f"{SESSION_KEY_PREFIX}{session_id}"


class BaseSessionStore(ABC):
    """TTL-aware persistence for serialized review sessions.

    ``ttl_seconds`` is a reclamation hint: once it elapses the store may drop
    the record. Application-level expiry is decided from the record's own
    ``expiresAt``, so the hint is only a backstop.
    """

    @abstractmethod
    def get(self, session_id: str) -> str | None:
        """Return the serialized record, or None if absent or reclaimed."""

    @abstractmethod
    def put(self, session_id: str, record: str, ttl_seconds: int) -> None:
        """Insert or overwrite the record unconditionally."""

    @abstractmethod
    def compare_and_set(self, session_id: str, expected: str, record: str, ttl_seconds: int) -> bool:
        """Replace the record only if the stored value still equals ``expected``.

        Returns False when another writer got there first (or the record is
        gone); the caller should re-read and re-decide.
        """

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional — subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """

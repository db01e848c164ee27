"""Clock and TTL policy for review sessions.

Expiry is a derived, time-relative fact: a session is expired when the clock
has reached its ``expires_at``, whatever its stored status says. Every
function here takes an optional ``now`` so tests can pin the clock.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from patchgate_store.models import ReviewSession, SessionStatus

DEFAULT_TTL_MS = 24 * 60 * 60 * 1000
MAX_TTL_HOURS = 24 * 30


def hours_to_ttl_ms(hours: float) -> int:
    """Convert a TTL in hours to whole milliseconds, rejecting values outside (0, MAX_TTL_HOURS]."""
    if not 0 < hours <= MAX_TTL_HOURS:
        raise ValueError(f"TTL must be in (0, {MAX_TTL_HOURS}] hours, got {hours}")
    ttl_ms = int(hours * 60 * 60 * 1000)
    if ttl_ms < 1:
        raise ValueError(f"TTL of {hours} hours is shorter than one millisecond")
    return ttl_ms


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def calculate_expires_at(created_at: datetime, ttl_ms: int = DEFAULT_TTL_MS) -> datetime:
    if ttl_ms <= 0:
        raise ValueError(f"Session TTL must be positive, got {ttl_ms} ms")
    return created_at + timedelta(milliseconds=ttl_ms)


def is_session_expired(session: ReviewSession, now: datetime | None = None) -> bool:
    now = now or utc_now()
    return now >= session.expires_at


def remaining_ttl_seconds(session: ReviewSession, now: datetime | None = None) -> int:
    """Seconds until expiry, floored and never below 1 (stores reject zero TTLs)."""
    now = now or utc_now()
    remaining = (session.expires_at - now).total_seconds()
    return max(1, math.floor(remaining))


def effective_status(session: ReviewSession, now: datetime | None = None) -> SessionStatus:
    """Status as callers should see it at ``now``.

    An applied session stays applied for good; anything else past its expiry
    reads as expired.
    """
    if session.status == SessionStatus.APPLIED:
        return SessionStatus.APPLIED
    if is_session_expired(session, now):
        return SessionStatus.EXPIRED
    return session.status

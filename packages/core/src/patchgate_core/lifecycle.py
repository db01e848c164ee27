"""Review session lifecycle: create, read, approve, apply.

Status transitions are read-decide-write sequences against a shared store.
They are made safe under concurrent requests in three layers:

1. compare_and_set on the store: a transition only lands if the record is
   still the one the decision was made on; a lost race re-reads and
   re-decides.
2. A per-session lock around apply, so requests in this process never run
   two writes for the same session.
3. The writer's commit-trailer pre-check (see patchgate_core.gh.writer), so a
   duplicate apply from another process reuses existing commits.

The remaining window: two processes that both read ``approved`` and both
write before either sees the other's commits can each commit a file. Layer 3
narrows it to the time between the pre-check and the first commit.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterator

from patchgate_core.errors import (
    CorruptSessionError,
    PatchgateError,
    SessionNotFoundError,
    WriteBackError,
    error_for_code,
)
from patchgate_core.factory import create_review_session
from patchgate_core.guard import can_apply_session, can_approve_session
from patchgate_core.ttl import DEFAULT_TTL_MS, remaining_ttl_seconds, utc_now
from patchgate_store.models import ReviewSession, SessionStatus
from patchgate_store.serializer import deserialize_session, serialize_session

if TYPE_CHECKING:
    from patchgate_core.gh.writer import VcsWriter
    from patchgate_core.plan import ChangePlan
    from patchgate_store.base import BaseSessionStore

logger = logging.getLogger(__name__)

_MAX_CAS_ATTEMPTS = 3


@dataclass(frozen=True)
class ApproveOutcome:
    session_id: str
    previous_status: SessionStatus
    new_status: SessionStatus
    idempotent: bool = False


@dataclass(frozen=True)
class ApplyResult:
    session_id: str
    applied: bool
    commit_shas: tuple[str, ...] = field(default_factory=tuple)
    idempotent: bool = False


class SessionLocks:
    """One lock per session id, dropped when nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # session_id -> [lock, holders]

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(session_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[session_id]


class ReviewSessionService:
    """Creates, reads and approves sessions held in a BaseSessionStore."""

    def __init__(
        self,
        store: BaseSessionStore,
        *,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.ttl_ms = ttl_ms
        self.clock = clock
        self.locks = SessionLocks()

    def create(self, plan: ChangePlan) -> ReviewSession:
        now = self.clock()
        session = create_review_session(plan, ttl_ms=self.ttl_ms, now=now)
        self.store.put(session.session_id, serialize_session(session), remaining_ttl_seconds(session, now))
        logger.info(
            "Created review session %s for %s (%d patch(es), expires %s)",
            session.session_id,
            session.target_repo.full_name,
            len(session.patches),
            session.expires_at.isoformat(),
        )
        return session

    def load(self, session_id: str) -> tuple[str, ReviewSession]:
        """Return the raw stored record and its decoded session."""
        raw = self.store.get(session_id)
        if raw is None:
            raise SessionNotFoundError(session_id)
        session = deserialize_session(raw)
        if session is None:
            logger.error("Stored record for session %s is not a valid session", session_id)
            raise CorruptSessionError(f"Stored record for session {session_id} is corrupt")
        return raw, session

    def get(self, session_id: str) -> ReviewSession:
        return self.load(session_id)[1]

    def swap(self, expected_raw: str, updated: ReviewSession) -> bool:
        """Persist ``updated`` only if the store still holds ``expected_raw``."""
        return self.store.compare_and_set(
            updated.session_id,
            expected_raw,
            serialize_session(updated),
            remaining_ttl_seconds(updated, self.clock()),
        )

    def approve(self, session_id: str) -> ApproveOutcome:
        for attempt in range(1, _MAX_CAS_ATTEMPTS + 1):
            raw, session = self.load(session_id)
            decision = can_approve_session(session, self.clock())
            if not decision.can_approve:
                raise error_for_code(decision.error_code, decision.reason)
            if decision.is_idempotent:
                return ApproveOutcome(session_id, session.status, SessionStatus.APPROVED, idempotent=True)

            if self.swap(raw, replace(session, status=SessionStatus.APPROVED)):
                logger.info("Approved review session %s", session_id)
                return ApproveOutcome(session_id, session.status, SessionStatus.APPROVED)
            logger.debug("Approve of %s lost a concurrent update (attempt %d)", session_id, attempt)

        raise PatchgateError(f"Could not approve session {session_id}: record kept changing")


class ApplyOrchestrator:
    """Writes an approved session's patches and records the resulting commits."""

    def __init__(self, service: ReviewSessionService, writer: VcsWriter):
        self._service = service
        self._writer = writer

    def apply(self, session_id: str) -> ApplyResult:
        with self._service.locks.hold(session_id):
            raw, session = self._service.load(session_id)
            decision = can_apply_session(session, self._service.clock())
            if decision.is_idempotent:
                logger.info("Session %s already applied; returning existing commits", session_id)
                return ApplyResult(session_id, True, session.commit_shas, idempotent=True)
            if not decision.can_apply:
                raise error_for_code(decision.error_code, decision.reason)

            shas = self._writer.write_patches(
                session.target_repo,
                session.patches,
                session_id=session_id,
                deletions=session.deleted_paths(),
            )
            if not shas:
                raise WriteBackError(f"Write-back for session {session_id} produced no commits", retryable=False)

            applied = replace(session, status=SessionStatus.APPLIED, commit_shas=tuple(shas))
            if self._service.swap(raw, applied):
                logger.info("Applied review session %s: %d commit(s)", session_id, len(shas))
                return ApplyResult(session_id, True, applied.commit_shas)

            # Another process changed the record between our read and write,
            # or the store reclaimed it while the commits were being made.
            try:
                _, current = self._service.load(session_id)
            except SessionNotFoundError as e:
                logger.error("Session %s vanished from the store after %d commit(s)", session_id, len(shas))
                raise WriteBackError(
                    f"Session {session_id} was reclaimed by the store while applying; "
                    "commits were written but not recorded",
                    retryable=False,
                    details={"commitShas": list(shas)},
                ) from e
            if current.status == SessionStatus.APPLIED:
                logger.warning("Session %s was applied concurrently; keeping the recorded commits", session_id)
                return ApplyResult(session_id, True, current.commit_shas, idempotent=True)
            raise WriteBackError(
                f"Session {session_id} changed while applying; commits were written but not recorded",
                retryable=True,
            )

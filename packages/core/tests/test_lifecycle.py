"""Tests for the session service and apply orchestrator."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from patchgate_core.errors import (
    CorruptSessionError,
    SessionAlreadyAppliedError,
    SessionExpiredError,
    SessionNotApprovedError,
    SessionNotFoundError,
    WriteBackError,
)
from patchgate_core.lifecycle import ApplyOrchestrator, ReviewSessionService, SessionLocks
from patchgate_core.plan import parse_change_plan
from patchgate_store.memory import MemorySessionStore
from patchgate_store.models import SessionStatus
from patchgate_store.serializer import deserialize_session, serialize_session

T0 = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)
MISSING_ID = "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"

PLAN = {
    "siteUrl": "https://example.com",
    "selectedTargets": ["/", "/services"],
    "targetRepo": {"owner": "example-org", "repo": "example-site", "branch": "main"},
    "plannedFiles": [
        {"url": "https://example.com/", "filePath": "src/pages/index.astro", "action": "update"},
        {"url": "https://example.com/services", "filePath": "src/pages/services/index.astro", "action": "create"},
    ],
    "diffPreviews": [],
    "patches": [
        {"url": "https://example.com/", "filePath": "src/pages/index.astro", "newContent": "<p>new</p>"},
        {"url": "https://example.com/services", "filePath": "src/pages/services/index.astro", "newContent": "---"},
    ],
}


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeWriter:
    """Records every write and returns fixed SHAs."""

    def __init__(self, shas=("abc123",), error: Exception | None = None, delay: float = 0.0):
        self.shas = list(shas)
        self.error = error
        self.delay = delay
        self.calls: list[dict] = []

    def write_patches(self, target, patches, *, session_id, deletions=frozenset()):
        self.calls.append(
            {"target": target, "patches": list(patches), "session_id": session_id, "deletions": deletions}
        )
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.shas)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def service(store, clock):
    return ReviewSessionService(store, ttl_ms=60 * 60 * 1000, clock=clock)


def _create(service) -> str:
    return service.create(parse_change_plan(PLAN)).session_id


# ---------------------------------------------------------------------------
# create / get
# ---------------------------------------------------------------------------


class TestCreateAndGet:
    def test_create_persists_pending_session(self, service, store):
        session_id = _create(service)
        stored = deserialize_session(store.get(session_id))
        assert stored.status == SessionStatus.PENDING
        assert stored.expires_at == T0 + timedelta(hours=1)

    def test_get_returns_session(self, service):
        session_id = _create(service)
        assert service.get(session_id).session_id == session_id

    def test_get_missing_raises_not_found(self, service):
        with pytest.raises(SessionNotFoundError):
            service.get(MISSING_ID)

    def test_get_corrupt_record_raises(self, service, store):
        store.put(MISSING_ID, '{"sessionId": "x"}', ttl_seconds=60)
        with pytest.raises(CorruptSessionError):
            service.get(MISSING_ID)

    def test_get_does_not_rewrite_expired_session(self, service, store, clock):
        session_id = _create(service)
        before = store.get(session_id)
        clock.now = T0 + timedelta(minutes=61)
        assert service.get(session_id).status == SessionStatus.PENDING
        assert store.get(session_id) == before

    def test_create_passes_remaining_ttl_to_store(self, clock):
        store = MagicMock()
        service = ReviewSessionService(store, ttl_ms=60 * 60 * 1000, clock=clock)
        service.create(parse_change_plan(PLAN))
        assert store.put.call_args[0][2] == 3600


# ---------------------------------------------------------------------------
# approve
# ---------------------------------------------------------------------------


class TestApprove:
    def test_pending_to_approved(self, service):
        session_id = _create(service)
        outcome = service.approve(session_id)
        assert outcome.previous_status == SessionStatus.PENDING
        assert outcome.new_status == SessionStatus.APPROVED
        assert outcome.idempotent is False
        assert service.get(session_id).status == SessionStatus.APPROVED

    def test_reapprove_is_idempotent(self, service, store):
        session_id = _create(service)
        service.approve(session_id)
        before = store.get(session_id)

        outcome = service.approve(session_id)

        assert outcome.idempotent is True
        assert outcome.previous_status == SessionStatus.APPROVED
        assert store.get(session_id) == before
        assert service.get(session_id).commit_shas == ()

    def test_expired_session_cannot_be_approved(self, service, clock):
        session_id = _create(service)
        clock.now = T0 + timedelta(minutes=61)
        with pytest.raises(SessionExpiredError):
            service.approve(session_id)

    def test_applied_session_cannot_be_approved(self, service):
        session_id = _create(service)
        service.approve(session_id)
        ApplyOrchestrator(service, FakeWriter()).apply(session_id)
        with pytest.raises(SessionAlreadyAppliedError):
            service.approve(session_id)
        assert service.get(session_id).status == SessionStatus.APPLIED

    def test_missing_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.approve(MISSING_ID)

    def test_lost_race_is_retried(self, service, store):
        session_id = _create(service)
        real_cas = store.compare_and_set
        calls = {"n": 0}

        def flaky_cas(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return False
            return real_cas(*args, **kwargs)

        store.compare_and_set = flaky_cas
        outcome = service.approve(session_id)
        assert outcome.new_status == SessionStatus.APPROVED
        assert calls["n"] == 2


# ---------------------------------------------------------------------------
# apply
# ---------------------------------------------------------------------------


class TestApply:
    def test_pending_session_must_be_approved_first(self, service):
        session_id = _create(service)
        writer = FakeWriter()
        with pytest.raises(SessionNotApprovedError) as exc:
            ApplyOrchestrator(service, writer).apply(session_id)
        assert "must be approved first" in exc.value.message
        assert writer.calls == []

    def test_create_approve_apply_then_apply_again(self, service):
        session_id = _create(service)
        service.approve(session_id)
        writer = FakeWriter(shas=["abc123"])
        orchestrator = ApplyOrchestrator(service, writer)

        first = orchestrator.apply(session_id)
        second = orchestrator.apply(session_id)

        assert first.applied is True
        assert first.commit_shas == ("abc123",)
        assert first.idempotent is False
        assert second.applied is True
        assert second.commit_shas == ("abc123",)
        assert second.idempotent is True
        assert len(writer.calls) == 1

    def test_apply_records_status_and_shas(self, service):
        session_id = _create(service)
        service.approve(session_id)
        ApplyOrchestrator(service, FakeWriter(shas=["a1", "b2"])).apply(session_id)
        session = service.get(session_id)
        assert session.status == SessionStatus.APPLIED
        assert session.commit_shas == ("a1", "b2")

    def test_writer_receives_patches_and_session_id(self, service):
        session_id = _create(service)
        service.approve(session_id)
        writer = FakeWriter()
        ApplyOrchestrator(service, writer).apply(session_id)

        call = writer.calls[0]
        assert call["session_id"] == session_id
        assert call["target"].full_name == "example-org/example-site"
        assert [p.file_path for p in call["patches"]] == ["src/pages/index.astro", "src/pages/services/index.astro"]
        assert call["deletions"] == frozenset()

    def test_expired_session_cannot_be_applied(self, service, clock):
        session_id = _create(service)
        service.approve(session_id)
        clock.now = T0 + timedelta(minutes=61)
        writer = FakeWriter()
        with pytest.raises(SessionExpiredError):
            ApplyOrchestrator(service, writer).apply(session_id)
        assert writer.calls == []

    def test_applied_session_stays_applied_after_expiry(self, service, clock):
        session_id = _create(service)
        service.approve(session_id)
        ApplyOrchestrator(service, FakeWriter(shas=["abc123"])).apply(session_id)
        clock.now = T0 + timedelta(minutes=61)

        writer = FakeWriter()
        result = ApplyOrchestrator(service, writer).apply(session_id)
        assert result.commit_shas == ("abc123",)
        assert writer.calls == []

    def test_writer_failure_leaves_session_approved(self, service):
        session_id = _create(service)
        service.approve(session_id)
        failing = FakeWriter(error=WriteBackError("GitHub API error 502", status=502))

        with pytest.raises(WriteBackError) as exc:
            ApplyOrchestrator(service, failing).apply(session_id)
        assert exc.value.retryable is True
        assert service.get(session_id).status == SessionStatus.APPROVED
        assert service.get(session_id).commit_shas == ()

        result = ApplyOrchestrator(service, FakeWriter(shas=["abc123"])).apply(session_id)
        assert result.commit_shas == ("abc123",)

    def test_empty_write_is_an_error(self, service):
        session_id = _create(service)
        service.approve(session_id)
        with pytest.raises(WriteBackError):
            ApplyOrchestrator(service, FakeWriter(shas=[])).apply(session_id)
        assert service.get(session_id).status == SessionStatus.APPROVED

    def test_missing_session(self, service):
        with pytest.raises(SessionNotFoundError):
            ApplyOrchestrator(service, FakeWriter()).apply(MISSING_ID)

    def test_lost_race_to_concurrent_apply_returns_winner(self, service, store):
        session_id = _create(service)
        service.approve(session_id)
        approved = service.get(session_id)
        winner = replace(approved, status=SessionStatus.APPLIED, commit_shas=("winner",))

        class RacingWriter(FakeWriter):
            def write_patches(self, *args, **kwargs):
                shas = super().write_patches(*args, **kwargs)
                # Another process records its apply while we are writing.
                store.put(session_id, serialize_session(winner), ttl_seconds=60)
                return shas

        result = ApplyOrchestrator(service, RacingWriter(shas=["loser"])).apply(session_id)
        assert result.commit_shas == ("winner",)
        assert result.idempotent is True
        assert service.get(session_id).commit_shas == ("winner",)

    def test_record_reclaimed_during_write_is_not_reported_as_missing(self, clock):
        store_time = [0.0]
        store = MemorySessionStore(clock=lambda: store_time[0])
        service = ReviewSessionService(store, ttl_ms=60 * 60 * 1000, clock=clock)
        session_id = _create(service)
        service.approve(session_id)
        clock.now = T0 + timedelta(minutes=59, seconds=59)

        class SlowWriter(FakeWriter):
            def write_patches(self, *args, **kwargs):
                shas = super().write_patches(*args, **kwargs)
                store_time[0] += 2 * 60 * 60  # store TTL hint elapses mid-write
                return shas

        writer = SlowWriter(shas=("sha-written",))
        with pytest.raises(WriteBackError) as exc:
            ApplyOrchestrator(service, writer).apply(session_id)

        assert len(writer.calls) == 1
        assert exc.value.retryable is False
        assert exc.value.details["commitShas"] == ["sha-written"]
        assert exc.value.http_status == 502

    def test_concurrent_applies_write_once(self, service):
        session_id = _create(service)
        service.approve(session_id)
        writer = FakeWriter(shas=["abc123"], delay=0.05)
        results = []

        def run():
            results.append(ApplyOrchestrator(service, writer).apply(session_id))

        threads = [threading.Thread(target=run) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(writer.calls) == 1
        assert {r.commit_shas for r in results} == {("abc123",)}
        assert sum(1 for r in results if not r.idempotent) == 1


class TestMonotonicStatus:
    def test_applied_never_returns_to_active(self, service, clock):
        session_id = _create(service)
        service.approve(session_id)
        ApplyOrchestrator(service, FakeWriter()).apply(session_id)

        with pytest.raises(SessionAlreadyAppliedError):
            service.approve(session_id)
        ApplyOrchestrator(service, FakeWriter()).apply(session_id)
        clock.now = T0 + timedelta(days=1)
        with pytest.raises(SessionAlreadyAppliedError):
            service.approve(session_id)

        assert service.get(session_id).status == SessionStatus.APPLIED

    def test_expired_never_becomes_active(self, service, clock):
        session_id = _create(service)
        clock.now = T0 + timedelta(hours=1)
        with pytest.raises(SessionExpiredError):
            service.approve(session_id)
        with pytest.raises(SessionExpiredError):
            ApplyOrchestrator(service, FakeWriter()).apply(session_id)
        assert service.get(session_id).status == SessionStatus.PENDING


class TestSessionLocks:
    def test_lock_entries_are_released(self):
        locks = SessionLocks()
        with locks.hold("a"):
            assert "a" in locks._locks
        assert locks._locks == {}

    def test_released_on_exception(self):
        locks = SessionLocks()
        with pytest.raises(RuntimeError):
            with locks.hold("a"):
                raise RuntimeError("boom")
        assert locks._locks == {}

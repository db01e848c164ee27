"""Lifecycle decisions: may this session be approved or applied right now?

Both functions are pure. They return a decision value instead of raising, so
callers can tell an idempotent repeat (report success) from a refusal
(report the error code) without exception handling.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from patchgate_core.errors import ErrorCode
from patchgate_core.ttl import is_session_expired
from patchgate_store.models import ReviewSession, SessionStatus

REASON_ALREADY_APPLIED = "Session has already been applied"
REASON_EXPIRED = "Session has expired"
REASON_NOT_APPROVED = "Session must be approved first"


@dataclass(frozen=True)
class ApproveDecision:
    can_approve: bool
    reason: str | None = None
    is_idempotent: bool = False
    error_code: ErrorCode | None = None


@dataclass(frozen=True)
class ApplyDecision:
    can_apply: bool
    reason: str | None = None
    is_idempotent: bool = False
    error_code: ErrorCode | None = None


def can_approve_session(session: ReviewSession, now: datetime | None = None) -> ApproveDecision:
    if session.status == SessionStatus.APPLIED:
        return ApproveDecision(False, REASON_ALREADY_APPLIED, error_code=ErrorCode.SESSION_ALREADY_APPLIED)
    if session.status == SessionStatus.EXPIRED or is_session_expired(session, now):
        return ApproveDecision(False, REASON_EXPIRED, error_code=ErrorCode.SESSION_EXPIRED)
    if session.status == SessionStatus.APPROVED:
        return ApproveDecision(True, is_idempotent=True)
    return ApproveDecision(True)


def can_apply_session(session: ReviewSession, now: datetime | None = None) -> ApplyDecision:
    # Applied wins over expiry: a finished apply is reported as success forever.
    if session.status == SessionStatus.APPLIED:
        return ApplyDecision(False, REASON_ALREADY_APPLIED, is_idempotent=True)
    if session.status == SessionStatus.EXPIRED or is_session_expired(session, now):
        return ApplyDecision(False, REASON_EXPIRED, error_code=ErrorCode.SESSION_EXPIRED)
    if session.status != SessionStatus.APPROVED:
        return ApplyDecision(False, REASON_NOT_APPROVED, error_code=ErrorCode.SESSION_NOT_APPROVED)
    return ApplyDecision(True)

"""Review session construction. Pure: no store or network access."""

from __future__ import annotations

import re
import uuid
from datetime import datetime

from patchgate_core.plan import ChangePlan
from patchgate_core.ttl import DEFAULT_TTL_MS, calculate_expires_at, hours_to_ttl_ms, utc_now
from patchgate_store.models import PlannedAction, ReviewSession, SessionStatus

_UUID_V4_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)


def generate_session_id() -> str:
    return str(uuid.uuid4())


def is_valid_session_id(value: str) -> bool:
    return bool(_UUID_V4_RE.match(value or ""))


def create_review_session(
    plan: ChangePlan,
    *,
    ttl_ms: int = DEFAULT_TTL_MS,
    now: datetime | None = None,
) -> ReviewSession:
    """Build a new pending session from a validated change plan.

    A ``ttlHours`` carried by the plan itself wins over ``ttl_ms``.
    Persisting the result is the caller's job.
    """
    if plan.ttl_hours is not None:
        ttl_ms = hours_to_ttl_ms(plan.ttl_hours)
    created_at = now or utc_now()
    return ReviewSession(
        session_id=generate_session_id(),
        status=SessionStatus.PENDING,
        site_url=plan.site_url,
        selected_targets=plan.selected_targets,
        target_repo=plan.target_repo,
        planned_files=plan.planned_files,
        diff_previews=plan.diff_previews,
        patches=plan.patches,
        created_at=created_at,
        expires_at=calculate_expires_at(created_at, ttl_ms),
        commit_shas=(),
    )


def summarize_plan(session: ReviewSession) -> dict:
    """Counts shown to the caller right after a session is created."""
    actions = [f.action for f in session.planned_files]
    return {
        "totalFiles": len(actions),
        "creates": actions.count(PlannedAction.CREATE),
        "updates": actions.count(PlannedAction.UPDATE),
        "deletes": actions.count(PlannedAction.DELETE),
        "humanReviewRequired": sum(1 for f in session.planned_files if f.human_review_required),
        "patches": len(session.patches),
    }

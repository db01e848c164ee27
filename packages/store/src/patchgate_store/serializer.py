"""JSON wire format for review sessions.

The same camelCase shape is persisted in the store and returned by the HTTP
API, so there is exactly one mapping between ReviewSession and JSON.

deserialize_session() never raises: anything that is not a complete, well
typed session record comes back as None and the caller decides whether that
means "corrupt" or "absent".
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from patchgate_store.models import (
    DiffPreview,
    FilePatch,
    PlannedAction,
    PlannedFile,
    ReviewSession,
    SessionStatus,
    TargetRepo,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "sessionId",
    "status",
    "siteUrl",
    "createdAt",
    "expiresAt",
    "targetRepo",
    "plannedFiles",
    "diffPreviews",
    "patches",
)


class _InvalidRecord(Exception):
    """Raised internally while decoding; converted to None at the boundary."""


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise _InvalidRecord("timestamp must be a string")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise _InvalidRecord(str(e)) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def target_repo_to_dict(target: TargetRepo) -> dict:
    return {
        "owner": target.owner,
        "repo": target.repo,
        "branch": target.branch,
        "projectType": target.project_type,
        "routeStrategy": target.route_strategy,
    }


def planned_file_to_dict(f: PlannedFile) -> dict:
    return {
        "url": f.url,
        "filePath": f.file_path,
        "action": f.action.value,
        "humanReviewRequired": f.human_review_required,
        "reviewNotes": list(f.review_notes),
    }


def diff_preview_to_dict(d: DiffPreview) -> dict:
    return {"filePath": d.file_path, "action": d.action.value, "diff": d.diff, "truncated": d.truncated}


def patch_to_dict(p: FilePatch) -> dict:
    return {
        "url": p.url,
        "filePath": p.file_path,
        "newContent": p.new_content,
        "originalContent": p.original_content,
    }


def session_to_dict(session: ReviewSession) -> dict:
    return {
        "sessionId": session.session_id,
        "status": session.status.value,
        "siteUrl": session.site_url,
        "selectedTargets": list(session.selected_targets),
        "targetRepo": target_repo_to_dict(session.target_repo),
        "plannedFiles": [planned_file_to_dict(f) for f in session.planned_files],
        "diffPreviews": [diff_preview_to_dict(d) for d in session.diff_previews],
        "patches": [patch_to_dict(p) for p in session.patches],
        "createdAt": format_timestamp(session.created_at),
        "expiresAt": format_timestamp(session.expires_at),
        "commitShas": list(session.commit_shas),
    }


def _str(d: dict, key: str, default: str | None = None) -> str:
    value = d.get(key, default)
    if not isinstance(value, str):
        raise _InvalidRecord(f"{key} must be a string")
    return value


def _bool(d: dict, key: str) -> bool:
    value = d.get(key, False)
    if not isinstance(value, bool):
        raise _InvalidRecord(f"{key} must be a boolean")
    return value


def _list(d: dict, key: str, default: list | None = None) -> list:
    value = d.get(key, default)
    if not isinstance(value, list):
        raise _InvalidRecord(f"{key} must be a list")
    return value


def _obj(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise _InvalidRecord(f"{what} must be an object")
    return value


def _enum(enum_cls, value: Any):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise _InvalidRecord(str(e)) from e


def _str_tuple(values: list, what: str) -> tuple[str, ...]:
    if not all(isinstance(v, str) for v in values):
        raise _InvalidRecord(f"{what} must contain strings")
    return tuple(values)


def _target_repo_from_dict(d: dict) -> TargetRepo:
    return TargetRepo(
        owner=_str(d, "owner"),
        repo=_str(d, "repo"),
        branch=_str(d, "branch"),
        project_type=_str(d, "projectType", "astro-pages"),
        route_strategy=_str(d, "routeStrategy", "path-index"),
    )


def _planned_file_from_dict(d: dict) -> PlannedFile:
    return PlannedFile(
        url=_str(d, "url"),
        file_path=_str(d, "filePath"),
        action=_enum(PlannedAction, d.get("action")),
        human_review_required=_bool(d, "humanReviewRequired"),
        review_notes=_str_tuple(_list(d, "reviewNotes", []), "reviewNotes"),
    )


def _diff_preview_from_dict(d: dict) -> DiffPreview:
    return DiffPreview(
        file_path=_str(d, "filePath"),
        action=_enum(PlannedAction, d.get("action")),
        diff=_str(d, "diff"),
        truncated=_bool(d, "truncated"),
    )


def _patch_from_dict(d: dict) -> FilePatch:
    original = d.get("originalContent")
    if original is not None and not isinstance(original, str):
        raise _InvalidRecord("originalContent must be a string or null")
    return FilePatch(
        url=_str(d, "url"),
        file_path=_str(d, "filePath"),
        new_content=_str(d, "newContent"),
        original_content=original,
    )


def session_from_dict(d: dict) -> ReviewSession:
    """Build a ReviewSession from its wire dict.

    Raises ValueError on missing or malformed fields. Use
    deserialize_session() where a None result is wanted instead.
    """
    try:
        return _session_from_dict(d)
    except _InvalidRecord as e:
        raise ValueError(f"Invalid review session record: {e}") from e


def _session_from_dict(d: Any) -> ReviewSession:
    d = _obj(d, "session")
    missing = [k for k in REQUIRED_FIELDS if k not in d]
    if missing:
        raise _InvalidRecord(f"missing fields: {', '.join(missing)}")

    return ReviewSession(
        session_id=_str(d, "sessionId"),
        status=_enum(SessionStatus, d.get("status")),
        site_url=_str(d, "siteUrl"),
        selected_targets=_str_tuple(_list(d, "selectedTargets", []), "selectedTargets"),
        target_repo=_target_repo_from_dict(_obj(d["targetRepo"], "targetRepo")),
        planned_files=tuple(_planned_file_from_dict(_obj(f, "plannedFiles[]")) for f in _list(d, "plannedFiles")),
        diff_previews=tuple(_diff_preview_from_dict(_obj(p, "diffPreviews[]")) for p in _list(d, "diffPreviews")),
        patches=tuple(_patch_from_dict(_obj(p, "patches[]")) for p in _list(d, "patches")),
        created_at=parse_timestamp(d["createdAt"]),
        expires_at=parse_timestamp(d["expiresAt"]),
        commit_shas=_str_tuple(_list(d, "commitShas", []), "commitShas"),
    )


def serialize_session(session: ReviewSession) -> str:
    return json.dumps(session_to_dict(session), indent=2)


def deserialize_session(text: str) -> ReviewSession | None:
    """Decode a persisted session, or return None if it is not a valid record."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    try:
        return _session_from_dict(data)
    except _InvalidRecord as e:
        logger.debug("Rejected session record: %s", e)
        return None

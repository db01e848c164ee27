"""Review session data models.

Decoupled from patchgate_core so the store layer can be used independently:
the store only needs to know what a session looks like, not how its
lifecycle is decided.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SessionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    APPLIED = "applied"
    EXPIRED = "expired"


class PlannedAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


PROJECT_TYPES = ("astro-pages", "static-html")
ROUTE_STRATEGIES = ("path-index", "flat-html")


@dataclass(frozen=True)
class TargetRepo:
    """The external repository a session writes back to."""

    owner: str
    repo: str
    branch: str
    project_type: str = "astro-pages"  # "astro-pages" | "static-html"
    route_strategy: str = "path-index"  # "path-index" | "flat-html"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class PlannedFile:
    url: str
    file_path: str
    action: PlannedAction
    human_review_required: bool = False
    review_notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class DiffPreview:
    """Precomputed diff shown to the reviewer. Informational only."""

    file_path: str
    action: PlannedAction
    diff: str
    truncated: bool = False


@dataclass(frozen=True)
class FilePatch:
    """The content actually written to the target repository."""

    url: str
    file_path: str
    new_content: str
    original_content: str | None = None


@dataclass(frozen=True)
class ReviewSession:
    """A proposed set of file patches awaiting human approval.

    Created by the session factory with status ``pending``. Only ``status``
    and ``commit_shas`` ever change, and only by building a new record with
    dataclasses.replace() inside approve/apply.
    """

    session_id: str
    status: SessionStatus
    site_url: str
    target_repo: TargetRepo
    created_at: datetime  # timezone-aware UTC
    expires_at: datetime  # created_at + TTL, never extended
    selected_targets: tuple[str, ...] = ()
    planned_files: tuple[PlannedFile, ...] = ()
    diff_previews: tuple[DiffPreview, ...] = ()
    patches: tuple[FilePatch, ...] = ()
    commit_shas: tuple[str, ...] = field(default_factory=tuple)

    def deleted_paths(self) -> frozenset[str]:
        """File paths the plan removes rather than writes."""
        return frozenset(f.file_path for f in self.planned_files if f.action == PlannedAction.DELETE)

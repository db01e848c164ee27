"""Change-plan validation.

A change plan is the opaque output of the upstream planner: which files to
touch, what the reviewer should see, and what to write. Callers send it as
camelCase JSON; parse_change_plan() checks it and converts it to the store's
dataclasses, collecting every problem into one PlanValidationError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from patchgate_core.errors import PlanValidationError
from patchgate_core.ttl import hours_to_ttl_ms
from patchgate_store.models import DiffPreview, FilePatch, PlannedAction, PlannedFile, TargetRepo


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _TargetRepoIn(_CamelModel):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    branch: str = Field(min_length=1)
    project_type: Literal["astro-pages", "static-html"] = "astro-pages"
    route_strategy: Literal["path-index", "flat-html"] = "path-index"


class _PlannedFileIn(_CamelModel):
    url: str
    file_path: str = Field(min_length=1)
    action: PlannedAction
    human_review_required: bool = False
    review_notes: list[str] = Field(default_factory=list)


class _DiffPreviewIn(_CamelModel):
    file_path: str = Field(min_length=1)
    action: PlannedAction
    diff: str
    truncated: bool = False


class _PatchIn(_CamelModel):
    url: str
    file_path: str = Field(min_length=1)
    new_content: str
    original_content: Optional[str] = None


class _ChangePlanIn(_CamelModel):
    site_url: str = Field(min_length=1)
    selected_targets: list[str] = Field(default_factory=list)
    target_repo: _TargetRepoIn
    planned_files: list[_PlannedFileIn]
    diff_previews: list[_DiffPreviewIn] = Field(default_factory=list)
    patches: list[_PatchIn] = Field(min_length=1)
    ttl_hours: Optional[float] = None

    @field_validator("ttl_hours")
    @classmethod
    def _bounded_ttl(cls, v):
        if v is not None:
            hours_to_ttl_ms(v)
        return v


@dataclass(frozen=True)
class ChangePlan:
    """A validated change plan, ready for the session factory."""

    site_url: str
    selected_targets: tuple[str, ...]
    target_repo: TargetRepo
    planned_files: tuple[PlannedFile, ...]
    diff_previews: tuple[DiffPreview, ...]
    patches: tuple[FilePatch, ...]
    ttl_hours: float | None = None


def _format_pydantic_errors(exc: ValidationError) -> list[str]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "body"
        errors.append(f"{loc}: {err['msg']}")
    return errors


def parse_change_plan(data: object) -> ChangePlan:
    """Validate a raw change plan. Raises PlanValidationError listing every problem."""
    if not isinstance(data, dict):
        raise PlanValidationError(["body: change plan must be a JSON object"])
    try:
        parsed = _ChangePlanIn.model_validate(data)
    except ValidationError as e:
        raise PlanValidationError(_format_pydantic_errors(e)) from e

    errors: list[str] = []
    planned_paths = {f.file_path for f in parsed.planned_files}
    seen: set[str] = set()
    for i, p in enumerate(parsed.patches):
        if p.file_path not in planned_paths:
            errors.append(f"patches.{i}.filePath: {p.file_path!r} is not in plannedFiles")
        if p.file_path in seen:
            errors.append(f"patches.{i}.filePath: duplicate patch for {p.file_path!r}")
        seen.add(p.file_path)
    if errors:
        raise PlanValidationError(errors)

    t = parsed.target_repo
    return ChangePlan(
        site_url=parsed.site_url,
        selected_targets=tuple(parsed.selected_targets),
        target_repo=TargetRepo(
            owner=t.owner,
            repo=t.repo,
            branch=t.branch,
            project_type=t.project_type,
            route_strategy=t.route_strategy,
        ),
        planned_files=tuple(
            PlannedFile(
                url=f.url,
                file_path=f.file_path,
                action=f.action,
                human_review_required=f.human_review_required,
                review_notes=tuple(f.review_notes),
            )
            for f in parsed.planned_files
        ),
        diff_previews=tuple(
            DiffPreview(file_path=d.file_path, action=d.action, diff=d.diff, truncated=d.truncated)
            for d in parsed.diff_previews
        ),
        patches=tuple(
            FilePatch(
                url=p.url,
                file_path=p.file_path,
                new_content=p.new_content,
                original_content=p.original_content,
            )
            for p in parsed.patches
        ),
        ttl_hours=parsed.ttl_hours,
    )

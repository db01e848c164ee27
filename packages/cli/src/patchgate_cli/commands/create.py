"""create command — open a review session from a change plan file."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console

from patchgate_cli.errors import reported_errors
from patchgate_core.factory import summarize_plan
from patchgate_core.plan import parse_change_plan

console = Console()


@click.command("create")
@click.option(
    "--plan",
    "plan_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON change plan produced by the planner.",
)
@click.option("--ttl-hours", type=float, default=None, help="Session lifetime. Overrides config and plan.")
@click.pass_context
def create_cmd(ctx, plan_path: str, ttl_hours: float | None):
    """Validate a change plan and store it as a pending review session.

    The plan's patches are not written anywhere until the session is
    approved and applied.
    """
    try:
        data = json.loads(Path(plan_path).read_text())
    except json.JSONDecodeError as e:
        raise click.UsageError(f"{plan_path} is not valid JSON: {e}") from e

    if ttl_hours is not None and isinstance(data, dict):
        data["ttlHours"] = ttl_hours

    service = ctx.obj["service"]
    with reported_errors():
        session = service.create(parse_change_plan(data))

    summary = summarize_plan(session)
    console.print(f"[green]Created review session[/green] [bold]{session.session_id}[/bold]")
    console.print(f"  Target:   {session.target_repo.full_name}@{session.target_repo.branch}")
    console.print(f"  Expires:  {session.expires_at.isoformat()}")
    console.print(
        f"  Files:    {summary['totalFiles']} "
        f"({summary['creates']} create, {summary['updates']} update, {summary['deletes']} delete)"
    )
    if summary["humanReviewRequired"]:
        console.print(f"  [yellow]{summary['humanReviewRequired']} file(s) flagged for human review[/yellow]")
    console.print(f"\nReview with: [bold]patchgate show {session.session_id} --diff[/bold]")

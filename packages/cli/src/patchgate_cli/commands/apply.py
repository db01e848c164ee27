"""apply command — write an approved session's patches to GitHub."""

from __future__ import annotations

import click
from rich.console import Console

from patchgate_cli.errors import reported_errors
from patchgate_core.gh.writer import GitHubWriter
from patchgate_core.lifecycle import ApplyOrchestrator

console = Console()


@click.command("apply")
@click.argument("session_id")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def apply_cmd(ctx, session_id: str, yes: bool):
    """Commit an approved session's patches to its target repository.

    Safe to repeat: a session that is already applied reports its recorded
    commits without writing again.

    \b
    Required environment variables:
      PATCHGATE_GITHUB_TOKEN or GITHUB_TOKEN   token with push access (or use gh CLI)
    """
    from patchgate_cli.auth import resolve_github_token

    token = resolve_github_token()
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set PATCHGATE_GITHUB_TOKEN or GITHUB_TOKEN, or run `gh auth login` first."
        )

    config = ctx.obj["config"]
    service = ctx.obj["service"]

    with reported_errors():
        session = service.get(session_id)
    if not yes:
        target = session.target_repo
        click.confirm(
            f"Write {len(session.patches)} file(s) to {target.full_name}@{target.branch}?",
            abort=True,
        )

    writer = GitHubWriter(
        token,
        timeout=int(config["github_timeout"]),
        message_prefix=config["commit_message_prefix"],
        scan_depth=int(config["commit_scan_depth"]),
    )
    with reported_errors():
        result = ApplyOrchestrator(service, writer).apply(session_id)

    if result.idempotent:
        console.print(f"[dim]Session {session_id} was already applied.[/dim]")
    else:
        console.print(f"[green]Applied[/green] {session_id}")
    for sha in result.commit_shas:
        console.print(f"  {sha}")

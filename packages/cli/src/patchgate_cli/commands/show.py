"""show command — display a review session."""

from __future__ import annotations

import click
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from patchgate_cli.errors import reported_errors
from patchgate_core.ttl import effective_status

console = Console()

_STATUS_STYLE = {
    "pending": "yellow",
    "approved": "cyan",
    "applied": "green",
    "expired": "red",
}


@click.command("show")
@click.argument("session_id")
@click.option("--diff", "show_diff", is_flag=True, help="Print the diff previews too.")
@click.pass_context
def show_cmd(ctx, session_id: str, show_diff: bool):
    """Show a review session's status, planned files and diffs."""
    service = ctx.obj["service"]
    with reported_errors():
        session = service.get(session_id)

    status = effective_status(session, service.clock()).value
    style = _STATUS_STYLE.get(status, "white")
    console.print(f"\n[bold]Session {session.session_id}[/bold]  [{style}]{status}[/{style}]")
    console.print(f"  Site:     {session.site_url}")
    console.print(f"  Target:   {session.target_repo.full_name}@{session.target_repo.branch}")
    console.print(f"  Created:  {session.created_at.isoformat()}")
    console.print(f"  Expires:  {session.expires_at.isoformat()}")
    if session.commit_shas:
        console.print(f"  Commits:  {', '.join(sha[:7] for sha in session.commit_shas)}")

    table = Table(title="Planned files", show_header=True, header_style="bold cyan")
    table.add_column("File")
    table.add_column("Action", width=8)
    table.add_column("URL", max_width=40)
    table.add_column("Review notes", max_width=50)
    for f in session.planned_files:
        notes = "; ".join(f.review_notes)
        if f.human_review_required:
            notes = f"[yellow]review required[/yellow] {notes}".rstrip()
        table.add_row(f.file_path, f.action.value, f.url, notes)
    console.print(table)

    if show_diff:
        for preview in session.diff_previews:
            suffix = " [dim](truncated)[/dim]" if preview.truncated else ""
            console.print(f"\n[bold]{preview.file_path}[/bold] ({preview.action.value}){suffix}")
            console.print(Syntax(preview.diff, "diff", word_wrap=True))

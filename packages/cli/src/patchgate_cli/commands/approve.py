"""approve command — mark a pending session as approved."""

from __future__ import annotations

import click
from rich.console import Console

from patchgate_cli.errors import reported_errors

console = Console()


@click.command("approve")
@click.argument("session_id")
@click.pass_context
def approve_cmd(ctx, session_id: str):
    """Approve a review session so it can be applied.

    Approving an already-approved session is a no-op and succeeds.
    """
    with reported_errors():
        outcome = ctx.obj["service"].approve(session_id)

    if outcome.idempotent:
        console.print(f"[dim]Session {session_id} was already approved.[/dim]")
    else:
        console.print(
            f"[green]Approved[/green] {session_id} "
            f"({outcome.previous_status.value} → {outcome.new_status.value})"
        )

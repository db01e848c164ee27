"""serve command — run the review session HTTP API."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("serve")
@click.option("--host", default=None, help="Bind address. Overrides config (default 127.0.0.1).")
@click.option("--port", type=int, default=None, help="Port. Overrides config (default 8787).")
@click.pass_context
def serve_cmd(ctx, host: str | None, port: int | None):
    """Serve POST /review/create, GET /review/{id}, and the approve/apply routes."""
    import uvicorn

    from patchgate_api.app import create_app

    config = ctx.obj["config"]
    host = host or config["host"]
    port = port or int(config["port"])

    app = create_app(ctx.obj["service"], config=config)
    console.print(f"[bold cyan]patchgate[/bold cyan] API on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port)

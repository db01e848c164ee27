"""CLI entry point for patchgate.

Commands:
  create   — validate a change plan file and open a review session
  show     — display a session's status, planned files and diffs
  approve  — approve a pending session
  apply    — write an approved session's patches to the target repository
  serve    — run the HTTP API
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from patchgate_cli.commands.apply import apply_cmd
from patchgate_cli.commands.approve import approve_cmd
from patchgate_cli.commands.create import create_cmd
from patchgate_cli.commands.serve import serve_cmd
from patchgate_cli.commands.show import show_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured session store from .patchgate.yml settings.

    Store selection:
      store: sqlite → SQLiteSessionStore (store_path, default .patchgate.db)
      store: memory → MemorySessionStore (process lifetime only; for `serve` demos)

    This factory lives in cli.py so neither patchgate_core nor patchgate_store
    know about the CLI config format.
    """
    store_type = config.get("store", "sqlite")

    if store_type == "memory":
        from patchgate_store.memory import MemorySessionStore

        return MemorySessionStore()

    if store_type != "sqlite":
        console.print(f"[yellow]Unknown store {store_type!r}. Falling back to sqlite.[/yellow]")

    from patchgate_store.sqlite import SQLiteSessionStore

    return SQLiteSessionStore(db_path=config.get("store_path", ".patchgate.db"))


def _version() -> str:
    try:
        return importlib.metadata.version("patchgate")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0"


@click.group()
@click.version_option(version=_version(), prog_name="patchgate")
@click.option(
    "--config",
    "config_path",
    default=".patchgate.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PATCHGATE_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Human-approved write-back of generated site changes."""
    from patchgate_core.config import load_config, ttl_ms_from_config
    from patchgate_core.lifecycle import ReviewSessionService

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )

    ctx.ensure_object(dict)

    config = load_config(config_path)
    try:
        ttl_ms = ttl_ms_from_config(config)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    store = _build_store(config)
    ctx.obj["config"] = config
    ctx.obj["store"] = store
    ctx.obj["service"] = ReviewSessionService(store, ttl_ms=ttl_ms)
    ctx.call_on_close(store.close)


main.add_command(create_cmd)
main.add_command(show_cmd)
main.add_command(approve_cmd)
main.add_command(apply_cmd)
main.add_command(serve_cmd)

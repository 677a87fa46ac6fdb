"""Config access for CLI commands (honours the global --config option)."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from lspharness.config.access import get_config
from lspharness.config.schema import Config


def load_cli_config(ctx: typer.Context, console: Console) -> Config:
    """Load the config selected on the command line, exiting with code 2 on a bad file."""
    obj = ctx.find_root().obj or {}
    config_path: Path | None = obj.get("config_path")
    try:
        return get_config(config_path=config_path)
    except ValueError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(2) from exc

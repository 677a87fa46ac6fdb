"""CLI commands for lspharness.

The CLI is the single entry point: it configures logging and registers the
command groups (parallel, probe, settle).
"""

from pathlib import Path

import typer
from rich.console import Console

from lspharness import __version__, __logo__
from lspharness.cli.command_groups.parallel_command import register_parallel_command
from lspharness.cli.command_groups.peer_commands import register_peer_commands
from lspharness.cli.shared.logging_utils import configure_console_logging, ensure_rotating_log_file

app = typer.Typer(
    name="lspharness",
    help=f"{__logo__} lspharness - stdio JSON-RPC harness and parallel runner",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} lspharness v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logs on stderr"),
    logs: bool = typer.Option(False, "--logs", help="Also write logs to ~/.lspharness/logs"),
    config: Path = typer.Option(None, "--config", help="Config file (default: ~/.lspharness/config.json)"),
):
    """lspharness - drive stdio language servers and run test files in parallel."""
    configure_console_logging(verbose)
    if logs:
        ensure_rotating_log_file(ctx.invoked_subcommand or "lspharness", level="DEBUG" if verbose else "INFO")
    ctx.obj = {"config_path": config}


register_parallel_command(app, console)
register_peer_commands(app, console)


if __name__ == "__main__":
    app()

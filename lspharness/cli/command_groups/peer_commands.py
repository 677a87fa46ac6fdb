"""Commands that drive a language server over stdio: probe, settle and format."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lspharness.cli.services.peer_service import PeerService
from lspharness.cli.shared.config_utils import load_cli_config
from lspharness.utils.exceptions import HarnessError


def _service(ctx: typer.Context, console: Console, echo_stderr: bool) -> PeerService:
    config = load_cli_config(ctx, console)
    echo = echo_stderr or config.server.echo_stderr
    observer = (lambda line: console.print(line, style="dim", markup=False, highlight=False)) if echo else None
    return PeerService(config, stderr_observer=observer)


def register_peer_commands(app: typer.Typer, console: Console) -> None:
    """Register probe, settle and format commands."""

    @app.command("probe")
    def probe(
        ctx: typer.Context,
        server: str = typer.Option(None, "--server", "-s", help="Server command line (default: server.command)"),
        echo_stderr: bool = typer.Option(False, "--echo-stderr", help="Print server stderr as it arrives"),
    ) -> None:
        """Initialize the server, print its capabilities, and shut it down."""
        service = _service(ctx, console, echo_stderr)
        try:
            report = asyncio.run(service.probe(server))
        except (HarnessError, OSError) as exc:
            console.print(f"[red]Could not start server: {escape(str(exc))}[/red]")
            raise typer.Exit(1) from exc
        if not report.ok:
            console.print(f"[red]Probe failed:[/red] {escape(report.error or '')}", highlight=False)
            last = report.peer.get("lastStderrLine")
            if last:
                console.print(f"[dim]last stderr: {escape(last)}[/dim]", highlight=False)
            raise typer.Exit(1)
        name = (report.server_info or {}).get("name", "(unnamed)")
        version = (report.server_info or {}).get("version", "")
        console.print(f"[green]✓[/green] {name} {version} initialized in {report.initialize_ms:.1f}ms")
        table = Table(title="Capabilities")
        table.add_column("Capability", style="cyan")
        for capability in report.capabilities:
            table.add_row(capability)
        console.print(table)

    @app.command("settle")
    def settle(
        ctx: typer.Context,
        file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Document to open"),
        edits: list[Path] = typer.Option(
            None, "--edit", "-e", exists=True, dir_okay=False, help="File whose text replaces the document (repeatable)"
        ),
        server: str = typer.Option(None, "--server", "-s", help="Server command line (default: server.command)"),
        language_id: str = typer.Option("plaintext", "--language-id", "-l", help="languageId sent with didOpen"),
        memory: bool = typer.Option(False, "--memory", "-m", help="Track the server's peak RSS"),
        echo_stderr: bool = typer.Option(False, "--echo-stderr", help="Print server stderr as it arrives"),
    ) -> None:
        """Measure how long diagnostics take to settle after open and after each edit."""
        service = _service(ctx, console, echo_stderr)
        edit_texts = [(path.name, path.read_text(encoding="utf-8")) for path in edits or []]
        try:
            run = asyncio.run(
                service.settle_edits(file, edit_texts, server=server, language_id=language_id, track_memory=memory)
            )
        except (HarnessError, OSError) as exc:
            console.print(f"[red]Could not start server: {escape(str(exc))}[/red]")
            raise typer.Exit(1) from exc

        table = Table(title="Edit-cycle results")
        table.add_column("Label", style="cyan")
        table.add_column("First event")
        table.add_column("Settled")
        table.add_column("Events")
        table.add_column("Diagnostics")
        table.add_column("By")
        for summary in run.summaries:
            first = "none" if summary.first_event_ms is None else f"{summary.first_event_ms}ms"
            table.add_row(
                summary.label,
                first,
                f"{summary.settle_ms}ms",
                str(summary.event_count),
                str(summary.last_payload if summary.last_payload is not None else "-"),
                summary.reason,
            )
        console.print(table)
        if run.peak_memory is not None:
            peak = run.peak_memory
            console.print(
                f"peak_rss_kb={peak.rss_kb} at_ms={peak.at_ms:.0f} context={peak.context!r}", highlight=False
            )
        if run.error:
            console.print(f"[red]Aborted:[/red] {escape(run.error)}", highlight=False)
            raise typer.Exit(1)

    @app.command("format")
    def format_file(
        ctx: typer.Context,
        file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Document to format"),
        server: str = typer.Option(None, "--server", "-s", help="Server command line (default: server.command)"),
        language_id: str = typer.Option("plaintext", "--language-id", "-l", help="languageId sent with didOpen"),
        tab_size: int = typer.Option(2, "--tab-size", min=1, help="tabSize formatting option"),
        use_tabs: bool = typer.Option(False, "--tabs", help="Ask for tabs instead of spaces"),
        write: bool = typer.Option(False, "--write", "-w", help="Write the result back instead of printing it"),
        echo_stderr: bool = typer.Option(False, "--echo-stderr", help="Print server stderr as it arrives"),
    ) -> None:
        """Round-trip a document through textDocument/formatting."""
        service = _service(ctx, console, echo_stderr)
        try:
            report = asyncio.run(
                service.format_document(
                    file, server=server, language_id=language_id, tab_size=tab_size, insert_spaces=not use_tabs
                )
            )
        except (HarnessError, OSError) as exc:
            console.print(f"[red]Could not start server: {escape(str(exc))}[/red]")
            raise typer.Exit(1) from exc
        if not report.ok or report.text is None:
            console.print(f"[red]Formatting failed:[/red] {escape(report.error or '')}", highlight=False)
            raise typer.Exit(1)
        if write:
            file.write_text(report.text, encoding="utf-8")
            console.print(f"[green]✓[/green] Applied {len(report.edits)} edit(s) to {escape(str(file))}", highlight=False)
        else:
            console.print(f"[dim]{len(report.edits)} edit(s)[/dim]", highlight=False)
            console.print(report.text, markup=False, highlight=False, soft_wrap=True, end="")

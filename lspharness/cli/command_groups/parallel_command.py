"""`parallel` command: run test files concurrently and summarize outcomes."""

from __future__ import annotations

import asyncio
import time

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lspharness.cli.services.parallel_service import ParallelService
from lspharness.cli.shared.config_utils import load_cli_config
from lspharness.runner.pool import UnitStatus, WorkResult, summarize

_PREFIX = {
    UnitStatus.PASSED: "[green]\\[PASS][/green]",
    UnitStatus.FAILED: "[red]\\[FAIL][/red]",
    UnitStatus.CRASHED: "[bold red]\\[CRASH][/bold red]",
}


def _print_failures(console: Console, results: list[WorkResult]) -> None:
    failed = [r for r in results if r.status is not UnitStatus.PASSED]
    if not failed:
        return
    console.print("\n[bold]=== Failure Output ===[/bold]")
    for r in failed:
        exit_text = "none" if r.exit_code is None else str(r.exit_code)
        console.print(f"\n--- {r.unit.key} ({r.status.value}, exit {exit_text}) ---", markup=False)
        if r.error is not None and r.status is UnitStatus.CRASHED:
            console.print(r.error.message, markup=False)
        console.print(r.output.rstrip(), markup=False)


def register_parallel_command(app: typer.Typer, console: Console) -> None:
    """Register the parallel runner command."""

    @app.command("parallel")
    def parallel(
        ctx: typer.Context,
        paths: list[str] = typer.Argument(None, help="Files or directories to search (default: pool.paths)"),
        jobs: int = typer.Option(None, "--jobs", "-j", help="Max concurrent processes (default: pool.jobs)"),
        name_filter: str = typer.Option(None, "--filter", "-f", help="Only run files whose path contains this"),
        command: str = typer.Option(None, "--command", "-c", help="Runner command; the file path is appended"),
        timeout: float = typer.Option(None, "--timeout", help="Per-file timeout in seconds (counts as crash)"),
    ) -> None:
        """Run every discovered test file in its own process, N at a time."""
        config = load_cli_config(ctx, console)
        service = ParallelService(config.pool)
        units = service.collect(paths, name_filter=name_filter, command=command, timeout=timeout)
        if not units:
            console.print("No test files found.")
            raise typer.Exit(1)

        effective_jobs = max(1, jobs if jobs is not None else config.pool.jobs)
        console.print(f"Running {len(units)} test file(s) with {effective_jobs} parallel job(s)...")

        def on_result(result: WorkResult) -> None:
            console.print(f"{_PREFIX[result.status]} {escape(result.unit.key)} ({result.duration_ms / 1000:.2f}s)", highlight=False)

        started = time.monotonic()
        results = asyncio.run(service.run(units, jobs=effective_jobs, on_result=on_result))
        elapsed = time.monotonic() - started

        _print_failures(console, results)
        summary = summarize(results)
        table = Table(title="Results")
        table.add_column("Passed", style="green")
        table.add_column("Failed", style="red")
        table.add_column("Crashed", style="bold red")
        table.add_column("Elapsed")
        table.add_row(str(summary.passed), str(summary.failed), str(summary.crashed), f"{elapsed:.2f}s")
        console.print(table)
        if not summary.ok:
            raise typer.Exit(1)

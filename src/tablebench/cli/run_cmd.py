# Copyright (c) Syntropy Systems
"""tablebench run command."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, cast

import typer
from rich.console import Console

from tablebench.backends import get_backend
from tablebench.config import find_bench_dir, get_results_db_path, load_config, resolve_config_path
from tablebench.db import get_connection, init_db
from tablebench.errors import TablebenchError
from tablebench.harness import HarnessContext, run_benchmark
from tablebench.report import REPORT_FORMATS

if TYPE_CHECKING:
    import sqlite3

    from tablebench.report import ReportFormat

console = Console()


def check_format(fmt: str) -> ReportFormat:
    if fmt not in REPORT_FORMATS:
        console.print(
            f"[red]Error:[/red] Unknown format '{fmt}' "
            f"(choose from {', '.join(REPORT_FORMATS)})"
        )
        raise typer.Exit(1)
    return cast("ReportFormat", fmt)


def emit(text: str, output: Optional[Path]) -> None:
    """Write a rendered report to a file or stdout."""
    if output is None:
        console.out(text, highlight=False, end="")
        return
    try:
        _ = output.write_text(text)
    except OSError as e:
        console.print(f"[red]Error:[/red] Cannot write {output}: {e}")
        raise typer.Exit(1) from e
    console.print(f"[green]Report written to {output}[/green]")


def run(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Benchmark config (default: the project's .tablebench/config.yaml)",
    ),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Session name"),
    parallel: Optional[bool] = typer.Option(
        None,
        "--parallel/--sequential",
        help="Run variants concurrently (overrides config)",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout", "-t",
        help="Global time budget in seconds (overrides config)",
    ),
    keep_variants: bool = typer.Option(
        False,
        "--keep-variants",
        help="Leave the physical variant tables in place",
    ),
    fmt: str = typer.Option("text", "--format", "-f", help="text, markdown or json"),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Write the report to a file",
    ),
) -> None:
    """Provision the variants, run every query against each, and report.

    Examples:
        tablebench run
        tablebench run --parallel --timeout 300
        tablebench run -c bench.yaml --format markdown -o report.md

    """
    report_format = check_format(fmt)

    try:
        config_path = resolve_config_path(config_file)
        config = load_config(config_path)
    except (RuntimeError, TablebenchError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    overrides: dict[str, object] = {}
    if parallel is not None:
        overrides["parallel"] = parallel
    if timeout is not None:
        if timeout <= 0:
            console.print("[red]Error:[/red] --timeout must be positive")
            raise typer.Exit(1)
        overrides["timeout"] = timeout
    if keep_variants:
        overrides["keep_variants"] = True
    if overrides:
        config = config.model_copy(update=overrides)

    database = config.resolve_database(config_path.parent)

    # Results are logged only inside a project
    results_conn: sqlite3.Connection | None = None
    bench_dir = find_bench_dir()
    if bench_dir is not None:
        db_path = get_results_db_path(bench_dir)
        init_db(db_path)
        results_conn = get_connection(db_path)

    try:
        backend = get_backend(config.backend, database)
        with HarnessContext(config, backend, results_conn) as ctx:
            result = run_benchmark(ctx, name=name)
    except TablebenchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    finally:
        if results_conn is not None:
            results_conn.close()

    emit(result.render(report_format, title=name), output)
    if report_format == "json" and output is None:
        return

    if result.session_id is not None:
        console.print(f"[dim]Session:[/dim] {result.session_id}")
    if result.timed_out:
        console.print(
            f"[yellow]Time budget of {config.timeout}s exhausted; "
            "results are partial[/yellow]"
        )
    elif result.status == "partial":
        console.print(
            f"[yellow]{len(result.failures)} failure(s); results are partial[/yellow]"
        )

# Copyright (c) Syntropy Systems
"""tablebench sessions command."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tablebench.config import get_results_db_path, require_bench_dir
from tablebench.db import get_connection, get_sessions

console = Console()

STATUS_STYLES = {
    "running": "[blue]running[/blue]",
    "completed": "[green]completed[/green]",
    "partial": "[yellow]partial[/yellow]",
    "failed": "[red]failed[/red]",
}


def sessions(
    status: Optional[str] = typer.Option(
        None,
        "--status", "-s",
        help="Filter by status (running, completed, partial, failed)",
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum sessions to show"),
) -> None:
    """List benchmark sessions, newest first."""
    try:
        bench_dir = require_bench_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    conn = get_connection(get_results_db_path(bench_dir))
    try:
        rows = get_sessions(conn, status=status, limit=limit)
    finally:
        conn.close()

    if not rows:
        console.print("[dim]No sessions found[/dim]")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Baseline")
    table.add_column("Variants")
    table.add_column("Queries", justify="right")
    table.add_column("Started", style="dim")

    for session in rows:
        table.add_row(
            session.id,
            session.name or "-",
            STATUS_STYLES.get(session.status, session.status),
            session.baseline,
            ", ".join(session.variants),
            str(len(session.templates)),
            session.started_at or "-",
        )

    console.print(table)

# Copyright (c) Syntropy Systems
"""tablebench report command - re-render a stored session."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from tablebench.aggregate import aggregate
from tablebench.cli.run_cmd import check_format, emit
from tablebench.config import get_results_db_path, require_bench_dir
from tablebench.db import (
    get_connection,
    get_latest_session,
    get_session,
    get_session_failures,
    get_session_records,
)
from tablebench.errors import TablebenchError
from tablebench.report import render

console = Console()


def report(
    session_id: Optional[str] = typer.Argument(
        None,
        help="Session ID or prefix (default: latest session)",
    ),
    baseline: Optional[str] = typer.Option(
        None,
        "--baseline", "-b",
        help="Compare against another variant of the session",
    ),
    fmt: str = typer.Option("text", "--format", "-f", help="text, markdown or json"),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Write the report to a file",
    ),
) -> None:
    """Rebuild the comparison report of a stored session."""
    report_format = check_format(fmt)

    try:
        bench_dir = require_bench_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    conn = get_connection(get_results_db_path(bench_dir))
    try:
        session = get_session(conn, session_id) if session_id else get_latest_session(conn)
        if session is None:
            what = f"Session not found: {session_id}" if session_id else "No sessions yet"
            console.print(f"[red]{what}[/red]")
            raise typer.Exit(1)

        baseline_id = baseline or session.baseline
        if baseline_id not in session.variants:
            console.print(
                f"[red]Error:[/red] '{baseline_id}' is not a variant of session {session.id}"
            )
            raise typer.Exit(1)

        records = get_session_records(conn, session.id)
        failures = get_session_failures(conn, session.id)
    finally:
        conn.close()

    try:
        aggregation = aggregate(
            records,
            baseline_id,
            template_order=session.templates,
            variant_order=session.variants,
        )
    except TablebenchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    emit(render(aggregation, failures=failures, fmt=report_format, title=session.name), output)

# Copyright (c) Syntropy Systems
"""Export command - export run records to CSV/JSON."""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Optional

import typer
from pydantic import TypeAdapter
from rich.console import Console

from tablebench.config import get_results_db_path, require_bench_dir
from tablebench.db import (
    get_connection,
    get_latest_session,
    get_session,
    get_session_failures,
    get_session_records,
)
from tablebench.models.base import JSONValue

console = Console()
_EXPORT_ADAPTER = TypeAdapter(dict[str, JSONValue])

CSV_FIELDS = [
    "session_id",
    "variant_id",
    "template_id",
    "duration_seconds",
    "row_count",
    "cpu_cost",
    "io_cost",
    "total_cost",
    "attempts",
    "started_at",
    "plan",
]


def export(
    output: Path = typer.Argument(..., help="Output file path (.csv or .json)"),
    session_id: Optional[str] = typer.Option(
        None,
        "--session", "-s",
        help="Session to export (default: latest)",
    ),
) -> None:
    """Export the raw run records of a session to CSV or JSON.

    Examples:
        tablebench export records.csv
        tablebench export --session abc123 records.json

    """
    suffix = output.suffix.lower()
    if suffix not in [".csv", ".json"]:
        console.print("[red]Output must be .csv or .json[/red]")
        raise typer.Exit(1)

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
        records = get_session_records(conn, session.id)
        failures = get_session_failures(conn, session.id)
    finally:
        conn.close()

    if not records and not failures:
        console.print("[yellow]No records to export[/yellow]")
        raise typer.Exit(0)

    if suffix == ".json":
        payload: dict[str, JSONValue] = {
            "session": session.model_dump(mode="json"),
            "records": [record.model_dump(mode="json") for record in records],
            "failures": [failure.model_dump(mode="json") for failure in failures],
        }
        _ = output.write_bytes(_EXPORT_ADAPTER.dump_json(payload, indent=2))
    else:
        # Failures have no measurements; CSV holds records only
        with output.open("w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            writer.writeheader()
            for record in records:
                cost = record.cost
                writer.writerow(
                    {
                        "session_id": session.id,
                        "variant_id": record.variant_id,
                        "template_id": record.template_id,
                        "duration_seconds": record.duration_seconds,
                        "row_count": record.row_count,
                        "cpu_cost": cost.cpu_cost if cost else None,
                        "io_cost": cost.io_cost if cost else None,
                        "total_cost": cost.total_cost if cost else None,
                        "attempts": record.attempts,
                        "started_at": record.started_at,
                        "plan": " | ".join(record.plan),
                    }
                )

    console.print(
        f"[green]Exported {len(records)} record(s) and {len(failures)} failure(s) "
        f"to {output}[/green]"
    )

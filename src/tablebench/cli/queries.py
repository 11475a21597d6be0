# Copyright (c) Syntropy Systems
"""tablebench queries command."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tablebench.catalog import QueryCatalog
from tablebench.config import find_bench_dir, get_config_path, load_config
from tablebench.errors import TablebenchError

console = Console()


def queries(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Benchmark config whose queries to list",
    ),
) -> None:
    """List the query templates a run would execute."""
    if config_file is None:
        bench_dir = find_bench_dir()
        if bench_dir is not None:
            config_file = get_config_path(bench_dir)

    try:
        if config_file is not None:
            catalog = QueryCatalog.from_config(load_config(config_file).queries)
        else:
            catalog = QueryCatalog()
    except TablebenchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    table = Table(title="Query templates")
    table.add_column("ID", style="cyan")
    table.add_column("Description")
    table.add_column("SQL")
    table.add_column("Max rows", justify="right")

    for template in catalog:
        table.add_row(
            template.id,
            template.description or "-",
            escape(template.sql),
            str(template.max_rows) if template.max_rows is not None else "-",
        )

    console.print(table)

# Copyright (c) Syntropy Systems
"""tablebench init command."""

from pathlib import Path

import typer
import yaml
from rich.console import Console

from tablebench.config import BENCH_DIR_NAME, CONFIG_FILE_NAME, RESULTS_DB_NAME
from tablebench.dataset import FACT_KEY
from tablebench.db import init_db

console = Console()

DEFAULT_CONFIG = {
    "database": "bench.db",
    "backend": "sqlite",
    "dataset": {
        "table": "fact_table",
        "generate": {"rows": 100_000, "seed": 42},
    },
    "variants": [
        {"id": "heap", "strategy": "heap"},
        {"id": "clustered", "strategy": "clustered", "key_columns": list(FACT_KEY)},
        {
            "id": "store_indexed",
            "strategy": "clustered",
            "key_columns": list(FACT_KEY),
            "indexes": [["store_key"]],
        },
    ],
    "baseline": "clustered",
    "timeout": 600,
    "retries": 2,
    "retry_delay": 1.0,
    "parallel": False,
    "on_timeout": "cancel",
    "keep_variants": False,
}


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new tablebench project.

    Creates a .tablebench directory with a sample config and the results log.
    """
    target = path.resolve()
    bench_dir = target / BENCH_DIR_NAME

    if bench_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {bench_dir}")
        return

    bench_dir.mkdir(parents=True)

    config_path = bench_dir / CONFIG_FILE_NAME
    with config_path.open("w") as f:
        yaml.dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)

    db_path = bench_dir / RESULTS_DB_NAME
    init_db(db_path)

    console.print(f"[green]Initialized tablebench project:[/green] {bench_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]results:[/dim] {db_path}")

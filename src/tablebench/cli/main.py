# Copyright (c) Syntropy Systems
"""Main CLI entry point for tablebench."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from tablebench.cli.export import export
from tablebench.cli.init_cmd import init
from tablebench.cli.queries import queries
from tablebench.cli.report_cmd import report
from tablebench.cli.run_cmd import run
from tablebench.cli.sessions import sessions

app = typer.Typer(
    name="tablebench",
    help=(
        "Storage strategy benchmarks. Materialize one dataset as heap, "
        "clustered and columnstore tables, run the same queries, compare."
    ),
    no_args_is_help=True,
    add_completion=False,
)


def configure_logging(verbose: bool) -> None:
    """Send tablebench log records to stderr through rich."""
    logger = logging.getLogger("tablebench")
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(
            RichHandler(
                console=Console(stderr=True),
                show_path=False,
                show_time=False,
            )
        )


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Log provisioning and query progress",
    ),
) -> None:
    """Storage strategy benchmarks."""
    configure_logging(verbose)


# Register commands
_ = app.command()(init)
_ = app.command()(run)
_ = app.command()(report)
_ = app.command()(sessions)
_ = app.command()(queries)
_ = app.command(name="export")(export)


if __name__ == "__main__":
    app()

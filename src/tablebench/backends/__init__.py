# Copyright (c) Syntropy Systems
"""Database backends tablebench can benchmark against."""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from tablebench.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from tablebench.models.bench import QueryPlan, VariantSpec

_handle_ids = itertools.count(1)


@dataclass(frozen=True)
class ExecutionHandle:
    """Identifies one in-flight query so it can be cancelled."""

    variant_id: str
    template_id: str
    id: int = field(default_factory=lambda: next(_handle_ids))


class Backend(Protocol):
    """What the harness needs from a database."""

    name: str
    supports_cancel: bool
    supported_strategies: frozenset[str]

    def connect(self) -> None:
        ...

    def close(self) -> None:
        ...

    def count_rows(self, table: str) -> int:
        """Row count of table, 0 when it does not exist."""
        ...

    def columns(self, table: str) -> list[str]:
        ...

    def load_table(
        self,
        table: str,
        columns: list[tuple[str, str]],
        rows: Iterable[tuple[object, ...]],
    ) -> int:
        """(Re)create table and fill it with rows."""
        ...

    def materialize(self, source: str, physical_name: str, spec: VariantSpec) -> int:
        """Copy source into physical_name using spec's strategy.

        Returns the number of rows materialized.
        """
        ...

    def drop(self, physical_name: str) -> None:
        ...

    def execute(self, sql: str, handle: ExecutionHandle) -> int:
        """Run sql to completion and return the number of rows produced."""
        ...

    def explain(self, sql: str) -> QueryPlan:
        ...

    def cancel(self, handle: ExecutionHandle) -> bool:
        """Interrupt an in-flight query. False when not supported."""
        ...


BACKENDS = ("sqlite", "duckdb")


def index_name_for(physical_name: str, position: int) -> str:
    """Name of the position-th (1-based) secondary index on a variant."""
    return f"{physical_name}__ix{position}"


def get_backend(name: str, database: Path | str) -> Backend:
    """Create a backend by name."""
    if name == "sqlite":
        from tablebench.backends.sqlite import SQLiteBackend

        return SQLiteBackend(database)

    if name == "duckdb":
        try:
            from tablebench.backends.duckdb import DuckDBBackend
        except ImportError as e:
            msg = f"The duckdb backend is unavailable: {e}"
            raise ConfigurationError(msg) from e

        return DuckDBBackend(database)

    msg = f"Unknown backend '{name}' (available: {', '.join(BACKENDS)})"
    raise ConfigurationError(msg)

# Copyright (c) Syntropy Systems
"""DuckDB backend.

DuckDB stores every table column by column, so columnstore variants are a
plain copy and row-oriented heaps are refused. Clustered variants carry a
``PRIMARY KEY`` and are loaded in key order, which keeps the zone maps of
each row group tight on the key columns. Plan costs are the optimizer's
estimated cardinalities summed over the plan's operators.
"""
from __future__ import annotations

import itertools
import json
import logging
import re
import threading
from typing import TYPE_CHECKING

try:
    import duckdb
except ImportError as e:
    msg = "DuckDB is not installed. Install with: pip install tablebench[duckdb]"
    raise ImportError(msg) from e

from tablebench.backends import index_name_for
from tablebench.errors import BackendError, QueryCancelledError, TransientBackendError
from tablebench.identifiers import quote_identifier
from tablebench.models.bench import CostBreakdown, QueryPlan

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

    from tablebench.backends import ExecutionHandle
    from tablebench.models.bench import VariantSpec

logger = logging.getLogger(__name__)

FETCH_BATCH_SIZE = 1000
INSERT_BATCH_SIZE = 500
# Column types the dataset declares that mean something narrower in DuckDB
_TYPE_MAP = {"REAL": "DOUBLE"}
_CARDINALITY = re.compile(r"(?:Estimated Cardinality|EC)\s*:?\s*~?\s*(\d+)")
_TRANSIENT_MARKERS = ("could not set lock", "conflicting lock", "write-write conflict")


def translate_error(error: duckdb.Error) -> BackendError:
    """Map a duckdb error onto the backend error taxonomy."""
    message = str(error)
    if isinstance(error, duckdb.InterruptException):
        return QueryCancelledError(message)
    if isinstance(error, duckdb.TransactionException) or any(
        marker in message.lower() for marker in _TRANSIENT_MARKERS
    ):
        return TransientBackendError(message)
    return BackendError(message)


def _rollback(cursor: duckdb.DuckDBPyConnection) -> None:
    try:
        _ = cursor.execute("ROLLBACK")
    except duckdb.TransactionException as e:
        # no transaction left to roll back
        logger.debug("Rollback skipped: %s", e)


def _plan_nodes(node: object) -> Iterator[dict[str, object]]:
    """Depth-first walk over a JSON plan tree (a node or a list of nodes)."""
    if isinstance(node, list):
        for child in node:
            yield from _plan_nodes(child)
    elif isinstance(node, dict):
        yield node
        yield from _plan_nodes(node.get("children", []))


def _estimated_cardinality(node: dict[str, object]) -> int | None:
    extra_info = node.get("extra_info")
    if isinstance(extra_info, dict):
        value = extra_info.get("Estimated Cardinality")
        if value is None:
            return None
        digits = re.search(r"\d+", str(value))
        return int(digits.group()) if digits else None
    if isinstance(extra_info, str):
        match = _CARDINALITY.search(extra_info)
        return int(match.group(1)) if match else None
    return None


def parse_plan(plan_rows: Iterable[tuple[str, str]]) -> QueryPlan:
    """Build a QueryPlan from the rows of ``EXPLAIN (FORMAT JSON)``."""
    operations: list[str] = []
    estimates: list[int] = []
    for _, plan_json in plan_rows:
        for node in _plan_nodes(json.loads(plan_json)):
            name = node.get("name") or node.get("operator_name")
            if isinstance(name, str) and name.strip():
                operations.append(name.strip())
            cardinality = _estimated_cardinality(node)
            if cardinality is not None:
                estimates.append(cardinality)
    cost = CostBreakdown(total_cost=float(sum(estimates))) if estimates else None
    return QueryPlan(cost=cost, operations=tuple(operations))


class DuckDBBackend:
    """Runs benchmarks against a DuckDB database file.

    One database connection is opened; every thread works through its own
    cursor on it, so in-memory databases are shared across threads too.
    """

    name = "duckdb"
    supports_cancel = True
    supported_strategies: frozenset[str] = frozenset({"clustered", "columnstore", "custom"})

    database: str
    _conn: duckdb.DuckDBPyConnection | None
    _local: threading.local
    _lock: threading.Lock
    _cursors: list[duckdb.DuckDBPyConnection]
    _active: dict[int, duckdb.DuckDBPyConnection]

    def __init__(self, database: Path | str = ":memory:") -> None:
        self.database = str(database)
        self._conn = None
        self._local = threading.local()
        self._lock = threading.Lock()
        self._cursors = []
        self._active = {}

    def connect(self) -> None:
        """Open the database if it is not open yet."""
        with self._lock:
            if self._conn is not None:
                return
            try:
                self._conn = duckdb.connect(database=self.database)
            except duckdb.Error as e:
                raise translate_error(e) from e
        logger.debug("Opened duckdb database %s", self.database)

    def close(self) -> None:
        """Close every cursor and the database connection."""
        with self._lock:
            cursors = self._cursors
            conn = self._conn
            self._cursors = []
            self._active.clear()
            self._conn = None
        for cursor in cursors:
            cursor.close()
        if conn is not None:
            conn.close()
        self._local = threading.local()

    def __enter__(self) -> DuckDBBackend:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        cursor = getattr(self._local, "cursor", None)
        if cursor is None:
            self.connect()
            with self._lock:
                if self._conn is None:
                    msg = "duckdb backend is closed"
                    raise BackendError(msg)
                cursor = self._conn.cursor()
                self._cursors.append(cursor)
            self._local.cursor = cursor
        return cursor

    def _run(self, sql: str, params: list[object] | None = None) -> duckdb.DuckDBPyConnection:
        try:
            return self._cursor().execute(sql, params)
        except duckdb.Error as e:
            raise translate_error(e) from e

    # --- Schema helpers ---

    def table_exists(self, table: str) -> bool:
        row = self._run(
            "SELECT 1 FROM information_schema.tables WHERE table_name = ?", [table]
        ).fetchone()
        return row is not None

    def count_rows(self, table: str) -> int:
        """Row count of table, 0 when it does not exist."""
        if not self.table_exists(table):
            return 0
        row = self._run(f"SELECT COUNT(*) FROM {quote_identifier(table)}").fetchone()
        return int(row[0]) if row else 0

    def _table_info(self, table: str) -> list[tuple[str, str]]:
        rows = self._run(
            "SELECT column_name, data_type FROM information_schema.columns "
            "WHERE table_name = ? ORDER BY ordinal_position",
            [table],
        ).fetchall()
        return [(str(name), str(data_type)) for name, data_type in rows]

    def columns(self, table: str) -> list[str]:
        return [name for name, _ in self._table_info(table)]

    def load_table(
        self,
        table: str,
        columns: list[tuple[str, str]],
        rows: Iterable[tuple[object, ...]],
    ) -> int:
        """Create table from (name, type) pairs and insert rows in batches."""
        column_defs = ", ".join(
            f"{quote_identifier(name)} {_TYPE_MAP.get(col_type.upper(), col_type)}"
            for name, col_type in columns
        )
        row_placeholder = "(" + ", ".join("?" for _ in columns) + ")"
        quoted = quote_identifier(table)
        cursor = self._cursor()
        iterator = iter(rows)
        try:
            _ = cursor.execute("BEGIN TRANSACTION")
            _ = cursor.execute(f"CREATE OR REPLACE TABLE {quoted} ({column_defs})")
            while True:
                batch = list(itertools.islice(iterator, INSERT_BATCH_SIZE))
                if not batch:
                    break
                values = ", ".join(row_placeholder for _ in batch)
                params = [value for row in batch for value in row]
                _ = cursor.execute(f"INSERT INTO {quoted} VALUES {values}", params)
            _ = cursor.execute("COMMIT")
        except duckdb.Error as e:
            _rollback(cursor)
            raise translate_error(e) from e
        return self.count_rows(table)

    # --- Materialization ---

    def materialize(self, source: str, physical_name: str, spec: VariantSpec) -> int:
        """Copy source into physical_name using spec's strategy."""
        if spec.strategy not in self.supported_strategies:
            msg = (
                f"strategy '{spec.strategy}' is not supported by the duckdb backend "
                "(tables are always columnar)"
            )
            raise BackendError(msg)

        try:
            self.drop(physical_name)
            if spec.strategy == "columnstore":
                _ = self._run(
                    f"CREATE TABLE {quote_identifier(physical_name)} "
                    f"AS SELECT * FROM {quote_identifier(source)}"
                )
            elif spec.strategy == "clustered":
                self._create_clustered(source, physical_name, spec.key_columns)
            else:
                self._create_custom(source, physical_name, spec.create_sql or "")
            self._create_indexes(physical_name, spec.indexes)
        except ValueError as e:
            raise BackendError(str(e)) from e

        return self.count_rows(physical_name)

    def _create_clustered(
        self, source: str, physical_name: str, key_columns: tuple[str, ...]
    ) -> None:
        info = self._table_info(source)
        available = {name for name, _ in info}
        missing = [column for column in key_columns if column not in available]
        if missing:
            msg = f"key columns not in '{source}': {', '.join(missing)}"
            raise BackendError(msg)

        column_defs = ", ".join(
            f"{quote_identifier(name)} {col_type}" for name, col_type in info
        )
        key = ", ".join(quote_identifier(column) for column in key_columns)
        quoted = quote_identifier(physical_name)

        cursor = self._cursor()
        try:
            _ = cursor.execute("BEGIN TRANSACTION")
            _ = cursor.execute(f"CREATE TABLE {quoted} ({column_defs}, PRIMARY KEY ({key}))")
            _ = cursor.execute(
                f"INSERT INTO {quoted} SELECT * FROM {quote_identifier(source)} ORDER BY {key}"
            )
            _ = cursor.execute("COMMIT")
        except duckdb.ConstraintException as e:
            _rollback(cursor)
            msg = f"duplicate values for key ({', '.join(key_columns)}): {e}"
            raise BackendError(msg) from e
        except duckdb.Error as e:
            _rollback(cursor)
            raise translate_error(e) from e

    def _create_custom(self, source: str, physical_name: str, create_sql: str) -> None:
        try:
            script = create_sql.format(
                table=quote_identifier(physical_name),
                source=quote_identifier(source),
            )
        except (KeyError, IndexError, AttributeError, TypeError, ValueError) as e:
            msg = f"create_sql may only use {{table}} and {{source}}: {e}"
            raise BackendError(msg) from e
        # DuckDB runs a multi-statement script in one call
        _ = self._run(script)

    def _create_indexes(
        self, physical_name: str, indexes: tuple[tuple[str, ...], ...]
    ) -> None:
        for position, columns in enumerate(indexes, start=1):
            index = quote_identifier(index_name_for(physical_name, position))
            column_list = ", ".join(quote_identifier(column) for column in columns)
            _ = self._run(
                f"CREATE INDEX {index} ON {quote_identifier(physical_name)} ({column_list})"
            )

    def drop(self, physical_name: str) -> None:
        _ = self._run(f"DROP TABLE IF EXISTS {quote_identifier(physical_name)}")

    # --- Queries ---

    def execute(self, sql: str, handle: ExecutionHandle) -> int:
        """Run sql to completion and return the number of rows produced."""
        cursor = self._cursor()
        with self._lock:
            self._active[handle.id] = cursor
        try:
            _ = cursor.execute(sql)
            row_count = 0
            while True:
                batch = cursor.fetchmany(FETCH_BATCH_SIZE)
                if not batch:
                    break
                row_count += len(batch)
        except duckdb.Error as e:
            raise translate_error(e) from e
        finally:
            with self._lock:
                _ = self._active.pop(handle.id, None)
        return row_count

    def explain(self, sql: str) -> QueryPlan:
        """Plan operators and estimated cardinalities from EXPLAIN (FORMAT JSON)."""
        rows = self._run(f"EXPLAIN (FORMAT JSON) {sql}").fetchall()
        return parse_plan(rows)

    def cancel(self, handle: ExecutionHandle) -> bool:
        """Interrupt the query registered under handle."""
        with self._lock:
            cursor = self._active.get(handle.id)
        if cursor is None:
            return False
        cursor.interrupt()
        logger.info("Interrupted %s on %s", handle.template_id, handle.variant_id)
        return True

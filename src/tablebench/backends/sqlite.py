# Copyright (c) Syntropy Systems
"""SQLite backend.

Heaps are ordinary rowid tables. Clustered variants are ``WITHOUT ROWID``
tables, which SQLite stores in primary-key order. Secondary indexes are
plain ``CREATE INDEX`` statements. SQLite has no columnar storage, so
columnstore variants are refused.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from typing import TYPE_CHECKING

from tablebench.backends import index_name_for
from tablebench.errors import BackendError, QueryCancelledError, TransientBackendError
from tablebench.identifiers import quote_identifier
from tablebench.models.bench import QueryPlan

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from tablebench.backends import ExecutionHandle
    from tablebench.models.bench import VariantSpec

logger = logging.getLogger(__name__)

FETCH_BATCH_SIZE = 1000
_TRANSIENT_MARKERS = ("database is locked", "database is busy", "unable to open", "disk i/o error")


def translate_error(error: sqlite3.Error) -> BackendError:
    """Map a sqlite3 error onto the backend error taxonomy."""
    message = str(error)
    lowered = message.lower()
    if "interrupted" in lowered:
        return QueryCancelledError(message)
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return TransientBackendError(message)
    return BackendError(message)


class SQLiteBackend:
    """Runs benchmarks against a SQLite database file.

    Each thread gets its own connection so parallel mode never shares a
    connection between variants. An in-memory database is shared by all
    threads through one connection.
    """

    name = "sqlite"
    supports_cancel = True
    supported_strategies: frozenset[str] = frozenset({"heap", "clustered", "custom"})

    database: str
    timeout: float
    _local: threading.local
    _lock: threading.Lock
    _connections: list[sqlite3.Connection]
    _active: dict[int, sqlite3.Connection]
    _shared: sqlite3.Connection | None

    def __init__(self, database: Path | str, timeout: float = 5.0) -> None:
        self.database = str(database)
        self.timeout = timeout
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections = []
        self._active = {}
        self._shared = None

    @property
    def in_memory(self) -> bool:
        return self.database == ":memory:"

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.database,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            if not self.in_memory:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")
        except sqlite3.Error as e:
            raise translate_error(e) from e
        with self._lock:
            self._connections.append(conn)
        logger.debug("Opened sqlite connection to %s", self.database)
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self.in_memory:
            if self._shared is None:
                self._shared = self._open()
            return self._shared
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._open()
            self._local.conn = conn
        return conn

    def connect(self) -> None:
        """Open a connection for the calling thread."""
        _ = self._connection()

    def close(self) -> None:
        """Close every connection opened by this backend."""
        with self._lock:
            connections = self._connections
            self._connections = []
            self._active.clear()
        for conn in connections:
            conn.close()
        self._local = threading.local()
        self._shared = None

    def __enter__(self) -> SQLiteBackend:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # --- Schema helpers ---

    def table_exists(self, table: str) -> bool:
        row = self._connection().execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        ).fetchone()
        return row is not None

    def count_rows(self, table: str) -> int:
        """Row count of table, 0 when it does not exist."""
        if not self.table_exists(table):
            return 0
        try:
            row = self._connection().execute(
                f"SELECT COUNT(*) FROM {quote_identifier(table)}"
            ).fetchone()
        except sqlite3.Error as e:
            raise translate_error(e) from e
        return int(row[0])

    def _table_info(self, table: str) -> list[tuple[str, str]]:
        rows = self._connection().execute(
            f"PRAGMA table_info({quote_identifier(table)})"
        ).fetchall()
        return [(row[1], row[2]) for row in rows]

    def columns(self, table: str) -> list[str]:
        return [name for name, _ in self._table_info(table)]

    def load_table(
        self,
        table: str,
        columns: list[tuple[str, str]],
        rows: Iterable[tuple[object, ...]],
    ) -> int:
        """Create table from (name, type) pairs and bulk insert rows."""
        conn = self._connection()
        column_defs = ", ".join(
            f"{quote_identifier(name)} {col_type}" for name, col_type in columns
        )
        placeholders = ", ".join("?" for _ in columns)
        quoted = quote_identifier(table)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(f"DROP TABLE IF EXISTS {quoted}")
            conn.execute(f"CREATE TABLE {quoted} ({column_defs})")
            conn.executemany(f"INSERT INTO {quoted} VALUES ({placeholders})", rows)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise translate_error(e) from e
        return self.count_rows(table)

    # --- Materialization ---

    def materialize(self, source: str, physical_name: str, spec: VariantSpec) -> int:
        """Copy source into physical_name using spec's strategy."""
        if spec.strategy not in self.supported_strategies:
            msg = f"strategy '{spec.strategy}' is not supported by the sqlite backend"
            raise BackendError(msg)

        try:
            self.drop(physical_name)
            if spec.strategy == "heap":
                self._create_heap(source, physical_name)
            elif spec.strategy == "clustered":
                self._create_clustered(source, physical_name, spec.key_columns)
            else:
                self._create_custom(source, physical_name, spec.create_sql or "")
            self._create_indexes(physical_name, spec.indexes)
        except ValueError as e:
            raise BackendError(str(e)) from e

        return self.count_rows(physical_name)

    def _create_heap(self, source: str, physical_name: str) -> None:
        try:
            self._connection().execute(
                f"CREATE TABLE {quote_identifier(physical_name)} "
                f"AS SELECT * FROM {quote_identifier(source)}"
            )
        except sqlite3.Error as e:
            raise translate_error(e) from e

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
            f"{quote_identifier(name)} {col_type}".rstrip() for name, col_type in info
        )
        key = ", ".join(quote_identifier(column) for column in key_columns)
        quoted = quote_identifier(physical_name)

        conn = self._connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                f"CREATE TABLE {quoted} ({column_defs}, PRIMARY KEY ({key})) WITHOUT ROWID"
            )
            conn.execute(f"INSERT INTO {quoted} SELECT * FROM {quote_identifier(source)}")
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            msg = f"duplicate values for key ({', '.join(key_columns)}): {e}"
            raise BackendError(msg) from e
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
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
        try:
            self._connection().executescript(script)
        except sqlite3.Error as e:
            raise translate_error(e) from e

    def _create_indexes(
        self, physical_name: str, indexes: tuple[tuple[str, ...], ...]
    ) -> None:
        conn = self._connection()
        for position, columns in enumerate(indexes, start=1):
            index = quote_identifier(index_name_for(physical_name, position))
            column_list = ", ".join(quote_identifier(column) for column in columns)
            try:
                conn.execute(
                    f"CREATE INDEX {index} ON {quote_identifier(physical_name)} ({column_list})"
                )
            except sqlite3.Error as e:
                raise translate_error(e) from e

    def drop(self, physical_name: str) -> None:
        try:
            self._connection().execute(
                f"DROP TABLE IF EXISTS {quote_identifier(physical_name)}"
            )
        except sqlite3.Error as e:
            raise translate_error(e) from e

    # --- Queries ---

    def execute(self, sql: str, handle: ExecutionHandle) -> int:
        """Run sql to completion and return the number of rows produced."""
        conn = self._connection()
        with self._lock:
            self._active[handle.id] = conn
        try:
            cursor = conn.execute(sql)
            row_count = 0
            while True:
                batch = cursor.fetchmany(FETCH_BATCH_SIZE)
                if not batch:
                    break
                row_count += len(batch)
        except sqlite3.Error as e:
            raise translate_error(e) from e
        finally:
            with self._lock:
                _ = self._active.pop(handle.id, None)
        return row_count

    def explain(self, sql: str) -> QueryPlan:
        """Plan operators from EXPLAIN QUERY PLAN. SQLite reports no costs."""
        try:
            rows = self._connection().execute(f"EXPLAIN QUERY PLAN {sql}").fetchall()
        except sqlite3.Error as e:
            raise translate_error(e) from e
        return QueryPlan(cost=None, operations=tuple(str(row[-1]) for row in rows))

    def cancel(self, handle: ExecutionHandle) -> bool:
        """Interrupt the query registered under handle."""
        with self._lock:
            conn = self._active.get(handle.id)
        if conn is None:
            return False
        conn.interrupt()
        logger.info(
            "Interrupted %s on %s", handle.template_id, handle.variant_id
        )
        return True

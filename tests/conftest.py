# Copyright (c) Syntropy Systems
"""Pytest fixtures for tablebench tests."""

import os
import sqlite3
import tempfile
import threading
from collections.abc import Generator
from pathlib import Path

import pytest

from tablebench.errors import BackendError, QueryCancelledError
from tablebench.models.bench import CostBreakdown, QueryPlan

# Store original cwd at module load time
_original_cwd = Path.cwd()


class FakeClock:
    """Manually advanced clock shared by a FakeBackend and a runner."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """In-memory stand-in for a database backend.

    Durations, costs and failures are scripted per variant id (and per
    template id for failures). Every call is logged in ``calls``.
    """

    name = "fake"
    supports_cancel = True
    supported_strategies = frozenset({"heap", "clustered", "custom"})

    def __init__(
        self,
        rows: int = 100,
        *,
        clock=None,
        durations=None,
        costs=None,
        result_rows=None,
        execute_errors=None,
        materialize_errors=None,
        blocking=(),
        barrier=None,
    ) -> None:
        self.clock = clock or FakeClock()
        self.tables = {"fact_table": rows}
        self.durations = durations or {}
        self.costs = costs or {}
        self.result_rows = result_rows or {}
        # (variant_id, template_id) -> exceptions raised by successive attempts
        self.execute_errors = {k: list(v) for k, v in (execute_errors or {}).items()}
        self.materialize_errors = materialize_errors or {}
        # template ids whose execution waits until cancelled
        self.blocking = set(blocking)
        # every execution waits here for its peers when set
        self.barrier = barrier
        self.calls = []
        self.active = {}
        self.lock = threading.Lock()
        self.max_concurrent = {}
        self._running = {}

    def connect(self) -> None:
        self.calls.append(("connect",))

    def close(self) -> None:
        self.calls.append(("close",))

    def count_rows(self, table: str) -> int:
        return self.tables.get(table, 0)

    def columns(self, table: str) -> list[str]:
        return ["payment_key", "customer_key", "time_key", "item_key", "store_key"]

    def load_table(self, table, columns, rows) -> int:
        self.calls.append(("load_table", table))
        self.tables[table] = sum(1 for _ in rows)
        return self.tables[table]

    def materialize(self, source, physical_name, spec) -> int:
        self.calls.append(("materialize", spec.id))
        if spec.strategy not in self.supported_strategies:
            msg = f"strategy '{spec.strategy}' is not supported by the fake backend"
            raise BackendError(msg)
        if spec.id in self.materialize_errors:
            raise BackendError(self.materialize_errors[spec.id])
        self.tables[physical_name] = self.tables[source]
        return self.tables[physical_name]

    def drop(self, physical_name) -> None:
        self.calls.append(("drop", physical_name))
        self.tables.pop(physical_name, None)

    def execute(self, sql, handle) -> int:
        key = (handle.variant_id, handle.template_id)
        self.calls.append(("execute", handle.variant_id, handle.template_id))
        with self.lock:
            running = self._running.get(handle.variant_id, 0) + 1
            self._running[handle.variant_id] = running
            self.max_concurrent[handle.variant_id] = max(
                running, self.max_concurrent.get(handle.variant_id, 0)
            )
        try:
            errors = self.execute_errors.get(key)
            if errors:
                raise errors.pop(0)
            if self.barrier is not None:
                try:
                    _ = self.barrier.wait()
                except threading.BrokenBarrierError as e:
                    raise BackendError("no concurrent execution arrived") from e
            if handle.template_id in self.blocking:
                event = threading.Event()
                with self.lock:
                    self.active[handle.id] = event
                event.wait(5.0)
                raise QueryCancelledError("interrupted")
            self.clock.advance(self.durations.get(handle.variant_id, 1.0))
            return self.result_rows.get(handle.template_id, 10)
        finally:
            with self.lock:
                self._running[handle.variant_id] -= 1
                self.active.pop(handle.id, None)

    def explain(self, sql) -> QueryPlan:
        for variant_id, cost in self.costs.items():
            if f"__{variant_id}\"" in sql:
                return QueryPlan(cost=cost, operations=("SCAN",))
        return QueryPlan(operations=("SCAN",))

    def cancel(self, handle) -> bool:
        with self.lock:
            event = self.active.get(handle.id)
        if event is None:
            return False
        event.set()
        return True


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def bench_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary tablebench project directory."""
    from tablebench.db import init_db

    bench_dir = temp_dir / ".tablebench"
    bench_dir.mkdir()
    init_db(bench_dir / "results.db")

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def db_connection(bench_project: Path) -> Generator[sqlite3.Connection, None, None]:
    """Get a results-log connection for the test project."""
    from tablebench.db import get_connection

    conn = get_connection(bench_project / ".tablebench" / "results.db")
    yield conn
    conn.close()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_backend(fake_clock: FakeClock) -> FakeBackend:
    """Fake backend where heap is five times slower than clustered."""
    return FakeBackend(
        clock=fake_clock,
        durations={"clustered": 1.161, "heap": 5.909},
        costs={
            "clustered": CostBreakdown(cpu_cost=0.02, io_cost=0.01, total_cost=0.0306),
            "heap": CostBreakdown(cpu_cost=0.6, io_cost=0.67, total_cost=1.2727),
        },
    )


@pytest.fixture
def sqlite_backend(temp_dir: Path):
    """A connected SQLite backend with a small generated fact table."""
    from tablebench.backends.sqlite import SQLiteBackend
    from tablebench.dataset import generate_fact_table

    backend = SQLiteBackend(temp_dir / "bench.db")
    backend.connect()
    _ = generate_fact_table(backend, "fact_table", 500, seed=7)
    yield backend
    backend.close()


@pytest.fixture
def in_temp_dir(temp_dir: Path) -> Generator[Path, None, None]:
    """Run a test from inside an empty temporary directory."""
    os.chdir(temp_dir)
    yield temp_dir
    os.chdir(_original_cwd)

# Copyright (c) Syntropy Systems
"""Tests for the DuckDB backend."""

import json
import threading
from pathlib import Path

import pytest

pytest.importorskip("duckdb")

from tablebench.backends import ExecutionHandle, get_backend  # noqa: E402
from tablebench.backends.duckdb import DuckDBBackend, parse_plan  # noqa: E402
from tablebench.catalog import QueryCatalog  # noqa: E402
from tablebench.config import parse_config  # noqa: E402
from tablebench.dataset import FACT_KEY, generate_fact_table  # noqa: E402
from tablebench.errors import BackendError, QueryCancelledError  # noqa: E402
from tablebench.harness import HarnessContext, run_benchmark  # noqa: E402
from tablebench.models.bench import VariantSpec  # noqa: E402

CLUSTERED = VariantSpec(id="clustered", strategy="clustered", key_columns=FACT_KEY)
COLUMNSTORE = VariantSpec(id="columnstore", strategy="columnstore")


@pytest.fixture
def duckdb_backend(temp_dir: Path):
    """A connected DuckDB backend with a small generated fact table."""
    backend = DuckDBBackend(temp_dir / "bench.duckdb")
    backend.connect()
    _ = generate_fact_table(backend, "fact_table", 500, seed=7)
    yield backend
    backend.close()


class TestParsePlan:
    """Tests for reading EXPLAIN (FORMAT JSON) output."""

    def test_nested_nodes(self) -> None:
        plan = [
            {
                "name": "ORDER_BY ",
                "children": [
                    {
                        "name": "SEQ_SCAN ",
                        "children": [],
                        "extra_info": {"Table": "t", "Estimated Cardinality": "500"},
                    }
                ],
                "extra_info": {"Estimated Cardinality": "~500"},
            }
        ]
        result = parse_plan([("physical_plan", json.dumps(plan))])

        assert result.operations == ("ORDER_BY", "SEQ_SCAN")
        assert result.cost is not None
        assert result.cost.total_cost == 1000.0
        assert result.cost.cpu_cost is None

    def test_text_extra_info(self) -> None:
        plan = {"name": "SEQ_SCAN", "children": [], "extra_info": "t\n[INFOSEPARATOR]\nEC: 42"}
        result = parse_plan([("physical_plan", json.dumps(plan))])
        assert result.cost is not None
        assert result.cost.total_cost == 42.0

    def test_no_estimates(self) -> None:
        plan = {"name": "PROJECTION", "children": [], "extra_info": {}}
        result = parse_plan([("physical_plan", json.dumps(plan))])
        assert result.cost is None
        assert result.operations == ("PROJECTION",)


class TestMaterialize:
    """Tests for DuckDB storage strategies."""

    def test_dataset_loaded(self, duckdb_backend: DuckDBBackend) -> None:
        assert duckdb_backend.count_rows("fact_table") == 500
        assert duckdb_backend.columns("fact_table")[:5] == list(FACT_KEY)

    def test_columnstore(self, duckdb_backend: DuckDBBackend) -> None:
        rows = duckdb_backend.materialize("fact_table", "fact_table__columnstore", COLUMNSTORE)
        assert rows == 500

    def test_clustered(self, duckdb_backend: DuckDBBackend) -> None:
        rows = duckdb_backend.materialize("fact_table", "fact_table__clustered", CLUSTERED)
        assert rows == 500

    def test_heap_unsupported(self, duckdb_backend: DuckDBBackend) -> None:
        spec = VariantSpec(id="heap", strategy="heap")
        with pytest.raises(BackendError, match="not supported by the duckdb backend"):
            _ = duckdb_backend.materialize("fact_table", "fact_table__heap", spec)

    def test_duplicate_keys(self, duckdb_backend: DuckDBBackend) -> None:
        spec = VariantSpec(id="dup", strategy="clustered", key_columns=("store_key",))
        with pytest.raises(BackendError, match="duplicate values for key"):
            _ = duckdb_backend.materialize("fact_table", "fact_table__dup", spec)
        assert not duckdb_backend.table_exists("fact_table__dup")

    def test_secondary_index(self, duckdb_backend: DuckDBBackend) -> None:
        spec = COLUMNSTORE.model_copy(update={"id": "indexed", "indexes": (("store_key",),)})
        assert duckdb_backend.materialize("fact_table", "fact_table__indexed", spec) == 500
        names = duckdb_backend._run(
            "SELECT index_name FROM duckdb_indexes() WHERE table_name = ?",
            ["fact_table__indexed"],
        ).fetchall()
        assert ("fact_table__indexed__ix1",) in names

    def test_custom(self, duckdb_backend: DuckDBBackend) -> None:
        spec = VariantSpec(
            id="sorted",
            strategy="custom",
            create_sql="CREATE TABLE {table} AS SELECT * FROM {source} ORDER BY store_key",
        )
        assert duckdb_backend.materialize("fact_table", "fact_table__sorted", spec) == 500

    def test_drop(self, duckdb_backend: DuckDBBackend) -> None:
        _ = duckdb_backend.materialize("fact_table", "fact_table__columnstore", COLUMNSTORE)
        duckdb_backend.drop("fact_table__columnstore")
        assert duckdb_backend.count_rows("fact_table__columnstore") == 0


class TestExecute:
    """Tests for queries, plans and cancellation."""

    def test_row_counts_match_across_variants(self, duckdb_backend: DuckDBBackend) -> None:
        _ = duckdb_backend.materialize("fact_table", "fact_table__columnstore", COLUMNSTORE)
        _ = duckdb_backend.materialize("fact_table", "fact_table__clustered", CLUSTERED)

        for template in QueryCatalog():
            counts = {
                name: duckdb_backend.execute(
                    template.realize(name), ExecutionHandle("v", template.id)
                )
                for name in ("fact_table__columnstore", "fact_table__clustered")
            }
            assert len(set(counts.values())) == 1, template.id

    def test_explain_reports_cost(self, duckdb_backend: DuckDBBackend) -> None:
        plan = duckdb_backend.explain("SELECT * FROM fact_table WHERE store_key = 6")
        assert plan.operations
        assert any("SCAN" in operation for operation in plan.operations)
        assert plan.cost is not None
        assert plan.cost.total_cost is not None
        assert plan.cost.total_cost > 0

    def test_bad_sql(self, duckdb_backend: DuckDBBackend) -> None:
        with pytest.raises(BackendError):
            _ = duckdb_backend.execute("SELECT * FROM missing", ExecutionHandle("v", "t"))

    def test_cancel_unknown_handle(self, duckdb_backend: DuckDBBackend) -> None:
        assert not duckdb_backend.cancel(ExecutionHandle("v", "t"))

    def test_cancel_running_query(self, duckdb_backend: DuckDBBackend) -> None:
        handle = ExecutionHandle("columnstore", "runaway")
        errors = []
        sql = "SELECT SUM(a.range * b.range) FROM range(100000000) a, range(100000) b"

        def target() -> None:
            try:
                _ = duckdb_backend.execute(sql, handle)
            except BackendError as e:
                errors.append(e)

        thread = threading.Thread(target=target, daemon=True)
        thread.start()
        for _ in range(500):
            _ = duckdb_backend.cancel(handle)
            thread.join(0.02)
            if not thread.is_alive():
                break

        assert not thread.is_alive()
        assert len(errors) == 1
        assert isinstance(errors[0], QueryCancelledError)


class TestRunBenchmarkDuckDB:
    """End-to-end run against a real DuckDB database."""

    def test_costs_reported(self, temp_dir: Path) -> None:
        config = parse_config(
            {
                "backend": "duckdb",
                "dataset": {"table": "fact_table", "generate": {"rows": 300, "seed": 3}},
                "variants": [
                    {"id": "clustered", "strategy": "clustered", "key_columns": list(FACT_KEY)},
                    {"id": "columnstore", "strategy": "columnstore"},
                    {"id": "heap", "strategy": "heap"},
                ],
                "baseline": "clustered",
                "retry_delay": 0,
            }
        )
        backend = get_backend("duckdb", temp_dir / "bench.duckdb")
        with HarnessContext(config, backend) as ctx:
            result = run_benchmark(ctx)

        assert [f.variant_id for f in result.failures] == ["heap"]
        assert len(result.records) == 2 * len(QueryCatalog())
        for row in result.aggregation.rows:
            if row.template_id in ("full_scan", "ordered_scan"):
                (comparison,) = row.comparisons
                assert row.baseline.total_cost is not None
                assert comparison.record.total_cost is not None
                assert comparison.cost_ratio is not None

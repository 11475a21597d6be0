# Copyright (c) Syntropy Systems
"""Tests for benchmark configuration loading."""

from pathlib import Path

import pytest
import yaml

from tablebench.config import BenchConfig, find_bench_dir, load_config, parse_config
from tablebench.errors import ConfigurationError

VALID = {
    "variants": [
        {"id": "heap", "strategy": "heap"},
        {"id": "clustered", "strategy": "clustered", "key_columns": ["payment_key"]},
    ],
    "baseline": "clustered",
}


class TestParseConfig:
    """Tests for parse_config."""

    def test_defaults(self) -> None:
        config = parse_config(VALID)
        assert isinstance(config, BenchConfig)
        assert config.backend == "sqlite"
        assert config.dataset.table == "fact_table"
        assert config.retries == 2
        assert config.on_timeout == "cancel"
        assert config.timeout is None
        assert config.parallel is False
        assert config.queries == []

    def test_baseline_must_be_declared(self) -> None:
        with pytest.raises(ConfigurationError, match="Baseline 'columnstore'"):
            _ = parse_config({**VALID, "baseline": "columnstore"})

    def test_duplicate_variant_ids(self) -> None:
        data = {
            "variants": [
                {"id": "heap", "strategy": "heap"},
                {"id": "heap", "strategy": "heap"},
            ],
            "baseline": "heap",
        }
        with pytest.raises(ConfigurationError, match="Duplicate variant ids: heap"):
            _ = parse_config(data)

    def test_unknown_strategy(self) -> None:
        data = {"variants": [{"id": "v", "strategy": "foo"}], "baseline": "v"}
        with pytest.raises(ConfigurationError, match="variants.0.strategy"):
            _ = parse_config(data)

    def test_clustered_requires_key_columns(self) -> None:
        data = {"variants": [{"id": "c", "strategy": "clustered"}], "baseline": "c"}
        with pytest.raises(ConfigurationError, match="requires key_columns"):
            _ = parse_config(data)

    def test_custom_create_sql_placeholders(self) -> None:
        data = {
            "variants": [
                {
                    "id": "v",
                    "strategy": "custom",
                    "create_sql": "CREATE TABLE {table.foo} AS SELECT * FROM {source}",
                }
            ],
            "baseline": "v",
        }
        with pytest.raises(ConfigurationError, match="Unsupported placeholder"):
            _ = parse_config(data)

    def test_indexes(self) -> None:
        data = {
            "variants": [
                {
                    "id": "indexed",
                    "strategy": "clustered",
                    "key_columns": ["payment_key"],
                    "indexes": [["store_key"], ["time_key", "item_key"]],
                }
            ],
            "baseline": "indexed",
        }
        (variant,) = parse_config(data).variants
        assert variant.indexes == (("store_key",), ("time_key", "item_key"))

    def test_negative_retries(self) -> None:
        with pytest.raises(ConfigurationError, match="retries"):
            _ = parse_config({**VALID, "retries": -1})

    def test_not_a_mapping(self) -> None:
        with pytest.raises(ConfigurationError, match="mapping"):
            _ = parse_config(["heap"])

    def test_custom_queries(self) -> None:
        data = {
            **VALID,
            "queries": [{"id": "count", "sql": "SELECT COUNT(*) FROM {table}"}],
        }
        config = parse_config(data)
        assert [q.id for q in config.queries] == ["count"]


class TestLoadConfig:
    """Tests for load_config and path helpers."""

    def test_load_yaml(self, temp_dir: Path) -> None:
        path = temp_dir / "bench.yaml"
        path.write_text(yaml.dump({**VALID, "timeout": 30}))
        config = load_config(path)
        assert config.timeout == 30

    def test_invalid_yaml(self, temp_dir: Path) -> None:
        path = temp_dir / "bench.yaml"
        path.write_text("variants: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            _ = load_config(path)

    def test_missing_file(self, temp_dir: Path) -> None:
        with pytest.raises(ConfigurationError, match="Cannot read"):
            _ = load_config(temp_dir / "missing.yaml")

    def test_resolve_database_relative(self, temp_dir: Path) -> None:
        config = parse_config(VALID)
        assert config.resolve_database(temp_dir) == temp_dir / "bench.db"

    def test_resolve_database_memory(self, temp_dir: Path) -> None:
        config = parse_config({**VALID, "database": ":memory:"})
        assert config.resolve_database(temp_dir) == ":memory:"

    def test_find_bench_dir(self, bench_project: Path) -> None:
        nested = bench_project / "a" / "b"
        nested.mkdir(parents=True)
        assert find_bench_dir(nested) == (bench_project / ".tablebench").resolve()

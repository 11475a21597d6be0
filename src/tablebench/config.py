# Copyright (c) Syntropy Systems
"""Configuration management for tablebench."""
from __future__ import annotations

from pathlib import Path
from typing import Literal, cast

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from typing_extensions import Self

from tablebench.errors import ConfigurationError
from tablebench.identifiers import validate_identifier
from tablebench.models.base import BenchBaseModel
from tablebench.models.bench import QueryTemplate, VariantSpec

BENCH_DIR_NAME = ".tablebench"
CONFIG_FILE_NAME = "config.yaml"
RESULTS_DB_NAME = "results.db"


class GenerateSpec(BenchBaseModel):
    """Synthetic fact table parameters."""

    rows: int = Field(default=100_000, gt=0)
    seed: int = 42


class DatasetSpec(BenchBaseModel):
    """Where the logical dataset lives."""

    table: str = "fact_table"
    generate: GenerateSpec | None = None

    @field_validator("table")
    @classmethod
    def _check_table(cls, value: str) -> str:
        return validate_identifier(value, "dataset table")


class BenchConfig(BenchBaseModel):
    """Configuration for a benchmark run."""

    database: str = "bench.db"
    backend: str = "sqlite"
    dataset: DatasetSpec = Field(default_factory=DatasetSpec)
    variants: list[VariantSpec] = Field(min_length=1)
    baseline: str

    # Global time budget for all queries (seconds)
    timeout: float | None = Field(default=None, gt=0)

    # Extra attempts after a transient failure, with a fixed delay
    retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)

    parallel: bool = False
    on_timeout: Literal["cancel", "complete"] = "cancel"
    keep_variants: bool = False

    # Replaces the default query catalog when non-empty
    queries: list[QueryTemplate] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_variants(self) -> Self:
        ids = [variant.id for variant in self.variants]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            msg = f"Duplicate variant ids: {', '.join(duplicates)}"
            raise ValueError(msg)
        if self.baseline not in ids:
            msg = f"Baseline '{self.baseline}' is not a declared variant"
            raise ValueError(msg)
        return self

    def resolve_database(self, base_dir: Path) -> Path | str:
        """Resolve the database path relative to the config file."""
        if self.database == ":memory:":
            return self.database
        path = Path(self.database).expanduser()
        if not path.is_absolute():
            path = base_dir / path
        return path


def parse_config(data: object) -> BenchConfig:
    """Validate a loaded mapping, raising ConfigurationError on problems."""
    if not isinstance(data, dict):
        msg = "Benchmark config must be a mapping"
        raise ConfigurationError(msg)
    try:
        return BenchConfig.model_validate(cast("dict[str, object]", data))
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e)) from e


def load_config(path: Path) -> BenchConfig:
    """Load benchmark configuration from a YAML file."""
    try:
        with path.open() as f:
            data = cast("object", yaml.safe_load(f) or {})
    except OSError as e:
        msg = f"Cannot read config {path}: {e}"
        raise ConfigurationError(msg) from e
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in {path}: {e}"
        raise ConfigurationError(msg) from e
    return parse_config(data)


def _format_validation_error(error: ValidationError) -> str:
    lines = ["Invalid benchmark config:"]
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"  {location}: {item['msg']}")
    return "\n".join(lines)


def find_bench_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .tablebench directory by walking up from start_path.

    Returns None if no .tablebench directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        bench_dir = current / BENCH_DIR_NAME
        if bench_dir.is_dir():
            return bench_dir
        current = current.parent

    # Check root
    bench_dir = current / BENCH_DIR_NAME
    if bench_dir.is_dir():
        return bench_dir

    return None


def require_bench_dir() -> Path:
    """Get .tablebench directory or raise an error if not found."""
    bench_dir = find_bench_dir()
    if bench_dir is None:
        msg = "No .tablebench directory found. Run 'tablebench init' first."
        raise RuntimeError(msg)
    return bench_dir


def get_config_path(bench_dir: Path | None = None) -> Path:
    """Get the path to the project's benchmark config."""
    if bench_dir is None:
        bench_dir = require_bench_dir()
    return bench_dir / CONFIG_FILE_NAME


def get_results_db_path(bench_dir: Path | None = None) -> Path:
    """Get the path to the results database."""
    if bench_dir is None:
        bench_dir = require_bench_dir()
    return bench_dir / RESULTS_DB_NAME


def resolve_config_path(path: Path | None = None) -> Path:
    """Use an explicit config file, else the project's config."""
    if path is not None:
        return path
    return get_config_path()

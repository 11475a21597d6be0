# Copyright (c) Syntropy Systems
"""Pydantic models for variants, query templates, runs and comparisons."""

from __future__ import annotations

from string import Formatter
from typing import Literal

from pydantic import Field, field_validator, model_validator
from typing_extensions import Self

from tablebench.identifiers import quote_identifier, validate_identifier

from .base import FrozenModel

Strategy = Literal["heap", "clustered", "columnstore", "custom"]
SUPPORTED_STRATEGIES: frozenset[str] = frozenset(
    {"heap", "clustered", "columnstore", "custom"}
)

FailureKind = Literal["provisioning", "execution", "timeout"]

TABLE_FIELD = "table"
SOURCE_FIELD = "source"


def _placeholder_text(name: str, format_spec: str, conversion: str | None) -> str:
    text = name
    if conversion is not None:
        text += "!" + conversion
    if format_spec:
        text += ":" + format_spec
    return "{" + text + "}"


def placeholder_fields(template: str, allowed: frozenset[str]) -> list[str]:
    """Names of the replacement fields in template, in order.

    Only bare fields from allowed are accepted: attribute or index access,
    conversions and format specs raise ValueError.
    """
    names: list[str] = []
    for _, name, format_spec, conversion in Formatter().parse(template):
        if name is None:
            continue
        if name not in allowed or conversion is not None or format_spec:
            expected = " and ".join("{" + field + "}" for field in sorted(allowed))
            placeholder = _placeholder_text(name, format_spec or "", conversion)
            msg = f"Unsupported placeholder {placeholder}: use only {expected}"
            raise ValueError(msg)
        names.append(name)
    return names


class VariantSpec(FrozenModel):
    """How to materialize one physical copy of the dataset."""

    id: str
    strategy: Strategy
    key_columns: tuple[str, ...] = ()
    # Secondary (nonclustered) indexes, one tuple of columns each
    indexes: tuple[tuple[str, ...], ...] = ()
    # Statement(s) for the custom strategy; {table} and {source} are
    # replaced by quoted identifiers.
    create_sql: str | None = None

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        return validate_identifier(value, "variant id")

    @field_validator("key_columns")
    @classmethod
    def _check_key_columns(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for column in value:
            _ = validate_identifier(column, "key column")
        if len(set(value)) != len(value):
            msg = "key_columns must not repeat a column"
            raise ValueError(msg)
        return value

    @field_validator("indexes")
    @classmethod
    def _check_indexes(
        cls, value: tuple[tuple[str, ...], ...]
    ) -> tuple[tuple[str, ...], ...]:
        for columns in value:
            if not columns:
                msg = "an index needs at least one column"
                raise ValueError(msg)
            for column in columns:
                _ = validate_identifier(column, "index column")
        if len(set(value)) != len(value):
            msg = "indexes must not repeat an index"
            raise ValueError(msg)
        return value

    @field_validator("create_sql")
    @classmethod
    def _check_create_sql(cls, value: str | None) -> str | None:
        if value is not None:
            fields = placeholder_fields(value, frozenset({TABLE_FIELD, SOURCE_FIELD}))
            if TABLE_FIELD not in fields:
                msg = "create_sql must create the variant through {table}"
                raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _check_strategy_options(self) -> Self:
        if self.strategy == "clustered" and not self.key_columns:
            msg = f"Variant '{self.id}': clustered strategy requires key_columns"
            raise ValueError(msg)
        if self.strategy == "heap" and self.key_columns:
            msg = f"Variant '{self.id}': heap strategy takes no key_columns"
            raise ValueError(msg)
        if self.strategy == "custom" and not self.create_sql:
            msg = f"Variant '{self.id}': custom strategy requires create_sql"
            raise ValueError(msg)
        if self.strategy != "custom" and self.create_sql:
            msg = f"Variant '{self.id}': create_sql is only valid for custom strategy"
            raise ValueError(msg)
        if self.strategy == "custom" and self.indexes:
            msg = f"Variant '{self.id}': custom strategy creates its indexes in create_sql"
            raise ValueError(msg)
        return self


class Variant(FrozenModel):
    """A materialized physical copy of the dataset."""

    id: str
    strategy: Strategy
    physical_name: str
    source: str
    key_columns: tuple[str, ...] = ()
    row_count: int | None = None


class QueryTemplate(FrozenModel):
    """A named query with a single placeholder for the variant's table."""

    id: str
    sql: str
    description: str = ""
    max_rows: int | None = Field(default=None, ge=0)

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        return validate_identifier(value, "query id")

    @field_validator("sql")
    @classmethod
    def _check_placeholder(cls, value: str) -> str:
        if not placeholder_fields(value, frozenset({TABLE_FIELD})):
            msg = "Query SQL must reference the variant only through {table}"
            raise ValueError(msg)
        return value

    def realize(self, physical_name: str) -> str:
        """Return executable SQL for the given physical table."""
        return self.sql.format(**{TABLE_FIELD: quote_identifier(physical_name)})


class CostBreakdown(FrozenModel):
    """Optimizer cost figures reported by the engine."""

    cpu_cost: float | None = None
    io_cost: float | None = None
    total_cost: float | None = None


class QueryPlan(FrozenModel):
    """Plan operators and costs for one query."""

    cost: CostBreakdown | None = None
    operations: tuple[str, ...] = ()


class RunRecord(FrozenModel):
    """Outcome of executing one template against one variant."""

    variant_id: str
    template_id: str
    duration_seconds: float = Field(ge=0)
    row_count: int = Field(ge=0)
    cost: CostBreakdown | None = None
    plan: tuple[str, ...] = ()
    attempts: int = Field(default=1, ge=1)
    started_at: str | None = None

    @property
    def total_cost(self) -> float | None:
        """Total cost if the engine reported one."""
        if self.cost is None:
            return None
        return self.cost.total_cost


class RunFailure(FrozenModel):
    """A (variant, template) pair with no usable result."""

    variant_id: str
    template_id: str | None = None  # None: the whole variant is missing
    kind: FailureKind
    reason: str
    attempts: int = 0


class VariantComparison(FrozenModel):
    """Ratios of one variant against the baseline.

    Ratios are baseline / variant, so values above 1 mean the variant is
    faster (or cheaper) than the baseline.
    """

    variant_id: str
    record: RunRecord
    duration_ratio: float | None = None
    cost_ratio: float | None = None


class ComparisonRow(FrozenModel):
    """All variants' results for one query template."""

    template_id: str
    baseline_id: str
    records: dict[str, RunRecord]
    comparisons: tuple[VariantComparison, ...] = ()

    @model_validator(mode="after")
    def _check_records(self) -> Self:
        if self.baseline_id not in self.records:
            msg = f"Baseline '{self.baseline_id}' has no record for '{self.template_id}'"
            raise ValueError(msg)
        for variant_id, record in self.records.items():
            if record.template_id != self.template_id:
                msg = (
                    f"Record for variant '{variant_id}' belongs to template "
                    f"'{record.template_id}', not '{self.template_id}'"
                )
                raise ValueError(msg)
        return self

    @property
    def baseline(self) -> RunRecord:
        """The baseline variant's record."""
        return self.records[self.baseline_id]


class AggregationWarning(FrozenModel):
    """A template that could not be compared."""

    template_id: str
    message: str


class AggregationResult(FrozenModel):
    """Comparison rows plus whatever could not be compared."""

    baseline_id: str
    rows: tuple[ComparisonRow, ...] = ()
    warnings: tuple[AggregationWarning, ...] = ()

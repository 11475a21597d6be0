# Copyright (c) Syntropy Systems
"""Metrics aggregation: compare every variant against the baseline."""
from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, NamedTuple

from tablebench.errors import ConfigurationError
from tablebench.models.bench import (
    AggregationResult,
    AggregationWarning,
    ComparisonRow,
    VariantComparison,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from tablebench.models.bench import RunRecord


class Impact(NamedTuple):
    """A ratio restated as a factor >= 1 and a direction."""

    factor: float
    better: bool


def ratio(baseline_value: float | None, variant_value: float | None) -> float | None:
    """baseline / variant, or None when undefined."""
    if baseline_value is None or variant_value is None:
        return None
    if variant_value == 0:
        return None
    return baseline_value / variant_value


def impact(value: float | None) -> Impact | None:
    """Restate a baseline/variant ratio as "Nx faster" or "Nx slower".

    A ratio of 0.2 means the variant took five times as long as the
    baseline: Impact(factor=5.0, better=False).
    """
    if value is None or value <= 0:
        return None
    if value >= 1:
        return Impact(value, better=True)
    return Impact(1 / value, better=False)


def compare(record: RunRecord, baseline: RunRecord) -> VariantComparison:
    """Ratios of one record against the baseline record."""
    return VariantComparison(
        variant_id=record.variant_id,
        record=record,
        duration_ratio=ratio(baseline.duration_seconds, record.duration_seconds),
        cost_ratio=ratio(baseline.total_cost, record.total_cost),
    )


def aggregate(
    records: Iterable[RunRecord],
    baseline_id: str,
    *,
    template_order: Sequence[str] | None = None,
    variant_order: Sequence[str] | None = None,
) -> AggregationResult:
    """Group records by template and compare each group with the baseline.

    Templates without a baseline record are skipped with a warning. Rows
    follow template_order (unknown templates last, in first-seen order);
    variants inside a row follow variant_order with the baseline first.
    If a template has several records for one variant, the last one wins.
    """
    if not baseline_id:
        msg = "A baseline variant id is required"
        raise ConfigurationError(msg)

    groups: defaultdict[str, dict[str, RunRecord]] = defaultdict(dict)
    for record in records:
        groups[record.template_id][record.variant_id] = record

    ordered_templates = [t for t in (template_order or ()) if t in groups]
    ordered_templates += [t for t in groups if t not in ordered_templates]

    rows: list[ComparisonRow] = []
    warnings: list[AggregationWarning] = []

    for template_id in ordered_templates:
        group = groups[template_id]
        if baseline_id not in group:
            present = ", ".join(sorted(group))
            warnings.append(
                AggregationWarning(
                    template_id=template_id,
                    message=(
                        f"baseline '{baseline_id}' has no result "
                        f"(present: {present})"
                    ),
                )
            )
            continue

        ordered = _order_variants(group, baseline_id, variant_order)
        baseline = group[baseline_id]
        rows.append(
            ComparisonRow(
                template_id=template_id,
                baseline_id=baseline_id,
                records={variant_id: group[variant_id] for variant_id in ordered},
                comparisons=tuple(
                    compare(group[variant_id], baseline)
                    for variant_id in ordered
                    if variant_id != baseline_id
                ),
            )
        )

    return AggregationResult(
        baseline_id=baseline_id,
        rows=tuple(rows),
        warnings=tuple(warnings),
    )


def _order_variants(
    group: dict[str, RunRecord],
    baseline_id: str,
    variant_order: Sequence[str] | None,
) -> list[str]:
    ordered = [baseline_id]
    for variant_id in variant_order or ():
        if variant_id in group and variant_id not in ordered:
            ordered.append(variant_id)
    ordered += [v for v in group if v not in ordered]
    return ordered

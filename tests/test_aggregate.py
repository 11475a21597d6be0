# Copyright (c) Syntropy Systems
"""Tests for metrics aggregation."""

import pytest
from pydantic import ValidationError

from tablebench.aggregate import aggregate, compare, impact, ratio
from tablebench.errors import ConfigurationError
from tablebench.models.bench import ComparisonRow, CostBreakdown, RunRecord


def record(variant_id, template_id="ordered_scan", duration=1.0, total_cost=None):
    cost = CostBreakdown(total_cost=total_cost) if total_cost is not None else None
    return RunRecord(
        variant_id=variant_id,
        template_id=template_id,
        duration_seconds=duration,
        row_count=10,
        cost=cost,
    )


class TestRatios:
    """Tests for ratio and impact."""

    def test_ratio_is_baseline_over_variant(self) -> None:
        assert ratio(2.0, 1.0) == 2.0
        assert ratio(1.0, 4.0) == 0.25

    def test_ratio_undefined(self) -> None:
        assert ratio(None, 1.0) is None
        assert ratio(1.0, None) is None
        assert ratio(1.0, 0) is None

    def test_impact_direction(self) -> None:
        assert impact(2.0) == (2.0, True)
        slower = impact(0.25)
        assert slower is not None
        assert slower.factor == pytest.approx(4.0)
        assert not slower.better
        assert impact(None) is None
        assert impact(0.0) is None

    def test_symmetry(self) -> None:
        a = record("a", duration=1.7, total_cost=3.0)
        b = record("b", duration=0.4, total_cost=0.5)
        ab = compare(a, b)
        ba = compare(b, a)
        assert ab.duration_ratio * ba.duration_ratio == pytest.approx(1.0)
        assert ab.cost_ratio * ba.cost_ratio == pytest.approx(1.0)


class TestAggregate:
    """Tests for aggregate."""

    def test_heap_versus_clustered(self) -> None:
        records = [
            record("clustered", duration=1.161, total_cost=0.0306),
            record("heap", duration=5.909, total_cost=1.2727),
        ]
        result = aggregate(records, "clustered")

        assert len(result.rows) == 1
        row = result.rows[0]
        assert row.template_id == "ordered_scan"
        assert list(row.records) == ["clustered", "heap"]
        (heap,) = row.comparisons
        assert heap.variant_id == "heap"
        assert impact(heap.duration_ratio).factor == pytest.approx(5.09, abs=0.005)
        assert not impact(heap.duration_ratio).better
        assert impact(heap.cost_ratio).factor == pytest.approx(41.59, abs=0.005)
        assert not impact(heap.cost_ratio).better

    def test_one_row_per_template(self) -> None:
        records = [
            record(variant, template)
            for template in ("t1", "t2", "t3")
            for variant in ("heap", "clustered")
        ]
        result = aggregate(records, "clustered", template_order=["t3", "t1", "t2"])
        assert [row.template_id for row in result.rows] == ["t3", "t1", "t2"]
        assert result.warnings == ()

    def test_baseline_first_then_variant_order(self) -> None:
        records = [record("c"), record("a"), record("base"), record("b")]
        result = aggregate(records, "base", variant_order=["a", "b", "base", "c"])
        assert list(result.rows[0].records) == ["base", "a", "b", "c"]
        assert [c.variant_id for c in result.rows[0].comparisons] == ["a", "b", "c"]

    def test_missing_baseline_warns(self) -> None:
        records = [
            record("clustered", "t1"),
            record("heap", "t1"),
            record("heap", "t2"),
        ]
        result = aggregate(records, "clustered")

        assert [row.template_id for row in result.rows] == ["t1"]
        assert len(result.warnings) == 1
        assert result.warnings[0].template_id == "t2"
        assert "clustered" in result.warnings[0].message

    def test_baseline_only(self) -> None:
        result = aggregate([record("clustered")], "clustered")
        assert result.rows[0].comparisons == ()

    def test_no_costs(self) -> None:
        result = aggregate([record("base"), record("v", duration=2.0)], "base")
        comparison = result.rows[0].comparisons[0]
        assert comparison.cost_ratio is None
        assert comparison.duration_ratio == 0.5

    def test_zero_duration_gives_no_ratio(self) -> None:
        result = aggregate([record("base"), record("v", duration=0.0)], "base")
        assert result.rows[0].comparisons[0].duration_ratio is None

    def test_last_record_wins(self) -> None:
        records = [record("base"), record("v", duration=4.0), record("v", duration=2.0)]
        result = aggregate(records, "base")
        assert result.rows[0].records["v"].duration_seconds == 2.0

    def test_empty_baseline_id(self) -> None:
        with pytest.raises(ConfigurationError):
            _ = aggregate([record("a")], "")

    def test_no_records(self) -> None:
        result = aggregate([], "base")
        assert result.rows == ()
        assert result.warnings == ()


class TestComparisonRow:
    """Tests for ComparisonRow invariants."""

    def test_requires_baseline_record(self) -> None:
        with pytest.raises(ValidationError, match="Baseline"):
            _ = ComparisonRow(
                template_id="ordered_scan",
                baseline_id="clustered",
                records={"heap": record("heap")},
            )

    def test_records_share_template(self) -> None:
        with pytest.raises(ValidationError, match="belongs to template"):
            _ = ComparisonRow(
                template_id="ordered_scan",
                baseline_id="clustered",
                records={
                    "clustered": record("clustered"),
                    "heap": record("heap", template_id="full_scan"),
                },
            )

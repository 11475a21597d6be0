# Copyright (c) Syntropy Systems
"""Tests for report rendering."""

import json

import pytest

from tablebench.aggregate import aggregate
from tablebench.models.bench import CostBreakdown, RunFailure, RunRecord
from tablebench.report import render, summarize


@pytest.fixture
def aggregation():
    records = [
        RunRecord(
            variant_id="clustered",
            template_id="ordered_scan",
            duration_seconds=1.161,
            row_count=1000,
            cost=CostBreakdown(cpu_cost=0.02, io_cost=0.0106, total_cost=0.0306),
            plan=("SCAN fact_table__clustered",),
        ),
        RunRecord(
            variant_id="heap",
            template_id="ordered_scan",
            duration_seconds=5.909,
            row_count=1000,
            cost=CostBreakdown(cpu_cost=0.6, io_cost=0.6727, total_cost=1.2727),
            plan=("SCAN fact_table__heap", "USE TEMP B-TREE FOR ORDER BY"),
        ),
        RunRecord(
            variant_id="clustered",
            template_id="full_scan",
            duration_seconds=0.5,
            row_count=1000,
        ),
        RunRecord(
            variant_id="heap",
            template_id="full_scan",
            duration_seconds=0.25,
            row_count=1000,
        ),
    ]
    return aggregate(records, "clustered", template_order=["ordered_scan", "full_scan"])


FAILURES = [
    RunFailure(
        variant_id="columnstore",
        kind="provisioning",
        reason="strategy 'columnstore' is not supported by the sqlite backend",
    ),
]


class TestSummarize:
    """Tests for the per-row highest impact line."""

    def test_cost_preferred(self, aggregation) -> None:
        line = summarize(aggregation.rows[0])
        assert line == (
            "Highest impact: heap is 41.59x costlier than clustered (total cost)"
        )

    def test_duration_without_costs(self, aggregation) -> None:
        line = summarize(aggregation.rows[1])
        assert line == "Highest impact: heap is 2.00x faster than clustered (duration)"


class TestRender:
    """Tests for render."""

    def test_text(self, aggregation) -> None:
        text = render(aggregation, failures=FAILURES)

        assert "Storage strategy comparison" in text
        assert "ordered_scan" in text
        assert "(baseline)" in text
        assert "5.909s" in text
        assert "Highest impact: heap is 41.59x costlier" in text
        assert "Missing results" in text
        assert "columnstore / (all queries): provisioning" in text

    def test_text_not_applicable_costs(self, aggregation) -> None:
        text = render(aggregation)
        assert "n/a" in text
        assert "None: every (variant, query) pair completed." in text

    def test_markdown(self, aggregation) -> None:
        text = render(aggregation, failures=FAILURES, fmt="markdown", title="Nightly")

        assert text.startswith("# Nightly\n")
        assert "## ordered_scan" in text
        assert "| Metric | clustered (baseline) | heap |" in text
        assert "| Duration ratio | 1.00 | 0.20 |" in text
        assert "| Cost ratio | 1.00 | 0.02 |" in text
        assert "- columnstore / (all queries): provisioning" in text

    def test_json(self, aggregation) -> None:
        document = json.loads(render(aggregation, failures=FAILURES, fmt="json"))

        assert document["baseline_id"] == "clustered"
        assert [row["template_id"] for row in document["rows"]] == [
            "ordered_scan",
            "full_scan",
        ]
        assert document["failures"][0]["kind"] == "provisioning"

    @pytest.mark.parametrize("fmt", ["text", "markdown", "json"])
    def test_idempotent(self, aggregation, fmt) -> None:
        first = render(aggregation, failures=FAILURES, fmt=fmt)
        second = render(aggregation, failures=FAILURES, fmt=fmt)
        assert first == second

    def test_unknown_format(self, aggregation) -> None:
        with pytest.raises(ValueError, match="Unknown report format"):
            _ = render(aggregation, fmt="html")

    def test_warnings_listed(self) -> None:
        records = [
            RunRecord(
                variant_id="heap",
                template_id="full_scan",
                duration_seconds=1.0,
                row_count=1,
            )
        ]
        text = render(aggregate(records, "clustered"), fmt="markdown")
        assert "(comparison) / full_scan: baseline 'clustered' has no result" in text

    def test_text_keeps_long_variant_ids_whole(self) -> None:
        variant_ids = [f"clustered_by_customer_key_v{n}" for n in range(6)]
        records = [
            RunRecord(
                variant_id=variant_id,
                template_id="ordered_scan",
                duration_seconds=1.0 + n,
                row_count=1000,
                plan=("SCAN fact_table__" + variant_id, "USE TEMP B-TREE FOR ORDER BY"),
            )
            for n, variant_id in enumerate(variant_ids)
        ]
        text = render(aggregate(records, variant_ids[0]), width=80)

        assert "…" not in text
        assert f"{variant_ids[0]} (baseline)" in text
        for variant_id in variant_ids:
            assert variant_id in text

# Copyright (c) Syntropy Systems
"""Report rendering for aggregated comparisons."""
from __future__ import annotations

from io import StringIO
from typing import TYPE_CHECKING, Literal

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tablebench.aggregate import Impact, impact
from tablebench.models.bench import (
    AggregationResult,
    AggregationWarning,
    ComparisonRow,
    RunFailure,
    VariantComparison,
)
from tablebench.models.base import FrozenModel

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tablebench.models.bench import CostBreakdown, RunRecord

ReportFormat = Literal["text", "markdown", "json"]
REPORT_FORMATS: tuple[str, ...] = ("text", "markdown", "json")
NA = "n/a"
DEFAULT_WIDTH = 100
DEFAULT_TITLE = "Storage strategy comparison"


class ReportDocument(FrozenModel):
    """Everything a report shows, in serializable form."""

    title: str
    baseline_id: str
    rows: tuple[ComparisonRow, ...] = ()
    warnings: tuple[AggregationWarning, ...] = ()
    failures: tuple[RunFailure, ...] = ()


def fmt_ratio(value: float | None) -> str:
    return NA if value is None else f"{value:.2f}"


def fmt_seconds(value: float) -> str:
    return f"{value:.3f}s"


def fmt_cost(value: float | None) -> str:
    return NA if value is None else f"{value:.4f}"


def _cost_field(cost: CostBreakdown | None, name: str) -> float | None:
    if cost is None:
        return None
    return getattr(cost, name)


def _strongest(
    row: ComparisonRow, attr: str
) -> tuple[VariantComparison, Impact] | None:
    best: tuple[VariantComparison, Impact] | None = None
    for comparison in row.comparisons:
        effect = impact(getattr(comparison, attr))
        if effect is None:
            continue
        if best is None or effect.factor > best[1].factor:
            best = (comparison, effect)
    return best


def summarize(row: ComparisonRow) -> str:
    """One line naming the largest difference from the baseline in row.

    Cost ratios win over duration ratios when the engine reported costs.
    """
    strongest = _strongest(row, "cost_ratio")
    if strongest is not None:
        comparison, effect = strongest
        direction = "cheaper" if effect.better else "costlier"
        return (
            f"Highest impact: {comparison.variant_id} is {effect.factor:.2f}x "
            f"{direction} than {row.baseline_id} (total cost)"
        )

    strongest = _strongest(row, "duration_ratio")
    if strongest is not None:
        comparison, effect = strongest
        direction = "faster" if effect.better else "slower"
        return (
            f"Highest impact: {comparison.variant_id} is {effect.factor:.2f}x "
            f"{direction} than {row.baseline_id} (duration)"
        )

    if not row.comparisons:
        return f"Only the baseline ({row.baseline_id}) has a result."
    return "No comparable metrics."


def _metric_rows(row: ComparisonRow) -> list[tuple[str, list[str]]]:
    """(label, one value per variant) in column order."""
    records: list[RunRecord] = list(row.records.values())
    ratios = {c.variant_id: c for c in row.comparisons}

    def ratio_cells(attr: str) -> list[str]:
        cells: list[str] = []
        for record in records:
            if record.variant_id == row.baseline_id:
                cells.append("1.00")
            else:
                cells.append(fmt_ratio(getattr(ratios[record.variant_id], attr)))
        return cells

    return [
        ("Duration", [fmt_seconds(r.duration_seconds) for r in records]),
        ("Rows", [str(r.row_count) for r in records]),
        ("CPU cost", [fmt_cost(_cost_field(r.cost, "cpu_cost")) for r in records]),
        ("IO cost", [fmt_cost(_cost_field(r.cost, "io_cost")) for r in records]),
        ("Total cost", [fmt_cost(r.total_cost) for r in records]),
        ("Plan", [" -> ".join(r.plan) if r.plan else "-" for r in records]),
        ("Duration ratio", ratio_cells("duration_ratio")),
        ("Cost ratio", ratio_cells("cost_ratio")),
    ]


def _column_label(variant_id: str, baseline_id: str) -> str:
    return f"{variant_id} (baseline)" if variant_id == baseline_id else variant_id


def _missing_lines(
    failures: Sequence[RunFailure], warnings: Sequence[AggregationWarning]
) -> list[str]:
    lines: list[str] = []
    for failure in failures:
        template = failure.template_id or "(all queries)"
        attempts = f", {failure.attempts} attempt(s)" if failure.attempts else ""
        lines.append(
            f"{failure.variant_id} / {template}: {failure.kind}{attempts}: {failure.reason}"
        )
    for warning in warnings:
        lines.append(f"(comparison) / {warning.template_id}: {warning.message}")
    return lines


def _table_width(row: ComparisonRow) -> int:
    """Console width at which no cell of row's table is wrapped or truncated."""
    labels = ["Metric", *(_column_label(v, row.baseline_id) for v in row.records)]
    widths = [len(label) for label in labels]
    for label, cells in _metric_rows(row):
        for index, cell in enumerate([label, *cells]):
            widths[index] = max(widths[index], len(cell))
    # one space of padding each side and one border per column, plus the last
    return sum(widths) + 3 * len(widths) + 1


def _render_text(document: ReportDocument, width: int) -> str:
    buffer = StringIO()
    console = Console(
        file=buffer,
        width=max([width, *(_table_width(row) for row in document.rows)]),
        color_system=None,
        force_terminal=False,
        highlight=False,
        emoji=False,
    )
    console.print(f"[bold]{escape(document.title)}[/bold]")
    console.print(f"Baseline: {document.baseline_id}")
    console.print("Ratios are baseline / variant: above 1.00 the variant is faster or cheaper.")

    for row in document.rows:
        console.print()
        table = Table(title=row.template_id, show_header=True, header_style="bold")
        table.add_column("Metric", style="dim", no_wrap=True)
        for variant_id in row.records:
            table.add_column(
                _column_label(variant_id, row.baseline_id), justify="right", no_wrap=True
            )
        for label, cells in _metric_rows(row):
            table.add_row(label, *[escape(cell) for cell in cells])
        console.print(table)
        console.print(escape(summarize(row)))

    console.print()
    console.print("[bold]Missing results[/bold]")
    lines = _missing_lines(document.failures, document.warnings)
    if not lines:
        console.print("None: every (variant, query) pair completed.")
    for line in lines:
        console.print(f"  - {escape(line)}")
    return buffer.getvalue()


def _md_cell(value: str) -> str:
    return value.replace("|", "\\|")


def _render_markdown(document: ReportDocument) -> str:
    out: list[str] = [
        f"# {document.title}",
        "",
        f"Baseline: `{document.baseline_id}`. Ratios are baseline / variant: "
        "above 1.00 the variant is faster or cheaper.",
    ]
    for row in document.rows:
        labels = [_column_label(v, row.baseline_id) for v in row.records]
        out += [
            "",
            f"## {row.template_id}",
            "",
            "| Metric | " + " | ".join(labels) + " |",
            "|---|" + "---|" * len(labels),
        ]
        for label, cells in _metric_rows(row):
            out.append(f"| {label} | " + " | ".join(_md_cell(c) for c in cells) + " |")
        out += ["", summarize(row)]

    out += ["", "## Missing results", ""]
    lines = _missing_lines(document.failures, document.warnings)
    if not lines:
        out.append("None: every (variant, query) pair completed.")
    out += [f"- {line}" for line in lines]
    return "\n".join(out) + "\n"


def build_document(
    aggregation: AggregationResult,
    failures: Sequence[RunFailure] = (),
    title: str | None = None,
) -> ReportDocument:
    return ReportDocument(
        title=title or DEFAULT_TITLE,
        baseline_id=aggregation.baseline_id,
        rows=aggregation.rows,
        warnings=aggregation.warnings,
        failures=tuple(failures),
    )


def render(
    aggregation: AggregationResult,
    *,
    failures: Sequence[RunFailure] = (),
    fmt: ReportFormat = "text",
    title: str | None = None,
    width: int = DEFAULT_WIDTH,
) -> str:
    """Render comparison rows as a text, markdown or JSON document.

    Output depends only on the arguments: rows keep their order, variant
    columns keep the row's order (baseline first).
    """
    document = build_document(aggregation, failures, title)
    if fmt == "text":
        return _render_text(document, width)
    if fmt == "markdown":
        return _render_markdown(document)
    if fmt == "json":
        return document.model_dump_json(indent=2) + "\n"
    msg = f"Unknown report format '{fmt}' (choose from {', '.join(REPORT_FORMATS)})"
    raise ValueError(msg)

# Copyright (c) Syntropy Systems
"""Benchmark orchestration: provision, run, aggregate, tear down."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tablebench.aggregate import aggregate
from tablebench.catalog import QueryCatalog
from tablebench.dataset import generate_fact_table
from tablebench.db import complete_session, create_session, record_failure, record_run
from tablebench.models.bench import RunFailure
from tablebench.provision import DatasetProvisioner
from tablebench.report import render
from tablebench.runner import Deadline, ExecutionRunner
from tablebench.system_metrics import collect_host_info

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Callable
    from types import TracebackType

    from typing_extensions import Self

    from tablebench.backends import Backend
    from tablebench.config import BenchConfig
    from tablebench.models.bench import AggregationResult, RunRecord, Variant
    from tablebench.report import ReportFormat

logger = logging.getLogger(__name__)


class HarnessContext:
    """Everything one benchmark run shares: config, backend, time budget.

    Use as a context manager. The backend connection and the timeout
    watchdog are released on every exit path.
    """

    config: BenchConfig
    backend: Backend
    results_conn: sqlite3.Connection | None
    deadline: Deadline
    _timer: threading.Timer | None

    def __init__(
        self,
        config: BenchConfig,
        backend: Backend,
        results_conn: sqlite3.Connection | None = None,
    ) -> None:
        self.config = config
        self.backend = backend
        self.results_conn = results_conn
        self.deadline = Deadline()
        self._timer = None

    def __enter__(self) -> Self:
        self.deadline = Deadline(self.config.timeout)
        self.backend.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop_watchdog()
        self.backend.close()

    def start_watchdog(self, on_expire: Callable[[], object]) -> None:
        """Expire the deadline when the budget runs out.

        With ``on_timeout: cancel`` on_expire is called to interrupt
        in-flight queries; with ``complete`` they are left to finish.
        """
        remaining = self.deadline.remaining()
        if remaining is None or self._timer is not None:
            return

        def fire() -> None:
            logger.warning("Time budget of %ss exhausted", self.config.timeout)
            self.deadline.expire()
            if self.config.on_timeout == "cancel":
                _ = on_expire()

        self._timer = threading.Timer(remaining, fire)
        self._timer.daemon = True
        self._timer.start()

    def stop_watchdog(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


@dataclass
class BenchmarkResult:
    """Outcome of a benchmark run."""

    session_id: str | None
    variants: list[Variant]
    records: list[RunRecord]
    failures: list[RunFailure]
    aggregation: AggregationResult
    timed_out: bool = False
    template_ids: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.failures or self.aggregation.warnings:
            return "partial"
        return "completed"

    def render(self, fmt: ReportFormat = "text", title: str | None = None) -> str:
        return render(self.aggregation, failures=self.failures, fmt=fmt, title=title)


def prepare_dataset(ctx: HarnessContext) -> int:
    """Generate the synthetic dataset if configured and not already present."""
    dataset = ctx.config.dataset
    rows = ctx.backend.count_rows(dataset.table)
    spec = dataset.generate
    if spec is not None and rows != spec.rows:
        rows = generate_fact_table(ctx.backend, dataset.table, spec.rows, spec.seed)
    return rows


def run_benchmark(
    ctx: HarnessContext,
    catalog: QueryCatalog | None = None,
    name: str | None = None,
) -> BenchmarkResult:
    """Run the whole benchmark described by ctx.config.

    Only ConfigurationError escapes; every per-variant or per-query problem
    ends up in the result's failures. The time budget covers dataset
    preparation and provisioning as well as the queries: once it runs out
    during provisioning, every query is reported as a timeout.
    """
    config = ctx.config
    if catalog is None:
        catalog = QueryCatalog.from_config(config.queries)
    variant_order = [spec.id for spec in config.variants]

    runner = ExecutionRunner(
        ctx.backend,
        retries=config.retries,
        retry_delay=config.retry_delay,
        deadline=ctx.deadline,
        parallel=config.parallel,
    )
    ctx.start_watchdog(runner.cancel_in_flight)

    _ = prepare_dataset(ctx)

    provisioner = DatasetProvisioner(ctx.backend)
    provisioned = provisioner.provision(config.dataset.table, config.variants)

    failures: list[RunFailure] = [
        RunFailure(variant_id=error.variant_id, kind="provisioning", reason=error.reason)
        for error in provisioned.errors
    ]

    session_id = None
    if ctx.results_conn is not None:
        session_id = create_session(
            ctx.results_conn,
            baseline=config.baseline,
            variants=variant_order,
            templates=catalog.ids(),
            name=name,
            config=config.model_dump(mode="json"),
            host=collect_host_info().to_dict(),
        )

    try:
        batch = runner.run_all(provisioned.variants, catalog.all())
        ctx.stop_watchdog()
    except BaseException:
        if ctx.results_conn is not None and session_id is not None:
            complete_session(ctx.results_conn, session_id, "failed")
        raise
    finally:
        if not config.keep_variants:
            provisioner.teardown(provisioned.variants)

    failures.extend(batch.failures)
    aggregation = aggregate(
        batch.records,
        config.baseline,
        template_order=catalog.ids(),
        variant_order=variant_order,
    )
    for warning in aggregation.warnings:
        logger.warning("%s: %s", warning.template_id, warning.message)

    result = BenchmarkResult(
        session_id=session_id,
        variants=provisioned.variants,
        records=batch.records,
        failures=failures,
        aggregation=aggregation,
        timed_out=ctx.deadline.expired,
        template_ids=catalog.ids(),
    )

    if ctx.results_conn is not None and session_id is not None:
        for record in batch.records:
            _ = record_run(ctx.results_conn, session_id, record)
        for failure in failures:
            _ = record_failure(ctx.results_conn, session_id, failure)
        complete_session(ctx.results_conn, session_id, result.status)

    return result

# Copyright (c) Syntropy Systems
"""Execution runner: times each catalog query against each variant."""
from __future__ import annotations

import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from tablebench.backends import ExecutionHandle
from tablebench.errors import (
    BackendError,
    ExecutionError,
    QueryCancelledError,
    TransientBackendError,
)
from tablebench.models.bench import QueryPlan, RunFailure, RunRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Sequence

    from tablebench.backends import Backend
    from tablebench.models.bench import QueryTemplate, Variant

logger = logging.getLogger(__name__)


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Deadline:
    """Global time budget for a benchmark.

    ``seconds=None`` never expires on its own; ``expire()`` forces expiry.
    """

    seconds: float | None
    _clock: Callable[[], float]
    _expires_at: float | None
    _expired: threading.Event

    def __init__(
        self,
        seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.seconds = seconds
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds
        self._expired = threading.Event()

    def expire(self) -> None:
        self._expired.set()

    @property
    def expired(self) -> bool:
        if self._expired.is_set():
            return True
        if self._expires_at is not None and self._clock() >= self._expires_at:
            self._expired.set()
            return True
        return False

    def remaining(self) -> float | None:
        """Seconds left, or None for an unlimited budget."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())


class VariantClaims:
    """Exclusive per-variant locks so a variant never runs two queries at once."""

    _locks: dict[str, threading.Lock]
    _guard: threading.Lock

    def __init__(self) -> None:
        self._locks = {}
        self._guard = threading.Lock()

    @contextlib.contextmanager
    def claim(self, variant_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(variant_id, threading.Lock())
        with lock:
            yield

    def is_claimed(self, variant_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(variant_id)
        return lock is not None and lock.locked()


@dataclass
class RunBatch:
    """Records and failures from running a catalog."""

    records: list[RunRecord] = field(default_factory=list)
    failures: list[RunFailure] = field(default_factory=list)

    def extend(self, other: RunBatch) -> None:
        self.records.extend(other.records)
        self.failures.extend(other.failures)


class ExecutionRunner:
    """Runs query templates against variants through a backend.

    Features:
    - Wall time measured with a monotonic clock around the execute call only
    - Plan and cost requested separately, outside the timed section
    - Fixed-delay retries for transient backend failures
    - Per-variant exclusive claims; optional one-thread-per-variant mode
    - Cooperative stop when the deadline expires
    """

    backend: Backend
    retries: int
    retry_delay: float
    deadline: Deadline
    parallel: bool
    claims: VariantClaims
    _sleep: Callable[[float], None]
    _clock: Callable[[], float]
    _in_flight: dict[int, ExecutionHandle]
    _in_flight_lock: threading.Lock

    def __init__(
        self,
        backend: Backend,
        *,
        retries: int = 2,
        retry_delay: float = 1.0,
        deadline: Deadline | None = None,
        parallel: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        """Initialize a runner.

        Args:
            backend: Database collaborator to run queries on
            retries: Extra attempts after a transient failure
            retry_delay: Fixed pause between attempts (seconds)
            deadline: Global time budget shared with the harness
            parallel: Run distinct variants concurrently
            sleep: Pause function, replaceable in tests
            clock: Monotonic clock used for wall time

        """
        if retries < 0:
            msg = "retries must be >= 0"
            raise ValueError(msg)
        self.backend = backend
        self.retries = retries
        self.retry_delay = retry_delay
        self.deadline = deadline or Deadline()
        self.parallel = parallel
        self.claims = VariantClaims()
        self._sleep = sleep
        self._clock = clock
        self._in_flight = {}
        self._in_flight_lock = threading.Lock()

    # --- Single run ---

    def run(self, variant: Variant, template: QueryTemplate) -> RunRecord:
        """Execute one template against one variant.

        Raises ExecutionError when the query fails for good.
        """
        sql = template.realize(variant.physical_name)

        with self.claims.claim(variant.id):
            duration, row_count, attempts, started_at = self._execute_with_retry(
                variant, template, sql
            )
            plan = self._explain(variant, template, sql)

        if template.max_rows is not None and row_count > template.max_rows:
            reason = f"returned {row_count} rows, expected at most {template.max_rows}"
            raise ExecutionError(variant.id, template.id, reason, attempts)

        logger.info(
            "%s on %s: %.3fs, %d rows", template.id, variant.id, duration, row_count
        )
        return RunRecord(
            variant_id=variant.id,
            template_id=template.id,
            duration_seconds=duration,
            row_count=row_count,
            cost=plan.cost,
            plan=plan.operations,
            attempts=attempts,
            started_at=started_at,
        )

    def _execute_with_retry(
        self, variant: Variant, template: QueryTemplate, sql: str
    ) -> tuple[float, int, int, str]:
        attempt = 0
        while True:
            attempt += 1
            started_at = utcnow()
            try:
                duration, row_count = self._timed_execute(variant, template, sql)
            except TransientBackendError as e:
                logger.warning(
                    "Attempt %d/%d of %s on %s failed: %s",
                    attempt,
                    self.retries + 1,
                    template.id,
                    variant.id,
                    e,
                )
                if attempt > self.retries:
                    raise ExecutionError(variant.id, template.id, str(e), attempt) from e
                if self.deadline.expired:
                    reason = f"{e} (time budget exhausted before retry)"
                    raise ExecutionError(
                        variant.id, template.id, reason, attempt, cancelled=True
                    ) from e
                self._sleep(self.retry_delay)
                continue
            except QueryCancelledError as e:
                raise ExecutionError(
                    variant.id, template.id, f"cancelled: {e}", attempt, cancelled=True
                ) from e
            except BackendError as e:
                raise ExecutionError(variant.id, template.id, str(e), attempt) from e
            return duration, row_count, attempt, started_at

    def _timed_execute(
        self, variant: Variant, template: QueryTemplate, sql: str
    ) -> tuple[float, int]:
        handle = ExecutionHandle(variant_id=variant.id, template_id=template.id)
        with self._in_flight_lock:
            self._in_flight[handle.id] = handle
        try:
            start = self._clock()
            row_count = self.backend.execute(sql, handle)
            duration = self._clock() - start
        finally:
            with self._in_flight_lock:
                _ = self._in_flight.pop(handle.id, None)
        return duration, row_count

    def _explain(self, variant: Variant, template: QueryTemplate, sql: str) -> QueryPlan:
        try:
            return self.backend.explain(sql)
        except BackendError as e:
            logger.warning("No plan for %s on %s: %s", template.id, variant.id, e)
            return QueryPlan()

    # --- Cancellation ---

    def in_flight(self) -> list[ExecutionHandle]:
        with self._in_flight_lock:
            return list(self._in_flight.values())

    def cancel_in_flight(self) -> int:
        """Ask the backend to interrupt running queries. Returns how many were."""
        if not self.backend.supports_cancel:
            return 0
        cancelled = 0
        for handle in self.in_flight():
            if self.backend.cancel(handle):
                cancelled += 1
        return cancelled

    # --- Whole catalog ---

    def run_all(
        self,
        variants: Sequence[Variant],
        templates: Iterable[QueryTemplate],
    ) -> RunBatch:
        """Run every template against every variant.

        Failures are collected and the remaining pairs still run. Records
        come back in variant order, then template order.
        """
        templates = tuple(templates)
        if self.parallel and len(variants) > 1:
            return self._run_parallel(variants, templates)

        batch = RunBatch()
        for variant in variants:
            batch.extend(self._run_variant(variant, templates))
        return batch

    def _run_variant(
        self, variant: Variant, templates: tuple[QueryTemplate, ...]
    ) -> RunBatch:
        batch = RunBatch()
        for template in templates:
            if self.deadline.expired:
                batch.failures.append(
                    RunFailure(
                        variant_id=variant.id,
                        template_id=template.id,
                        kind="timeout",
                        reason="time budget exhausted before the query started",
                    )
                )
                continue
            try:
                batch.records.append(self.run(variant, template))
            except ExecutionError as e:
                logger.warning("%s", e)
                batch.failures.append(
                    RunFailure(
                        variant_id=e.variant_id,
                        template_id=e.template_id,
                        kind="timeout" if e.cancelled else "execution",
                        reason=e.reason,
                        attempts=e.attempts,
                    )
                )
        return batch

    def _run_parallel(
        self, variants: Sequence[Variant], templates: tuple[QueryTemplate, ...]
    ) -> RunBatch:
        results: dict[str, RunBatch] = {}
        errors: list[BaseException] = []
        lock = threading.Lock()

        def worker(variant: Variant) -> None:
            try:
                batch = self._run_variant(variant, templates)
            except BaseException as e:  # noqa: BLE001
                with lock:
                    errors.append(e)
                return
            with lock:
                results[variant.id] = batch

        threads = [
            threading.Thread(target=worker, args=(variant,), name=f"bench-{variant.id}")
            for variant in variants
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        if errors:
            raise errors[0]

        merged = RunBatch()
        for variant in variants:
            merged.extend(results[variant.id])
        return merged

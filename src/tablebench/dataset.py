# Copyright (c) Syntropy Systems
"""Synthetic fact table for benchmarks without a real dataset."""
from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from tablebench.backends import Backend

logger = logging.getLogger(__name__)

FACT_COLUMNS: list[tuple[str, str]] = [
    ("payment_key", "INTEGER"),
    ("customer_key", "INTEGER"),
    ("time_key", "INTEGER"),
    ("item_key", "INTEGER"),
    ("store_key", "INTEGER"),
    ("quantity", "INTEGER"),
    ("amount", "REAL"),
]

# Composite key that is unique in generated data
FACT_KEY = ("payment_key", "customer_key", "time_key", "item_key", "store_key")

PAYMENT_KEYS = 100
CUSTOMER_KEYS = 5000
TIME_KEYS = 1000
STORE_KEYS = 50


def iter_fact_rows(rows: int, seed: int = 42) -> Iterator[tuple[int, int, int, int, int, int, float]]:
    """Yield deterministic fact rows in no particular key order.

    item_key is the row number, so the five-column key never repeats.
    """
    rng = random.Random(seed)  # noqa: S311
    for i in range(rows):
        yield (
            rng.randint(1, PAYMENT_KEYS),
            rng.randint(1, CUSTOMER_KEYS),
            rng.randint(1, TIME_KEYS),
            i + 1,
            rng.randint(1, STORE_KEYS),
            rng.randint(1, 10),
            round(rng.uniform(1.0, 500.0), 2),
        )


def generate_fact_table(backend: Backend, table: str, rows: int, seed: int = 42) -> int:
    """Create (or replace) table with synthetic fact rows."""
    logger.info("Generating %d fact rows into %s (seed=%d)", rows, table, seed)
    return backend.load_table(table, FACT_COLUMNS, iter_fact_rows(rows, seed))

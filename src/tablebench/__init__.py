"""
tablebench - Storage strategy benchmarks.

Materialize one dataset as heap, clustered and columnstore tables, run the
same queries against each, and compare.
"""

from tablebench.aggregate import aggregate
from tablebench.catalog import QueryCatalog
from tablebench.harness import BenchmarkResult, HarnessContext, run_benchmark
from tablebench.report import render

__version__ = "0.1.0"
__all__ = [
    "BenchmarkResult",
    "HarnessContext",
    "QueryCatalog",
    "__version__",
    "aggregate",
    "render",
    "run_benchmark",
]

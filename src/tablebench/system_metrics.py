# Copyright (c) Syntropy Systems
"""Host snapshot stored with each benchmark session."""
from __future__ import annotations

import logging
import os
import platform
import socket
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import cast

try:
    import psutil
except ImportError:
    psutil = None

logger = logging.getLogger(__name__)


@dataclass
class HostInfo:
    """Machine the benchmark ran on."""

    timestamp: str
    hostname: str
    platform: str
    python: str
    sqlite_version: str
    cpu_count: int | None = None
    cpu_percent: float | None = None
    memory_used_gb: float | None = None
    memory_total_gb: float | None = None

    def to_dict(self) -> dict[str, str | int | float]:
        """Convert to dictionary, excluding None values."""
        result: dict[str, str | int | float] = {
            "_timestamp": self.timestamp,
            "hostname": self.hostname,
            "platform": self.platform,
            "python": self.python,
            "sqlite_version": self.sqlite_version,
        }
        if self.cpu_count is not None:
            result["cpu_count"] = self.cpu_count
        if self.cpu_percent is not None:
            result["cpu_percent"] = self.cpu_percent
        if self.memory_used_gb is not None:
            result["memory_used_gb"] = round(self.memory_used_gb, 2)
        if self.memory_total_gb is not None:
            result["memory_total_gb"] = round(self.memory_total_gb, 2)
        return result


def get_cpu_metrics() -> tuple[float | None, float | None, float | None]:
    """Get CPU and memory metrics.

    Returns (cpu_percent, memory_used_gb, memory_total_gb).
    """
    if psutil is None:
        return None, None, None
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        mem = psutil.virtual_memory()
        used = cast("int", mem.used)
        total = cast("int", mem.total)
        memory_used_gb = used / (1024**3)
        memory_total_gb = total / (1024**3)
    except (AttributeError, OSError, ValueError):
        logger.debug("psutil could not read CPU or memory figures")
        return None, None, None
    else:
        return cpu_percent, memory_used_gb, memory_total_gb


def collect_host_info() -> HostInfo:
    """Snapshot the current host."""
    timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    cpu_percent, mem_used, mem_total = get_cpu_metrics()

    return HostInfo(
        timestamp=timestamp,
        hostname=socket.gethostname(),
        platform=platform.platform(),
        python=platform.python_version(),
        sqlite_version=sqlite3.sqlite_version,
        cpu_count=os.cpu_count(),
        cpu_percent=cpu_percent,
        memory_used_gb=mem_used,
        memory_total_gb=mem_total,
    )

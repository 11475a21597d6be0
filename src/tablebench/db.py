# Copyright (c) Syntropy Systems
"""SQLite results log: benchmark sessions and their immutable run records."""
from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from tablebench.models.bench import CostBreakdown, RunFailure, RunRecord
from tablebench.models.db import SessionRecord

if TYPE_CHECKING:
    from pathlib import Path

    from tablebench.models.base import JSONObject

# SQL schema for the results log
SCHEMA = """
-- One row per `tablebench run`
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    name TEXT,
    baseline TEXT NOT NULL,
    config TEXT,  -- JSON
    variants TEXT,  -- JSON array, registration order
    templates TEXT,  -- JSON array, declaration order
    status TEXT DEFAULT 'running',  -- running, completed, partial, failed
    started_at TEXT,
    finished_at TEXT,
    host TEXT  -- JSON host snapshot
);

-- Append-only run records
CREATE TABLE IF NOT EXISTS run_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL REFERENCES sessions(id),
    variant_id TEXT NOT NULL,
    template_id TEXT NOT NULL,
    duration_seconds REAL NOT NULL,
    row_count INTEGER NOT NULL,
    cpu_cost REAL,
    io_cost REAL,
    total_cost REAL,
    plan TEXT,  -- JSON array of plan operators
    attempts INTEGER DEFAULT 1,
    started_at TEXT
);

-- Pairs (or whole variants) with no usable result
CREATE TABLE IF NOT EXISTS run_failures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL REFERENCES sessions(id),
    variant_id TEXT NOT NULL,
    template_id TEXT,  -- NULL: the whole variant failed to provision
    kind TEXT NOT NULL,  -- provisioning, execution, timeout
    reason TEXT NOT NULL,
    attempts INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_records_session ON run_records(session_id);
CREATE INDEX IF NOT EXISTS idx_failures_session ON run_failures(session_id);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """
    Get a database connection with proper settings for concurrent access.

    - isolation_level=None for explicit transaction control
    - WAL mode for concurrent readers/writers
    - busy_timeout to wait for locks instead of failing immediately
    - Row factory for dict-like access
    """
    conn = sqlite3.connect(str(db_path), timeout=5.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Initialize the database with the schema."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def generate_session_id() -> str:
    """Short random session id."""
    return uuid.uuid4().hex[:8]


# --- Session Operations ---

def create_session(
    conn: sqlite3.Connection,
    baseline: str,
    variants: list[str],
    templates: list[str],
    name: Optional[str] = None,
    config: Optional[JSONObject] = None,
    host: Optional[JSONObject] = None,
    session_id: Optional[str] = None,
) -> str:
    """Create a new session and return its ID."""
    session_id = session_id or generate_session_id()
    conn.execute(
        """
        INSERT INTO sessions (id, name, baseline, config, variants, templates, started_at, host)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            session_id,
            name,
            baseline,
            json.dumps(config) if config else None,
            json.dumps(variants),
            json.dumps(templates),
            utcnow(),
            json.dumps(host) if host else None,
        ),
    )
    return session_id


def complete_session(conn: sqlite3.Connection, session_id: str, status: str) -> None:
    """Mark a session as finished."""
    conn.execute(
        "UPDATE sessions SET status = ?, finished_at = ? WHERE id = ?",
        (status, utcnow(), session_id),
    )


def get_session(conn: sqlite3.Connection, session_id: str) -> Optional[SessionRecord]:
    """Get a session by ID or unique ID prefix."""
    rows = conn.execute(
        "SELECT * FROM sessions WHERE id LIKE ? ORDER BY started_at DESC",
        (f"{session_id}%",),
    ).fetchall()
    exact = [row for row in rows if row["id"] == session_id]
    if exact:
        return SessionRecord.model_validate(dict(exact[0]))
    if len(rows) != 1:
        return None
    return SessionRecord.model_validate(dict(rows[0]))


def get_latest_session(conn: sqlite3.Connection) -> Optional[SessionRecord]:
    row = conn.execute(
        "SELECT * FROM sessions ORDER BY started_at DESC, rowid DESC LIMIT 1"
    ).fetchone()
    if row is None:
        return None
    return SessionRecord.model_validate(dict(row))


def get_sessions(
    conn: sqlite3.Connection,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[SessionRecord]:
    """Get sessions, newest first."""
    query = "SELECT * FROM sessions WHERE 1=1"
    params: list[object] = []

    if status:
        query += " AND status = ?"
        params.append(status)

    query += " ORDER BY started_at DESC, rowid DESC LIMIT ?"
    params.append(limit)

    rows = conn.execute(query, params).fetchall()
    return [SessionRecord.model_validate(dict(row)) for row in rows]


# --- Record Operations ---

def record_run(conn: sqlite3.Connection, session_id: str, record: RunRecord) -> int:
    """Append a run record to a session."""
    cost = record.cost or CostBreakdown()
    cursor = conn.execute(
        """
        INSERT INTO run_records (
            session_id, variant_id, template_id, duration_seconds, row_count,
            cpu_cost, io_cost, total_cost, plan, attempts, started_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            session_id,
            record.variant_id,
            record.template_id,
            record.duration_seconds,
            record.row_count,
            cost.cpu_cost,
            cost.io_cost,
            cost.total_cost,
            json.dumps(list(record.plan)),
            record.attempts,
            record.started_at,
        ),
    )
    return cursor.lastrowid or 0


def record_failure(conn: sqlite3.Connection, session_id: str, failure: RunFailure) -> int:
    """Append a failure to a session."""
    cursor = conn.execute(
        """
        INSERT INTO run_failures (session_id, variant_id, template_id, kind, reason, attempts)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            session_id,
            failure.variant_id,
            failure.template_id,
            failure.kind,
            failure.reason,
            failure.attempts,
        ),
    )
    return cursor.lastrowid or 0


def _deserialize_record(row: sqlite3.Row) -> RunRecord:
    has_cost = any(row[key] is not None for key in ("cpu_cost", "io_cost", "total_cost"))
    return RunRecord(
        variant_id=row["variant_id"],
        template_id=row["template_id"],
        duration_seconds=row["duration_seconds"],
        row_count=row["row_count"],
        cost=CostBreakdown(
            cpu_cost=row["cpu_cost"],
            io_cost=row["io_cost"],
            total_cost=row["total_cost"],
        )
        if has_cost
        else None,
        plan=tuple(json.loads(row["plan"])) if row["plan"] else (),
        attempts=row["attempts"],
        started_at=row["started_at"],
    )


def get_session_records(conn: sqlite3.Connection, session_id: str) -> list[RunRecord]:
    """Run records of a session in insertion order."""
    rows = conn.execute(
        "SELECT * FROM run_records WHERE session_id = ? ORDER BY id",
        (session_id,),
    ).fetchall()
    return [_deserialize_record(row) for row in rows]


def get_session_failures(conn: sqlite3.Connection, session_id: str) -> list[RunFailure]:
    """Failures of a session in insertion order."""
    rows = conn.execute(
        "SELECT * FROM run_failures WHERE session_id = ? ORDER BY id",
        (session_id,),
    ).fetchall()
    return [
        RunFailure(
            variant_id=row["variant_id"],
            template_id=row["template_id"],
            kind=row["kind"],
            reason=row["reason"],
            attempts=row["attempts"],
        )
        for row in rows
    ]

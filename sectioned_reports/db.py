"""
SQLite database utilities.

The report history lives in a self-contained local file with automatic
schema bootstrap on first connection.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from .config.settings import get_settings

SQLITE_DB_PATH = Path(get_settings().SQLITE_DB_PATH)

_SQLITE_INIT_DONE = False
_SQLITE_INIT_LOCK = threading.Lock()

# sqlite JSON adapters/converters
sqlite3.register_adapter(dict, lambda value: json.dumps(value))
sqlite3.register_adapter(list, lambda value: json.dumps(value))
sqlite3.register_converter(
    "JSON",
    lambda value: json.loads(value.decode("utf-8")) if value else None,
)


def _sqlite_connect_raw() -> sqlite3.Connection:
    SQLITE_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(SQLITE_DB_PATH),
        detect_types=sqlite3.PARSE_DECLTYPES,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


def _create_sqlite_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS report_history (
            id TEXT PRIMARY KEY,
            workflow_name TEXT NOT NULL,
            report JSON,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'generating', 'generated', 'pdf_created', 'failed')),
            progress INTEGER NOT NULL DEFAULT 0,
            phase TEXT,
            error TEXT,
            pdf_url TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_report_history_created_at
            ON report_history (created_at);

        CREATE INDEX IF NOT EXISTS idx_report_history_workflow
            ON report_history (workflow_name);
        """
    )
    conn.commit()


def initialize_database(force: bool = False) -> None:
    """Create the sqlite schema once per process (or again when forced)."""
    global _SQLITE_INIT_DONE

    with _SQLITE_INIT_LOCK:
        if _SQLITE_INIT_DONE and not force:
            return
        conn = _sqlite_connect_raw()
        try:
            _create_sqlite_schema(conn)
        finally:
            conn.close()
        _SQLITE_INIT_DONE = True


def get_connection() -> sqlite3.Connection:
    """Open a connection, bootstrapping the schema when needed."""
    initialize_database()
    return _sqlite_connect_raw()


def query(sql: str, params: tuple | None = None) -> list[dict[str, Any]]:
    """Run a read query and return rows as dicts."""
    conn = get_connection()
    try:
        cur = conn.execute(sql, params or ())
        return [{key: row[key] for key in row.keys()} for row in cur.fetchall()]
    finally:
        conn.close()

"""
Report history for the Sectioned Report Builder.

Records pending, in-progress, completed and failed report runs keyed by a
report id. Only the most recent MAX_REPORTS entries are kept.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .. import db
from ..db import get_connection, query

logger = logging.getLogger(__name__)

MAX_REPORTS = 50

ReportStatus = Literal["pending", "generating", "generated", "pdf_created", "failed"]
REPORT_STATUSES: tuple[str, ...] = ("pending", "generating", "generated", "pdf_created", "failed")

_COLUMNS = "id, workflow_name, report, status, progress, phase, error, pdf_url, created_at, updated_at"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_report_id() -> str:
    return f"report_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _row_to_item(row: Any) -> dict:
    return {
        "id": row["id"],
        "workflow_name": row["workflow_name"],
        "report": row["report"],
        "status": row["status"],
        "progress": row["progress"],
        "phase": row["phase"],
        "error": row["error"],
        "pdf_url": row["pdf_url"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _update(report_id: str, assignments: dict[str, Any]) -> bool:
    assignments = {**assignments, "updated_at": _now()}
    columns = ", ".join(f"{column} = ?" for column in assignments)
    conn = get_connection()
    try:
        cur = conn.execute(
            f"UPDATE report_history SET {columns} WHERE id = ?",
            (*assignments.values(), report_id),
        )
        conn.commit()
        updated = cur.rowcount > 0
    finally:
        conn.close()

    if not updated:
        logger.warning("Report %s not found in history", report_id)
    return updated


def create_pending_report(workflow_name: str) -> str:
    """
    Create a pending history entry as soon as generation starts.

    Args:
        workflow_name: Display name of the report/workflow

    Returns:
        The new report id
    """
    report_id = _generate_report_id()
    now = _now()
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO report_history (id, workflow_name, report, status, progress, phase, created_at, updated_at)
            VALUES (?, ?, NULL, 'pending', 0, 'Initializing...', ?, ?)
            """,
            (report_id, workflow_name, now, now),
        )
        # Keep only the most recent reports
        conn.execute(
            """
            DELETE FROM report_history
            WHERE id NOT IN (
                SELECT id FROM report_history
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
            )
            """,
            (MAX_REPORTS,),
        )
        conn.commit()
    finally:
        conn.close()

    logger.info("Created pending report %s (%s)", report_id, workflow_name)
    return report_id


def update_report_progress(
    report_id: str,
    progress: int,
    phase: str,
    status: Optional[ReportStatus] = None,
) -> bool:
    """Update progress, phase message and optionally status."""
    assignments: dict[str, Any] = {"progress": int(progress), "phase": phase}
    if status is not None:
        if status not in REPORT_STATUSES:
            raise ValueError(f"Invalid report status: {status}")
        assignments["status"] = status
    return _update(report_id, assignments)


def complete_report(report_id: str, report: dict) -> bool:
    """Store the final report payload and mark the entry generated."""
    return _update(
        report_id,
        {"report": report, "status": "generated", "progress": 100, "phase": "Complete", "error": None},
    )


def mark_report_failed(report_id: str, error: str, report: Optional[dict] = None) -> bool:
    """Mark the entry failed, keeping the per-section payload when one is given."""
    assignments: dict[str, Any] = {"status": "failed", "error": error}
    if report is not None:
        assignments["report"] = report
    return _update(report_id, assignments)


def update_report_status(
    report_id: str,
    status: Literal["generated", "pdf_created"],
    pdf_url: Optional[str] = None,
) -> bool:
    """Update status after post-processing, e.g. when a PDF is created."""
    if status not in ("generated", "pdf_created"):
        raise ValueError(f"Invalid report status: {status}")
    assignments: dict[str, Any] = {"status": status}
    if pdf_url:
        assignments["pdf_url"] = pdf_url
    return _update(report_id, assignments)


def get_history(limit: Optional[int] = None) -> list[dict]:
    """All history entries, newest first."""
    sql = f"SELECT {_COLUMNS} FROM report_history ORDER BY created_at DESC, rowid DESC"
    params: tuple = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (limit,)
    return [_row_to_item(row) for row in query(sql, params)]


def get_recent_reports(limit: int = 10) -> list[dict]:
    return get_history(limit=limit)


def get_report(report_id: str) -> Optional[dict]:
    rows = query(f"SELECT {_COLUMNS} FROM report_history WHERE id = ?", (report_id,))
    return _row_to_item(rows[0]) if rows else None


def get_reports_by_workflow(workflow_name: str) -> list[dict]:
    rows = query(
        f"SELECT {_COLUMNS} FROM report_history WHERE workflow_name = ? ORDER BY created_at DESC, rowid DESC",
        (workflow_name,),
    )
    return [_row_to_item(row) for row in rows]


def delete_report(report_id: str) -> bool:
    conn = get_connection()
    try:
        cur = conn.execute("DELETE FROM report_history WHERE id = ?", (report_id,))
        conn.commit()
        deleted = cur.rowcount > 0
    finally:
        conn.close()
    if deleted:
        logger.info("Deleted report %s from history", report_id)
    return deleted


def clear_history() -> int:
    conn = get_connection()
    try:
        cur = conn.execute("DELETE FROM report_history")
        conn.commit()
        removed = cur.rowcount
    finally:
        conn.close()
    logger.info("Cleared report history (%d entries)", removed)
    return removed


def get_storage_info() -> dict:
    """Report count and on-disk size of the history database."""
    rows = query("SELECT COUNT(*) AS total FROM report_history")
    size_bytes = db.SQLITE_DB_PATH.stat().st_size if db.SQLITE_DB_PATH.exists() else 0
    return {
        "total_reports": rows[0]["total"] if rows else 0,
        "storage_size": f"{size_bytes / 1024 / 1024:.2f} MB",
    }


class SQLiteReportHistory:
    """HistoryRecorder backed by the sqlite report history."""

    def create_pending_report(self, title: str) -> str:
        return create_pending_report(title)

    def update_report_progress(
        self,
        report_id: str,
        percent: int,
        message: str,
        status: Optional[ReportStatus] = None,
    ) -> None:
        update_report_progress(report_id, percent, message, status)

    def complete_report(self, report_id: str, report: dict) -> None:
        complete_report(report_id, report)

    def mark_report_failed(self, report_id: str, reason: str, report: Optional[dict] = None) -> None:
        mark_report_failed(report_id, reason, report)

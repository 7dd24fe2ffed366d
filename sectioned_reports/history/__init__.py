"""
Report history module.

Persists report run records and exposes them as a HistoryRecorder.
"""

from .reports import (
    MAX_REPORTS,
    SQLiteReportHistory,
    clear_history,
    complete_report,
    create_pending_report,
    delete_report,
    get_history,
    get_recent_reports,
    get_report,
    get_reports_by_workflow,
    get_storage_info,
    mark_report_failed,
    update_report_progress,
    update_report_status,
)

__all__ = [
    "MAX_REPORTS",
    "SQLiteReportHistory",
    "clear_history",
    "complete_report",
    "create_pending_report",
    "delete_report",
    "get_history",
    "get_recent_reports",
    "get_report",
    "get_reports_by_workflow",
    "get_storage_info",
    "mark_report_failed",
    "update_report_progress",
    "update_report_status",
]

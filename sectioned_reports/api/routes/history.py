"""
Report history API routes.
"""

import asyncio
from typing import Optional
from fastapi import APIRouter, HTTPException, Query

from ..deps import Recorder
from ..models import ClearHistoryResponse, HistoryItemResponse, ReportRunResponse, StorageInfoResponse
from ...catalog import TemplateNotFoundError
from ...generation.jobs import forget_finished_runs, forget_run, restore_run
from ...history import MAX_REPORTS, clear_history, delete_report, get_history, get_report, get_storage_info

router = APIRouter(prefix="/history", tags=["History"])


@router.get("", response_model=list[HistoryItemResponse])
def list_history_endpoint(
    limit: Optional[int] = Query(None, ge=1, le=MAX_REPORTS, description="Max results"),
) -> list[dict]:
    """List report history entries, newest first."""
    return get_history(limit=limit)


@router.delete("", response_model=ClearHistoryResponse)
async def clear_history_endpoint() -> dict:
    removed = await asyncio.to_thread(clear_history)
    forget_finished_runs()
    return {"removed": removed}


@router.get("/storage", response_model=StorageInfoResponse)
def get_storage_info_endpoint() -> dict:
    """Entry count and on-disk size of the history store."""
    return get_storage_info()


@router.get("/{report_id}", response_model=HistoryItemResponse)
def get_history_item_endpoint(report_id: str) -> dict:
    item = get_report(report_id)
    if not item:
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    return item


@router.post("/{report_id}/restore", response_model=ReportRunResponse)
async def restore_history_item_endpoint(report_id: str, recorder: Recorder) -> dict:
    """
    Reopen a report from history.

    Failed sections can then be retried and the completed ones compiled
    through the report endpoints.
    """
    item = await asyncio.to_thread(get_report, report_id)
    if not item:
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    try:
        return restore_run(item, recorder)
    except (TemplateNotFoundError, ValueError) as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/{report_id}", status_code=204)
async def delete_history_item_endpoint(report_id: str) -> None:
    if not await asyncio.to_thread(delete_report, report_id):
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    forget_run(report_id)

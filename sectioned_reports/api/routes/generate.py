"""
Generation API routes for the Sectioned Report Builder.
"""

from fastapi import APIRouter, HTTPException

from ..deps import Fetcher, Recorder
from ..models import (
    ReportRunResponse,
    RetryFailedResponse,
    SectionRetryResponse,
    StartReportRequest,
    StartReportResponse,
)
from ...catalog import TemplateNotFoundError
from ...generation import SectionBusyError
from ...generation.jobs import (
    get_report_status,
    start_report,
    start_retry_failed,
    start_section_retry,
)

router = APIRouter(tags=["Generation"])


@router.post("/templates/{template_id}/reports", status_code=201, response_model=StartReportResponse)
async def start_report_endpoint(
    template_id: str,
    recorder: Recorder,
    fetcher: Fetcher,
    request: StartReportRequest | None = None,
) -> dict:
    """
    Start generating a report for the selected sections.

    Sections are generated in the background, two at a time. Returns a
    report_id that can be used to poll for progress.
    """
    section_ids = request.section_ids if request else None
    title = request.title if request else None
    try:
        return await start_report(
            template_id,
            recorder,
            fetcher,
            section_ids=section_ids,
            title=title,
        )
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/reports/{report_id}", response_model=ReportRunResponse)
async def get_report_status_endpoint(report_id: str) -> dict:
    """
    Get the current status of a report run.

    Poll this endpoint to track per-section and overall progress.
    """
    status = get_report_status(report_id)
    if not status:
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    return status


@router.post("/reports/{report_id}/retry-failed", status_code=202, response_model=RetryFailedResponse)
async def retry_failed_endpoint(report_id: str, fetcher: Fetcher) -> dict:
    """Re-run every errored section of a finished report."""
    try:
        return await start_retry_failed(report_id, fetcher)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    except SectionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post(
    "/reports/{report_id}/sections/{section_id}/retry",
    status_code=202,
    response_model=SectionRetryResponse,
)
async def retry_section_endpoint(report_id: str, section_id: str, fetcher: Fetcher) -> dict:
    """
    Manually retry one errored section.

    Only sections in the error state can be retried.
    """
    try:
        return await start_section_retry(report_id, section_id, fetcher)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=e.args[0] if e.args else str(e))
    except SectionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

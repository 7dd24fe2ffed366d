"""
Export API routes for the Sectioned Report Builder.
"""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import HTMLResponse, Response

from ...export import NothingToCompileError
from ...export.pdf import render_pdf
from ...generation.jobs import get_run
from ...history import update_report_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Export"])


def _compile(report_id: str):
    run = get_run(report_id)
    if not run:
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    try:
        return run.compile_document()
    except NothingToCompileError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{report_id}/document", response_class=HTMLResponse)
def get_document_endpoint(report_id: str) -> HTMLResponse:
    """
    Get the compiled HTML document for a report.

    Only completed sections are included, so this also works for partially
    complete reports.
    """
    document = _compile(report_id)
    return HTMLResponse(content=document.html)


@router.post("/{report_id}/export/pdf")
def export_pdf_endpoint(report_id: str) -> Response:
    """
    Generate and download a PDF of the compiled report.

    Returns PDF file as binary response.
    """
    document = _compile(report_id)
    try:
        pdf_bytes, filename = render_pdf(document)
    except Exception as e:
        logger.exception("PDF generation failed for report %s", report_id)
        raise HTTPException(status_code=500, detail=f"PDF generation failed: {str(e)}")

    update_report_status(report_id, "pdf_created")

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
        },
    )

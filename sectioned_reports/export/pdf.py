"""
PDF export for compiled reports.

Uses WeasyPrint to convert the compiled HTML document to PDF.
"""

from __future__ import annotations

import io

from .compiler import CompiledDocument


def safe_filename(title: str, extension: str = "pdf") -> str:
    """Build a download filename from a report title."""
    safe_name = "".join(c if c.isalnum() or c in " -_" else "_" for c in title).strip()
    return f"{safe_name or 'report'}.{extension}"


def render_pdf(document: CompiledDocument) -> tuple[bytes, str]:
    """
    Render a compiled document to PDF.

    Returns:
        Tuple of (pdf_bytes, filename)
    """
    # WeasyPrint loads native Pango libraries at import time.
    from weasyprint import HTML

    pdf_buffer = io.BytesIO()
    HTML(string=document.html).write_pdf(pdf_buffer)
    return pdf_buffer.getvalue(), safe_filename(document.title)

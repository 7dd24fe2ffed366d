"""
Document compiler for sectioned reports.

Builds one printable HTML document from whichever sections are currently
completed:
- Sections are ordered by category, then priority, then template order
- A numbered table of contents precedes the section blocks
- A summary footer closes the document
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from html import escape
from typing import TYPE_CHECKING, Mapping, Optional, Sequence

from ..catalog import CATEGORY_ORDER, PRIORITY_ORDER, IndustryTemplate, Section

if TYPE_CHECKING:
    from ..generation.state import SectionProgress

# SectionStatus is a str enum, so its members compare equal to this value.
COMPLETED_STATUS = "completed"


class NothingToCompileError(ValueError):
    """Raised when no section qualifies for compilation."""


@dataclass(frozen=True)
class CompiledDocument:
    title: str
    html: str
    section_ids: tuple[str, ...]
    total_pages: int
    generated_at: datetime

    @property
    def section_count(self) -> int:
        return len(self.section_ids)


def _is_compilable(progress: Optional[SectionProgress]) -> bool:
    if progress is None or progress.status != COMPLETED_STATUS:
        return False
    return bool(progress.content and progress.content.strip())


def order_sections(
    sections: Sequence[Section],
    snapshot: Mapping[str, SectionProgress],
) -> list[Section]:
    """
    Filter to completed sections with content and sort them for output.

    ``sorted`` is stable, so sections sharing a category and priority keep
    their template order.
    """
    eligible = [section for section in sections if _is_compilable(snapshot.get(section.id))]
    return sorted(
        eligible,
        key=lambda section: (
            CATEGORY_ORDER.index(section.category),
            PRIORITY_ORDER.index(section.priority),
        ),
    )


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


def render_toc(ordered: Sequence[Section]) -> str:
    items = "".join(
        f"""
            <div class="toc-item">
                <span>{number}. {escape(section.title)}</span>
                <span>~{section.estimated_pages} pages</span>
            </div>"""
        for number, section in enumerate(ordered, start=1)
    )
    return f"""
    <div class="table-of-contents">
        <h2 class="toc-title">Table of Contents</h2>{items}
    </div>
"""


def render_section_block(section: Section, number: int, content: str) -> str:
    """Render one numbered section. Content is trusted HTML and inserted as-is."""
    return f"""
    <div class="section-content" id="section-{escape(section.id)}">
        <div class="section-header">
            <div class="section-title">{number}. {escape(section.title)}</div>
            <div class="section-description">{escape(section.description)}</div>
        </div>
        <div class="section-body">
            {content}
        </div>
    </div>
"""


def render_html(
    industry_name: str,
    ordered: Sequence[Section],
    snapshot: Mapping[str, SectionProgress],
    generated_at: datetime,
) -> str:
    """
    Render the compiled report as a complete HTML document.

    Args:
        industry_name: Template name used in the title, header and footer
        ordered: Sections in final output order
        snapshot: SectionProgress mapping providing each section's content
        generated_at: Timestamp printed in the header and footer

    Returns:
        Complete HTML document string
    """
    name = escape(industry_name)
    total_pages = sum(section.estimated_pages for section in ordered)
    timestamp = _format_timestamp(generated_at)

    sections_html = "".join(
        render_section_block(section, number, snapshot[section.id].content or "")
        for number, section in enumerate(ordered, start=1)
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{name} - Comprehensive Automation Report</title>
    <style>
        @page {{
            size: letter;
            margin: 1in;

            @bottom-center {{
                content: counter(page);
                font-size: 9pt;
                color: #6b7280;
            }}
        }}

        body {{
            font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
            line-height: 1.6;
            color: #333;
            margin: 0 auto;
            max-width: 8.5in;
        }}

        .report-header {{
            text-align: center;
            border-bottom: 3px solid #2563eb;
            padding-bottom: 30px;
            margin-bottom: 40px;
        }}

        .report-title {{
            font-size: 2.5em;
            font-weight: bold;
            color: #1e40af;
        }}

        .report-meta {{
            display: flex;
            justify-content: space-between;
            font-size: 0.9em;
            color: #6b7280;
        }}

        .table-of-contents {{
            background: #f8fafc;
            padding: 30px;
            margin-bottom: 40px;
            page-break-after: always;
        }}

        .toc-title {{
            font-size: 1.5em;
            color: #1e40af;
        }}

        .toc-item {{
            display: flex;
            justify-content: space-between;
            padding: 8px 0;
            border-bottom: 1px dotted #d1d5db;
        }}

        .section-content:not(:last-child) {{
            page-break-after: always;
        }}

        .section-header {{
            background: #2563eb;
            color: white;
            padding: 20px;
            margin-bottom: 20px;
        }}

        .section-title {{
            font-size: 1.8em;
            font-weight: bold;
        }}

        table {{
            width: 100%;
            border-collapse: collapse;
            margin: 20px 0;
        }}

        th, td {{
            border: 1px solid #d1d5db;
            padding: 12px;
            text-align: left;
        }}

        .report-footer {{
            margin-top: 60px;
            padding-top: 30px;
            border-top: 2px solid #e5e7eb;
            text-align: center;
            color: #6b7280;
        }}
    </style>
</head>
<body>
    <div class="report-header">
        <h1 class="report-title">{name}</h1>
        <h2 class="report-subtitle">Comprehensive Business Automation Report</h2>
        <div class="report-meta">
            <span>Generated: {timestamp}</span>
            <span>Sections: {len(ordered)}</span>
            <span>Estimated Pages: {total_pages}</span>
        </div>
    </div>
    {render_toc(ordered)}
    {sections_html}
    <div class="report-footer">
        <p><strong>{name} Automation Report</strong></p>
        <p>Generated {timestamp}</p>
        <p>This report contains {len(ordered)} sections (~{total_pages} pages).</p>
    </div>
</body>
</html>"""


def compile_document(
    template: IndustryTemplate,
    snapshot: Mapping[str, SectionProgress],
    *,
    title: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> CompiledDocument:
    """Compile the completed sections of ``snapshot`` into one document."""
    ordered = order_sections(template.sections, snapshot)
    if not ordered:
        raise NothingToCompileError("No completed sections to compile")

    generated_at = generated_at or datetime.now(timezone.utc)
    html = render_html(template.name, ordered, snapshot, generated_at)
    return CompiledDocument(
        title=title or f"{template.name} - Comprehensive Automation Report",
        html=html,
        section_ids=tuple(section.id for section in ordered),
        total_pages=sum(section.estimated_pages for section in ordered),
        generated_at=generated_at,
    )


@dataclass(frozen=True)
class AccumulatedSection:
    section: Section
    content: str
    generated_at: datetime


class DocumentCompiler:
    """Accumulates generated sections for one template and compiles on demand."""

    def __init__(self, template: IndustryTemplate):
        self.template = template
        self._accumulated: dict[str, AccumulatedSection] = {}

    def add_section(self, section: Section, content: str, generated_at: Optional[datetime] = None) -> None:
        if self.template.get_section(section.id) is None:
            raise KeyError(f"Section {section.id!r} is not part of template {self.template.id!r}")
        if not content:
            raise ValueError(f"Section {section.id!r} has no content")
        self._accumulated[section.id] = AccumulatedSection(
            section=section,
            content=content,
            generated_at=generated_at or datetime.now(timezone.utc),
        )

    def get(self, section_id: str) -> Optional[AccumulatedSection]:
        return self._accumulated.get(section_id)

    @property
    def section_ids(self) -> list[str]:
        return list(self._accumulated)

    def compile(
        self,
        snapshot: Mapping[str, SectionProgress],
        *,
        title: Optional[str] = None,
        generated_at: Optional[datetime] = None,
    ) -> CompiledDocument:
        return compile_document(self.template, snapshot, title=title, generated_at=generated_at)

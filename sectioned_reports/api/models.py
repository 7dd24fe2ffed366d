"""
Pydantic models for the Sectioned Report Builder API.

Request/response models for all API endpoints.
"""

from typing import Any, Literal, Optional
from pydantic import BaseModel


# ============================================================
# Literal Types (Enums)
# ============================================================

Priority = Literal["high", "medium", "low"]
Category = Literal["executive", "analysis", "implementation", "technical", "financial"]
SectionStatusValue = Literal["pending", "generating", "completed", "error"]
RunOutcomeValue = Literal["success", "partial", "failed"]
ReportStatus = Literal["pending", "generating", "generated", "pdf_created", "failed"]


# ============================================================
# Catalog Models
# ============================================================

class SectionModel(BaseModel):
    """One section of an industry template."""
    id: str
    title: str
    description: str = ""
    estimated_pages: int = 0
    priority: Priority
    category: Category


class TemplateSummary(BaseModel):
    """Template metadata without its sections."""
    id: str
    name: str
    description: str
    icon: str
    estimated_total_pages: int
    section_count: int


class TemplateDetail(TemplateSummary):
    """Template metadata with the full section list."""
    sections: list[SectionModel]


# ============================================================
# Report Run Models
# ============================================================

class StartReportRequest(BaseModel):
    """Request model for starting a report run. Omitting section_ids selects high-priority sections."""
    section_ids: Optional[list[str]] = None
    title: Optional[str] = None


class StartReportResponse(BaseModel):
    report_id: str
    title: str
    total_sections: int


class SectionProgressResponse(BaseModel):
    id: str
    status: SectionStatusValue
    progress: int
    has_content: bool
    error: Optional[str] = None
    attempts: int = 0


class RunSummaryResponse(BaseModel):
    completed: int
    failed: int
    total: int
    outcome: Optional[RunOutcomeValue] = None


class ReportRunResponse(BaseModel):
    """Live status of a report run."""
    report_id: str
    title: str
    template_id: str
    is_running: bool
    overall_progress: int
    outcome: Optional[RunOutcomeValue] = None
    error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    summary: RunSummaryResponse
    sections: list[SectionProgressResponse]


class RetryFailedResponse(BaseModel):
    report_id: str
    retrying: list[str]


class SectionRetryResponse(BaseModel):
    report_id: str
    section_id: str


# ============================================================
# Section Generation Endpoint Models
# ============================================================

class SectionGenerateRequest(BaseModel):
    """
    Request body for single-section generation.

    Fields are optional at the schema level so missing values can be
    reported as a 400 with a readable message.
    """
    section: Optional[dict[str, Any]] = None
    industry: Optional[dict[str, Any]] = None
    user_details: Optional[dict[str, Any]] = None


class SectionGenerateResponse(BaseModel):
    success: bool
    content: str
    section: dict[str, Any]
    metadata: dict[str, Any]


# ============================================================
# History Models
# ============================================================

class HistoryItemResponse(BaseModel):
    """Response model for one report history entry."""
    id: str
    workflow_name: str
    report: Optional[Any] = None  # JSON - final report payload
    status: ReportStatus
    progress: int
    phase: Optional[str] = None
    error: Optional[str] = None
    pdf_url: Optional[str] = None
    created_at: str
    updated_at: str


class StorageInfoResponse(BaseModel):
    total_reports: int
    storage_size: str


class ClearHistoryResponse(BaseModel):
    removed: int

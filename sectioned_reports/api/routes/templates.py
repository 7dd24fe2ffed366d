"""
Template catalog API routes.
"""

from fastapi import APIRouter, HTTPException

from ..models import TemplateDetail, TemplateSummary
from ...catalog import TemplateNotFoundError, get_template, load_templates

router = APIRouter(prefix="/templates", tags=["Templates"])


@router.get("", response_model=list[TemplateSummary])
def list_templates_endpoint() -> list[dict]:
    """List every industry template without its sections."""
    return [template.to_dict(include_sections=False) for template in load_templates()]


@router.get("/{template_id}", response_model=TemplateDetail)
def get_template_endpoint(template_id: str) -> dict:
    """
    Get one industry template with its sections.

    Sections are returned in the template's natural order.
    """
    try:
        template = get_template(template_id)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return template.to_dict()

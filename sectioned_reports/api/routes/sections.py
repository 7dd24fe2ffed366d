"""
Single-section generation endpoint.

This is the endpoint HttpSectionFetcher calls: it generates one section's
HTML through the configured LLM.
"""

import logging
from datetime import datetime, timezone

import openai
from fastapi import APIRouter, HTTPException

from ..models import SectionGenerateRequest, SectionGenerateResponse
from ...catalog import parse_section, parse_template
from ...config.settings import get_settings
from ...generation import InvalidSectionResponseError
from ...generation.fetchers import generate_section_html
from ...infra.llm import LLMNotConfiguredError, get_openai_client, resolve_chat_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sections", tags=["Sections"])


@router.post("/generate", response_model=SectionGenerateResponse)
def generate_section_endpoint(request: SectionGenerateRequest) -> dict:
    """
    Generate the HTML for one report section.

    Returns the generated content plus metadata about its length and
    whether it looks like HTML.
    """
    settings = get_settings()
    try:
        client = get_openai_client(settings)
        model, max_tokens = resolve_chat_runtime(settings)
    except LLMNotConfiguredError as e:
        logger.error("Section generation requested without LLM credentials")
        raise HTTPException(
            status_code=500,
            detail={"error": "LLM API key not configured", "details": str(e)},
        )

    if not request.section or not request.industry:
        raise HTTPException(
            status_code=400,
            detail={"error": "Missing required fields", "details": "section and industry are required"},
        )

    try:
        section = parse_section(request.section)
        template = parse_template({**request.industry, "sections": []})
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid section or industry", "details": str(e)},
        )

    logger.info("Generating section %s for %s", section.title, template.name)
    try:
        content = generate_section_html(
            client,
            section,
            template,
            model=model,
            max_tokens=max_tokens,
        )
    except openai.APIStatusError as e:
        logger.error("LLM API error for section %s: %s", section.id, e.status_code)
        raise HTTPException(
            status_code=e.status_code,
            detail={"error": "LLM API request failed", "details": str(e), "status": e.status_code},
        )
    except InvalidSectionResponseError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "Invalid response format from LLM", "details": str(e)},
        )
    except openai.OpenAIError as e:
        logger.exception("Section generation error for %s", section.id)
        raise HTTPException(
            status_code=500,
            detail={"error": "Internal server error", "details": str(e), "section": section.title},
        )

    has_html_structure = "<html" in content or "<div" in content
    logger.info("Section %s generated: %d characters", section.id, len(content))

    return {
        "success": True,
        "content": content,
        "section": request.section,
        "metadata": {
            "content_length": len(content),
            "has_html_structure": has_html_structure,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "estimated_pages": section.estimated_pages,
        },
    }

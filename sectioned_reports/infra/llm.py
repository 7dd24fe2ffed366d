"""OpenAI client factory for section content generation."""

from __future__ import annotations

import logging
from typing import Optional

from openai import OpenAI

from sectioned_reports.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

OFFICIAL_OPENAI_BASE_URL = "https://api.openai.com/v1"


class LLMNotConfiguredError(RuntimeError):
    """Raised when no LLM credentials are available."""


def resolve_llm_endpoint(settings: Settings | None = None) -> tuple[str, str]:
    """Resolve (api_key, base_url) from env configuration."""
    settings = settings or get_settings()

    api_key = settings.OPENAI_API_KEY.strip()
    if not api_key:
        raise LLMNotConfiguredError(
            "No LLM auth configured. Set OPENAI_API_KEY (and optionally OPENAI_BASE_URL)."
        )

    base_url = settings.OPENAI_BASE_URL.strip() or OFFICIAL_OPENAI_BASE_URL
    return api_key, base_url


def get_openai_client(settings: Settings | None = None) -> OpenAI:
    """Create an OpenAI client using env-based configuration."""
    settings = settings or get_settings()

    api_key, base_url = resolve_llm_endpoint(settings)
    logger.info("Initializing OpenAI client (base_url=%s)", base_url)
    return OpenAI(api_key=api_key, base_url=base_url)


def resolve_chat_runtime(settings: Settings | None = None) -> tuple[str, Optional[int]]:
    """Resolve model + max_tokens from env."""
    settings = settings or get_settings()

    model = settings.OPENAI_MODEL.strip() or "gpt-4o"
    max_tokens = settings.LLM_MAX_TOKENS
    if max_tokens is not None and max_tokens <= 0:
        raise ValueError("LLM_MAX_TOKENS must be a positive integer")

    return model, max_tokens

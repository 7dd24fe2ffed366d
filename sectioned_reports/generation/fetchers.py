"""
Section content fetchers.

A fetcher turns one report section into an HTML fragment or raises one of
the typed failures in ``errors``:

- HttpSectionFetcher: calls the section generation endpoint over HTTP
- LLMSectionFetcher: generates the section directly through the OpenAI client
- DemoSectionFetcher: fabricates a plausible section after a short delay
"""

from __future__ import annotations

import asyncio
import logging
from html import escape
from typing import Any, Optional, Protocol

import openai
import requests

from ..catalog import IndustryTemplate, Section
from ..config.settings import Settings, get_settings
from ..infra.llm import LLMNotConfiguredError, get_openai_client, resolve_chat_runtime
from .errors import (
    FetcherUnavailableError,
    InvalidSectionResponseError,
    SectionCallFailedError,
    SectionTimeoutError,
)

logger = logging.getLogger(__name__)

# Generic user context sent with every section request.
DEFAULT_USER_DETAILS = {
    "company": "Professional Organization",
    "role": "Business Leader",
    "goals": "Operational Excellence",
    "challenges": "Manual Processes",
}


class SectionFetcher(Protocol):
    async def fetch(self, section: Section, template: IndustryTemplate) -> str:
        ...


def build_section_request(
    section: Section,
    template: IndustryTemplate,
    user_details: Optional[dict] = None,
) -> dict:
    """Build the JSON body for one section generation request."""
    return {
        "section": section.to_dict(),
        "industry": template.to_dict(include_sections=False),
        "user_details": dict(user_details or DEFAULT_USER_DETAILS),
    }


def build_section_prompt(section: Section, template: IndustryTemplate) -> str:
    """Prompt asking the LLM for one self-contained HTML report section."""
    return f"""Generate a professional HTML section for a business automation report.

SECTION: {section.title}
INDUSTRY: {template.name}
DESCRIPTION: {section.description}

REQUIREMENTS:
- Generate complete HTML with embedded CSS
- Professional business styling
- Include specific metrics and data
- Add implementation steps
- Include risk assessment
- Use tables and visual elements

IMPORTANT: Respond with HTML only, starting with <div class="report-section"> and ending with </div>.

Include these CSS classes in a <style> tag:
- .section-header (blue gradient background)
- .metric-card (for key numbers)
- .implementation-step (for action items)
- .highlight-box (for important notes)

Generate a comprehensive, professional section with real business insights."""


def _extract_content(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise InvalidSectionResponseError("Invalid response from API: body is not a JSON object")
    content = payload.get("content")
    if not payload.get("success") or not isinstance(content, str) or not content.strip():
        raise InvalidSectionResponseError("Invalid response from API")
    return content


class HttpSectionFetcher:
    """POSTs each section to the generation endpoint with requests."""

    def __init__(
        self,
        endpoint_url: str,
        *,
        timeout_seconds: float = 120.0,
        user_details: Optional[dict] = None,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint_url = endpoint_url.strip()
        self.timeout_seconds = timeout_seconds
        self.user_details = user_details
        self._session = session or requests.Session()

    def _post(self, body: dict) -> requests.Response:
        return self._session.post(self.endpoint_url, json=body, timeout=self.timeout_seconds)

    async def fetch(self, section: Section, template: IndustryTemplate) -> str:
        if not self.endpoint_url:
            raise FetcherUnavailableError("SECTION_ENDPOINT_URL is not configured")

        body = build_section_request(section, template, self.user_details)
        try:
            response = await asyncio.to_thread(self._post, body)
        except requests.exceptions.Timeout as exc:
            raise SectionTimeoutError(f"Request timed out for section {section.id}") from exc
        except requests.exceptions.RequestException as exc:
            raise SectionCallFailedError(f"API call failed: {exc}") from exc

        if not response.ok:
            raise SectionCallFailedError(
                f"API call failed: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidSectionResponseError("Invalid response from API: body is not JSON") from exc

        return _extract_content(payload)


def generate_section_html(
    client: openai.OpenAI,
    section: Section,
    template: IndustryTemplate,
    *,
    model: str,
    max_tokens: Optional[int],
) -> str:
    """Call the LLM for one section and return the raw HTML text."""
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": [{"role": "user", "content": build_section_prompt(section, template)}],
    }
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens

    response = client.chat.completions.create(**kwargs)
    text = (response.choices[0].message.content or "").strip() if response.choices else ""
    if not text:
        raise InvalidSectionResponseError("Invalid response format from LLM: missing content")

    if "<div" not in text and "<html" not in text:
        logger.warning("Generated content for section %s may not be valid HTML", section.id)
    return text


class LLMSectionFetcher:
    """Generates section HTML in-process through the OpenAI client."""

    def __init__(self, settings: Settings | None = None, client: openai.OpenAI | None = None):
        self._settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> openai.OpenAI:
        if self._client is None:
            try:
                self._client = get_openai_client(self._settings)
            except LLMNotConfiguredError as exc:
                raise FetcherUnavailableError(str(exc)) from exc
        return self._client

    async def fetch(self, section: Section, template: IndustryTemplate) -> str:
        client = self._get_client()
        model, max_tokens = resolve_chat_runtime(self._settings)
        try:
            return await asyncio.to_thread(
                generate_section_html,
                client,
                section,
                template,
                model=model,
                max_tokens=max_tokens,
            )
        except openai.APITimeoutError as exc:
            raise SectionTimeoutError(f"LLM request timed out for section {section.id}") from exc
        except openai.APIConnectionError as exc:
            raise SectionCallFailedError(f"API call failed: {exc}") from exc
        except openai.APIStatusError as exc:
            raise SectionCallFailedError(
                f"API call failed: {exc.status_code}",
                status_code=exc.status_code,
            ) from exc


class DemoSectionFetcher:
    """Demo mode: returns a fabricated section after ``delay_seconds``."""

    def __init__(self, delay_seconds: float = 2.0):
        self.delay_seconds = delay_seconds

    async def fetch(self, section: Section, template: IndustryTemplate) -> str:
        await asyncio.sleep(self.delay_seconds)
        title = escape(section.title)
        industry = escape(template.name)
        description = escape(section.description)
        return f"""<div class="report-section">
    <div class="highlight-box">
        <p><strong>{title}</strong> for {industry}: {description}.</p>
    </div>
    <div class="metric-card"><span>Estimated effort reduction</span> <strong>35%</strong></div>
    <div class="metric-card"><span>Payback period</span> <strong>9 months</strong></div>
    <table>
        <tr><th>Phase</th><th>Focus</th><th>Duration</th></tr>
        <tr><td>1</td><td>Discovery and process mapping</td><td>2 weeks</td></tr>
        <tr><td>2</td><td>Pilot automation</td><td>4 weeks</td></tr>
        <tr><td>3</td><td>Rollout and training</td><td>6 weeks</td></tr>
    </table>
    <div class="implementation-step">Assign an owner for {title} and agree success metrics.</div>
</div>"""


def build_fetcher(settings: Settings | None = None) -> SectionFetcher:
    """Select the fetcher for the configured SECTION_FETCHER_MODE."""
    settings = settings or get_settings()
    mode = settings.SECTION_FETCHER_MODE

    if mode == "http":
        return HttpSectionFetcher(
            settings.SECTION_ENDPOINT_URL,
            timeout_seconds=settings.SECTION_REQUEST_TIMEOUT,
        )
    if mode == "llm":
        return LLMSectionFetcher(settings)
    if mode == "demo":
        return DemoSectionFetcher()
    raise ValueError(f"Unknown SECTION_FETCHER_MODE: {mode}")

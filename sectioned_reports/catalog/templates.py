"""
Industry template catalog for the Sectioned Report Builder.

Templates are static configuration loaded from the packaged JSON file and
never mutated at runtime.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "industry_templates.json"

Priority = Literal["high", "medium", "low"]
Category = Literal["executive", "analysis", "implementation", "technical", "financial"]

CATEGORY_ORDER: tuple[str, ...] = ("executive", "analysis", "implementation", "technical", "financial")
PRIORITY_ORDER: tuple[str, ...] = ("high", "medium", "low")


class TemplateNotFoundError(LookupError):
    """Raised when an industry template id is not in the catalog."""


@dataclass(frozen=True)
class Section:
    id: str
    title: str
    description: str
    estimated_pages: int
    priority: Priority
    category: Category

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "estimated_pages": self.estimated_pages,
            "priority": self.priority,
            "category": self.category,
        }


@dataclass(frozen=True)
class IndustryTemplate:
    id: str
    name: str
    description: str
    icon: str
    sections: tuple[Section, ...]
    estimated_total_pages: int

    def get_section(self, section_id: str) -> Optional[Section]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def to_dict(self, include_sections: bool = True) -> dict:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "estimated_total_pages": self.estimated_total_pages,
            "section_count": len(self.sections),
        }
        if include_sections:
            payload["sections"] = [section.to_dict() for section in self.sections]
        return payload


def parse_section(raw: dict) -> Section:
    """Build a Section from its JSON payload, validating priority and category."""
    priority = raw.get("priority")
    category = raw.get("category")
    if priority not in PRIORITY_ORDER:
        raise ValueError(f"Section {raw.get('id')!r} has invalid priority {priority!r}")
    if category not in CATEGORY_ORDER:
        raise ValueError(f"Section {raw.get('id')!r} has invalid category {category!r}")
    return Section(
        id=str(raw["id"]),
        title=str(raw["title"]),
        description=str(raw.get("description") or ""),
        estimated_pages=int(raw.get("estimated_pages") or 0),
        priority=priority,
        category=category,
    )


def parse_template(raw: dict) -> IndustryTemplate:
    """Build an IndustryTemplate from its JSON payload."""
    sections = tuple(parse_section(item) for item in raw.get("sections", []) if isinstance(item, dict))
    return IndustryTemplate(
        id=str(raw["id"]),
        name=str(raw["name"]),
        description=str(raw.get("description") or ""),
        icon=str(raw.get("icon") or ""),
        sections=sections,
        estimated_total_pages=int(raw.get("estimated_total_pages") or 0),
    )


@lru_cache
def load_templates() -> tuple[IndustryTemplate, ...]:
    """Load every industry template from the packaged catalog."""
    payload = json.loads(_CATALOG_PATH.read_text(encoding="utf-8"))
    raw_templates = payload.get("templates") if isinstance(payload, dict) else None
    if not isinstance(raw_templates, list):
        raise ValueError(f"Template catalog is malformed: {_CATALOG_PATH}")
    return tuple(parse_template(raw) for raw in raw_templates if isinstance(raw, dict))


def get_template(template_id: str) -> IndustryTemplate:
    for template in load_templates():
        if template.id == template_id:
            return template
    raise TemplateNotFoundError(f"Template not found: {template_id}")


def get_sections_by_category(template: IndustryTemplate) -> dict[str, list[Section]]:
    """Group a template's sections by category, preserving template order."""
    return {
        category: [section for section in template.sections if section.category == category]
        for category in CATEGORY_ORDER
    }


def get_high_priority_sections(template: IndustryTemplate) -> list[Section]:
    """High-priority sections are the default selection for a new report."""
    return [section for section in template.sections if section.priority == "high"]

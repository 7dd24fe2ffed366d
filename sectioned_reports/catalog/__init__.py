"""
Industry template catalog.

Static report templates and their sections.
"""

from .templates import (
    CATEGORY_ORDER,
    PRIORITY_ORDER,
    IndustryTemplate,
    Section,
    TemplateNotFoundError,
    get_high_priority_sections,
    get_sections_by_category,
    get_template,
    load_templates,
    parse_section,
    parse_template,
)

__all__ = [
    "CATEGORY_ORDER",
    "PRIORITY_ORDER",
    "IndustryTemplate",
    "Section",
    "TemplateNotFoundError",
    "get_high_priority_sections",
    "get_sections_by_category",
    "get_template",
    "load_templates",
    "parse_section",
    "parse_template",
]

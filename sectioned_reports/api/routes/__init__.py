"""
API routes for the Sectioned Report Builder.
"""

from .templates import router as templates_router
from .generate import router as generate_router
from .export import router as export_router
from .history import router as history_router
from .sections import router as sections_router

__all__ = [
    "templates_router",
    "generate_router",
    "export_router",
    "history_router",
    "sections_router",
]

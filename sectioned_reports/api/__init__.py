"""
Sectioned Report Builder FastAPI API.

Provides REST endpoints for the template catalog, report runs, exports
and report history.
"""

from .main import app

__all__ = ["app"]

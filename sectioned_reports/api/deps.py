"""
Dependencies for the Sectioned Report Builder API.

Provides dependency injection for FastAPI routes.
"""

from typing import Annotated
from fastapi import Depends

from ..generation import HistoryRecorder, build_fetcher
from ..generation.fetchers import SectionFetcher
from ..history import SQLiteReportHistory


def get_history_recorder() -> HistoryRecorder:
    """History sink for report runs (sqlite-backed)."""
    return SQLiteReportHistory()


def get_section_fetcher() -> SectionFetcher:
    """Fetcher for the configured SECTION_FETCHER_MODE."""
    return build_fetcher()


# Type aliases for dependency injection
Recorder = Annotated[HistoryRecorder, Depends(get_history_recorder)]
Fetcher = Annotated[SectionFetcher, Depends(get_section_fetcher)]

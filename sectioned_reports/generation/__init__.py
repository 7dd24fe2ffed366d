"""
Generation pipeline module for the Sectioned Report Builder.

Provides batched section generation with retry, progress tracking
and partial-completion recording.
"""

from .errors import (
    FetcherUnavailableError,
    InvalidSectionResponseError,
    InvalidTransitionError,
    SectionBusyError,
    SectionCallFailedError,
    SectionGenerationError,
    SectionTimeoutError,
)
from .fetchers import DemoSectionFetcher, HttpSectionFetcher, LLMSectionFetcher, build_fetcher
from .recorder import HistoryNotifier, HistoryRecorder
from .scheduler import (
    GenerationRun,
    RunOutcome,
    RunSummary,
    SchedulerConfig,
    create_run,
    restore_run,
    retry_failed_sections,
    retry_section,
    run_generation,
    summarize,
)
from .state import SectionProgress, SectionStateStore, SectionStatus

__all__ = [
    "DemoSectionFetcher",
    "FetcherUnavailableError",
    "GenerationRun",
    "HistoryNotifier",
    "HistoryRecorder",
    "HttpSectionFetcher",
    "InvalidSectionResponseError",
    "InvalidTransitionError",
    "LLMSectionFetcher",
    "RunOutcome",
    "RunSummary",
    "SchedulerConfig",
    "SectionBusyError",
    "SectionCallFailedError",
    "SectionGenerationError",
    "SectionProgress",
    "SectionStateStore",
    "SectionStatus",
    "SectionTimeoutError",
    "build_fetcher",
    "create_run",
    "restore_run",
    "retry_failed_sections",
    "retry_section",
    "run_generation",
    "summarize",
]

"""Error taxonomy for section generation."""

from __future__ import annotations

from typing import Optional


class SectionGenerationError(Exception):
    """A single section request failed. Contained by the scheduler."""


class RetryableSectionError(SectionGenerationError):
    """Transient failure eligible for automatic retry."""


class SectionCallFailedError(RetryableSectionError):
    """The generation call failed (non-2xx status or transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SectionTimeoutError(RetryableSectionError):
    """The generation call timed out or was aborted."""


class InvalidSectionResponseError(SectionGenerationError):
    """The endpoint answered but the body was unsuccessful or had no content."""


class FetcherUnavailableError(Exception):
    """The generation capability itself is unusable. Aborts the whole run."""


class InvalidTransitionError(ValueError):
    """A section status update would violate the status state machine."""


class SectionBusyError(RuntimeError):
    """A manual retry was requested for a section that cannot be retried now."""


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, RetryableSectionError)

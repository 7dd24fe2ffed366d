"""
Section state store.

Holds the authoritative SectionProgress mapping for one generation run.
Every concurrent generation task owns exactly one key, so the store does
not lock.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .errors import InvalidTransitionError


class SectionStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


# Same-status updates (progress ticks) are always allowed.
_ALLOWED_TRANSITIONS: dict[SectionStatus, frozenset[SectionStatus]] = {
    SectionStatus.PENDING: frozenset({SectionStatus.GENERATING}),
    SectionStatus.GENERATING: frozenset(
        {SectionStatus.COMPLETED, SectionStatus.PENDING, SectionStatus.ERROR}
    ),
    SectionStatus.COMPLETED: frozenset(),
    SectionStatus.ERROR: frozenset(),
}

_UNSET = object()


@dataclass(frozen=True)
class SectionProgress:
    id: str
    status: SectionStatus = SectionStatus.PENDING
    progress: int = 0
    content: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "has_content": bool(self.content),
            "error": self.error,
        }


class SectionStateStore:
    """In-memory mapping of section id -> SectionProgress."""

    def __init__(self) -> None:
        self._sections: dict[str, SectionProgress] = {}
        self._initialized = False

    def initialize(self, section_ids: Iterable[str]) -> None:
        """Set every selected section to pending/0. Called once per run."""
        if self._initialized:
            raise RuntimeError("Section state store is already initialized")
        self._sections = {
            section_id: SectionProgress(id=section_id) for section_id in section_ids
        }
        self._initialized = True

    def __contains__(self, section_id: object) -> bool:
        return section_id in self._sections

    def __len__(self) -> int:
        return len(self._sections)

    def get(self, section_id: str) -> SectionProgress:
        try:
            return self._sections[section_id]
        except KeyError:
            raise KeyError(f"Unknown section: {section_id}") from None

    def update(
        self,
        section_id: str,
        *,
        status: Optional[SectionStatus] = None,
        progress: Optional[int] = None,
        content=_UNSET,
        error=_UNSET,
    ) -> SectionProgress:
        """Merge a partial update into one section's progress."""
        current = self.get(section_id)

        changes: dict = {}
        if status is not None:
            status = SectionStatus(status)
            if status != current.status and status not in _ALLOWED_TRANSITIONS[current.status]:
                raise InvalidTransitionError(
                    f"Section {section_id!r} cannot move from {current.status.value} to {status.value}"
                )
            changes["status"] = status
        if progress is not None:
            if not 0 <= progress <= 100:
                raise ValueError(f"progress must be within [0, 100], got {progress}")
            changes["progress"] = int(progress)
        if content is not _UNSET:
            changes["content"] = content
        if error is not _UNSET:
            changes["error"] = error

        updated = replace(current, **changes)
        self._sections[section_id] = updated
        return updated

    def reset_for_retry(self, section_id: str) -> SectionProgress:
        """Move an errored section back to pending/0 ahead of an explicit retry."""
        current = self.get(section_id)
        if current.status != SectionStatus.ERROR:
            raise InvalidTransitionError(
                f"Only errored sections can be reset for retry; {section_id!r} is {current.status.value}"
            )
        updated = replace(current, status=SectionStatus.PENDING, progress=0, error=None)
        self._sections[section_id] = updated
        return updated

    def fail_unfinished(self, section_id: str, error: str) -> SectionProgress:
        """Move a pending or generating section to error when its run is aborted."""
        current = self.get(section_id)
        if current.status not in (SectionStatus.PENDING, SectionStatus.GENERATING):
            raise InvalidTransitionError(
                f"Only unfinished sections can be failed on abort; {section_id!r} is {current.status.value}"
            )
        updated = replace(current, status=SectionStatus.ERROR, progress=0, error=error)
        self._sections[section_id] = updated
        return updated

    def restore(self, sections: Iterable[SectionProgress]) -> None:
        """Load settled (completed or errored) sections recorded by an earlier run."""
        if self._initialized:
            raise RuntimeError("Section state store is already initialized")
        restored: dict[str, SectionProgress] = {}
        for item in sections:
            if item.status not in (SectionStatus.COMPLETED, SectionStatus.ERROR):
                raise InvalidTransitionError(
                    f"Only settled sections can be restored; {item.id!r} is {item.status.value}"
                )
            restored[item.id] = item
        self._sections = restored
        self._initialized = True

    def snapshot(self) -> Mapping[str, SectionProgress]:
        """Read-only point-in-time copy. Entries are frozen dataclasses."""
        return MappingProxyType(dict(self._sections))

    def ids_with_status(self, status: SectionStatus) -> list[str]:
        return [section_id for section_id, item in self._sections.items() if item.status == status]

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in SectionStatus}
        for item in self._sections.values():
            counts[item.status.value] += 1
        return counts

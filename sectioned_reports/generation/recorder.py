"""
History recorder interface and the scheduler-facing adapter.

The scheduler never waits on the recorder while batches run: progress,
completion and failure calls are queued and delivered in order by a
background task. Recorder errors are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class HistoryRecorder(Protocol):
    def create_pending_report(self, title: str) -> str:
        ...

    def update_report_progress(
        self,
        report_id: str,
        percent: int,
        message: str,
        status: Optional[str] = None,
    ) -> None:
        ...

    def complete_report(self, report_id: str, report: dict) -> None:
        ...

    def mark_report_failed(self, report_id: str, reason: str, report: Optional[dict] = None) -> None:
        ...


class HistoryNotifier:
    """Fire-and-forget, order-preserving wrapper around a HistoryRecorder."""

    def __init__(self, recorder: HistoryRecorder):
        self.recorder = recorder
        self._pending: deque[tuple[str, tuple[Any, ...]]] = deque()
        self._worker: Optional[asyncio.Task] = None

    def create_pending_report(self, title: str) -> str:
        # The report id is needed before scheduling starts, so this one call is direct.
        return self.recorder.create_pending_report(title)

    def update_progress(self, report_id: str, percent: int, message: str, status: Optional[str] = None) -> None:
        self._enqueue("update_report_progress", report_id, percent, message, status)

    def complete(self, report_id: str, report: dict) -> None:
        self._enqueue("complete_report", report_id, report)

    def failed(self, report_id: str, reason: str, report: Optional[dict] = None) -> None:
        self._enqueue("mark_report_failed", report_id, reason, report)

    def _enqueue(self, method_name: str, *args: Any) -> None:
        self._pending.append((method_name, args))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._deliver())

    async def _deliver(self) -> None:
        while self._pending:
            method_name, args = self._pending.popleft()
            try:
                await asyncio.to_thread(getattr(self.recorder, method_name), *args)
            except Exception:
                logger.exception("History recorder call %s failed for report %s", method_name, args[0])

    async def drain(self) -> None:
        """Wait until every queued recorder call has been delivered."""
        while self._worker is not None and not self._worker.done():
            await self._worker

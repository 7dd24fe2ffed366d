"""
Batch scheduler for sectioned report generation.

Handles:
- Sequential batches with concurrent generation inside each batch
- Automatic single-section retries with a fixed backoff
- Partial-completion bookkeeping and history recording
- Retrying failed sections and manual single-section retries
"""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Mapping, Optional

from ..catalog import IndustryTemplate, Section
from ..export.compiler import CompiledDocument, DocumentCompiler
from .errors import (
    FetcherUnavailableError,
    InvalidSectionResponseError,
    SectionBusyError,
    SectionGenerationError,
    SectionTimeoutError,
    is_retryable,
)
from .fetchers import SectionFetcher
from .recorder import HistoryNotifier, HistoryRecorder
from .state import SectionProgress, SectionStateStore, SectionStatus

logger = logging.getLogger(__name__)

# Scheduling constants
BATCH_SIZE = 2
MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 5.0
PROGRESS_TICK_SECONDS = 3.0
PROGRESS_STEP = 10
PROGRESS_CEILING = 80
INITIAL_PROGRESS = 10
FETCH_TIMEOUT_SECONDS = 120.0


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class _AttemptResult(Enum):
    COMPLETED = "completed"
    RETRY = "retry"
    ERROR = "error"


@dataclass(frozen=True)
class SchedulerConfig:
    batch_size: int = BATCH_SIZE
    max_attempts: int = MAX_ATTEMPTS
    retry_delay_seconds: float = RETRY_DELAY_SECONDS
    progress_tick_seconds: float = PROGRESS_TICK_SECONDS
    progress_step: int = PROGRESS_STEP
    progress_ceiling: int = PROGRESS_CEILING
    initial_progress: int = INITIAL_PROGRESS
    fetch_timeout_seconds: Optional[float] = FETCH_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass(frozen=True)
class RunSummary:
    completed: int
    failed: int
    total: int
    outcome: Optional[RunOutcome] = None

    def to_dict(self) -> dict:
        return {
            "completed": self.completed,
            "failed": self.failed,
            "total": self.total,
            "outcome": self.outcome.value if self.outcome else None,
        }


@dataclass
class GenerationRun:
    report_id: str
    title: str
    template: IndustryTemplate
    section_ids: list[str]
    store: SectionStateStore
    notifier: HistoryNotifier
    compiler: DocumentCompiler
    config: SchedulerConfig = field(default_factory=SchedulerConfig)
    overall_progress: int = 0
    outcome: Optional[RunOutcome] = None
    error: Optional[str] = None
    is_running: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    batches_completed: int = 0
    total_batches: int = 0
    attempts: dict[str, int] = field(default_factory=dict)
    in_flight: set[str] = field(default_factory=set)
    retry_tasks: set[asyncio.Task] = field(default_factory=set)
    retry_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def sections(self, section_ids: Iterable[str] | None = None) -> list[Section]:
        """Selected sections (or the given subset) in template order."""
        wanted = set(self.section_ids if section_ids is None else section_ids)
        return [section for section in self.template.sections if section.id in wanted]

    def snapshot(self) -> Mapping[str, SectionProgress]:
        return self.store.snapshot()

    def compile_document(self, generated_at: Optional[datetime] = None) -> CompiledDocument:
        """Compile whatever sections are completed right now."""
        return self.compiler.compile(self.snapshot(), title=self.title, generated_at=generated_at)

    def to_dict(self) -> dict:
        snapshot = self.snapshot()
        return {
            "report_id": self.report_id,
            "title": self.title,
            "template_id": self.template.id,
            "is_running": self.is_running,
            "overall_progress": self.overall_progress,
            "outcome": self.outcome.value if self.outcome else None,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": summarize(self).to_dict(),
            "sections": [
                {**snapshot[section_id].to_dict(), "attempts": self.attempts.get(section_id, 0)}
                for section_id in self.section_ids
            ],
        }


def summarize(run: GenerationRun) -> RunSummary:
    counts = run.store.counts()
    return RunSummary(
        completed=counts[SectionStatus.COMPLETED.value],
        failed=counts[SectionStatus.ERROR.value],
        total=len(run.section_ids),
        outcome=run.outcome,
    )


def create_run(
    template: IndustryTemplate,
    section_ids: Iterable[str],
    recorder: HistoryRecorder,
    *,
    title: Optional[str] = None,
    config: Optional[SchedulerConfig] = None,
) -> GenerationRun:
    """
    Create a generation run for the selected sections of a template.

    The selection is reordered to the template's natural section order and
    a pending history entry is created immediately.
    """
    selected = set(section_ids)
    known_ids = {section.id for section in template.sections}
    unknown = sorted(selected - known_ids)
    if unknown:
        raise ValueError(f"Unknown sections for template {template.id}: {', '.join(unknown)}")

    ordered_ids = [section.id for section in template.sections if section.id in selected]
    if not ordered_ids:
        raise ValueError("Select at least one section to generate")

    notifier = HistoryNotifier(recorder)
    report_title = title or f"{template.name} - Sectioned Report"
    report_id = notifier.create_pending_report(report_title)
    logger.info("Created pending report %s (%d sections)", report_id, len(ordered_ids))

    store = SectionStateStore()
    store.initialize(ordered_ids)

    return GenerationRun(
        report_id=report_id,
        title=report_title,
        template=template,
        section_ids=ordered_ids,
        store=store,
        notifier=notifier,
        compiler=DocumentCompiler(template),
        config=config or SchedulerConfig(),
        attempts={section_id: 0 for section_id in ordered_ids},
    )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def restore_run(
    template: IndustryTemplate,
    report_id: str,
    payload: Mapping,
    recorder: HistoryRecorder,
    *,
    title: Optional[str] = None,
    config: Optional[SchedulerConfig] = None,
) -> GenerationRun:
    """
    Rebuild a finished run from the report payload stored in history.

    Completed sections keep their content and are fed back to the document
    compiler. Every other recorded section comes back in error so it can be
    retried. No new history entry is created; later retries update the
    original one.
    """
    stored = payload.get("sections") or {}
    ordered_ids = [section.id for section in template.sections if section.id in stored]
    if not ordered_ids:
        raise ValueError(f"Report {report_id} has no stored sections to restore")

    compiler = DocumentCompiler(template)
    restored = []
    for section_id in ordered_ids:
        entry = stored[section_id] or {}
        content = entry.get("content")
        if entry.get("status") == SectionStatus.COMPLETED.value and content:
            restored.append(
                SectionProgress(id=section_id, status=SectionStatus.COMPLETED, progress=100, content=content)
            )
            compiler.add_section(
                template.get_section(section_id),
                content,
                generated_at=_parse_timestamp(entry.get("generated_at")),
            )
        else:
            restored.append(
                SectionProgress(
                    id=section_id,
                    status=SectionStatus.ERROR,
                    error=entry.get("error") or "Not generated",
                )
            )

    store = SectionStateStore()
    store.restore(restored)

    metadata = payload.get("metadata") or {}
    run = GenerationRun(
        report_id=report_id,
        title=payload.get("title") or title or f"{template.name} - Sectioned Report",
        template=template,
        section_ids=ordered_ids,
        store=store,
        notifier=HistoryNotifier(recorder),
        compiler=compiler,
        config=config or SchedulerConfig(),
        overall_progress=100,
        error=metadata.get("error"),
        completed_at=_parse_timestamp(metadata.get("generated_at")),
        attempts={section_id: 0 for section_id in ordered_ids},
    )
    counts = summarize(run)
    if counts.completed == counts.total:
        run.outcome = RunOutcome.SUCCESS
    elif counts.completed > 0:
        run.outcome = RunOutcome.PARTIAL
    else:
        run.outcome = RunOutcome.FAILED

    logger.info(
        "Restored report %s from history (%d/%d sections completed)",
        report_id,
        counts.completed,
        counts.total,
    )
    return run


async def run_generation(run: GenerationRun, fetcher: SectionFetcher) -> RunSummary:
    """Generate every selected section and finalize the run."""
    if run.is_running:
        raise SectionBusyError(f"Report {run.report_id} is already generating")
    run.started_at = datetime.now(timezone.utc)
    return await _run_batches(run, fetcher, run.sections())


async def retry_failed_sections(run: GenerationRun, fetcher: SectionFetcher) -> RunSummary:
    """Re-run the batch pipeline over sections currently in error."""
    if run.is_running:
        raise SectionBusyError(f"Report {run.report_id} is still generating")

    failed_ids = run.store.ids_with_status(SectionStatus.ERROR)
    if not failed_ids:
        logger.info("No failed sections to retry for report %s", run.report_id)
        return summarize(run)

    logger.info("Retrying %d failed sections for report %s", len(failed_ids), run.report_id)
    for section_id in failed_ids:
        run.store.reset_for_retry(section_id)
        run.attempts[section_id] = 0
    _report_progress(run, f"Retrying {len(failed_ids)} failed sections...")

    return await _run_batches(run, fetcher, run.sections(failed_ids))


async def retry_section(run: GenerationRun, section_id: str, fetcher: SectionFetcher) -> SectionProgress:
    """
    Manually retry one errored section.

    The attempt counter is reset first, so repeated manual retries are not
    bounded by the automatic attempt cap.
    """
    if section_id not in run.store:
        raise KeyError(f"Section {section_id} is not part of report {run.report_id}")
    if section_id in run.in_flight or run.store.get(section_id).status != SectionStatus.ERROR:
        raise SectionBusyError(f"Section {section_id} is not in an errored state")

    section = run.template.get_section(section_id)
    run.store.reset_for_retry(section_id)
    run.attempts[section_id] = 0
    _report_progress(run, f"{section.title}: manual retry")

    result = await _generate_once(run, fetcher, section)
    if result is _AttemptResult.RETRY:
        await _retry_chain(run, fetcher, section)

    if not run.is_running:
        _finalize(run)
        await run.notifier.drain()
    return run.store.get(section_id)


async def _run_batches(
    run: GenerationRun,
    fetcher: SectionFetcher,
    sections: list[Section],
) -> RunSummary:
    size = run.config.batch_size
    batches = [sections[i:i + size] for i in range(0, len(sections), size)]

    run.is_running = True
    run.error = None
    run.batches_completed = 0
    run.total_batches = len(batches)
    try:
        for index, batch in enumerate(batches):
            start = index * size
            _report_progress(
                run,
                f"Generating sections {start + 1}-{start + len(batch)} of {len(sections)}...",
            )
            await _run_batch(run, fetcher, batch)
            run.batches_completed = index + 1
            _report_progress(run, f"Finished batch {index + 1} of {len(batches)}")

        await _await_retries(run)
    except Exception as e:
        logger.exception("Generation run %s aborted", run.report_id)
        await _abort(run)
        summary = _finalize(run, error=str(e) or type(e).__name__)
    else:
        summary = _finalize(run)
    finally:
        run.is_running = False

    await run.notifier.drain()
    return summary


async def _run_batch(run: GenerationRun, fetcher: SectionFetcher, batch: list[Section]) -> None:
    tasks = [asyncio.create_task(_dispatch(run, fetcher, section)) for section in batch]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _dispatch(run: GenerationRun, fetcher: SectionFetcher, section: Section) -> None:
    result = await _generate_once(run, fetcher, section)
    if result is _AttemptResult.RETRY:
        # Deferred so the next batch is not held back by the backoff.
        task = asyncio.create_task(_retry_chain(run, fetcher, section))
        run.retry_tasks.add(task)


async def _retry_chain(run: GenerationRun, fetcher: SectionFetcher, section: Section) -> None:
    while True:
        await asyncio.sleep(run.config.retry_delay_seconds)
        async with run.retry_lock:
            result = await _generate_once(run, fetcher, section)
        if result is not _AttemptResult.RETRY:
            return


async def _await_retries(run: GenerationRun) -> None:
    while run.retry_tasks:
        tasks = list(run.retry_tasks)
        await asyncio.gather(*tasks)
        run.retry_tasks.difference_update(tasks)


async def _abort(run: GenerationRun) -> None:
    """Cancel deferred work and fail every section the run left unfinished."""
    for task in run.retry_tasks:
        task.cancel()
    await asyncio.gather(*run.retry_tasks, return_exceptions=True)
    run.retry_tasks.clear()

    for section_id in run.section_ids:
        # Still owned by a manual retry.
        if section_id in run.in_flight:
            continue
        status = run.store.get(section_id).status
        if status == SectionStatus.GENERATING:
            run.store.fail_unfinished(section_id, "Generation interrupted")
        elif status == SectionStatus.PENDING:
            run.store.fail_unfinished(section_id, "Not generated: run aborted")


async def _generate_once(run: GenerationRun, fetcher: SectionFetcher, section: Section) -> _AttemptResult:
    """Run one attempt and settle the section to completed, pending (retry) or error."""
    if section.id in run.in_flight:
        raise SectionBusyError(f"Section {section.id} is already generating")

    run.attempts[section.id] = run.attempts.get(section.id, 0) + 1
    attempt = run.attempts[section.id]
    run.in_flight.add(section.id)
    try:
        _set_status(run, section, SectionStatus.GENERATING, progress=run.config.initial_progress)
        try:
            async with _progress_ticker(run, section.id):
                content = await _fetch(run, fetcher, section)
        except FetcherUnavailableError as e:
            _set_status(run, section, SectionStatus.ERROR, progress=0, error=str(e))
            raise
        except Exception as e:
            return _handle_failure(run, section, e, attempt)

        _set_status(run, section, SectionStatus.COMPLETED, progress=100, content=content, error=None)
        run.compiler.add_section(section, content)
        logger.info("Section %s completed (attempt %d)", section.id, attempt)
        return _AttemptResult.COMPLETED
    finally:
        run.in_flight.discard(section.id)


async def _fetch(run: GenerationRun, fetcher: SectionFetcher, section: Section) -> str:
    timeout = run.config.fetch_timeout_seconds
    try:
        content = await asyncio.wait_for(fetcher.fetch(section, run.template), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise SectionTimeoutError(f"Section {section.id} timed out after {timeout}s") from e

    if not isinstance(content, str) or not content.strip():
        raise InvalidSectionResponseError(f"Empty content returned for section {section.id}")
    return content


def _handle_failure(run: GenerationRun, section: Section, error: Exception, attempt: int) -> _AttemptResult:
    if not isinstance(error, SectionGenerationError):
        logger.exception("Unexpected error generating section %s", section.id)

    message = str(error) or type(error).__name__
    max_attempts = run.config.max_attempts
    if is_retryable(error) and attempt < max_attempts:
        logger.warning(
            "Retrying section %s in %.1fs (attempt %d/%d): %s",
            section.id,
            run.config.retry_delay_seconds,
            attempt + 1,
            max_attempts,
            message,
        )
        _set_status(run, section, SectionStatus.PENDING, progress=0, error=message)
        return _AttemptResult.RETRY

    logger.error("Section %s failed after %d attempt(s): %s", section.id, attempt, message)
    _set_status(run, section, SectionStatus.ERROR, progress=0, error=message)
    return _AttemptResult.ERROR


@asynccontextmanager
async def _progress_ticker(run: GenerationRun, section_id: str):
    """Cosmetic progress increments while a fetch is outstanding."""
    task = asyncio.create_task(_tick_progress(run, section_id))
    try:
        yield
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


async def _tick_progress(run: GenerationRun, section_id: str) -> None:
    config = run.config
    while True:
        await asyncio.sleep(config.progress_tick_seconds)
        current = run.store.get(section_id)
        if current.status != SectionStatus.GENERATING:
            return
        if current.progress < config.progress_ceiling:
            run.store.update(
                section_id,
                progress=min(current.progress + config.progress_step, config.progress_ceiling),
            )


def _set_status(run: GenerationRun, section: Section, status: SectionStatus, **changes) -> None:
    run.store.update(section.id, status=status, **changes)
    _report_progress(run, f"{section.title}: {status.value}")


def _report_progress(run: GenerationRun, message: str) -> None:
    if run.total_batches:
        percent = math.floor(run.batches_completed / run.total_batches * 100)
        run.overall_progress = max(run.overall_progress, percent)
    run.notifier.update_progress(run.report_id, run.overall_progress, message, "generating")


def _build_report_payload(run: GenerationRun, summary: RunSummary, outcome: RunOutcome) -> dict:
    snapshot = run.snapshot()
    sections = {}
    for section_id in run.section_ids:
        progress = snapshot[section_id]
        accumulated = run.compiler.get(section_id)
        sections[section_id] = {
            "status": progress.status.value,
            "progress": progress.progress,
            "content": progress.content if progress.status == SectionStatus.COMPLETED else None,
            "error": progress.error,
            "generated_at": accumulated.generated_at.isoformat() if accumulated else None,
        }
    return {
        "title": run.title,
        "template_id": run.template.id,
        "outcome": outcome.value,
        "sections": sections,
        "metadata": {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "sections_generated": summary.completed,
            "total_sections": summary.total,
            "failed_sections": summary.failed,
            "is_partially_complete": outcome is RunOutcome.PARTIAL,
            "error": run.error,
        },
    }


def _finalize(run: GenerationRun, error: Optional[str] = None) -> RunSummary:
    """Record the run's terminal outcome. Run-level errors keep partial credit."""
    counts = summarize(run)
    run.error = error
    run.completed_at = datetime.now(timezone.utc)
    run.overall_progress = 100

    if counts.completed == counts.total:
        outcome = RunOutcome.SUCCESS
        message = f"All {counts.total} sections generated successfully"
    elif counts.completed > 0:
        outcome = RunOutcome.PARTIAL
        message = (
            f"Partial completion: {counts.completed}/{counts.total} sections generated, "
            f"{counts.failed} failed"
        )
        if error:
            message += f" (run aborted: {error})"
    else:
        outcome = RunOutcome.FAILED
        message = f"All {counts.total} sections failed to generate"
        if error:
            message = f"Section generation failed: {error}. {message}"

    run.outcome = outcome
    summary = RunSummary(counts.completed, counts.failed, counts.total, outcome)

    if outcome is RunOutcome.FAILED:
        run.notifier.failed(run.report_id, message, _build_report_payload(run, summary, outcome))
    else:
        run.notifier.complete(run.report_id, _build_report_payload(run, summary, outcome))
        run.notifier.update_progress(run.report_id, 100, message, "generated")

    logger.info("Report %s finished: %s", run.report_id, message)
    return summary

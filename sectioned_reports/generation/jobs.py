"""
In-process registry of generation runs for the HTTP API.

Runs are started as background tasks and polled by report id.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from ..catalog import get_high_priority_sections, get_template
from ..history import MAX_REPORTS
from .errors import SectionBusyError
from .fetchers import SectionFetcher
from .recorder import HistoryRecorder
from .scheduler import (
    GenerationRun,
    SchedulerConfig,
    create_run,
    restore_run as restore_generation_run,
    retry_failed_sections,
    retry_section,
    run_generation,
)
from .state import SectionStatus

logger = logging.getLogger(__name__)

# In-memory run store (state is lost on restart; runs can be restored from history)
_runs: dict[str, GenerationRun] = {}
_active_tasks: dict[str, asyncio.Task] = {}

# Finished runs beyond this are forgotten, matching the history limit
MAX_TRACKED_RUNS = MAX_REPORTS


def _spawn(key: str, coro) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro)
    _active_tasks[key] = task

    def _cleanup(finished: asyncio.Task) -> None:
        if _active_tasks.get(key) is finished:
            del _active_tasks[key]
        if not finished.cancelled() and finished.exception() is not None:
            logger.error("Background generation task %s failed", key, exc_info=finished.exception())

    task.add_done_callback(_cleanup)
    return task


def _is_active(key: str) -> bool:
    task = _active_tasks.get(key)
    return task is not None and not task.done()


def _has_active_work(report_id: str) -> bool:
    """True while the run or any manual section retry of it is still in progress."""
    return any(
        _is_active(key) for key in list(_active_tasks)
        if key == report_id or key.startswith(f"{report_id}:")
    )


def _is_finished(report_id: str) -> bool:
    run = _runs.get(report_id)
    return run is not None and not run.is_running and not _has_active_work(report_id)


def _register(run: GenerationRun) -> None:
    _runs[run.report_id] = run
    _prune_runs()


def _prune_runs() -> None:
    """Forget the oldest finished runs once more than MAX_TRACKED_RUNS are held."""
    excess = len(_runs) - MAX_TRACKED_RUNS
    for report_id in list(_runs):
        if excess <= 0:
            break
        if _is_finished(report_id):
            del _runs[report_id]
            excess -= 1


def get_run(report_id: str) -> Optional[GenerationRun]:
    return _runs.get(report_id)


def get_report_status(report_id: str) -> Optional[dict]:
    """Get the current status of a generation run."""
    run = _runs.get(report_id)
    if not run:
        return None
    status = run.to_dict()
    status["is_running"] = run.is_running or _has_active_work(report_id)
    return status


async def start_report(
    template_id: str,
    recorder: HistoryRecorder,
    fetcher: SectionFetcher,
    section_ids: Optional[Iterable[str]] = None,
    title: Optional[str] = None,
    config: Optional[SchedulerConfig] = None,
) -> dict:
    """
    Start generating a report in the background.

    Without an explicit selection, the template's high-priority sections are
    generated. Returns the report id for status polling.
    """
    template = get_template(template_id)
    if section_ids is None:
        section_ids = [section.id for section in get_high_priority_sections(template)]

    # create_run inserts the pending history entry, which is blocking I/O.
    run = await asyncio.to_thread(create_run, template, section_ids, recorder, title=title, config=config)
    _spawn(run.report_id, run_generation(run, fetcher))
    _register(run)

    return {
        "report_id": run.report_id,
        "title": run.title,
        "total_sections": len(run.section_ids),
    }


async def start_retry_failed(report_id: str, fetcher: SectionFetcher) -> dict:
    run = _runs.get(report_id)
    if not run:
        raise KeyError(f"Report not found: {report_id}")
    if run.is_running or _has_active_work(report_id):
        raise SectionBusyError(f"Report {report_id} is still generating")

    failed_ids = run.store.ids_with_status(SectionStatus.ERROR)
    if failed_ids:
        _spawn(report_id, retry_failed_sections(run, fetcher))
    return {"report_id": report_id, "retrying": failed_ids}


async def start_section_retry(report_id: str, section_id: str, fetcher: SectionFetcher) -> dict:
    run = _runs.get(report_id)
    if not run:
        raise KeyError(f"Report not found: {report_id}")
    if section_id not in run.store:
        raise KeyError(f"Section {section_id} is not part of report {report_id}")

    key = f"{report_id}:{section_id}"
    if _is_active(key) or run.store.get(section_id).status != SectionStatus.ERROR:
        raise SectionBusyError(f"Section {section_id} is not in an errored state")

    _spawn(key, retry_section(run, section_id, fetcher))
    return {"report_id": report_id, "section_id": section_id}


def restore_run(
    history_item: dict,
    recorder: HistoryRecorder,
    config: Optional[SchedulerConfig] = None,
) -> dict:
    """
    Reopen a report from its history entry.

    A run that is still tracked is returned as is. Otherwise the stored
    per-section payload is loaded so failed sections can be retried and the
    completed ones compiled.
    """
    report_id = history_item["id"]
    if report_id not in _runs:
        payload = history_item.get("report")
        if not payload:
            raise ValueError(f"Report {report_id} has no stored sections to restore")
        template = get_template(payload.get("template_id"))
        run = restore_generation_run(
            template,
            report_id,
            payload,
            recorder,
            title=history_item.get("workflow_name"),
            config=config,
        )
        _register(run)
    return get_report_status(report_id)


def forget_run(report_id: str) -> bool:
    """Drop a finished run, e.g. after its history entry was deleted."""
    if not _is_finished(report_id):
        return False
    del _runs[report_id]
    return True


def forget_finished_runs() -> int:
    return sum(1 for report_id in list(_runs) if forget_run(report_id))


def clear_runs() -> None:
    """Forget every tracked run. Active tasks keep running."""
    _runs.clear()

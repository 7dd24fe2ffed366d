from __future__ import annotations

import asyncio
import unittest

from sectioned_reports.catalog import parse_template
from sectioned_reports.export import NothingToCompileError
from sectioned_reports.generation import (
    FetcherUnavailableError,
    InvalidSectionResponseError,
    RunOutcome,
    SchedulerConfig,
    SectionBusyError,
    SectionCallFailedError,
    SectionStatus,
    create_run,
    restore_run,
    retry_failed_sections,
    retry_section,
    run_generation,
)

FAST = SchedulerConfig(retry_delay_seconds=0, progress_tick_seconds=0.01, fetch_timeout_seconds=2.0)

TEMPLATE = parse_template(
    {
        "id": "testing",
        "name": "Testing Industry",
        "description": "Template used by scheduler tests",
        "icon": "T",
        "estimated_total_pages": 10,
        "sections": [
            {"id": "a", "title": "Alpha", "description": "", "estimated_pages": 2, "priority": "high", "category": "executive"},
            {"id": "b", "title": "Bravo", "description": "", "estimated_pages": 2, "priority": "high", "category": "analysis"},
            {"id": "c", "title": "Charlie", "description": "", "estimated_pages": 2, "priority": "medium", "category": "implementation"},
            {"id": "d", "title": "Delta", "description": "", "estimated_pages": 2, "priority": "low", "category": "technical"},
            {"id": "e", "title": "Echo", "description": "", "estimated_pages": 2, "priority": "high", "category": "financial"},
        ],
    }
)
ALL_IDS = ["a", "b", "c", "d", "e"]


class RecordingRecorder:
    def __init__(self, fail_progress: bool = False):
        self.calls: list[tuple] = []
        self.failed_reports: list = []
        self.fail_progress = fail_progress

    def create_pending_report(self, title):
        self.calls.append(("create", title))
        return "report_test"

    def update_report_progress(self, report_id, percent, message, status=None):
        if self.fail_progress:
            raise RuntimeError("history store unavailable")
        self.calls.append(("progress", report_id, percent, message, status))

    def complete_report(self, report_id, report):
        self.calls.append(("complete", report_id, report))

    def mark_report_failed(self, report_id, reason, report=None):
        self.calls.append(("failed", report_id, reason))
        self.failed_reports.append(report)

    def of(self, kind):
        return [call for call in self.calls if call[0] == kind]


class ScriptedFetcher:
    """Returns scripted outcomes per section; anything unscripted succeeds."""

    def __init__(self, script=None, delay=0.01):
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.delay = delay
        self.calls: list[str] = []
        self.events: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0

    async def fetch(self, section, template):
        self.calls.append(section.id)
        outcomes = self.script.get(section.id)
        outcome = outcomes.pop(0) if outcomes else f"<p>{section.title} content</p>"
        if isinstance(outcome, BaseException):
            raise outcome

        self.events.append(("start", section.id))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
            self.events.append(("end", section.id))
        return outcome


def _ticker_tasks() -> list[asyncio.Task]:
    return [
        task for task in asyncio.all_tasks()
        if getattr(task.get_coro(), "__name__", "") == "_tick_progress"
    ]


class CreateRunTests(unittest.IsolatedAsyncioTestCase):
    async def test_selection_is_reordered_to_template_order(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ["e", "a", "c"], recorder, config=FAST)

        self.assertEqual(run.section_ids, ["a", "c", "e"])
        self.assertEqual(run.report_id, "report_test")
        self.assertEqual(run.title, "Testing Industry - Sectioned Report")
        self.assertEqual(recorder.calls, [("create", "Testing Industry - Sectioned Report")])
        for section_id in run.section_ids:
            self.assertEqual(run.store.get(section_id).status, SectionStatus.PENDING)

    async def test_unknown_or_empty_selection_is_rejected(self):
        with self.assertRaises(ValueError):
            create_run(TEMPLATE, ["a", "zzz"], RecordingRecorder(), config=FAST)
        with self.assertRaises(ValueError):
            create_run(TEMPLATE, [], RecordingRecorder(), config=FAST)


class BatchSchedulingTests(unittest.IsolatedAsyncioTestCase):
    async def test_sections_run_in_sequential_batches_of_two(self):
        run = create_run(TEMPLATE, ALL_IDS, RecordingRecorder(), config=FAST)
        fetcher = ScriptedFetcher(delay=0.02)

        summary = await run_generation(run, fetcher)

        self.assertEqual(summary.outcome, RunOutcome.SUCCESS)
        self.assertEqual(fetcher.calls, ALL_IDS)
        self.assertEqual(fetcher.max_active, 2)
        self.assertEqual(run.total_batches, 3)
        self.assertEqual(run.batches_completed, 3)

        # Batch two only starts after both members of batch one finished.
        events = fetcher.events
        self.assertGreater(events.index(("start", "c")), events.index(("end", "a")))
        self.assertGreater(events.index(("start", "c")), events.index(("end", "b")))
        self.assertGreater(events.index(("start", "e")), events.index(("end", "d")))

    async def test_successful_run_records_complete_payload(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ALL_IDS, recorder, config=FAST)

        await run_generation(run, ScriptedFetcher())

        self.assertFalse(run.is_running)
        self.assertEqual(run.overall_progress, 100)
        complete_calls = recorder.of("complete")
        self.assertEqual(len(complete_calls), 1)
        payload = complete_calls[0][2]
        self.assertEqual(payload["outcome"], "success")
        self.assertFalse(payload["metadata"]["is_partially_complete"])
        self.assertEqual(payload["metadata"]["sections_generated"], 5)
        for section_id in ALL_IDS:
            self.assertEqual(payload["sections"][section_id]["status"], "completed")
            self.assertIsNotNone(payload["sections"][section_id]["generated_at"])
        self.assertEqual(recorder.of("failed"), [])
        self.assertEqual(
            recorder.calls[-1],
            ("progress", "report_test", 100, "All 5 sections generated successfully", "generated"),
        )

    async def test_overall_progress_never_decreases(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ALL_IDS, recorder, config=FAST)

        await run_generation(run, ScriptedFetcher({"b": [InvalidSectionResponseError("bad")]}))
        await retry_failed_sections(run, ScriptedFetcher())

        percents = [call[2] for call in recorder.of("progress")]
        self.assertEqual(percents, sorted(percents))
        self.assertEqual(percents[-1], 100)

    async def test_rejects_second_concurrent_run(self):
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        run.is_running = True

        with self.assertRaises(SectionBusyError):
            await run_generation(run, ScriptedFetcher())


class RetryTests(unittest.IsolatedAsyncioTestCase):
    async def test_retryable_failure_is_attempted_at_most_three_times(self):
        failure = SectionCallFailedError("API call failed: 503", status_code=503)
        run = create_run(TEMPLATE, ["a", "b"], RecordingRecorder(), config=FAST)
        fetcher = ScriptedFetcher({"a": [failure] * 5})

        await run_generation(run, fetcher)

        self.assertEqual(fetcher.calls.count("a"), 3)
        self.assertEqual(run.attempts["a"], 3)
        state = run.store.get("a")
        self.assertEqual(state.status, SectionStatus.ERROR)
        self.assertEqual(state.error, "API call failed: 503")
        self.assertEqual(state.progress, 0)

    async def test_transient_failure_recovers_on_retry(self):
        run = create_run(TEMPLATE, ["a", "b"], RecordingRecorder(), config=FAST)
        fetcher = ScriptedFetcher({"a": [SectionCallFailedError("API call failed: 502", status_code=502)]})

        summary = await run_generation(run, fetcher)

        self.assertEqual(summary.outcome, RunOutcome.SUCCESS)
        self.assertEqual(run.attempts["a"], 2)
        self.assertEqual(run.store.get("a").status, SectionStatus.COMPLETED)
        self.assertIsNone(run.store.get("a").error)

    async def test_non_retryable_failure_is_attempted_once(self):
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        fetcher = ScriptedFetcher({"a": [InvalidSectionResponseError("Invalid response from API")]})

        await run_generation(run, fetcher)

        self.assertEqual(fetcher.calls, ["a"])
        self.assertEqual(run.store.get("a").status, SectionStatus.ERROR)
        self.assertEqual(run.store.get("a").error, "Invalid response from API")

    async def test_unexpected_exception_is_not_retried(self):
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        fetcher = ScriptedFetcher({"a": [RuntimeError("kaboom")]})

        await run_generation(run, fetcher)

        self.assertEqual(fetcher.calls, ["a"])
        self.assertEqual(run.store.get("a").error, "kaboom")

    async def test_empty_content_is_an_invalid_response(self):
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        fetcher = ScriptedFetcher({"a": ["   "]})

        await run_generation(run, fetcher)

        self.assertEqual(fetcher.calls, ["a"])
        self.assertEqual(run.store.get("a").status, SectionStatus.ERROR)

    async def test_fetch_timeout_is_retried_then_fails(self):
        config = SchedulerConfig(
            retry_delay_seconds=0,
            progress_tick_seconds=0.01,
            fetch_timeout_seconds=0.05,
            max_attempts=2,
        )
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=config)
        fetcher = ScriptedFetcher(delay=1.0)

        await run_generation(run, fetcher)

        self.assertEqual(fetcher.calls, ["a", "a"])
        self.assertEqual(run.store.get("a").status, SectionStatus.ERROR)
        self.assertIn("timed out", run.store.get("a").error)

    async def test_deferred_retry_does_not_hold_back_later_batches(self):
        config = SchedulerConfig(retry_delay_seconds=0.2, progress_tick_seconds=0.01)
        run = create_run(TEMPLATE, ALL_IDS, RecordingRecorder(), config=config)
        fetcher = ScriptedFetcher({"a": [SectionCallFailedError("API call failed: 500", status_code=500)]})

        summary = await run_generation(run, fetcher)

        self.assertEqual(fetcher.calls, ["a", "b", "c", "d", "e", "a"])
        self.assertEqual(summary.outcome, RunOutcome.SUCCESS)


class OutcomeTests(unittest.IsolatedAsyncioTestCase):
    async def test_partial_completion_is_recorded_as_complete(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ALL_IDS, recorder, config=FAST)
        fetcher = ScriptedFetcher(
            {
                "b": [InvalidSectionResponseError("bad b")],
                "d": [InvalidSectionResponseError("bad d")],
            }
        )

        summary = await run_generation(run, fetcher)

        self.assertEqual((summary.completed, summary.failed, summary.total), (3, 2, 5))
        self.assertEqual(summary.outcome, RunOutcome.PARTIAL)
        self.assertEqual(recorder.of("failed"), [])

        payload = recorder.of("complete")[0][2]
        self.assertEqual(payload["outcome"], "partial")
        self.assertTrue(payload["metadata"]["is_partially_complete"])
        self.assertEqual(payload["metadata"]["sections_generated"], 3)
        self.assertEqual(payload["metadata"]["failed_sections"], 2)
        self.assertIsNone(payload["sections"]["b"]["content"])
        self.assertEqual(payload["sections"]["b"]["error"], "bad b")
        self.assertEqual(
            recorder.calls[-1],
            (
                "progress",
                "report_test",
                100,
                "Partial completion: 3/5 sections generated, 2 failed",
                "generated",
            ),
        )

        document = run.compile_document()
        self.assertEqual(document.section_ids, ("a", "c", "e"))

    async def test_total_failure_marks_report_failed(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ALL_IDS, recorder, config=FAST)
        fetcher = ScriptedFetcher({section_id: [InvalidSectionResponseError("bad")] for section_id in ALL_IDS})

        summary = await run_generation(run, fetcher)

        self.assertEqual(summary.outcome, RunOutcome.FAILED)
        self.assertEqual(recorder.of("complete"), [])
        self.assertEqual(recorder.of("failed"), [("failed", "report_test", "All 5 sections failed to generate")])
        stored = recorder.failed_reports[0]
        self.assertEqual(stored["outcome"], "failed")
        self.assertEqual({entry["status"] for entry in stored["sections"].values()}, {"error"})
        self.assertEqual(stored["sections"]["a"]["error"], "bad")
        with self.assertRaises(NothingToCompileError):
            run.compile_document()

    async def test_unavailable_fetcher_aborts_the_run_with_partial_credit(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ALL_IDS, recorder, config=FAST)
        fetcher = ScriptedFetcher({"c": [FetcherUnavailableError("SECTION_ENDPOINT_URL is not configured")]})

        summary = await run_generation(run, fetcher)

        self.assertEqual(summary.outcome, RunOutcome.PARTIAL)
        self.assertEqual(run.error, "SECTION_ENDPOINT_URL is not configured")
        self.assertNotIn("e", fetcher.calls)
        self.assertEqual(run.store.get("a").status, SectionStatus.COMPLETED)
        self.assertEqual(run.store.get("c").status, SectionStatus.ERROR)
        self.assertEqual(run.store.get("d").status, SectionStatus.ERROR)
        self.assertEqual(run.store.get("d").error, "Generation interrupted")
        self.assertEqual(run.store.get("e").status, SectionStatus.ERROR)
        self.assertEqual(run.store.get("e").error, "Not generated: run aborted")
        self.assertEqual((summary.completed, summary.failed, summary.total), (2, 3, 5))
        self.assertFalse(run.is_running)

        payload = recorder.of("complete")[0][2]
        self.assertEqual(payload["metadata"]["error"], "SECTION_ENDPOINT_URL is not configured")
        self.assertIn("run aborted", recorder.calls[-1][3])
        self.assertEqual(_ticker_tasks(), [])

    async def test_sections_left_by_an_aborted_run_can_be_retried(self):
        run = create_run(TEMPLATE, ALL_IDS, RecordingRecorder(), config=FAST)
        await run_generation(run, ScriptedFetcher({"c": [FetcherUnavailableError("endpoint offline")]}))

        fetcher = ScriptedFetcher()
        summary = await retry_failed_sections(run, fetcher)

        self.assertEqual(fetcher.calls, ["c", "d", "e"])
        self.assertEqual((summary.completed, summary.failed, summary.total), (5, 0, 5))
        self.assertEqual(summary.outcome, RunOutcome.SUCCESS)

    async def test_abort_fails_sections_waiting_on_a_deferred_retry(self):
        config = SchedulerConfig(retry_delay_seconds=0.5, progress_tick_seconds=0.01, fetch_timeout_seconds=2.0)
        run = create_run(TEMPLATE, ["a", "b", "c"], RecordingRecorder(), config=config)
        fetcher = ScriptedFetcher(
            {
                "a": [SectionCallFailedError("API call failed: 500", status_code=500)],
                "c": [FetcherUnavailableError("endpoint offline")],
            }
        )

        summary = await run_generation(run, fetcher)

        self.assertEqual(fetcher.calls.count("a"), 1)
        self.assertEqual(run.store.get("a").status, SectionStatus.ERROR)
        self.assertEqual(run.store.get("a").error, "Not generated: run aborted")
        self.assertEqual((summary.completed, summary.failed, summary.total), (1, 2, 3))
        self.assertEqual(run.retry_tasks, set())

        state = await retry_section(run, "a", ScriptedFetcher())
        self.assertEqual(state.status, SectionStatus.COMPLETED)

    async def test_unavailable_fetcher_with_nothing_completed_fails_the_run(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ["a", "b"], recorder, config=FAST)
        fetcher = ScriptedFetcher({"a": [FetcherUnavailableError("No LLM auth configured")]})

        summary = await run_generation(run, fetcher)

        self.assertEqual(summary.outcome, RunOutcome.FAILED)
        reason = recorder.of("failed")[0][2]
        self.assertTrue(reason.startswith("Section generation failed: No LLM auth configured."))

    async def test_recorder_errors_do_not_disturb_generation(self):
        recorder = RecordingRecorder(fail_progress=True)
        run = create_run(TEMPLATE, ["a", "b"], recorder, config=FAST)

        with self.assertLogs("sectioned_reports.generation.recorder", level="ERROR"):
            summary = await run_generation(run, ScriptedFetcher())

        self.assertEqual(summary.outcome, RunOutcome.SUCCESS)
        self.assertEqual(len(recorder.of("complete")), 1)


class ProgressTickerTests(unittest.IsolatedAsyncioTestCase):
    async def test_ticker_advances_to_ceiling_and_stops(self):
        class ObservingFetcher:
            def __init__(self):
                self.run = None
                self.observed = []

            async def fetch(self, section, template):
                await asyncio.sleep(0.3)
                self.observed.append(self.run.store.get(section.id).progress)
                return "<p>done</p>"

        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        fetcher = ObservingFetcher()
        fetcher.run = run

        await run_generation(run, fetcher)

        self.assertEqual(fetcher.observed, [80])
        self.assertEqual(run.store.get("a").progress, 100)
        self.assertEqual(_ticker_tasks(), [])

        await asyncio.sleep(0.05)
        self.assertEqual(run.store.get("a").progress, 100)

    async def test_ticker_is_cancelled_when_fetch_fails(self):
        class SlowFailingFetcher:
            async def fetch(self, section, template):
                await asyncio.sleep(0.05)
                raise InvalidSectionResponseError("bad")

        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)

        await run_generation(run, SlowFailingFetcher())

        self.assertEqual(_ticker_tasks(), [])
        self.assertEqual(run.store.get("a").progress, 0)


class RetryOperationsTests(unittest.IsolatedAsyncioTestCase):
    async def test_retry_failed_sections_reruns_only_errored_sections(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ALL_IDS, recorder, config=FAST)
        await run_generation(
            run,
            ScriptedFetcher({"b": [InvalidSectionResponseError("bad")], "e": [InvalidSectionResponseError("bad")]}),
        )

        fetcher = ScriptedFetcher()
        summary = await retry_failed_sections(run, fetcher)

        self.assertEqual(fetcher.calls, ["b", "e"])
        self.assertEqual(summary.outcome, RunOutcome.SUCCESS)
        outcomes = [call[2]["outcome"] for call in recorder.of("complete")]
        self.assertEqual(outcomes, ["partial", "success"])

    async def test_retry_failed_sections_without_failures_is_a_no_op(self):
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        await run_generation(run, ScriptedFetcher())

        fetcher = ScriptedFetcher()
        summary = await retry_failed_sections(run, fetcher)

        self.assertEqual(fetcher.calls, [])
        self.assertEqual(summary.completed, 1)

    async def test_retry_failed_sections_rejects_running_report(self):
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        run.is_running = True

        with self.assertRaises(SectionBusyError):
            await retry_failed_sections(run, ScriptedFetcher())

    async def test_manual_retry_resets_attempts_and_refinalizes(self):
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ["a", "b"], recorder, config=FAST)
        await run_generation(run, ScriptedFetcher({"a": [SectionCallFailedError("down", status_code=503)] * 3}))
        self.assertEqual(run.attempts["a"], 3)

        state = await retry_section(run, "a", ScriptedFetcher())

        self.assertEqual(state.status, SectionStatus.COMPLETED)
        self.assertEqual(run.attempts["a"], 1)
        self.assertEqual(run.outcome, RunOutcome.SUCCESS)
        self.assertEqual(recorder.of("complete")[-1][2]["outcome"], "success")

    async def test_manual_retry_runs_a_fresh_retry_chain(self):
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        await run_generation(run, ScriptedFetcher({"a": [InvalidSectionResponseError("bad")]}))

        fetcher = ScriptedFetcher({"a": [SectionCallFailedError("down", status_code=503)] * 5})
        state = await retry_section(run, "a", fetcher)

        self.assertEqual(fetcher.calls, ["a", "a", "a"])
        self.assertEqual(state.status, SectionStatus.ERROR)

    async def test_manual_retry_requires_errored_section(self):
        run = create_run(TEMPLATE, ["a"], RecordingRecorder(), config=FAST)
        await run_generation(run, ScriptedFetcher())

        with self.assertRaises(SectionBusyError):
            await retry_section(run, "a", ScriptedFetcher())
        with self.assertRaises(KeyError):
            await retry_section(run, "zzz", ScriptedFetcher())


class RestoreRunTests(unittest.IsolatedAsyncioTestCase):
    async def _partial_payload(self) -> dict:
        recorder = RecordingRecorder()
        run = create_run(TEMPLATE, ["a", "b", "c"], recorder, config=FAST)
        await run_generation(run, ScriptedFetcher({"b": [InvalidSectionResponseError("bad b")]}))
        return recorder.of("complete")[0][2]

    async def test_restored_run_keeps_completed_content_and_errors(self):
        payload = await self._partial_payload()
        recorder = RecordingRecorder()

        run = restore_run(TEMPLATE, "report_saved", payload, recorder, config=FAST)

        self.assertEqual(run.report_id, "report_saved")
        self.assertEqual(run.section_ids, ["a", "b", "c"])
        self.assertEqual(run.outcome, RunOutcome.PARTIAL)
        self.assertEqual(run.store.get("a").content, "<p>Alpha content</p>")
        self.assertEqual(run.store.get("b").status, SectionStatus.ERROR)
        self.assertEqual(run.store.get("b").error, "bad b")
        self.assertEqual(run.compile_document().section_ids, ("a", "c"))
        self.assertEqual(recorder.calls, [])

    async def test_restored_run_retries_failed_sections_into_the_same_report(self):
        payload = await self._partial_payload()
        recorder = RecordingRecorder()
        run = restore_run(TEMPLATE, "report_saved", payload, recorder, config=FAST)

        fetcher = ScriptedFetcher()
        summary = await retry_failed_sections(run, fetcher)

        self.assertEqual(fetcher.calls, ["b"])
        self.assertEqual(summary.outcome, RunOutcome.SUCCESS)
        self.assertEqual([call[1] for call in recorder.of("complete")], ["report_saved"])
        self.assertEqual(recorder.of("create"), [])

    async def test_restore_requires_stored_sections(self):
        with self.assertRaises(ValueError):
            restore_run(TEMPLATE, "report_saved", {"sections": {}}, RecordingRecorder())


if __name__ == "__main__":
    unittest.main()

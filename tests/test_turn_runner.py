import asyncio
import json
import unittest

from toolbridge.router.intent_router import DirectIntentDetector
from toolbridge.services.alias_book import AliasBook
from toolbridge.services.error_log import ErrorLog
from toolbridge.services.kv_store import InMemoryKeyValueStore
from toolbridge.services.staleness import StalenessGuard
from toolbridge.services.turn_runner import ToolTurnRunner
from toolbridge.tools.base import ToolResult


class _StubOrchestrator:
    def __init__(self, *, fail=False, during_execute=None) -> None:
        self.batches = []
        self._fail = fail
        self._during_execute = during_execute

    async def execute(self, calls):
        self.batches.append(list(calls))
        if self._during_execute is not None:
            self._during_execute()
        if self._fail:
            return [ToolResult.failure(call.tool, "boom") for call in calls]
        return [ToolResult.success(call.tool, {"done": True}) for call in calls]


class _GatedOrchestrator:
    """Holds every batch until two turns are executing at once."""

    def __init__(self) -> None:
        self.entered = 0
        self.release = asyncio.Event()

    async def execute(self, calls):
        self.entered += 1
        if self.entered == 2:
            self.release.set()
        await self.release.wait()
        return [ToolResult.success(call.tool, {"done": True}) for call in calls]


TOOL_BLOCK = '```tool\n{"tool":"browser.listTabs","args":{}}\n```'


class ToolTurnRunnerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        store = InMemoryKeyValueStore()
        self.alias_book = AliasBook(store)
        self.error_log = ErrorLog(store)
        self.guard = StalenessGuard()
        await self.alias_book.record_mapping("mario", "5551234567")

    def _runner(self, orchestrator, **kwargs):
        return ToolTurnRunner(
            orchestrator,
            DirectIntentDetector(self.alias_book),
            self.error_log,
            self.guard,
            **kwargs,
        )

    async def test_model_tool_block_wins_over_user_text(self):
        orchestrator = _StubOrchestrator()
        outcome = await self._runner(orchestrator).run_turn(
            "t1",
            model_text=TOOL_BLOCK,
            user_text="send a message to Mario saying hi",
        )
        self.assertEqual(outcome.origin, "parser")
        self.assertEqual([call.tool for call in orchestrator.batches[0]], ["browser.listTabs"])
        self.assertFalse(outcome.stale)

    async def test_detector_runs_when_model_emits_no_calls(self):
        orchestrator = _StubOrchestrator()
        outcome = await self._runner(orchestrator).run_turn(
            "t1",
            model_text="Sure, one moment.",
            user_text="send a message to Mario saying hi",
        )
        self.assertEqual(outcome.origin, "detector")
        self.assertEqual(outcome.calls[0].args, {"phone": "5551234567", "text": "hi"})

    async def test_detector_can_be_disabled(self):
        orchestrator = _StubOrchestrator()
        outcome = await self._runner(orchestrator, direct_intent_enabled=False).run_turn(
            "t1", user_text="open youtube"
        )
        self.assertEqual(outcome.origin, "none")
        self.assertEqual(orchestrator.batches, [])

    async def test_nothing_to_do(self):
        outcome = await self._runner(_StubOrchestrator()).run_turn("t1", user_text="hello there")
        self.assertEqual((outcome.origin, outcome.calls, outcome.results), ("none", [], []))

    async def test_followup_prompt_embeds_results(self):
        runner = self._runner(_StubOrchestrator())
        outcome = await runner.run_turn("t1", model_text=TOOL_BLOCK)

        prompt = outcome.followup_prompt
        self.assertTrue(prompt.startswith("Local tool results:"))
        body = prompt.split("```json\n", 1)[1].split("\n```", 1)[0]
        self.assertEqual(json.loads(body), [{"tool": "browser.listTabs", "ok": True, "result": {"done": True}}])
        self.assertNotIn("Recent tool failures", prompt)
        self.assertIs(runner.last_outcome("t1"), outcome)

    async def test_followup_prompt_includes_failure_summary(self):
        await self.error_log.record("browser.listTabs", "boom")
        outcome = await self._runner(_StubOrchestrator(fail=True)).run_turn("t1", model_text=TOOL_BLOCK)
        self.assertIn("Recent tool failures", outcome.followup_prompt)
        self.assertIn("- browser.listTabs: boom", outcome.followup_prompt)

    async def test_superseded_turn_is_marked_stale(self):
        guard = self.guard
        orchestrator = _StubOrchestrator(during_execute=lambda: guard.begin_generation("turn:t1"))
        runner = self._runner(orchestrator)

        outcome = await runner.run_turn("t1", model_text=TOOL_BLOCK)

        self.assertTrue(outcome.stale)
        self.assertEqual(outcome.followup_prompt, "")
        self.assertEqual(len(outcome.results), 1)
        self.assertIsNone(runner.last_outcome("t1"))

    async def test_other_threads_do_not_supersede(self):
        guard = self.guard
        orchestrator = _StubOrchestrator(during_execute=lambda: guard.begin_generation("turn:t2"))
        outcome = await self._runner(orchestrator).run_turn("t1", model_text=TOOL_BLOCK)
        self.assertFalse(outcome.stale)

    async def test_overlapping_turns_on_one_thread(self):
        runner = self._runner(_GatedOrchestrator())

        first, second = await asyncio.gather(
            runner.run_turn("t1", model_text=TOOL_BLOCK),
            runner.run_turn("t1", model_text=TOOL_BLOCK),
        )

        self.assertTrue(first.stale)
        self.assertFalse(second.stale)
        self.assertIs(runner.last_outcome("t1"), second)
        self.assertEqual(self.guard.tracked_flows(), [])

    async def test_finished_threads_do_not_accumulate(self):
        runner = self._runner(_StubOrchestrator(), max_cached_threads=2)

        for thread_id in ("t1", "t2", "t3"):
            await runner.run_turn(thread_id, model_text=TOOL_BLOCK)
        await runner.run_turn("t4", user_text="hello there")

        self.assertIsNone(runner.last_outcome("t1"))
        self.assertIsNotNone(runner.last_outcome("t2"))
        self.assertIsNotNone(runner.last_outcome("t3"))
        self.assertEqual(self.guard.tracked_flows(), [])


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from toolbridge.router.intent_router import DirectIntentDetector
from toolbridge.services.error_log import ErrorLog
from toolbridge.services.orchestrator import ToolExecutionOrchestrator
from toolbridge.services.staleness import StalenessGuard
from toolbridge.services.tool_call_parser import parse_tool_calls
from toolbridge.tools.base import ToolCall, ToolResult

LOGGER = logging.getLogger(__name__)

MAX_CACHED_THREADS = 256


@dataclass(frozen=True)
class TurnOutcome:
    thread_id: str
    token: int
    origin: str
    calls: list[ToolCall] = field(default_factory=list)
    results: list[ToolResult] = field(default_factory=list)
    followup_prompt: str = ""
    stale: bool = False


class ToolTurnRunner:
    def __init__(
        self,
        orchestrator: ToolExecutionOrchestrator,
        detector: DirectIntentDetector,
        error_log: ErrorLog,
        guard: StalenessGuard,
        *,
        max_calls: int = 3,
        direct_intent_enabled: bool = True,
        max_cached_threads: int = MAX_CACHED_THREADS,
    ) -> None:
        self._orchestrator = orchestrator
        self._detector = detector
        self._error_log = error_log
        self._guard = guard
        self._max_calls = max_calls
        self._direct_intent_enabled = direct_intent_enabled
        self._max_cached_threads = max(1, int(max_cached_threads))
        self._last_outcome_by_thread: OrderedDict[str, TurnOutcome] = OrderedDict()
        self._in_flight: dict[str, int] = {}

    def select_calls(
        self,
        *,
        model_text: str | None,
        user_text: str | None,
        source: str = "user",
    ) -> tuple[str, list[ToolCall]]:
        calls = parse_tool_calls(model_text, max_calls=self._max_calls) if model_text else []
        if calls:
            return "parser", calls
        if self._direct_intent_enabled and user_text:
            detected = self._detector.detect(user_text, source=source)
            if detected:
                return "detector", detected
        return "none", []

    async def run_turn(
        self,
        thread_id: str,
        *,
        model_text: str | None = None,
        user_text: str | None = None,
        source: str = "user",
    ) -> TurnOutcome:
        flow = f"turn:{thread_id}"
        token = self._guard.begin_generation(flow)
        self._in_flight[thread_id] = self._in_flight.get(thread_id, 0) + 1
        try:
            return await self._run_calls(thread_id, flow, token, model_text, user_text, source)
        finally:
            self._release(thread_id, flow)

    async def _run_calls(
        self,
        thread_id: str,
        flow: str,
        token: int,
        model_text: str | None,
        user_text: str | None,
        source: str,
    ) -> TurnOutcome:
        origin, calls = self.select_calls(model_text=model_text, user_text=user_text, source=source)
        if not calls:
            return TurnOutcome(thread_id=thread_id, token=token, origin=origin)

        results = await self._orchestrator.execute(calls)
        outcome = TurnOutcome(
            thread_id=thread_id,
            token=token,
            origin=origin,
            calls=calls,
            results=results,
            followup_prompt=self.build_followup_prompt(results),
        )
        if not self._guard.is_current(flow, token):
            # Side effects already happened; only the caller-visible state is dropped.
            LOGGER.info("turn_runner: discarding stale turn %s#%d", thread_id, token)
            return TurnOutcome(
                thread_id=thread_id,
                token=token,
                origin=origin,
                calls=calls,
                results=results,
                followup_prompt="",
                stale=True,
            )
        self._remember(thread_id, outcome)
        return outcome

    def _remember(self, thread_id: str, outcome: TurnOutcome) -> None:
        self._last_outcome_by_thread[thread_id] = outcome
        self._last_outcome_by_thread.move_to_end(thread_id)
        while len(self._last_outcome_by_thread) > self._max_cached_threads:
            self._last_outcome_by_thread.popitem(last=False)

    def _release(self, thread_id: str, flow: str) -> None:
        remaining = self._in_flight.get(thread_id, 1) - 1
        if remaining > 0:
            self._in_flight[thread_id] = remaining
            return
        # No token for this thread is outstanding, so its counter can restart.
        self._in_flight.pop(thread_id, None)
        self._guard.forget(flow)

    def last_outcome(self, thread_id: str) -> TurnOutcome | None:
        return self._last_outcome_by_thread.get(thread_id)

    def build_followup_prompt(self, results: list[ToolResult]) -> str:
        payload: list[dict[str, Any]] = [result.to_dict() for result in results]
        lines = [
            "Local tool results:",
            "```json",
            json.dumps(payload, ensure_ascii=False, indent=2, default=str),
            "```",
            "Using these results, answer the user in Markdown.",
            "Do not call the same tools again if they already succeeded.",
        ]
        recent_failures = self._error_log.summarize_for_prompt(limit=5)
        if recent_failures and any(not result.ok for result in results):
            lines.append("")
            lines.append(recent_failures)
        return "\n".join(lines)

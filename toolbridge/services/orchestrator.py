from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from toolbridge.errors import DomainError, TimeoutExhausted, ValidationError
from toolbridge.services.alias_book import AliasBook, AliasRecord, AliasSource
from toolbridge.services.dispatcher import RetryingDispatcher
from toolbridge.services.error_log import ErrorLog
from toolbridge.services.staleness import StalenessGuard
from toolbridge.services.surfaces import (
    BROWSER_TARGET_ID,
    AutomationSurface,
    Snapshot,
    SurfaceTarget,
)
from toolbridge.services.text_normalization import looks_like_phone, normalize_phone, phone_digits
from toolbridge.services.token_security import redact_sensitive_text
from toolbridge.tools.base import Tool, ToolCall, ToolResult
from toolbridge.tools.catalog import SURFACE_BROWSER, SURFACE_CHAT
from toolbridge.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

SNAPSHOT_FLOW = "surface_snapshot"
CHAT_NAMESPACE = "whatsapp"
_RECIPIENT_KEYS = ("name", "query", "chat")
_LEARNABLE_ACTIONS = {"openChat", "openChatAndSendMessage"}


class CallState(str, Enum):
    PENDING = "pending"
    RESOLVING_TARGET = "resolving_target"
    READY = "ready"
    CREATING_TARGET = "creating_target"
    DISPATCHING = "dispatching"
    RETRY = "retry"
    DONE = "done"
    FAILED = "failed"


_TERMINAL_STATES = {CallState.DONE, CallState.FAILED}


class _CallTracker:
    def __init__(self, index: int, tool: str) -> None:
        self.index = index
        self.tool = tool
        self.state = CallState.PENDING
        self.history: list[CallState] = [CallState.PENDING]

    def move(self, state: CallState) -> None:
        if self.state in _TERMINAL_STATES:
            LOGGER.warning("call[%d] %s: ignoring %s after %s", self.index, self.tool, state.value, self.state.value)
            return
        LOGGER.debug("call[%d] %s: %s -> %s", self.index, self.tool, self.state.value, state.value)
        self.state = state
        self.history.append(state)


@dataclass(frozen=True)
class ChatRecipient:
    phone: str = ""
    query: str = ""
    label: str = ""
    record: AliasRecord | None = None


class ToolExecutionOrchestrator:
    """Runs a batch of tool calls, in order, against their surfaces.

    Results always line up one-to-one with the (truncated) input. A failing
    call is isolated: it becomes ``ok=False``, lands in the error log, and
    the next call still runs.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        surface: AutomationSurface,
        dispatcher: RetryingDispatcher,
        alias_book: AliasBook,
        error_log: ErrorLog,
        guard: StalenessGuard,
        domain_tools: Iterable[Tool] = (),
        *,
        max_calls: int = 3,
        chat_surface_url: str = "https://web.whatsapp.com",
    ) -> None:
        self._registry = registry
        self._surface = surface
        self._dispatcher = dispatcher
        self._alias_book = alias_book
        self._error_log = error_log
        self._guard = guard
        self._domain_tools: dict[str, Tool] = {tool.namespace: tool for tool in domain_tools}
        self._max_calls = max(1, min(10, int(max_calls)))
        self._chat_surface_url = chat_surface_url.rstrip("/")
        self._snapshot: Snapshot | None = None
        self.last_trace: list[list[CallState]] = []

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    async def execute(self, calls: Iterable[ToolCall]) -> list[ToolResult]:
        batch = list(calls)[: self._max_calls]
        results: list[ToolResult] = []
        trace: list[list[CallState]] = []
        for index, call in enumerate(batch):
            tracker = _CallTracker(index, getattr(call, "tool", "") or "")
            try:
                result = await self._execute_one(call, tracker)
            except Exception as exc:
                result = ToolResult.failure(tracker.tool or "unknown", _error_text(exc))
                if not isinstance(exc, (ValidationError, DomainError)):
                    LOGGER.warning("call[%d] %s raised", index, tracker.tool, exc_info=True)
            tracker.move(CallState.DONE if result.ok else CallState.FAILED)
            if not result.ok:
                await self._record_failure(call, result)
            results.append(result)
            trace.append(tracker.history)
        self.last_trace = trace
        LOGGER.info(
            "orchestrator: batch of %d done (ok=%d failed=%d)",
            len(results),
            sum(1 for item in results if item.ok),
            sum(1 for item in results if not item.ok),
        )
        return results

    async def _execute_one(self, call: ToolCall, tracker: _CallTracker) -> ToolResult:
        if not isinstance(call, ToolCall):
            raise ValidationError("Tool call must be a {tool, args} object.")
        if not self._registry.has_namespace(call.namespace):
            raise ValidationError(f"Unknown tool namespace '{call.namespace}'.")
        definition = self._registry.get_definition(call.tool)
        args = definition.validate_args(call.args)

        tracker.move(CallState.RESOLVING_TARGET)
        if definition.surface == SURFACE_CHAT:
            result = await self._run_chat(definition.name, definition.action, args, tracker)
        elif definition.surface == SURFACE_BROWSER:
            result = await self._run_browser(definition.name, definition.action, args, tracker)
        else:
            result = await self._run_domain(definition.name, definition.namespace, definition.action, args, tracker)

        if result.ok and definition.mutating:
            await self.refresh_snapshot()
        return result

    async def _run_browser(
        self,
        tool: str,
        action: str,
        args: dict[str, Any],
        tracker: _CallTracker,
    ) -> ToolResult:
        tracker.move(CallState.READY)
        tracker.move(CallState.DISPATCHING)
        response = await self._surface.send_to_surface(BROWSER_TARGET_ID, action, args)
        if response.ok:
            return ToolResult.success(tool, response.result)
        return ToolResult.failure(tool, redact_sensitive_text(response.error) or "browser action failed")

    async def _run_domain(
        self,
        tool: str,
        namespace: str,
        action: str,
        args: dict[str, Any],
        tracker: _CallTracker,
    ) -> ToolResult:
        handler = self._domain_tools.get(namespace)
        if handler is None:
            raise DomainError(f"No handler is configured for '{namespace}' tools.")
        tracker.move(CallState.READY)
        tracker.move(CallState.DISPATCHING)
        result = await asyncio.to_thread(handler.run, action, args)
        return ToolResult.success(tool, result)

    async def _run_chat(
        self,
        tool: str,
        action: str,
        args: dict[str, Any],
        tracker: _CallTracker,
    ) -> ToolResult:
        recipient = self._resolve_recipient(args)
        target = await self._find_chat_target(args)
        opened_via_direct_address = False

        if target is None:
            tracker.move(CallState.CREATING_TARGET)
            target_id, opened_via_direct_address = await self._create_chat_target(recipient)
            if not opened_via_direct_address:
                state = await self._dispatcher.wait_for_target(target_id)
                if not state.ready:
                    raise TimeoutExhausted(
                        f"Chat surface {target_id} never became ready: {state.last_error or 'no response'}"
                    )
        else:
            target_id = target.target_id
            tracker.move(CallState.READY)

        dispatch_args = dict(args)
        dispatch_args.pop("tabId", None)
        if recipient.phone:
            dispatch_args["phone"] = recipient.phone
        elif recipient.record is not None and recipient.query:
            dispatch_args["query"] = recipient.query

        tracker.move(CallState.DISPATCHING)
        result = await self._dispatcher.dispatch(
            target_id,
            action,
            dispatch_args,
            tool=tool,
            opened_via_direct_address=opened_via_direct_address,
            expected_identity=recipient.phone if opened_via_direct_address else None,
        )
        attempts = int((result.diagnostics or {}).get("attempts") or 1)
        for _ in range(1, attempts):
            tracker.move(CallState.RETRY)
            tracker.move(CallState.DISPATCHING)

        if result.ok:
            await self._learn_alias(action, recipient)
        return result

    def _resolve_recipient(self, args: dict[str, Any]) -> ChatRecipient:
        explicit_phone = normalize_phone(args.get("phone")) if args.get("phone") else ""
        label = next(
            (
                str(args[key]).strip()
                for key in _RECIPIENT_KEYS
                if isinstance(args.get(key), str) and args[key].strip() and not looks_like_phone(args[key])
            ),
            "",
        )
        if explicit_phone:
            return ChatRecipient(phone=explicit_phone, label=label)

        candidates = [args.get(key) for key in _RECIPIENT_KEYS]
        for value in candidates:
            if isinstance(value, str) and looks_like_phone(value):
                return ChatRecipient(phone=normalize_phone(value), label=label)

        record = self._alias_book.resolve(candidates)
        if record is not None:
            if looks_like_phone(record.target):
                return ChatRecipient(phone=normalize_phone(record.target), label=record.label, record=record)
            return ChatRecipient(query=record.target, label=record.label, record=record)
        return ChatRecipient(query=label, label=label)

    async def _find_chat_target(self, args: dict[str, Any]) -> SurfaceTarget | None:
        if self._snapshot is None:
            await self.refresh_snapshot()
        snapshot = self._snapshot
        if snapshot is None:
            return None
        chats = snapshot.chat_targets(self._chat_surface_url)
        requested = args.get("tabId")
        if requested is not None:
            for target in chats:
                if target.target_id == str(requested):
                    return target
        for target in chats:
            if target.active:
                return target
        return chats[0] if chats else None

    async def _create_chat_target(self, recipient: ChatRecipient) -> tuple[str, bool]:
        digits = phone_digits(recipient.phone)
        direct = bool(digits)
        url = f"{self._chat_surface_url}/send?phone={digits}" if direct else self._chat_surface_url
        LOGGER.info("orchestrator: opening chat surface (direct=%s)", direct)
        response = await self._surface.send_to_surface(BROWSER_TARGET_ID, "openNewTab", {"url": url, "active": True})
        if not response.ok:
            raise DomainError(
                f"Could not open the chat surface: {redact_sensitive_text(response.error) or 'browser refused'}"
            )

        target_id = _target_id_from(response.result)
        await self.refresh_snapshot()
        if not target_id and self._snapshot is not None:
            chats = self._snapshot.chat_targets(self._chat_surface_url)
            target_id = chats[-1].target_id if chats else ""
        if not target_id:
            raise TimeoutExhausted("Chat surface was opened but never appeared in the snapshot.")
        return target_id, direct

    async def _learn_alias(self, action: str, recipient: ChatRecipient) -> None:
        try:
            if recipient.record is not None:
                await self._alias_book.mark_used(recipient.record)
            elif action in _LEARNABLE_ACTIONS and recipient.phone and recipient.label:
                await self._alias_book.record_mapping(recipient.label, recipient.phone, source=AliasSource.SUCCESS)
        except Exception:
            LOGGER.warning("orchestrator: alias feedback failed", exc_info=True)

    async def request_snapshot(self) -> Snapshot | None:
        return await self.refresh_snapshot()

    async def refresh_snapshot(self) -> Snapshot | None:
        token = self._guard.begin_generation(SNAPSHOT_FLOW)
        try:
            snapshot = await self._surface.request_snapshot()
        except Exception:
            LOGGER.warning("orchestrator: snapshot refresh failed", exc_info=True)
            return self._snapshot
        if not self._guard.is_current(SNAPSHOT_FLOW, token):
            LOGGER.debug("orchestrator: discarding superseded snapshot %d", token)
            return self._snapshot
        self._snapshot = snapshot
        return snapshot

    async def _record_failure(self, call: Any, result: ToolResult) -> None:
        try:
            await self._error_log.record(result.tool, result.error, getattr(call, "args", None))
        except Exception:
            LOGGER.warning("orchestrator: could not record failure for %s", result.tool, exc_info=True)


def _target_id_from(result: Any) -> str:
    if isinstance(result, dict):
        for key in ("target_id", "tabId", "id"):
            value = result.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
    return ""


def _error_text(exc: Exception) -> str:
    return redact_sensitive_text(str(exc)) or type(exc).__name__

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from toolbridge.errors import RecoverableChannelError
from toolbridge.services.readiness import ReadinessPoller, ReadinessState
from toolbridge.services.surfaces import AutomationSurface, SurfaceErrorKind
from toolbridge.services.token_security import redact_sensitive_text
from toolbridge.tools.base import ToolResult

LOGGER = logging.getLogger(__name__)

MAX_DISPATCH_ATTEMPTS = 10
PROBE_ACTION = "getCurrentChat"


class RetryingDispatcher:
    """Send one action to a content-bound surface with bounded retries.

    Only channel-level failures (listener not registered yet, endpoint torn
    down mid-call) are retried; the readiness poller runs between attempts
    and the delay grows linearly with the attempt number.
    """

    def __init__(
        self,
        surface: AutomationSurface,
        poller: ReadinessPoller,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_attempts: int = 4,
        retry_delay_seconds: float = 0.22,
        readiness_attempts: int = 12,
        readiness_delay_seconds: float = 0.12,
    ) -> None:
        self._surface = surface
        self._poller = poller
        self._sleep = sleep
        self._max_attempts = max_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._readiness_attempts = readiness_attempts
        self._readiness_delay_seconds = readiness_delay_seconds

    async def dispatch(
        self,
        target_id: str,
        action: str,
        args: dict[str, Any],
        *,
        tool: str | None = None,
        max_attempts: int | None = None,
        retry_delay_seconds: float | None = None,
        opened_via_direct_address: bool = False,
        expected_identity: str | None = None,
    ) -> ToolResult:
        tool_name = tool or action
        attempts = max(1, min(MAX_DISPATCH_ATTEMPTS, int(max_attempts or self._max_attempts)))
        delay = self._retry_delay_seconds if retry_delay_seconds is None else max(0.0, retry_delay_seconds)

        if opened_via_direct_address:
            warm = await self.wait_for_target(target_id, expected_identity=expected_identity)
            LOGGER.debug(
                "dispatch: warm-up for %s ready=%s after %d probes",
                target_id,
                warm.ready,
                warm.attempt,
            )

        last_error = ""
        for attempt in range(1, attempts + 1):
            LOGGER.debug("dispatch: %s -> %s attempt %d/%d", tool_name, target_id, attempt, attempts)
            try:
                response = await self._surface.send_to_surface(target_id, action, args)
            except RecoverableChannelError as exc:
                recoverable = True
                last_error = redact_sensitive_text(str(exc)) or "channel not ready"
            else:
                if response.ok:
                    LOGGER.info("dispatch: %s ok on attempt %d/%d", tool_name, attempt, attempts)
                    return ToolResult.success(
                        tool_name,
                        response.result,
                        diagnostics={"attempts": attempt, "target_id": target_id},
                    )
                recoverable = response.error_kind.recoverable
                last_error = redact_sensitive_text(response.error) or "surface call failed"

            if not recoverable:
                LOGGER.warning(
                    "dispatch: %s rejected on attempt %d/%d: %s",
                    tool_name,
                    attempt,
                    attempts,
                    last_error,
                )
                return ToolResult.failure(
                    tool_name,
                    last_error,
                    diagnostics={"attempts": attempt, "target_id": target_id},
                )

            LOGGER.info(
                "dispatch: %s recoverable failure on attempt %d/%d: %s",
                tool_name,
                attempt,
                attempts,
                last_error,
            )
            if attempt >= attempts:
                break
            await self.wait_for_target(target_id, expected_identity=expected_identity)
            await self._sleep(delay * attempt)

        LOGGER.warning("dispatch: %s exhausted %d attempts: %s", tool_name, attempts, last_error)
        return ToolResult.failure(
            tool_name,
            last_error,
            diagnostics={"attempts": attempts, "target_id": target_id},
        )

    async def wait_for_target(
        self,
        target_id: str,
        *,
        expected_identity: str | None = None,
        attempts: int | None = None,
    ) -> ReadinessState:
        async def probe() -> ReadinessState:
            response = await self._surface.probe_surface_state(target_id, PROBE_ACTION, {})
            if not response.ok:
                return ReadinessState(
                    ready=False,
                    last_error=response.error or response.error_kind.value,
                )
            return ReadinessState(ready=True, observed_identity=_identity_from(response.result))

        return await self._poller.wait_until_ready(
            target_id,
            probe,
            attempts=attempts or self._readiness_attempts,
            delay_seconds=self._readiness_delay_seconds,
            expected_identity=expected_identity,
        )


def _identity_from(result: Any) -> str:
    if isinstance(result, dict):
        for key in ("phone", "title", "identity"):
            value = result.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(result, str):
        return result.strip()
    return ""

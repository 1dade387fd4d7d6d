from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Protocol

from toolbridge.services.text_normalization import identity_matches
from toolbridge.services.token_security import redact_sensitive_text

LOGGER = logging.getLogger(__name__)

MAX_READINESS_ATTEMPTS = 30


@dataclass(frozen=True)
class ReadinessState:
    attempt: int = 0
    ready: bool = False
    observed_identity: str = ""
    last_error: str = ""


class SnapshotSource(Protocol):
    async def request_snapshot(self) -> Any: ...


Probe = Callable[[], Awaitable[ReadinessState]]


class ReadinessPoller:
    def __init__(
        self,
        snapshot_source: SnapshotSource | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        resync_every: int = 3,
    ) -> None:
        self._snapshot_source = snapshot_source
        self._sleep = sleep
        self._resync_every = max(1, int(resync_every))

    def bind_snapshot_source(self, snapshot_source: SnapshotSource | None) -> None:
        """Route resyncs through ``snapshot_source`` (normally the orchestrator's guarded refresh)."""
        self._snapshot_source = snapshot_source

    async def wait_until_ready(
        self,
        target_id: str,
        probe: Probe,
        *,
        attempts: int,
        delay_seconds: float,
        expected_identity: str | None = None,
    ) -> ReadinessState:
        """Poll ``probe`` until the target reports ready, or attempts run out.

        The last observed state is returned on exhaustion; callers decide
        whether "not ready" is fatal.
        """
        total = max(1, min(MAX_READINESS_ATTEMPTS, int(attempts)))
        state = ReadinessState()
        for attempt in range(1, total + 1):
            try:
                observed = await probe()
                state = ReadinessState(
                    attempt=attempt,
                    ready=bool(observed.ready),
                    observed_identity=observed.observed_identity or "",
                    last_error=observed.last_error or "",
                )
            except Exception as exc:
                state = ReadinessState(
                    attempt=attempt,
                    ready=False,
                    observed_identity=state.observed_identity,
                    last_error=redact_sensitive_text(str(exc)) or type(exc).__name__,
                )

            if state.ready and expected_identity and not identity_matches(state.observed_identity, expected_identity):
                state = replace(state, ready=False, last_error="identity mismatch")
            if state.ready:
                LOGGER.debug("readiness: %s ready after %d/%d", target_id, attempt, total)
                return state

            if attempt >= total:
                break
            if attempt % self._resync_every == 0:
                await self._resync(target_id)
            await self._sleep(delay_seconds)

        LOGGER.info(
            "readiness: %s not ready after %d attempts (identity=%r error=%r)",
            target_id,
            total,
            state.observed_identity,
            state.last_error,
        )
        return state

    async def _resync(self, target_id: str) -> None:
        if self._snapshot_source is None:
            return
        try:
            await self._snapshot_source.request_snapshot()
        except Exception:
            LOGGER.warning("readiness: snapshot resync failed for %s", target_id, exc_info=True)

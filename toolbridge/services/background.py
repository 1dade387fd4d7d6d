from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from toolbridge.services.token_security import redact_sensitive_text

LOGGER = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class BackgroundFailure:
    name: str
    error: str
    failed_at: datetime


class BackgroundTaskQueue:
    """Best-effort work that runs off the request path.

    Jobs run one at a time on a single worker task. Failures go to the
    queue's own error channel (logged and kept in ``failures``) and are
    never raised to whoever submitted the job.
    """

    def __init__(self, *, max_pending: int = 32, max_failures: int = 20) -> None:
        self._queue: asyncio.Queue[tuple[str, JobFactory]] = asyncio.Queue(maxsize=max(1, max_pending))
        self._max_failures = max(1, max_failures)
        self._worker: asyncio.Task[None] | None = None
        self.failures: list[BackgroundFailure] = []
        self.completed = 0

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="toolbridge-background")

    def submit(self, name: str, job: JobFactory) -> bool:
        self.start()
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            LOGGER.warning("background: queue full, dropping %s", name)
            return False
        return True

    async def join(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        worker = self._worker
        self._worker = None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await job()
                self.completed += 1
                LOGGER.debug("background: %s done", name)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._remember(name, exc)
            finally:
                self._queue.task_done()

    def _remember(self, name: str, exc: Exception) -> None:
        error = redact_sensitive_text(str(exc)) or type(exc).__name__
        LOGGER.warning("background: %s failed: %s", name, error)
        self.failures.append(BackgroundFailure(name=name, error=error, failed_at=datetime.now(timezone.utc)))
        if len(self.failures) > self._max_failures:
            del self.failures[: len(self.failures) - self._max_failures]

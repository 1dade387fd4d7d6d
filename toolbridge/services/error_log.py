from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from toolbridge.services.kv_store import KeyValueStore
from toolbridge.services.token_security import redact_sensitive_text, summarize_args

LOGGER = logging.getLogger(__name__)

STORAGE_KEY = "tool_error_log"


@dataclass(frozen=True)
class ErrorLogEntry:
    tool: str
    error: str
    args_summary: str
    count: int
    created_at: datetime
    last_seen_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "error": self.error,
            "args_summary": self.args_summary,
            "count": self.count,
            "created_at": self.created_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat(),
        }


class ErrorLog:
    """Bounded ring buffer of recent tool failures.

    Consecutive repeats of the same ``(tool, error)`` inside the coalesce
    window bump ``count`` instead of appending.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_items: int = 20,
        max_age_seconds: float = 1800,
        coalesce_window_seconds: float = 20,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._max_items = max(1, int(max_items))
        self._max_age = timedelta(seconds=max(1.0, float(max_age_seconds)))
        self._coalesce_window = timedelta(seconds=max(0.0, float(coalesce_window_seconds)))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: list[ErrorLogEntry] = []
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        try:
            raw = await self._store.read(STORAGE_KEY)
        except Exception:
            LOGGER.warning("error_log: load failed; starting empty", exc_info=True)
            return 0
        loaded: list[ErrorLogEntry] = []
        for item in raw if isinstance(raw, list) else []:
            entry = _entry_from_dict(item)
            if entry is not None:
                loaded.append(entry)
        self._entries = loaded
        self._prune(self._clock())
        return len(self._entries)

    def entries(self) -> list[ErrorLogEntry]:
        self._prune(self._clock())
        return list(self._entries)

    async def record(self, tool: str, error: str | None, args: Any = None) -> ErrorLogEntry:
        clean_error = redact_sensitive_text(str(error or "unknown error")).strip()[:400]
        async with self._lock:
            now = self._clock()
            self._prune(now)
            last = self._entries[-1] if self._entries else None
            if (
                last is not None
                and last.tool == tool
                and last.error == clean_error
                and now - last.last_seen_at <= self._coalesce_window
            ):
                entry = replace(last, count=last.count + 1, last_seen_at=now)
                self._entries[-1] = entry
            else:
                entry = ErrorLogEntry(
                    tool=tool,
                    error=clean_error,
                    args_summary=summarize_args(args or {}),
                    count=1,
                    created_at=now,
                    last_seen_at=now,
                )
                self._entries.append(entry)
                if len(self._entries) > self._max_items:
                    del self._entries[: len(self._entries) - self._max_items]
            await self._persist_locked()
        LOGGER.info("error_log: %s failed (x%d): %s", tool, entry.count, clean_error)
        return entry

    def summarize_for_prompt(self, limit: int = 5) -> str:
        recent = self.entries()[-max(1, int(limit)) :]
        if not recent:
            return ""
        lines = ["Recent tool failures (avoid repeating these calls unchanged):"]
        for entry in reversed(recent):
            repeat = f" (x{entry.count})" if entry.count > 1 else ""
            lines.append(f"- {entry.tool}{repeat}: {entry.error} | args={entry.args_summary}")
        return "\n".join(lines)

    def _prune(self, now: datetime) -> None:
        cutoff = now - self._max_age
        self._entries = [entry for entry in self._entries if entry.last_seen_at >= cutoff]

    async def _persist_locked(self) -> None:
        try:
            await self._store.persist(STORAGE_KEY, [entry.to_dict() for entry in self._entries])
        except Exception:
            LOGGER.warning("error_log: persist failed", exc_info=True)


def _entry_from_dict(raw: Any) -> ErrorLogEntry | None:
    if not isinstance(raw, dict):
        return None
    tool = str(raw.get("tool") or "").strip()
    error = str(raw.get("error") or "").strip()
    if not tool or not error:
        return None
    try:
        created_at = datetime.fromisoformat(str(raw.get("created_at")))
        last_seen_at = datetime.fromisoformat(str(raw.get("last_seen_at") or raw.get("created_at")))
        count = max(1, int(raw.get("count") or 1))
    except (TypeError, ValueError):
        return None
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if last_seen_at.tzinfo is None:
        last_seen_at = last_seen_at.replace(tzinfo=timezone.utc)
    return ErrorLogEntry(
        tool=tool,
        error=error,
        args_summary=str(raw.get("args_summary") or ""),
        count=count,
        created_at=created_at,
        last_seen_at=last_seen_at,
    )

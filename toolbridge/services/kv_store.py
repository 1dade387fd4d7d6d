from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def read(self, key: str) -> Any: ...

    async def persist(self, key: str, value: Any) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def read(self, key: str) -> Any:
        return self._data.get(key)

    async def persist(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileKeyValueStore:
    """One JSON document per key under ``root``; file I/O runs off the event loop."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _path_for(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in key)
        return self._root / f"{safe}.json"

    async def read(self, key: str) -> Any:
        return await asyncio.to_thread(self._read_sync, key)

    async def persist(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._persist_sync, key, value)

    def _read_sync(self, key: str) -> Any:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except ValueError:
            LOGGER.warning("kv_store: ignoring unreadable document %s", path)
            return None

    def _persist_sync(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(value, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from toolbridge.services.kv_store import KeyValueStore
from toolbridge.services.text_normalization import normalize_alias, normalize_phone

LOGGER = logging.getLogger(__name__)

STORAGE_KEY = "alias_book"
MAX_VARIANTS_PER_CANDIDATE = 8
MAX_PREFIX_WORDS = 6
PERSON_CHAT_SUFFIX = "@c.us"

_WORD_RE = re.compile(r"\S+")


class AliasSource(str, Enum):
    MANUAL = "manual"
    OBSERVED = "observed"
    SUCCESS = "success"


# An observed history row never demotes a mapping the user declared or used.
_SOURCE_RANK = {AliasSource.OBSERVED: 0, AliasSource.SUCCESS: 1, AliasSource.MANUAL: 2}


@dataclass(frozen=True)
class AliasRecord:
    alias: str
    label: str
    target: str
    created_at: datetime
    updated_at: datetime
    last_used_at: datetime | None = None
    use_count: int = 0
    source: AliasSource = AliasSource.OBSERVED

    def to_dict(self) -> dict[str, Any]:
        return {
            "alias": self.alias,
            "label": self.label,
            "target": self.target,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "use_count": self.use_count,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "AliasRecord | None":
        alias = normalize_alias(str(raw.get("alias") or raw.get("label") or ""))
        target = str(raw.get("target") or "").strip()
        if alias is None or not target:
            return None
        created_at = _parse_datetime(raw.get("created_at")) or datetime.now(timezone.utc)
        try:
            source = AliasSource(str(raw.get("source") or AliasSource.OBSERVED.value))
        except ValueError:
            source = AliasSource.OBSERVED
        try:
            use_count = max(0, int(raw.get("use_count") or 0))
        except (TypeError, ValueError):
            use_count = 0
        return cls(
            alias=alias,
            label=str(raw.get("label") or alias).strip(),
            target=target,
            created_at=created_at,
            updated_at=_parse_datetime(raw.get("updated_at")) or created_at,
            last_used_at=_parse_datetime(raw.get("last_used_at")),
            use_count=use_count,
            source=source,
        )


@dataclass(frozen=True)
class UpsertResult:
    changed: bool
    added: int
    updated: int


class AliasBook:
    """Persistent name to identifier directory with usage statistics.

    The in-memory map is authoritative for the process lifetime. Every
    mutation is written through ``store`` under a lock so concurrent
    upserts never interleave their persistence step; storage failures are
    logged and the next successful write reconciles.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_entries: int = 400,
        cooldown_seconds: float = 90,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._max_entries = max(1, int(max_entries))
        self._cooldown_seconds = max(0.0, float(cooldown_seconds))
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._monotonic = monotonic
        self._records: dict[str, AliasRecord] = {}
        self._lock = asyncio.Lock()
        self._last_sync_at: float | None = None

    async def load(self) -> int:
        try:
            raw = await self._store.read(STORAGE_KEY)
        except Exception:
            LOGGER.warning("alias_book: load failed; starting empty", exc_info=True)
            return 0
        entries = raw if isinstance(raw, list) else []
        loaded: dict[str, AliasRecord] = {}
        for item in entries:
            if not isinstance(item, dict):
                continue
            record = AliasRecord.from_dict(item)
            if record is not None:
                loaded[record.alias] = record
        self._records = loaded
        self._evict_overflow()
        LOGGER.debug("alias_book: loaded %d aliases", len(self._records))
        return len(self._records)

    def records(self) -> list[AliasRecord]:
        return [self._records[key] for key in sorted(self._records)]

    def get(self, alias: str) -> AliasRecord | None:
        key = normalize_alias(alias)
        return self._records.get(key) if key else None

    def resolve(self, candidate_texts: Iterable[str | None]) -> AliasRecord | None:
        if not self._records:
            return None
        for candidate in candidate_texts:
            for variant in _variants(candidate):
                record = self._records.get(variant)
                if record is not None:
                    return record
        return None

    def match_prefix(self, text: str) -> tuple[AliasRecord, str] | None:
        """Longest alias that is a whole-word prefix of ``text``.

        Returns the record and the rest of ``text`` in its original casing.
        """
        if not self._records or not text:
            return None
        words: list[tuple[str, int]] = []
        for match in _WORD_RE.finditer(text):
            token = normalize_alias(match.group(0)) if len(match.group(0)) > 1 else None
            piece = token if token is not None else _loose_token(match.group(0))
            if not piece:
                continue
            words.append((piece, match.end()))
            if len(words) >= MAX_PREFIX_WORDS:
                break

        for size in range(len(words), 0, -1):
            key = " ".join(piece for piece, _ in words[:size])
            record = self._records.get(key)
            if record is None:
                continue
            remainder = text[words[size - 1][1] :].strip()
            return record, remainder
        return None

    async def upsert(self, records: Iterable[AliasRecord], *, persist: bool = True) -> UpsertResult:
        async with self._lock:
            added = 0
            updated = 0
            touched: set[str] = set()
            now = self._clock()
            for incoming in records:
                key = normalize_alias(incoming.alias)
                target = str(incoming.target or "").strip()
                if key is None or not target:
                    continue
                existing = self._records.get(key)
                if existing is None:
                    self._records[key] = replace(
                        incoming,
                        alias=key,
                        target=target,
                        label=(incoming.label or key).strip(),
                    )
                    touched.add(key)
                    added += 1
                    continue
                merged = _merge(existing, incoming, target, now)
                if merged is not None:
                    self._records[key] = merged
                    touched.add(key)
                    updated += 1

            changed = bool(added or updated)
            if changed:
                self._evict_overflow(protected=touched)
                if persist:
                    await self._persist_locked()
        if changed:
            LOGGER.info("alias_book: upsert added=%d updated=%d", added, updated)
        return UpsertResult(changed=changed, added=added, updated=updated)

    async def record_mapping(
        self,
        label: str,
        target: str,
        *,
        source: AliasSource = AliasSource.MANUAL,
    ) -> UpsertResult:
        alias = normalize_alias(label)
        if alias is None:
            return UpsertResult(changed=False, added=0, updated=0)
        now = self._clock()
        record = AliasRecord(
            alias=alias,
            label=str(label).strip(),
            target=str(target).strip(),
            created_at=now,
            updated_at=now,
            source=source,
        )
        return await self.upsert([record])

    async def mark_used(self, record: AliasRecord) -> AliasRecord | None:
        async with self._lock:
            key = normalize_alias(record.alias)
            existing = self._records.get(key) if key else None
            if existing is None:
                return None
            now = self._clock()
            bumped = replace(
                existing,
                use_count=existing.use_count + 1,
                last_used_at=now,
                updated_at=now,
                source=AliasSource.SUCCESS,
            )
            self._records[existing.alias] = bumped
            await self._persist_locked()
        return bumped

    async def sync_from_history(
        self,
        rows: Iterable[dict[str, Any]],
        *,
        force: bool = False,
        cooldown_seconds: float | None = None,
    ) -> UpsertResult | None:
        cooldown = self._cooldown_seconds if cooldown_seconds is None else max(0.0, float(cooldown_seconds))
        now_mono = self._monotonic()
        if not force and self._last_sync_at is not None and now_mono - self._last_sync_at < cooldown:
            LOGGER.debug("alias_book: history sync skipped (cooldown)")
            return None
        self._last_sync_at = now_mono

        latest: dict[str, tuple[float, dict[str, Any]]] = {}
        for row in rows:
            if not isinstance(row, dict):
                continue
            conversation = str(row.get("chat_id") or row.get("phone") or row.get("title") or "").strip()
            if not conversation:
                continue
            stamp = _row_timestamp(row.get("timestamp"))
            current = latest.get(conversation)
            if current is None or stamp >= current[0]:
                latest[conversation] = (stamp, row)

        now = self._clock()
        derived: list[AliasRecord] = []
        for _, row in latest.values():
            title = str(row.get("title") or "").strip()
            alias = normalize_alias(title)
            target = _history_target(row)
            if alias is None or not target:
                continue
            derived.append(
                AliasRecord(
                    alias=alias,
                    label=title,
                    target=target,
                    created_at=now,
                    updated_at=now,
                    source=AliasSource.OBSERVED,
                )
            )
        return await self.upsert(derived)

    async def _persist_locked(self) -> None:
        payload = [record.to_dict() for record in self.records()]
        try:
            await self._store.persist(STORAGE_KEY, payload)
        except Exception:
            LOGGER.warning("alias_book: persist failed; keeping in-memory copy", exc_info=True)

    def _evict_overflow(self, protected: set[str] | None = None) -> None:
        # Records written by the current upsert are only evicted when nothing else is left.
        keep = protected or set()
        while len(self._records) > self._max_entries:
            candidates = [item for item in self._records.values() if item.alias not in keep]
            victim = min(
                candidates or self._records.values(),
                key=lambda item: (item.use_count, item.last_used_at or item.updated_at, item.alias),
            )
            del self._records[victim.alias]
            LOGGER.debug("alias_book: evicted %s", victim.alias)


def _merge(existing: AliasRecord, incoming: AliasRecord, target: str, now: datetime) -> AliasRecord | None:
    target_changed = target != existing.target
    label = (incoming.label or "").strip()
    longer_label = len(label) > len(existing.label)
    source_changed = incoming.source != existing.source and (
        _SOURCE_RANK[incoming.source] >= _SOURCE_RANK[existing.source]
    )
    if not (target_changed or longer_label or source_changed):
        return None
    return replace(
        existing,
        target=target,
        label=label if longer_label else existing.label,
        source=incoming.source if source_changed else existing.source,
        updated_at=now,
    )


def _variants(candidate: str | None) -> list[str]:
    whole = normalize_alias(candidate)
    if whole is None:
        return []
    words = whole.split(" ")
    raw = [whole]
    if len(words) > 2:
        raw.append(" ".join(words[-2:]))
    if len(words) > 1:
        raw.append(words[-1])
        raw.extend(words)
    out: list[str] = []
    for item in raw:
        key = normalize_alias(item)
        if key is not None and key not in out:
            out.append(key)
        if len(out) >= MAX_VARIANTS_PER_CANDIDATE:
            break
    return sorted(out, key=len, reverse=True)


def _loose_token(word: str) -> str:
    # Single characters and digits are valid inside a multi-word alias.
    cleaned = normalize_alias(f"x{word}")
    return cleaned[1:].strip() if cleaned else ""


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_timestamp(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    parsed = _parse_datetime(value)
    if parsed is not None:
        return parsed.timestamp()
    try:
        return float(str(value))
    except (TypeError, ValueError):
        return 0.0


def _history_target(row: dict[str, Any]) -> str:
    # Group and broadcast ids are opaque; only person chats carry a phone.
    phone = normalize_phone(row.get("phone"))
    if phone:
        return phone
    chat_id = str(row.get("chat_id") or "").strip().lower()
    if chat_id.endswith(PERSON_CHAT_SUFFIX):
        return normalize_phone(chat_id[: -len(PERSON_CHAT_SUFFIX)])
    return ""

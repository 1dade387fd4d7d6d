from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import requests

from toolbridge.services.token_security import redact_sensitive_text

LOGGER = logging.getLogger(__name__)

BROWSER_TARGET_ID = "browser"


class SurfaceErrorKind(str, Enum):
    NONE = "none"
    NOT_CONNECTED = "not_connected"
    TORN_DOWN = "torn_down"
    REJECTED = "rejected"

    @property
    def recoverable(self) -> bool:
        return self in {SurfaceErrorKind.NOT_CONNECTED, SurfaceErrorKind.TORN_DOWN}


_NOT_CONNECTED_MARKERS = (
    "could not establish connection",
    "receiving end does not exist",
    "no listener",
    "not ready",
)
_TORN_DOWN_MARKERS = (
    "message port closed",
    "extension context invalidated",
    "no tab with id",
    "frame was removed",
    "target closed",
)


def classify_surface_error(message: str | None) -> SurfaceErrorKind:
    """Translate a collaborator's error string into a ``SurfaceErrorKind``."""
    text = str(message or "").strip().lower()
    if not text:
        return SurfaceErrorKind.NONE
    if any(marker in text for marker in _NOT_CONNECTED_MARKERS):
        return SurfaceErrorKind.NOT_CONNECTED
    if any(marker in text for marker in _TORN_DOWN_MARKERS):
        return SurfaceErrorKind.TORN_DOWN
    return SurfaceErrorKind.REJECTED


@dataclass(frozen=True)
class SurfaceResponse:
    ok: bool
    result: Any = None
    error: str | None = None
    error_kind: SurfaceErrorKind = SurfaceErrorKind.NONE

    @classmethod
    def from_payload(cls, payload: Any) -> "SurfaceResponse":
        if not isinstance(payload, dict):
            return cls(ok=False, error="Surface returned a non-object response.", error_kind=SurfaceErrorKind.REJECTED)
        if payload.get("ok"):
            return cls(ok=True, result=payload.get("result"))
        error = str(payload.get("error") or "Surface call failed.")
        raw_kind = payload.get("error_kind")
        try:
            kind = SurfaceErrorKind(str(raw_kind)) if raw_kind else classify_surface_error(error)
        except ValueError:
            kind = classify_surface_error(error)
        if kind == SurfaceErrorKind.NONE:
            kind = SurfaceErrorKind.REJECTED
        return cls(ok=False, error=error, error_kind=kind)


@dataclass(frozen=True)
class SurfaceTarget:
    target_id: str
    url: str = ""
    title: str = ""
    active: bool = False
    identity: str = ""

    def is_chat(self, chat_surface_url: str) -> bool:
        base = chat_surface_url.rstrip("/").lower()
        return bool(base) and self.url.lower().startswith(base)


@dataclass(frozen=True)
class Snapshot:
    targets: list[SurfaceTarget] = field(default_factory=list)

    def find(self, target_id: str) -> SurfaceTarget | None:
        for target in self.targets:
            if target.target_id == target_id:
                return target
        return None

    def chat_targets(self, chat_surface_url: str) -> list[SurfaceTarget]:
        return [target for target in self.targets if target.is_chat(chat_surface_url)]

    @classmethod
    def from_payload(cls, payload: Any) -> "Snapshot":
        raw_targets = payload.get("targets") if isinstance(payload, dict) else payload
        targets: list[SurfaceTarget] = []
        for item in raw_targets if isinstance(raw_targets, list) else []:
            if not isinstance(item, dict):
                continue
            target_id = str(item.get("target_id") or item.get("id") or "").strip()
            if not target_id:
                continue
            targets.append(
                SurfaceTarget(
                    target_id=target_id,
                    url=str(item.get("url") or ""),
                    title=str(item.get("title") or ""),
                    active=bool(item.get("active")),
                    identity=str(item.get("identity") or ""),
                )
            )
        return cls(targets=targets)


class AutomationSurface(Protocol):
    async def send_to_surface(self, target_id: str, action: str, args: dict[str, Any]) -> SurfaceResponse: ...

    async def probe_surface_state(self, target_id: str, action: str, args: dict[str, Any]) -> SurfaceResponse: ...

    async def request_snapshot(self) -> Snapshot: ...


class HttpSurfaceBridge:
    """``AutomationSurface`` backed by a local bridge agent speaking JSON over HTTP."""

    def __init__(self, base_url: str, *, timeout_seconds: int = 15) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def send_to_surface(self, target_id: str, action: str, args: dict[str, Any]) -> SurfaceResponse:
        return await self._call("/surface/send", target_id, action, args)

    async def probe_surface_state(self, target_id: str, action: str, args: dict[str, Any]) -> SurfaceResponse:
        return await self._call("/surface/probe", target_id, action, args)

    async def request_snapshot(self) -> Snapshot:
        payload = await asyncio.to_thread(self._post, "/surface/snapshot", {})
        return Snapshot.from_payload(payload)

    async def _call(self, path: str, target_id: str, action: str, args: dict[str, Any]) -> SurfaceResponse:
        body = {"target_id": target_id, "action": action, "args": args}
        try:
            payload = await asyncio.to_thread(self._post, path, body)
        except requests.ConnectionError as exc:
            # The bridge agent itself is not up yet.
            return SurfaceResponse(
                ok=False,
                error=f"Could not establish connection: {redact_sensitive_text(str(exc))}",
                error_kind=SurfaceErrorKind.NOT_CONNECTED,
            )
        return SurfaceResponse.from_payload(payload)

    def _post(self, path: str, body: dict[str, Any]) -> Any:
        response = requests.post(
            f"{self._base_url}{path}",
            json=body,
            timeout=self._timeout_seconds,
        )
        if response.status_code >= 400:
            detail = redact_sensitive_text(response.text[:300])
            raise RuntimeError(f"Surface bridge request failed ({response.status_code}): {detail}")
        try:
            return response.json()
        except ValueError as exc:
            raise RuntimeError("Surface bridge returned invalid JSON.") from exc

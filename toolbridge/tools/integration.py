from __future__ import annotations

import logging
from typing import Any

from toolbridge.config import settings
from toolbridge.errors import DomainError, ValidationError

from .base import Tool
from .http_bridge import post_json

LOGGER = logging.getLogger(__name__)


class IntegrationTool(Tool):
    namespace = "integration"

    def __init__(
        self,
        endpoints: dict[str, str] | None = None,
        *,
        timeout_seconds: int | None = None,
    ) -> None:
        source = settings.integration_endpoints if endpoints is None else endpoints
        self._endpoints = {str(name).strip().lower(): url for name, url in source.items() if url}
        self._timeout_seconds = timeout_seconds or settings.integration_timeout_seconds

    def names(self) -> list[str]:
        return sorted(self._endpoints)

    def run(self, action: str, args: dict[str, Any]) -> Any:
        if action != "call":
            raise ValidationError(f"Unsupported integration action '{action}'.")
        name = str(args.get("name") or "").strip().lower()
        if not name:
            raise ValidationError("integration.call requires 'name'.")
        url = self._endpoints.get(name)
        if not url:
            allowed = ", ".join(self.names()) or "none configured"
            raise DomainError(f"Integration '{name}' is not allow-listed (allowed: {allowed}).")

        payload = args.get("input")
        LOGGER.info("integration: calling %s", name)
        return post_json(
            url,
            {"name": name, "input": payload if isinstance(payload, dict) else {}},
            timeout_seconds=self._timeout_seconds,
            label=f"Integration '{name}'",
        )

from __future__ import annotations

import logging
from typing import Any

import requests

from toolbridge.errors import DomainError
from toolbridge.services.token_security import redact_sensitive_text

LOGGER = logging.getLogger(__name__)

NETWORK_ATTEMPTS = 2


def post_json(url: str, body: dict[str, Any], *, timeout_seconds: int, label: str) -> Any:
    """POST ``body`` to a local bridge agent and unwrap its ``{ok, result, error}`` envelope.

    Connection errors and timeouts are retried once; every other failure is
    raised as ``DomainError`` with credentials masked.
    """
    last_error = ""
    for attempt in range(1, NETWORK_ATTEMPTS + 1):
        try:
            response = requests.post(url, json=body, timeout=timeout_seconds)
        except (requests.ConnectionError, requests.Timeout) as exc:
            last_error = redact_sensitive_text(str(exc))[:220]
            LOGGER.info("%s: network error on attempt %d/%d: %s", label, attempt, NETWORK_ATTEMPTS, last_error)
            continue
        return _unwrap(response, label)
    raise DomainError(f"{label} unreachable at {url}: {last_error or 'connection failed'}")


def _unwrap(response: requests.Response, label: str) -> Any:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if not response.ok:
        detail = ""
        if isinstance(payload, dict):
            detail = str(payload.get("error") or payload.get("message") or "")
        detail = detail or response.text.strip()[:300] or "request failed"
        raise DomainError(f"{label} failed ({response.status_code}): {redact_sensitive_text(detail)}")

    if not isinstance(payload, dict):
        raise DomainError(f"{label} returned an unexpected payload.")
    if payload.get("ok") is False:
        detail = str(payload.get("error") or payload.get("message") or "request failed")
        raise DomainError(f"{label} error: {redact_sensitive_text(detail)}")
    return payload.get("result", payload)

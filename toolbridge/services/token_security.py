from __future__ import annotations

import json
import re
from typing import Any


_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[a-z0-9\-._~+/]+=*")
_TOKENISH_PATTERN = re.compile(r"(?i)\b(access|refresh|id)_token\b[^,\n]*")
_DSN_PASSWORD_PATTERN = re.compile(r"(?i)\b((?:postgres(?:ql)?|mysql|smtps?)://[^:@\s/]+:)[^@\s/]+@")
_SECRET_PAIR_PATTERN = re.compile(
    r"(?i)\b(password|passwd|pwd|secret|api[_-]?key|token)(\s*[=:]\s*|\"\s*:\s*\")([^\s,;&\"']+)"
)

_SENSITIVE_ARG_KEYS = {
    "password",
    "pass",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "connectionurl",
    "connection_url",
}


def redact_sensitive_text(value: str | None) -> str:
    if not value:
        return ""
    out = _BEARER_PATTERN.sub("Bearer [REDACTED]", value)
    out = _TOKENISH_PATTERN.sub("[REDACTED_TOKEN_FIELD]", out)
    out = _DSN_PASSWORD_PATTERN.sub(r"\1***@", out)
    out = _SECRET_PAIR_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}***", out)
    return out


def redact_args(args: Any) -> Any:
    if isinstance(args, dict):
        clean: dict[str, Any] = {}
        for key, value in args.items():
            if str(key).strip().lower() in _SENSITIVE_ARG_KEYS:
                clean[key] = "***"
            else:
                clean[key] = redact_args(value)
        return clean
    if isinstance(args, list):
        return [redact_args(item) for item in args]
    if isinstance(args, str):
        return redact_sensitive_text(args)
    return args


def summarize_args(args: Any, limit: int = 240) -> str:
    try:
        text = json.dumps(redact_args(args), ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = redact_sensitive_text(str(args))
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

from toolbridge.tools.base import TOOL_NAME_PATTERN, ToolCall
from toolbridge.tools.catalog import canonical_tool_name

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CALLS = 3
MAX_CALLS_CEILING = 10

_FENCED_BLOCK_RE = re.compile(r"```(?:tool|json)[ \t]*\n?([\s\S]*?)```", re.IGNORECASE)
_XML_BLOCK_RE = re.compile(r"<tool_call>\s*([\s\S]*?)\s*</tool_call>", re.IGNORECASE)
_LEADING_JSON_TAG_RE = re.compile(r"^json\s*", re.IGNORECASE)

ParserLog = Callable[[str, dict[str, Any]], None]


def _default_log(event: str, details: dict[str, Any]) -> None:
    level = logging.WARNING if event.startswith("invalid") else logging.DEBUG
    LOGGER.log(level, "tool_call_parser:%s %s", event, details)


def parse_tool_calls(
    text: str | None,
    *,
    max_calls: int | None = DEFAULT_MAX_CALLS,
    log: ParserLog | None = None,
) -> list[ToolCall]:
    emit = log or _default_log
    limit = _clamp_max_calls(max_calls)
    source = text if isinstance(text, str) else ""
    if not source.strip():
        emit("empty", {})
        return []

    calls: list[ToolCall] = []
    for chunk in _extract_chunks(source):
        body = _LEADING_JSON_TAG_RE.sub("", chunk, count=1).strip()
        if not body:
            continue
        try:
            parsed = json.loads(body)
        except ValueError:
            emit("invalid_block", {"chunk": body[:360]})
            continue

        entries = parsed if isinstance(parsed, list) else [parsed]
        for entry in entries:
            call = _to_tool_call(entry, emit)
            if call is not None:
                calls.append(call)
        if len(calls) >= limit:
            break

    out = calls[:limit]
    emit("parsed", {"count": len(out), "tools": [call.tool for call in out]})
    return out


def _extract_chunks(source: str) -> list[str]:
    spans: list[tuple[int, str]] = []
    for match in _FENCED_BLOCK_RE.finditer(source):
        spans.append((match.start(), match.group(1).strip()))
    for match in _XML_BLOCK_RE.finditer(source):
        spans.append((match.start(), match.group(1).strip()))
    spans.sort(key=lambda item: item[0])
    return [chunk for _, chunk in spans if chunk]


def _to_tool_call(entry: Any, emit: ParserLog) -> ToolCall | None:
    if not isinstance(entry, dict):
        emit("invalid_entry", {"reason": "not_an_object", "entry": str(entry)[:120]})
        return None

    raw_tool = entry.get("tool", entry.get("action"))
    if not isinstance(raw_tool, str) or not raw_tool.strip():
        emit("invalid_entry", {"reason": "missing_tool"})
        return None

    tool = canonical_tool_name(raw_tool)
    if not TOOL_NAME_PATTERN.match(tool):
        emit("invalid_entry", {"reason": "bad_tool_name", "tool": raw_tool[:80]})
        return None

    raw_args = entry.get("args")
    if raw_args is None:
        args: dict[str, Any] = {}
    elif isinstance(raw_args, dict):
        args = dict(raw_args)
    else:
        emit("invalid_entry", {"reason": "args_not_object", "tool": tool})
        return None
    return ToolCall(tool=tool, args=args)


def _clamp_max_calls(value: int | None) -> int:
    try:
        number = int(value) if value is not None else DEFAULT_MAX_CALLS
    except (TypeError, ValueError):
        number = DEFAULT_MAX_CALLS
    if number < 1:
        number = DEFAULT_MAX_CALLS
    return min(MAX_CALLS_CEILING, number)

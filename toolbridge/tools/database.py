from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlparse

from toolbridge.config import settings
from toolbridge.errors import DomainError, ValidationError
from toolbridge.services.token_security import redact_sensitive_text

from .base import Tool
from .http_bridge import post_json

LOGGER = logging.getLogger(__name__)

MAX_SQL_CHARS = 20000
MAX_PARAMS = 120
MAX_ROWS_CEILING = 5000

_READ_HEAD_RE = re.compile(r"^(select|with|show|explain)\b", re.IGNORECASE)
_WRITE_HEAD_RE = re.compile(r"^(insert|update|delete|with)\b", re.IGNORECASE)
_WRITE_KEYWORD_RE = re.compile(r"\b(insert|update|delete)\b", re.IGNORECASE)
_DDL_RE = re.compile(r"\b(create|alter|drop|truncate|grant|revoke|comment)\b", re.IGNORECASE)
_READ_BLOCKED_RE = re.compile(
    r"\b(insert|update|delete|create|alter|drop|truncate|grant|revoke|comment)\b",
    re.IGNORECASE,
)
_DELETE_RE = re.compile(r"\bdelete\s+from\b", re.IGNORECASE)
_UPDATE_RE = re.compile(r"\bupdate\b", re.IGNORECASE)
_WHERE_RE = re.compile(r"\bwhere\b", re.IGNORECASE)


def to_single_statement(raw_sql: Any) -> str:
    source = str(raw_sql or "").strip()[:MAX_SQL_CHARS]
    statement = re.sub(r";\s*$", "", source).strip()
    if not statement:
        raise ValidationError("SQL is empty.")
    if ";" in statement:
        raise DomainError("Only one SQL statement is allowed per request.")
    return statement


def to_safe_read_sql(raw_sql: Any) -> str:
    statement = to_single_statement(raw_sql)
    if not _READ_HEAD_RE.match(statement):
        raise DomainError("db.queryRead only allows SELECT/CTE/SHOW/EXPLAIN.")
    if _READ_BLOCKED_RE.search(statement):
        raise DomainError("db.queryRead blocked a write or DDL operation.")
    return statement


def to_safe_write_sql(raw_sql: Any, *, allow_full_table_write: bool = False) -> str:
    statement = to_single_statement(raw_sql)
    if not _WRITE_HEAD_RE.match(statement) or not _WRITE_KEYWORD_RE.search(statement):
        raise DomainError("db.queryWrite only allows INSERT/UPDATE/DELETE.")
    if _DDL_RE.search(statement):
        raise DomainError("db.queryWrite blocked a DDL operation.")
    if not allow_full_table_write:
        touches_rows = _DELETE_RE.search(statement) or _UPDATE_RE.search(statement)
        if touches_rows and not _WHERE_RE.search(statement):
            raise DomainError("db.queryWrite blocked UPDATE/DELETE without a WHERE clause.")
    return statement


def normalize_connection_url(value: str | None) -> str:
    raw = str(value or "").strip()
    if not raw:
        return ""
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"postgres", "postgresql"}:
        return ""
    if not parsed.hostname or parsed.path in {"", "/"}:
        return ""
    return raw


class DatabaseTool(Tool):
    namespace = "db"

    def __init__(
        self,
        *,
        bridge_url: str | None = None,
        connection_url: str | None = None,
        allow_full_table_write: bool | None = None,
        timeout_seconds: int = 30,
    ) -> None:
        self._bridge_url = (bridge_url or settings.db_bridge_url or f"{settings.surface_bridge_url}/db/query").rstrip("/")
        self._connection_url = normalize_connection_url(
            connection_url if connection_url is not None else settings.db_connection_url
        )
        self._allow_full_table_write = (
            settings.db_allow_full_table_write if allow_full_table_write is None else allow_full_table_write
        )
        self._timeout_seconds = timeout_seconds

    def run(self, action: str, args: dict[str, Any]) -> Any:
        if not self._connection_url:
            raise DomainError("Database is not configured. Set a postgres:// connection URL first.")

        if action == "refreshSchema":
            return self._post({"action": "describeSchema", "sql": "", "params": [], "options": {}})

        sql_arg = args.get("sql") or args.get("query")
        params = args.get("params") if isinstance(args.get("params"), list) else []
        options: dict[str, Any] = {}
        max_rows = _clamp_max_rows(args.get("maxRows"))
        if max_rows is not None:
            options["maxRows"] = max_rows

        if action == "queryRead":
            statement = to_safe_read_sql(sql_arg)
        elif action == "queryWrite":
            statement = to_safe_write_sql(sql_arg, allow_full_table_write=self._allow_full_table_write)
            options["allowFullTableWrite"] = self._allow_full_table_write
        else:
            raise ValidationError(f"Unsupported db action '{action}'.")

        return self._post(
            {
                "action": action,
                "sql": statement,
                "params": params[:MAX_PARAMS],
                "options": options,
            }
        )

    def _post(self, body: dict[str, Any]) -> Any:
        LOGGER.debug(
            "db: %s sql_head=%r params=%d",
            body.get("action"),
            str(body.get("sql") or "")[:80],
            len(body.get("params") or []),
        )
        payload = {"type": "DB_QUERY", "connectionUrl": self._connection_url, **body}
        try:
            return post_json(self._bridge_url, payload, timeout_seconds=self._timeout_seconds, label="DB bridge")
        except DomainError as exc:
            raise DomainError(redact_sensitive_text(str(exc))) from exc


def _clamp_max_rows(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(1, min(MAX_ROWS_CEILING, int(round(value))))

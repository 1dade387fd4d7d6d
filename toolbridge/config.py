import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=False)


def _as_bool(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _as_mapping(raw: str | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for chunk in (raw or "").split(","):
        name, sep, url = chunk.partition("=")
        if not sep:
            continue
        key = name.strip().lower()
        value = url.strip()
        if key and value:
            out[key] = value
    return out


@dataclass(frozen=True)
class Settings:
    max_tool_calls: int
    alias_book_max_entries: int
    alias_sync_cooldown_seconds: int
    readiness_attempts: int
    readiness_delay_ms: int
    readiness_resync_every: int
    dispatch_max_attempts: int
    dispatch_retry_delay_ms: int
    error_log_max_items: int
    error_log_max_age_seconds: int
    error_log_coalesce_window_seconds: int
    surface_bridge_url: str
    surface_bridge_timeout_seconds: int
    chat_surface_url: str
    db_bridge_url: str | None
    db_connection_url: str | None
    db_allow_full_table_write: bool
    smtp_relay_url: str | None
    smtp_host: str | None
    smtp_port: int
    smtp_username: str | None
    smtp_password: str | None
    smtp_from: str | None
    integration_endpoints: dict[str, str]
    integration_timeout_seconds: int
    storage_path: str | None
    direct_intent_enabled: bool
    log_level: str


def load_settings() -> Settings:
    return Settings(
        max_tool_calls=max(1, min(10, _as_int(os.getenv("TOOLBRIDGE_MAX_TOOL_CALLS"), 3))),
        alias_book_max_entries=max(
            10,
            min(5000, _as_int(os.getenv("TOOLBRIDGE_ALIAS_BOOK_MAX_ENTRIES"), 400)),
        ),
        alias_sync_cooldown_seconds=max(
            0, _as_int(os.getenv("TOOLBRIDGE_ALIAS_SYNC_COOLDOWN_SECONDS"), 90)
        ),
        readiness_attempts=max(1, min(30, _as_int(os.getenv("TOOLBRIDGE_READINESS_ATTEMPTS"), 12))),
        readiness_delay_ms=max(
            80, min(220, _as_int(os.getenv("TOOLBRIDGE_READINESS_DELAY_MS"), 120))
        ),
        readiness_resync_every=max(
            1, _as_int(os.getenv("TOOLBRIDGE_READINESS_RESYNC_EVERY"), 3)
        ),
        dispatch_max_attempts=max(1, min(10, _as_int(os.getenv("TOOLBRIDGE_DISPATCH_MAX_ATTEMPTS"), 4))),
        dispatch_retry_delay_ms=max(
            80, min(220, _as_int(os.getenv("TOOLBRIDGE_DISPATCH_RETRY_DELAY_MS"), 220))
        ),
        error_log_max_items=max(1, min(200, _as_int(os.getenv("TOOLBRIDGE_ERROR_LOG_MAX_ITEMS"), 20))),
        error_log_max_age_seconds=max(
            60, _as_int(os.getenv("TOOLBRIDGE_ERROR_LOG_MAX_AGE_SECONDS"), 1800)
        ),
        error_log_coalesce_window_seconds=max(
            1, _as_int(os.getenv("TOOLBRIDGE_ERROR_LOG_COALESCE_WINDOW_SECONDS"), 20)
        ),
        surface_bridge_url=os.getenv(
            "TOOLBRIDGE_SURFACE_BRIDGE_URL", "http://127.0.0.1:4395"
        ),
        surface_bridge_timeout_seconds=_as_int(
            os.getenv("TOOLBRIDGE_SURFACE_BRIDGE_TIMEOUT_SECONDS"), 15
        ),
        chat_surface_url=os.getenv(
            "TOOLBRIDGE_CHAT_SURFACE_URL", "https://web.whatsapp.com"
        ),
        db_bridge_url=(os.getenv("TOOLBRIDGE_DB_BRIDGE_URL") or None),
        db_connection_url=(os.getenv("TOOLBRIDGE_DB_CONNECTION_URL") or None),
        db_allow_full_table_write=_as_bool(
            os.getenv("TOOLBRIDGE_DB_ALLOW_FULL_TABLE_WRITE"), False
        ),
        smtp_relay_url=(os.getenv("TOOLBRIDGE_SMTP_RELAY_URL") or None),
        smtp_host=(os.getenv("TOOLBRIDGE_SMTP_HOST") or None),
        smtp_port=max(1, min(65535, _as_int(os.getenv("TOOLBRIDGE_SMTP_PORT"), 587))),
        smtp_username=(os.getenv("TOOLBRIDGE_SMTP_USERNAME") or None),
        smtp_password=(os.getenv("TOOLBRIDGE_SMTP_PASSWORD") or None),
        smtp_from=(os.getenv("TOOLBRIDGE_SMTP_FROM") or None),
        integration_endpoints=_as_mapping(os.getenv("TOOLBRIDGE_INTEGRATION_ENDPOINTS")),
        integration_timeout_seconds=_as_int(
            os.getenv("TOOLBRIDGE_INTEGRATION_TIMEOUT_SECONDS"), 20
        ),
        storage_path=(os.getenv("TOOLBRIDGE_STORAGE_PATH") or None),
        direct_intent_enabled=_as_bool(os.getenv("TOOLBRIDGE_DIRECT_INTENT_ENABLED"), True),
        log_level=os.getenv("TOOLBRIDGE_LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


settings = load_settings()

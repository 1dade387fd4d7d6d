from __future__ import annotations

from .registry import ToolRegistry

SURFACE_BROWSER = "browser"
SURFACE_CHAT = "chat"
SURFACE_DOMAIN = "domain"

# Legacy and model-invented spellings accepted for canonical tool names.
TOOL_CALL_ALIASES: dict[str, str] = {
    "browser.list_tabs": "browser.listTabs",
    "browser.get_recent_history": "browser.getRecentHistory",
    "browser.query_history_range": "browser.queryHistoryRange",
    "browser.history_range": "browser.queryHistoryRange",
    "browser.query_history_by_date_range": "browser.queryHistoryRange",
    "browser.queryHistoryByDateRange": "browser.queryHistoryRange",
    "browser.historyByRange": "browser.queryHistoryRange",
    "browser.get_oldest_history_visit": "browser.getOldestHistoryVisit",
    "browser.oldest_history_visit": "browser.getOldestHistoryVisit",
    "browser.open_new_tab": "browser.openNewTab",
    "browser.openTab": "browser.openNewTab",
    "browser.focus_tab": "browser.focusTab",
    "browser.close_tab": "browser.closeTab",
    "browser.close_non_productivity_tabs": "browser.closeNonProductivityTabs",
    "whatsapp.get_inbox": "whatsapp.getInbox",
    "whatsapp.getListInbox": "whatsapp.getInbox",
    "whatsapp.read_messages": "whatsapp.readMessages",
    "whatsapp.getListMessages": "whatsapp.readMessages",
    "whatsapp.get_current_chat": "whatsapp.getCurrentChat",
    "whatsapp.open_chat": "whatsapp.openChat",
    "whatsapp.openChatByQuery": "whatsapp.openChat",
    "whatsapp.send_message": "whatsapp.sendMessage",
    "whatsapp.sendText": "whatsapp.sendMessage",
    "whatsapp.open_chat_and_send_message": "whatsapp.openChatAndSendMessage",
    "whatsapp.openAndSendMessage": "whatsapp.openChatAndSendMessage",
    "whatsapp.archive_chats": "whatsapp.archiveChats",
    "whatsapp.archiveListChats": "whatsapp.archiveChats",
    "whatsapp.archive_groups": "whatsapp.archiveGroups",
    "db.refresh_schema": "db.refreshSchema",
    "db.inspect_schema": "db.refreshSchema",
    "db.describeSchema": "db.refreshSchema",
    "db.query_read": "db.queryRead",
    "db.read_query": "db.queryRead",
    "db.readQuery": "db.queryRead",
    "db.query_write": "db.queryWrite",
    "db.write_query": "db.queryWrite",
    "db.writeQuery": "db.queryWrite",
    "smtp.send_mail": "smtp.sendMail",
    "smtp.sendEmail": "smtp.sendMail",
    "integration.invoke": "integration.call",
    "integration.run": "integration.call",
}


def canonical_tool_name(raw: str) -> str:
    name = (raw or "").strip()
    return TOOL_CALL_ALIASES.get(name, name)


_RECIPIENT_PROPERTIES: dict[str, object] = {
    "phone": {"type": "string", "description": "Recipient phone number."},
    "query": {"type": "string", "description": "Chat name or search text."},
    "name": {"type": "string", "description": "Contact display name."},
    "chat": {"type": "string", "description": "Chat title as shown in the inbox."},
    "tabId": {"type": "integer", "description": "Optional chat window id."},
}


def build_default_registry() -> ToolRegistry:
    registry = ToolRegistry()

    registry.register(
        name="browser.listTabs",
        label="List tabs",
        description="List the open browser tabs.",
        surface=SURFACE_BROWSER,
        schema={"type": "object", "required": [], "properties": {}},
    )
    registry.register(
        name="browser.getRecentHistory",
        label="Recent history",
        description="Read recent browsing history.",
        surface=SURFACE_BROWSER,
        schema={
            "type": "object",
            "required": [],
            "properties": {
                "limit": {"type": "integer", "description": "Maximum entries (20-600)."},
                "days": {"type": "integer", "description": "Days to look back (1-365)."},
                "text": {"type": "string", "description": "Optional text filter."},
            },
        },
    )
    registry.register(
        name="browser.queryHistoryRange",
        label="History range",
        description="Read browsing history inside a date range.",
        surface=SURFACE_BROWSER,
        schema={
            "type": "object",
            "required": [],
            "properties": {
                "startTime": {"type": ["string", "integer"], "description": "Range start (ISO or epoch ms)."},
                "endTime": {"type": ["string", "integer"], "description": "Range end (ISO or epoch ms)."},
                "text": {"type": "string", "description": "Optional text filter."},
                "limit": {"type": "integer", "description": "Maximum entries."},
                "sort": {"type": "string", "enum": ["asc", "desc"], "description": "Sort order."},
            },
        },
    )
    registry.register(
        name="browser.getOldestHistoryVisit",
        label="Oldest visit",
        description="Find the oldest history visit matching a filter.",
        surface=SURFACE_BROWSER,
        schema={
            "type": "object",
            "required": [],
            "properties": {
                "text": {"type": "string", "description": "Optional text filter."},
                "startTime": {"type": ["string", "integer"], "description": "Range start."},
                "endTime": {"type": ["string", "integer"], "description": "Range end."},
            },
        },
    )
    registry.register(
        name="browser.openNewTab",
        label="Open tab",
        description="Open a new browser tab.",
        surface=SURFACE_BROWSER,
        mutating=True,
        schema={
            "type": "object",
            "required": ["url"],
            "properties": {
                "url": {"type": "string", "description": "Absolute http(s) URL."},
                "active": {"type": "boolean", "description": "Focus the new tab (default true)."},
            },
        },
    )
    registry.register(
        name="browser.focusTab",
        label="Focus tab",
        description="Focus an open tab by id, URL or title fragment.",
        surface=SURFACE_BROWSER,
        mutating=True,
        schema={
            "type": "object",
            "required": [],
            "required_any": [["tabId", "urlContains", "titleContains"]],
            "properties": {
                "tabId": {"type": "integer", "description": "Tab id."},
                "urlContains": {"type": "string", "description": "URL fragment."},
                "titleContains": {"type": "string", "description": "Title fragment."},
            },
        },
    )
    registry.register(
        name="browser.closeTab",
        label="Close tab",
        description="Close one tab by id, URL, title fragment or query.",
        surface=SURFACE_BROWSER,
        mutating=True,
        schema={
            "type": "object",
            "required": [],
            "required_any": [["tabId", "url", "urlContains", "titleContains", "query"]],
            "properties": {
                "tabId": {"type": "integer", "description": "Tab id."},
                "url": {"type": "string", "description": "Exact URL."},
                "urlContains": {"type": "string", "description": "URL fragment."},
                "titleContains": {"type": "string", "description": "Title fragment."},
                "query": {"type": "string", "description": "Matches title or URL."},
                "preventActive": {"type": "boolean", "description": "Refuse to close the active tab."},
            },
        },
    )
    registry.register(
        name="browser.closeNonProductivityTabs",
        label="Close distractions",
        description="Close tabs that are not work related.",
        surface=SURFACE_BROWSER,
        mutating=True,
        schema={
            "type": "object",
            "required": [],
            "properties": {
                "keepActive": {"type": "boolean", "description": "Keep the active tab (default true)."},
                "keepPinned": {"type": "boolean", "description": "Keep pinned tabs (default true)."},
                "dryRun": {"type": "boolean", "description": "Only report candidates."},
                "onlyCurrentWindow": {"type": "boolean", "description": "Limit to the current window."},
            },
        },
    )

    registry.register(
        name="whatsapp.getInbox",
        label="Chat inbox",
        description="List chats from the chat application inbox.",
        surface=SURFACE_CHAT,
        schema={
            "type": "object",
            "required": [],
            "properties": {
                "limit": {"type": "integer", "description": "Maximum chats."},
                "tabId": _RECIPIENT_PROPERTIES["tabId"],
            },
        },
    )
    registry.register(
        name="whatsapp.readMessages",
        label="Read messages",
        description="Read messages from the open chat.",
        surface=SURFACE_CHAT,
        schema={
            "type": "object",
            "required": [],
            "properties": {
                "limit": {"type": "integer", "description": "Maximum messages."},
                "tabId": _RECIPIENT_PROPERTIES["tabId"],
            },
        },
    )
    registry.register(
        name="whatsapp.getCurrentChat",
        label="Current chat",
        description="Return title and phone of the open chat.",
        surface=SURFACE_CHAT,
        schema={"type": "object", "required": [], "properties": {"tabId": _RECIPIENT_PROPERTIES["tabId"]}},
    )
    registry.register(
        name="whatsapp.openChat",
        label="Open chat",
        description="Open a chat by phone, name or search text.",
        surface=SURFACE_CHAT,
        mutating=True,
        schema={
            "type": "object",
            "required": [],
            "required_any": [["phone", "query", "name", "chat"]],
            "properties": dict(_RECIPIENT_PROPERTIES),
        },
    )
    registry.register(
        name="whatsapp.sendMessage",
        label="Send message",
        description="Send text to the chat that is currently open.",
        surface=SURFACE_CHAT,
        mutating=True,
        schema={
            "type": "object",
            "required": ["text"],
            "properties": {
                "text": {"type": "string", "description": "Message text."},
                "tabId": _RECIPIENT_PROPERTIES["tabId"],
            },
        },
    )
    registry.register(
        name="whatsapp.openChatAndSendMessage",
        label="Open chat and send",
        description="Open a chat by phone, name or search text and send a message.",
        surface=SURFACE_CHAT,
        mutating=True,
        schema={
            "type": "object",
            "required": ["text"],
            "required_any": [["phone", "query", "name", "chat"]],
            "properties": {
                **_RECIPIENT_PROPERTIES,
                "text": {"type": "string", "description": "Message text."},
            },
        },
    )
    registry.register(
        name="whatsapp.archiveChats",
        label="Archive chats",
        description="Archive chats by scope or query; prefer dryRun for bulk actions.",
        surface=SURFACE_CHAT,
        mutating=True,
        schema={
            "type": "object",
            "required": [],
            "properties": {
                "scope": {"type": "string", "enum": ["groups", "contacts", "all"], "description": "Which chats."},
                "queries": {"type": "array", "description": "Chat names to match."},
                "limit": {"type": "integer", "description": "Maximum chats to archive."},
                "dryRun": {"type": "boolean", "description": "Only report candidates."},
                "tabId": _RECIPIENT_PROPERTIES["tabId"],
            },
        },
    )
    registry.register(
        name="whatsapp.archiveGroups",
        label="Archive groups",
        description="Shortcut for archiveChats with scope=groups.",
        surface=SURFACE_CHAT,
        mutating=True,
        schema={
            "type": "object",
            "required": [],
            "properties": {
                "limit": {"type": "integer", "description": "Maximum groups to archive."},
                "dryRun": {"type": "boolean", "description": "Only report candidates."},
                "tabId": _RECIPIENT_PROPERTIES["tabId"],
            },
        },
    )

    registry.register(
        name="db.refreshSchema",
        label="Inspect schema",
        description="Inspect schemas, tables and columns of the configured database.",
        surface=SURFACE_DOMAIN,
        schema={"type": "object", "required": [], "properties": {}},
    )
    registry.register(
        name="db.queryRead",
        label="Read query",
        description="Run a read-only query (SELECT/CTE/SHOW/EXPLAIN); add a LIMIT <= 100.",
        surface=SURFACE_DOMAIN,
        schema={
            "type": "object",
            "required": [],
            "required_any": [["sql", "query"]],
            "properties": {
                "sql": {"type": "string", "description": "Single SQL statement."},
                "query": {"type": "string", "description": "Alias for sql."},
                "params": {"type": "array", "description": "Positional parameters."},
                "maxRows": {"type": "integer", "description": "Row cap."},
            },
        },
    )
    registry.register(
        name="db.queryWrite",
        label="Write query",
        description="Run INSERT/UPDATE/DELETE; UPDATE and DELETE need a WHERE clause.",
        surface=SURFACE_DOMAIN,
        schema={
            "type": "object",
            "required": [],
            "required_any": [["sql", "query"]],
            "properties": {
                "sql": {"type": "string", "description": "Single SQL statement."},
                "query": {"type": "string", "description": "Alias for sql."},
                "params": {"type": "array", "description": "Positional parameters."},
                "maxRows": {"type": "integer", "description": "Row cap for RETURNING."},
            },
        },
    )
    registry.register(
        name="smtp.sendMail",
        label="Send mail",
        description="Send an email through the configured relay.",
        surface=SURFACE_DOMAIN,
        schema={
            "type": "object",
            "required": ["to", "subject"],
            "required_any": [["text", "html"]],
            "properties": {
                "to": {"type": ["string", "array"], "description": "Recipients."},
                "cc": {"type": ["string", "array"], "description": "Carbon copy."},
                "bcc": {"type": ["string", "array"], "description": "Blind copy."},
                "subject": {"type": "string", "description": "Subject line."},
                "text": {"type": "string", "description": "Plain text body."},
                "html": {"type": "string", "description": "HTML body."},
            },
        },
    )
    registry.register(
        name="integration.call",
        label="Integration",
        description="Call an allow-listed HTTP integration by name.",
        surface=SURFACE_DOMAIN,
        schema={
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "description": "Integration name."},
                "input": {"type": "object", "description": "JSON input for the integration."},
            },
        },
    )
    return registry

from __future__ import annotations

import logging
import re
from html import unescape as html_unescape
from typing import Any

from toolbridge.config import settings
from toolbridge.errors import DomainError, ValidationError

from .base import Tool
from .http_bridge import post_json

LOGGER = logging.getLogger(__name__)

MAX_TO = 20
MAX_CC = 10
MAX_SUBJECT_CHARS = 220
MAX_TEXT_CHARS = 4000
MAX_HTML_CHARS = 12000


def normalize_email_list(raw_value: Any, limit: int = MAX_TO) -> list[str]:
    source = raw_value if isinstance(raw_value, list) else re.split(r"[;,]", str(raw_value or ""))
    cleaned: list[str] = []
    seen: set[str] = set()
    for item in source:
        email = str(item or "").strip()[:220]
        if not email or "@" not in email:
            continue
        key = email.lower()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(email)
        if len(cleaned) >= limit:
            break
    return cleaned


def html_to_plain_text(raw_html: str | None) -> str:
    source = str(raw_html or "").strip()
    if not source:
        return ""
    text = re.sub(r"(?is)<style.*?</style>", " ", source)
    text = re.sub(r"(?is)<script.*?</script>", " ", text)
    text = re.sub(r"(?i)<br\s*/?>", "\n", text)
    text = re.sub(r"(?i)</p>", "\n\n", text)
    text = re.sub(r"(?i)</div>", "\n", text)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html_unescape(text).replace("\xa0", " ").replace("\r\n", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n[ \t]+", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class MailTool(Tool):
    namespace = "smtp"

    def __init__(
        self,
        *,
        relay_url: str | None = None,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        timeout_seconds: int = 30,
    ) -> None:
        self._relay_url = (relay_url or settings.smtp_relay_url or f"{settings.surface_bridge_url}/smtp/send").rstrip("/")
        self._host = (host if host is not None else settings.smtp_host) or ""
        self._port = port or settings.smtp_port
        self._username = (username if username is not None else settings.smtp_username) or ""
        self._password = (password if password is not None else settings.smtp_password) or ""
        self._sender = (sender if sender is not None else settings.smtp_from) or ""
        self._timeout_seconds = timeout_seconds

    def run(self, action: str, args: dict[str, Any]) -> Any:
        if action != "sendMail":
            raise ValidationError(f"Unsupported smtp action '{action}'.")
        missing = [
            name
            for name, value in (("host", self._host), ("username", self._username), ("password", self._password))
            if not value
        ]
        if missing:
            raise DomainError(f"Mail relay is not configured (missing {', '.join(missing)}).")

        mail = self.build_message(args)
        LOGGER.info(
            "smtp: sending to=%d cc=%d bcc=%d subject=%r",
            len(mail["to"]),
            len(mail["cc"]),
            len(mail["bcc"]),
            mail["subject"][:80],
        )
        result = post_json(
            self._relay_url,
            {
                "type": "SMTP_SEND",
                "smtp": {
                    "host": self._host,
                    "port": self._port,
                    "username": self._username,
                    "password": self._password,
                    "from": self._sender or self._username,
                },
                "mail": mail,
            },
            timeout_seconds=self._timeout_seconds,
            label="SMTP relay",
        )
        return {"sent": True, "to": mail["to"], "subject": mail["subject"], "relay": result}

    def build_message(self, args: dict[str, Any]) -> dict[str, Any]:
        to = normalize_email_list(args.get("to"), MAX_TO)
        if not to:
            raise ValidationError("smtp.sendMail requires at least one valid 'to' address.")
        subject = str(args.get("subject") or "").strip()[:MAX_SUBJECT_CHARS]
        if not subject:
            raise ValidationError("smtp.sendMail requires 'subject'.")
        html = str(args.get("html") or "").strip()[:MAX_HTML_CHARS]
        text = str(args.get("text") or "").strip()[:MAX_TEXT_CHARS] or html_to_plain_text(html)[:MAX_TEXT_CHARS]
        if not text and not html:
            raise ValidationError("smtp.sendMail requires 'text' or 'html'.")
        return {
            "to": to,
            "cc": normalize_email_list(args.get("cc"), MAX_CC),
            "bcc": normalize_email_list(args.get("bcc"), MAX_CC),
            "subject": subject,
            "text": text,
            "html": html,
        }

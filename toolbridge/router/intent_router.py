from dataclasses import dataclass
import logging
import re
from typing import Any, Callable

from toolbridge.services.alias_book import AliasBook, AliasRecord
from toolbridge.services.text_normalization import looks_like_phone, normalize_phone, normalize_text
from toolbridge.tools.base import ToolCall

LOGGER = logging.getLogger(__name__)

HUMAN_SOURCES = {"user", "voice"}

NEGATION_HEAD_TERMS = (
    "no",
    "dont",
    "don't",
    "do not",
    "never",
    "cancel",
    "stop",
    "forget it",
    "nunca",
    "cancela",
    "cancelar",
    "olvidalo",
    "olvida",
    "ni se te ocurra",
)

WELL_KNOWN_DESTINATIONS = {
    "youtube": "https://www.youtube.com",
    "whatsapp": "https://web.whatsapp.com",
    "whatsapp web": "https://web.whatsapp.com",
    "gmail": "https://mail.google.com",
    "my email": "https://mail.google.com",
    "mi correo": "https://mail.google.com",
    "google calendar": "https://calendar.google.com",
    "calendar": "https://calendar.google.com",
    "calendario": "https://calendar.google.com",
    "google drive": "https://drive.google.com",
    "drive": "https://drive.google.com",
    "github": "https://github.com",
    "google": "https://www.google.com",
    "google maps": "https://maps.google.com",
    "maps": "https://maps.google.com",
    "spotify": "https://open.spotify.com",
    "netflix": "https://www.netflix.com",
    "linkedin": "https://www.linkedin.com",
}

_POLITE_PREFIX = r"(?:(?:please|pls|por favor|porfa)[,\s]+)?"

_OPEN_RE = re.compile(
    r"^" + _POLITE_PREFIX + r"(?:open|launch|go to|take me to|abre|abrir|abreme|ve a|ir a|entra a|entra en|llevame a)\s+"
    r"(?:up\s+)?(?:the |el |la |mi |my )?(?P<dest>[a-z ]+?)(?:\s+(?:please|por favor))?$"
)

_SEND_RE = re.compile(
    r"^" + _POLITE_PREFIX + r"(?:"
    r"(?:send|write|shoot)\s+(?:a\s+)?(?:whats\s*app\s+|wa\s+)?(?:message|msg|text|note)\s+to"
    r"|(?:message|text|whatsapp)(?:\s+to)?"
    r"|env[ií]a(?:le)?\s+(?:un\s+)?(?:mensaje|whats\s*app|wasap|msj)\s+a"
    r"|m[aá]nda(?:le)?\s+(?:un\s+)?(?:mensaje|whats\s*app|wasap|msj)\s+a"
    r"|escr[ií]be(?:le)?\s+(?:un\s+mensaje\s+)?a"
    r"|d[ií]le\s+a"
    r")\s+(?P<rest>.+)$",
    re.IGNORECASE | re.DOTALL,
)

_CONNECTOR_RE = re.compile(
    r"\s+(?:saying|that says|and say|to say|telling (?:him|her|them)|"
    r"dici[eé]ndo(?:le)?|que diga|que dice|y dile)\s+",
    re.IGNORECASE,
)
_LEADING_CONNECTOR_RE = re.compile(
    r"^(?:[:,\-]\s*)?(?:saying|that says|and say|to say|telling (?:him|her|them)|"
    r"dici[eé]ndo(?:le)?|que diga|que dice|y dile)?\s*[:,\-]?\s*",
    re.IGNORECASE,
)
_QUOTED_RE = re.compile(r"\"([^\"]+)\"|“([^”]+)”|«([^»]+)»|(?:^|\s)'([^']+)'(?=\s|$|[.!?])")
_SEPARATOR_RE = re.compile(r"\s*[:,]\s*")
_RECIPIENT_NOISE_RE = re.compile(r"^(?:to|a|para)\s+", re.IGNORECASE)

IntentLog = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True)
class RecipientSplit:
    recipient: str
    body: str
    reason: str
    record: AliasRecord | None = None


def _default_log(event: str, details: dict[str, Any]) -> None:
    LOGGER.debug("intent_router:%s %s", event, details)


class DirectIntentDetector:
    """Turns short, unambiguous user commands into a tool call without the model."""

    def __init__(
        self,
        alias_book: AliasBook,
        *,
        log: IntentLog | None = None,
    ) -> None:
        self._alias_book = alias_book
        self._log = log or _default_log

    def detect(self, user_text: str, *, source: str = "user") -> list[ToolCall]:
        if source not in HUMAN_SOURCES:
            return []
        raw = (user_text or "").strip()
        normalized = normalize_text(raw).rstrip(".!?¡¿ ")
        if not normalized:
            return []

        if _is_negated(normalized):
            self._log("negated", {"text": normalized[:80]})
            return []

        url = _match_destination(normalized)
        if url:
            self._log("open_destination", {"url": url})
            return [ToolCall(tool="browser.openNewTab", args={"url": url})]

        match = _SEND_RE.match(raw)
        if not match:
            return []
        split = self._split_recipient(match.group("rest").strip())
        if split is None:
            return []

        args = self._recipient_args(split.recipient, split.record)
        if not args:
            return []
        self._log(
            "send_message",
            {"reason": split.reason, "recipient": split.recipient[:60], "has_body": bool(split.body)},
        )
        if split.body:
            return [ToolCall(tool="whatsapp.openChatAndSendMessage", args={**args, "text": split.body})]
        return [ToolCall(tool="whatsapp.openChat", args=args)]

    def _split_recipient(self, rest: str) -> RecipientSplit | None:
        rest = _RECIPIENT_NOISE_RE.sub("", rest).strip()
        if not rest:
            return None

        prefixed = self._alias_book.match_prefix(rest)
        if prefixed is not None:
            record, remainder = prefixed
            return RecipientSplit(
                recipient=record.label or record.alias,
                body=_clean_body(remainder),
                reason="alias_prefix",
                record=record,
            )

        quoted = _QUOTED_RE.search(rest)
        if quoted is not None:
            recipient = _clean_recipient(rest[: quoted.start()])
            body = next(group for group in quoted.groups() if group is not None).strip()
            if recipient:
                return RecipientSplit(recipient=recipient, body=body, reason="quoted")

        connector = _CONNECTOR_RE.search(rest)
        if connector is not None:
            recipient = _clean_recipient(rest[: connector.start()])
            if recipient:
                return RecipientSplit(recipient=recipient, body=_clean_body(rest[connector.end() :]), reason="connector")

        separator = _SEPARATOR_RE.search(rest)
        if separator is not None:
            recipient = _clean_recipient(rest[: separator.start()])
            if recipient:
                return RecipientSplit(recipient=recipient, body=_clean_body(rest[separator.end() :]), reason="separator")

        words = rest.split()
        size = 2 if len(words) >= 2 and words[0][:1].isupper() and words[1][:1].isupper() else 1
        for count in (4, 3, 2):
            if len(words) >= count and looks_like_phone(" ".join(words[:count])):
                size = count
                break
        recipient = _clean_recipient(" ".join(words[:size]))
        if not recipient:
            return None
        return RecipientSplit(recipient=recipient, body=_clean_body(" ".join(words[size:])), reason="short_prefix")

    def _recipient_args(self, recipient: str, record: AliasRecord | None = None) -> dict[str, str]:
        if record is None and looks_like_phone(recipient):
            return {"phone": normalize_phone(recipient)}
        if record is None:
            record = self._alias_book.resolve([recipient])
        if record is not None:
            if looks_like_phone(record.target):
                return {"phone": normalize_phone(record.target)}
            return {"query": record.target}
        return {"query": recipient} if recipient else {}


def _is_negated(normalized: str) -> bool:
    head = " ".join(normalized.replace(",", " ").split()[:4])
    head = re.sub(r"^(?:please|por favor)\s+", "", head)
    return any(head == term or head.startswith(f"{term} ") for term in NEGATION_HEAD_TERMS)


def _match_destination(normalized: str) -> str | None:
    match = _OPEN_RE.match(" ".join(re.sub(r"[,;]+", " ", normalized).split()))
    if not match:
        return None
    return WELL_KNOWN_DESTINATIONS.get(match.group("dest").strip())


def _clean_recipient(value: str) -> str:
    text = _RECIPIENT_NOISE_RE.sub("", value.strip())
    return text.strip(" \t\n:,;.-\"'“”«»")


def _clean_body(value: str) -> str:
    text = _LEADING_CONNECTOR_RE.sub("", value.strip(), count=1).strip()
    if len(text) >= 2 and text[0] in "\"'“«" and text[-1] in "\"'”»":
        text = text[1:-1].strip()
    return text

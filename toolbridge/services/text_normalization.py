from __future__ import annotations

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")
_ALIAS_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_NON_DIGIT_RE = re.compile(r"\D+")

ALIAS_MIN_LENGTH = 2
ALIAS_MAX_LENGTH = 64
MIN_SUFFIX_DIGITS = 6


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", strip_diacritics(str(value)).lower()).strip()


def normalize_alias(value: str | None) -> str | None:
    """Return the alias key for ``value`` or ``None`` when it is not a usable alias."""
    text = normalize_text(value)
    text = _ALIAS_PUNCTUATION_RE.sub(" ", text).replace("_", " ")
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) < ALIAS_MIN_LENGTH or len(text) > ALIAS_MAX_LENGTH:
        return None
    if text.replace(" ", "").isdigit():
        return None
    return text


def normalize_phone(value: str | None) -> str:
    raw = str(value or "").strip()
    digits = _NON_DIGIT_RE.sub("", raw)
    if not digits:
        return ""
    return f"+{digits}" if raw.startswith("+") else digits


def phone_digits(value: str | None) -> str:
    return _NON_DIGIT_RE.sub("", str(value or ""))


def looks_like_phone(value: str | None) -> bool:
    text = str(value or "").strip()
    if not text or not re.fullmatch(r"\+?[\d\s().\-]+", text):
        return False
    return 7 <= len(phone_digits(text)) <= 15


def identity_matches(observed: str | None, expected: str | None) -> bool:
    observed_text = str(observed or "").strip()
    expected_text = str(expected or "").strip()
    if not expected_text:
        return True
    if not observed_text:
        return False
    if observed_text == expected_text:
        return True

    observed_digits = phone_digits(observed_text)
    expected_digits = phone_digits(expected_text)
    if len(observed_digits) >= MIN_SUFFIX_DIGITS and len(expected_digits) >= MIN_SUFFIX_DIGITS:
        return observed_digits.endswith(expected_digits) or expected_digits.endswith(observed_digits)

    left = normalize_text(observed_text)
    right = normalize_text(expected_text)
    if not left or not right:
        return False
    return left == right or left.endswith(right) or right.endswith(left)

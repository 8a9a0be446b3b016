"""Content guard: PII-like and keyword detection in message bodies.

Detection is pure and deterministic.  Whether a finding blocks the message is
decided separately by :func:`should_block`; in every other case the message
is stored and the flags are attached for moderators to review.
"""

from __future__ import annotations

import re
from typing import Iterable

from msgguard.moderation.models import ContentFlag, FlagType
from msgguard.policies.models import GuardMode

MAX_MATCHED_VALUE_LENGTH = 120
MIN_PHONE_DIGITS = 8

_EMAIL_PATTERN = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
_URL_PATTERN = re.compile(
    r"\b((?:https?://[^\s/$.?#].[^\s]*)|(?:www\.[^\s/$.?#].[^\s]*))\b", re.IGNORECASE
)
_PHONE_PATTERN = re.compile(r"(?<![\w+])\+?\d[\d\s().-]{7,}\d\b")


def _regex_flags(body: str, pattern: re.Pattern[str], flag_type: FlagType) -> list[ContentFlag]:
    return [ContentFlag(flag_type, m.group(0)) for m in pattern.finditer(body)]


def _phone_flags(body: str) -> list[ContentFlag]:
    flags = []
    for match in _PHONE_PATTERN.finditer(body):
        value = match.group(0)
        if sum(ch.isdigit() for ch in value) >= MIN_PHONE_DIGITS:
            flags.append(ContentFlag(FlagType.phone, value))
    return flags


def _dedupe(flags: Iterable[ContentFlag]) -> list[ContentFlag]:
    seen: set[tuple[FlagType, str]] = set()
    result: list[ContentFlag] = []
    for flag in flags:
        normalized = flag.matched_value.strip().lower()
        if not normalized:
            continue
        key = (flag.type, normalized)
        if key in seen:
            continue
        seen.add(key)
        result.append(
            ContentFlag(flag.type, flag.matched_value.strip()[:MAX_MATCHED_VALUE_LENGTH])
        )
    return result


def detect_flags(body: str, sensitive_words: Iterable[str]) -> list[ContentFlag]:
    """Return deduplicated email/phone/url/keyword findings for *body*."""
    text = (body or "").strip()
    if not text:
        return []

    flags = (
        _regex_flags(text, _EMAIL_PATTERN, FlagType.email)
        + _phone_flags(text)
        + _regex_flags(text, _URL_PATTERN, FlagType.url)
    )

    lowered = text.lower()
    for word in sensitive_words:
        normalized = word.strip().lower()
        if normalized and normalized in lowered:
            flags.append(ContentFlag(FlagType.keyword, normalized))

    return _dedupe(flags)


def should_block(guard_mode: GuardMode, is_minor_thread: bool, flags: list[ContentFlag]) -> bool:
    """Only block-mode workspaces reject, and only on threads involving students."""
    return guard_mode == GuardMode.block and is_minor_thread and len(flags) > 0

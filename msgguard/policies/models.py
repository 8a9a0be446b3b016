"""Messaging policy models and normalisation rules."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional

MAX_SENSITIVE_WORDS = 200
MAX_SENSITIVE_WORD_LENGTH = 64
MIN_RETENTION_DAYS = 30
MAX_RETENTION_DAYS = 3650


class GuardMode(str, Enum):
    """How strongly the content guard enforces its findings."""

    off = "off"
    flag = "flag"
    block = "block"


@dataclass(frozen=True)
class MessagingPolicy:
    """Messaging configuration of one workspace."""

    org_id: str
    guard_mode: GuardMode = GuardMode.flag
    sensitive_words: tuple[str, ...] = ()
    retention_days: int = 365
    charter_version: int = 1
    supervision_enabled: bool = True


@dataclass
class PolicyUpdate:
    """Partial update: ``None`` fields are left untouched."""

    guard_mode: Optional[GuardMode] = None
    sensitive_words: Optional[list[str]] = None
    retention_days: Optional[int] = None
    charter_version: Optional[int] = None
    supervision_enabled: Optional[bool] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.guard_mode,
                self.sensitive_words,
                self.retention_days,
                self.charter_version,
                self.supervision_enabled,
            )
        )


def default_policy(org_id: str) -> MessagingPolicy:
    """The policy of a workspace that never configured messaging."""
    return MessagingPolicy(org_id=org_id)


def normalize_sensitive_words(words: Iterable[str]) -> tuple[str, ...]:
    """Trim, lowercase, drop empties, dedupe (first occurrence wins), cap at 200."""
    seen: dict[str, None] = {}
    for word in words:
        normalized = word.strip().lower()
        if normalized:
            seen.setdefault(normalized, None)
    return tuple(seen)[:MAX_SENSITIVE_WORDS]


def apply_update(policy: MessagingPolicy, update: PolicyUpdate) -> MessagingPolicy:
    changes: dict = {}
    if update.guard_mode is not None:
        changes["guard_mode"] = GuardMode(update.guard_mode)
    if update.sensitive_words is not None:
        changes["sensitive_words"] = normalize_sensitive_words(update.sensitive_words)
    if update.retention_days is not None:
        changes["retention_days"] = update.retention_days
    if update.charter_version is not None:
        changes["charter_version"] = update.charter_version
    if update.supervision_enabled is not None:
        changes["supervision_enabled"] = update.supervision_enabled
    return replace(policy, **changes)

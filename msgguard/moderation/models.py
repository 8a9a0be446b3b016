"""Data models for content flags, suspensions, charter status and reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class FlagType(str, Enum):
    email = "email"
    phone = "phone"
    url = "url"
    keyword = "keyword"


@dataclass(frozen=True)
class ContentFlag:
    """One suspicious match found in a message body."""

    type: FlagType
    matched_value: str


@dataclass
class MessagingSuspension:
    """A messaging ban for one user in one workspace."""

    id: str
    org_id: str
    user_id: str
    reason: str
    created_at: str
    suspended_until: Optional[str] = None
    created_by: Optional[str] = None
    lifted_at: Optional[str] = None
    lifted_by: Optional[str] = None


@dataclass
class CharterStatus:
    charter_version: int
    must_accept: bool
    accepted_at: Optional[str] = None
    content: dict[str, str] = field(default_factory=dict)


class ReportStatus(str, Enum):
    open = "open"
    in_review = "in_review"
    resolved = "resolved"


@dataclass(frozen=True)
class SnapshotItem:
    """Evidence copy of one message, captured when a report is filed."""

    id: int
    sender_user_id: str
    created_at: str
    body: str
    sender_name: Optional[str] = None
    sender_role: Optional[str] = None


@dataclass
class MessageReport:
    """An abuse report filed against a thread or one of its messages."""

    id: str
    workspace_org_id: str
    thread_id: str
    reason: str
    created_at: str
    updated_at: str
    message_id: Optional[int] = None
    reported_by: Optional[str] = None
    details: Optional[str] = None
    status: ReportStatus = ReportStatus.open
    freeze_applied: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    snapshot: list[SnapshotItem] = field(default_factory=list)
    frozen_at: Optional[str] = None
    frozen_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = ReportStatus(self.status)


@dataclass
class ModerationAuditEntry:
    """Append-only record of a moderation action."""

    id: str
    workspace_org_id: str
    actor_user_id: str
    action: str
    created_at: str
    report_id: Optional[str] = None
    thread_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

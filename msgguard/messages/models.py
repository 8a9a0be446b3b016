"""Thread and message models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

MAX_BODY_LENGTH = 2000


class ThreadKind(str, Enum):
    """The six kinds of conversation a workspace can hold."""

    student_coach = "student_coach"
    coach_coach = "coach_coach"
    group = "group"
    group_info = "group_info"
    org_info = "org_info"
    org_coaches = "org_coaches"

    @property
    def involves_students(self) -> bool:
        """Minor threads get the strictest content enforcement."""
        return self in (
            ThreadKind.student_coach,
            ThreadKind.group,
            ThreadKind.group_info,
            ThreadKind.org_info,
        )

    @property
    def is_group_kind(self) -> bool:
        return self in (ThreadKind.group, ThreadKind.group_info)


@dataclass
class MessageThread:
    id: str
    kind: ThreadKind
    workspace_org_id: str
    participant_a_id: str
    participant_b_id: str
    created_at: str
    student_id: Optional[str] = None
    group_id: Optional[str] = None
    last_message_id: Optional[int] = None
    last_message_at: Optional[str] = None
    frozen_at: Optional[str] = None
    frozen_by: Optional[str] = None
    frozen_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.kind, str):
            self.kind = ThreadKind(self.kind)

    @property
    def is_frozen(self) -> bool:
        return self.frozen_at is not None

    def counterpart_of(self, user_id: str) -> str:
        if self.participant_a_id == user_id:
            return self.participant_b_id
        return self.participant_a_id


@dataclass
class Message:
    id: int
    thread_id: str
    sender_user_id: str
    body: str
    created_at: str
    redacted_at: Optional[str] = None


@dataclass
class ThreadMember:
    thread_id: str
    user_id: str
    last_read_message_id: Optional[int] = None
    last_read_at: Optional[str] = None
    hidden_at: Optional[str] = None


@dataclass
class ThreadAudience:
    """Who may read a thread and who may publish to it."""

    member_user_ids: list[str] = field(default_factory=list)
    publisher_user_ids: list[str] = field(default_factory=list)

    def includes(self, user_id: str) -> bool:
        return user_id in self.member_user_ids

    def can_publish(self, user_id: str) -> bool:
        return user_id in self.publisher_user_ids

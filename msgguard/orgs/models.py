"""Workspace directory domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class WorkspaceType(str, Enum):
    """A coach's own workspace, or a multi-coach organization."""

    personal = "personal"
    org = "org"


class MembershipRole(str, Enum):
    """Role within an organization workspace."""

    admin = "admin"
    coach = "coach"


class MembershipStatus(str, Enum):
    invited = "invited"
    active = "active"
    disabled = "disabled"


class ContactRequestStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


@dataclass
class Workspace:
    """A personal workspace or an organization."""

    id: str
    workspace_type: WorkspaceType = WorkspaceType.org
    name: str = ""
    owner_profile_id: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.workspace_type, str):
            self.workspace_type = WorkspaceType(self.workspace_type)


@dataclass
class Profile:
    """A platform user."""

    id: str
    role: str
    org_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    active_workspace_id: Optional[str] = None


@dataclass
class OrgMembership:
    org_id: str
    user_id: str
    role: MembershipRole = MembershipRole.coach
    status: MembershipStatus = MembershipStatus.active

    def __post_init__(self) -> None:
        if isinstance(self.role, str):
            self.role = MembershipRole(self.role)
        if isinstance(self.status, str):
            self.status = MembershipStatus(self.status)


@dataclass
class Student:
    id: str
    org_id: str
    first_name: str
    last_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


@dataclass
class CoachContactRequest:
    id: str
    requester_user_id: str
    target_user_id: str
    status: ContactRequestStatus = ContactRequestStatus.pending
    created_at: str = ""
    responded_at: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = ContactRequestStatus(self.status)


def normalize_user_pair(first_user_id: str, second_user_id: str) -> tuple[str, str]:
    """Order a pair of user ids so each unordered pair has one key."""
    if first_user_id < second_user_id:
        return first_user_id, second_user_id
    return second_user_id, first_user_id

"""Actor and role models for the messaging engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from msgguard.orgs.models import MembershipRole, Workspace, WorkspaceType


class ProfileRole(str, Enum):
    """Platform role carried on a user profile."""

    owner = "owner"
    coach = "coach"
    staff = "staff"
    student = "student"
    parent = "parent"

    @property
    def is_coach_like(self) -> bool:
        return self in (ProfileRole.owner, ProfileRole.coach, ProfileRole.staff)


class RoleClass(str, Enum):
    """Coarse role buckets used by the thread-kind permission table."""

    coach = "coach"
    student = "student"
    parent = "parent"

    @classmethod
    def of(cls, role: ProfileRole) -> "RoleClass":
        if role.is_coach_like:
            return cls.coach
        if role == ProfileRole.student:
            return cls.student
        return cls.parent


@dataclass
class Actor:
    """The caller of an operation, as supplied by the identity upstream."""

    user_id: str
    role: ProfileRole
    workspace: Workspace
    full_name: Optional[str] = None
    email: Optional[str] = None
    membership_role: Optional[MembershipRole] = None
    student_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.role, str):
            self.role = ProfileRole(self.role)

    @property
    def workspace_id(self) -> str:
        return self.workspace.id

    @property
    def in_org_workspace(self) -> bool:
        return self.workspace.workspace_type == WorkspaceType.org

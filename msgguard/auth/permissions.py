"""Declarative permissions: which role classes may do what on each thread kind.

The table is consulted by the thread access validator before the (I/O bound)
audience check, and is testable on its own.
"""

from __future__ import annotations

from enum import Enum

from msgguard.auth.models import Actor, ProfileRole, RoleClass
from msgguard.messages.models import ThreadKind
from msgguard.orgs.models import MembershipRole, WorkspaceType
from msgguard.policies.models import MessagingPolicy


class ThreadIntent(str, Enum):
    """Operation requested on a thread."""

    read = "read"
    write = "write"
    hide = "hide"

    @property
    def is_write_class(self) -> bool:
        return self == ThreadIntent.write


_ALL = frozenset(ThreadIntent)
_READ_HIDE = frozenset({ThreadIntent.read, ThreadIntent.hide})
_NONE: frozenset[ThreadIntent] = frozenset()

THREAD_PERMISSIONS: dict[ThreadKind, dict[RoleClass, frozenset[ThreadIntent]]] = {
    ThreadKind.student_coach: {
        RoleClass.coach: _ALL,
        RoleClass.student: _ALL,
        RoleClass.parent: _NONE,
    },
    ThreadKind.coach_coach: {
        RoleClass.coach: _ALL,
        RoleClass.student: _NONE,
        RoleClass.parent: _NONE,
    },
    ThreadKind.group: {
        RoleClass.coach: _ALL,
        RoleClass.student: _ALL,
        RoleClass.parent: _NONE,
    },
    ThreadKind.group_info: {
        RoleClass.coach: _ALL,
        RoleClass.student: _READ_HIDE,
        RoleClass.parent: _NONE,
    },
    ThreadKind.org_info: {
        RoleClass.coach: _ALL,
        RoleClass.student: _READ_HIDE,
        RoleClass.parent: _NONE,
    },
    ThreadKind.org_coaches: {
        RoleClass.coach: _ALL,
        RoleClass.student: _NONE,
        RoleClass.parent: _NONE,
    },
}


def allowed_intents(kind: ThreadKind, role: ProfileRole) -> frozenset[ThreadIntent]:
    return THREAD_PERMISSIONS[kind][RoleClass.of(role)]


def role_permits(kind: ThreadKind, role: ProfileRole, intent: ThreadIntent) -> bool:
    """Check the permission table for one (kind, role, intent) triple."""
    return intent in allowed_intents(kind, role)


def is_workspace_admin(actor: Actor) -> bool:
    """Admins of a workspace: the owner of a personal one, active admins of an org."""
    if actor.workspace.workspace_type == WorkspaceType.personal:
        return actor.workspace.owner_profile_id == actor.user_id
    return actor.membership_role == MembershipRole.admin


def is_org_messaging_admin(actor: Actor, policy: MessagingPolicy) -> bool:
    """Moderators: admins of an org workspace whose supervision is enabled."""
    return (
        actor.in_org_workspace
        and actor.membership_role == MembershipRole.admin
        and policy.supervision_enabled
    )

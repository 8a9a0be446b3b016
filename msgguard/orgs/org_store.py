"""SQLite-backed workspace directory.

Answers the membership questions the access validator needs: who is linked
to which student, which coaches are assigned, who belongs to a group or an
organization, and which coaches have opted in to contact each other.
"""

from __future__ import annotations

import uuid
from typing import Optional

from msgguard.auth.models import Actor, ProfileRole
from msgguard.errors import Forbidden
from msgguard.orgs.models import (
    CoachContactRequest,
    ContactRequestStatus,
    MembershipRole,
    MembershipStatus,
    OrgMembership,
    Profile,
    Student,
    Workspace,
    WorkspaceType,
    normalize_user_pair,
)
from msgguard.storage.connection import ConnectionManager
from msgguard.timeutil import Clock, to_iso, utcnow


class OrgStore:
    """Directory of workspaces, members, students, groups and coach contacts."""

    def __init__(self, db: ConnectionManager, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock

    # ------------------------------------------------------------------
    # Workspaces and profiles
    # ------------------------------------------------------------------

    async def create_workspace(self, workspace: Workspace) -> Workspace:
        await self._db.execute(
            "INSERT OR REPLACE INTO workspaces (id, name, workspace_type, owner_profile_id) "
            "VALUES (?, ?, ?, ?)",
            (workspace.id, workspace.name, workspace.workspace_type.value, workspace.owner_profile_id),
        )
        return workspace

    async def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        row = await self._db.fetch_one("SELECT * FROM workspaces WHERE id = ?", (workspace_id,))
        return Workspace(**row) if row else None

    async def upsert_profile(self, profile: Profile) -> Profile:
        await self._db.execute(
            "INSERT OR REPLACE INTO profiles "
            "(id, role, full_name, email, avatar_url, org_id, active_workspace_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                profile.id,
                profile.role,
                profile.full_name,
                profile.email.lower() if profile.email else None,
                profile.avatar_url,
                profile.org_id,
                profile.active_workspace_id,
            ),
        )
        return profile

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        row = await self._db.fetch_one("SELECT * FROM profiles WHERE id = ?", (user_id,))
        return Profile(**row) if row else None

    async def get_profile_by_email(self, email: str) -> Optional[Profile]:
        row = await self._db.fetch_one(
            "SELECT * FROM profiles WHERE email = ?", (email.strip().lower(),)
        )
        return Profile(**row) if row else None

    async def profiles_by_ids(self, user_ids: list[str]) -> dict[str, Profile]:
        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            return {}
        placeholders = ",".join("?" for _ in unique_ids)
        rows = await self._db.fetch_all(
            f"SELECT * FROM profiles WHERE id IN ({placeholders})", unique_ids
        )
        return {row["id"]: Profile(**row) for row in rows}

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    async def add_member(
        self,
        org_id: str,
        user_id: str,
        role: MembershipRole = MembershipRole.coach,
        status: MembershipStatus = MembershipStatus.active,
    ) -> OrgMembership:
        member = OrgMembership(org_id=org_id, user_id=user_id, role=role, status=status)
        await self._db.execute(
            "INSERT OR REPLACE INTO org_memberships (org_id, user_id, role, status) VALUES (?, ?, ?, ?)",
            (org_id, user_id, member.role.value, member.status.value),
        )
        return member

    async def get_member(self, org_id: str, user_id: str) -> Optional[OrgMembership]:
        row = await self._db.fetch_one(
            "SELECT * FROM org_memberships WHERE org_id = ? AND user_id = ?", (org_id, user_id)
        )
        return OrgMembership(**row) if row else None

    async def org_coach_user_ids(self, org_id: str) -> list[str]:
        """Active members of an organization (admins and coaches)."""
        rows = await self._db.fetch_all(
            "SELECT user_id FROM org_memberships WHERE org_id = ? AND status = 'active' ORDER BY user_id",
            (org_id,),
        )
        return [r["user_id"] for r in rows]

    async def is_coach_like_active_member(self, org_id: str, user_id: str) -> bool:
        member = await self.get_member(org_id, user_id)
        if member is None or member.status != MembershipStatus.active:
            return False
        profile = await self.get_profile(user_id)
        return profile is not None and ProfileRole(profile.role).is_coach_like

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    async def add_student(self, student: Student) -> Student:
        await self._db.execute(
            "INSERT OR REPLACE INTO students (id, org_id, first_name, last_name) VALUES (?, ?, ?, ?)",
            (student.id, student.org_id, student.first_name, student.last_name),
        )
        return student

    async def get_student(self, student_id: str) -> Optional[Student]:
        row = await self._db.fetch_one("SELECT * FROM students WHERE id = ?", (student_id,))
        return Student(**row) if row else None

    async def link_student_account(self, user_id: str, student_id: str) -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO student_accounts (user_id, student_id) VALUES (?, ?)",
            (user_id, student_id),
        )

    async def assign_coach(self, student_id: str, coach_id: str) -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO student_assignments (student_id, coach_id) VALUES (?, ?)",
            (student_id, coach_id),
        )

    async def student_ids_for_user(self, user_id: str) -> list[str]:
        rows = await self._db.fetch_all(
            "SELECT student_id FROM student_accounts WHERE user_id = ? ORDER BY student_id", (user_id,)
        )
        return [r["student_id"] for r in rows]

    async def student_user_id(self, student_id: str) -> Optional[str]:
        row = await self._db.fetch_one(
            "SELECT user_id FROM student_accounts WHERE student_id = ? LIMIT 1", (student_id,)
        )
        return row["user_id"] if row else None

    async def is_student_linked(self, user_id: str, student_id: str) -> bool:
        row = await self._db.fetch_one(
            "SELECT 1 AS ok FROM student_accounts WHERE user_id = ? AND student_id = ?",
            (user_id, student_id),
        )
        return row is not None

    async def is_coach_allowed_for_student(self, coach_user_id: str, student_id: str) -> bool:
        """Personal workspaces: the owner; organizations: an assigned coach."""
        student = await self.get_student(student_id)
        if student is None:
            return False
        workspace = await self.get_workspace(student.org_id)
        if workspace is None:
            return False
        if workspace.workspace_type == WorkspaceType.personal:
            return workspace.owner_profile_id == coach_user_id
        row = await self._db.fetch_one(
            "SELECT 1 AS ok FROM student_assignments WHERE student_id = ? AND coach_id = ?",
            (student_id, coach_user_id),
        )
        return row is not None

    async def org_student_user_ids(self, org_id: str) -> list[str]:
        rows = await self._db.fetch_all(
            "SELECT DISTINCT a.user_id FROM student_accounts a "
            "JOIN students s ON s.id = a.student_id WHERE s.org_id = ? ORDER BY a.user_id",
            (org_id,),
        )
        return [r["user_id"] for r in rows]

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def create_group(self, group_id: str, org_id: str, name: str) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO org_groups (id, org_id, name) VALUES (?, ?, ?)",
            (group_id, org_id, name),
        )

    async def get_group(self, group_id: str) -> Optional[dict]:
        return await self._db.fetch_one("SELECT * FROM org_groups WHERE id = ?", (group_id,))

    async def add_group_coach(self, group_id: str, coach_id: str) -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO org_group_coaches (group_id, coach_id) VALUES (?, ?)",
            (group_id, coach_id),
        )

    async def add_group_student(self, group_id: str, student_id: str) -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO org_group_students (group_id, student_id) VALUES (?, ?)",
            (group_id, student_id),
        )

    async def group_members(self, group_id: str) -> tuple[list[str], list[str]]:
        """Return ``(coach_user_ids, student_user_ids)`` for a group."""
        coach_rows = await self._db.fetch_all(
            "SELECT coach_id FROM org_group_coaches WHERE group_id = ? ORDER BY coach_id", (group_id,)
        )
        student_rows = await self._db.fetch_all(
            "SELECT DISTINCT a.user_id FROM org_group_students g "
            "JOIN student_accounts a ON a.student_id = g.student_id "
            "WHERE g.group_id = ? ORDER BY a.user_id",
            (group_id,),
        )
        return [r["coach_id"] for r in coach_rows], [r["user_id"] for r in student_rows]

    # ------------------------------------------------------------------
    # Coach contacts
    # ------------------------------------------------------------------

    async def has_coach_contact(self, user_a_id: str, user_b_id: str) -> bool:
        a, b = normalize_user_pair(user_a_id, user_b_id)
        row = await self._db.fetch_one(
            "SELECT 1 AS ok FROM coach_contacts WHERE user_a_id = ? AND user_b_id = ?", (a, b)
        )
        return row is not None

    async def add_coach_contact(self, user_a_id: str, user_b_id: str) -> None:
        a, b = normalize_user_pair(user_a_id, user_b_id)
        await self._db.execute(
            "INSERT OR IGNORE INTO coach_contacts (user_a_id, user_b_id, created_at) VALUES (?, ?, ?)",
            (a, b, to_iso(self._clock())),
        )

    async def pending_contact_request(
        self, requester_user_id: str, target_user_id: str
    ) -> Optional[CoachContactRequest]:
        row = await self._db.fetch_one(
            "SELECT * FROM coach_contact_requests "
            "WHERE requester_user_id = ? AND target_user_id = ? AND status = 'pending'",
            (requester_user_id, target_user_id),
        )
        return CoachContactRequest(**row) if row else None

    async def incoming_contact_requests(
        self, user_id: str, limit: int = 5
    ) -> tuple[int, list[CoachContactRequest]]:
        """Pending requests addressed to *user_id*: total count and the newest *limit*."""
        row = await self._db.fetch_one(
            "SELECT COUNT(*) AS n FROM coach_contact_requests "
            "WHERE target_user_id = ? AND status = 'pending'",
            (user_id,),
        )
        rows = await self._db.fetch_all(
            "SELECT * FROM coach_contact_requests "
            "WHERE target_user_id = ? AND status = 'pending' "
            "ORDER BY created_at DESC, id LIMIT ?",
            (user_id, limit),
        )
        return (int(row["n"]) if row else 0), [CoachContactRequest(**r) for r in rows]

    async def create_contact_request(
        self, requester_user_id: str, target_user_id: str
    ) -> CoachContactRequest:
        request = CoachContactRequest(
            id=str(uuid.uuid4()),
            requester_user_id=requester_user_id,
            target_user_id=target_user_id,
            created_at=to_iso(self._clock()) or "",
        )
        await self._db.execute(
            "INSERT INTO coach_contact_requests "
            "(id, requester_user_id, target_user_id, status, created_at) VALUES (?, ?, ?, ?, ?)",
            (request.id, requester_user_id, target_user_id, request.status.value, request.created_at),
        )
        return request

    async def get_contact_request(self, request_id: str) -> Optional[CoachContactRequest]:
        row = await self._db.fetch_one(
            "SELECT * FROM coach_contact_requests WHERE id = ?", (request_id,)
        )
        return CoachContactRequest(**row) if row else None

    async def settle_contact_request(self, request_id: str, status: ContactRequestStatus) -> bool:
        """Move a pending request to a final status; ``False`` if it was not pending."""
        updated = await self._db.execute(
            "UPDATE coach_contact_requests SET status = ?, responded_at = ? "
            "WHERE id = ? AND status = 'pending'",
            (status.value, to_iso(self._clock()), request_id),
        )
        return updated > 0

    # ------------------------------------------------------------------
    # Actor resolution
    # ------------------------------------------------------------------

    async def workspace_role_of(self, org_id: str, user_id: str) -> Optional[ProfileRole]:
        """Role of *user_id* if they belong to the workspace, else ``None``."""
        profile = await self.get_profile(user_id)
        if profile is None:
            return None
        role = ProfileRole(profile.role)
        if role == ProfileRole.student:
            student_ids = await self.student_ids_for_user(user_id)
            for student_id in student_ids:
                student = await self.get_student(student_id)
                if student is not None and student.org_id == org_id:
                    return role
            return None
        member = await self.get_member(org_id, user_id)
        if member is None or member.status != MembershipStatus.active:
            return None
        return role

    async def resolve_actor(self, user_id: str) -> Actor:
        """Build the caller context for *user_id* in their active workspace."""
        profile = await self.get_profile(user_id)
        if profile is None:
            raise Forbidden("Profile not found.", reason_code="PROFILE_NOT_FOUND")

        workspace = await self.get_workspace(profile.active_workspace_id or profile.org_id)
        if workspace is None:
            raise Forbidden("Workspace not found.", reason_code="WORKSPACE_NOT_FOUND")

        role = ProfileRole(profile.role)
        membership_role: Optional[MembershipRole] = None
        if workspace.workspace_type == WorkspaceType.org and role != ProfileRole.student:
            member = await self.get_member(workspace.id, user_id)
            if member is None or member.status != MembershipStatus.active:
                raise Forbidden("Access denied.", reason_code="WORKSPACE_MEMBERSHIP_REQUIRED")
            membership_role = member.role

        student_ids: list[str] = []
        if role == ProfileRole.student:
            student_ids = await self.student_ids_for_user(user_id)

        return Actor(
            user_id=user_id,
            role=role,
            workspace=workspace,
            full_name=profile.full_name,
            email=profile.email,
            membership_role=membership_role,
            student_ids=student_ids,
        )

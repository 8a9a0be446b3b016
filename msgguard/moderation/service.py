"""Workspace-level moderation operations: policy, charter, suspensions, retention."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from msgguard.auth.models import Actor
from msgguard.auth.permissions import is_org_messaging_admin, is_workspace_admin
from msgguard.errors import Conflict, Forbidden, NotFound, ValidationError
from msgguard.log import get_logger
from msgguard.messages.thread_store import ThreadStore
from msgguard.moderation.charter import CharterGate
from msgguard.moderation.models import CharterStatus, MessagingSuspension
from msgguard.moderation.suspensions import SuspensionRegistry
from msgguard.orgs.org_store import OrgStore
from msgguard.policies.models import MessagingPolicy, PolicyUpdate
from msgguard.policies.policy_store import PolicyStore
from msgguard.security.audit_log import ModerationAuditLog
from msgguard.timeutil import Clock, utcnow

log = get_logger(__name__)

SUSPENSION_REASON_MAX_LENGTH = 300


class ModerationService:
    """Admin-facing operations that are exempt from the charter gate."""

    def __init__(
        self,
        orgs: OrgStore,
        policies: PolicyStore,
        charter: CharterGate,
        suspensions: SuspensionRegistry,
        threads: ThreadStore,
        audit: ModerationAuditLog,
        clock: Clock = utcnow,
    ) -> None:
        self._orgs = orgs
        self._policies = policies
        self._charter = charter
        self._suspensions = suspensions
        self._threads = threads
        self._audit = audit
        self._clock = clock

    async def _require_moderator(self, actor: Actor) -> MessagingPolicy:
        policy = await self._policies.load(actor.workspace_id)
        if not is_org_messaging_admin(actor, policy):
            raise Forbidden("Access denied.", reason_code="MODERATION_ADMIN_REQUIRED")
        return policy

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    async def get_policy(self, actor: Actor) -> MessagingPolicy:
        return await self._policies.load(actor.workspace_id)

    async def update_policy(self, actor: Actor, update: PolicyUpdate) -> MessagingPolicy:
        if not is_workspace_admin(actor):
            raise Forbidden("Only workspace admins can change the messaging policy.", reason_code="WORKSPACE_ADMIN_REQUIRED")
        return await self._policies.update(actor.workspace_id, update)

    # ------------------------------------------------------------------
    # Charter
    # ------------------------------------------------------------------

    async def charter_status(self, actor: Actor) -> CharterStatus:
        return await self._charter.status(actor.workspace_id, actor.user_id)

    async def accept_charter(self, actor: Actor, charter_version: int) -> CharterStatus:
        return await self._charter.accept(actor.workspace_id, actor.user_id, charter_version)

    # ------------------------------------------------------------------
    # Suspensions
    # ------------------------------------------------------------------

    async def list_suspensions(self, actor: Actor) -> list[MessagingSuspension]:
        await self._require_moderator(actor)
        return await self._suspensions.list_active(actor.workspace_id)

    async def _require_target(self, actor: Actor, user_id: str) -> None:
        if user_id == actor.user_id:
            raise Conflict("You cannot suspend yourself.", reason_code="SELF_SUSPENSION")
        if await self._orgs.workspace_role_of(actor.workspace_id, user_id) is None:
            raise NotFound("User not found in this organization.", reason_code="USER_NOT_FOUND")

    async def suspend_user(
        self,
        actor: Actor,
        user_id: str,
        reason: str,
        suspended_until: Optional[datetime] = None,
    ) -> list[MessagingSuspension]:
        reason = (reason or "").strip()
        if not reason or len(reason) > SUSPENSION_REASON_MAX_LENGTH:
            raise ValidationError(f"reason must be 1 to {SUSPENSION_REASON_MAX_LENGTH} characters")
        await self._require_moderator(actor)
        await self._require_target(actor, user_id)
        await self._suspensions.suspend(
            actor.workspace_id, user_id, reason, created_by=actor.user_id, suspended_until=suspended_until
        )
        return await self._suspensions.list_active(actor.workspace_id)

    async def lift_suspension(self, actor: Actor, user_id: str) -> list[MessagingSuspension]:
        await self._require_moderator(actor)
        await self._require_target(actor, user_id)
        await self._suspensions.lift(actor.workspace_id, user_id, lifted_by=actor.user_id)
        return await self._suspensions.list_active(actor.workspace_id)

    # ------------------------------------------------------------------
    # Retention and flags
    # ------------------------------------------------------------------

    async def purge_workspace(self, org_id: str) -> int:
        """Redact messages older than the workspace's retention window."""
        policy = await self._policies.load(org_id)
        cutoff = self._clock() - timedelta(days=policy.retention_days)
        redacted = await self._threads.redact_older_than(org_id, cutoff)
        log.info("messages_purged", org_id=org_id, redacted=redacted, retention_days=policy.retention_days)
        return redacted

    async def purge_expired(self, actor: Actor) -> int:
        if not is_workspace_admin(actor):
            raise Forbidden("Only workspace admins can purge messages.", reason_code="WORKSPACE_ADMIN_REQUIRED")
        redacted = await self.purge_workspace(actor.workspace_id)
        self._audit.record(
            actor.workspace_id,
            actor.user_id,
            "messages.purged",
            metadata={"redacted_messages": redacted},
        )
        return redacted

    async def flags_for_thread(self, actor: Actor, thread_id: str) -> list[dict]:
        await self._require_moderator(actor)
        thread = await self._threads.get_thread(thread_id)
        if thread is None or thread.workspace_org_id != actor.workspace_id:
            raise NotFound("Thread not found.", reason_code="THREAD_NOT_FOUND")
        return await self._threads.flags_for_thread(thread_id)

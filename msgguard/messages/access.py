"""Thread access validation.

Every request is checked from scratch, strictly in this order, and the first
denial wins:

1. suspension (write-class intents, organization workspaces)
2. charter acceptance (unless the caller is charter-exempt)
3. thread exists and belongs to the caller's workspace
4. frozen thread (write-class intents)
5. role permission table for the thread kind
6. audience membership (publisher list for writes)

Storage failures or timeouts deny with ``DEPENDENCY_UNAVAILABLE``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from msgguard.auth.models import Actor, ProfileRole
from msgguard.auth.permissions import ThreadIntent, allowed_intents
from msgguard.errors import DependencyUnavailable, MessagingError, error_for_status
from msgguard.log import get_logger
from msgguard.messages.models import MessageThread, ThreadAudience, ThreadKind
from msgguard.messages.thread_store import ThreadStore
from msgguard.moderation.charter import CharterGate
from msgguard.moderation.suspensions import SuspensionRegistry
from msgguard.orgs.org_store import OrgStore

log = get_logger(__name__)

MESSAGING_SUSPENDED = "MESSAGING_SUSPENDED"
MESSAGING_CHARTER_REQUIRED = "MESSAGING_CHARTER_REQUIRED"
THREAD_FROZEN = "THREAD_FROZEN"
THREAD_ACCESS_DENIED = "THREAD_ACCESS_DENIED"
THREAD_PUBLISH_DENIED = "THREAD_PUBLISH_DENIED"
DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"

_DENIAL_MESSAGES = {
    MESSAGING_SUSPENDED: "Messaging is suspended for your account.",
    MESSAGING_CHARTER_REQUIRED: "Accept the messaging charter to continue.",
    THREAD_FROZEN: "This conversation is frozen by moderation.",
    THREAD_ACCESS_DENIED: "Access denied.",
    THREAD_PUBLISH_DENIED: "You cannot publish in this conversation.",
    DEPENDENCY_UNAVAILABLE: "Messaging is temporarily unavailable.",
}


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an access check, independent of any transport."""

    allowed: bool
    reason_code: Optional[str] = None
    http_status_hint: int = 200
    thread: Optional[MessageThread] = None
    audience: Optional[ThreadAudience] = None

    @classmethod
    def deny(cls, reason_code: str, http_status_hint: int = 403) -> "AccessDecision":
        return cls(allowed=False, reason_code=reason_code, http_status_hint=http_status_hint)

    def to_error(self) -> MessagingError:
        code = self.reason_code or THREAD_ACCESS_DENIED
        return error_for_status(self.http_status_hint, _DENIAL_MESSAGES.get(code, "Access denied."), code)

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise self.to_error()


_ALLOWED = AccessDecision(allowed=True)


class AudienceResolver:
    """Computes who belongs to a thread, with one resolver per thread kind."""

    def __init__(self, orgs: OrgStore) -> None:
        self._orgs = orgs
        self._resolvers: dict[ThreadKind, Callable[[MessageThread], Awaitable[ThreadAudience]]] = {
            ThreadKind.student_coach: self._student_coach,
            ThreadKind.coach_coach: self._coach_coach,
            ThreadKind.group: self._group,
            ThreadKind.group_info: self._group_info,
            ThreadKind.org_info: self._org_info,
            ThreadKind.org_coaches: self._org_coaches,
        }
        missing = set(ThreadKind) - set(self._resolvers)
        if missing:
            raise RuntimeError(f"No audience resolver for {sorted(k.value for k in missing)}")

    async def resolve(self, thread: MessageThread) -> ThreadAudience:
        return await self._resolvers[thread.kind](thread)

    async def _student_coach(self, thread: MessageThread) -> ThreadAudience:
        if not thread.student_id:
            return ThreadAudience()
        student_user_id = await self._orgs.student_user_id(thread.student_id)
        if student_user_id is None:
            return ThreadAudience()
        coach_user_id = thread.counterpart_of(student_user_id)
        if not await self._orgs.is_coach_allowed_for_student(coach_user_id, thread.student_id):
            return ThreadAudience()
        members = [student_user_id, coach_user_id]
        return ThreadAudience(members, list(members))

    async def _coach_coach(self, thread: MessageThread) -> ThreadAudience:
        a, b = thread.participant_a_id, thread.participant_b_id
        if await self._orgs.has_coach_contact(a, b):
            return ThreadAudience([a, b], [a, b])
        # Without an opt-in, each side only sees the thread if the other is a coach of its workspace.
        members = []
        if await self._orgs.is_coach_like_active_member(thread.workspace_org_id, b):
            members.append(a)
        if await self._orgs.is_coach_like_active_member(thread.workspace_org_id, a):
            members.append(b)
        return ThreadAudience(members, list(members))

    async def _group_members(self, thread: MessageThread) -> tuple[list[str], list[str]]:
        if not thread.group_id:
            return [], []
        group = await self._orgs.get_group(thread.group_id)
        if group is None or group["org_id"] != thread.workspace_org_id:
            return [], []
        return await self._orgs.group_members(thread.group_id)

    async def _group(self, thread: MessageThread) -> ThreadAudience:
        coaches, students = await self._group_members(thread)
        members = list(dict.fromkeys(coaches + students))
        return ThreadAudience(members, list(members))

    async def _group_info(self, thread: MessageThread) -> ThreadAudience:
        coaches, students = await self._group_members(thread)
        return ThreadAudience(list(dict.fromkeys(coaches + students)), coaches)

    async def _org_info(self, thread: MessageThread) -> ThreadAudience:
        staff = await self._orgs.org_coach_user_ids(thread.workspace_org_id)
        students = await self._orgs.org_student_user_ids(thread.workspace_org_id)
        return ThreadAudience(list(dict.fromkeys(staff + students)), staff)

    async def _org_coaches(self, thread: MessageThread) -> ThreadAudience:
        user_ids = await self._orgs.org_coach_user_ids(thread.workspace_org_id)
        profiles = await self._orgs.profiles_by_ids(user_ids)
        coaches = [
            uid
            for uid in user_ids
            if uid in profiles and ProfileRole(profiles[uid].role).is_coach_like
        ]
        return ThreadAudience(coaches, list(coaches))


class ThreadAccessValidator:
    """Stateless allow/deny decisions for thread operations."""

    def __init__(
        self,
        threads: ThreadStore,
        orgs: OrgStore,
        suspensions: SuspensionRegistry,
        charter: CharterGate,
    ) -> None:
        self._threads = threads
        self._suspensions = suspensions
        self._charter = charter
        self.audiences = AudienceResolver(orgs)

    async def _check_actor(self, actor: Actor, write_class: bool, charter_exempt: bool) -> AccessDecision:
        if write_class and actor.in_org_workspace:
            suspension = await self._suspensions.is_suspended(actor.workspace_id, actor.user_id)
            if suspension is not None:
                return AccessDecision.deny(MESSAGING_SUSPENDED)
        if not charter_exempt:
            status = await self._charter.status(actor.workspace_id, actor.user_id)
            if status.must_accept:
                return AccessDecision.deny(MESSAGING_CHARTER_REQUIRED)
        return _ALLOWED

    async def _check_thread(
        self, actor: Actor, thread_id: str, intent: ThreadIntent, charter_exempt: bool
    ) -> AccessDecision:
        decision = await self._check_actor(actor, intent.is_write_class, charter_exempt)
        if not decision.allowed:
            return decision

        thread = await self._threads.get_thread(thread_id)
        if thread is None:
            return AccessDecision.deny(THREAD_ACCESS_DENIED)
        if thread.workspace_org_id != actor.workspace_id and thread.kind != ThreadKind.coach_coach:
            return AccessDecision.deny(THREAD_ACCESS_DENIED)

        if intent.is_write_class and thread.is_frozen:
            return AccessDecision.deny(THREAD_FROZEN)

        permitted = allowed_intents(thread.kind, actor.role)
        if intent not in permitted:
            if intent.is_write_class and ThreadIntent.read in permitted:
                return AccessDecision.deny(THREAD_PUBLISH_DENIED)
            return AccessDecision.deny(THREAD_ACCESS_DENIED)

        audience = await self.audiences.resolve(thread)
        if not audience.includes(actor.user_id):
            return AccessDecision.deny(THREAD_ACCESS_DENIED)
        if intent.is_write_class and not audience.can_publish(actor.user_id):
            return AccessDecision.deny(THREAD_PUBLISH_DENIED)

        return AccessDecision(allowed=True, thread=thread, audience=audience)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check_actor(
        self, actor: Actor, *, write_class: bool, charter_exempt: bool = False
    ) -> AccessDecision:
        """Suspension and charter checks for operations not bound to a thread."""
        try:
            decision = await self._check_actor(actor, write_class, charter_exempt)
        except DependencyUnavailable as exc:
            log.error("access_check_dependency_failed", user_id=actor.user_id, error=str(exc))
            return AccessDecision.deny(DEPENDENCY_UNAVAILABLE, 503)
        if not decision.allowed:
            log.info("messaging_denied", user_id=actor.user_id, reason=decision.reason_code)
        return decision

    async def check(
        self,
        actor: Actor,
        thread_id: str,
        intent: ThreadIntent,
        *,
        charter_exempt: bool = False,
    ) -> AccessDecision:
        try:
            decision = await self._check_thread(actor, thread_id, intent, charter_exempt)
        except DependencyUnavailable as exc:
            log.error(
                "access_check_dependency_failed",
                user_id=actor.user_id,
                thread_id=thread_id,
                error=str(exc),
            )
            return AccessDecision.deny(DEPENDENCY_UNAVAILABLE, 503)
        if not decision.allowed:
            log.info(
                "thread_access_denied",
                user_id=actor.user_id,
                thread_id=thread_id,
                intent=intent.value,
                reason=decision.reason_code,
            )
        return decision

    async def require(
        self,
        actor: Actor,
        thread_id: str,
        intent: ThreadIntent,
        *,
        charter_exempt: bool = False,
    ) -> AccessDecision:
        """Like :meth:`check`, raising the matching error on denial."""
        decision = await self.check(actor, thread_id, intent, charter_exempt=charter_exempt)
        decision.raise_for_denial()
        return decision

"""Messaging operations for an authenticated actor.

Each operation runs the same pipeline: rate limit (for actions that have a
budget), then the thread access validator (suspension, charter, thread state,
participant check), then, for sends only, the content guard, and finally
persistence.  A denial at any step stops the pipeline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from msgguard.auth.models import Actor, ProfileRole
from msgguard.auth.permissions import ThreadIntent
from msgguard.errors import Conflict, ContentBlocked, Forbidden, NotFound, ValidationError
from msgguard.log import get_logger
from msgguard.messages.access import ThreadAccessValidator
from msgguard.messages.models import MAX_BODY_LENGTH, Message, MessageThread, ThreadKind
from msgguard.messages.thread_store import ThreadStore
from msgguard.moderation.content_guard import detect_flags, should_block
from msgguard.moderation.models import ContentFlag
from msgguard.orgs.models import CoachContactRequest, ContactRequestStatus, normalize_user_pair
from msgguard.orgs.org_store import OrgStore
from msgguard.policies.policy_store import PolicyStore
from msgguard.ratelimit.limiter import RateLimiter
from msgguard.timeutil import Clock, to_iso, utcnow

log = get_logger(__name__)

MAX_PAGE_SIZE = 100
EXPORT_MAX_THREADS = 50
EXPORT_MAX_MESSAGES = 2000
NOTIFICATION_PREVIEWS = 5
PREVIEW_LENGTH = 140

THREAD_CREATE_DENIED = "THREAD_CREATE_DENIED"

_EMAIL_SHAPE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class SentMessage:
    message: Message
    flags: list[ContentFlag] = field(default_factory=list)


@dataclass
class ThreadHandle:
    thread: MessageThread
    created: bool


@dataclass
class MessagePage:
    thread: MessageThread
    messages: list[Message]
    has_more: bool


@dataclass
class InboxItem:
    thread: MessageThread
    unread_count: int


@dataclass
class NotificationPreview:
    thread_id: str
    kind: ThreadKind
    from_user_id: str
    from_name: Optional[str]
    body_preview: str
    created_at: str


@dataclass
class ContactRequestNotice:
    id: str
    requester_user_id: str
    requester_name: Optional[str]
    requester_email: Optional[str]
    created_at: str


@dataclass
class Notifications:
    unread_messages_count: int
    unread_previews: list[NotificationPreview]
    pending_contact_requests_count: int = 0
    pending_contact_requests: list[ContactRequestNotice] = field(default_factory=list)


@dataclass
class ThreadExport:
    thread: MessageThread
    messages: list[Message]


@dataclass
class MessageExport:
    generated_at: str
    user_id: str
    workspace_org_id: str
    truncated: bool
    threads: list[ThreadExport]


class MessagingService:
    """Thread and message operations guarded by the access pipeline."""

    def __init__(
        self,
        threads: ThreadStore,
        orgs: OrgStore,
        policies: PolicyStore,
        limiter: RateLimiter,
        validator: ThreadAccessValidator,
        clock: Clock = utcnow,
    ) -> None:
        self._threads = threads
        self._orgs = orgs
        self._policies = policies
        self._limiter = limiter
        self._validator = validator
        self._clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _require_actor(self, actor: Actor, write_class: bool, charter_exempt: bool = False) -> None:
        decision = await self._validator.check_actor(
            actor, write_class=write_class, charter_exempt=charter_exempt
        )
        decision.raise_for_denial()

    async def _student_coach_participants(
        self, actor: Actor, student_id: Optional[str], coach_id: Optional[str]
    ) -> tuple[str, str, str]:
        if not student_id or not coach_id:
            raise ValidationError("student_coach threads need student_id and coach_id")
        student = await self._orgs.get_student(student_id)
        if student is None or student.org_id != actor.workspace_id:
            raise NotFound("Student not found.", reason_code="STUDENT_NOT_FOUND")
        coach = await self._orgs.get_profile(coach_id)
        if coach is None or not ProfileRole(coach.role).is_coach_like:
            raise NotFound("Coach not found.", reason_code="COACH_NOT_FOUND")
        student_user_id = await self._orgs.student_user_id(student.id)
        if student_user_id is None:
            raise Conflict("Student has no activated account.", reason_code="STUDENT_NOT_ACTIVATED")
        if actor.user_id not in (student_user_id, coach_id):
            raise Forbidden("Access denied.", reason_code=THREAD_CREATE_DENIED)
        if not await self._orgs.is_coach_allowed_for_student(coach_id, student.id):
            raise Forbidden("Coach is not assigned to this student.", reason_code="COACH_NOT_ASSIGNED")
        a, b = normalize_user_pair(student_user_id, coach_id)
        return a, b, student.org_id

    async def _coach_coach_participants(self, actor: Actor, coach_user_id: Optional[str]) -> tuple[str, str]:
        if not coach_user_id:
            raise ValidationError("coach_coach threads need coach_user_id")
        if not actor.role.is_coach_like:
            raise Forbidden("Access denied.", reason_code=THREAD_CREATE_DENIED)
        if coach_user_id == actor.user_id:
            raise Conflict("Cannot open a conversation with yourself.", reason_code="SELF_CONVERSATION")
        target = await self._orgs.get_profile(coach_user_id)
        if target is None or not ProfileRole(target.role).is_coach_like:
            raise NotFound("Contact not found.", reason_code="CONTACT_NOT_FOUND")
        same_workspace = await self._orgs.is_coach_like_active_member(actor.workspace_id, coach_user_id)
        if not same_workspace and not await self._orgs.has_coach_contact(actor.user_id, coach_user_id):
            raise Forbidden("Coach contact not authorized.", reason_code="COACH_CONTACT_REQUIRED")
        return normalize_user_pair(actor.user_id, coach_user_id)

    async def _group_participants(self, actor: Actor, kind: ThreadKind, group_id: Optional[str]) -> tuple[str, str]:
        if not group_id:
            raise ValidationError(f"{kind.value} threads need group_id")
        if not actor.in_org_workspace:
            raise Forbidden("Group messaging is reserved to organizations.", reason_code=THREAD_CREATE_DENIED)
        group = await self._orgs.get_group(group_id)
        if group is None or group["org_id"] != actor.workspace_id:
            raise NotFound("Group not found.", reason_code="GROUP_NOT_FOUND")
        coaches, students = await self._orgs.group_members(group_id)
        members = sorted(set(coaches + students))
        if actor.user_id not in members:
            raise Forbidden("You do not belong to this group.", reason_code=THREAD_CREATE_DENIED)
        if kind == ThreadKind.group_info and actor.user_id not in coaches:
            raise Forbidden("Only group coaches can open this channel.", reason_code=THREAD_CREATE_DENIED)
        if kind == ThreadKind.group and len(members) < 2:
            raise Conflict("Not enough group members for a conversation.", reason_code="GROUP_TOO_SMALL")
        return members[0], members[1] if len(members) > 1 else members[0]

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def create_thread(
        self,
        actor: Actor,
        kind: ThreadKind,
        *,
        student_id: Optional[str] = None,
        coach_id: Optional[str] = None,
        coach_user_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> ThreadHandle:
        """Open a thread, or return the existing one with the same identity."""
        kind = ThreadKind(kind)
        await self._limiter.enforce(actor.user_id, "thread_create")
        await self._require_actor(actor, write_class=True)

        workspace_org_id = actor.workspace_id
        thread_student_id = None
        thread_group_id = None
        if kind == ThreadKind.student_coach:
            a, b, workspace_org_id = await self._student_coach_participants(actor, student_id, coach_id)
            thread_student_id = student_id
        elif kind == ThreadKind.coach_coach:
            a, b = await self._coach_coach_participants(actor, coach_user_id)
        elif kind.is_group_kind:
            a, b = await self._group_participants(actor, kind, group_id)
            thread_group_id = group_id
        else:
            if not actor.in_org_workspace or actor.membership_role is None or not actor.role.is_coach_like:
                raise Forbidden("Only organization coaches can open this channel.", reason_code=THREAD_CREATE_DENIED)
            a = b = actor.user_id

        existing = await self._threads.find_thread(
            kind, workspace_org_id, a, b, student_id=thread_student_id, group_id=thread_group_id
        )
        thread = existing or await self._threads.create_thread(
            kind, workspace_org_id, a, b, student_id=thread_student_id, group_id=thread_group_id
        )
        audience = await self._validator.audiences.resolve(thread)
        await self._threads.ensure_members(
            thread.id, audience.member_user_ids, reopen_user_ids=[actor.user_id]
        )
        if existing is None:
            log.info("thread_created", thread_id=thread.id, kind=kind.value, user_id=actor.user_id)
        return ThreadHandle(thread=thread, created=existing is None)

    async def inbox(self, actor: Actor) -> list[InboxItem]:
        await self._require_actor(actor, write_class=False)
        items = []
        for thread in await self._threads.threads_for_user(actor.user_id, actor.workspace_id):
            member = await self._threads.get_member(thread.id, actor.user_id)
            last_read = member.last_read_message_id if member else None
            unread = await self._threads.unread_count(thread.id, actor.user_id, last_read)
            items.append(InboxItem(thread=thread, unread_count=unread))
        return items

    async def hide_thread(self, actor: Actor, thread_id: str) -> None:
        await self._validator.require(actor, thread_id, ThreadIntent.hide)
        await self._threads.hide(thread_id, actor.user_id)

    async def notifications(self, actor: Actor) -> Notifications:
        """Unread totals with short previews, plus contact requests awaiting the actor.

        Contact requests are only listed for coach-like roles; other roles
        cannot receive them.
        """
        items = await self.inbox(actor)
        unread_items = [i for i in items if i.unread_count > 0]

        latest = []
        for item in unread_items[:NOTIFICATION_PREVIEWS]:
            if item.thread.last_message_id is None:
                continue
            message = await self._threads.get_message(item.thread.last_message_id)
            if message is not None:
                latest.append((item.thread, message))

        pending_count, requests = 0, []
        if actor.role.is_coach_like:
            pending_count, requests = await self._orgs.incoming_contact_requests(
                actor.user_id, limit=NOTIFICATION_PREVIEWS
            )

        profiles = await self._orgs.profiles_by_ids(
            [m.sender_user_id for _, m in latest] + [r.requester_user_id for r in requests]
        )

        return Notifications(
            unread_messages_count=sum(i.unread_count for i in unread_items),
            unread_previews=[
                NotificationPreview(
                    thread_id=thread.id,
                    kind=thread.kind,
                    from_user_id=message.sender_user_id,
                    from_name=getattr(profiles.get(message.sender_user_id), "full_name", None),
                    body_preview=message.body[:PREVIEW_LENGTH],
                    created_at=message.created_at,
                )
                for thread, message in latest
            ],
            pending_contact_requests_count=pending_count,
            pending_contact_requests=[
                ContactRequestNotice(
                    id=r.id,
                    requester_user_id=r.requester_user_id,
                    requester_name=getattr(profiles.get(r.requester_user_id), "full_name", None),
                    requester_email=getattr(profiles.get(r.requester_user_id), "email", None),
                    created_at=r.created_at,
                )
                for r in requests
            ],
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, actor: Actor, thread_id: str, body: str) -> SentMessage:
        """Validate, guard and persist a message."""
        text = (body or "").strip()
        if not text or len(text) > MAX_BODY_LENGTH:
            raise ValidationError(f"Message body must be 1 to {MAX_BODY_LENGTH} characters")

        await self._limiter.enforce(actor.user_id, "message_send")
        decision = await self._validator.require(actor, thread_id, ThreadIntent.write)
        thread, audience = decision.thread, decision.audience
        if thread is None or audience is None:
            raise NotFound("Thread not found.", reason_code="THREAD_NOT_FOUND")

        policy = await self._policies.load(thread.workspace_org_id)
        flags = detect_flags(text, policy.sensitive_words)
        if should_block(policy.guard_mode, thread.kind.involves_students, flags):
            log.info(
                "message_blocked",
                thread_id=thread.id,
                user_id=actor.user_id,
                flag_types=sorted({f.type.value for f in flags}),
            )
            raise ContentBlocked(
                "Message blocked: personal contact details or forbidden words are not allowed here.",
                flags=[{"type": f.type.value, "matched_value": f.matched_value} for f in flags],
            )

        message = await self._threads.insert_message(
            thread,
            actor.user_id,
            text,
            audience.member_user_ids,
            flags=flags,
            guard_mode=policy.guard_mode.value,
        )
        if flags:
            log.info(
                "message_flagged",
                thread_id=thread.id,
                message_id=message.id,
                flag_types=sorted({f.type.value for f in flags}),
            )
        return SentMessage(message=message, flags=flags)

    async def list_messages(
        self, actor: Actor, thread_id: str, before_id: Optional[int] = None, limit: int = 50
    ) -> MessagePage:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        decision = await self._validator.require(actor, thread_id, ThreadIntent.read)
        if decision.thread is None:
            raise NotFound("Thread not found.", reason_code="THREAD_NOT_FOUND")
        messages = await self._threads.list_messages(thread_id, before_id=before_id, limit=limit + 1)
        has_more = len(messages) > limit
        if has_more:
            messages = messages[1:]
        return MessagePage(thread=decision.thread, messages=messages, has_more=has_more)

    async def mark_read(self, actor: Actor, thread_id: str, message_id: int) -> None:
        await self._validator.require(actor, thread_id, ThreadIntent.read)
        message = await self._threads.get_message(message_id)
        if message is None or message.thread_id != thread_id:
            raise NotFound("Message not found.", reason_code="MESSAGE_NOT_FOUND")
        await self._threads.mark_read(thread_id, actor.user_id, message_id)

    async def export_messages(self, actor: Actor) -> MessageExport:
        """Bounded export of the actor's conversations in the active workspace."""
        await self._require_actor(actor, write_class=False)
        candidates = await self._threads.threads_for_user(actor.user_id, actor.workspace_id)
        truncated = len(candidates) > EXPORT_MAX_THREADS

        exported = []
        for thread in candidates[:EXPORT_MAX_THREADS]:
            decision = await self._validator.check(actor, thread.id, ThreadIntent.read, charter_exempt=True)
            if not decision.allowed:
                continue
            messages = await self._threads.first_messages(thread.id, EXPORT_MAX_MESSAGES + 1)
            if len(messages) > EXPORT_MAX_MESSAGES:
                truncated = True
                messages = messages[:EXPORT_MAX_MESSAGES]
            exported.append(ThreadExport(thread=thread, messages=messages))

        return MessageExport(
            generated_at=to_iso(self._clock()) or "",
            user_id=actor.user_id,
            workspace_org_id=actor.workspace_id,
            truncated=truncated,
            threads=exported,
        )

    # ------------------------------------------------------------------
    # Coach contacts
    # ------------------------------------------------------------------

    async def request_coach_contact(self, actor: Actor, target_email: str) -> dict:
        """Ask another coach to opt in to contact.

        The answer is the same whether or not the address belongs to a coach,
        so the endpoint cannot be used to probe for accounts.
        """
        email = (target_email or "").strip().lower()
        if not _EMAIL_SHAPE.match(email):
            raise ValidationError("A valid email address is required")

        await self._limiter.enforce(actor.user_id, "coach_contact_request")
        await self._require_actor(actor, write_class=True)
        if not actor.role.is_coach_like:
            raise Forbidden("Access denied.", reason_code="COACH_ROLE_REQUIRED")

        target = await self._orgs.get_profile_by_email(email)
        if (
            target is not None
            and target.id != actor.user_id
            and ProfileRole(target.role).is_coach_like
            and not await self._orgs.has_coach_contact(actor.user_id, target.id)
            and await self._orgs.pending_contact_request(actor.user_id, target.id) is None
            and await self._orgs.pending_contact_request(target.id, actor.user_id) is None
        ):
            request = await self._orgs.create_contact_request(actor.user_id, target.id)
            log.info("coach_contact_requested", request_id=request.id, user_id=actor.user_id)
        return {"ok": True}

    async def respond_coach_contact(self, actor: Actor, request_id: str, accept: bool) -> CoachContactRequest:
        await self._limiter.enforce(actor.user_id, "coach_contact_respond")
        await self._require_actor(actor, write_class=False)

        request = await self._orgs.get_contact_request(request_id)
        if request is None or request.target_user_id != actor.user_id:
            raise NotFound("Request not found.", reason_code="CONTACT_REQUEST_NOT_FOUND")

        status = ContactRequestStatus.accepted if accept else ContactRequestStatus.rejected
        if not await self._orgs.settle_contact_request(request_id, status):
            raise Conflict("Request was already answered.", reason_code="CONTACT_REQUEST_SETTLED")
        if accept:
            await self._orgs.add_coach_contact(request.requester_user_id, request.target_user_id)

        log.info("coach_contact_answered", request_id=request_id, status=status.value)
        settled = await self._orgs.get_contact_request(request_id)
        if settled is None:
            raise NotFound("Request not found.", reason_code="CONTACT_REQUEST_NOT_FOUND")
        return settled


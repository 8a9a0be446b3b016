"""Abuse report lifecycle: creation with evidence snapshot, triage and freeze.

Statuses are ``open``, ``in_review`` and ``resolved``.  Every transition
between them is allowed, including reopening a resolved report, and setting
a report to its current status is a harmless no-op.  Status changes are
applied with a compare-and-set on the status read beforehand, so two
moderators racing on the same report cannot silently overwrite each other.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional

from msgguard.auth.models import Actor
from msgguard.auth.permissions import ThreadIntent, is_org_messaging_admin
from msgguard.errors import Conflict, Forbidden, NotFound, ValidationError
from msgguard.log import get_logger
from msgguard.messages.access import ThreadAccessValidator
from msgguard.messages.models import Message
from msgguard.messages.thread_store import ThreadStore
from msgguard.moderation.models import MessageReport, ReportStatus, SnapshotItem
from msgguard.orgs.org_store import OrgStore
from msgguard.policies.policy_store import PolicyStore
from msgguard.security.audit_log import ModerationAuditLog
from msgguard.storage.connection import ConnectionManager
from msgguard.timeutil import Clock, to_iso, utcnow

log = get_logger(__name__)

SNAPSHOT_RADIUS = 5
SNAPSHOT_TAIL = 12
MAX_REPORTS_PAGE = 200
MAX_DETAIL_MESSAGES = 2000
REASON_MIN_LENGTH = 3
REASON_MAX_LENGTH = 200
DETAILS_MAX_LENGTH = 1000


@dataclass
class ReportPage:
    reports: list[MessageReport]
    truncated: bool


@dataclass
class ReportDetail:
    report: MessageReport
    messages: list[Message]
    truncated: bool
    members: list[dict] = field(default_factory=list)


class ReportLifecycle:
    """Create, triage and inspect message reports."""

    def __init__(
        self,
        db: ConnectionManager,
        threads: ThreadStore,
        orgs: OrgStore,
        policies: PolicyStore,
        validator: ThreadAccessValidator,
        audit: ModerationAuditLog,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db
        self._threads = threads
        self._orgs = orgs
        self._policies = policies
        self._validator = validator
        self._audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _report_from_row(row: dict) -> MessageReport:
        try:
            raw_snapshot = json.loads(row.get("snapshot") or "[]")
        except json.JSONDecodeError:
            raw_snapshot = []
        return MessageReport(
            id=row["id"],
            workspace_org_id=row["workspace_org_id"],
            thread_id=row["thread_id"],
            reason=row["reason"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message_id=row.get("message_id"),
            reported_by=row.get("reported_by"),
            details=row.get("details"),
            status=ReportStatus(row["status"]),
            freeze_applied=bool(row["freeze_applied"]),
            resolved_by=row.get("resolved_by"),
            resolved_at=row.get("resolved_at"),
            snapshot=[SnapshotItem(**item) for item in raw_snapshot],
        )

    async def _require_admin(self, actor: Actor) -> None:
        decision = await self._validator.check_actor(actor, write_class=False)
        decision.raise_for_denial()
        policy = await self._policies.load(actor.workspace_id)
        if not is_org_messaging_admin(actor, policy):
            raise Forbidden("Access denied.", reason_code="MODERATION_ADMIN_REQUIRED")

    async def _load_in_workspace(self, actor: Actor, report_id: str) -> MessageReport:
        row = await self._db.fetch_one("SELECT * FROM message_reports WHERE id = ?", (report_id,))
        if row is None or row["workspace_org_id"] != actor.workspace_id:
            raise NotFound("Report not found.", reason_code="REPORT_NOT_FOUND")
        return self._report_from_row(row)

    async def _with_thread_state(self, report: MessageReport) -> MessageReport:
        thread = await self._threads.get_thread(report.thread_id)
        if thread is not None:
            report.frozen_at = thread.frozen_at
            report.frozen_reason = thread.frozen_reason
        return report

    async def _snapshot(self, thread_id: str, anchor_id: Optional[int]) -> list[SnapshotItem]:
        if anchor_id is not None:
            messages = await self._threads.messages_in_range(
                thread_id, max(1, anchor_id - SNAPSHOT_RADIUS), anchor_id + SNAPSHOT_RADIUS
            )
        else:
            messages = await self._threads.list_messages(thread_id, limit=SNAPSHOT_TAIL)
        profiles = await self._orgs.profiles_by_ids([m.sender_user_id for m in messages])
        items = []
        for m in sorted(messages, key=lambda m: m.id):
            sender = profiles.get(m.sender_user_id)
            items.append(
                SnapshotItem(
                    id=m.id,
                    sender_user_id=m.sender_user_id,
                    created_at=m.created_at,
                    body=m.body,
                    sender_name=sender.full_name if sender else None,
                    sender_role=sender.role if sender else None,
                )
            )
        return items

    @staticmethod
    def _validate_report_input(reason: str, details: Optional[str]) -> tuple[str, Optional[str]]:
        reason = (reason or "").strip()
        if not REASON_MIN_LENGTH <= len(reason) <= REASON_MAX_LENGTH:
            raise ValidationError(
                f"reason must be {REASON_MIN_LENGTH} to {REASON_MAX_LENGTH} characters"
            )
        details = (details or "").strip() or None
        if details is not None and len(details) > DETAILS_MAX_LENGTH:
            raise ValidationError(f"details must be at most {DETAILS_MAX_LENGTH} characters")
        return reason, details

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_report(
        self,
        actor: Actor,
        thread_id: str,
        reason: str,
        message_id: Optional[int] = None,
        details: Optional[str] = None,
    ) -> MessageReport:
        """File a report; any participant who can read the thread may do so."""
        reason, details = self._validate_report_input(reason, details)
        decision = await self._validator.require(actor, thread_id, ThreadIntent.read)
        thread = decision.thread
        if thread is None:
            raise NotFound("Thread not found.", reason_code="THREAD_NOT_FOUND")

        if message_id is not None:
            message = await self._threads.get_message(message_id)
            if message is None or message.thread_id != thread.id:
                raise NotFound("Message not found.", reason_code="MESSAGE_NOT_FOUND")
        else:
            message_id = thread.last_message_id

        snapshot = await self._snapshot(thread.id, message_id)
        now = to_iso(self._clock()) or ""
        report = MessageReport(
            id=str(uuid.uuid4()),
            workspace_org_id=thread.workspace_org_id,
            thread_id=thread.id,
            reason=reason,
            created_at=now,
            updated_at=now,
            message_id=message_id,
            reported_by=actor.user_id,
            details=details,
            snapshot=snapshot,
        )
        await self._db.execute(
            "INSERT INTO message_reports "
            "(id, workspace_org_id, thread_id, message_id, reported_by, reason, details, status, "
            "snapshot, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                report.id,
                report.workspace_org_id,
                report.thread_id,
                report.message_id,
                report.reported_by,
                report.reason,
                report.details,
                report.status.value,
                json.dumps([asdict(item) for item in snapshot]),
                now,
                now,
            ),
        )

        self._audit.record(
            report.workspace_org_id,
            actor.user_id,
            "report.created",
            report_id=report.id,
            thread_id=thread.id,
            metadata={"message_id": message_id, "status": report.status.value},
        )
        log.warning("report_created", report_id=report.id, thread_id=thread.id)
        return report

    async def update_status(
        self,
        actor: Actor,
        report_id: str,
        status: ReportStatus,
        freeze_thread: Optional[bool] = None,
        resolution_note: Optional[str] = None,
    ) -> MessageReport:
        """Move a report to *status*, optionally freezing or unfreezing its thread."""
        status = ReportStatus(status)
        await self._require_admin(actor)
        current = await self._load_in_workspace(actor, report_id)
        note = (resolution_note or "").strip() or None

        now = to_iso(self._clock()) or ""
        if status == ReportStatus.resolved:
            if current.status == ReportStatus.resolved:
                resolved_by, resolved_at = current.resolved_by, current.resolved_at
            else:
                resolved_by, resolved_at = actor.user_id, now
        else:
            resolved_by, resolved_at = None, None
        freeze_applied = current.freeze_applied if freeze_thread is None else freeze_thread

        async def _write() -> int:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    "UPDATE message_reports SET status = ?, resolved_by = ?, resolved_at = ?, "
                    "freeze_applied = ?, updated_at = ? WHERE id = ? AND status = ?",
                    (
                        status.value,
                        resolved_by,
                        resolved_at,
                        int(freeze_applied),
                        now,
                        report_id,
                        current.status.value,
                    ),
                )
                changed = cursor.rowcount
                await cursor.close()
                if changed == 0:
                    return 0
                if freeze_thread is True:
                    await self._threads.set_freeze(
                        conn, current.thread_id, actor.user_id, note or current.reason, now
                    )
                elif freeze_thread is False:
                    await self._threads.clear_freeze(conn, current.thread_id)
            return changed

        if await self._db.bounded(_write()) == 0:
            raise Conflict(
                "Report was modified concurrently. Reload and try again.",
                reason_code="REPORT_STATUS_CONFLICT",
            )

        self._audit.record(
            actor.workspace_id,
            actor.user_id,
            "report.status_updated",
            report_id=report_id,
            thread_id=current.thread_id,
            metadata={
                "from": current.status.value,
                "to": status.value,
                "freeze_thread": freeze_thread,
                "resolution_note": note,
            },
        )
        log.info(
            "report_status_updated",
            report_id=report_id,
            previous=current.status.value,
            status=status.value,
            freeze_thread=freeze_thread,
        )
        updated = await self._load_in_workspace(actor, report_id)
        return await self._with_thread_state(updated)

    async def list_reports(self, actor: Actor, limit: int = MAX_REPORTS_PAGE, offset: int = 0) -> ReportPage:
        """Newest reports of the actor's workspace, one page at a time."""
        await self._require_admin(actor)
        limit = max(1, min(limit, MAX_REPORTS_PAGE))
        offset = max(0, offset)
        rows = await self._db.fetch_all(
            "SELECT * FROM message_reports WHERE workspace_org_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (actor.workspace_id, limit + 1, offset),
        )
        truncated = len(rows) > limit
        reports = [self._report_from_row(r) for r in rows[:limit]]
        self._audit.record(
            actor.workspace_id,
            actor.user_id,
            "reports.list_viewed",
            metadata={"count": len(reports), "offset": offset},
        )
        return ReportPage(reports=reports, truncated=truncated)

    async def report_detail(self, actor: Actor, report_id: str) -> ReportDetail:
        """Report, its snapshot, the thread's current messages and members."""
        await self._require_admin(actor)
        report = await self._with_thread_state(await self._load_in_workspace(actor, report_id))

        messages = await self._threads.first_messages(report.thread_id, MAX_DETAIL_MESSAGES + 1)
        truncated = len(messages) > MAX_DETAIL_MESSAGES
        messages = messages[:MAX_DETAIL_MESSAGES]

        member_ids = [m.user_id for m in await self._threads.members(report.thread_id)]
        profiles = await self._orgs.profiles_by_ids(member_ids)
        members = [
            {
                "user_id": uid,
                "full_name": profiles[uid].full_name if uid in profiles else None,
                "role": profiles[uid].role if uid in profiles else None,
            }
            for uid in member_ids
        ]

        self._audit.record(
            actor.workspace_id,
            actor.user_id,
            "report.thread_viewed",
            report_id=report.id,
            thread_id=report.thread_id,
            metadata={"message_count": len(messages), "truncated": truncated},
        )
        return ReportDetail(report=report, messages=messages, truncated=truncated, members=members)

"""Messaging suspensions: lookup and admin management."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from msgguard.log import get_logger
from msgguard.moderation.models import MessagingSuspension
from msgguard.storage.connection import ConnectionManager
from msgguard.timeutil import Clock, parse_iso, to_iso, utcnow

log = get_logger(__name__)

LOOKBACK_ROWS = 20
MAX_LISTED = 200


class SuspensionRegistry:
    """Active, non-expired suspensions per ``(workspace, user)``.

    A suspension is active while ``lifted_at`` is unset and ``suspended_until``
    is either unset or in the future.  Rows are never deleted.
    """

    def __init__(self, db: ConnectionManager, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock

    def _is_active(self, suspension: MessagingSuspension, now: datetime) -> bool:
        if suspension.lifted_at is not None:
            return False
        if suspension.suspended_until is None:
            return True
        until = parse_iso(suspension.suspended_until)
        return until is not None and until > now

    async def _recent_unlifted(self, org_id: str, user_id: str, limit: int) -> list[MessagingSuspension]:
        rows = await self._db.fetch_all(
            "SELECT * FROM messaging_suspensions "
            "WHERE org_id = ? AND user_id = ? AND lifted_at IS NULL "
            "ORDER BY created_at DESC LIMIT ?",
            (org_id, user_id, limit),
        )
        return [MessagingSuspension(**r) for r in rows]

    async def is_suspended(self, org_id: str, user_id: str) -> Optional[MessagingSuspension]:
        """The most recent active suspension, or ``None``."""
        now = self._clock()
        for suspension in await self._recent_unlifted(org_id, user_id, LOOKBACK_ROWS):
            if self._is_active(suspension, now):
                return suspension
        return None

    async def suspend(
        self,
        org_id: str,
        user_id: str,
        reason: str,
        created_by: str,
        suspended_until: Optional[datetime] = None,
    ) -> MessagingSuspension:
        """Suspend a user, reusing their latest unlifted row when there is one."""
        until = to_iso(suspended_until)
        now = to_iso(self._clock()) or ""
        latest = await self._recent_unlifted(org_id, user_id, 1)

        if latest:
            suspension = latest[0]
            await self._db.execute(
                "UPDATE messaging_suspensions SET reason = ?, suspended_until = ?, created_by = ? "
                "WHERE id = ?",
                (reason, until, created_by, suspension.id),
            )
            suspension.reason = reason
            suspension.suspended_until = until
            suspension.created_by = created_by
        else:
            suspension = MessagingSuspension(
                id=str(uuid.uuid4()),
                org_id=org_id,
                user_id=user_id,
                reason=reason,
                created_at=now,
                suspended_until=until,
                created_by=created_by,
            )
            await self._db.execute(
                "INSERT INTO messaging_suspensions "
                "(id, org_id, user_id, reason, suspended_until, created_at, created_by) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (suspension.id, org_id, user_id, reason, until, now, created_by),
            )

        log.info("messaging_suspended", org_id=org_id, user_id=user_id, until=until)
        return suspension

    async def lift(self, org_id: str, user_id: str, lifted_by: str) -> int:
        """Lift every unlifted suspension of the user; returns how many rows changed."""
        count = await self._db.execute(
            "UPDATE messaging_suspensions SET lifted_at = ?, lifted_by = ? "
            "WHERE org_id = ? AND user_id = ? AND lifted_at IS NULL",
            (to_iso(self._clock()), lifted_by, org_id, user_id),
        )
        log.info("messaging_suspension_lifted", org_id=org_id, user_id=user_id, rows=count)
        return count

    async def list_active(self, org_id: str) -> list[MessagingSuspension]:
        rows = await self._db.fetch_all(
            "SELECT * FROM messaging_suspensions WHERE org_id = ? AND lifted_at IS NULL "
            "ORDER BY created_at DESC LIMIT ?",
            (org_id, MAX_LISTED),
        )
        now = self._clock()
        return [s for s in (MessagingSuspension(**r) for r in rows) if self._is_active(s, now)]

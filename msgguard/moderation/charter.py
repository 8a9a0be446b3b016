"""Messaging charter: versioned rules every participant must accept."""

from __future__ import annotations

from msgguard.errors import Conflict
from msgguard.log import get_logger
from msgguard.moderation.models import CharterStatus
from msgguard.policies.policy_store import PolicyStore
from msgguard.storage.connection import ConnectionManager
from msgguard.timeutil import Clock, to_iso, utcnow

log = get_logger(__name__)

CHARTER_CONTENT = {
    "title": "Messaging charter",
    "intro": "Messaging is reserved for coaching. By accepting this charter you agree to the rules below.",
    "respect": "Stay courteous. Harassment, insults and discrimination are forbidden.",
    "privacy": "Do not share personal contact details (phone, email, social accounts) in conversations with students.",
    "supervision": "Organization administrators may review reported conversations and freeze them.",
    "reporting": "Report any message that makes you uncomfortable. Reports are handled confidentially.",
}


class CharterGate:
    """Tracks charter acceptance per ``(workspace, user, version)``."""

    def __init__(self, db: ConnectionManager, policies: PolicyStore, clock: Clock = utcnow) -> None:
        self._db = db
        self._policies = policies
        self._clock = clock

    async def status(self, org_id: str, user_id: str) -> CharterStatus:
        policy = await self._policies.load(org_id)
        row = await self._db.fetch_one(
            "SELECT accepted_at FROM charter_acceptances "
            "WHERE org_id = ? AND user_id = ? AND charter_version = ?",
            (org_id, user_id, policy.charter_version),
        )
        return CharterStatus(
            charter_version=policy.charter_version,
            must_accept=row is None,
            accepted_at=row["accepted_at"] if row else None,
            content=dict(CHARTER_CONTENT),
        )

    async def accept(self, org_id: str, user_id: str, charter_version: int) -> CharterStatus:
        """Record acceptance of the current version; stale versions conflict."""
        policy = await self._policies.load(org_id)
        if charter_version != policy.charter_version:
            raise Conflict(
                "Charter version is out of date. Reload and accept the current version.",
                reason_code="CHARTER_VERSION_STALE",
                charter_version=policy.charter_version,
            )

        await self._db.execute(
            "INSERT OR IGNORE INTO charter_acceptances (org_id, user_id, charter_version, accepted_at) "
            "VALUES (?, ?, ?, ?)",
            (org_id, user_id, charter_version, to_iso(self._clock())),
        )
        log.info("charter_accepted", org_id=org_id, user_id=user_id, charter_version=charter_version)
        return await self.status(org_id, user_id)

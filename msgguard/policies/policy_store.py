"""SQLite storage for per-workspace messaging policies.

A workspace without a row reads as :func:`default_policy`; reads never write.
Updates touch only the provided columns, so concurrent updates of different
fields do not overwrite each other (last write wins per field).
"""

from __future__ import annotations

import json
from typing import Optional

from msgguard.errors import ValidationError
from msgguard.log import get_logger
from msgguard.policies.models import (
    MAX_RETENTION_DAYS,
    MAX_SENSITIVE_WORD_LENGTH,
    MAX_SENSITIVE_WORDS,
    MIN_RETENTION_DAYS,
    GuardMode,
    MessagingPolicy,
    PolicyUpdate,
    default_policy,
    normalize_sensitive_words,
)
from msgguard.storage.connection import ConnectionManager
from msgguard.timeutil import Clock, to_iso, utcnow

log = get_logger(__name__)


class PolicyStore:
    """Load and update :class:`MessagingPolicy` rows."""

    def __init__(self, db: ConnectionManager, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _policy_from_row(row: dict) -> MessagingPolicy:
        try:
            words = json.loads(row.get("sensitive_words") or "[]")
        except json.JSONDecodeError:
            words = []
        try:
            guard_mode = GuardMode(row["guard_mode"])
        except ValueError:
            return default_policy(row["org_id"])
        return MessagingPolicy(
            org_id=row["org_id"],
            guard_mode=guard_mode,
            sensitive_words=normalize_sensitive_words(w for w in words if isinstance(w, str)),
            retention_days=int(row["retention_days"]),
            charter_version=max(1, int(row["charter_version"])),
            supervision_enabled=bool(row["supervision_enabled"]),
        )

    @staticmethod
    def validate(update: PolicyUpdate, current: Optional[MessagingPolicy] = None) -> None:
        """Raise :class:`ValidationError` for out-of-range fields."""
        if update.guard_mode is not None:
            try:
                GuardMode(update.guard_mode)
            except ValueError as exc:
                raise ValidationError(f"Unknown guard mode '{update.guard_mode}'") from exc
        if update.sensitive_words is not None:
            if len(update.sensitive_words) > MAX_SENSITIVE_WORDS:
                raise ValidationError(f"At most {MAX_SENSITIVE_WORDS} sensitive words are allowed")
            for word in update.sensitive_words:
                if len(word.strip()) > MAX_SENSITIVE_WORD_LENGTH:
                    raise ValidationError(
                        f"Sensitive words are limited to {MAX_SENSITIVE_WORD_LENGTH} characters"
                    )
        if update.retention_days is not None and not (
            MIN_RETENTION_DAYS <= update.retention_days <= MAX_RETENTION_DAYS
        ):
            raise ValidationError(
                f"retention_days must be between {MIN_RETENTION_DAYS} and {MAX_RETENTION_DAYS}"
            )
        if update.charter_version is not None:
            if update.charter_version < 1:
                raise ValidationError("charter_version must be at least 1")
            if current is not None and update.charter_version < current.charter_version:
                raise ValidationError("charter_version can only increase")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def load(self, org_id: str) -> MessagingPolicy:
        row = await self._db.fetch_one(
            "SELECT * FROM messaging_policies WHERE org_id = ?", (org_id,)
        )
        if row is None:
            return default_policy(org_id)
        return self._policy_from_row(row)

    async def update(self, org_id: str, update: PolicyUpdate) -> MessagingPolicy:
        """Apply the provided fields and return the stored policy."""
        current = await self.load(org_id)
        self.validate(update, current)
        if update.is_empty():
            return current

        columns: dict[str, object] = {}
        if update.guard_mode is not None:
            columns["guard_mode"] = GuardMode(update.guard_mode).value
        if update.sensitive_words is not None:
            columns["sensitive_words"] = json.dumps(
                list(normalize_sensitive_words(update.sensitive_words))
            )
        if update.retention_days is not None:
            columns["retention_days"] = update.retention_days
        if update.charter_version is not None:
            columns["charter_version"] = update.charter_version
        if update.supervision_enabled is not None:
            columns["supervision_enabled"] = int(update.supervision_enabled)
        columns["updated_at"] = to_iso(self._clock())

        assignments = ", ".join(f"{name} = ?" for name in columns)

        async def _write() -> None:
            async with self._db.transaction() as conn:
                await conn.execute(
                    "INSERT OR IGNORE INTO messaging_policies (org_id) VALUES (?)", (org_id,)
                )
                await conn.execute(
                    f"UPDATE messaging_policies SET {assignments} WHERE org_id = ?",
                    (*columns.values(), org_id),
                )

        await self._db.bounded(_write())
        log.info("messaging_policy_updated", org_id=org_id, fields=sorted(columns))
        return await self.load(org_id)

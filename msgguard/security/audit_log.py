"""Append-only moderation audit log.

Writes are fire-and-forget: :meth:`ModerationAuditLog.record` schedules the
insert on the running loop and returns immediately, so a failing audit write
never rolls back or delays the moderation action that triggered it.  Failures
are reported through structured logging.  Call :meth:`drain` before shutdown
to flush pending writes.
"""

from __future__ import annotations

import asyncio
import csv
import io
import json
import uuid
from dataclasses import asdict
from typing import Any, Optional

from msgguard.log import get_logger
from msgguard.moderation.models import ModerationAuditEntry
from msgguard.storage.connection import ConnectionManager
from msgguard.timeutil import Clock, to_iso, utcnow

log = get_logger(__name__)

_CSV_FIELDS = ["id", "created_at", "workspace_org_id", "actor_user_id", "action", "report_id", "thread_id"]


class ModerationAuditLog:
    """SQLite-backed audit log for moderation actions."""

    def __init__(self, db: ConnectionManager, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _entry_from_row(row: dict) -> ModerationAuditEntry:
        try:
            metadata = json.loads(row.get("metadata") or "{}")
        except json.JSONDecodeError:
            metadata = {}
        return ModerationAuditEntry(
            id=row["id"],
            workspace_org_id=row["workspace_org_id"],
            actor_user_id=row["actor_user_id"],
            action=row["action"],
            created_at=row["created_at"],
            report_id=row.get("report_id"),
            thread_id=row.get("thread_id"),
            metadata=metadata,
        )

    async def _insert(self, entry: ModerationAuditEntry) -> None:
        try:
            await self._db.execute(
                "INSERT INTO moderation_audit "
                "(id, workspace_org_id, actor_user_id, report_id, thread_id, action, metadata, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    entry.workspace_org_id,
                    entry.actor_user_id,
                    entry.report_id,
                    entry.thread_id,
                    entry.action,
                    json.dumps(entry.metadata, default=str),
                    entry.created_at,
                ),
            )
        except Exception as exc:
            log.error(
                "moderation_audit_write_failed",
                action=entry.action,
                report_id=entry.report_id,
                error=str(exc),
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record(
        self,
        workspace_org_id: str,
        actor_user_id: str,
        action: str,
        *,
        report_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ModerationAuditEntry:
        """Schedule an audit insert and return the entry without waiting for it."""
        entry = ModerationAuditEntry(
            id=str(uuid.uuid4()),
            workspace_org_id=workspace_org_id,
            actor_user_id=actor_user_id,
            action=action,
            created_at=to_iso(self._clock()) or "",
            report_id=report_id,
            thread_id=thread_id,
            metadata=metadata or {},
        )
        task = asyncio.get_running_loop().create_task(self._insert(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return entry

    async def drain(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def list_for_report(self, report_id: str) -> list[ModerationAuditEntry]:
        rows = await self._db.fetch_all(
            "SELECT * FROM moderation_audit WHERE report_id = ? ORDER BY created_at ASC", (report_id,)
        )
        return [self._entry_from_row(r) for r in rows]

    async def list_for_workspace(
        self, workspace_org_id: str, *, action: Optional[str] = None, limit: int = 200
    ) -> list[ModerationAuditEntry]:
        """Return audit entries of a workspace, newest first."""
        if action:
            rows = await self._db.fetch_all(
                "SELECT * FROM moderation_audit WHERE workspace_org_id = ? AND action = ? "
                "ORDER BY created_at DESC LIMIT ?",
                (workspace_org_id, action, limit),
            )
        else:
            rows = await self._db.fetch_all(
                "SELECT * FROM moderation_audit WHERE workspace_org_id = ? "
                "ORDER BY created_at DESC LIMIT ?",
                (workspace_org_id, limit),
            )
        return [self._entry_from_row(r) for r in rows]

    async def export(self, workspace_org_id: str, fmt: str = "json", limit: int = 10000) -> str:
        """Export a workspace's audit entries as ``json`` or ``csv``."""
        entries = await self.list_for_workspace(workspace_org_id, limit=limit)

        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.DictWriter(buffer, fieldnames=_CSV_FIELDS + ["metadata"], lineterminator="\n")
            writer.writeheader()
            for e in entries:
                row = {name: getattr(e, name) or "" for name in _CSV_FIELDS}
                row["metadata"] = json.dumps(e.metadata, default=str)
                writer.writerow(row)
            return buffer.getvalue()

        return json.dumps([asdict(e) for e in entries], indent=2)

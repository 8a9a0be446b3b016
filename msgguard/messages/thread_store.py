"""SQLite storage for threads, thread members, messages and content flags."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Optional

import aiosqlite

from msgguard.messages.models import Message, MessageThread, ThreadKind, ThreadMember
from msgguard.moderation.models import ContentFlag
from msgguard.storage.connection import ConnectionManager
from msgguard.timeutil import Clock, to_iso, utcnow

REDACTED_BODY = "[message removed by retention policy]"


class ThreadStore:
    """Persistence for message threads and everything hanging off them."""

    def __init__(self, db: ConnectionManager, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _now(self) -> str:
        return to_iso(self._clock()) or ""

    @staticmethod
    def _thread_from_row(row: dict) -> MessageThread:
        return MessageThread(**row)

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def get_thread(self, thread_id: str) -> Optional[MessageThread]:
        row = await self._db.fetch_one("SELECT * FROM message_threads WHERE id = ?", (thread_id,))
        return self._thread_from_row(row) if row else None

    async def find_thread(
        self,
        kind: ThreadKind,
        workspace_org_id: str,
        participant_a_id: Optional[str] = None,
        participant_b_id: Optional[str] = None,
        student_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> Optional[MessageThread]:
        """Oldest existing thread with the same identity, if any."""
        clauses = ["kind = ?", "workspace_org_id = ?"]
        params: list = [kind.value, workspace_org_id]
        if kind.is_group_kind:
            clauses.append("group_id = ?")
            params.append(group_id)
        elif kind in (ThreadKind.student_coach, ThreadKind.coach_coach):
            clauses += ["participant_a_id = ?", "participant_b_id = ?"]
            params += [participant_a_id, participant_b_id]
            if student_id is None:
                clauses.append("student_id IS NULL")
            else:
                clauses.append("student_id = ?")
                params.append(student_id)
        row = await self._db.fetch_one(
            f"SELECT * FROM message_threads WHERE {' AND '.join(clauses)} "
            "ORDER BY created_at ASC LIMIT 1",
            params,
        )
        return self._thread_from_row(row) if row else None

    async def create_thread(
        self,
        kind: ThreadKind,
        workspace_org_id: str,
        participant_a_id: str,
        participant_b_id: str,
        student_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> MessageThread:
        thread = MessageThread(
            id=str(uuid.uuid4()),
            kind=kind,
            workspace_org_id=workspace_org_id,
            participant_a_id=participant_a_id,
            participant_b_id=participant_b_id,
            student_id=student_id,
            group_id=group_id,
            created_at=self._now(),
        )
        await self._db.execute(
            "INSERT INTO message_threads "
            "(id, kind, workspace_org_id, student_id, group_id, participant_a_id, participant_b_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                thread.id,
                kind.value,
                workspace_org_id,
                student_id,
                group_id,
                participant_a_id,
                participant_b_id,
                thread.created_at,
            ),
        )
        return thread

    @staticmethod
    async def set_freeze(
        conn: aiosqlite.Connection, thread_id: str, frozen_by: str, reason: str, frozen_at: str
    ) -> None:
        """Freeze a thread inside the caller's open transaction."""
        await conn.execute(
            "UPDATE message_threads SET frozen_at = ?, frozen_by = ?, frozen_reason = ? WHERE id = ?",
            (frozen_at, frozen_by, reason, thread_id),
        )

    @staticmethod
    async def clear_freeze(conn: aiosqlite.Connection, thread_id: str) -> None:
        await conn.execute(
            "UPDATE message_threads SET frozen_at = NULL, frozen_by = NULL, frozen_reason = NULL "
            "WHERE id = ?",
            (thread_id,),
        )

    async def threads_for_user(self, user_id: str, workspace_org_id: str) -> list[MessageThread]:
        """Threads of a workspace where the user has a visible member row."""
        rows = await self._db.fetch_all(
            "SELECT t.* FROM message_threads t "
            "JOIN message_thread_members m ON m.thread_id = t.id "
            "WHERE m.user_id = ? AND m.hidden_at IS NULL AND t.workspace_org_id = ? "
            "ORDER BY COALESCE(t.last_message_at, t.created_at) DESC",
            (user_id, workspace_org_id),
        )
        return [self._thread_from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def ensure_members(
        self, thread_id: str, user_ids: Iterable[str], reopen_user_ids: Iterable[str] = ()
    ) -> None:
        """Create missing member rows; unhide the thread for *reopen_user_ids*."""
        unique_ids = list(dict.fromkeys(user_ids))
        reopen_ids = list(dict.fromkeys(reopen_user_ids))
        if not unique_ids and not reopen_ids:
            return

        async def _write() -> None:
            async with self._db.transaction() as conn:
                await conn.executemany(
                    "INSERT OR IGNORE INTO message_thread_members (thread_id, user_id) VALUES (?, ?)",
                    [(thread_id, uid) for uid in unique_ids],
                )
                await conn.executemany(
                    "UPDATE message_thread_members SET hidden_at = NULL WHERE thread_id = ? AND user_id = ?",
                    [(thread_id, uid) for uid in reopen_ids],
                )

        await self._db.bounded(_write())

    async def members(self, thread_id: str) -> list[ThreadMember]:
        rows = await self._db.fetch_all(
            "SELECT * FROM message_thread_members WHERE thread_id = ? ORDER BY user_id", (thread_id,)
        )
        return [ThreadMember(**r) for r in rows]

    async def get_member(self, thread_id: str, user_id: str) -> Optional[ThreadMember]:
        row = await self._db.fetch_one(
            "SELECT * FROM message_thread_members WHERE thread_id = ? AND user_id = ?",
            (thread_id, user_id),
        )
        return ThreadMember(**row) if row else None

    async def mark_read(self, thread_id: str, user_id: str, message_id: int) -> None:
        """Advance the read cursor; it never moves backwards."""
        await self._db.execute(
            "INSERT INTO message_thread_members (thread_id, user_id, last_read_message_id, last_read_at) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT (thread_id, user_id) DO UPDATE SET "
            "last_read_message_id = MAX(COALESCE(last_read_message_id, 0), excluded.last_read_message_id), "
            "last_read_at = excluded.last_read_at",
            (thread_id, user_id, message_id, self._now()),
        )

    async def hide(self, thread_id: str, user_id: str) -> None:
        await self._db.execute(
            "INSERT INTO message_thread_members (thread_id, user_id, hidden_at) VALUES (?, ?, ?) "
            "ON CONFLICT (thread_id, user_id) DO UPDATE SET hidden_at = excluded.hidden_at",
            (thread_id, user_id, self._now()),
        )

    async def unread_count(self, thread_id: str, user_id: str, last_read_message_id: Optional[int]) -> int:
        row = await self._db.fetch_one(
            "SELECT COUNT(*) AS n FROM messages WHERE thread_id = ? AND id > ? AND sender_user_id != ?",
            (thread_id, last_read_message_id or 0, user_id),
        )
        return int(row["n"]) if row else 0

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def insert_message(
        self,
        thread: MessageThread,
        sender_user_id: str,
        body: str,
        member_user_ids: Iterable[str],
        flags: Iterable[ContentFlag] = (),
        guard_mode: str = "",
    ) -> Message:
        """Store a message with its content flags in one transaction.

        The thread and the sender's read cursor are bumped and the thread is
        unhidden for every member.  If any statement fails nothing is kept.
        """
        created_at = self._now()
        members = list(dict.fromkeys(member_user_ids))
        flags = list(flags)

        async def _write() -> int:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    "INSERT INTO messages (thread_id, sender_user_id, body, created_at) VALUES (?, ?, ?, ?)",
                    (thread.id, sender_user_id, body, created_at),
                )
                message_id = int(cursor.lastrowid or 0)
                await cursor.close()
                await conn.execute(
                    "UPDATE message_threads SET last_message_id = ?, last_message_at = ? WHERE id = ?",
                    (message_id, created_at, thread.id),
                )
                await conn.executemany(
                    "INSERT INTO message_thread_members (thread_id, user_id) VALUES (?, ?) "
                    "ON CONFLICT (thread_id, user_id) DO UPDATE SET hidden_at = NULL",
                    [(thread.id, uid) for uid in members],
                )
                await conn.execute(
                    "INSERT INTO message_thread_members (thread_id, user_id, last_read_message_id, last_read_at) "
                    "VALUES (?, ?, ?, ?) ON CONFLICT (thread_id, user_id) DO UPDATE SET "
                    "last_read_message_id = excluded.last_read_message_id, "
                    "last_read_at = excluded.last_read_at, hidden_at = NULL",
                    (thread.id, sender_user_id, message_id, created_at),
                )
                if flags:
                    await conn.executemany(
                        "INSERT INTO message_flags "
                        "(message_id, thread_id, workspace_org_id, flag_type, matched_value, guard_mode, created_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        [
                            (
                                message_id,
                                thread.id,
                                thread.workspace_org_id,
                                flag.type.value,
                                flag.matched_value,
                                guard_mode,
                                created_at,
                            )
                            for flag in flags
                        ],
                    )
            return message_id

        message_id = await self._db.bounded(_write())
        return Message(
            id=message_id,
            thread_id=thread.id,
            sender_user_id=sender_user_id,
            body=body,
            created_at=created_at,
        )

    async def get_message(self, message_id: int) -> Optional[Message]:
        row = await self._db.fetch_one("SELECT * FROM messages WHERE id = ?", (message_id,))
        return Message(**row) if row else None

    async def list_messages(
        self, thread_id: str, before_id: Optional[int] = None, limit: int = 50
    ) -> list[Message]:
        """A page of messages ending before *before_id*, oldest first."""
        if before_id is None:
            rows = await self._db.fetch_all(
                "SELECT * FROM messages WHERE thread_id = ? ORDER BY id DESC LIMIT ?",
                (thread_id, limit),
            )
        else:
            rows = await self._db.fetch_all(
                "SELECT * FROM messages WHERE thread_id = ? AND id < ? ORDER BY id DESC LIMIT ?",
                (thread_id, before_id, limit),
            )
        return [Message(**r) for r in reversed(rows)]

    async def messages_in_range(self, thread_id: str, low_id: int, high_id: int) -> list[Message]:
        rows = await self._db.fetch_all(
            "SELECT * FROM messages WHERE thread_id = ? AND id BETWEEN ? AND ? ORDER BY id ASC",
            (thread_id, low_id, high_id),
        )
        return [Message(**r) for r in rows]

    async def first_messages(self, thread_id: str, limit: int) -> list[Message]:
        """Oldest *limit* messages, used by bounded exports."""
        rows = await self._db.fetch_all(
            "SELECT * FROM messages WHERE thread_id = ? ORDER BY id ASC LIMIT ?",
            (thread_id, limit),
        )
        return [Message(**r) for r in rows]

    async def redact_older_than(self, workspace_org_id: str, cutoff: datetime) -> int:
        """Replace bodies of messages created before *cutoff*; rows are kept."""
        return await self._db.execute(
            "UPDATE messages SET body = ?, redacted_at = ? "
            "WHERE redacted_at IS NULL AND created_at < ? AND thread_id IN "
            "(SELECT id FROM message_threads WHERE workspace_org_id = ?)",
            (REDACTED_BODY, self._now(), to_iso(cutoff), workspace_org_id),
        )

    # ------------------------------------------------------------------
    # Content flags
    # ------------------------------------------------------------------

    async def flags_for_thread(self, thread_id: str) -> list[dict]:
        return await self._db.fetch_all(
            "SELECT message_id, flag_type, matched_value, guard_mode, created_at "
            "FROM message_flags WHERE thread_id = ? ORDER BY message_id, id",
            (thread_id,),
        )

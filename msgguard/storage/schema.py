"""Schema creation: tables, indexes and integrity triggers."""

from __future__ import annotations

from msgguard.log import get_logger
from msgguard.storage.connection import ConnectionManager

log = get_logger(__name__)

SCHEMA_VERSION = 1

_TABLES = [
    # -- directory ------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        role TEXT NOT NULL,
        full_name TEXT,
        email TEXT,
        avatar_url TEXT,
        org_id TEXT NOT NULL,
        active_workspace_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workspaces (
        id TEXT PRIMARY KEY,
        name TEXT,
        workspace_type TEXT NOT NULL CHECK (workspace_type IN ('personal', 'org')),
        owner_profile_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS org_memberships (
        org_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        role TEXT NOT NULL CHECK (role IN ('admin', 'coach')),
        status TEXT NOT NULL DEFAULT 'active',
        PRIMARY KEY (org_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS students (
        id TEXT PRIMARY KEY,
        org_id TEXT NOT NULL,
        first_name TEXT NOT NULL,
        last_name TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS student_accounts (
        user_id TEXT NOT NULL,
        student_id TEXT NOT NULL,
        PRIMARY KEY (user_id, student_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS student_assignments (
        student_id TEXT NOT NULL,
        coach_id TEXT NOT NULL,
        PRIMARY KEY (student_id, coach_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS org_groups (
        id TEXT PRIMARY KEY,
        org_id TEXT NOT NULL,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS org_group_coaches (
        group_id TEXT NOT NULL,
        coach_id TEXT NOT NULL,
        PRIMARY KEY (group_id, coach_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS org_group_students (
        group_id TEXT NOT NULL,
        student_id TEXT NOT NULL,
        PRIMARY KEY (group_id, student_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS coach_contacts (
        user_a_id TEXT NOT NULL,
        user_b_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (user_a_id, user_b_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS coach_contact_requests (
        id TEXT PRIMARY KEY,
        requester_user_id TEXT NOT NULL,
        target_user_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL,
        responded_at TEXT
    )
    """,
    # -- policy / charter / suspensions ---------------------------------
    """
    CREATE TABLE IF NOT EXISTS messaging_policies (
        org_id TEXT PRIMARY KEY,
        guard_mode TEXT NOT NULL DEFAULT 'flag',
        sensitive_words TEXT NOT NULL DEFAULT '[]',
        retention_days INTEGER NOT NULL DEFAULT 365,
        charter_version INTEGER NOT NULL DEFAULT 1,
        supervision_enabled INTEGER NOT NULL DEFAULT 1,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS charter_acceptances (
        org_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        charter_version INTEGER NOT NULL,
        accepted_at TEXT NOT NULL,
        PRIMARY KEY (org_id, user_id, charter_version)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messaging_suspensions (
        id TEXT PRIMARY KEY,
        org_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        reason TEXT NOT NULL,
        suspended_until TEXT,
        created_at TEXT NOT NULL,
        created_by TEXT,
        lifted_at TEXT,
        lifted_by TEXT
    )
    """,
    # -- threads and messages -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS message_threads (
        id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        workspace_org_id TEXT NOT NULL,
        student_id TEXT,
        group_id TEXT,
        participant_a_id TEXT NOT NULL,
        participant_b_id TEXT NOT NULL,
        last_message_id INTEGER,
        last_message_at TEXT,
        frozen_at TEXT,
        frozen_by TEXT,
        frozen_reason TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_thread_members (
        thread_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        last_read_message_id INTEGER,
        last_read_at TEXT,
        hidden_at TEXT,
        PRIMARY KEY (thread_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        thread_id TEXT NOT NULL,
        sender_user_id TEXT NOT NULL,
        body TEXT NOT NULL,
        created_at TEXT NOT NULL,
        redacted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_flags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        message_id INTEGER NOT NULL,
        thread_id TEXT NOT NULL,
        workspace_org_id TEXT NOT NULL,
        flag_type TEXT NOT NULL,
        matched_value TEXT NOT NULL,
        guard_mode TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    # -- moderation -----------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS message_reports (
        id TEXT PRIMARY KEY,
        workspace_org_id TEXT NOT NULL,
        thread_id TEXT NOT NULL,
        message_id INTEGER,
        reported_by TEXT,
        reason TEXT NOT NULL,
        details TEXT,
        status TEXT NOT NULL DEFAULT 'open'
            CHECK (status IN ('open', 'in_review', 'resolved')),
        freeze_applied INTEGER NOT NULL DEFAULT 0,
        resolved_by TEXT,
        resolved_at TEXT,
        snapshot TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK ((status = 'resolved') = (resolved_by IS NOT NULL AND resolved_at IS NOT NULL))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS moderation_audit (
        id TEXT PRIMARY KEY,
        workspace_org_id TEXT NOT NULL,
        actor_user_id TEXT NOT NULL,
        report_id TEXT,
        thread_id TEXT,
        action TEXT NOT NULL,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rate_limit_counters (
        limit_key TEXT NOT NULL,
        window_start INTEGER NOT NULL,
        count INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (limit_key, window_start)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_suspensions_org_user ON messaging_suspensions(org_id, user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_flags_thread ON message_flags(thread_id)",
    "CREATE INDEX IF NOT EXISTS idx_reports_workspace ON message_reports(workspace_org_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_audit_report ON moderation_audit(report_id)",
    "CREATE INDEX IF NOT EXISTS idx_members_user ON message_thread_members(user_id)",
]

_TRIGGERS = [
    """
    CREATE TRIGGER IF NOT EXISTS trg_report_snapshot_immutable
    BEFORE UPDATE OF snapshot ON message_reports
    WHEN NEW.snapshot IS NOT OLD.snapshot
    BEGIN
        SELECT RAISE(ABORT, 'report snapshot is immutable');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_audit_no_update
    BEFORE UPDATE ON moderation_audit
    BEGIN
        SELECT RAISE(ABORT, 'moderation audit is append-only');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_audit_no_delete
    BEFORE DELETE ON moderation_audit
    BEGIN
        SELECT RAISE(ABORT, 'moderation audit is append-only');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_charter_version_monotonic
    BEFORE UPDATE OF charter_version ON messaging_policies
    WHEN NEW.charter_version < OLD.charter_version
    BEGIN
        SELECT RAISE(ABORT, 'charter version only increases');
    END
    """,
]


class SchemaManager:
    """Creates the schema idempotently."""

    @staticmethod
    async def initialize_schema(db: ConnectionManager) -> None:
        async with db.transaction() as conn:
            for statement in _TABLES + _INDEXES + _TRIGGERS:
                await conn.execute(statement)
            await conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
        log.info("schema_initialized", version=SCHEMA_VERSION)

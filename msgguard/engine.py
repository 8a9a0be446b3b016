"""Wiring of every component around one storage connection."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from msgguard.config import Settings
from msgguard.log import get_logger
from msgguard.messages.access import ThreadAccessValidator
from msgguard.messages.service import MessagingService
from msgguard.messages.thread_store import ThreadStore
from msgguard.moderation.charter import CharterGate
from msgguard.moderation.reports import ReportLifecycle
from msgguard.moderation.service import ModerationService
from msgguard.moderation.suspensions import SuspensionRegistry
from msgguard.orgs.org_store import OrgStore
from msgguard.policies.policy_store import PolicyStore
from msgguard.ratelimit.limiter import RateLimiter
from msgguard.security.audit_log import ModerationAuditLog
from msgguard.storage.connection import ConnectionManager
from msgguard.storage.schema import SchemaManager
from msgguard.timeutil import Clock, utcnow

log = get_logger(__name__)


class MessagingEngine:
    """Owns the connection and exposes the services built on top of it."""

    def __init__(self, settings: Settings, clock: Clock = utcnow) -> None:
        self.settings = settings
        self.db = ConnectionManager(settings.db_path, timeout=settings.dependency_timeout)

        self.orgs = OrgStore(self.db, clock)
        self.policies = PolicyStore(self.db, clock)
        self.threads = ThreadStore(self.db, clock)
        self.suspensions = SuspensionRegistry(self.db, clock)
        self.charter = CharterGate(self.db, self.policies, clock)
        self.audit = ModerationAuditLog(self.db, clock)
        self.limiter = RateLimiter(self.db, settings.rate_limits, clock)
        self.validator = ThreadAccessValidator(self.threads, self.orgs, self.suspensions, self.charter)

        self.messaging = MessagingService(
            self.threads, self.orgs, self.policies, self.limiter, self.validator, clock
        )
        self.reports = ReportLifecycle(
            self.db, self.threads, self.orgs, self.policies, self.validator, self.audit, clock
        )
        self.moderation = ModerationService(
            self.orgs, self.policies, self.charter, self.suspensions, self.threads, self.audit, clock
        )

    async def start(self) -> None:
        await self.db.open()
        await SchemaManager.initialize_schema(self.db)
        log.info("engine_started", db_path=str(self.settings.db_path))

    async def stop(self) -> None:
        await self.audit.drain()
        await self.db.close()
        log.info("engine_stopped")


def build_engine(db_path: Optional[str | Path] = None, settings: Optional[Settings] = None) -> MessagingEngine:
    settings = settings or Settings()
    if db_path is not None:
        settings.db_path = Path(db_path)
    return MessagingEngine(settings)

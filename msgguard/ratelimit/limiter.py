"""Fixed-window request counter keyed by ``(action, actor)``.

The increment and the read of the counter happen inside one serialized write
transaction, so concurrent calls from the same actor never lose or double
count an increment.  If the counter store fails or times out the limiter
fails open: messaging availability wins over rate-limit strictness.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from msgguard.config import DEFAULT_RATE_LIMITS, RateLimitPolicy
from msgguard.errors import DependencyUnavailable, RateLimited
from msgguard.log import get_logger
from msgguard.storage.connection import ConnectionManager
from msgguard.timeutil import Clock, utcnow

log = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int = 0


def limit_key(action: str, actor_id: str) -> str:
    return f"messages:{action}:{actor_id}"


class RateLimiter:
    """Atomic fixed-window counters stored in ``rate_limit_counters``."""

    def __init__(
        self,
        db: ConnectionManager,
        policies: Optional[dict[str, RateLimitPolicy]] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db
        self._policies = dict(policies or DEFAULT_RATE_LIMITS)
        self._clock = clock

    def policy_for(self, action: str) -> Optional[RateLimitPolicy]:
        return self._policies.get(action)

    async def _increment(self, key: str, window_start: int) -> int:
        async with self._db.transaction() as conn:
            await conn.execute(
                "DELETE FROM rate_limit_counters WHERE limit_key = ? AND window_start < ?",
                (key, window_start),
            )
            await conn.execute(
                "INSERT INTO rate_limit_counters (limit_key, window_start, count) VALUES (?, ?, 1) "
                "ON CONFLICT (limit_key, window_start) DO UPDATE SET count = count + 1",
                (key, window_start),
            )
            cursor = await conn.execute(
                "SELECT count FROM rate_limit_counters WHERE limit_key = ? AND window_start = ?",
                (key, window_start),
            )
            row = await cursor.fetchone()
            await cursor.close()
        return int(row["count"]) if row else 1

    async def consume(self, actor_id: str, action: str) -> RateLimitResult:
        """Count one request and report whether it fits in the current window."""
        policy = self._policies.get(action)
        if policy is None:
            return RateLimitResult(allowed=True)

        now = self._clock().timestamp()
        window_start = int(now // policy.window_seconds) * policy.window_seconds
        key = limit_key(action, actor_id)

        try:
            count = await self._db.bounded(self._increment(key, window_start))
        except DependencyUnavailable as exc:
            log.error("rate_limit_backend_failed", action=action, actor_id=actor_id, error=str(exc))
            return RateLimitResult(allowed=True)

        if count <= policy.max_requests:
            return RateLimitResult(allowed=True)

        retry_after = max(1, math.ceil(window_start + policy.window_seconds - now))
        log.info("rate_limited", action=action, actor_id=actor_id, retry_after=retry_after)
        return RateLimitResult(allowed=False, retry_after_seconds=retry_after)

    async def enforce(self, actor_id: str, action: str) -> None:
        """Like :meth:`consume`, raising :class:`RateLimited` when denied."""
        result = await self.consume(actor_id, action)
        if not result.allowed:
            raise RateLimited(
                "Too many requests, retry later.",
                retry_after_seconds=result.retry_after_seconds,
            )

"""Database connection management: one long-lived aiosqlite connection.

Reads share the connection directly (WAL allows concurrent readers).  Writes
go through :meth:`ConnectionManager.transaction`, which serialises writers
with a semaphore and commits or rolls back as a unit.  Every public helper is
bounded by ``timeout`` seconds; timeouts and driver errors surface as
:class:`~msgguard.errors.DependencyUnavailable`.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Optional, Sequence, TypeVar

import aiosqlite

from msgguard.errors import DependencyUnavailable
from msgguard.log import get_logger

log = get_logger(__name__)

T = TypeVar("T")

_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA busy_timeout = 5000",
]


class ConnectionManager:
    """Wrapper around a single aiosqlite connection."""

    def __init__(self, path: str | Path, timeout: float = 5.0) -> None:
        self._path = Path(path)
        self.timeout = timeout
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_sem = asyncio.Semaphore(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._conn is not None:
            log.warning("db_open_ignored", path=str(self._path))
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._path)
        self._conn.row_factory = aiosqlite.Row
        for pragma in _PRAGMAS:
            await self._conn.execute(pragma)
        await self._conn.commit()
        log.info("db_opened", path=str(self._path))

    async def close(self) -> None:
        if self._conn is None:
            return
        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except aiosqlite.Error:
            log.exception("db_checkpoint_failed", path=str(self._path))
        finally:
            await self._conn.close()
            self._conn = None
            log.info("db_closed", path=str(self._path))

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise DependencyUnavailable("Database connection is not open")
        return self._conn

    # ------------------------------------------------------------------
    # Bounded access
    # ------------------------------------------------------------------

    async def bounded(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await *awaitable* within the timeout, normalising storage failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout or self.timeout)
        except asyncio.TimeoutError as exc:
            log.error("db_call_timed_out", timeout=timeout or self.timeout)
            raise DependencyUnavailable("Storage call timed out") from exc
        except aiosqlite.Error as exc:
            log.error("db_call_failed", error=str(exc))
            raise DependencyUnavailable(f"Storage error: {exc}") from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialised write transaction; rolls back on any failure or cancellation."""
        conn = self.connection
        async with self._write_sem:
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    async def _fetch_one(self, sql: str, params: Sequence[Any]) -> Optional[dict]:
        cursor = await self.connection.execute(sql, tuple(params))
        row = await cursor.fetchone()
        await cursor.close()
        return dict(row) if row is not None else None

    async def _fetch_all(self, sql: str, params: Sequence[Any]) -> list[dict]:
        cursor = await self.connection.execute(sql, tuple(params))
        rows = await cursor.fetchall()
        await cursor.close()
        return [dict(r) for r in rows]

    async def _execute(self, sql: str, params: Sequence[Any]) -> int:
        async with self.transaction() as conn:
            cursor = await conn.execute(sql, tuple(params))
            rowcount = cursor.rowcount
            await cursor.close()
        return rowcount

    async def _insert(self, sql: str, params: Sequence[Any]) -> int:
        async with self.transaction() as conn:
            cursor = await conn.execute(sql, tuple(params))
            last_id = cursor.lastrowid
            await cursor.close()
        return int(last_id or 0)

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        return await self.bounded(self._fetch_one(sql, params))

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        return await self.bounded(self._fetch_all(sql, params))

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run one write statement in its own transaction; returns rowcount."""
        return await self.bounded(self._execute(sql, params))

    async def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run one INSERT in its own transaction; returns ``lastrowid``."""
        return await self.bounded(self._insert(sql, params))

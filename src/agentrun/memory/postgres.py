"""
PostgreSQL memory backend.

One row per memory id in an auto-created table. Expiry is an explicit
column checked at read time; a read that finds an expired row deletes it.
Nothing sweeps expired rows proactively.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

import asyncpg

from ..domain.entities import DropPolicy
from ..domain.exceptions import ConfigurationError
from .base import DEFAULT_TTL, DEFAULT_WINDOW_SIZE, MemoryProvider

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


class IAsyncDBPool(Protocol):
    """Protocol for async database connection pools (asyncpg.Pool)."""

    def acquire(self) -> Any:
        """Acquire a connection from the pool (async context manager)."""
        ...


class PostgresMemory(MemoryProvider):
    """Chat memory persisted in PostgreSQL.

    Table layout::

        memory_id   VARCHAR(255) PRIMARY KEY
        memory_json TEXT NOT NULL
        expires_at  TIMESTAMPTZ NULL

    A pool may be injected; otherwise one is created from ``dsn`` on first
    use and kept until :meth:`aclose`.
    """

    backend_name = "postgres"

    def __init__(
        self,
        memory_id: str,
        dsn: Optional[str] = None,
        messages: int = DEFAULT_WINDOW_SIZE,
        ttl: timedelta = DEFAULT_TTL,
        drop: DropPolicy = DropPolicy.KEEP,
        table_name: str = "chat_memory",
        pool: Optional[IAsyncDBPool] = None,
    ):
        super().__init__(memory_id, messages=messages, ttl=ttl, drop=drop)
        if not _IDENTIFIER.match(table_name):
            raise ConfigurationError(f"Invalid table name: {table_name!r}")
        if pool is None and not dsn:
            raise ConfigurationError("PostgresMemory requires a dsn or a pool")
        self.dsn = dsn
        self.table_name = table_name
        self._pool = pool
        self._owns_pool = pool is None
        self._table_ready = False

    async def _get_pool(self) -> IAsyncDBPool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self.dsn, min_size=1, max_size=4)
            logger.info("Created Postgres pool for chat memory")
        return self._pool

    async def _ensure_table(self, conn: Any) -> None:
        if self._table_ready:
            return
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                memory_id VARCHAR(255) PRIMARY KEY,
                memory_json TEXT NOT NULL,
                expires_at TIMESTAMPTZ NULL
            )
            """
        )
        self._table_ready = True

    async def _read(self, memory_id: str) -> Optional[str]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await self._ensure_table(conn)
            row = await conn.fetchrow(
                f"SELECT memory_json, expires_at FROM {self.table_name} WHERE memory_id = $1",
                memory_id,
            )
            if row is None:
                return None

            expires_at = row["expires_at"]
            if expires_at is not None and expires_at <= datetime.now(timezone.utc):
                await conn.execute(
                    f"DELETE FROM {self.table_name} WHERE memory_id = $1",
                    memory_id,
                )
                logger.debug(f"Deleted expired chat memory {memory_id}")
                return None

            return row["memory_json"]

    async def _write(self, memory_id: str, payload: str, ttl: timedelta) -> None:
        expires_at = datetime.now(timezone.utc) + ttl
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await self._ensure_table(conn)
            await conn.execute(
                f"""
                INSERT INTO {self.table_name} (memory_id, memory_json, expires_at)
                VALUES ($1, $2, $3)
                ON CONFLICT (memory_id) DO UPDATE SET
                    memory_json = EXCLUDED.memory_json,
                    expires_at = EXCLUDED.expires_at
                """,
                memory_id,
                payload,
                expires_at,
            )

    async def _delete(self, memory_id: str) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await self._ensure_table(conn)
            await conn.execute(
                f"DELETE FROM {self.table_name} WHERE memory_id = $1",
                memory_id,
            )

    async def aclose(self) -> None:
        """Close the pool when this backend created it."""
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None

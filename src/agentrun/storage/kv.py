"""
Embedded key/value store backed by SQLite.

Entries are namespaced and may carry an expiry. Expired entries read as
absent and are removed by the read that finds them; there is no sweeper.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

from ..domain.ports import IKeyValueStore

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_entries (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    expires_at REAL NULL,
    PRIMARY KEY (namespace, key)
)
"""


class EmbeddedKVStore(IKeyValueStore):
    """SQLite key/value store with auto-commit/rollback per operation."""

    def __init__(self, db_path: str | Path):
        self._db_path = str(db_path)
        self._initialized = False

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection with the schema in place.

        Commits on success, rolls back on exception.
        """
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._db_path) as conn:
            conn.row_factory = aiosqlite.Row
            if not self._initialized:
                await conn.execute(_CREATE_TABLE)
                self._initialized = True
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                logger.exception("Key/value operation failed, transaction rolled back.")
                raise

    async def get(self, namespace: str, key: str) -> Optional[str]:
        async with self.acquire() as conn:
            cursor = await conn.execute(
                "SELECT value, expires_at FROM kv_entries WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            row = await cursor.fetchone()
            await cursor.close()
            if row is None:
                return None

            expires_at = row["expires_at"]
            if expires_at is not None and expires_at <= time.time():
                await conn.execute(
                    "DELETE FROM kv_entries WHERE namespace = ? AND key = ?",
                    (namespace, key),
                )
                logger.debug(f"Removed expired entry {namespace}/{key}")
                return None

            return row["value"]

    async def put(
        self,
        namespace: str,
        key: str,
        value: str,
        ttl: Optional[timedelta] = None,
    ) -> None:
        expires_at = time.time() + ttl.total_seconds() if ttl is not None else None
        async with self.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO kv_entries (namespace, key, value, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (namespace, key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (namespace, key, value, expires_at),
            )

    async def delete(self, namespace: str, key: str) -> bool:
        async with self.acquire() as conn:
            cursor = await conn.execute(
                "DELETE FROM kv_entries WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            deleted = cursor.rowcount > 0
            await cursor.close()
            return deleted

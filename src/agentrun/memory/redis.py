"""
Redis memory backend.

One string key per memory id, written with SETEX so Redis enforces the
expiry itself (seconds resolution).
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Any, Optional

import redis.asyncio as redis

from ..domain.entities import DropPolicy
from .base import DEFAULT_TTL, DEFAULT_WINDOW_SIZE, MemoryProvider

logger = logging.getLogger(__name__)


class RedisMemory(MemoryProvider):
    """Chat memory persisted in Redis.

    Usage:
        memory = RedisMemory("conv-42", url="redis://localhost:6379", messages=5)
        window = await memory.chat_memory(run_context)
        ...
        await memory.close(run_context, window)

    A client may be injected; otherwise one is created from ``url`` on
    first use and kept until :meth:`aclose`.
    """

    backend_name = "redis"

    def __init__(
        self,
        memory_id: str,
        url: str = "redis://localhost:6379",
        messages: int = DEFAULT_WINDOW_SIZE,
        ttl: timedelta = DEFAULT_TTL,
        drop: DropPolicy = DropPolicy.KEEP,
        key_prefix: str = "",
        client: Optional[Any] = None,
    ):
        super().__init__(memory_id, messages=messages, ttl=ttl, drop=drop)
        self.url = url
        self.key_prefix = key_prefix
        self._client = client
        self._owns_client = client is None

    def _key(self, memory_id: str) -> str:
        return f"{self.key_prefix}{memory_id}"

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
            logger.info(f"Connected Redis memory backend to {self.url}")
        return self._client

    async def _read(self, memory_id: str) -> Optional[str]:
        return await self._get_client().get(self._key(memory_id))

    async def _write(self, memory_id: str, payload: str, ttl: timedelta) -> None:
        seconds = max(1, math.ceil(ttl.total_seconds()))
        await self._get_client().setex(self._key(memory_id), seconds, payload)

    async def _delete(self, memory_id: str) -> None:
        await self._get_client().delete(self._key(memory_id))

    async def aclose(self) -> None:
        """Close the client when this backend created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

"""
Memory backend on the embedded key/value store.

Records live in the ``namespace`` partition of the store, keyed by
``<run namespace>/<memory_id>`` so runs from different namespaces never
share history. Each entry expires at now + ttl; the store hides expired
entries on read.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from ..domain.entities import DropPolicy, RunContext
from ..domain.ports import IKeyValueStore
from .base import DEFAULT_TTL, DEFAULT_WINDOW_SIZE, MemoryProvider

logger = logging.getLogger(__name__)


class KVStoreMemory(MemoryProvider):
    """Chat memory persisted in an :class:`IKeyValueStore`."""

    backend_name = "kv"

    def __init__(
        self,
        store: IKeyValueStore,
        memory_id: str,
        messages: int = DEFAULT_WINDOW_SIZE,
        ttl: timedelta = DEFAULT_TTL,
        drop: DropPolicy = DropPolicy.KEEP,
        namespace: str = "agentrun.memory",
    ):
        super().__init__(memory_id, messages=messages, ttl=ttl, drop=drop)
        self.store = store
        self.namespace = namespace

    def record_key(self, run_context: RunContext) -> str:
        return f"{run_context.namespace}/{self.memory_id}"

    async def _read(self, memory_id: str) -> Optional[str]:
        return await self.store.get(self.namespace, memory_id)

    async def _write(self, memory_id: str, payload: str, ttl: timedelta) -> None:
        await self.store.put(self.namespace, memory_id, payload, ttl)

    async def _delete(self, memory_id: str) -> None:
        await self.store.delete(self.namespace, memory_id)

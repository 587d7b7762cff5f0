"""
Chat memory window and the shared memory provider contract.

The three backends (embedded key/value, Redis, Postgres) only implement
raw read/write/delete of a serialized record; drop policy, windowing and
error wrapping live here so they behave identically everywhere.
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from datetime import timedelta
from typing import Optional

from ..domain.entities import (
    ChatMessage,
    DropPolicy,
    MessageRole,
    RunContext,
    messages_from_json,
    messages_to_json,
)
from ..domain.exceptions import ConfigurationError, MemoryIOError
from ..domain.ports import IMemoryProvider

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 10
DEFAULT_TTL = timedelta(hours=1)


class ChatMemory:
    """Sliding window over a conversation.

    Oldest messages are evicted first. The system message is never evicted
    (a different system message replaces it), the most recent message is
    never evicted, and evicting an AI message that requested tools also
    evicts the tool results answering it.
    """

    def __init__(
        self,
        max_messages: int = DEFAULT_WINDOW_SIZE,
        messages: Optional[list[ChatMessage]] = None,
        memory_id: Optional[str] = None,
    ):
        if max_messages < 1:
            raise ConfigurationError(f"Memory window must be at least 1, got {max_messages}")
        self.max_messages = max_messages
        self.memory_id = memory_id
        self._messages: list[ChatMessage] = []
        for message in messages or []:
            self.add(message)

    def add(self, message: ChatMessage) -> None:
        if message.role == MessageRole.SYSTEM:
            existing = self.system_message()
            if existing is not None:
                if existing.content == message.content:
                    return
                self._messages.remove(existing)
        self._messages.append(message)
        self._ensure_capacity()

    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def system_message(self) -> Optional[ChatMessage]:
        for message in self._messages:
            if message.role == MessageRole.SYSTEM:
                return message
        return None

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)

    def _ensure_capacity(self) -> None:
        while len(self._messages) > self.max_messages:
            index = next(
                (i for i, m in enumerate(self._messages) if m.role != MessageRole.SYSTEM),
                None,
            )
            if index is None or index == len(self._messages) - 1:
                return
            evicted = self._messages.pop(index)
            if evicted.role == MessageRole.AI and evicted.has_tool_requests:
                while (
                    index < len(self._messages) - 1
                    and self._messages[index].role == MessageRole.TOOL
                ):
                    self._messages.pop(index)


class MemoryProvider(IMemoryProvider):
    """Base class for memory backends.

    Subclasses implement ``_read``, ``_write`` and ``_delete`` against their
    store. ``_read`` must return None for an absent or expired record.

    Attributes:
        memory_id: Key of the conversation this provider persists
        messages: Window size loaded into each run
        ttl: Record time-to-live, refreshed on every save
        drop: Drop policy
    """

    backend_name = "memory"

    def __init__(
        self,
        memory_id: str,
        messages: int = DEFAULT_WINDOW_SIZE,
        ttl: timedelta = DEFAULT_TTL,
        drop: DropPolicy = DropPolicy.KEEP,
    ):
        if not memory_id:
            raise ConfigurationError("memory_id is required")
        if messages < 1:
            raise ConfigurationError(f"Memory window must be at least 1, got {messages}")
        if ttl.total_seconds() <= 0:
            raise ConfigurationError(f"Memory ttl must be positive, got {ttl}")
        self.memory_id = memory_id
        self.messages = messages
        self.ttl = ttl
        self.drop = DropPolicy(drop)

    # ------------------------------------------
    # Backend primitives
    # ------------------------------------------

    @abstractmethod
    async def _read(self, memory_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def _write(self, memory_id: str, payload: str, ttl: timedelta) -> None:
        pass

    @abstractmethod
    async def _delete(self, memory_id: str) -> None:
        pass

    # ------------------------------------------
    # Contract
    # ------------------------------------------

    async def load(self, memory_id: str, window_size: int) -> list[ChatMessage]:
        try:
            payload = await self._read(memory_id)
            if payload is None:
                logger.debug(f"No stored memory for {memory_id} in {self.backend_name}")
                return []

            if self.drop == DropPolicy.BEFORE_TASKRUN:
                await self._delete(memory_id)
                logger.info(f"Dropped memory {memory_id} before run ({self.backend_name})")
                return []

            stored = messages_from_json(payload)
        except MemoryIOError:
            raise
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise MemoryIOError(
                f"Stored chat memory for {memory_id} is not readable: {e}",
                memory_id=memory_id,
                backend=self.backend_name,
                original_error=e,
            ) from e
        except Exception as e:
            raise MemoryIOError(
                f"Failed to load chat memory {memory_id} from {self.backend_name}: {e}",
                memory_id=memory_id,
                backend=self.backend_name,
                original_error=e,
            ) from e

        return ChatMemory(window_size, stored, memory_id).messages()

    async def save(
        self, memory_id: str, messages: list[ChatMessage], ttl: timedelta
    ) -> None:
        try:
            if self.drop == DropPolicy.AFTER_TASKRUN:
                await self._delete(memory_id)
                logger.info(f"Dropped memory {memory_id} after run ({self.backend_name})")
                return

            await self._write(memory_id, messages_to_json(messages), ttl)
            logger.debug(
                f"Saved {len(messages)} messages for {memory_id} to {self.backend_name}"
            )
        except MemoryIOError:
            raise
        except Exception as e:
            raise MemoryIOError(
                f"Failed to save chat memory {memory_id} to {self.backend_name}: {e}",
                memory_id=memory_id,
                backend=self.backend_name,
                original_error=e,
            ) from e

    def record_key(self, run_context: RunContext) -> str:
        """Key the run's record is stored under."""
        return self.memory_id

    async def chat_memory(self, run_context: RunContext) -> ChatMemory:
        messages = await self.load(self.record_key(run_context), self.messages)
        return ChatMemory(self.messages, messages, self.memory_id)

    async def close(self, run_context: RunContext, memory: ChatMemory) -> None:
        await self.save(self.record_key(run_context), memory.messages(), self.ttl)

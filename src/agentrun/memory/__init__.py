"""Conversational memory: the window and its three persistence backends."""

from .base import ChatMemory, MemoryProvider
from .kv import KVStoreMemory
from .postgres import PostgresMemory
from .redis import RedisMemory

__all__ = [
    "ChatMemory",
    "MemoryProvider",
    "KVStoreMemory",
    "PostgresMemory",
    "RedisMemory",
]

"""
Runtime settings for the agent runner.

Values come from environment variables (optionally a ``.env`` file)
with defaults suitable for local development.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class RuntimeSettings:
    """Process-wide settings.

    Attributes:
        log_level: Root log level name
        log_format: Log record format
        output_dir: Durable directory for declared output files
        memory_ttl_seconds: Default memory time-to-live
        memory_window: Default memory window size
        kv_path: SQLite file backing the embedded key/value store
        redis_url: Default Redis URL for the Redis memory backend
        database_url: Default DSN for the Postgres memory backend
        langfuse_public_key: Langfuse public key (tracing disabled when unset)
        langfuse_secret_key: Langfuse secret key
        langfuse_host: Langfuse host
    """

    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT
    output_dir: str = ".agentrun/outputs"
    memory_ttl_seconds: int = 3600
    memory_window: int = 10
    kv_path: str = ".agentrun/kv.sqlite3"
    redis_url: str = "redis://localhost:6379"
    database_url: Optional[str] = None
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_host: str = "https://cloud.langfuse.com"

    @property
    def memory_ttl(self) -> timedelta:
        return timedelta(seconds=self.memory_ttl_seconds)

    @property
    def langfuse_enabled(self) -> bool:
        return bool(self.langfuse_public_key and self.langfuse_secret_key)

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        """Build settings from the environment."""
        load_dotenv()
        return cls(
            log_level=os.getenv("AGENTRUN_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("AGENTRUN_LOG_FORMAT", DEFAULT_LOG_FORMAT),
            output_dir=os.getenv("AGENTRUN_OUTPUT_DIR", ".agentrun/outputs"),
            memory_ttl_seconds=int(os.getenv("AGENTRUN_MEMORY_TTL_SECONDS", "3600")),
            memory_window=int(os.getenv("AGENTRUN_MEMORY_WINDOW", "10")),
            kv_path=os.getenv("AGENTRUN_KV_PATH", ".agentrun/kv.sqlite3"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            database_url=os.getenv("DATABASE_URL"),
            langfuse_public_key=os.getenv("LANGFUSE_PUBLIC_KEY"),
            langfuse_secret_key=os.getenv("LANGFUSE_SECRET_KEY"),
            langfuse_host=os.getenv("LANGFUSE_HOST", "https://cloud.langfuse.com"),
        )


@lru_cache(maxsize=1)
def get_settings() -> RuntimeSettings:
    """Return the cached process settings."""
    return RuntimeSettings.from_env()


def configure_logging(settings: Optional[RuntimeSettings] = None) -> None:
    """Configure root logging from settings."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=settings.log_format,
    )

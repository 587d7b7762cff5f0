"""
Tests for runtime settings.
"""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest

from src.agentrun.config import (
    DEFAULT_LOG_FORMAT,
    RuntimeSettings,
    configure_logging,
    get_settings,
)

ENV_VARS = [
    "AGENTRUN_LOG_LEVEL",
    "AGENTRUN_OUTPUT_DIR",
    "AGENTRUN_MEMORY_TTL_SECONDS",
    "AGENTRUN_MEMORY_WINDOW",
    "AGENTRUN_KV_PATH",
    "REDIS_URL",
    "DATABASE_URL",
    "LANGFUSE_PUBLIC_KEY",
    "LANGFUSE_SECRET_KEY",
    "LANGFUSE_HOST",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    with patch("src.agentrun.config.load_dotenv"):
        yield
    get_settings.cache_clear()


class TestRuntimeSettings:
    """Tests for settings loaded from the environment."""

    def test_defaults(self):
        settings = RuntimeSettings.from_env()

        assert settings.log_level == "INFO"
        assert settings.memory_window == 10
        assert settings.memory_ttl == timedelta(hours=1)
        assert settings.redis_url == "redis://localhost:6379"
        assert settings.database_url is None
        assert settings.langfuse_enabled is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("AGENTRUN_LOG_LEVEL", "debug")
        monkeypatch.setenv("AGENTRUN_MEMORY_TTL_SECONDS", "90")
        monkeypatch.setenv("AGENTRUN_MEMORY_WINDOW", "25")
        monkeypatch.setenv("DATABASE_URL", "postgresql://agent:secret@db/agents")
        monkeypatch.setenv("LANGFUSE_PUBLIC_KEY", "pk-lf-1")
        monkeypatch.setenv("LANGFUSE_SECRET_KEY", "sk-lf-1")

        settings = RuntimeSettings.from_env()

        assert settings.log_level == "DEBUG"
        assert settings.memory_ttl == timedelta(seconds=90)
        assert settings.memory_window == 25
        assert settings.database_url == "postgresql://agent:secret@db/agents"
        assert settings.langfuse_enabled is True

    def test_settings_cached(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("AGENTRUN_MEMORY_WINDOW", "3")

        assert get_settings() is first
        get_settings.cache_clear()
        assert get_settings().memory_window == 3


class TestConfigureLogging:
    def test_applies_level_and_format(self):
        with patch("src.agentrun.config.logging.basicConfig") as basic_config:
            configure_logging(RuntimeSettings(log_level="WARNING"))

        basic_config.assert_called_once_with(level=logging.WARNING, format=DEFAULT_LOG_FORMAT)

    def test_unknown_level_falls_back_to_info(self):
        with patch("src.agentrun.config.logging.basicConfig") as basic_config:
            configure_logging(RuntimeSettings(log_level="CHATTY"))

        assert basic_config.call_args.kwargs["level"] == logging.INFO

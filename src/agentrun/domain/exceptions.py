"""
Exception taxonomy for agent runs.

Every category is fatal to the current invocation and is never retried
internally; retry policy belongs to the host environment.
"""

from __future__ import annotations

from typing import Optional

from .entities import ErrorType


class AgentError(Exception):
    """Base exception for agent run errors."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.FATAL,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


class ConfigurationError(AgentError):
    """Unsupported or contradictory configuration, or a missing rendered value."""


class ToolArgumentsError(AgentError):
    """Model-produced tool arguments could not be parsed or validated."""

    def __init__(
        self,
        message: str,
        tool_name: str,
        request_id: Optional[str],
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, ErrorType.FATAL, original_error)
        self.tool_name = tool_name
        self.request_id = request_id


class ToolExecutionError(AgentError):
    """A tool executor failed while running a call."""

    def __init__(
        self,
        message: str,
        tool_name: str,
        request_id: Optional[str],
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, ErrorType.FATAL, original_error)
        self.tool_name = tool_name
        self.request_id = request_id


class MemoryIOError(AgentError):
    """A memory backend was unreachable or a query failed."""

    def __init__(
        self,
        message: str,
        memory_id: str,
        backend: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, ErrorType.FATAL, original_error)
        self.memory_id = memory_id
        self.backend = backend


class ModelProviderError(AgentError):
    """A model vendor call failed."""


class OutputFileError(AgentError):
    """A declared output file is missing or escapes the working directory."""

"""
Base Model Provider Implementation.

Provides common functionality for all model providers: message
validation, request/response logging and listener notification.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ..domain.entities import (
    ChatConfiguration,
    ChatMessage,
    ChatResponse,
    FinishReason,
    MessageRole,
    ToolSpecification,
)
from ..domain.exceptions import ConfigurationError
from ..domain.ports import (
    IChatModel,
    IChatModelListener,
    IEmbeddingModel,
    IImageModel,
    IModelProvider,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderConfig:
    """Configuration for model providers.

    Attributes:
        api_key: API key for the provider
        model: Chat model name
        embedding_model: Model for embeddings (if supported)
        image_model: Model for image generation (if supported)
        base_url: Optional custom base URL
        timeout: Request timeout in seconds
        max_retries: Maximum retry attempts inside the vendor SDK
        extra: Vendor-specific settings
    """

    api_key: Optional[str] = None
    model: Optional[str] = None
    embedding_model: Optional[str] = None
    image_model: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 3
    extra: dict[str, Any] = field(default_factory=dict)


def validate_messages(messages: list[ChatMessage], initial: bool = False) -> None:
    """Reject message lists no completion step may receive.

    At most one SYSTEM message is allowed. The list must end with a USER
    message; inside the tool loop it may instead end with TOOL results.

    Raises:
        ConfigurationError: On any violation
    """
    if not messages:
        raise ConfigurationError("Cannot call a chat model with no messages")

    system_count = sum(1 for m in messages if m.role == MessageRole.SYSTEM)
    if system_count > 1:
        raise ConfigurationError(
            f"At most one system message is allowed, got {system_count}"
        )

    last = messages[-1].role
    allowed = (MessageRole.USER,) if initial else (MessageRole.USER, MessageRole.TOOL)
    if last not in allowed:
        raise ConfigurationError(
            f"Message list must end with a user message, got {last.value}"
        )


class BaseChatModel(IChatModel, ABC):
    """Base class for chat model handles.

    Subclasses implement ``_chat`` for their vendor API.
    """

    FINISH_REASONS: dict[str, FinishReason] = {}

    def __init__(
        self,
        model: str,
        configuration: ChatConfiguration,
    ):
        self._model = model
        self.configuration = configuration
        self.listeners: list[IChatModelListener] = []

    @property
    def model_name(self) -> str:
        return self._model

    def add_listener(self, listener: IChatModelListener) -> BaseChatModel:
        self.listeners.append(listener)
        return self

    def _finish_reason(self, raw: Optional[str]) -> FinishReason:
        if raw is None:
            return FinishReason.STOP
        return self.FINISH_REASONS.get(raw, FinishReason.OTHER)

    def _notify(self, event: str, *args: Any) -> None:
        for listener in self.listeners:
            try:
                getattr(listener, event)(*args)
            except Exception as e:
                logger.warning(f"Chat model listener {type(listener).__name__} failed: {e}")

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: Optional[list[ToolSpecification]] = None,
    ) -> ChatResponse:
        validate_messages(messages)

        if self.configuration.log_requests:
            logger.info(
                f"Chat request to {self.model_name}: {len(messages)} messages, "
                f"{len(tools or [])} tools, last={messages[-1].content!r}"
            )

        self._notify("on_request", self.model_name)
        started = time.perf_counter()
        response = await self._chat(messages, tools or [])
        duration_ms = (time.perf_counter() - started) * 1000
        self._notify("on_response", self.model_name, duration_ms)

        if self.configuration.log_responses:
            logger.info(
                f"Chat response from {self.model_name} in {duration_ms:.0f}ms: "
                f"finish={response.finish_reason.value}, "
                f"tool_requests={[r.name for r in response.tool_requests]}, "
                f"text={response.text!r}"
            )

        return response

    @abstractmethod
    async def _chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpecification],
    ) -> ChatResponse:
        """Call the vendor API. Must be implemented by subclasses."""
        pass


class BaseModelProvider(IModelProvider, ABC):
    """Base class for model providers.

    Image and embedding models are unsupported unless a subclass overrides
    the corresponding method.
    """

    provider_name = "base"

    def __init__(self, config: ProviderConfig):
        self.config = config

    def validate_configuration(self, configuration: ChatConfiguration) -> None:
        """Reject knobs this provider cannot honour.

        Raises:
            ConfigurationError: On unsupported or contradictory settings
        """
        response_format = configuration.response_format
        if (
            response_format is not None
            and response_format.json_schema is not None
            and not configuration.wants_json
        ):
            raise ConfigurationError("`json_schema` is only allowed with the JSON response format")
        if configuration.thinking_budget_tokens is not None and configuration.thinking_budget_tokens < 0:
            raise ConfigurationError("`thinking_budget_tokens` must not be negative")

    @abstractmethod
    def chat_model(self, configuration: ChatConfiguration) -> BaseChatModel:
        pass

    def image_model(self) -> IImageModel:
        raise ConfigurationError(f"Provider {self.provider_name} does not support image models")

    def embedding_model(self) -> IEmbeddingModel:
        raise ConfigurationError(f"Provider {self.provider_name} does not support embedding models")

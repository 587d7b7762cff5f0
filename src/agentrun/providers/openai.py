"""
OpenAI Model Provider.

Chat completions with tool calling and structured output, image
generation and embeddings through the official async SDK.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..domain.entities import (
    ChatConfiguration,
    ChatMessage,
    ChatResponse,
    ErrorType,
    FinishReason,
    ImageResult,
    MessageRole,
    TokenUsage,
    ToolExecutionRequest,
    ToolSpecification,
)
from ..domain.exceptions import ConfigurationError, ModelProviderError
from ..domain.ports import IEmbeddingModel, IImageModel
from .base import BaseChatModel, BaseModelProvider, ProviderConfig

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring openai if not used
try:
    import openai
    from openai import AsyncOpenAI

    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False
    openai = None
    AsyncOpenAI = None


def _wrap_error(e: Exception, action: str) -> ModelProviderError:
    if isinstance(e, openai.RateLimitError):
        logger.warning(f"Rate limited by OpenAI during {action}: {e}")
        return ModelProviderError(f"Rate limited: {e}", ErrorType.RATE_LIMIT, e)
    if isinstance(e, openai.APITimeoutError):
        logger.error(f"OpenAI API timeout during {action}: {e}")
        return ModelProviderError(f"Request timed out: {e}", ErrorType.TIMEOUT, e)
    logger.error(f"OpenAI API error during {action}: {e}")
    return ModelProviderError(f"OpenAI {action} failed: {e}", ErrorType.RECOVERABLE, e)


class OpenAIChatModel(BaseChatModel):
    """Chat model handle on the OpenAI chat completions API."""

    FINISH_REASONS = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
        "tool_calls": FinishReason.TOOL_EXECUTION,
        "function_call": FinishReason.TOOL_EXECUTION,
        "content_filter": FinishReason.CONTENT_FILTER,
    }

    def __init__(self, client: Any, model: str, configuration: ChatConfiguration):
        super().__init__(model, configuration)
        self.client = client

    def _format_messages_for_api(
        self, messages: list[ChatMessage]
    ) -> list[dict[str, Any]]:
        """Convert messages to OpenAI format."""
        api_messages = []
        for msg in messages:
            if msg.role == MessageRole.TOOL:
                api_messages.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.role == MessageRole.AI:
                api_msg: dict[str, Any] = {
                    "role": "assistant",
                    "content": msg.content or None,
                }
                if msg.tool_requests:
                    api_msg["tool_calls"] = [
                        {
                            "id": r.id,
                            "type": "function",
                            "function": {"name": r.name, "arguments": r.arguments},
                        }
                        for r in msg.tool_requests
                    ]
                api_messages.append(api_msg)
            else:
                api_messages.append({"role": msg.role.value, "content": msg.content})
        return api_messages

    def _response_format(self) -> Optional[dict[str, Any]]:
        if not self.configuration.wants_json:
            return None
        response_format = self.configuration.response_format
        if response_format.json_schema is None:
            return {"type": "json_object"}
        json_schema: dict[str, Any] = {
            "name": "response",
            "schema": response_format.json_schema,
        }
        if response_format.json_schema_description:
            json_schema["description"] = response_format.json_schema_description
        return {"type": "json_schema", "json_schema": json_schema}

    async def _chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpecification],
    ) -> ChatResponse:
        cfg = self.configuration
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": self._format_messages_for_api(messages),
        }
        if cfg.temperature is not None:
            kwargs["temperature"] = cfg.temperature
        if cfg.top_p is not None:
            kwargs["top_p"] = cfg.top_p
        if cfg.seed is not None:
            kwargs["seed"] = cfg.seed
        if cfg.max_tokens is not None:
            kwargs["max_completion_tokens"] = cfg.max_tokens
        response_format = self._response_format()
        if response_format is not None:
            kwargs["response_format"] = response_format
        if tools:
            kwargs["tools"] = [tool.to_openai_format() for tool in tools]
            kwargs["tool_choice"] = "auto"

        try:
            completion = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            raise _wrap_error(e, "chat") from e

        choice = completion.choices[0]
        message = choice.message
        requests = [
            ToolExecutionRequest(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )
            for tc in (message.tool_calls or [])
        ]

        usage = completion.usage
        token_usage = TokenUsage(
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
        )

        return ChatResponse(
            message=ChatMessage.ai(message.content or "", requests),
            token_usage=token_usage,
            finish_reason=self._finish_reason(choice.finish_reason),
            model=completion.model,
        )


class OpenAIImageModel(IImageModel):
    def __init__(self, client: Any, model: str):
        self.client = client
        self.model = model

    async def generate(self, prompt: str) -> ImageResult:
        try:
            response = await self.client.images.generate(model=self.model, prompt=prompt, n=1)
        except openai.APIError as e:
            raise _wrap_error(e, "image generation") from e
        image = response.data[0]
        return ImageResult(
            url=image.url,
            base64_data=image.b64_json,
            revised_prompt=getattr(image, "revised_prompt", None),
        )


class OpenAIEmbeddingModel(IEmbeddingModel):
    def __init__(self, client: Any, model: str):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self.client.embeddings.create(model=self.model, input=text)
        except openai.APIError as e:
            raise _wrap_error(e, "embedding") from e
        return response.data[0].embedding


class OpenAIProvider(BaseModelProvider):
    """OpenAI provider.

    Supports:
    - Chat completions with tool calling
    - Seeds and JSON / JSON-schema response formats
    - Image generation and embeddings

    ``top_k`` is not part of the OpenAI API and is rejected.

    Usage:
        provider = OpenAIProvider(ProviderConfig(api_key="sk-...", model="gpt-4o-mini"))
        model = provider.chat_model(ChatConfiguration(temperature=0.2))
    """

    provider_name = "openai"

    DEFAULT_MODEL = "gpt-4o-mini"
    DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
    DEFAULT_IMAGE_MODEL = "dall-e-3"

    def __init__(self, config: ProviderConfig):
        """Initialize the OpenAI provider.

        Raises:
            ImportError: If openai package is not installed
        """
        if not OPENAI_AVAILABLE:
            raise ImportError(
                "openai package is required for OpenAIProvider. "
                "Install with: pip install openai"
            )

        super().__init__(config)

        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    def validate_configuration(self, configuration: ChatConfiguration) -> None:
        super().validate_configuration(configuration)
        if configuration.top_k is not None:
            raise ConfigurationError("OpenAI models don't support setting `top_k`")

    def chat_model(self, configuration: ChatConfiguration) -> OpenAIChatModel:
        self.validate_configuration(configuration)
        return OpenAIChatModel(
            self.client, self.config.model or self.DEFAULT_MODEL, configuration
        )

    def image_model(self) -> OpenAIImageModel:
        return OpenAIImageModel(self.client, self.config.image_model or self.DEFAULT_IMAGE_MODEL)

    def embedding_model(self) -> OpenAIEmbeddingModel:
        return OpenAIEmbeddingModel(
            self.client, self.config.embedding_model or self.DEFAULT_EMBEDDING_MODEL
        )

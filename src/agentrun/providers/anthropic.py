"""
Anthropic Claude Model Provider.

Chat with tool calling and extended thinking through the official
async SDK. Claude has no image or embedding models.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from ..domain.entities import (
    ChatConfiguration,
    ChatMessage,
    ChatResponse,
    ErrorType,
    FinishReason,
    MessageRole,
    TokenUsage,
    ToolExecutionRequest,
    ToolSpecification,
)
from ..domain.exceptions import ConfigurationError, ModelProviderError
from .base import BaseChatModel, BaseModelProvider, ProviderConfig

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring anthropic if not used
try:
    import anthropic
    from anthropic import AsyncAnthropic

    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False
    anthropic = None
    AsyncAnthropic = None

DEFAULT_MAX_TOKENS = 4096
DEFAULT_THINKING_BUDGET = 1024


def _parse_arguments(raw: str) -> Any:
    try:
        return json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        return {"raw": raw}


class AnthropicChatModel(BaseChatModel):
    """Chat model handle on the Anthropic messages API."""

    FINISH_REASONS = {
        "end_turn": FinishReason.STOP,
        "stop_sequence": FinishReason.STOP,
        "max_tokens": FinishReason.LENGTH,
        "tool_use": FinishReason.TOOL_EXECUTION,
        "refusal": FinishReason.CONTENT_FILTER,
    }

    def __init__(self, client: Any, model: str, configuration: ChatConfiguration):
        super().__init__(model, configuration)
        self.client = client

    def _format_messages_for_api(
        self, messages: list[ChatMessage]
    ) -> tuple[Optional[str], list[dict[str, Any]]]:
        """Convert messages to Anthropic format.

        Anthropic takes the system prompt as a separate parameter and
        expects consecutive tool results in one user message. Signed
        thinking blocks lead the assistant turn they were returned with.

        Returns:
            Tuple of (system_prompt, messages_list)
        """
        system: Optional[str] = None
        api_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system = msg.content
            elif msg.role == MessageRole.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                previous = api_messages[-1] if api_messages else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    api_messages.append({"role": "user", "content": [block]})
            elif msg.role == MessageRole.AI:
                content: list[dict[str, Any]] = [dict(b) for b in msg.thinking_blocks]
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for r in msg.tool_requests:
                    content.append({
                        "type": "tool_use",
                        "id": r.id,
                        "name": r.name,
                        "input": _parse_arguments(r.arguments),
                    })
                api_messages.append({"role": "assistant", "content": content})
            else:
                api_messages.append({"role": "user", "content": msg.content})

        return system, api_messages

    async def _chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpecification],
    ) -> ChatResponse:
        cfg = self.configuration
        system, api_messages = self._format_messages_for_api(messages)

        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": api_messages,
            "max_tokens": cfg.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system:
            kwargs["system"] = system
        if cfg.thinking_enabled:
            kwargs["thinking"] = {
                "type": "enabled",
                "budget_tokens": cfg.thinking_budget_tokens or DEFAULT_THINKING_BUDGET,
            }
        elif cfg.temperature is not None:
            # Sampling knobs are not accepted together with thinking
            kwargs["temperature"] = cfg.temperature
        if cfg.top_p is not None and not cfg.thinking_enabled:
            kwargs["top_p"] = cfg.top_p
        if cfg.top_k is not None and not cfg.thinking_enabled:
            kwargs["top_k"] = cfg.top_k
        if tools:
            kwargs["tools"] = [tool.to_anthropic_format() for tool in tools]

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            logger.warning(f"Rate limited by Anthropic: {e}")
            raise ModelProviderError(f"Rate limited: {e}", ErrorType.RATE_LIMIT, e) from e
        except anthropic.APITimeoutError as e:
            logger.error(f"Anthropic API timeout: {e}")
            raise ModelProviderError(f"Request timed out: {e}", ErrorType.TIMEOUT, e) from e
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise ModelProviderError(f"Anthropic chat failed: {e}", ErrorType.RECOVERABLE, e) from e

        text_parts: list[str] = []
        thinking_parts: list[str] = []
        thinking_blocks: list[dict[str, Any]] = []
        requests: list[ToolExecutionRequest] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "thinking":
                thinking_parts.append(block.thinking)
                thinking_blocks.append({
                    "type": "thinking",
                    "thinking": block.thinking,
                    "signature": block.signature,
                })
            elif block.type == "redacted_thinking":
                thinking_blocks.append({"type": "redacted_thinking", "data": block.data})
            elif block.type == "tool_use":
                requests.append(
                    ToolExecutionRequest(
                        id=block.id,
                        name=block.name,
                        arguments=json.dumps(block.input),
                    )
                )

        usage = response.usage
        token_usage = TokenUsage(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.input_tokens + usage.output_tokens,
        )

        return ChatResponse(
            message=ChatMessage.ai("".join(text_parts), requests, thinking_blocks),
            token_usage=token_usage,
            finish_reason=self._finish_reason(response.stop_reason),
            thinking="\n".join(thinking_parts) or None,
            model=response.model,
        )


class AnthropicProvider(BaseModelProvider):
    """Anthropic Claude provider.

    Supports:
    - Claude chat models with tool calling
    - Extended thinking with a token budget

    Seeds and response formats are not supported and are rejected at
    build time, as is a thinking budget that does not fit in ``max_tokens``.

    Usage:
        provider = AnthropicProvider(ProviderConfig(api_key="sk-ant-..."))
        model = provider.chat_model(ChatConfiguration(max_tokens=2048))
    """

    provider_name = "anthropic"

    DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

    def __init__(self, config: ProviderConfig):
        """Initialize the Anthropic provider.

        Raises:
            ImportError: If anthropic package is not installed
        """
        if not ANTHROPIC_AVAILABLE:
            raise ImportError(
                "anthropic package is required for AnthropicProvider. "
                "Install with: pip install anthropic"
            )

        super().__init__(config)

        self.client = AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    def validate_configuration(self, configuration: ChatConfiguration) -> None:
        super().validate_configuration(configuration)
        if configuration.seed is not None:
            raise ConfigurationError("Anthropic models don't support setting the random seed")
        if configuration.response_format is not None:
            raise ConfigurationError("Anthropic models don't support setting the response format")
        if configuration.thinking_enabled:
            budget = configuration.thinking_budget_tokens or DEFAULT_THINKING_BUDGET
            max_tokens = configuration.max_tokens or DEFAULT_MAX_TOKENS
            if budget >= max_tokens:
                raise ConfigurationError(
                    "`max_tokens` must be greater than `thinking.budget_tokens` "
                    f"(max_tokens={max_tokens}, budget_tokens={budget})"
                )

    def chat_model(self, configuration: ChatConfiguration) -> AnthropicChatModel:
        self.validate_configuration(configuration)
        return AnthropicChatModel(
            self.client, self.config.model or self.DEFAULT_MODEL, configuration
        )

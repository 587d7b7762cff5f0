"""
Ollama Model Provider.

Chat and embeddings against a locally-hosted Ollama server over its REST
API. Every chat knob is accepted: seeds, JSON formats and thinking.
"""

from __future__ import annotations

import json
import logging
import uuid
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
from ..domain.exceptions import ModelProviderError
from ..domain.ports import IEmbeddingModel
from .base import BaseChatModel, BaseModelProvider, ProviderConfig

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring httpx if not used
try:
    import httpx

    OLLAMA_AVAILABLE = True
except ImportError:
    OLLAMA_AVAILABLE = False
    httpx = None


async def _post(client: Any, path: str, payload: dict[str, Any]) -> dict[str, Any]:
    try:
        response = await client.post(path, json=payload)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        message = f"Ollama API error: {e.response.status_code} - {e.response.text}"
        logger.error(message)
        raise ModelProviderError(message, ErrorType.RECOVERABLE, e) from e
    except httpx.TimeoutException as e:
        message = f"Ollama request timeout: {e}"
        logger.error(message)
        raise ModelProviderError(message, ErrorType.TIMEOUT, e) from e
    except httpx.RequestError as e:
        message = f"Ollama connection error: {e}"
        logger.error(message)
        raise ModelProviderError(message, ErrorType.FATAL, e) from e


class OllamaChatModel(BaseChatModel):
    """Chat model handle on ``POST /api/chat`` (non-streaming)."""

    FINISH_REASONS = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
    }

    def __init__(self, client: Any, model: str, configuration: ChatConfiguration):
        super().__init__(model, configuration)
        self.client = client

    def _format_messages_for_api(
        self, messages: list[ChatMessage]
    ) -> list[dict[str, Any]]:
        """Convert messages to Ollama format."""
        api_messages = []
        for msg in messages:
            if msg.role == MessageRole.TOOL:
                api_messages.append({
                    "role": "tool",
                    "content": msg.content,
                    "tool_name": msg.tool_name,
                })
            elif msg.role == MessageRole.AI:
                api_msg: dict[str, Any] = {"role": "assistant", "content": msg.content}
                if msg.tool_requests:
                    api_msg["tool_calls"] = [
                        {
                            "function": {
                                "name": r.name,
                                "arguments": json.loads(r.arguments or "{}"),
                            }
                        }
                        for r in msg.tool_requests
                    ]
                api_messages.append(api_msg)
            else:
                api_messages.append({"role": msg.role.value, "content": msg.content})
        return api_messages

    def _build_payload(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpecification],
    ) -> dict[str, Any]:
        cfg = self.configuration
        options: dict[str, Any] = {}
        if cfg.temperature is not None:
            options["temperature"] = cfg.temperature
        if cfg.top_k is not None:
            options["top_k"] = cfg.top_k
        if cfg.top_p is not None:
            options["top_p"] = cfg.top_p
        if cfg.seed is not None:
            options["seed"] = cfg.seed
        if cfg.max_tokens is not None:
            options["num_predict"] = cfg.max_tokens

        payload: dict[str, Any] = {
            "model": self.model_name,
            "messages": self._format_messages_for_api(messages),
            "stream": False,
        }
        if options:
            payload["options"] = options
        if cfg.wants_json:
            schema = cfg.response_format.json_schema
            payload["format"] = schema if schema is not None else "json"
        if cfg.thinking_enabled:
            payload["think"] = True
        if tools:
            payload["tools"] = [tool.to_openai_format() for tool in tools]
        return payload

    async def _chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpecification],
    ) -> ChatResponse:
        data = await _post(self.client, "/api/chat", self._build_payload(messages, tools))

        message = data.get("message", {})
        requests = []
        for tool_call in message.get("tool_calls") or []:
            function = tool_call.get("function", {})
            arguments = function.get("arguments", {})
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            requests.append(
                ToolExecutionRequest(
                    id=tool_call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                    name=function.get("name", ""),
                    arguments=arguments,
                )
            )

        input_tokens = data.get("prompt_eval_count", 0) or 0
        output_tokens = data.get("eval_count", 0) or 0
        finish_reason = (
            FinishReason.TOOL_EXECUTION
            if requests
            else self._finish_reason(data.get("done_reason"))
        )

        return ChatResponse(
            message=ChatMessage.ai(message.get("content", ""), requests),
            token_usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            finish_reason=finish_reason,
            thinking=message.get("thinking") or None,
            model=data.get("model"),
        )


class OllamaEmbeddingModel(IEmbeddingModel):
    """Embeddings on ``POST /api/embed``."""

    def __init__(self, client: Any, model: str):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> list[float]:
        data = await _post(self.client, "/api/embed", {"model": self.model, "input": text})
        embeddings = data.get("embeddings") or []
        if not embeddings:
            raise ModelProviderError(
                "No embedding returned from Ollama",
                error_type=ErrorType.RECOVERABLE,
            )
        return embeddings[0]


class OllamaProvider(BaseModelProvider):
    """Ollama local model provider.

    Usage:
        provider = OllamaProvider(ProviderConfig(model="qwen3:4b"))
        model = provider.chat_model(ChatConfiguration(seed=42))
    """

    provider_name = "ollama"

    DEFAULT_MODEL = "qwen3:4b"
    DEFAULT_BASE_URL = "http://localhost:11434"
    DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"

    def __init__(self, config: ProviderConfig):
        """Initialize the Ollama provider.

        Raises:
            ImportError: If httpx package is not installed
        """
        if not OLLAMA_AVAILABLE:
            raise ImportError(
                "httpx package is required for OllamaProvider. "
                "Install with: pip install httpx"
            )

        super().__init__(config)

        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.client: Optional[Any] = None

    def _get_client(self) -> Any:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.config.timeout,
            )
        return self.client

    def chat_model(self, configuration: ChatConfiguration) -> OllamaChatModel:
        self.validate_configuration(configuration)
        return OllamaChatModel(
            self._get_client(), self.config.model or self.DEFAULT_MODEL, configuration
        )

    def embedding_model(self) -> OllamaEmbeddingModel:
        return OllamaEmbeddingModel(
            self._get_client(), self.config.embedding_model or self.DEFAULT_EMBEDDING_MODEL
        )

    async def aclose(self) -> None:
        """Close the HTTP client; the next model handle opens a new one."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None

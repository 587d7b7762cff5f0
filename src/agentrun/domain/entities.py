"""
Domain entities for the agent runner.

These are pure domain objects with no infrastructure dependencies.
They define the core data structures shared by the orchestrator,
the model providers, the tools and the memory backends.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

# ============================================
# Message Types
# ============================================


class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    SYSTEM = "system"
    USER = "user"
    AI = "ai"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolExecutionRequest:
    """A tool call requested by the model.

    Attributes:
        id: Correlation id assigned by the model vendor
        name: Name of the tool to call
        arguments: Raw JSON argument payload as produced by the model
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolExecutionRequest:
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            name=data["name"],
            arguments=data.get("arguments") or "{}",
        )


@dataclass
class ChatMessage:
    """A single message in a conversation.

    AI messages may carry tool execution requests, TOOL messages carry the
    result of one request and reference it through ``tool_call_id``.

    Attributes:
        role: Message role
        content: Message text content
        tool_requests: Tool calls requested by an AI message
        tool_call_id: Correlation id of the request a TOOL message answers
        tool_name: Tool name a TOOL message answers
        thinking_blocks: Vendor reasoning blocks of an AI message, replayed
            unchanged within the same tool loop (not persisted)
    """

    role: MessageRole
    content: str = ""
    tool_requests: list[ToolExecutionRequest] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    thinking_blocks: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def system(cls, text: str) -> ChatMessage:
        return cls(role=MessageRole.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> ChatMessage:
        return cls(role=MessageRole.USER, content=text)

    @classmethod
    def ai(
        cls,
        text: str = "",
        tool_requests: Optional[list[ToolExecutionRequest]] = None,
        thinking_blocks: Optional[list[dict[str, Any]]] = None,
    ) -> ChatMessage:
        return cls(
            role=MessageRole.AI,
            content=text or "",
            tool_requests=list(tool_requests or []),
            thinking_blocks=list(thinking_blocks or []),
        )

    @classmethod
    def tool_result(cls, request: ToolExecutionRequest, result: str) -> ChatMessage:
        return cls(
            role=MessageRole.TOOL,
            content=result,
            tool_call_id=request.id,
            tool_name=request.name,
        )

    @property
    def has_tool_requests(self) -> bool:
        return bool(self.tool_requests)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted memory format."""
        data: dict[str, Any] = {"type": self.role.value.upper(), "text": self.content}
        if self.tool_requests:
            data["toolExecutionRequests"] = [r.to_dict() for r in self.tool_requests]
        if self.tool_call_id is not None:
            data["id"] = self.tool_call_id
        if self.tool_name is not None:
            data["toolName"] = self.tool_name
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        role = MessageRole(str(data["type"]).lower())
        return cls(
            role=role,
            content=data.get("text") or "",
            tool_requests=[
                ToolExecutionRequest.from_dict(r)
                for r in data.get("toolExecutionRequests") or []
            ],
            tool_call_id=data.get("id"),
            tool_name=data.get("toolName"),
        )


def messages_to_json(messages: list[ChatMessage]) -> str:
    """Serialize an ordered message list to a JSON array."""
    return json.dumps([m.to_dict() for m in messages])


def messages_from_json(payload: str) -> list[ChatMessage]:
    """Deserialize a JSON array produced by :func:`messages_to_json`."""
    if not payload:
        return []
    return [ChatMessage.from_dict(item) for item in json.loads(payload)]


# ============================================
# Memory
# ============================================


class DropPolicy(str, Enum):
    """When persisted history for a memory id is invalidated.

    KEEP never drops, BEFORE_TASKRUN drops on load (fresh conversation),
    AFTER_TASKRUN drops instead of saving (history never outlives the run).
    """

    KEEP = "KEEP"
    BEFORE_TASKRUN = "BEFORE_TASKRUN"
    AFTER_TASKRUN = "AFTER_TASKRUN"


# ============================================
# Tool System
# ============================================


@dataclass(frozen=True)
class ToolSpecification:
    """Definition of a tool the model may call.

    Hashable on name and description so it can key a tool map.

    Attributes:
        name: Tool name (unique within an invocation)
        description: Human-readable description
        parameters: JSON Schema for the arguments
    """

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}},
        compare=False,
        hash=False,
    )

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic_format(self) -> dict[str, Any]:
        """Convert to Anthropic tool use format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


@dataclass
class ToolExecution:
    """One executed tool call, kept for the output trace."""

    request_id: str
    tool_name: str
    arguments: str
    result: str


@dataclass
class FlowInput:
    """An input a host flow declares."""

    id: str
    required: bool = False
    default: Any = None

    @property
    def mandatory(self) -> bool:
        return self.required and self.default is None


@dataclass
class FlowDescriptor:
    """A host flow the model may start.

    Attributes:
        namespace: Flow namespace
        id: Flow id
        revision: Pinned revision, None for the latest
        description: Flow description, used as the tool description
        inputs: Declared inputs
        labels: Labels the flow declares itself
    """

    namespace: str
    id: str
    revision: Optional[int] = None
    description: Optional[str] = None
    inputs: list[FlowInput] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)


# ============================================
# Model Responses
# ============================================


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported by a model call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        if other is None:
            return self
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class FinishReason(str, Enum):
    """Why the model stopped generating."""

    STOP = "STOP"
    LENGTH = "LENGTH"
    TOOL_EXECUTION = "TOOL_EXECUTION"
    CONTENT_FILTER = "CONTENT_FILTER"
    OTHER = "OTHER"


@dataclass
class ChatResponse:
    """Result of a single chat model call."""

    message: ChatMessage
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: FinishReason = FinishReason.STOP
    thinking: Optional[str] = None
    model: Optional[str] = None

    @property
    def text(self) -> str:
        return self.message.content

    @property
    def tool_requests(self) -> list[ToolExecutionRequest]:
        return self.message.tool_requests


@dataclass
class ImageResult:
    """Result of an image model call."""

    url: Optional[str] = None
    base64_data: Optional[str] = None
    revised_prompt: Optional[str] = None


@dataclass(frozen=True)
class Content:
    """A piece of text returned by a content retriever."""

    text: str
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


# ============================================
# Chat Configuration
# ============================================


class ResponseFormatType(str, Enum):
    TEXT = "TEXT"
    JSON = "JSON"


@dataclass(frozen=True)
class ResponseFormat:
    """Requested response shape.

    A JSON schema is only meaningful with the JSON type.
    """

    type: ResponseFormatType = ResponseFormatType.TEXT
    json_schema: Optional[dict[str, Any]] = field(default=None, compare=False, hash=False)
    json_schema_description: Optional[str] = None


@dataclass(frozen=True)
class ChatConfiguration:
    """Pass-through model knobs; validity is checked per provider at build time.

    Attributes:
        temperature: Sampling temperature
        top_k: Top-k sampling
        top_p: Nucleus sampling
        seed: Random seed for reproducible sampling
        max_tokens: Maximum output tokens
        log_requests: Log outgoing model requests
        log_responses: Log incoming model responses
        response_format: Text or JSON (optionally schema-constrained)
        thinking_enabled: Enable the model's reasoning mode
        thinking_budget_tokens: Token budget for reasoning
        return_thinking: Include the reasoning text in the output
    """

    temperature: Optional[float] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    seed: Optional[int] = None
    max_tokens: Optional[int] = None
    log_requests: bool = False
    log_responses: bool = False
    response_format: Optional[ResponseFormat] = None
    thinking_enabled: bool = False
    thinking_budget_tokens: Optional[int] = None
    return_thinking: bool = False

    @property
    def wants_json(self) -> bool:
        return (
            self.response_format is not None
            and self.response_format.type == ResponseFormatType.JSON
        )


# ============================================
# Run Context & Output
# ============================================


@dataclass
class RunContext:
    """Host-supplied context for one agent run.

    Attributes:
        run_id: Unique run identifier, keys process-wide run state
        working_dir: Ephemeral working directory of the run
        namespace: Logical namespace (scopes key/value entries)
        labels: Free-form labels forwarded to observability
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    working_dir: Optional[Path] = None
    namespace: str = "default"
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class AgentOutput:
    """Everything one agent invocation produces.

    Attributes:
        text_output: Completion text
        json_output: Parsed structured output when a JSON response was requested
        token_usage: Accumulated token usage across model calls
        finish_reason: Finish reason of the final model call
        thinking: Reasoning text, when requested
        tool_executions: Ordered trace of executed tool calls
        sources: Contents injected by the retrievers
        output_files: Declared output file name to durable location
        request_duration_ms: Total model request duration recorded for the run
    """

    text_output: Optional[str] = None
    json_output: Optional[Any] = None
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: Optional[FinishReason] = None
    thinking: Optional[str] = None
    tool_executions: list[ToolExecution] = field(default_factory=list)
    sources: list[Content] = field(default_factory=list)
    output_files: dict[str, str] = field(default_factory=dict)
    request_duration_ms: Optional[float] = None


# ============================================
# Errors
# ============================================


class ErrorType(str, Enum):
    """Error classification."""

    RECOVERABLE = "recoverable"  # Host may retry
    FATAL = "fatal"  # Must abort
    TIMEOUT = "timeout"  # Tool/LLM timeout
    RATE_LIMIT = "rate_limit"  # Rate limited, back off

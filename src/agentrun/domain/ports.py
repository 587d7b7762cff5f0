"""
Port interfaces (abstract base classes) for the agent runner.

These define the contracts that adapters must implement.
Following the Ports & Adapters (Hexagonal) architecture pattern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from ..memory.base import ChatMemory
    from .entities import (
        ChatConfiguration,
        ChatMessage,
        ChatResponse,
        Content,
        FlowDescriptor,
        ImageResult,
        RunContext,
        ToolExecutionRequest,
        ToolSpecification,
    )


# ============================================
# Model Interfaces
# ============================================


class IChatModel(ABC):
    """A callable chat model handle bound to one configuration."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier."""
        pass

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        tools: Optional[list[ToolSpecification]] = None,
    ) -> ChatResponse:
        """Run one completion over the message list.

        Args:
            messages: Conversation to complete
            tools: Tools the model may request; None or empty disables tool calls

        Returns:
            The model response with usage and finish reason
        """
        pass


class IImageModel(ABC):
    """Image generation capability."""

    @abstractmethod
    async def generate(self, prompt: str) -> ImageResult:
        pass


class IEmbeddingModel(ABC):
    """Embedding capability."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        pass


class IModelProvider(ABC):
    """Vendor capability boundary: get chat, image or embedding models.

    Unsupported capabilities raise ConfigurationError.
    """

    @abstractmethod
    def chat_model(self, configuration: ChatConfiguration) -> IChatModel:
        pass

    @abstractmethod
    def image_model(self) -> IImageModel:
        pass

    @abstractmethod
    def embedding_model(self) -> IEmbeddingModel:
        pass

    async def aclose(self) -> None:
        """Release connections the provider opened. No-op by default."""
        pass


class IChatModelListener(ABC):
    """Observer notified around every chat model request."""

    @abstractmethod
    def on_request(self, model_name: str) -> None:
        pass

    @abstractmethod
    def on_response(self, model_name: str, duration_ms: float) -> None:
        pass


# ============================================
# Tool Interfaces
# ============================================


class IToolExecutor(ABC):
    """Executes one tool call and returns its string result."""

    @abstractmethod
    async def execute(self, request: ToolExecutionRequest) -> str:
        """Execute a tool call.

        Args:
            request: The structured call (name, raw arguments, correlation id)

        Returns:
            String result handed back to the model

        Raises:
            Any exception; the orchestrator translates it into a
            ToolExecutionError.
        """
        pass


class IToolProvider(ABC):
    """A declared tool configuration that yields callable tools for a run."""

    @abstractmethod
    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        """Assemble the tools this provider contributes to a run."""
        pass

    async def close(self, run_context: RunContext) -> None:
        """Gracefully release resources after the run."""
        return None

    def kill(self) -> None:
        """Best-effort cancellation of a still-running tool chain."""
        return None


# ============================================
# Retrieval Interfaces
# ============================================


class IContentRetriever(ABC):
    """Always-on context source queried for every turn."""

    @abstractmethod
    async def retrieve(self, query: str) -> list[Content]:
        pass

    async def aclose(self) -> None:
        """Release connections the retriever opened. No-op by default."""
        pass


class IContentRetrieverProvider(ABC):
    """A declared retriever configuration."""

    @abstractmethod
    def create(self, run_context: RunContext) -> IContentRetriever:
        pass


# ============================================
# Memory Interfaces
# ============================================


class IMemoryProvider(ABC):
    """Persistence contract for cross-invocation conversational memory."""

    @abstractmethod
    async def load(self, memory_id: str, window_size: int) -> list[ChatMessage]:
        """Load up to ``window_size`` most recent messages for a memory id."""
        pass

    @abstractmethod
    async def save(
        self, memory_id: str, messages: list[ChatMessage], ttl: timedelta
    ) -> None:
        """Persist the full message list with expiry now + ttl."""
        pass

    @abstractmethod
    async def chat_memory(self, run_context: RunContext) -> ChatMemory:
        """Load the run's memory window (load path)."""
        pass

    @abstractmethod
    async def close(self, run_context: RunContext, memory: ChatMemory) -> None:
        """Persist the run's memory window (save path)."""
        pass

    async def aclose(self) -> None:
        """Release connections the backend opened. No-op by default."""
        pass


class IKeyValueStore(ABC):
    """Namespaced key/value store with per-entry expiry."""

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[str]:
        """Return the value, or None when absent or expired."""
        pass

    @abstractmethod
    async def put(
        self,
        namespace: str,
        key: str,
        value: str,
        ttl: Optional[timedelta] = None,
    ) -> None:
        pass

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> bool:
        pass


# ============================================
# Host Collaborators
# ============================================


class IOutputStorage(ABC):
    """Durable storage for files produced in a run's working directory."""

    @abstractmethod
    async def put(self, run_context: RunContext, name: str, source: Path) -> str:
        """Copy ``source`` to durable storage and return its location."""
        pass


class IMetricsRecorder(ABC):
    """Counter sink owned by the host engine."""

    @abstractmethod
    def counter(self, name: str, value: float, **tags: str) -> None:
        pass


class IFlowLauncher(ABC):
    """Starts executions of flows owned by the host engine."""

    @abstractmethod
    async def find(
        self,
        namespace: str,
        flow_id: str,
        revision: Optional[int] = None,
    ) -> Optional[FlowDescriptor]:
        """Return the flow, or None when it does not exist."""
        pass

    @abstractmethod
    async def launch(
        self,
        run_context: RunContext,
        flow: FlowDescriptor,
        inputs: dict[str, Any],
        labels: dict[str, str],
        schedule_date: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Queue an execution of ``flow`` and return its details."""
        pass

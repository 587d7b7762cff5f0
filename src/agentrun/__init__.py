"""
Agent Runner.

Runs a single LLM agent turn: system instruction, user prompt, optional
tools, always-on content retrievers and cross-invocation chat memory,
producing one completion with token usage and optional output files.

Architecture:
- Domain: Entities, port interfaces and the error taxonomy
- Providers: Chat/image/embedding models (OpenAI, Anthropic, Ollama)
- Memory: Windowed chat memory on embedded KV, Redis or Postgres
- Tools: MCP clients, web search, code execution, nested and remote agents
- Retrievers: Web search content retrieval and prompt augmentation
- Orchestrator: Build, tool loop and guaranteed teardown of a run
- Observability: Token counters, model timing and Langfuse tracing
- Storage: Embedded key/value store and output file storage
"""

# Domain entities
from .domain.entities import (
    AgentOutput,
    ChatConfiguration,
    ChatMessage,
    DropPolicy,
    ErrorType,
    FinishReason,
    MessageRole,
    ResponseFormat,
    ResponseFormatType,
    RunContext,
    TokenUsage,
    ToolExecutionRequest,
    ToolSpecification,
)
from .domain.exceptions import (
    AgentError,
    ConfigurationError,
    MemoryIOError,
    ModelProviderError,
    OutputFileError,
    ToolArgumentsError,
    ToolExecutionError,
)

# Orchestrator
from .orchestrator import (
    AgentDefinition,
    AgentOrchestrator,
    InvocationState,
    build_agent,
    run_agent,
)

# Memory
from .memory import ChatMemory, KVStoreMemory, PostgresMemory, RedisMemory

# Providers
from .providers import (
    AnthropicProvider,
    OllamaProvider,
    OpenAIProvider,
    ProviderConfig,
    create_provider,
)

# Declarative definitions
from .definitions import AgentSpec

__version__ = "0.1.0"

__all__ = [
    # Domain
    "AgentOutput",
    "ChatConfiguration",
    "ChatMessage",
    "DropPolicy",
    "ErrorType",
    "FinishReason",
    "MessageRole",
    "ResponseFormat",
    "ResponseFormatType",
    "RunContext",
    "TokenUsage",
    "ToolExecutionRequest",
    "ToolSpecification",
    # Errors
    "AgentError",
    "ConfigurationError",
    "MemoryIOError",
    "ModelProviderError",
    "OutputFileError",
    "ToolArgumentsError",
    "ToolExecutionError",
    # Orchestrator
    "AgentDefinition",
    "AgentOrchestrator",
    "InvocationState",
    "build_agent",
    "run_agent",
    # Memory
    "ChatMemory",
    "KVStoreMemory",
    "PostgresMemory",
    "RedisMemory",
    # Providers
    "AnthropicProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "ProviderConfig",
    "create_provider",
    # Definitions
    "AgentSpec",
]

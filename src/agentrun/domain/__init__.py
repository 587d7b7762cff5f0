"""Domain entities, exceptions and port interfaces for the agent runner."""

from .entities import (
    AgentOutput,
    ChatConfiguration,
    ChatMessage,
    ChatResponse,
    Content,
    DropPolicy,
    ErrorType,
    FinishReason,
    FlowDescriptor,
    FlowInput,
    ImageResult,
    MessageRole,
    ResponseFormat,
    ResponseFormatType,
    RunContext,
    TokenUsage,
    ToolExecution,
    ToolExecutionRequest,
    ToolSpecification,
)
from .exceptions import (
    AgentError,
    ConfigurationError,
    MemoryIOError,
    ModelProviderError,
    OutputFileError,
    ToolArgumentsError,
    ToolExecutionError,
)
from .ports import (
    IChatModel,
    IChatModelListener,
    IContentRetriever,
    IContentRetrieverProvider,
    IEmbeddingModel,
    IFlowLauncher,
    IImageModel,
    IKeyValueStore,
    IMemoryProvider,
    IMetricsRecorder,
    IModelProvider,
    IOutputStorage,
    IToolExecutor,
    IToolProvider,
)

__all__ = [
    # Entities
    "AgentOutput",
    "ChatConfiguration",
    "ChatMessage",
    "ChatResponse",
    "Content",
    "DropPolicy",
    "ErrorType",
    "FinishReason",
    "FlowDescriptor",
    "FlowInput",
    "ImageResult",
    "MessageRole",
    "ResponseFormat",
    "ResponseFormatType",
    "RunContext",
    "TokenUsage",
    "ToolExecution",
    "ToolExecutionRequest",
    "ToolSpecification",
    # Exceptions
    "AgentError",
    "ConfigurationError",
    "MemoryIOError",
    "ModelProviderError",
    "OutputFileError",
    "ToolArgumentsError",
    "ToolExecutionError",
    # Ports
    "IChatModel",
    "IChatModelListener",
    "IContentRetriever",
    "IContentRetrieverProvider",
    "IEmbeddingModel",
    "IFlowLauncher",
    "IImageModel",
    "IKeyValueStore",
    "IMemoryProvider",
    "IMetricsRecorder",
    "IModelProvider",
    "IOutputStorage",
    "IToolExecutor",
    "IToolProvider",
]

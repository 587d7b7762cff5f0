"""
Declarative agent definitions.

Pydantic models for the already-rendered agent configuration a host
engine hands over. Every polymorphic section (provider, tools, content
retrievers, memory, observability) carries a ``type`` discriminator that
is resolved through a static registry; ``AgentSpec.to_definition()``
turns the whole document into the immutable ``AgentDefinition`` the
orchestrator runs.

Usage:
    spec = AgentSpec.from_dict({
        "provider": {"type": "openai", "api_key": "sk-...", "model": "gpt-4o-mini"},
        "system_message": "You are a helpful assistant.",
        "memory": {"type": "redis", "memory_id": "user-42"},
        "tools": [{"type": "mcp.stdio", "command": ["uvx", "mcp-server-fetch"]}],
    })
    definition = spec.to_definition()
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import get_settings
from .domain.entities import ChatConfiguration, DropPolicy, ResponseFormat, ResponseFormatType
from .domain.exceptions import ConfigurationError
from .domain.ports import (
    IContentRetrieverProvider,
    IFlowLauncher,
    IMemoryProvider,
    IToolProvider,
)
from .memory.kv import KVStoreMemory
from .memory.postgres import PostgresMemory
from .memory.redis import RedisMemory
from .observability.tracing import LangfuseObservabilityProvider, ObservabilityProvider
from .orchestrator.agent import AgentDefinition
from .providers.base import BaseModelProvider, ProviderConfig
from .providers.registry import create_provider
from .retrievers.embedding_store import (
    DEFAULT_NAMESPACE as EMBEDDINGS_NAMESPACE,
    EmbeddingStoreRetrieverProvider,
)
from .retrievers.web_search import DEFAULT_MAX_RESULTS, GoogleCustomWebSearch, TavilyWebSearch
from .storage.kv import EmbeddedKVStore
from .tools.a2a import A2AAgentTool
from .tools.agent_tool import AgentTool
from .tools.code_execution import CodeExecution
from .tools.flow import FlowTool
from .tools.mcp import DockerMcpClient, SseMcpClient, StdioMcpClient, StreamableHttpMcpClient
from .tools.task import HostTask, TaskRunner, TaskTool
from .tools.web_search import GoogleCustomWebSearchTool, TavilyWebSearchTool

logger = logging.getLogger(__name__)

TaskRunners = Mapping[str, TaskRunner]


def _validate(model: type[BaseModel], data: Any, section: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {section} definition: {e}", original_error=e) from e


def _type_of(data: Any, section: str) -> str:
    if not isinstance(data, Mapping) or not data.get("type"):
        raise ConfigurationError(f"The {section} definition requires a 'type'")
    return str(data["type"])


# =============================================================================
# Provider
# =============================================================================


class ProviderSpec(BaseModel):
    """Model provider selection."""

    model_config = ConfigDict(extra="forbid")

    type: str
    api_key: Optional[str] = None
    model: Optional[str] = None
    embedding_model: Optional[str] = None
    image_model: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 3
    extra: dict[str, Any] = Field(default_factory=dict)

    def build(self) -> BaseModelProvider:
        config = ProviderConfig(
            api_key=self.api_key,
            model=self.model,
            embedding_model=self.embedding_model,
            image_model=self.image_model,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            extra=dict(self.extra),
        )
        return create_provider(self.type, config)


# =============================================================================
# Chat configuration
# =============================================================================


class ResponseFormatSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: ResponseFormatType = ResponseFormatType.TEXT
    json_schema: Optional[dict[str, Any]] = None
    json_schema_description: Optional[str] = None


class ConfigurationSpec(BaseModel):
    """Chat knobs, passed through to the provider."""

    model_config = ConfigDict(extra="forbid")

    temperature: Optional[float] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    seed: Optional[int] = None
    max_tokens: Optional[int] = None
    log_requests: bool = False
    log_responses: bool = False
    response_format: Optional[ResponseFormatSpec] = None
    thinking_enabled: bool = False
    thinking_budget_tokens: Optional[int] = None
    return_thinking: bool = False

    def build(self) -> ChatConfiguration:
        response_format: Optional[ResponseFormat] = None
        if self.response_format is not None:
            if (
                self.response_format.json_schema is not None
                and self.response_format.type != ResponseFormatType.JSON
            ):
                raise ConfigurationError(
                    "`response_format.json_schema` requires `response_format.type` JSON"
                )
            response_format = ResponseFormat(
                type=self.response_format.type,
                json_schema=self.response_format.json_schema,
                json_schema_description=self.response_format.json_schema_description,
            )
        return ChatConfiguration(
            temperature=self.temperature,
            top_k=self.top_k,
            top_p=self.top_p,
            seed=self.seed,
            max_tokens=self.max_tokens,
            log_requests=self.log_requests,
            log_responses=self.log_responses,
            response_format=response_format,
            thinking_enabled=self.thinking_enabled,
            thinking_budget_tokens=self.thinking_budget_tokens,
            return_thinking=self.return_thinking,
        )


# =============================================================================
# Tools
# =============================================================================


class ToolSpecBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        raise NotImplementedError


class StdioMcpToolSpec(ToolSpecBase):
    command: list[str]
    env: dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = None

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        return StdioMcpClient(self.command, env=self.env, timeout=self.timeout)


class DockerMcpToolSpec(ToolSpecBase):
    image: str
    command: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    binds: list[str] = Field(default_factory=list)
    docker_host: Optional[str] = None
    timeout: Optional[float] = None

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        return DockerMcpClient(
            self.image,
            command=self.command,
            env=self.env,
            binds=self.binds,
            docker_host=self.docker_host,
            timeout=self.timeout,
        )


class HttpMcpToolSpec(ToolSpecBase):
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = None

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        client_cls = SseMcpClient if self.type == "mcp.sse" else StreamableHttpMcpClient
        return client_cls(self.url, headers=self.headers, timeout=self.timeout)


class CodeExecutionToolSpec(ToolSpecBase):
    api_key: str

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        return CodeExecution(self.api_key)


class TavilyToolSpec(ToolSpecBase):
    api_key: str
    max_results: int = DEFAULT_MAX_RESULTS

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        return TavilyWebSearchTool(self.api_key, self.max_results)


class GoogleToolSpec(ToolSpecBase):
    api_key: str
    csi: str
    max_results: int = DEFAULT_MAX_RESULTS

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        return GoogleCustomWebSearchTool(self.api_key, self.csi, self.max_results)


class A2AToolSpec(ToolSpecBase):
    server_url: str
    description: str
    name: str = "tool"
    headers: dict[str, str] = Field(default_factory=dict)

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        return A2AAgentTool(
            self.server_url, self.description, name=self.name, headers=self.headers or None
        )


class AgentToolSpec(ToolSpecBase):
    """A nested agent, declared with the same document shape."""

    agent: "AgentSpec"
    description: str
    name: str = "tool"

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        return AgentTool(
            self.agent.to_definition(task_runners, flow_launcher),
            self.description,
            name=self.name,
        )


class TaskDeclaration(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    schema_: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}, alias="schema"
    )
    properties: dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None


class TaskToolSpec(ToolSpecBase):
    tasks: list[TaskDeclaration]

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        tasks = []
        for task in self.tasks:
            runner = task_runners.get(task.id)
            if runner is None:
                raise ConfigurationError(f"No runner was provided for task {task.id!r}")
            tasks.append(
                HostTask(
                    id=task.id,
                    runner=runner,
                    schema=task.schema_,
                    properties=task.properties,
                    description=task.description,
                )
            )
        return TaskTool(tasks)


class FlowToolSpec(ToolSpecBase):
    """A host flow; without namespace and flow_id the model picks the flow."""

    namespace: Optional[str] = None
    flow_id: Optional[str] = None
    revision: Optional[int] = None
    description: Optional[str] = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    inherit_labels: bool = False
    schedule_date: Optional[datetime] = None

    def build(
        self, task_runners: TaskRunners, flow_launcher: Optional[IFlowLauncher] = None
    ) -> IToolProvider:
        if flow_launcher is None:
            raise ConfigurationError("No flow launcher was provided for the flow tool")
        return FlowTool(
            flow_launcher,
            namespace=self.namespace,
            flow_id=self.flow_id,
            revision=self.revision,
            description=self.description,
            inputs=self.inputs,
            labels=self.labels,
            inherit_labels=self.inherit_labels,
            schedule_date=self.schedule_date,
        )


TOOL_TYPES: dict[str, type[ToolSpecBase]] = {
    "mcp.stdio": StdioMcpToolSpec,
    "mcp.docker": DockerMcpToolSpec,
    "mcp.sse": HttpMcpToolSpec,
    "mcp.streamable_http": HttpMcpToolSpec,
    "code_execution": CodeExecutionToolSpec,
    "web_search.tavily": TavilyToolSpec,
    "web_search.google": GoogleToolSpec,
    "a2a_agent": A2AToolSpec,
    "agent": AgentToolSpec,
    "task": TaskToolSpec,
    "flow": FlowToolSpec,
}


def build_tool_provider(
    data: Mapping[str, Any],
    task_runners: TaskRunners,
    flow_launcher: Optional[IFlowLauncher] = None,
) -> IToolProvider:
    """Resolve a tool declaration through :data:`TOOL_TYPES`."""
    tool_type = _type_of(data, "tool")
    spec_cls = TOOL_TYPES.get(tool_type)
    if spec_cls is None:
        raise ConfigurationError(
            f"Unknown tool type {tool_type!r}, expected one of {sorted(TOOL_TYPES)}"
        )
    return _validate(spec_cls, data, f"{tool_type} tool").build(task_runners, flow_launcher)


# =============================================================================
# Content retrievers
# =============================================================================


class TavilyRetrieverSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    api_key: str
    max_results: int = DEFAULT_MAX_RESULTS

    def build(self) -> IContentRetrieverProvider:
        return TavilyWebSearch(self.api_key, self.max_results)


class GoogleRetrieverSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    api_key: str
    csi: str
    max_results: int = DEFAULT_MAX_RESULTS

    def build(self) -> IContentRetrieverProvider:
        return GoogleCustomWebSearch(self.api_key, self.csi, self.max_results)


class EmbeddingStoreRetrieverSpec(BaseModel):
    """Retrieval from an embedding store kept in the embedded key/value store."""

    model_config = ConfigDict(extra="forbid")

    type: str
    embedding_provider: ProviderSpec
    path: Optional[str] = None
    store_name: Optional[str] = None
    namespace: str = EMBEDDINGS_NAMESPACE
    max_results: int = Field(DEFAULT_MAX_RESULTS, ge=1)
    min_score: float = Field(0.0, ge=0.0, le=1.0)

    def build(self) -> IContentRetrieverProvider:
        return EmbeddingStoreRetrieverProvider(
            self.embedding_provider.build(),
            EmbeddedKVStore(self.path or get_settings().kv_path),
            store_name=self.store_name,
            namespace=self.namespace,
            max_results=self.max_results,
            min_score=self.min_score,
        )


RETRIEVER_TYPES: dict[str, type[BaseModel]] = {
    "web_search.tavily": TavilyRetrieverSpec,
    "web_search.google": GoogleRetrieverSpec,
    "embedding_store": EmbeddingStoreRetrieverSpec,
}


def build_content_retriever(data: Mapping[str, Any]) -> IContentRetrieverProvider:
    retriever_type = _type_of(data, "content retriever")
    spec_cls = RETRIEVER_TYPES.get(retriever_type)
    if spec_cls is None:
        raise ConfigurationError(
            f"Unknown content retriever type {retriever_type!r}, "
            f"expected one of {sorted(RETRIEVER_TYPES)}"
        )
    return _validate(spec_cls, data, f"{retriever_type} content retriever").build()


# =============================================================================
# Memory
# =============================================================================


class MemorySpecBase(BaseModel):
    """Settings shared by every memory backend.

    ``messages`` and ``ttl_seconds`` default to the runtime settings.
    """

    model_config = ConfigDict(extra="forbid")

    type: str
    memory_id: str = Field(..., min_length=1)
    messages: Optional[int] = None
    ttl_seconds: Optional[int] = None
    drop: DropPolicy = DropPolicy.KEEP

    def _common(self) -> dict[str, Any]:
        settings = get_settings()
        ttl_seconds = settings.memory_ttl_seconds if self.ttl_seconds is None else self.ttl_seconds
        return {
            "messages": settings.memory_window if self.messages is None else self.messages,
            "ttl": timedelta(seconds=ttl_seconds),
            "drop": self.drop,
        }

    def build(self) -> IMemoryProvider:
        raise NotImplementedError


class KVMemorySpec(MemorySpecBase):
    path: Optional[str] = None
    namespace: str = "agentrun.memory"

    def build(self) -> IMemoryProvider:
        store = EmbeddedKVStore(self.path or get_settings().kv_path)
        return KVStoreMemory(store, self.memory_id, namespace=self.namespace, **self._common())


class RedisMemorySpec(MemorySpecBase):
    url: Optional[str] = None
    key_prefix: str = ""

    def build(self) -> IMemoryProvider:
        return RedisMemory(
            self.memory_id,
            url=self.url or get_settings().redis_url,
            key_prefix=self.key_prefix,
            **self._common(),
        )


class PostgresMemorySpec(MemorySpecBase):
    dsn: Optional[str] = None
    table_name: str = "chat_memory"

    def build(self) -> IMemoryProvider:
        dsn = self.dsn or get_settings().database_url
        if not dsn:
            raise ConfigurationError("Postgres memory requires a dsn or DATABASE_URL")
        return PostgresMemory(
            self.memory_id, dsn=dsn, table_name=self.table_name, **self._common()
        )


MEMORY_TYPES: dict[str, type[MemorySpecBase]] = {
    "kv": KVMemorySpec,
    "redis": RedisMemorySpec,
    "postgres": PostgresMemorySpec,
}


def build_memory(data: Mapping[str, Any]) -> IMemoryProvider:
    memory_type = _type_of(data, "memory")
    spec_cls = MEMORY_TYPES.get(memory_type)
    if spec_cls is None:
        raise ConfigurationError(
            f"Unknown memory type {memory_type!r}, expected one of {sorted(MEMORY_TYPES)}"
        )
    return _validate(spec_cls, data, f"{memory_type} memory").build()


# =============================================================================
# Observability
# =============================================================================


class LangfuseSpec(BaseModel):
    """Langfuse tracing; keys fall back to the LANGFUSE_* settings."""

    model_config = ConfigDict(extra="forbid")

    type: str = "langfuse"
    public_key: Optional[str] = None
    secret_key: Optional[str] = None
    host: Optional[str] = None

    def build(self) -> ObservabilityProvider:
        settings = get_settings()
        return LangfuseObservabilityProvider(
            public_key=self.public_key or settings.langfuse_public_key,
            secret_key=self.secret_key or settings.langfuse_secret_key,
            host=self.host or settings.langfuse_host,
        )


OBSERVABILITY_TYPES: dict[str, type[LangfuseSpec]] = {
    "langfuse": LangfuseSpec,
}


def build_observability(data: Mapping[str, Any]) -> ObservabilityProvider:
    observability_type = _type_of(data, "observability")
    spec_cls = OBSERVABILITY_TYPES.get(observability_type)
    if spec_cls is None:
        raise ConfigurationError(
            f"Unknown observability type {observability_type!r}, "
            f"expected one of {sorted(OBSERVABILITY_TYPES)}"
        )
    return _validate(spec_cls, data, "observability").build()


# =============================================================================
# Agent
# =============================================================================


class AgentSpec(BaseModel):
    """A complete, already-rendered agent declaration."""

    model_config = ConfigDict(extra="forbid")

    provider: dict[str, Any]
    configuration: ConfigurationSpec = Field(default_factory=ConfigurationSpec)
    system_message: Optional[str] = None
    tools: list[dict[str, Any]] = Field(default_factory=list)
    max_sequential_tools_invocations: Optional[int] = None
    content_retrievers: list[dict[str, Any]] = Field(default_factory=list)
    memory: Optional[dict[str, Any]] = None
    output_files: list[str] = Field(default_factory=list)
    observability: Optional[dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgentSpec:
        """Validate a raw document.

        Raises:
            ConfigurationError: The document does not match the schema
        """
        return _validate(cls, data, "agent")

    def to_definition(
        self,
        task_runners: Optional[TaskRunners] = None,
        flow_launcher: Optional[IFlowLauncher] = None,
    ) -> AgentDefinition:
        """Resolve every section into an immutable :class:`AgentDefinition`.

        Args:
            task_runners: Host task runners keyed by task id, required by
                ``task`` tools
            flow_launcher: Host flow launcher, required by ``flow`` tools

        Raises:
            ConfigurationError: Unknown discriminator or contradictory fields
        """
        task_runners = task_runners or {}
        provider_type = _type_of(self.provider, "provider")
        provider = _validate(ProviderSpec, self.provider, f"{provider_type} provider").build()

        definition = AgentDefinition(
            provider=provider,
            configuration=self.configuration.build(),
            system_message=self.system_message,
            tools=tuple(
                build_tool_provider(tool, task_runners, flow_launcher) for tool in self.tools
            ),
            max_sequential_tools_invocations=self.max_sequential_tools_invocations,
            content_retrievers=tuple(
                build_content_retriever(retriever) for retriever in self.content_retrievers
            ),
            memory=build_memory(self.memory) if self.memory is not None else None,
            output_files=tuple(self.output_files),
            observability=(
                build_observability(self.observability) if self.observability is not None else None
            ),
        )
        logger.debug(
            f"Built agent definition with provider {provider_type}, "
            f"{len(definition.tools)} tool providers, "
            f"{len(definition.content_retrievers)} content retrievers"
        )
        return definition


AgentToolSpec.model_rebuild()

"""
Agent Orchestrator.

Runs exactly one agent turn. Coordinates:
- Building the chat model from an immutable agent definition
- Tool assembly and the bounded tool-calling loop
- Loading and saving conversational memory
- Retrieval augmentation of the user message
- Token metrics, tracing and output files
- Guaranteed teardown of everything acquired for the run
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from jsonschema import Draft7Validator

from ..config import get_settings
from ..domain.entities import (
    AgentOutput,
    ChatConfiguration,
    ChatMessage,
    ChatResponse,
    Content,
    ErrorType,
    RunContext,
    TokenUsage,
    ToolExecution,
)
from ..domain.exceptions import ConfigurationError, ModelProviderError
from ..domain.ports import (
    IContentRetrieverProvider,
    IMemoryProvider,
    IMetricsRecorder,
    IModelProvider,
    IOutputStorage,
    IToolProvider,
)
from ..memory.base import ChatMemory
from ..observability.metrics import InMemoryMetrics, send_token_metrics
from ..observability.timing import TIMINGS, TimingChatModelListener, TimingRegistry
from ..observability.tracing import (
    AgentObservability,
    NoopAgentObservability,
    ObservabilityProvider,
)
from ..providers.base import BaseChatModel, validate_messages
from ..retrievers.router import RetrievalAugmentor
from ..storage.outputs import LocalOutputStorage, gather_output_files
from .assembly import build_retrieval_augmentor, build_tools
from .resources import ReleasePhase, ResourceScope
from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)

UNBOUNDED = sys.maxsize


class InvocationState(str, Enum):
    """Lifecycle of one invocation."""

    INIT = "INIT"
    BUILD = "BUILD"
    ATTACH_MEMORY = "ATTACH_MEMORY"
    ATTACH_RETRIEVERS = "ATTACH_RETRIEVERS"
    INVOKE = "INVOKE"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    CLEANUP = "CLEANUP"
    TERMINAL = "TERMINAL"


@dataclass(frozen=True)
class AgentDefinition:
    """Immutable, already-rendered agent configuration.

    Attributes:
        provider: Model provider capability
        configuration: Chat knobs, validated against the provider at build time
        system_message: Optional system instruction
        tools: Tool providers, assembled in order
        max_sequential_tools_invocations: Tool-call budget, None for unbounded
        content_retrievers: Retrievers queried on every turn
        memory: Memory provider for cross-invocation history
        output_files: Relative paths copied from the working directory after the run
        observability: Tracing provider
    """

    provider: IModelProvider
    configuration: ChatConfiguration = field(default_factory=ChatConfiguration)
    system_message: Optional[str] = None
    tools: tuple[IToolProvider, ...] = ()
    max_sequential_tools_invocations: Optional[int] = None
    content_retrievers: tuple[IContentRetrieverProvider, ...] = ()
    memory: Optional[IMemoryProvider] = None
    output_files: tuple[str, ...] = ()
    observability: Optional[ObservabilityProvider] = None


@dataclass
class InvocationResult:
    """What one pass through the tool loop produced."""

    response: ChatResponse
    token_usage: TokenUsage
    tool_executions: list[ToolExecution]
    sources: list[Content]
    thinking: Optional[str] = None


@dataclass(frozen=True)
class AgentInvocation:
    """Read-only handle returned by :func:`build_agent`.

    Attributes:
        chat_model: The model handle
        configuration: Chat knobs the model was built with
        system_message: Optional system instruction
        max_tool_invocations: Tool-call budget (UNBOUNDED when unset)
    """

    chat_model: Any
    configuration: ChatConfiguration
    system_message: Optional[str]
    max_tool_invocations: int = UNBOUNDED

    async def invoke(
        self,
        prompt: str,
        tools: ToolExecutor,
        memory: Optional[ChatMemory] = None,
        augmentor: Optional[RetrievalAugmentor] = None,
    ) -> InvocationResult:
        """Run one user turn, including the tool-calling loop.

        Each executed tool call counts against the budget. Tool requests
        beyond the budget are dropped, and once it is exhausted the model is
        called without tools so it has to answer from what it already has.
        """
        if not prompt:
            raise ConfigurationError("A prompt is required")

        sources: list[Content] = []
        user_message = ChatMessage.user(prompt)
        if augmentor is not None:
            user_message, sources = await augmentor.augment(user_message)

        history = memory if memory is not None else ChatMemory(UNBOUNDED)
        if self.system_message:
            history.add(ChatMessage.system(self.system_message))
        history.add(user_message)

        messages = history.messages()
        validate_messages(messages, initial=True)

        specifications = tools.specifications()
        remaining = self.max_tool_invocations
        thinking: list[str] = []
        executions: list[ToolExecution] = []

        response = await self.chat_model.chat(
            messages, specifications if remaining > 0 else None
        )
        usage = response.token_usage

        while response.tool_requests:
            if response.thinking:
                thinking.append(response.thinking)

            allowed = response.tool_requests[:remaining]
            if len(allowed) < len(response.tool_requests):
                logger.warning(
                    f"Tool invocation budget of {self.max_tool_invocations} reached, "
                    f"dropping {len(response.tool_requests) - len(allowed)} tool requests"
                )
            if not allowed:
                break

            history.add(
                ChatMessage.ai(response.text, allowed, response.message.thinking_blocks)
            )
            for request in allowed:
                execution = await tools.execute(request)
                executions.append(execution)
                history.add(ChatMessage.tool_result(request, execution.result))
            remaining -= len(allowed)

            response = await self.chat_model.chat(
                history.messages(), specifications if remaining > 0 else None
            )
            usage = usage + response.token_usage

        history.add(ChatMessage.ai(response.text))
        if response.thinking:
            thinking.append(response.thinking)

        return InvocationResult(
            response=response,
            token_usage=usage,
            tool_executions=executions,
            sources=sources,
            thinking="\n".join(thinking) or None,
        )


def build_agent(
    definition: AgentDefinition,
    run_context: Optional[RunContext] = None,
) -> AgentInvocation:
    """Validate the definition and build a read-only invocation handle.

    Raises:
        ConfigurationError: Unsupported provider/configuration combination
            or an invalid tool budget
    """
    budget = definition.max_sequential_tools_invocations
    if budget is not None and budget < 0:
        raise ConfigurationError(
            f"max_sequential_tools_invocations must not be negative, got {budget}"
        )

    chat_model = definition.provider.chat_model(definition.configuration)
    if run_context is not None:
        logger.debug(f"Run {run_context.run_id}: built chat model {chat_model.model_name}")
    return AgentInvocation(
        chat_model=chat_model,
        configuration=definition.configuration,
        system_message=definition.system_message,
        max_tool_invocations=UNBOUNDED if budget is None else budget,
    )


def parse_structured_output(text: str, configuration: ChatConfiguration) -> Optional[Any]:
    """Parse and validate the completion when a JSON response was requested.

    Raises:
        ModelProviderError: The completion is not valid JSON or does not
            match the requested schema
    """
    if not configuration.wants_json:
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise ModelProviderError(
            f"Model returned invalid JSON: {e}", ErrorType.FATAL, e
        ) from e

    schema = configuration.response_format.json_schema
    if schema is not None:
        errors = list(Draft7Validator(schema).iter_errors(value))
        if errors:
            details = "; ".join(error.message for error in errors)
            raise ModelProviderError(
                f"Model output does not match the JSON schema: {details}", ErrorType.FATAL
            )
    return value


StateListener = Callable[[str, InvocationState], None]


class AgentOrchestrator:
    """Drives the full lifecycle of agent runs.

    INIT → BUILD → ATTACH_MEMORY → ATTACH_RETRIEVERS → INVOKE →
    COMPLETE | FAILED → CLEANUP → TERMINAL. Cleanup always runs.

    Usage:
        orchestrator = AgentOrchestrator()

        output = await orchestrator.run(
            AgentDefinition(provider=OpenAIProvider(config), system_message="Be brief."),
            "What is the capital of France?",
            RunContext(),
        )

    Architecture:
        - Tool providers, memory, backend and provider connections, tracing
          span and model timing each register a release guard; guards are
          released independently
        - A memory save failure reaches the caller when the run itself
          succeeded; any other teardown failure is only logged
        - Token counters are incremented once per successful run
    """

    def __init__(
        self,
        output_storage: Optional[IOutputStorage] = None,
        metrics: Optional[IMetricsRecorder] = None,
        timings: TimingRegistry = TIMINGS,
        state_listener: Optional[StateListener] = None,
    ):
        self.output_storage = output_storage
        self.metrics = metrics or InMemoryMetrics()
        self.timings = timings
        self.state_listener = state_listener

    def _transition(self, run_context: RunContext, state: InvocationState) -> None:
        logger.debug(f"Run {run_context.run_id}: {state.value}")
        if self.state_listener is not None:
            try:
                self.state_listener(run_context.run_id, state)
            except Exception as e:
                logger.warning(f"State listener failed: {e}")

    def _storage(self) -> IOutputStorage:
        if self.output_storage is None:
            self.output_storage = LocalOutputStorage(get_settings().output_dir)
        return self.output_storage

    async def run(
        self,
        definition: AgentDefinition,
        prompt: str,
        run_context: Optional[RunContext] = None,
    ) -> AgentOutput:
        """Execute one agent turn and release every resource it acquired.

        Raises:
            ConfigurationError, ToolArgumentsError, ToolExecutionError,
            MemoryIOError, ModelProviderError: All fatal, none retried
        """
        run_context = run_context or RunContext()
        scope = ResourceScope()
        observability: AgentObservability = NoopAgentObservability()
        primary_error: Optional[BaseException] = None
        output: Optional[AgentOutput] = None

        self._transition(run_context, InvocationState.INIT)
        try:
            self._transition(run_context, InvocationState.BUILD)
            scope.push(
                f"model provider {type(definition.provider).__name__}",
                definition.provider.aclose,
                ReleasePhase.CONNECTIONS,
            )
            invocation = build_agent(definition, run_context)

            timing = TimingChatModelListener(run_context.run_id, self.timings)
            scope.push("model timing", timing.clear, ReleasePhase.INSTRUMENTATION)
            if isinstance(invocation.chat_model, BaseChatModel):
                invocation.chat_model.add_listener(timing)

            if definition.observability is not None:
                observability = definition.observability.start(
                    run_context, prompt, definition.system_message
                )
                scope.push("tracing span", observability.close, ReleasePhase.OBSERVABILITY)

            for provider in definition.tools:
                scope.push(
                    f"tool provider {type(provider).__name__}",
                    lambda provider=provider: provider.close(run_context),
                    ReleasePhase.TOOLS,
                )

            extra_variables: dict[str, Any] = {}
            if definition.output_files:
                if run_context.working_dir is None:
                    raise ConfigurationError(
                        "Output files are declared but the run has no working directory"
                    )
                extra_variables["workingDir"] = str(run_context.working_dir)

            tools = ToolExecutor(
                await build_tools(definition.tools, run_context, extra_variables),
                observability,
            )

            memory: Optional[ChatMemory] = None
            if definition.memory is not None:
                self._transition(run_context, InvocationState.ATTACH_MEMORY)
                scope.push(
                    "memory connections", definition.memory.aclose, ReleasePhase.CONNECTIONS
                )
                memory = await definition.memory.chat_memory(run_context)
                scope.push(
                    "memory",
                    lambda: definition.memory.close(run_context, memory),
                    ReleasePhase.MEMORY,
                    propagate=True,
                )

            augmentor: Optional[RetrievalAugmentor] = None
            if definition.content_retrievers:
                self._transition(run_context, InvocationState.ATTACH_RETRIEVERS)
                augmentor = build_retrieval_augmentor(definition.content_retrievers, run_context)
                for retriever in augmentor.router.retrievers:
                    scope.push(
                        f"retriever {type(retriever).__name__}",
                        retriever.aclose,
                        ReleasePhase.CONNECTIONS,
                    )

            self._transition(run_context, InvocationState.INVOKE)
            result = await invocation.invoke(prompt, tools, memory, augmentor)
            response = result.response
            logger.debug(f"Generated completion: {response.text}")

            output = AgentOutput(
                text_output=response.text,
                json_output=parse_structured_output(response.text, definition.configuration),
                token_usage=result.token_usage,
                finish_reason=response.finish_reason,
                thinking=result.thinking if definition.configuration.return_thinking else None,
                tool_executions=result.tool_executions,
                sources=result.sources,
                output_files=await gather_output_files(
                    self._storage(), run_context, definition.output_files
                ) if definition.output_files else {},
                request_duration_ms=self.timings.total(run_context.run_id),
            )

            send_token_metrics(self.metrics, result.token_usage)
            observability.on_completion(output, invocation.chat_model.model_name)
            self._transition(run_context, InvocationState.COMPLETE)
        except BaseException as e:
            primary_error = e
            self._transition(run_context, InvocationState.FAILED)
            try:
                observability.on_failure(e)
            except Exception as hook_error:
                logger.warning(f"Failure hook raised: {hook_error}")
            raise
        finally:
            self._transition(run_context, InvocationState.CLEANUP)
            failures = await scope.release_all()
            self._transition(run_context, InvocationState.TERMINAL)
            if primary_error is None:
                for failure in failures:
                    if failure.propagate:
                        raise failure.error

        return output


async def run_agent(
    definition: AgentDefinition,
    prompt: str,
    run_context: Optional[RunContext] = None,
    **kwargs: Any,
) -> AgentOutput:
    """Run one agent turn with a default orchestrator."""
    return await AgentOrchestrator(**kwargs).run(definition, prompt, run_context)

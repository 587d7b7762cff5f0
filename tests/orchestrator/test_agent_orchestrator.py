"""
Tests for the agent orchestrator.

Tests cover:
- Single-turn completion, token metrics and model timing
- The bounded tool-calling loop
- Memory across invocations and drop policies
- Fatal error categories and guaranteed teardown
- Retrieval augmentation, structured output and output files
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.agentrun.domain.entities import (
    ChatConfiguration,
    ChatMessage,
    ChatResponse,
    Content,
    DropPolicy,
    FinishReason,
    MessageRole,
    ResponseFormat,
    ResponseFormatType,
    RunContext,
    TokenUsage,
    ToolExecutionRequest,
)
from src.agentrun.domain.exceptions import (
    ConfigurationError,
    MemoryIOError,
    ModelProviderError,
    OutputFileError,
    ToolArgumentsError,
    ToolExecutionError,
)
from src.agentrun.domain.ports import IContentRetriever, IContentRetrieverProvider
from src.agentrun.memory.kv import KVStoreMemory
from src.agentrun.memory.postgres import PostgresMemory
from src.agentrun.memory.redis import RedisMemory
from src.agentrun.observability.metrics import InMemoryMetrics
from src.agentrun.observability.tracing import AgentObservability, ObservabilityProvider
from src.agentrun.orchestrator.agent import (
    AgentDefinition,
    AgentOrchestrator,
    InvocationState,
    build_agent,
    run_agent,
)
from src.agentrun.storage.kv import EmbeddedKVStore
from src.agentrun.storage.outputs import LocalOutputStorage
from tests.fakes import (
    AsyncContextManager,
    RecordingToolProvider,
    ScriptedProvider,
    text_response,
    tool_response,
)


# ============================================
# Fixtures
# ============================================


@pytest.fixture
def metrics():
    return InMemoryMetrics()


@pytest.fixture
def states():
    return []


@pytest.fixture
def orchestrator(tmp_path, metrics, timings, states):
    """Orchestrator with isolated metrics, timings and output storage."""
    return AgentOrchestrator(
        output_storage=LocalOutputStorage(tmp_path / "outputs"),
        metrics=metrics,
        timings=timings,
        state_listener=lambda run_id, state: states.append(state),
    )


@pytest.fixture
def kv_store(tmp_path):
    return EmbeddedKVStore(tmp_path / "memory.sqlite3")


class StaticRetriever(IContentRetriever):
    def __init__(self, contents):
        self.contents = contents
        self.queries = []

    async def retrieve(self, query):
        self.queries.append(query)
        return list(self.contents)


class StaticRetrieverProvider(IContentRetrieverProvider):
    def __init__(self, *texts):
        self.retriever = StaticRetriever([Content(text=t) for t in texts])

    def create(self, run_context):
        return self.retriever


def observability_mocks():
    span = MagicMock(spec=AgentObservability)
    provider = MagicMock(spec=ObservabilityProvider)
    provider.start.return_value = span
    return provider, span


# ============================================
# Single turn
# ============================================


class TestSingleTurn:
    """Tests for a run without tools or memory."""

    @pytest.mark.asyncio
    async def test_text_completion(self, orchestrator, run_context):
        """The completion text, usage and finish reason are returned."""
        provider = ScriptedProvider(text_response("Paris", input_tokens=12, output_tokens=3))
        definition = AgentDefinition(provider=provider, system_message="Answer in one word.")

        output = await orchestrator.run(definition, "What is the capital of France?", run_context)

        assert output.text_output == "Paris"
        assert output.token_usage == TokenUsage(12, 3, 15)
        assert output.finish_reason == FinishReason.STOP
        assert output.tool_executions == []
        assert output.json_output is None

    @pytest.mark.asyncio
    async def test_model_receives_system_and_user(self, orchestrator, run_context):
        provider = ScriptedProvider(text_response("Paris"))
        definition = AgentDefinition(provider=provider, system_message="Answer in one word.")

        await orchestrator.run(definition, "What is the capital of France?", run_context)

        messages = provider.last_model.calls[0]["messages"]
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.SYSTEM, "Answer in one word."),
            (MessageRole.USER, "What is the capital of France?"),
        ]

    @pytest.mark.asyncio
    async def test_state_transitions(self, orchestrator, run_context, states):
        """A successful run walks every state up to TERMINAL."""
        definition = AgentDefinition(provider=ScriptedProvider(text_response("ok")))

        await orchestrator.run(definition, "Hello", run_context)

        assert states == [
            InvocationState.INIT,
            InvocationState.BUILD,
            InvocationState.INVOKE,
            InvocationState.COMPLETE,
            InvocationState.CLEANUP,
            InvocationState.TERMINAL,
        ]

    @pytest.mark.asyncio
    async def test_token_metrics_sent_once(self, orchestrator, run_context, metrics):
        definition = AgentDefinition(provider=ScriptedProvider(text_response("ok", 7, 2)))

        await orchestrator.run(definition, "Hello", run_context)

        assert metrics.value("input.token.count") == 7
        assert metrics.value("output.token.count") == 2
        assert metrics.value("total.token.count") == 9
        assert len(metrics.calls) == 3
        assert all(tags == {"unit": "token"} for _, _, tags in metrics.calls)

    @pytest.mark.asyncio
    async def test_timing_recorded_and_cleared(self, orchestrator, run_context, timings):
        """Model timing is reported and the run's registration is cleared."""
        definition = AgentDefinition(provider=ScriptedProvider(text_response("ok")))

        output = await orchestrator.run(definition, "Hello", run_context)

        assert output.request_duration_ms is not None
        assert timings.active_runs() == []

    @pytest.mark.asyncio
    async def test_missing_prompt_fails(self, orchestrator, run_context, timings):
        definition = AgentDefinition(provider=ScriptedProvider(text_response("ok")))

        with pytest.raises(ConfigurationError, match="prompt"):
            await orchestrator.run(definition, "", run_context)
        assert timings.active_runs() == []

    @pytest.mark.asyncio
    async def test_run_agent_default_context(self, timings):
        """run_agent creates a run context when none is given."""
        definition = AgentDefinition(provider=ScriptedProvider(text_response("ok")))

        output = await run_agent(definition, "Hello", timings=timings, metrics=InMemoryMetrics())

        assert output.text_output == "ok"

    @pytest.mark.asyncio
    async def test_thinking_returned_on_request(self, orchestrator, run_context):
        response = ChatResponse(
            message=ChatMessage.ai("42"),
            token_usage=TokenUsage(1, 1, 2),
            thinking="6 times 7",
        )
        definition = AgentDefinition(
            provider=ScriptedProvider(response),
            configuration=ChatConfiguration(thinking_enabled=True, return_thinking=True),
        )

        output = await orchestrator.run(definition, "6 x 7?", run_context)

        assert output.thinking == "6 times 7"

    @pytest.mark.asyncio
    async def test_thinking_hidden_by_default(self, orchestrator, run_context):
        response = ChatResponse(message=ChatMessage.ai("42"), thinking="6 times 7")
        definition = AgentDefinition(provider=ScriptedProvider(response))

        output = await orchestrator.run(definition, "6 x 7?", run_context)

        assert output.thinking is None


# ============================================
# Build
# ============================================


class TestBuildAgent:
    """Tests for the pure build step."""

    def test_negative_budget_rejected(self):
        definition = AgentDefinition(
            provider=ScriptedProvider(), max_sequential_tools_invocations=-1
        )
        with pytest.raises(ConfigurationError, match="must not be negative"):
            build_agent(definition)

    def test_unbounded_by_default(self):
        invocation = build_agent(AgentDefinition(provider=ScriptedProvider()))
        assert invocation.max_tool_invocations > 1_000_000

    def test_contradictory_configuration_rejected(self):
        """A JSON schema on a text response format is rejected at build."""
        configuration = ChatConfiguration(
            response_format=ResponseFormat(
                type=ResponseFormatType.TEXT, json_schema={"type": "object"}
            )
        )
        with pytest.raises(ConfigurationError, match="json_schema"):
            build_agent(AgentDefinition(provider=ScriptedProvider(), configuration=configuration))


# ============================================
# Tool loop
# ============================================


class TestToolLoop:
    """Tests for tool calling."""

    @pytest.mark.asyncio
    async def test_tool_result_fed_back(self, orchestrator, run_context):
        """A requested tool runs and its result reaches the next model call."""
        tool = RecordingToolProvider(result="Sunny, 24°C")
        provider = ScriptedProvider(
            tool_response(("call-1", "lookup", {"query": "weather in Paris"})),
            text_response("It is sunny in Paris."),
        )
        definition = AgentDefinition(provider=provider, tools=(tool,))

        output = await orchestrator.run(definition, "Weather in Paris?", run_context)

        assert output.text_output == "It is sunny in Paris."
        assert [e.tool_name for e in output.tool_executions] == ["lookup"]
        assert output.tool_executions[0].request_id == "call-1"
        assert output.tool_executions[0].result == "Sunny, 24°C"
        assert output.token_usage == TokenUsage(20, 10, 30)

        second_call = provider.last_model.calls[1]["messages"]
        assert second_call[-1].role == MessageRole.TOOL
        assert second_call[-1].tool_call_id == "call-1"
        assert second_call[-2].tool_requests[0].name == "lookup"

    @pytest.mark.asyncio
    async def test_tools_offered_to_model(self, orchestrator, run_context):
        provider = ScriptedProvider(text_response("ok"))
        definition = AgentDefinition(provider=provider, tools=(RecordingToolProvider(),))

        await orchestrator.run(definition, "Hello", run_context)

        assert [t.name for t in provider.last_model.calls[0]["tools"]] == ["lookup"]

    @pytest.mark.asyncio
    async def test_budget_limits_tool_calls(self, orchestrator, run_context):
        """Requests beyond the budget are dropped and tools are withdrawn."""
        tool = RecordingToolProvider()
        provider = ScriptedProvider(
            tool_response(("call-1", "lookup", {"query": "a"}), ("call-2", "lookup", {"query": "b"})),
            text_response("Done with what I have."),
        )
        definition = AgentDefinition(
            provider=provider, tools=(tool,), max_sequential_tools_invocations=1
        )

        output = await orchestrator.run(definition, "Look up a and b", run_context)

        assert [r.id for r in tool.requests] == ["call-1"]
        assert len(output.tool_executions) == 1
        assert provider.last_model.calls[1]["tools"] == []
        assert output.text_output == "Done with what I have."

    @pytest.mark.asyncio
    async def test_zero_budget_never_calls_tools(self, orchestrator, run_context):
        tool = RecordingToolProvider()
        provider = ScriptedProvider(tool_response(("call-1", "lookup", {"query": "a"})))
        definition = AgentDefinition(
            provider=provider, tools=(tool,), max_sequential_tools_invocations=0
        )

        output = await orchestrator.run(definition, "Look up a", run_context)

        assert tool.requests == []
        assert provider.last_model.calls[0]["tools"] == []
        assert output.tool_executions == []

    @pytest.mark.asyncio
    async def test_last_declared_tool_wins(self, orchestrator, run_context):
        first = RecordingToolProvider(name="lookup", result="first")
        second = RecordingToolProvider(name="lookup", result="second")
        provider = ScriptedProvider(
            tool_response(("call-1", "lookup", {"query": "x"})),
            text_response("ok"),
        )
        definition = AgentDefinition(provider=provider, tools=(first, second))

        output = await orchestrator.run(definition, "Hello", run_context)

        assert output.tool_executions[0].result == "second"
        assert first.requests == []


# ============================================
# Failures and teardown
# ============================================


class TestFailures:
    """Fatal error categories and guaranteed teardown."""

    @pytest.mark.asyncio
    async def test_tool_failure_closes_every_tool(self, orchestrator, run_context, states, metrics):
        """A throwing tool fails the run and every provider is closed once."""
        failing = RecordingToolProvider(name="lookup", execute_error=RuntimeError("boom"))
        other = RecordingToolProvider(name="other")
        third = RecordingToolProvider(name="third")
        provider = ScriptedProvider(tool_response(("call-7", "lookup", {"query": "x"})))
        definition = AgentDefinition(provider=provider, tools=(failing, other, third))

        with pytest.raises(ToolExecutionError) as exc_info:
            await orchestrator.run(definition, "Hello", run_context)

        assert exc_info.value.tool_name == "lookup"
        assert exc_info.value.request_id == "call-7"
        assert [p.close_calls for p in (failing, other, third)] == [1, 1, 1]
        assert InvocationState.FAILED in states
        assert states[-2:] == [InvocationState.CLEANUP, InvocationState.TERMINAL]
        assert metrics.calls == []

    @pytest.mark.asyncio
    async def test_invalid_tool_arguments(self, orchestrator, run_context):
        """Arguments that violate the tool schema are fatal."""
        tool = RecordingToolProvider()
        observability, span = observability_mocks()
        provider = ScriptedProvider(tool_response(("call-1", "lookup", {"query": 5})))
        definition = AgentDefinition(provider=provider, tools=(tool,), observability=observability)

        with pytest.raises(ToolArgumentsError) as exc_info:
            await orchestrator.run(definition, "Hello", run_context)

        assert exc_info.value.request_id == "call-1"
        assert tool.requests == []
        span.on_tool_arguments_error.assert_called_once()
        span.on_failure.assert_called_once()
        span.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_unparseable_tool_arguments(self, orchestrator, run_context):
        tool = RecordingToolProvider()
        response = ChatResponse(
            message=ChatMessage.ai(
                "", [ToolExecutionRequest(id="call-1", name="lookup", arguments="{not json")]
            ),
            finish_reason=FinishReason.TOOL_EXECUTION,
        )
        definition = AgentDefinition(provider=ScriptedProvider(response), tools=(tool,))

        with pytest.raises(ToolArgumentsError, match="Invalid JSON arguments"):
            await orchestrator.run(definition, "Hello", run_context)
        assert tool.close_calls == 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self, orchestrator, run_context):
        provider = ScriptedProvider(tool_response(("call-1", "missing", {})))
        definition = AgentDefinition(provider=provider, tools=(RecordingToolProvider(),))

        with pytest.raises(ToolArgumentsError, match="Unknown tool missing"):
            await orchestrator.run(definition, "Hello", run_context)

    @pytest.mark.asyncio
    async def test_close_failure_does_not_mask_success(self, orchestrator, run_context):
        """A provider failing to close is logged; the others still close."""
        broken = RecordingToolProvider(name="broken", close_error=RuntimeError("already gone"))
        healthy = RecordingToolProvider(name="healthy")
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")), tools=(broken, healthy)
        )

        output = await orchestrator.run(definition, "Hello", run_context)

        assert output.text_output == "ok"
        assert broken.close_calls == 1
        assert healthy.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_failure_does_not_mask_primary_error(self, orchestrator, run_context):
        broken = RecordingToolProvider(
            name="lookup", execute_error=RuntimeError("boom"), close_error=RuntimeError("gone")
        )
        provider = ScriptedProvider(tool_response(("call-1", "lookup", {"query": "x"})))
        definition = AgentDefinition(provider=provider, tools=(broken,))

        with pytest.raises(ToolExecutionError):
            await orchestrator.run(definition, "Hello", run_context)

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self, orchestrator, run_context, timings):
        provider = ScriptedProvider()
        tool = RecordingToolProvider()
        definition = AgentDefinition(provider=provider, tools=(tool,))
        model_error = ModelProviderError("Rate limited")

        original = provider.chat_model

        def failing_model(configuration):
            model = original(configuration)
            model._chat = AsyncMock(side_effect=model_error)
            return model

        provider.chat_model = failing_model

        with pytest.raises(ModelProviderError):
            await orchestrator.run(definition, "Hello", run_context)
        assert tool.close_calls == 1
        assert timings.active_runs() == []

    @pytest.mark.asyncio
    async def test_tool_assembly_failure_closes_tools(self, orchestrator, run_context):
        """Providers already registered are closed when a later one fails to assemble."""
        healthy = RecordingToolProvider(name="healthy")
        failing = RecordingToolProvider(name="failing")
        failing.tools = AsyncMock(side_effect=ConnectionError("server not reachable"))
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")), tools=(healthy, failing)
        )

        with pytest.raises(ConnectionError):
            await orchestrator.run(definition, "Hello", run_context)
        assert healthy.close_calls == 1
        assert failing.close_calls == 1


# ============================================
# Memory
# ============================================


class TestMemory:
    """Tests for memory across invocations."""

    @pytest.mark.asyncio
    async def test_remembers_previous_turn(self, orchestrator, kv_store):
        """A second run with the same memory id sees the first exchange."""
        provider = ScriptedProvider(
            text_response("Nice to meet you, John."),
            text_response("Your name is John."),
        )
        definition = AgentDefinition(
            provider=provider,
            system_message="You are a helpful assistant.",
            memory=KVStoreMemory(kv_store, "john"),
        )

        await orchestrator.run(definition, "My name is John", RunContext(run_id="run-a"))
        output = await orchestrator.run(definition, "What is my name?", RunContext(run_id="run-b"))

        assert output.text_output == "Your name is John."
        messages = provider.last_model.calls[0]["messages"]
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.SYSTEM, "You are a helpful assistant."),
            (MessageRole.USER, "My name is John"),
            (MessageRole.AI, "Nice to meet you, John."),
            (MessageRole.USER, "What is my name?"),
        ]

    @pytest.mark.asyncio
    async def test_memory_state_transition(self, orchestrator, kv_store, states):
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")),
            memory=KVStoreMemory(kv_store, "john"),
        )

        await orchestrator.run(definition, "Hello", RunContext())

        assert InvocationState.ATTACH_MEMORY in states

    @pytest.mark.asyncio
    async def test_before_taskrun_ignores_stale_history(self, orchestrator, kv_store):
        """A stale record is not shown to the model and is replaced."""
        stale = KVStoreMemory(kv_store, "john")
        key = stale.record_key(RunContext())
        await stale.save(key, [ChatMessage.user("old question")], timedelta(hours=1))

        provider = ScriptedProvider(text_response("fresh answer"))
        definition = AgentDefinition(
            provider=provider,
            memory=KVStoreMemory(kv_store, "john", drop=DropPolicy.BEFORE_TASKRUN),
        )

        await orchestrator.run(definition, "new question", RunContext())

        messages = provider.last_model.calls[0]["messages"]
        assert [m.content for m in messages] == ["new question"]
        stored = await stale.load(key, 10)
        assert [m.content for m in stored] == ["new question", "fresh answer"]

    @pytest.mark.asyncio
    async def test_after_taskrun_leaves_nothing(self, orchestrator, kv_store):
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")),
            memory=KVStoreMemory(kv_store, "john", drop=DropPolicy.AFTER_TASKRUN),
        )

        await orchestrator.run(definition, "Hello", RunContext())

        assert await kv_store.get("agentrun.memory", "default/john") is None

    @pytest.mark.asyncio
    async def test_tool_exchange_is_remembered(self, orchestrator, kv_store):
        tool = RecordingToolProvider(result="42")
        provider = ScriptedProvider(
            tool_response(("call-1", "lookup", {"query": "answer"})),
            text_response("The answer is 42."),
        )
        memory = KVStoreMemory(kv_store, "john")
        definition = AgentDefinition(provider=provider, tools=(tool,), memory=memory)

        await orchestrator.run(definition, "What is the answer?", RunContext())

        stored = await memory.load(memory.record_key(RunContext()), 10)
        assert [m.role for m in stored] == [
            MessageRole.USER,
            MessageRole.AI,
            MessageRole.TOOL,
            MessageRole.AI,
        ]

    @pytest.mark.asyncio
    async def test_load_failure_is_fatal(self, orchestrator, run_context):
        client = MagicMock()
        client.get = AsyncMock(side_effect=ConnectionError("Connection refused"))
        tool = RecordingToolProvider()
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")),
            tools=(tool,),
            memory=RedisMemory("john", client=client),
        )

        with pytest.raises(MemoryIOError):
            await orchestrator.run(definition, "Hello", run_context)
        assert tool.close_calls == 1

    @pytest.mark.asyncio
    async def test_save_failure_reaches_caller(self, orchestrator, run_context, states):
        """Persistence failing after a successful turn is not swallowed."""
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.setex = AsyncMock(side_effect=ConnectionError("Connection reset"))
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")),
            memory=RedisMemory("john", client=client),
        )

        with pytest.raises(MemoryIOError, match="Failed to save chat memory"):
            await orchestrator.run(definition, "Hello", run_context)
        assert states[-1] == InvocationState.TERMINAL

    @pytest.mark.asyncio
    async def test_save_failure_does_not_mask_primary_error(self, orchestrator, run_context):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.setex = AsyncMock(side_effect=ConnectionError("Connection reset"))
        tool = RecordingToolProvider(execute_error=RuntimeError("boom"))
        definition = AgentDefinition(
            provider=ScriptedProvider(tool_response(("call-1", "lookup", {"query": "x"}))),
            tools=(tool,),
            memory=RedisMemory("john", client=client),
        )

        with pytest.raises(ToolExecutionError):
            await orchestrator.run(definition, "Hello", run_context)

    @pytest.mark.asyncio
    async def test_namespaces_keep_separate_histories(self, orchestrator, kv_store):
        """Runs from different namespaces never see each other's history."""
        provider = ScriptedProvider(
            text_response("Noted, tenant A."),
            text_response("Hello, tenant B."),
        )
        definition = AgentDefinition(provider=provider, memory=KVStoreMemory(kv_store, "shared"))

        await orchestrator.run(definition, "The code is 1234", RunContext(namespace="tenant-a"))
        await orchestrator.run(definition, "hello", RunContext(namespace="tenant-b"))

        messages = provider.last_model.calls[0]["messages"]
        assert [m.content for m in messages] == ["hello"]
        assert await kv_store.get("agentrun.memory", "tenant-a/shared") is not None
        assert await kv_store.get("agentrun.memory", "tenant-b/shared") is not None


# ============================================
# Connections
# ============================================


def redis_client(calls):
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.setex = AsyncMock(side_effect=lambda *args: calls.append("setex"))
    client.aclose = AsyncMock(side_effect=lambda: calls.append("aclose"))
    return client


class TestConnections:
    """Clients opened for a run are closed when it ends."""

    @pytest.mark.asyncio
    async def test_owned_redis_client_closed_after_save(self, orchestrator, run_context):
        calls = []
        client = redis_client(calls)
        memory = RedisMemory("john", url="redis://cache:6379")
        definition = AgentDefinition(provider=ScriptedProvider(text_response("ok")), memory=memory)

        with patch("src.agentrun.memory.redis.redis.from_url", return_value=client):
            await orchestrator.run(definition, "Hello", run_context)

        assert calls == ["setex", "aclose"]
        assert memory._client is None

    @pytest.mark.asyncio
    async def test_owned_redis_client_closed_on_failure(self, orchestrator, run_context):
        client = redis_client([])
        tool = RecordingToolProvider(execute_error=RuntimeError("boom"))
        memory = RedisMemory("john", url="redis://cache:6379")
        definition = AgentDefinition(
            provider=ScriptedProvider(tool_response(("call-1", "lookup", {"query": "x"}))),
            tools=(tool,),
            memory=memory,
        )

        with patch("src.agentrun.memory.redis.redis.from_url", return_value=client):
            with pytest.raises(ToolExecutionError):
                await orchestrator.run(definition, "Hello", run_context)

        client.aclose.assert_awaited_once()
        assert memory._client is None

    @pytest.mark.asyncio
    async def test_owned_client_closed_when_load_fails(self, orchestrator, run_context):
        client = redis_client([])
        client.get = AsyncMock(side_effect=ConnectionError("Connection refused"))
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")),
            memory=RedisMemory("john", url="redis://cache:6379"),
        )

        with patch("src.agentrun.memory.redis.redis.from_url", return_value=client):
            with pytest.raises(MemoryIOError):
                await orchestrator.run(definition, "Hello", run_context)

        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_owned_postgres_pool_closed(self, orchestrator, run_context):
        conn = AsyncMock()
        conn.fetchrow = AsyncMock(return_value=None)
        conn.execute = AsyncMock(return_value="OK")
        pool = MagicMock()
        pool.acquire = MagicMock(return_value=AsyncContextManager(conn))
        pool.close = AsyncMock()
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")),
            memory=PostgresMemory("john", dsn="postgresql://agent@db/agents"),
        )

        with patch(
            "src.agentrun.memory.postgres.asyncpg.create_pool", AsyncMock(return_value=pool)
        ):
            await orchestrator.run(definition, "Hello", run_context)

        pool.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_model_provider_closed(self, orchestrator, run_context):
        provider = ScriptedProvider(text_response("ok"))
        provider.aclose = AsyncMock()

        await orchestrator.run(AgentDefinition(provider=provider), "Hello", run_context)

        provider.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_model_provider_closed_on_build_failure(self, orchestrator, run_context):
        provider = ScriptedProvider()
        provider.aclose = AsyncMock()
        definition = AgentDefinition(provider=provider, max_sequential_tools_invocations=-1)

        with pytest.raises(ConfigurationError):
            await orchestrator.run(definition, "Hello", run_context)

        provider.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retrievers_closed(self, orchestrator, run_context):
        retriever_provider = StaticRetrieverProvider("Paris is the capital of France.")
        retriever_provider.retriever.aclose = AsyncMock()
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("Paris")),
            content_retrievers=(retriever_provider,),
        )

        await orchestrator.run(definition, "Capital of France?", run_context)

        retriever_provider.retriever.aclose.assert_awaited_once()


# ============================================
# Retrieval, structured output, output files
# ============================================


class TestRetrieval:
    """Tests for always-on content retrieval."""

    @pytest.mark.asyncio
    async def test_user_message_augmented(self, orchestrator, run_context, states):
        retriever = StaticRetrieverProvider("Paris is the capital of France.", "It has 2M inhabitants.")
        provider = ScriptedProvider(text_response("Paris"))
        definition = AgentDefinition(provider=provider, content_retrievers=(retriever,))

        output = await orchestrator.run(definition, "Capital of France?", run_context)

        user = provider.last_model.calls[0]["messages"][-1]
        assert user.content == (
            "Capital of France?\n\nAnswer using the following information:\n"
            "Paris is the capital of France.\n\nIt has 2M inhabitants."
        )
        assert [s.text for s in output.sources] == [
            "Paris is the capital of France.",
            "It has 2M inhabitants.",
        ]
        assert retriever.retriever.queries == ["Capital of France?"]
        assert InvocationState.ATTACH_RETRIEVERS in states

    @pytest.mark.asyncio
    async def test_no_content_leaves_message(self, orchestrator, run_context):
        provider = ScriptedProvider(text_response("Paris"))
        definition = AgentDefinition(
            provider=provider, content_retrievers=(StaticRetrieverProvider(),)
        )

        output = await orchestrator.run(definition, "Capital of France?", run_context)

        assert provider.last_model.calls[0]["messages"][-1].content == "Capital of France?"
        assert output.sources == []


class TestStructuredOutput:
    """Tests for JSON response formats."""

    SCHEMA = {
        "type": "object",
        "properties": {"city": {"type": "string"}},
        "required": ["city"],
    }

    def definition(self, text):
        return AgentDefinition(
            provider=ScriptedProvider(text_response(text)),
            configuration=ChatConfiguration(
                response_format=ResponseFormat(type=ResponseFormatType.JSON, json_schema=self.SCHEMA)
            ),
        )

    @pytest.mark.asyncio
    async def test_json_output_parsed(self, orchestrator, run_context):
        output = await orchestrator.run(self.definition('{"city": "Paris"}'), "Capital?", run_context)

        assert output.json_output == {"city": "Paris"}

    @pytest.mark.asyncio
    async def test_invalid_json_fails(self, orchestrator, run_context):
        with pytest.raises(ModelProviderError, match="invalid JSON"):
            await orchestrator.run(self.definition("Paris"), "Capital?", run_context)

    @pytest.mark.asyncio
    async def test_schema_mismatch_fails(self, orchestrator, run_context):
        with pytest.raises(ModelProviderError, match="does not match the JSON schema"):
            await orchestrator.run(self.definition('{"country": "France"}'), "Capital?", run_context)


class TestOutputFiles:
    """Tests for declared output files."""

    @pytest.mark.asyncio
    async def test_declared_files_stored(self, orchestrator, run_context, tmp_path):
        """Files written to the working directory are copied to storage."""
        (run_context.working_dir / "report.md").write_text("# Report")
        tool = RecordingToolProvider()
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("Written.")),
            tools=(tool,),
            output_files=("report.md",),
        )

        output = await orchestrator.run(definition, "Write the report", run_context)

        assert tool.extra_variables == [{"workingDir": str(run_context.working_dir)}]
        stored = tmp_path / "outputs" / "run-1" / "report.md"
        assert output.output_files == {"report.md": stored.resolve().as_uri()}
        assert stored.read_text() == "# Report"

    @pytest.mark.asyncio
    async def test_no_working_dir_for_extra_variables(self, orchestrator, run_context):
        tool = RecordingToolProvider()
        definition = AgentDefinition(provider=ScriptedProvider(text_response("ok")), tools=(tool,))

        output = await orchestrator.run(definition, "Hello", run_context)

        assert tool.extra_variables == [{}]
        assert output.output_files == {}

    @pytest.mark.asyncio
    async def test_missing_file_fails(self, orchestrator, run_context):
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")), output_files=("missing.txt",)
        )

        with pytest.raises(OutputFileError, match="was not produced"):
            await orchestrator.run(definition, "Hello", run_context)

    @pytest.mark.asyncio
    async def test_requires_working_dir(self, orchestrator):
        tool = RecordingToolProvider()
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")),
            tools=(tool,),
            output_files=("report.md",),
        )

        with pytest.raises(ConfigurationError, match="no working directory"):
            await orchestrator.run(definition, "Hello", RunContext())
        assert tool.close_calls == 1


class TestObservability:
    """Tests for tracing hooks."""

    @pytest.mark.asyncio
    async def test_completion_traced(self, orchestrator, run_context):
        observability, span = observability_mocks()
        definition = AgentDefinition(
            provider=ScriptedProvider(text_response("ok")),
            system_message="Be brief.",
            observability=observability,
        )

        output = await orchestrator.run(definition, "Hello", run_context)

        observability.start.assert_called_once_with(run_context, "Hello", "Be brief.")
        span.on_completion.assert_called_once_with(output, "scripted")
        span.on_failure.assert_not_called()
        span.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_tool_execution_error_traced(self, orchestrator, run_context):
        observability, span = observability_mocks()
        tool = RecordingToolProvider(execute_error=RuntimeError("boom"))
        definition = AgentDefinition(
            provider=ScriptedProvider(tool_response(("call-1", "lookup", {"query": "x"}))),
            tools=(tool,),
            observability=observability,
        )

        with pytest.raises(ToolExecutionError):
            await orchestrator.run(definition, "Hello", run_context)

        error = span.on_tool_execution_error.call_args.args[0]
        assert isinstance(error, ToolExecutionError)
        assert error.tool_name == "lookup"
        span.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_failure_hook_error_keeps_primary_error(self, orchestrator, run_context):
        """A tracing hook raising on failure does not replace the run's error."""
        observability, span = observability_mocks()
        span.on_failure.side_effect = RuntimeError("tracing backend down")
        tool = RecordingToolProvider(execute_error=RuntimeError("boom"))
        definition = AgentDefinition(
            provider=ScriptedProvider(tool_response(("call-1", "lookup", {"query": "x"}))),
            tools=(tool,),
            observability=observability,
        )

        with pytest.raises(ToolExecutionError):
            await orchestrator.run(definition, "Hello", run_context)

        span.close.assert_called_once()
        assert tool.close_calls == 1

"""
Run tracing hooks.

Tracing is side-effect only: every hook logs and swallows its own
failures so it can never change the outcome of a run.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..domain.entities import AgentOutput, RunContext
from ..domain.exceptions import ToolArgumentsError, ToolExecutionError

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring langfuse if tracing is not used
try:
    from langfuse import Langfuse

    LANGFUSE_AVAILABLE = True
except ImportError:
    LANGFUSE_AVAILABLE = False
    Langfuse = None

SPAN_NAME = "ai.agent.run"


class AgentObservability(ABC):
    """Per-run tracing span."""

    @abstractmethod
    def on_tool_arguments_error(self, error: ToolArgumentsError) -> None:
        pass

    @abstractmethod
    def on_tool_execution_error(self, error: ToolExecutionError) -> None:
        pass

    @abstractmethod
    def on_completion(self, output: AgentOutput, model_name: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def on_failure(self, error: BaseException) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class ObservabilityProvider(ABC):
    """Opens one tracing span per run."""

    @abstractmethod
    def start(
        self,
        run_context: RunContext,
        prompt: str,
        system_message: Optional[str],
    ) -> AgentObservability:
        pass


class NoopAgentObservability(AgentObservability):
    def on_tool_arguments_error(self, error: ToolArgumentsError) -> None:
        pass

    def on_tool_execution_error(self, error: ToolExecutionError) -> None:
        pass

    def on_completion(self, output: AgentOutput, model_name: Optional[str] = None) -> None:
        pass

    def on_failure(self, error: BaseException) -> None:
        pass

    def close(self) -> None:
        pass


class NoopObservabilityProvider(ObservabilityProvider):
    def start(
        self,
        run_context: RunContext,
        prompt: str,
        system_message: Optional[str],
    ) -> AgentObservability:
        return NoopAgentObservability()


class LangfuseObservability(AgentObservability):
    """A Langfuse trace covering one run.

    Tool errors become trace events, the completion becomes a generation
    carrying token usage.
    """

    def __init__(self, client: Any, trace: Any):
        self.client = client
        self.trace = trace

    def on_tool_arguments_error(self, error: ToolArgumentsError) -> None:
        try:
            self.trace.event(
                name="tool.arguments.error",
                level="ERROR",
                status_message=str(error),
                metadata={"tool_name": error.tool_name, "request_id": error.request_id},
            )
        except Exception as e:
            logger.warning(f"Unable to trace tool arguments error: {e}")

    def on_tool_execution_error(self, error: ToolExecutionError) -> None:
        try:
            self.trace.event(
                name="tool.execution.error",
                level="ERROR",
                status_message=str(error),
                metadata={"tool_name": error.tool_name, "request_id": error.request_id},
            )
        except Exception as e:
            logger.warning(f"Unable to trace tool execution error: {e}")

    def on_completion(self, output: AgentOutput, model_name: Optional[str] = None) -> None:
        try:
            usage = output.token_usage
            self.trace.generation(
                name="completion",
                model=model_name,
                output=output.text_output,
                usage={
                    "input": usage.input_tokens,
                    "output": usage.output_tokens,
                    "total": usage.total_tokens,
                    "unit": "TOKENS",
                },
                metadata={
                    "finish_reason": output.finish_reason.value if output.finish_reason else None,
                    "tool_executions": len(output.tool_executions),
                },
            )
            self.trace.update(output=output.text_output)
        except Exception as e:
            logger.warning(f"Unable to trace completion: {e}")

    def on_failure(self, error: BaseException) -> None:
        try:
            self.trace.update(
                output={"error": str(error), "type": type(error).__name__},
                metadata={"level": "ERROR"},
            )
        except Exception as e:
            logger.warning(f"Unable to trace failure: {e}")

    def close(self) -> None:
        try:
            self.client.flush()
        except Exception as e:
            logger.warning(f"Unable to flush Langfuse trace: {e}")


class LangfuseObservabilityProvider(ObservabilityProvider):
    """Creates Langfuse traces named ``ai.agent.run``.

    Usage:
        provider = LangfuseObservabilityProvider(
            public_key="pk-lf-...",
            secret_key="sk-lf-...",
            host="https://cloud.langfuse.com",
        )
    """

    def __init__(
        self,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        host: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        if client is None:
            if not LANGFUSE_AVAILABLE:
                raise ImportError(
                    "langfuse package is required for LangfuseObservabilityProvider. "
                    "Install with: pip install 'langfuse<3'"
                )
            client = Langfuse(public_key=public_key, secret_key=secret_key, host=host)
        self.client = client

    def start(
        self,
        run_context: RunContext,
        prompt: str,
        system_message: Optional[str],
    ) -> AgentObservability:
        try:
            trace = self.client.trace(
                name=SPAN_NAME,
                id=run_context.run_id,
                input={"prompt": prompt, "system_message": system_message},
                metadata=dict(run_context.labels),
            )
        except Exception as e:
            logger.warning(f"Unable to start Langfuse trace, tracing disabled for run: {e}")
            return NoopAgentObservability()
        return LangfuseObservability(self.client, trace)

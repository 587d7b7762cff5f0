"""
Nested agent tool.

Exposes another agent as the tool ``agent_<name>``. The nested agent owns
its own tool providers: ``close`` and ``kill`` cascade to them.
"""

from __future__ import annotations

import logging
from typing import Any

from ..domain.entities import RunContext, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ConfigurationError, ToolArgumentsError
from ..domain.ports import IToolExecutor, IToolProvider
from ..orchestrator.agent import AgentDefinition, AgentInvocation, build_agent
from ..orchestrator.assembly import build_retrieval_augmentor, build_tools
from ..orchestrator.tool_executor import ToolExecutor
from ..retrievers.router import RetrievalAugmentor
from .base import PROMPT_PARAMETERS, parse_arguments

logger = logging.getLogger(__name__)

TOOL_DESCRIPTION = "This tool allows to call an AI agent named '{name}'."


class NestedAgentError(Exception):
    """The nested agent failed to answer."""


class AgentToolExecutor(IToolExecutor):
    def __init__(
        self,
        invocation: AgentInvocation,
        tools: ToolExecutor,
        augmentor: RetrievalAugmentor | None,
    ):
        self.invocation = invocation
        self.tools = tools
        self.augmentor = augmentor

    async def execute(self, request: ToolExecutionRequest) -> str:
        logger.debug(f"Tool execution request: {request}")
        prompt = parse_arguments(request).get("prompt")
        if not prompt:
            raise ToolArgumentsError(
                f"{request.name} requires a prompt",
                tool_name=request.name,
                request_id=request.id,
            )
        try:
            result = await self.invocation.invoke(prompt, self.tools, None, self.augmentor)
        except Exception as e:
            raise NestedAgentError(f"Nested agent failed: {e}") from e
        logger.debug(f"Generated completion: {result.response.text}")
        return result.response.text


class AgentTool(IToolProvider):
    """Another agent used as a tool.

    Usage:
        AgentTool(
            name="researcher",
            description="Finds sources on a topic",
            definition=AgentDefinition(provider=provider, tools=(TavilyWebSearchTool(key),)),
        )

    The nested definition's memory and output files are not used; the
    nested agent answers one prompt per call.
    """

    def __init__(self, definition: AgentDefinition, description: str, name: str = "tool"):
        if not description:
            raise ConfigurationError("AgentTool requires a description")
        self.definition = definition
        self.description = description
        self.name = name

    @property
    def tool_providers(self) -> tuple[IToolProvider, ...]:
        return self.definition.tools

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        invocation = build_agent(self.definition, run_context)
        child_tools = ToolExecutor(
            await build_tools(self.definition.tools, run_context, extra_variables)
        )
        augmentor = build_retrieval_augmentor(self.definition.content_retrievers, run_context)

        parameters = dict(PROMPT_PARAMETERS, description=self.description)
        specification = ToolSpecification(
            name=f"agent_{self.name}",
            description=TOOL_DESCRIPTION.format(name=self.name),
            parameters=parameters,
        )
        return {specification: AgentToolExecutor(invocation, child_tools, augmentor)}

    async def close(self, run_context: RunContext) -> None:
        for provider in self.definition.tools:
            try:
                await provider.close(run_context)
            except Exception as e:
                logger.warning(f"Unable to close nested tool provider {type(provider).__name__}: {e}")

    def kill(self) -> None:
        for provider in self.definition.tools:
            try:
                provider.kill()
            except Exception as e:
                logger.warning(f"Unable to kill nested tool provider {type(provider).__name__}: {e}")

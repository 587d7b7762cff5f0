"""
Remote agent tool over the agent-to-agent (A2A) protocol.

The python-a2a client is synchronous; each call runs in a worker thread
and is awaited before the run continues.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ..domain.entities import RunContext, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ConfigurationError, ToolArgumentsError
from ..domain.ports import IToolExecutor, IToolProvider
from .base import PROMPT_PARAMETERS, parse_arguments

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring python-a2a if not used
try:
    from python_a2a import A2AClient, Message, MessageRole, TextContent

    A2A_AVAILABLE = True
except ImportError:
    A2A_AVAILABLE = False
    A2AClient = None
    Message = None
    MessageRole = None
    TextContent = None

TOOL_DESCRIPTION = "This tool allows to call a remote AI agent named '{name}'."


class RemoteAgentError(Exception):
    """The remote agent answered with an error."""


class A2AToolExecutor(IToolExecutor):
    def __init__(self, server_url: str, headers: Optional[dict[str, str]] = None):
        self.server_url = server_url
        self.headers = headers

    def _send(self, prompt: str) -> str:
        client = A2AClient(self.server_url, headers=self.headers)
        message = Message(content=TextContent(text=prompt), role=MessageRole.USER)
        response = client.send_message(message)

        content = response.content
        if getattr(content, "type", None) == "error":
            raise RemoteAgentError(getattr(content, "message", str(content)))
        text = getattr(content, "text", None)
        return text if text is not None else str(content)

    async def execute(self, request: ToolExecutionRequest) -> str:
        prompt = parse_arguments(request).get("prompt")
        if not prompt:
            raise ToolArgumentsError(
                f"{request.name} requires a prompt",
                tool_name=request.name,
                request_id=request.id,
            )
        logger.debug(f"Calling remote agent at {self.server_url}")
        return await asyncio.to_thread(self._send, prompt)


class A2AAgentTool(IToolProvider):
    """Exposes a remote A2A agent as the tool ``a2a_agent_<name>``."""

    def __init__(
        self,
        server_url: str,
        description: str,
        name: str = "tool",
        headers: Optional[dict[str, str]] = None,
    ):
        if not A2A_AVAILABLE:
            raise ImportError(
                "python-a2a package is required for A2AAgentTool. "
                "Install with: pip install python-a2a"
            )
        if not server_url:
            raise ConfigurationError("A2AAgentTool requires a server url")
        self.server_url = server_url
        self.description = description
        self.name = name
        self.headers = headers

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        specification = ToolSpecification(
            name=f"a2a_agent_{self.name}",
            description=f"{TOOL_DESCRIPTION.format(name=self.name)} {self.description}".strip(),
            parameters=PROMPT_PARAMETERS,
        )
        return {specification: A2AToolExecutor(self.server_url, self.headers)}

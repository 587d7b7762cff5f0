"""
MCP client tools.

Connects to a tool server speaking the Model Context Protocol, lists its
tools and exposes each one to the model. Four transports are supported:
a local command over stdio, a container over stdio, SSE and streamable
HTTP. Connections are opened per run and closed by ``close``.
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from contextlib import AsyncExitStack
from typing import Any, Optional

from fastmcp import Client
from fastmcp.client.transports import (
    ClientTransport,
    SSETransport,
    StdioTransport,
    StreamableHttpTransport,
)

from ..domain.entities import RunContext, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ConfigurationError
from ..domain.ports import IToolExecutor, IToolProvider
from .base import parse_arguments, render_template

logger = logging.getLogger(__name__)


class MCPToolError(Exception):
    """Error executing an MCP tool."""

    def __init__(
        self,
        message: str,
        tool_name: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.tool_name = tool_name
        self.original_error = original_error


def _content_to_text(result: Any) -> str:
    """Flatten an MCP tool result into text for the model."""
    content = getattr(result, "content", result)
    if content is None:
        return ""
    if not isinstance(content, list):
        content = [content]

    parts: list[str] = []
    for item in content:
        text = getattr(item, "text", None)
        if text is not None:
            parts.append(text)
        elif hasattr(item, "model_dump"):
            parts.append(json.dumps(item.model_dump(mode="json")))
        else:
            parts.append(str(item))
    return "\n".join(parts)


class McpToolExecutor(IToolExecutor):
    """Calls one tool on a connected MCP client."""

    def __init__(self, provider: McpClientTool, client: Any, tool_name: str):
        self.provider = provider
        self.client = client
        self.tool_name = tool_name

    async def execute(self, request: ToolExecutionRequest) -> str:
        if self.provider.killed:
            raise MCPToolError("MCP client was killed", self.tool_name)

        arguments = parse_arguments(request)
        logger.debug(f"Calling MCP tool {self.tool_name} with {arguments}")
        result = await self.client.call_tool(self.tool_name, arguments)
        if getattr(result, "is_error", False):
            raise MCPToolError(
                f"MCP tool {self.tool_name} failed: {_content_to_text(result)}",
                self.tool_name,
            )
        return _content_to_text(result)


class McpClientTool(IToolProvider):
    """Base class for MCP client tool providers.

    Subclasses build the transport; connection lifecycle and tool
    discovery are shared.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self.killed = False
        self._stacks: dict[str, AsyncExitStack] = {}

    @abstractmethod
    def _transport(self, extra_variables: dict[str, Any]) -> ClientTransport:
        pass

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        transport = self._transport(extra_variables)
        stack = AsyncExitStack()
        self._stacks[run_context.run_id] = stack

        kwargs: dict[str, Any] = {}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        client = await stack.enter_async_context(Client(transport, **kwargs))

        mcp_tools = await client.list_tools()
        logger.info(f"Loaded {len(mcp_tools)} MCP tools from {transport}")

        return {
            ToolSpecification(
                name=tool.name,
                description=tool.description or "",
                parameters=tool.inputSchema or {"type": "object", "properties": {}},
            ): McpToolExecutor(self, client, tool.name)
            for tool in mcp_tools
        }

    async def close(self, run_context: RunContext) -> None:
        stack = self._stacks.pop(run_context.run_id, None)
        if stack is not None:
            await stack.aclose()

    def kill(self) -> None:
        self.killed = True
        logger.info(f"Killed {type(self).__name__}, {len(self._stacks)} open connections")


class StdioMcpClient(McpClientTool):
    """MCP server started as a local command.

    Usage:
        StdioMcpClient(
            command=["npx", "-y", "@modelcontextprotocol/server-filesystem", "{{ workingDir }}"],
        )
    """

    def __init__(
        self,
        command: list[str],
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        if not command:
            raise ConfigurationError("StdioMcpClient requires a command")
        self.command = list(command)
        self.env = dict(env or {})

    def _transport(self, extra_variables: dict[str, Any]) -> ClientTransport:
        command = [render_template(part, extra_variables) for part in self.command]
        env = {k: render_template(v, extra_variables) for k, v in self.env.items()}
        return StdioTransport(command=command[0], args=command[1:], env=env or None)


class DockerMcpClient(McpClientTool):
    """MCP server running in a container, spoken to over stdio.

    Runs ``docker run -i --rm`` with the configured binds and environment.
    """

    def __init__(
        self,
        image: str,
        command: Optional[list[str]] = None,
        env: Optional[dict[str, str]] = None,
        binds: Optional[list[str]] = None,
        docker_host: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        if not image:
            raise ConfigurationError("DockerMcpClient requires an image")
        self.image = image
        self.command = list(command or [])
        self.env = dict(env or {})
        self.binds = list(binds or [])
        self.docker_host = docker_host

    def docker_args(self, extra_variables: dict[str, Any]) -> list[str]:
        args = ["run", "-i", "--rm"]
        for bind in self.binds:
            args += ["-v", render_template(bind, extra_variables)]
        for key, value in self.env.items():
            args += ["-e", f"{key}={render_template(value, extra_variables)}"]
        args.append(render_template(self.image, extra_variables))
        args += [render_template(part, extra_variables) for part in self.command]
        return args

    def _transport(self, extra_variables: dict[str, Any]) -> ClientTransport:
        env = {"DOCKER_HOST": self.docker_host} if self.docker_host else None
        return StdioTransport(command="docker", args=self.docker_args(extra_variables), env=env)


class SseMcpClient(McpClientTool):
    """MCP server reached over Server-Sent Events."""

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        if not url:
            raise ConfigurationError("SseMcpClient requires a url")
        self.url = url
        self.headers = dict(headers or {})

    def _transport(self, extra_variables: dict[str, Any]) -> ClientTransport:
        return SSETransport(
            url=render_template(self.url, extra_variables),
            headers={k: render_template(v, extra_variables) for k, v in self.headers.items()},
        )


class StreamableHttpMcpClient(McpClientTool):
    """MCP server reached over streamable HTTP."""

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        if not url:
            raise ConfigurationError("StreamableHttpMcpClient requires a url")
        self.url = url
        self.headers = dict(headers or {})

    def _transport(self, extra_variables: dict[str, Any]) -> ClientTransport:
        return StreamableHttpTransport(
            url=render_template(self.url, extra_variables),
            headers={k: render_template(v, extra_variables) for k, v in self.headers.items()},
        )

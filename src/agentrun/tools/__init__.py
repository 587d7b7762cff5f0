"""Tool providers the model may call.

The nested agent tool lives in :mod:`agentrun.tools.agent_tool` and is not
re-exported here, since it depends on the orchestrator.
"""

from .a2a import A2AAgentTool
from .base import FunctionTool, FunctionToolExecutor, parse_arguments, render_template
from .code_execution import CodeExecution
from .flow import FlowTool
from .mcp import (
    DockerMcpClient,
    McpClientTool,
    MCPToolError,
    SseMcpClient,
    StdioMcpClient,
    StreamableHttpMcpClient,
)
from .task import HostTask, TaskTool
from .web_search import GoogleCustomWebSearchTool, TavilyWebSearchTool

__all__ = [
    "A2AAgentTool",
    "CodeExecution",
    "DockerMcpClient",
    "FlowTool",
    "FunctionTool",
    "FunctionToolExecutor",
    "GoogleCustomWebSearchTool",
    "HostTask",
    "McpClientTool",
    "MCPToolError",
    "SseMcpClient",
    "StdioMcpClient",
    "StreamableHttpMcpClient",
    "TaskTool",
    "TavilyWebSearchTool",
    "parse_arguments",
    "render_template",
]

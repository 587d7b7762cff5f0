"""Agent orchestration: build, invoke and tear down one agent turn."""

from .agent import (
    AgentDefinition,
    AgentInvocation,
    AgentOrchestrator,
    InvocationResult,
    InvocationState,
    build_agent,
    parse_structured_output,
    run_agent,
)
from .assembly import build_retrieval_augmentor, build_tools
from .resources import ReleaseFailure, ReleasePhase, ResourceScope
from .tool_executor import ToolExecutor

__all__ = [
    "AgentDefinition",
    "AgentInvocation",
    "AgentOrchestrator",
    "InvocationResult",
    "InvocationState",
    "build_agent",
    "parse_structured_output",
    "run_agent",
    "build_retrieval_augmentor",
    "build_tools",
    "ReleaseFailure",
    "ReleasePhase",
    "ResourceScope",
    "ToolExecutor",
]

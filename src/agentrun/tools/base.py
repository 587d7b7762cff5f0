"""
Tool provider building blocks.

Shared helpers for argument parsing and template substitution, plus a
provider that exposes plain Python callables as tools.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
from typing import Any, Awaitable, Callable, Optional, Union

from ..domain.entities import RunContext, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ToolArgumentsError
from ..domain.ports import IToolExecutor, IToolProvider

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

PROMPT_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "prompt": {
            "type": "string",
            "description": "The AI agent prompt also called a user message",
        }
    },
    "required": ["prompt"],
}


def render_template(value: Optional[str], variables: dict[str, Any]) -> Optional[str]:
    """Substitute ``{{ name }}`` placeholders from ``variables``.

    Unknown placeholders are left untouched.
    """
    if value is None or not variables:
        return value

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return str(variables[name])

    return _PLACEHOLDER.sub(_replace, value)


def parse_arguments(request: ToolExecutionRequest) -> dict[str, Any]:
    """Parse the raw JSON arguments of a tool call into an object.

    Raises:
        ToolArgumentsError: If the payload is not a JSON object
    """
    raw = request.arguments or "{}"
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ToolArgumentsError(
            f"Invalid JSON arguments for tool {request.name}: {e}",
            tool_name=request.name,
            request_id=request.id,
            original_error=e,
        ) from e
    if not isinstance(arguments, dict):
        raise ToolArgumentsError(
            f"Arguments for tool {request.name} must be a JSON object",
            tool_name=request.name,
            request_id=request.id,
        )
    return arguments


def stringify_result(result: Any) -> str:
    if result is None:
        return "Success"
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


ToolFunction = Callable[..., Union[Any, Awaitable[Any]]]


class FunctionToolExecutor(IToolExecutor):
    """Calls a Python function with the parsed arguments as keywords.

    Synchronous functions run in a worker thread and are awaited in turn.
    """

    def __init__(self, fn: ToolFunction):
        self.fn = fn

    async def execute(self, request: ToolExecutionRequest) -> str:
        arguments = parse_arguments(request)
        if inspect.iscoroutinefunction(self.fn):
            result = await self.fn(**arguments)
        else:
            result = await asyncio.to_thread(self.fn, **arguments)
        return stringify_result(result)


class FunctionTool(IToolProvider):
    """Exposes one Python callable as a tool.

    Usage:
        async def get_weather(city: str) -> str:
            ...

        tool = FunctionTool(
            ToolSpecification(
                name="get_weather",
                description="Current weather for a city",
                parameters={
                    "type": "object",
                    "properties": {"city": {"type": "string"}},
                    "required": ["city"],
                },
            ),
            get_weather,
        )
    """

    def __init__(self, specification: ToolSpecification, fn: ToolFunction):
        self.specification = specification
        self.fn = fn

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        return {self.specification: FunctionToolExecutor(self.fn)}

"""
Host task tool.

Lets the model run tasks of the host workflow engine. Each task is
declared with its fixed properties and the JSON schema of everything it
accepts; properties already set (other than the ``...`` placeholder) are
removed from the schema the model sees, and the model's arguments are
merged over the fixed properties when the task runs.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from ..domain.entities import RunContext, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ConfigurationError
from ..domain.ports import IToolExecutor, IToolProvider
from .base import parse_arguments

logger = logging.getLogger(__name__)

LLM_PLACEHOLDER = "..."

TOOL_DESCRIPTION = (
    "This tool allows you to call a task. "
    "A task will respond with its output, which is a map of key/value pairs."
)

TaskRunner = Callable[[RunContext, dict[str, Any]], Union[Optional[dict], Awaitable[Optional[dict]]]]


@dataclass
class HostTask:
    """A runnable host task.

    Attributes:
        id: Task id, the tool is named ``task_<id>``
        runner: Called with the run context and the merged properties
        schema: JSON schema of every property the task accepts
        properties: Properties fixed by the declaration
        description: Task description appended to the tool description
    """

    id: str
    runner: TaskRunner
    schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    properties: dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None


def remove_already_set(schema: dict[str, Any], properties: dict[str, Any]) -> dict[str, Any]:
    """Drop schema properties the declaration already fixes."""

    def open_to_model(name: str) -> bool:
        return name not in properties or properties[name] == LLM_PLACEHOLDER

    result = copy.deepcopy(schema)
    result["properties"] = {
        name: value
        for name, value in (schema.get("properties") or {}).items()
        if open_to_model(name)
    }
    result["required"] = [name for name in schema.get("required") or [] if open_to_model(name)]
    return result


class HostTaskExecutor(IToolExecutor):
    def __init__(self, task: HostTask, run_context: RunContext):
        self.task = task
        self.run_context = run_context

    async def execute(self, request: ToolExecutionRequest) -> str:
        logger.debug(f"Tool execution request: {request}")
        merged = {
            k: v for k, v in self.task.properties.items() if v != LLM_PLACEHOLDER
        }
        merged.update(parse_arguments(request))

        if inspect.iscoroutinefunction(self.task.runner):
            output = await self.task.runner(self.run_context, merged)
        else:
            output = await asyncio.to_thread(self.task.runner, self.run_context, merged)
            if inspect.isawaitable(output):
                output = await output

        if output:
            return json.dumps(output, default=str)
        # Tells the model the task ran so it does not call it again
        return "Success"


class TaskTool(IToolProvider):
    """Exposes host tasks as tools named ``task_<id>``."""

    def __init__(self, tasks: list[HostTask]):
        if not tasks:
            raise ConfigurationError("TaskTool requires at least one task")
        self.tasks = list(tasks)

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        tools: dict[ToolSpecification, IToolExecutor] = {}
        for task in self.tasks:
            if not task.description:
                logger.warning(
                    f"The task {task.id} has no description, so the model may not "
                    "understand its purpose; you may need to describe it in the prompt."
                )
            description = TOOL_DESCRIPTION
            if task.description:
                description = f"{TOOL_DESCRIPTION} {task.description}"
            specification = ToolSpecification(
                name=f"task_{task.id}",
                description=description,
                parameters=remove_already_set(task.schema, task.properties),
            )
            tools[specification] = HostTaskExecutor(task, run_context)
        return tools

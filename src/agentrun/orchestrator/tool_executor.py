"""
Tool Executor.

Routes tool calls requested by the model to their executors. Argument
problems and executor failures are both fatal to the run: each is logged
with the tool name and the call's correlation id and raised as a typed
error.
"""

from __future__ import annotations

import logging
from typing import Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from ..domain.entities import ToolExecution, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ToolArgumentsError, ToolExecutionError
from ..domain.ports import IToolExecutor
from ..observability.tracing import AgentObservability, NoopAgentObservability
from ..tools.base import parse_arguments

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Executes tool calls against an assembled tool map.

    Usage:
        executor = ToolExecutor(tools)

        execution = await executor.execute(request)
    """

    def __init__(
        self,
        tools: dict[ToolSpecification, IToolExecutor],
        observability: Optional[AgentObservability] = None,
    ):
        self._tools: dict[str, tuple[ToolSpecification, IToolExecutor]] = {
            specification.name: (specification, executor)
            for specification, executor in tools.items()
        }
        self.observability = observability or NoopAgentObservability()

    def specifications(self) -> list[ToolSpecification]:
        return [specification for specification, _ in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def _arguments_error(
        self,
        request: ToolExecutionRequest,
        message: str,
        error: Optional[Exception] = None,
    ) -> ToolArgumentsError:
        logger.error(
            f"An error occurred while processing tool arguments for tool {request.name} "
            f"with request ID {request.id}: {message}"
        )
        if isinstance(error, ToolArgumentsError):
            wrapped = error
        else:
            wrapped = ToolArgumentsError(message, request.name, request.id, error)
        self.observability.on_tool_arguments_error(wrapped)
        return wrapped

    def _validate(self, specification: ToolSpecification, request: ToolExecutionRequest) -> None:
        try:
            arguments = parse_arguments(request)
        except ToolArgumentsError as e:
            self._arguments_error(request, str(e), e)
            raise

        try:
            Draft7Validator.check_schema(specification.parameters)
            validator = Draft7Validator(specification.parameters)
            errors = sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))
        except SchemaError as e:
            logger.debug(f"Tool {specification.name} has an invalid parameter schema, skipping validation: {e}")
            return

        if errors:
            details = "; ".join(error.message for error in errors)
            raise self._arguments_error(request, f"Invalid arguments for tool {request.name}: {details}")

    async def execute(self, request: ToolExecutionRequest) -> ToolExecution:
        """Execute one tool call.

        Raises:
            ToolArgumentsError: Unknown tool or invalid arguments
            ToolExecutionError: The executor raised
        """
        binding = self._tools.get(request.name)
        if binding is None:
            raise self._arguments_error(request, f"Unknown tool {request.name}")

        specification, executor = binding
        self._validate(specification, request)

        logger.info(f"Executing tool: {request.name} (request {request.id})")
        try:
            result = await executor.execute(request)
        except ToolArgumentsError as e:
            self._arguments_error(request, str(e), e)
            raise
        except Exception as e:
            logger.error(
                f"An error occurred during tool execution for tool {request.name} "
                f"with request ID {request.id}: {e}"
            )
            error = ToolExecutionError(
                f"Tool {request.name} failed: {e}", request.name, request.id, e
            )
            self.observability.on_tool_execution_error(error)
            raise error from e

        logger.debug(f"Tool {request.name} result: {result}")
        return ToolExecution(
            request_id=request.id,
            tool_name=request.name,
            arguments=request.arguments,
            result=result if isinstance(result, str) else str(result),
        )

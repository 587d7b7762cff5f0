"""
Host flow tool.

Lets the model start executions of host workflow engine flows. A tool
declared with a namespace and flow id is pinned to that flow and named
``flow_<namespace>_<id>``; without them a single ``flow`` tool lets the
model pick the flow itself.

Inputs and labels passed by the model override the declared ones. The
execution is only queued: the tool answers with the execution details
the launcher returns, not with the flow's outputs.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional

from ..domain.entities import FlowDescriptor, RunContext, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ConfigurationError, ToolArgumentsError
from ..domain.ports import IFlowLauncher, IToolExecutor, IToolProvider
from .base import parse_arguments

logger = logging.getLogger(__name__)

SYSTEM_LABEL_PREFIX = "system."

DEFINED_FLOW_DESCRIPTION = "This tool allows to execute a flow and output the execution details."
MODEL_FLOW_DESCRIPTION = (
    "This tool allows to execute a workflow also called a flow. "
    "This tool will respond with the flow execution information. "
    "The namespace and the id of the flow must be passed as tool parameters."
)

_KEY_VALUE_ITEMS = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "key": {"type": "string", "description": "The label key."},
            "value": {"type": "string", "description": "The label value."},
        },
    },
    "description": "The list of labels.",
}

_INPUT_ITEMS = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "The input id."},
            "value": {"type": "string", "description": "The input value."},
        },
    },
    "description": "The list of inputs.",
}

_SCHEDULE_DATE = {
    "type": "string",
    "description": (
        "The scheduled date of the flow. Use it only if the flow needs to be executed "
        "later and not immediately. It should be an ISO8601 formatted zoned date time."
    ),
}


def tool_name(flow: FlowDescriptor) -> str:
    return f"flow_{flow.namespace.replace('.', '_')}_{flow.id}"


class FlowExecutor(IToolExecutor):
    """Merges inputs and labels, then queues one execution per call."""

    def __init__(
        self,
        tool: "FlowTool",
        run_context: RunContext,
        flow: Optional[FlowDescriptor] = None,
    ):
        self.tool = tool
        self.run_context = run_context
        self.flow = flow

    async def _resolve(self, request: ToolExecutionRequest, arguments: dict[str, Any]) -> FlowDescriptor:
        if self.flow is not None:
            return self.flow
        namespace = arguments.get("namespace")
        flow_id = arguments.get("flowId")
        if not namespace or not flow_id:
            raise ToolArgumentsError(
                "Both 'namespace' and 'flowId' are required",
                tool_name=request.name,
                request_id=request.id,
            )
        flow = await self.tool.launcher.find(namespace, flow_id, arguments.get("revision"))
        if flow is None:
            raise ToolArgumentsError(
                f"Unable to find flow '{flow_id}' in namespace '{namespace}'",
                tool_name=request.name,
                request_id=request.id,
            )
        return flow

    def _labels(self, flow: FlowDescriptor, arguments: dict[str, Any]) -> dict[str, str]:
        execution_labels = self.run_context.labels
        if self.tool.inherit_labels:
            labels = {k: v for k, v in execution_labels.items() if k not in flow.labels}
        else:
            labels = {k: v for k, v in execution_labels.items() if k.startswith(SYSTEM_LABEL_PREFIX)}
        labels.update(self.tool.labels)
        for label in arguments.get("labels") or []:
            if label.get("key"):
                labels[str(label["key"])] = str(label.get("value", ""))
        return labels

    async def execute(self, request: ToolExecutionRequest) -> str:
        logger.debug(f"Tool execution request: {request}")
        arguments = parse_arguments(request)

        schedule_date = self.tool.schedule_date
        if arguments.get("scheduleDate"):
            try:
                schedule_date = datetime.fromisoformat(arguments["scheduleDate"])
            except ValueError as e:
                raise ToolArgumentsError(
                    f"Invalid scheduleDate {arguments['scheduleDate']!r}: {e}",
                    tool_name=request.name,
                    request_id=request.id,
                    original_error=e,
                ) from e

        flow = await self._resolve(request, arguments)

        inputs = dict(self.tool.inputs)
        inputs.update(
            {item["id"]: item.get("value") for item in arguments.get("inputs") or [] if item.get("id")}
        )
        # Fail the call rather than start an execution that would fail anyway
        for flow_input in flow.inputs:
            if flow_input.mandatory and flow_input.id not in inputs:
                raise ToolArgumentsError(
                    f"You need to provide an input with the id '{flow_input.id}'.",
                    tool_name=request.name,
                    request_id=request.id,
                )

        execution = await self.tool.launcher.launch(
            self.run_context, flow, inputs, self._labels(flow, arguments), schedule_date
        )
        logger.info(f"Queued an execution of flow {flow.namespace}.{flow.id}")
        return json.dumps(execution, default=str)


class FlowTool(IToolProvider):
    """Starts host flows through an :class:`IFlowLauncher`."""

    def __init__(
        self,
        launcher: IFlowLauncher,
        namespace: Optional[str] = None,
        flow_id: Optional[str] = None,
        revision: Optional[int] = None,
        description: Optional[str] = None,
        inputs: Optional[dict[str, Any]] = None,
        labels: Optional[dict[str, str]] = None,
        inherit_labels: bool = False,
        schedule_date: Optional[datetime] = None,
    ):
        if namespace and not flow_id:
            raise ConfigurationError("Flow ID must be specified when you set the namespace")
        if flow_id and not namespace:
            raise ConfigurationError("Namespace must be specified when you set the flow ID")
        self.launcher = launcher
        self.namespace = namespace
        self.flow_id = flow_id
        self.revision = revision
        self.description = description
        self.inputs = dict(inputs or {})
        self.labels = dict(labels or {})
        self.inherit_labels = inherit_labels
        self.schedule_date = schedule_date

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        parameters: dict[str, Any] = {
            "type": "object",
            "properties": {"labels": _KEY_VALUE_ITEMS, "scheduleDate": _SCHEDULE_DATE},
        }

        if not self.namespace or not self.flow_id:
            parameters["properties"].update(
                {
                    "namespace": {"type": "string"},
                    "flowId": {"type": "string"},
                    "revision": {"type": "integer"},
                    "inputs": _INPUT_ITEMS,
                }
            )
            parameters["required"] = ["namespace", "flowId"]
            specification = ToolSpecification(
                name="flow", description=MODEL_FLOW_DESCRIPTION, parameters=parameters
            )
            return {specification: FlowExecutor(self, run_context)}

        flow = await self.launcher.find(self.namespace, self.flow_id, self.revision)
        if flow is None:
            raise ConfigurationError(
                f"Unable to find flow at '{self.flow_id}' in namespace '{self.namespace}'"
            )
        description = self.description or flow.description
        if not description:
            raise ConfigurationError(
                "You must provide a description in the tool's description or in the flow description"
            )

        if flow.inputs:
            parameters["properties"]["inputs"] = _INPUT_ITEMS
            if any(i.mandatory and i.id not in self.inputs for i in flow.inputs):
                parameters["required"] = ["inputs"]

        specification = ToolSpecification(
            name=tool_name(flow),
            description=f"{DEFINED_FLOW_DESCRIPTION} {description}",
            parameters=parameters,
        )
        return {specification: FlowExecutor(self, run_context, flow)}

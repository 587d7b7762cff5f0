"""
Sandboxed code execution through the Judge0 API on RapidAPI.

The model writes JavaScript, Judge0 runs it and the tool returns stdout
(or the error output when the program failed).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..domain.entities import RunContext, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ConfigurationError, ToolArgumentsError
from ..domain.ports import IToolExecutor, IToolProvider
from .base import parse_arguments

logger = logging.getLogger(__name__)

JUDGE0_HOST = "judge0-ce.p.rapidapi.com"
JAVASCRIPT_LANGUAGE_ID = 63
ACCEPTED_STATUS_ID = 3

CODE_EXECUTION_SPECIFICATION = ToolSpecification(
    name="execute_javascript_code",
    description=(
        "Executes the provided JavaScript code and returns what it prints to stdout. "
        "Use it for any calculation, even a simple one; "
        "the code must print the final result with console.log."
    ),
    parameters={
        "type": "object",
        "properties": {
            "code": {"type": "string", "description": "JavaScript code to execute"},
        },
        "required": ["code"],
    },
)


class CodeExecutionError(Exception):
    """The submitted program did not run successfully."""


class Judge0Executor(IToolExecutor):
    def __init__(
        self,
        api_key: str,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    async def _submit(self, code: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "params": {"base64_encoded": "false", "wait": "true"},
            "headers": {
                "X-RapidAPI-Key": self.api_key,
                "X-RapidAPI-Host": JUDGE0_HOST,
            },
            "json": {"language_id": JAVASCRIPT_LANGUAGE_ID, "source_code": code},
        }
        url = f"https://{JUDGE0_HOST}/submissions"
        if self._client is not None:
            response = await self._client.post(url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, **kwargs)
        response.raise_for_status()
        return response.json()

    async def execute(self, request: ToolExecutionRequest) -> str:
        code = parse_arguments(request).get("code")
        if not code:
            raise ToolArgumentsError(
                "execute_javascript_code requires code",
                tool_name=request.name,
                request_id=request.id,
            )

        submission = await self._submit(code)
        status = submission.get("status") or {}
        if status.get("id") != ACCEPTED_STATUS_ID:
            details = (
                submission.get("compile_output")
                or submission.get("stderr")
                or status.get("description")
                or "unknown error"
            )
            raise CodeExecutionError(f"Code execution failed: {details}")

        stdout = (submission.get("stdout") or "").strip()
        logger.debug(f"Judge0 returned {len(stdout)} characters")
        return stdout or "No result: the code did not print anything"


class CodeExecution(IToolProvider):
    """JavaScript code execution tool backed by Judge0."""

    def __init__(self, api_key: str):
        if not api_key:
            raise ConfigurationError("CodeExecution requires a RapidAPI key")
        self.api_key = api_key

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        return {CODE_EXECUTION_SPECIFICATION: Judge0Executor(self.api_key)}

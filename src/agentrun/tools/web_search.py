"""
Web search tools.

Unlike the web search retrievers, these are only called when the model
decides to search.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..domain.entities import RunContext, ToolExecutionRequest, ToolSpecification
from ..domain.exceptions import ToolArgumentsError
from ..domain.ports import IToolExecutor, IToolProvider
from ..retrievers.web_search import (
    DEFAULT_MAX_RESULTS,
    GoogleCustomSearchEngine,
    TavilySearchEngine,
    WebSearchEngine,
)
from .base import parse_arguments

logger = logging.getLogger(__name__)

WEB_SEARCH_SPECIFICATION = ToolSpecification(
    name="web_search",
    description="Searches the web and returns the most relevant pages with a short snippet each.",
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query"},
        },
        "required": ["query"],
    },
)


class WebSearchToolExecutor(IToolExecutor):
    def __init__(self, engine: WebSearchEngine, max_results: int):
        self.engine = engine
        self.max_results = max_results

    async def execute(self, request: ToolExecutionRequest) -> str:
        query = parse_arguments(request).get("query")
        if not query:
            raise ToolArgumentsError(
                "web_search requires a query",
                tool_name=request.name,
                request_id=request.id,
            )
        results = await self.engine.search(query, self.max_results)
        logger.debug(f"Web search for {query!r} returned {len(results)} results")
        return json.dumps(
            [{"title": r.title, "url": r.url, "snippet": r.snippet} for r in results]
        )


class TavilyWebSearchTool(IToolProvider):
    def __init__(self, api_key: str, max_results: int = DEFAULT_MAX_RESULTS):
        self.api_key = api_key
        self.max_results = max_results

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        engine = TavilySearchEngine(self.api_key)
        return {WEB_SEARCH_SPECIFICATION: WebSearchToolExecutor(engine, self.max_results)}


class GoogleCustomWebSearchTool(IToolProvider):
    def __init__(self, api_key: str, csi: str, max_results: int = DEFAULT_MAX_RESULTS):
        self.api_key = api_key
        self.csi = csi
        self.max_results = max_results

    async def tools(
        self,
        run_context: RunContext,
        extra_variables: dict[str, Any],
    ) -> dict[ToolSpecification, IToolExecutor]:
        engine = GoogleCustomSearchEngine(self.api_key, self.csi)
        return {WEB_SEARCH_SPECIFICATION: WebSearchToolExecutor(engine, self.max_results)}

"""
Web search engines and the retrievers built on them.

Tavily and Google Custom Search are called over HTTP with httpx. The same
engines back the web search tools.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..domain.entities import Content, ErrorType, RunContext
from ..domain.exceptions import AgentError, ConfigurationError
from ..domain.ports import IContentRetriever, IContentRetrieverProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 3


class WebSearchError(AgentError):
    """A web search request failed."""


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str

    def to_content(self) -> Content:
        return Content(
            text=f"{self.title}\n{self.snippet}".strip(),
            metadata={"url": self.url, "title": self.title},
        )


class WebSearchEngine(ABC):
    """A web search backend."""

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            message = f"{type(self).__name__} error: {e.response.status_code} - {e.response.text}"
            logger.error(message)
            raise WebSearchError(message, ErrorType.RECOVERABLE, e) from e
        except httpx.RequestError as e:
            message = f"{type(self).__name__} connection error: {e}"
            logger.error(message)
            raise WebSearchError(message, ErrorType.RECOVERABLE, e) from e

    @abstractmethod
    async def search(self, query: str, max_results: int) -> list[SearchResult]:
        pass


class TavilySearchEngine(WebSearchEngine):
    """Tavily search API."""

    URL = "https://api.tavily.com/search"

    def __init__(self, api_key: str, **kwargs: Any):
        super().__init__(**kwargs)
        if not api_key:
            raise ConfigurationError("Tavily requires an api key")
        self.api_key = api_key

    async def search(self, query: str, max_results: int) -> list[SearchResult]:
        data = await self._request(
            "POST",
            self.URL,
            json={"api_key": self.api_key, "query": query, "max_results": max_results},
        )
        return [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("url", ""),
                snippet=item.get("content", ""),
            )
            for item in data.get("results", [])[:max_results]
        ]


class GoogleCustomSearchEngine(WebSearchEngine):
    """Google Custom Search JSON API."""

    URL = "https://www.googleapis.com/customsearch/v1"

    def __init__(self, api_key: str, csi: str, **kwargs: Any):
        super().__init__(**kwargs)
        if not api_key or not csi:
            raise ConfigurationError("Google Custom Search requires an api key and a search engine id")
        self.api_key = api_key
        self.csi = csi

    async def search(self, query: str, max_results: int) -> list[SearchResult]:
        data = await self._request(
            "GET",
            self.URL,
            params={"key": self.api_key, "cx": self.csi, "q": query, "num": max_results},
        )
        return [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("link", ""),
                snippet=item.get("snippet", ""),
            )
            for item in data.get("items", [])[:max_results]
        ]


class WebSearchContentRetriever(IContentRetriever):
    def __init__(self, engine: WebSearchEngine, max_results: int = DEFAULT_MAX_RESULTS):
        self.engine = engine
        self.max_results = max_results

    async def retrieve(self, query: str) -> list[Content]:
        results = await self.engine.search(query, self.max_results)
        logger.debug(f"{type(self.engine).__name__} returned {len(results)} results")
        return [result.to_content() for result in results]


class TavilyWebSearch(IContentRetrieverProvider):
    """Always-on Tavily web search."""

    def __init__(self, api_key: str, max_results: int = DEFAULT_MAX_RESULTS):
        self.api_key = api_key
        self.max_results = max_results

    def create(self, run_context: RunContext) -> IContentRetriever:
        return WebSearchContentRetriever(TavilySearchEngine(self.api_key), self.max_results)


class GoogleCustomWebSearch(IContentRetrieverProvider):
    """Always-on Google Custom Search."""

    def __init__(self, api_key: str, csi: str, max_results: int = DEFAULT_MAX_RESULTS):
        self.api_key = api_key
        self.csi = csi
        self.max_results = max_results

    def create(self, run_context: RunContext) -> IContentRetriever:
        return WebSearchContentRetriever(
            GoogleCustomSearchEngine(self.api_key, self.csi), self.max_results
        )

"""Content retrievers queried on every turn."""

from .embedding_store import (
    EmbeddingStore,
    EmbeddingStoreRetriever,
    EmbeddingStoreRetrieverProvider,
    relevance_score,
)
from .router import QueryRouter, RetrievalAugmentor
from .web_search import (
    DEFAULT_MAX_RESULTS,
    GoogleCustomSearchEngine,
    GoogleCustomWebSearch,
    SearchResult,
    TavilySearchEngine,
    TavilyWebSearch,
    WebSearchContentRetriever,
    WebSearchEngine,
    WebSearchError,
)

__all__ = [
    "EmbeddingStore",
    "EmbeddingStoreRetriever",
    "EmbeddingStoreRetrieverProvider",
    "relevance_score",
    "QueryRouter",
    "RetrievalAugmentor",
    "DEFAULT_MAX_RESULTS",
    "GoogleCustomSearchEngine",
    "GoogleCustomWebSearch",
    "SearchResult",
    "TavilySearchEngine",
    "TavilyWebSearch",
    "WebSearchContentRetriever",
    "WebSearchEngine",
    "WebSearchError",
]

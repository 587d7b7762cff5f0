"""
Embedding store retriever.

Segments and their vectors are kept as one JSON snapshot in the embedded
key/value store, loaded whole on every query. Scores are cosine
similarity mapped onto 0..1 as ``(cos + 1) / 2``. Suitable for small
document sets only.

Usage:
    provider = EmbeddingStoreRetrieverProvider(
        create_provider("openai", ProviderConfig(api_key="sk-...")),
        EmbeddedKVStore("data/kv.db"),
        max_results=3,
        min_score=0.5,
    )
    await provider.ingest(run_context, ["Paris is the capital of France."])
"""

from __future__ import annotations

import json
import logging
import math
import uuid
from typing import Any, Optional, Sequence

from ..domain.entities import Content, RunContext
from ..domain.exceptions import ConfigurationError
from ..domain.ports import (
    IContentRetriever,
    IContentRetrieverProvider,
    IEmbeddingModel,
    IKeyValueStore,
    IModelProvider,
)
from .web_search import DEFAULT_MAX_RESULTS

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "agentrun.embeddings"


def relevance_score(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors, mapped onto 0..1."""
    if len(a) != len(b):
        raise ConfigurationError(
            f"Embedding dimension mismatch: query has {len(a)}, stored segment has {len(b)}"
        )
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    cosine = sum(x * y for x, y in zip(a, b)) / norm if norm else 0.0
    return (cosine + 1.0) / 2.0


class EmbeddingStore:
    """Text segments with their embeddings, persisted under one key."""

    def __init__(self, store: IKeyValueStore, name: str, namespace: str = DEFAULT_NAMESPACE):
        self.store = store
        self.name = name
        self.namespace = namespace

    async def _load(self) -> list[dict[str, Any]]:
        payload = await self.store.get(self.namespace, self.name)
        return json.loads(payload) if payload else []

    async def add(
        self,
        text: str,
        embedding: Sequence[float],
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        segments = await self._load()
        segment_id = str(uuid.uuid4())
        segments.append(
            {
                "id": segment_id,
                "text": text,
                "metadata": metadata or {},
                "embedding": list(embedding),
            }
        )
        await self.store.put(self.namespace, self.name, json.dumps(segments))
        return segment_id

    async def remove_all(self) -> None:
        await self.store.delete(self.namespace, self.name)

    async def search(
        self,
        embedding: Sequence[float],
        max_results: int,
        min_score: float = 0.0,
    ) -> list[tuple[float, dict[str, Any]]]:
        """Best matches first, at most ``max_results``, none below ``min_score``."""
        scored = [
            (relevance_score(embedding, segment["embedding"]), segment)
            for segment in await self._load()
        ]
        matches = [match for match in scored if match[0] >= min_score]
        matches.sort(key=lambda match: match[0], reverse=True)
        return matches[:max_results]


class EmbeddingStoreRetriever(IContentRetriever):
    def __init__(
        self,
        embedding_model: IEmbeddingModel,
        store: EmbeddingStore,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_score: float = 0.0,
        provider: Optional[IModelProvider] = None,
    ):
        self.embedding_model = embedding_model
        self.store = store
        self.max_results = max_results
        self.min_score = min_score
        self.provider = provider

    async def retrieve(self, query: str) -> list[Content]:
        query_embedding = await self.embedding_model.embed(query)
        matches = await self.store.search(query_embedding, self.max_results, self.min_score)
        logger.debug(f"Embedding store {self.store.name} returned {len(matches)} segments")
        return [
            Content(text=segment["text"], metadata={**segment["metadata"], "score": score})
            for score, segment in matches
        ]

    async def aclose(self) -> None:
        if self.provider is not None:
            await self.provider.aclose()


class EmbeddingStoreRetrieverProvider(IContentRetrieverProvider):
    """Always-on retrieval from an embedding store.

    The store is never mutated by retrieval. Its name defaults to
    ``<run namespace>-embedding-store``; the embedding model must produce
    vectors of the dimension the store was filled with.
    """

    def __init__(
        self,
        embedding_provider: IModelProvider,
        store: IKeyValueStore,
        store_name: Optional[str] = None,
        namespace: str = DEFAULT_NAMESPACE,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_score: float = 0.0,
    ):
        if not 0.0 <= min_score <= 1.0:
            raise ConfigurationError(f"min_score must be between 0 and 1, got {min_score}")
        self.embedding_provider = embedding_provider
        self.store = store
        self.store_name = store_name
        self.namespace = namespace
        self.max_results = max_results
        self.min_score = min_score

    def embedding_store(self, run_context: RunContext) -> EmbeddingStore:
        name = self.store_name or f"{run_context.namespace}-embedding-store"
        return EmbeddingStore(self.store, name, self.namespace)

    async def ingest(
        self,
        run_context: RunContext,
        texts: Sequence[str],
        drop: bool = False,
    ) -> list[str]:
        """Embed and store ``texts``; ``drop`` discards the previous segments first."""
        store = self.embedding_store(run_context)
        if drop:
            await store.remove_all()
        model = self.embedding_provider.embedding_model()
        ids = [await store.add(text, await model.embed(text)) for text in texts]
        logger.info(f"Ingested {len(ids)} segments into embedding store {store.name}")
        return ids

    def create(self, run_context: RunContext) -> IContentRetriever:
        return EmbeddingStoreRetriever(
            self.embedding_provider.embedding_model(),
            self.embedding_store(run_context),
            self.max_results,
            self.min_score,
            provider=self.embedding_provider,
        )

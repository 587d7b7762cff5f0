"""
Tests for the embedding store retriever.
"""

from unittest.mock import AsyncMock

import pytest

from src.agentrun.domain.entities import RunContext
from src.agentrun.domain.exceptions import ConfigurationError
from src.agentrun.domain.ports import IEmbeddingModel
from src.agentrun.providers.base import BaseModelProvider, ProviderConfig
from src.agentrun.retrievers.embedding_store import (
    EmbeddingStore,
    EmbeddingStoreRetriever,
    EmbeddingStoreRetrieverProvider,
    relevance_score,
)
from src.agentrun.storage.kv import EmbeddedKVStore

KEYWORDS = ("paris", "tower", "python")


class KeywordEmbeddingModel(IEmbeddingModel):
    """Counts keywords, one dimension each."""

    def __init__(self):
        self.texts = []

    async def embed(self, text):
        self.texts.append(text)
        words = text.lower().replace(".", "").split()
        return [float(words.count(keyword)) for keyword in KEYWORDS]


class KeywordEmbeddingProvider(BaseModelProvider):
    provider_name = "keywords"

    def __init__(self):
        super().__init__(ProviderConfig(model="keywords"))
        self.model = KeywordEmbeddingModel()
        self.aclose = AsyncMock()

    def chat_model(self, configuration):
        raise NotImplementedError

    def embedding_model(self):
        return self.model


DOCUMENTS = [
    "Paris is the capital of France.",
    "The Eiffel tower stands in Paris.",
    "Python is a programming language.",
]


@pytest.fixture
def kv_store(tmp_path):
    return EmbeddedKVStore(tmp_path / "kv.db")


@pytest.fixture
def embedding_provider():
    return KeywordEmbeddingProvider()


@pytest.fixture
def retriever_provider(embedding_provider, kv_store):
    return EmbeddingStoreRetrieverProvider(embedding_provider, kv_store, max_results=3)


class TestRelevanceScore:
    def test_scores(self):
        assert relevance_score([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
        assert relevance_score([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.5)
        assert relevance_score([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert relevance_score([0.0, 0.0], [1.0, 0.0]) == pytest.approx(0.5)

    def test_dimension_mismatch(self):
        with pytest.raises(ConfigurationError, match="dimension mismatch"):
            relevance_score([1.0, 0.0], [1.0, 0.0, 0.0])


class TestEmbeddingStore:
    @pytest.mark.asyncio
    async def test_search_ranks_and_limits(self, kv_store):
        store = EmbeddingStore(kv_store, "docs")
        await store.add("north", [0.0, 1.0])
        await store.add("east", [1.0, 0.0], {"source": "compass"})
        await store.add("north-east", [1.0, 1.0])

        matches = await store.search([1.0, 0.0], max_results=2)

        assert [segment["text"] for _, segment in matches] == ["east", "north-east"]
        assert matches[0][0] == pytest.approx(1.0)
        assert matches[0][1]["metadata"] == {"source": "compass"}

    @pytest.mark.asyncio
    async def test_remove_all(self, kv_store):
        store = EmbeddingStore(kv_store, "docs")
        await store.add("east", [1.0, 0.0])

        await store.remove_all()

        assert await store.search([1.0, 0.0], max_results=3) == []


class TestEmbeddingStoreRetriever:
    """Tests for ingestion and retrieval through the provider."""

    @pytest.mark.asyncio
    async def test_best_matches_first(self, retriever_provider, run_context):
        await retriever_provider.ingest(run_context, DOCUMENTS)

        contents = await retriever_provider.create(run_context).retrieve("Where is the tower")

        assert contents[0].text == "The Eiffel tower stands in Paris."
        assert contents[0].metadata["score"] > contents[1].metadata["score"]
        assert len(contents) == 3

    @pytest.mark.asyncio
    async def test_min_score_filters(self, embedding_provider, kv_store, run_context):
        provider = EmbeddingStoreRetrieverProvider(embedding_provider, kv_store, min_score=0.9)
        await provider.ingest(run_context, DOCUMENTS)

        contents = await provider.create(run_context).retrieve("python")

        assert [c.text for c in contents] == ["Python is a programming language."]

    @pytest.mark.asyncio
    async def test_max_results(self, embedding_provider, kv_store, run_context):
        provider = EmbeddingStoreRetrieverProvider(embedding_provider, kv_store, max_results=1)
        await provider.ingest(run_context, DOCUMENTS)

        contents = await provider.create(run_context).retrieve("paris")

        assert len(contents) == 1

    @pytest.mark.asyncio
    async def test_query_is_embedded(self, retriever_provider, embedding_provider, run_context):
        await retriever_provider.create(run_context).retrieve("paris")

        assert embedding_provider.model.texts == ["paris"]

    @pytest.mark.asyncio
    async def test_retrieval_leaves_store_unchanged(self, retriever_provider, kv_store, run_context):
        await retriever_provider.ingest(run_context, DOCUMENTS)
        before = await kv_store.get("agentrun.embeddings", "default-embedding-store")

        await retriever_provider.create(run_context).retrieve("paris")

        assert await kv_store.get("agentrun.embeddings", "default-embedding-store") == before

    @pytest.mark.asyncio
    async def test_ingest_drop_discards_previous(self, retriever_provider, run_context):
        await retriever_provider.ingest(run_context, DOCUMENTS)
        await retriever_provider.ingest(run_context, ["Only Python here."], drop=True)

        contents = await retriever_provider.create(run_context).retrieve("paris")

        assert [c.text for c in contents] == ["Only Python here."]

    @pytest.mark.asyncio
    async def test_store_scoped_to_run_namespace(self, retriever_provider, run_context):
        await retriever_provider.ingest(run_context, DOCUMENTS)

        other = retriever_provider.create(RunContext(namespace="other"))

        assert await other.retrieve("paris") == []

    @pytest.mark.asyncio
    async def test_named_store_shared_across_namespaces(self, embedding_provider, kv_store):
        provider = EmbeddingStoreRetrieverProvider(embedding_provider, kv_store, store_name="docs")
        await provider.ingest(RunContext(namespace="a"), DOCUMENTS)

        contents = await provider.create(RunContext(namespace="b")).retrieve("python")

        assert contents[0].text == "Python is a programming language."

    @pytest.mark.asyncio
    async def test_aclose_closes_embedding_provider(self, retriever_provider, embedding_provider, run_context):
        retriever = retriever_provider.create(run_context)
        assert isinstance(retriever, EmbeddingStoreRetriever)

        await retriever.aclose()

        embedding_provider.aclose.assert_awaited_once()

    def test_min_score_out_of_range(self, embedding_provider, kv_store):
        with pytest.raises(ConfigurationError, match="min_score"):
            EmbeddingStoreRetrieverProvider(embedding_provider, kv_store, min_score=-0.1)

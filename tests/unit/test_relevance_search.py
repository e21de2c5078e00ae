import asyncio

import pytest
from chromadb.errors import NotFoundError

from signal_chat.config import RetrievalConfig
from signal_chat.retrieval.embedder import HashingEmbedder
from signal_chat.retrieval.rerank import Reranker, RerankScore
from signal_chat.retrieval.search import RelevanceSearch
from signal_chat.retrieval.vector_store import (
    ChromaVectorStore,
    CollectionNotFoundError,
    InMemoryVectorStore,
)
from signal_chat.shared import SharedHandle
from signal_chat.types import RetrievalPlan


class _UnreachableStore:
    async def query(self, embedding, k, metadata_filter=None):
        raise ConnectionError("connection refused")

    async def count(self):
        raise ConnectionError("connection refused")


class _MissingCollectionStore:
    async def query(self, embedding, k, metadata_filter=None):
        raise CollectionNotFoundError("Collection not found: personal_knowledge")

    async def count(self):
        raise CollectionNotFoundError("Collection not found: personal_knowledge")


class _FixedReranker(Reranker):
    def __init__(self, scores):
        self.scores = scores

    async def score(self, query, documents):
        return [RerankScore(index=i, relevance_score=s) for i, s in self.scores]


class _BrokenReranker(Reranker):
    async def score(self, query, documents):
        raise RuntimeError("rerank service down")


def test_unreachable_store_returns_empty_result() -> None:
    search = RelevanceSearch(_UnreachableStore(), HashingEmbedder())

    result = asyncio.run(search.search("where do you work?", 3))

    assert result.as_dict() == {"query": "where do you work?", "results": []}


def test_missing_collection_returns_empty_result() -> None:
    search = RelevanceSearch(_MissingCollectionStore(), HashingEmbedder())

    result = asyncio.run(search.search("anything", 5))

    assert result.query == "anything"
    assert result.passages == []


def test_empty_store_returns_empty_result() -> None:
    search = RelevanceSearch(InMemoryVectorStore(), HashingEmbedder())

    assert asyncio.run(search.search("anything", 2)).passages == []


def test_result_count_must_be_positive() -> None:
    search = RelevanceSearch(InMemoryVectorStore(), HashingEmbedder())

    with pytest.raises(ValueError):
        asyncio.run(search.search("anything", 0))


def test_search_returns_nearest_passages_first(helpers) -> None:
    search = helpers.knowledge_search()

    result = asyncio.run(search.search("I live in Toronto and love cycling on weekends.", 2))

    assert len(result.passages) == 2
    top = result.passages[0]
    assert top.source_id == "faq-1"
    assert top.similarity_score == pytest.approx(1.0)
    assert top.source == "faq.md"
    assert result.as_dict()["results"][0]["id"] == "faq-1"


def test_metadata_filter_narrows_results(helpers) -> None:
    search = helpers.knowledge_search()

    result = asyncio.run(search.search("Acme", 5, {"source": "experience.md"}))

    assert {passage.source for passage in result.passages} == {"experience.md"}


def test_retrieve_widens_when_filtered_search_is_empty(helpers) -> None:
    search = helpers.knowledge_search()
    plan = RetrievalPlan(top_k=2, cutoff=0.2, metadata_filter={"source": "blog.md"})

    passages = asyncio.run(search.retrieve("cycling in Toronto", plan))

    assert len(passages) == 2


def test_refine_reranks_and_applies_cutoff(helpers) -> None:
    search = helpers.knowledge_search()
    search.reranker = _FixedReranker([(1, 0.9), (0, 0.65), (2, 0.3)])
    passages = asyncio.run(search.search("Acme", 3)).passages

    kept = asyncio.run(search.refine("Acme", passages, 0.7))

    assert [passage.source_id for passage in kept] == [passages[1].source_id]
    assert kept[0].relevance_score == 0.9


def test_refine_keeps_passages_when_reranker_fails(helpers) -> None:
    search = helpers.knowledge_search()
    search.reranker = _BrokenReranker()
    passages = asyncio.run(search.search("Acme", 3)).passages

    assert asyncio.run(search.refine("Acme", passages, 0.9)) == passages


def test_collection_info_reports_availability(helpers) -> None:
    available = asyncio.run(helpers.knowledge_search().collection_info())
    unavailable = asyncio.run(RelevanceSearch(_UnreachableStore(), HashingEmbedder()).collection_info())

    assert available == {"name": "personal_knowledge", "document_count": 3, "status": "available"}
    assert unavailable["status"] == "unavailable"


def test_build_context_uses_configured_budget(helpers) -> None:
    search = helpers.knowledge_search(config=RetrievalConfig(context_char_budget=60, context_top_n=3))
    passages = asyncio.run(search.search("Acme", 3)).passages

    assert len(search.build_context(passages)) <= 60


class _FakeChromaClient:
    def __init__(self, error=None, collection=None):
        self.error = error
        self.collection = collection

    async def get_collection(self, name):
        if self.error is not None:
            raise self.error
        return self.collection


class _FakeCollection:
    def __init__(self, metadata=None):
        self.kwargs = None
        self.metadata = metadata if metadata is not None else {"hnsw:space": "cosine"}

    async def query(self, **kwargs):
        self.kwargs = kwargs
        return {
            "ids": [["a", "b"]],
            "documents": [["first doc", "second doc"]],
            "metadatas": [[{"source": "faq.md"}, None]],
            "distances": [[0.1, 0.4]],
        }

    async def count(self):
        return 2


def test_chroma_store_maps_missing_collection() -> None:
    store = ChromaVectorStore(SharedHandle(lambda: _FakeChromaClient(error=NotFoundError("nope"))), "kb")

    with pytest.raises(CollectionNotFoundError):
        asyncio.run(store.query([0.1, 0.2], 3))


def test_chroma_store_converts_query_result() -> None:
    collection = _FakeCollection()
    store = ChromaVectorStore(SharedHandle(lambda: _FakeChromaClient(collection=collection)), "kb")

    hits = asyncio.run(store.query([0.1, 0.2], 2, {"source": "faq.md"}))

    assert [hit.id for hit in hits] == ["a", "b"]
    assert hits[0].metadata == {"source": "faq.md"}
    assert hits[1].metadata == {}
    assert hits[1].distance == 0.4
    assert collection.kwargs["n_results"] == 2
    assert collection.kwargs["where"] == {"source": "faq.md"}
    assert asyncio.run(store.count()) == 2



@pytest.mark.parametrize(
    ("metadata", "expected"),
    [
        ({"hnsw:space": "l2"}, [0.05, 0.2]),
        ({}, [0.05, 0.2]),
        ({"hnsw:space": "ip"}, [0.1, 0.4]),
    ],
)
def test_chroma_store_reports_cosine_distance_for_any_space(metadata, expected) -> None:
    collection = _FakeCollection(metadata=metadata)
    store = ChromaVectorStore(SharedHandle(lambda: _FakeChromaClient(collection=collection)), "kb")

    hits = asyncio.run(store.query([0.1, 0.2], 2))

    assert [hit.distance for hit in hits] == pytest.approx(expected)

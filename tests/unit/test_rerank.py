import asyncio
import json

import httpx
import pytest

from signal_chat.retrieval.rerank import (
    CohereReranker,
    KeywordOverlapReranker,
    RerankScore,
    apply_rerank,
    filter_by_relevance,
)
from signal_chat.shared import SharedHandle
from signal_chat.types import RetrievedPassage


def _passage(text: str, relevance: float | None = None) -> RetrievedPassage:
    return RetrievedPassage(
        content=text,
        source_id=text,
        similarity_score=0.5,
        relevance_score=relevance,
        metadata={"source": "faq.md"},
    )


def test_cutoff_keeps_only_documents_at_or_above_threshold() -> None:
    ranked = [_passage("a", 0.9), _passage("b", 0.65), _passage("c", 0.3)]

    kept = filter_by_relevance(ranked, 0.7)

    assert [passage.content for passage in kept] == ["a"]


def test_cutoff_is_inclusive() -> None:
    assert len(filter_by_relevance([_passage("a", 0.7)], 0.7)) == 1


@pytest.mark.parametrize("low,high", [(0.0, 0.1), (0.2, 0.65), (0.3, 0.9), (0.5, 1.0)])
def test_raising_cutoff_never_grows_result(low: float, high: float) -> None:
    ranked = [_passage(str(i), score) for i, score in enumerate([0.95, 0.9, 0.65, 0.5, 0.3, 0.1, 0.0])]

    loose = filter_by_relevance(ranked, low)
    strict = filter_by_relevance(ranked, high)

    assert len(strict) <= len(loose)
    assert all(passage in loose for passage in strict)


def test_unscored_passages_are_filtered_out() -> None:
    assert filter_by_relevance([_passage("a")], 0.0) == []


def test_apply_rerank_rounds_and_orders_by_reranker() -> None:
    passages = [_passage("first"), _passage("second"), _passage("third")]
    scores = [
        RerankScore(index=2, relevance_score=0.98765),
        RerankScore(index=0, relevance_score=0.51234),
        RerankScore(index=9, relevance_score=0.4),
    ]

    ranked = apply_rerank(passages, scores)

    assert [passage.content for passage in ranked] == ["third", "first"]
    assert ranked[0].relevance_score == 0.988
    assert ranked[1].relevance_score == 0.512
    assert passages[2].relevance_score is None


def test_keyword_overlap_reranker_prefers_matching_document() -> None:
    scores = asyncio.run(
        KeywordOverlapReranker().score("react experience", ["I cook pasta", "my react experience"])
    )

    assert scores[0].index == 1
    assert scores[0].relevance_score == 1.0


def test_cohere_reranker_posts_query_and_documents() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"results": [{"index": 1, "relevance_score": 0.91}, {"index": 0, "relevance_score": 0.12}]},
        )

    client = SharedHandle(lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    reranker = CohereReranker("secret", client=client)

    scores = asyncio.run(reranker.score("what stack?", ["doc a", "doc b"]))

    assert seen["url"] == "https://api.cohere.ai/v2/rerank"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {"model": "rerank-v3.5", "query": "what stack?", "documents": ["doc a", "doc b"]}
    assert scores == [RerankScore(index=1, relevance_score=0.91), RerankScore(index=0, relevance_score=0.12)]


def test_cohere_reranker_raises_on_http_error() -> None:
    client = SharedHandle(
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    )
    reranker = CohereReranker("secret", client=client)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(reranker.score("q", ["doc"]))

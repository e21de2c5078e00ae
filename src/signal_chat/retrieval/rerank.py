"""Relevance reranking of retrieved passages."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace

import httpx

from signal_chat.shared import SharedHandle
from signal_chat.types import RetrievedPassage

logger = logging.getLogger(__name__)

COHERE_RERANK_URL = "https://api.cohere.ai/v2/rerank"


@dataclass(slots=True)
class RerankScore:
    """Relevance of the passage at ``index`` in the submitted list."""

    index: int
    relevance_score: float


class Reranker(ABC):
    """Scores passages against a query; higher is more relevant."""

    @abstractmethod
    async def score(self, query: str, documents: list[str]) -> list[RerankScore]:
        """Return scores ordered from most to least relevant."""


class CohereReranker(Reranker):
    """Calls the Cohere rerank endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "rerank-v3.5",
        client: SharedHandle[httpx.AsyncClient] | None = None,
        url: str = COHERE_RERANK_URL,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._url = url
        self._client = client or SharedHandle(
            lambda: httpx.AsyncClient(timeout=15.0), name="cohere http client"
        )

    async def score(self, query: str, documents: list[str]) -> list[RerankScore]:
        if not documents:
            return []
        client = await self._client.get()
        response = await client.post(
            self._url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json={"model": self._model, "query": query, "documents": documents},
        )
        response.raise_for_status()
        payload = response.json()
        return [
            RerankScore(index=int(item["index"]), relevance_score=float(item["relevance_score"]))
            for item in payload.get("results", [])
        ]

    async def aclose(self) -> None:
        await self._client.aclose()


class KeywordOverlapReranker(Reranker):
    """Lightweight reranker using query-document lexical overlap."""

    async def score(self, query: str, documents: list[str]) -> list[RerankScore]:
        query_terms = set(query.lower().split())
        scores = []
        for index, document in enumerate(documents):
            terms = set(document.lower().split())
            overlap = len(query_terms & terms) / max(1, len(query_terms))
            scores.append(RerankScore(index=index, relevance_score=overlap))
        return sorted(scores, key=lambda item: item.relevance_score, reverse=True)


def apply_rerank(
    passages: list[RetrievedPassage], scores: list[RerankScore]
) -> list[RetrievedPassage]:
    """Attach rounded relevance scores, in reranker order; unknown indexes are skipped."""
    ranked: list[RetrievedPassage] = []
    for item in scores:
        if not 0 <= item.index < len(passages):
            logger.warning("Reranker returned out-of-range index %d", item.index)
            continue
        ranked.append(
            replace(passages[item.index], relevance_score=round(item.relevance_score, 3))
        )
    return ranked


def filter_by_relevance(passages: list[RetrievedPassage], cutoff: float) -> list[RetrievedPassage]:
    """Keep passages whose relevance score is at least ``cutoff``."""
    return [
        passage
        for passage in passages
        if passage.relevance_score is not None and passage.relevance_score >= cutoff
    ]

"""Relevance search over the personal knowledge store."""

from __future__ import annotations

import logging
from typing import Any

from signal_chat.config import RetrievalConfig
from signal_chat.retrieval.context import assemble_context
from signal_chat.retrieval.embedder import Embedder
from signal_chat.retrieval.rerank import Reranker, apply_rerank, filter_by_relevance
from signal_chat.retrieval.vector_store import CollectionNotFoundError, VectorStore
from signal_chat.types import RetrievalPlan, RetrievedPassage, SearchResult

logger = logging.getLogger(__name__)


class RelevanceSearch:
    """Embeds a query, asks the vector store for neighbours, then optionally reranks.

    Backend failures never propagate: an unreachable store or a missing
    collection yields an empty result, which callers treat as "no context".
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        *,
        reranker: Reranker | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.reranker = reranker
        self.config = config or RetrievalConfig()

    async def search(
        self,
        query: str,
        result_count: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> SearchResult:
        if result_count < 1:
            raise ValueError("result_count must be >= 1")

        try:
            embedding = await self.embedder.aembed_query(query)
            hits = await self.store.query(embedding, result_count, metadata_filter)
        except CollectionNotFoundError as exc:
            logger.warning("Knowledge collection unavailable: %s", exc)
            return SearchResult(query=query)
        except Exception:
            logger.exception("Relevance search failed, returning empty results")
            return SearchResult(query=query)

        passages = [
            RetrievedPassage(
                content=hit.document,
                source_id=hit.id,
                similarity_score=1.0 - hit.distance,
                distance=hit.distance,
                metadata=hit.metadata,
            )
            for hit in hits
            if hit.document
        ]
        logger.info("Searching for %r (found %d results)", query[:100], len(passages))
        return SearchResult(query=query, passages=passages)

    async def refine(
        self, query: str, passages: list[RetrievedPassage], cutoff: float
    ) -> list[RetrievedPassage]:
        """Rerank and drop passages below ``cutoff``; on reranker failure keep the input."""
        if self.reranker is None or not passages:
            return passages
        try:
            scores = await self.reranker.score(query, [passage.content for passage in passages])
        except Exception:
            logger.warning("Rerank failed, keeping unreranked passages", exc_info=True)
            return passages
        kept = filter_by_relevance(apply_rerank(passages, scores), cutoff)
        logger.info("Rerank kept %d of %d passages (cutoff %.2f)", len(kept), len(passages), cutoff)
        return kept

    async def retrieve(self, query: str, plan: RetrievalPlan | None = None) -> list[RetrievedPassage]:
        top_k = plan.top_k if plan else self.config.top_k
        cutoff = plan.cutoff if plan else self.config.cutoff
        metadata_filter = plan.metadata_filter if plan else None

        result = await self.search(query, top_k, metadata_filter)
        if not result.passages and metadata_filter:
            logger.info("No passages within %s, widening search", metadata_filter)
            result = await self.search(query, top_k)
        return await self.refine(query, result.passages, cutoff)

    def build_context(self, passages: list[RetrievedPassage]) -> str:
        return assemble_context(
            passages,
            self.config.context_char_budget,
            top_n=self.config.context_top_n,
        )

    async def collection_info(self) -> dict[str, Any]:
        try:
            count = await self.store.count()
        except Exception as exc:
            logger.warning("Knowledge collection info unavailable: %s", exc)
            return {"name": self.config.collection, "document_count": 0, "status": "unavailable"}
        return {"name": self.config.collection, "document_count": count, "status": "available"}

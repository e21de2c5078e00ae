"""Embedding-similarity intent classification against exemplar phrases."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from signal_chat.config import RoutingConfig
from signal_chat.retrieval.embedder import Embedder
from signal_chat.retrieval.vector_store import cosine_similarity
from signal_chat.routing.intents import ExemplarTable
from signal_chat.types import IntentDecision, Message, RetrievalPlan

logger = logging.getLogger(__name__)


def classify(
    query: list[float], vectors: dict[str, list[list[float]]], order: Iterable[str]
) -> tuple[str, float]:
    """Best group by maximum exemplar similarity; the first group wins exact ties."""
    best_name = ""
    best_score = float("-inf")
    for name in order:
        exemplars = vectors.get(name) or []
        if not exemplars:
            continue
        score = max(cosine_similarity(query, exemplar) for exemplar in exemplars)
        if score > best_score:
            best_name, best_score = name, score
    if not best_name:
        raise ValueError("no exemplar vectors to classify against")
    return best_name, best_score


class EmbeddingIntentRouter:
    """Routes by cosine similarity between the message and intent exemplars.

    The winning score falls into a configured band, which sets retrieval breadth
    and cutoff. Only a strong match on a tool-bound group selects that tool.
    """

    def __init__(
        self,
        table: ExemplarTable,
        embedder: Embedder,
        config: RoutingConfig | None = None,
        *,
        known_tools: Callable[[], Iterable[str]] | None = None,
    ) -> None:
        self.table = table
        self.embedder = embedder
        self.config = config or RoutingConfig()
        self._known_tools = known_tools

    async def decide(self, message: str, recent_history: Sequence[Message]) -> IntentDecision:
        try:
            vectors = await self.table.load()
            query = await self.embedder.aembed_query(message)
            name, score = classify(query, vectors, (group.name for group in self.table.groups))
            band = self.config.band_for(score)
            strongest = max(self.config.bands, key=lambda item: item.min_score)
            group = self.table.group(name)
        except Exception:
            logger.exception("Embedding intent routing failed, using fallback decision")
            return IntentDecision.fallback()

        confidence = max(0.0, min(1.0, score))
        logger.info("Intent %s (score %.3f, band >= %.2f)", name, score, band.min_score)

        if group.tool_name and band is strongest and self._tool_available(group.tool_name):
            return IntentDecision(
                use_personal_knowledge=False,
                tool_name=group.tool_name,
                direct_response=group.direct_response,
                confidence=confidence,
                rationale=f"matched {name} exemplars",
                category=name,
            )

        metadata_filter = None
        source = self.config.category_sources.get(name)
        if band.narrow_to_category and source:
            metadata_filter = {self.config.category_metadata_key: source}
        return IntentDecision(
            use_personal_knowledge=True,
            tool_name="",
            confidence=confidence,
            rationale=f"closest to {name} exemplars",
            category=name,
            retrieval=RetrievalPlan(top_k=band.top_k, cutoff=band.cutoff, metadata_filter=metadata_filter),
        )

    def _tool_available(self, tool_name: str) -> bool:
        if self._known_tools is None:
            return True
        return tool_name in set(self._known_tools())

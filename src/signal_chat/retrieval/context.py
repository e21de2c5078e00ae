"""Budget-aware assembly of retrieved passages into one context string."""

from __future__ import annotations

from signal_chat.types import RetrievedPassage

SEPARATOR = "\n\n"


def format_passage(passage: RetrievedPassage) -> str:
    if passage.relevance_score is None:
        return passage.content
    return f"[Source: {passage.source} | Relevance: {passage.relevance_score}] {passage.content}"


def _best_first(passages: list[RetrievedPassage]) -> list[RetrievedPassage]:
    def key(passage: RetrievedPassage) -> tuple[float, float]:
        distance = passage.distance if passage.distance is not None else 1.0 - passage.similarity_score
        return (distance, -passage.score)

    return sorted(passages, key=key)


def assemble_context(
    passages: list[RetrievedPassage],
    budget: int,
    *,
    top_n: int = 3,
) -> str:
    """Pack passages into a context string no longer than ``budget`` characters.

    Selection runs in three passes over the best-first ordering: the top ``top_n``
    passages that fit, then passages from a source/section not yet represented,
    then any remaining passage that still fits, highest score first. Output keeps
    selection order.
    """
    ordered = _best_first(passages)
    selected: list[int] = []
    used = 0

    def try_add(index: int) -> bool:
        nonlocal used
        text = format_passage(ordered[index])
        cost = len(text) + (len(SEPARATOR) if selected else 0)
        if used + cost > budget:
            return False
        selected.append(index)
        used += cost
        return True

    for index in range(min(top_n, len(ordered))):
        try_add(index)

    seen = {(ordered[i].source, ordered[i].section) for i in selected}
    for index, passage in enumerate(ordered):
        if index in selected:
            continue
        key = (passage.source, passage.section)
        if key not in seen and try_add(index):
            seen.add(key)

    leftovers = sorted(
        (index for index in range(len(ordered)) if index not in selected),
        key=lambda index: -ordered[index].score,
    )
    for index in leftovers:
        try_add(index)

    return SEPARATOR.join(format_passage(ordered[i]) for i in selected)

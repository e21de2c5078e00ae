"""Vector store interfaces and concrete adapters."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from math import sqrt
from typing import Any, Protocol

from chromadb.api import AsyncClientAPI
from chromadb.errors import NotFoundError

from signal_chat.shared import SharedHandle

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueryHit:
    """One nearest-neighbour hit; ``distance`` is cosine distance (lower is closer)."""

    id: str
    document: str
    distance: float
    metadata: dict[str, Any] = field(default_factory=dict)


class CollectionNotFoundError(LookupError):
    """The named collection does not exist in the store."""


class VectorStore(Protocol):
    """Minimal async vector store contract for retrieval."""

    async def query(
        self,
        embedding: list[float],
        k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[QueryHit]:
        """Return up to ``k`` hits ordered by ascending distance."""

    async def count(self) -> int:
        """Number of stored passages."""


@dataclass(slots=True)
class _StoredVector:
    id: str
    document: str
    embedding: list[float]
    metadata: dict[str, Any]


class InMemoryVectorStore:
    """Deterministic vector store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._store: dict[str, _StoredVector] = {}

    def upsert(
        self,
        ids: list[str],
        documents: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]] | None = None,
    ) -> None:
        metadatas = metadatas if metadatas is not None else [{} for _ in ids]
        if not len(ids) == len(documents) == len(embeddings) == len(metadatas):
            raise ValueError("ids, documents, embeddings and metadatas must have the same length")
        for item_id, document, embedding, metadata in zip(
            ids, documents, embeddings, metadatas, strict=True
        ):
            self._store[item_id] = _StoredVector(
                id=item_id, document=document, embedding=embedding, metadata=dict(metadata)
            )

    async def query(
        self,
        embedding: list[float],
        k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[QueryHit]:
        hits = [
            QueryHit(
                id=record.id,
                document=record.document,
                distance=1.0 - cosine_similarity(embedding, record.embedding),
                metadata=dict(record.metadata),
            )
            for record in self._store.values()
            if _metadata_match(record.metadata, metadata_filter)
        ]
        hits.sort(key=lambda hit: hit.distance)
        return hits[:k]

    async def count(self) -> int:
        return len(self._store)


class ChromaVectorStore:
    """Queries a Chroma collection over the async HTTP client.

    Hits are reported as cosine distance whatever the collection's
    ``hnsw:space``. Squared L2 and inner-product distances are converted
    assuming unit-normalised embeddings; Chroma defaults to L2 when the
    collection does not name a space.
    """

    def __init__(self, client: SharedHandle[AsyncClientAPI], collection: str) -> None:
        self._client = client
        self._collection = collection

    async def query(
        self,
        embedding: list[float],
        k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[QueryHit]:
        collection = await self._get_collection()
        raw = await collection.query(
            query_embeddings=[embedding],
            n_results=k,
            where=metadata_filter or None,
            include=["documents", "metadatas", "distances"],
        )
        ids = (raw.get("ids") or [[]])[0]
        documents = (raw.get("documents") or [[]])[0]
        metadatas = (raw.get("metadatas") or [[]])[0]
        distances = (raw.get("distances") or [[]])[0]
        space = _distance_space(collection)

        hits: list[QueryHit] = []
        for index, item_id in enumerate(ids):
            hits.append(
                QueryHit(
                    id=str(item_id),
                    document=documents[index] if index < len(documents) else "",
                    distance=(
                        _cosine_distance(float(distances[index]), space)
                        if index < len(distances)
                        else 1.0
                    ),
                    metadata=dict(metadatas[index] or {}) if index < len(metadatas) else {},
                )
            )
        logger.debug("Chroma returned %d hits from %s (%s space)", len(hits), self._collection, space)
        return hits

    async def count(self) -> int:
        collection = await self._get_collection()
        return await collection.count()

    async def _get_collection(self) -> Any:
        client = await self._client.get()
        try:
            return await client.get_collection(self._collection)
        except (NotFoundError, ValueError) as exc:
            raise CollectionNotFoundError(f"Collection not found: {self._collection}") from exc


def _distance_space(collection: Any) -> str:
    metadata = getattr(collection, "metadata", None) or {}
    space = metadata.get("hnsw:space")
    if not space:
        configuration = getattr(collection, "configuration", None) or {}
        hnsw = configuration.get("hnsw") if isinstance(configuration, dict) else None
        space = hnsw.get("space") if isinstance(hnsw, dict) else None
    return str(space or "l2")


def _cosine_distance(distance: float, space: str) -> float:
    if space == "l2":
        # |a - b|^2 = 2 - 2cos(a, b) for unit vectors.
        return distance / 2.0
    return distance


def _metadata_match(
    metadata: dict[str, Any], metadata_filter: dict[str, Any] | None
) -> bool:
    if not metadata_filter:
        return True
    for key, value in metadata_filter.items():
        if metadata.get(key) != value:
            return False
    return True


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity clamped to [-1, 1]; 0.0 when either vector has zero magnitude."""
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(-1.0, min(1.0, numerator / (norm_a * norm_b)))

"""Embedding abstractions and deterministic baseline implementation."""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings

from signal_chat.shared import SharedHandle

_WORD = re.compile(r"\w+", flags=re.UNICODE)


class Embedder(ABC):
    """Embedder interface used by retrieval and intent routing."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.to_thread(self.embed_documents, texts)

    async def aembed_query(self, text: str) -> list[float]:
        return await asyncio.to_thread(self.embed_query, text)


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for tests and offline runs. Production deployments use
    ``LangChainEmbedder`` over a hosted embedding model.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        return self.embed_query(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = _WORD.findall(text.lower())
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapts a LangChain ``Embeddings`` model, created lazily on first use."""

    def __init__(self, handle: SharedHandle[Embeddings], *, model_name: str = "") -> None:
        self._handle = handle
        self.model_name = model_name or "langchain"

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        model = self._handle.peek()
        if model is None:
            raise RuntimeError("Embedding model not initialised; use the async API first")
        return model.embed_documents(texts)

    def embed_query(self, text: str) -> list[float]:
        model = self._handle.peek()
        if model is None:
            raise RuntimeError("Embedding model not initialised; use the async API first")
        return model.embed_query(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        model = await self._handle.get()
        return await model.aembed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        model = await self._handle.get()
        return await model.aembed_query(text)

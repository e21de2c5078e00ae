"""Wires configured collaborators into an ``Orchestrator``."""

from __future__ import annotations

import logging

import chromadb
from langchain_openai import OpenAIEmbeddings

from signal_chat.config import Settings
from signal_chat.generation.generator import ResponseGenerator
from signal_chat.generation.llm import create_chat_model
from signal_chat.obs.tracing import TraceStore
from signal_chat.orchestration.orchestrator import Orchestrator
from signal_chat.retrieval.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from signal_chat.retrieval.rerank import CohereReranker, Reranker
from signal_chat.retrieval.search import RelevanceSearch
from signal_chat.retrieval.vector_store import ChromaVectorStore
from signal_chat.routing.base import IntentRouter
from signal_chat.routing.embedding_router import EmbeddingIntentRouter
from signal_chat.routing.intents import ExemplarTable
from signal_chat.routing.llm_router import LLMIntentRouter
from signal_chat.shared import SharedHandle
from signal_chat.tools.builtin import register_builtin_tools
from signal_chat.tools.formatters import FormatterRegistry
from signal_chat.tools.gateway import ToolGateway
from signal_chat.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def _build_embedder(settings: Settings) -> Embedder:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; using deterministic hashing embeddings")
        return HashingEmbedder()
    handle = SharedHandle(
        lambda: OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key),
        name="embedding model",
    )
    return LangChainEmbedder(handle, model_name=settings.embedding_model)


def _build_reranker(settings: Settings) -> Reranker | None:
    if not settings.retrieval.rerank_enabled:
        return None
    if not settings.cohere_api_key:
        logger.warning("Reranking enabled but COHERE_API_KEY not set; skipping rerank")
        return None
    return CohereReranker(settings.cohere_api_key, model=settings.retrieval.rerank_model)


def build_orchestrator(settings: Settings | None = None) -> Orchestrator:
    """Create the orchestrator; every network client is opened lazily on first use."""
    settings = settings or Settings()
    generation = settings.generation

    chat_model = SharedHandle(
        lambda: create_chat_model(
            generation, api_key=settings.openai_api_key, base_url=settings.llm_base_url
        ),
        name="chat model",
    )
    routing_model = SharedHandle(
        lambda: create_chat_model(
            generation,
            api_key=settings.openai_api_key,
            base_url=settings.llm_base_url,
            model=generation.routing_model,
            temperature=settings.routing.temperature,
        ),
        name="routing chat model",
    )
    generator = ResponseGenerator(
        chat_model, model_name=generation.model, max_tokens=generation.max_tokens
    )

    chroma = SharedHandle(
        lambda: chromadb.AsyncHttpClient(host=settings.chroma_host, port=settings.chroma_port),
        name="chroma client",
    )
    embedder = _build_embedder(settings)
    reranker = _build_reranker(settings)
    search = RelevanceSearch(
        ChromaVectorStore(chroma, settings.retrieval.collection),
        embedder,
        reranker=reranker,
        config=settings.retrieval,
    )

    gateway = ToolGateway.from_config(settings.tools)
    registry = ToolRegistry(gateway)
    register_builtin_tools(registry)

    router: IntentRouter
    if settings.routing.strategy == "embedding":
        table = ExemplarTable(embedder, cache_path=settings.routing.exemplar_cache_path)
        router = EmbeddingIntentRouter(table, embedder, settings.routing, known_tools=registry.names)
    else:
        routing_generator = ResponseGenerator(
            routing_model,
            model_name=generation.routing_model,
            max_tokens=settings.routing.max_tokens,
        )
        router = LLMIntentRouter(
            routing_generator,
            tool_catalog=registry.catalog,
            config=settings.routing,
            persona=settings.orchestrator.persona_name,
        )

    logger.info(
        "Orchestrator ready (routing=%s, tool_calling=%s, policy=%s)",
        settings.routing.strategy,
        generation.tool_calling,
        settings.orchestrator.knowledge_tool_policy,
    )
    return Orchestrator(
        router,
        search,
        registry,
        FormatterRegistry.with_defaults(),
        generator,
        config=settings.orchestrator,
        tool_calling=generation.tool_calling,
        trace_store=TraceStore(),
        resources=[gateway, chat_model, routing_model]
        + ([reranker] if isinstance(reranker, CohereReranker) else []),
    )

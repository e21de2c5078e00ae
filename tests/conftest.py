from __future__ import annotations

from typing import Any

import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatResult

from signal_chat.config import OrchestratorConfig, RetrievalConfig
from signal_chat.generation.generator import ResponseGenerator
from signal_chat.obs.tracing import TraceStore
from signal_chat.orchestration.orchestrator import Orchestrator
from signal_chat.retrieval.embedder import HashingEmbedder
from signal_chat.retrieval.search import RelevanceSearch
from signal_chat.retrieval.vector_store import InMemoryVectorStore
from signal_chat.shared import SharedHandle
from signal_chat.tools.builtin import register_builtin_tools
from signal_chat.tools.formatters import FormatterRegistry
from signal_chat.tools.registry import ToolRegistry
from signal_chat.types import ContentItem, IntentDecision, Message, ToolCall, ToolDescriptor, ToolResult


class FailingChatModel(BaseChatModel):
    """Chat model whose every call raises ``error``."""

    error: Exception

    @property
    def _llm_type(self) -> str:
        return "failing-fake"

    def _generate(self, messages: list[BaseMessage], stop: Any = None, run_manager: Any = None, **kwargs: Any) -> ChatResult:
        raise self.error

    async def _agenerate(self, messages: list[BaseMessage], stop: Any = None, run_manager: Any = None, **kwargs: Any) -> ChatResult:
        raise self.error


class ToolCallingFakeChatModel(GenericFakeChatModel):
    """Scripted model that accepts a tool catalog."""

    def bind_tools(self, tools: Any, **kwargs: Any) -> "ToolCallingFakeChatModel":
        return self


class FakeGateway:
    def __init__(
        self,
        results: dict[str, ToolResult] | None = None,
        tools: list[ToolDescriptor] | None = None,
    ) -> None:
        self.results = results or {}
        self.tools = tools or []
        self.calls: list[ToolCall] = []
        self.closed = False

    async def call(self, tool_call: ToolCall) -> ToolResult:
        self.calls.append(tool_call)
        return self.results.get(
            tool_call.name, ToolResult.failure(f"Tool execution failed: {tool_call.name} unavailable")
        )

    async def list_tools(self) -> list[ToolDescriptor]:
        return list(self.tools)

    async def aclose(self) -> None:
        self.closed = True


class StaticRouter:
    def __init__(self, decision: IntentDecision | None = None, error: Exception | None = None) -> None:
        self.decision = decision
        self.error = error
        self.calls: list[tuple[str, list[Message]]] = []

    async def decide(self, message: str, recent_history: list[Message]) -> IntentDecision:
        self.calls.append((message, list(recent_history)))
        if self.error is not None:
            raise self.error
        assert self.decision is not None
        return self.decision


def text_result(text: str) -> ToolResult:
    return ToolResult(content_items=[ContentItem(kind="text", text=text)])


def fake_generator(*replies: str | AIMessage) -> ResponseGenerator:
    model = ToolCallingFakeChatModel(messages=iter(replies))
    return ResponseGenerator(SharedHandle(lambda: model, name="fake model"), model_name="fake-model")


def failing_generator(error: Exception) -> ResponseGenerator:
    model = FailingChatModel(error=error)
    return ResponseGenerator(SharedHandle(lambda: model, name="failing model"), model_name="fake-model")


KNOWLEDGE = [
    ("exp-1", "I led the frontend platform team at Acme for four years.", {"source": "experience.md", "section": "Acme"}),
    ("exp-2", "Before Acme I built React dashboards at Globex.", {"source": "experience.md", "section": "Globex"}),
    ("faq-1", "I live in Toronto and love cycling on weekends.", {"source": "faq.md", "section": "Personal"}),
]


def knowledge_search(
    entries: list[tuple[str, str, dict[str, Any]]] | None = None,
    config: RetrievalConfig | None = None,
) -> RelevanceSearch:
    embedder = HashingEmbedder()
    store = InMemoryVectorStore()
    rows = KNOWLEDGE if entries is None else entries
    if rows:
        store.upsert(
            ids=[row[0] for row in rows],
            documents=[row[1] for row in rows],
            embeddings=embedder.embed_documents([row[1] for row in rows]),
            metadatas=[row[2] for row in rows],
        )
    return RelevanceSearch(store, embedder, config=config)


def build_orchestrator_for_test(
    *,
    router: Any,
    generator: ResponseGenerator,
    gateway: FakeGateway | None = None,
    search: RelevanceSearch | None = None,
    tool_calling: str = "out_of_band",
    policy: str = "exclusive",
) -> Orchestrator:
    registry = ToolRegistry(gateway or FakeGateway())
    register_builtin_tools(registry)
    return Orchestrator(
        router,
        search or knowledge_search(),
        registry,
        FormatterRegistry.with_defaults(),
        generator,
        config=OrchestratorConfig(direct_reply_delay_seconds=0.0, knowledge_tool_policy=policy),
        tool_calling=tool_calling,
        trace_store=TraceStore(),
    )


@pytest.fixture
def helpers() -> Any:
    """Expose the builders above to test modules."""

    class _Helpers:
        FailingChatModel = FailingChatModel
        FakeGateway = FakeGateway
        StaticRouter = StaticRouter
        text_result = staticmethod(text_result)
        fake_generator = staticmethod(fake_generator)
        failing_generator = staticmethod(failing_generator)
        knowledge_search = staticmethod(knowledge_search)
        build_orchestrator = staticmethod(build_orchestrator_for_test)

    return _Helpers

"""Top-level chat turn coordinator."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Protocol

from signal_chat.config import OrchestratorConfig
from signal_chat.errors import USER_MESSAGES, ErrorCategory, GenerationError
from signal_chat.generation.generator import ChunkCallback, ResponseGenerator
from signal_chat.generation.prompts import (
    COMBINED_CONTEXT_TEMPLATE,
    DIRECT_PERSONA,
    KNOWLEDGE_CONTEXT_TEMPLATE,
    KNOWLEDGE_PERSONA,
    TOOL_CONTEXT_TEMPLATE,
    TOOL_PERSONA,
)
from signal_chat.obs.tracing import Timer, TraceStore
from signal_chat.retrieval.search import RelevanceSearch
from signal_chat.routing.base import IntentRouter
from signal_chat.tools.formatters import NO_DATA, FormatterRegistry
from signal_chat.tools.registry import ToolRegistry, ToolSpec
from signal_chat.types import (
    ChatResponse,
    DirectResponse,
    IntentDecision,
    Message,
    RagResponse,
    RetrievedPassage,
    StreamEvent,
    ToolCall,
    ToolResponse,
    ToolResult,
    ToolTrace,
    TurnMetadata,
)

logger = logging.getLogger(__name__)

ToolsStartingCallback = Callable[[list[str]], Awaitable[None] | None]

_WORD_SPLIT = re.compile(r"(\s+)")


class TurnState(str, Enum):
    DECIDING = "deciding"
    USING_KNOWLEDGE = "using_knowledge"
    USING_TOOL = "using_tool"
    DIRECT = "direct"
    GENERATING = "generating"
    STREAMING = "streaming"
    DONE = "done"
    ERROR_FALLBACK = "error_fallback"


class _Closeable(Protocol):
    async def aclose(self) -> None: ...


@dataclass(slots=True)
class _Turn:
    """Mutable state of one request; never shared between requests."""

    message: str
    history: list[Message]
    on_chunk: ChunkCallback | None = None
    on_tools_starting: ToolsStartingCallback | None = None
    state: TurnState = TurnState.DECIDING
    decision: IntentDecision | None = None
    route: str = "direct"
    tool_traces: list[ToolTrace] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    delivered: list[str] = field(default_factory=list)
    sink_broken: bool = False
    model: str | None = None

    @property
    def confidence(self) -> float:
        return self.decision.confidence if self.decision else 0.0


class Orchestrator:
    """Routes one chat turn and always produces a terminal response.

    Router, search, and tool failures are absorbed by their components; a
    generation failure becomes a single user-safe fallback chunk.
    """

    def __init__(
        self,
        router: IntentRouter,
        search: RelevanceSearch,
        tools: ToolRegistry,
        formatters: FormatterRegistry,
        generator: ResponseGenerator,
        *,
        config: OrchestratorConfig | None = None,
        tool_calling: Literal["out_of_band", "native"] = "out_of_band",
        trace_store: TraceStore | None = None,
        resources: Sequence[_Closeable] = (),
    ) -> None:
        self.router = router
        self.search = search
        self.tools = tools
        self.formatters = formatters
        self.generator = generator
        self.config = config or OrchestratorConfig()
        self.tool_calling = tool_calling
        self.trace_store = trace_store or TraceStore()
        self._resources = list(resources)

    async def handle_turn(
        self,
        message: str,
        history: Sequence[Message] = (),
        *,
        on_chunk: ChunkCallback | None = None,
        on_tools_starting: ToolsStartingCallback | None = None,
    ) -> ChatResponse:
        limit = self.config.history_limit
        trimmed = [turn for turn in history if turn.role != "system"]
        turn = _Turn(
            message=message,
            history=trimmed[-limit:] if limit else [],
            on_chunk=on_chunk,
            on_tools_starting=on_tools_starting,
        )

        with Timer() as timer:
            response = await self._run(turn)

        record = self.trace_store.create_record(
            message=message,
            route=turn.route,
            answer=response.message,
            confidence=turn.confidence,
            tool_traces=turn.tool_traces,
            sources=turn.sources,
            latency_ms=timer.elapsed_ms,
            degraded=response.degraded,
            state=turn.state.value,
        )
        response.metadata.trace_id = record.trace_id
        response.metadata.latency_ms = timer.elapsed_ms
        logger.info(
            "Turn %s finished via %s in state %s after %.1f ms (degraded=%s)",
            record.trace_id,
            turn.route,
            record.state,
            timer.elapsed_ms,
            response.degraded,
        )
        return response

    async def stream_turn(
        self, message: str, history: Sequence[Message] = ()
    ) -> AsyncIterator[StreamEvent]:
        """Run a turn and yield its events; closing the iterator cancels the turn."""
        queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()

        async def on_chunk(text: str) -> None:
            await queue.put(StreamEvent(type="chunk", data=text))

        async def on_tools_starting(names: list[str]) -> None:
            await queue.put(StreamEvent(type="tools_starting", data=names))

        async def run() -> None:
            try:
                response = await self.handle_turn(
                    message, history, on_chunk=on_chunk, on_tools_starting=on_tools_starting
                )
                await queue.put(
                    StreamEvent(type="done", data=response.model_dump(mode="json", exclude={"message"}))
                )
            except Exception:
                logger.exception("Streaming turn failed")
                await queue.put(
                    StreamEvent(type="error", data={"message": USER_MESSAGES[ErrorCategory.UNKNOWN]})
                )
            finally:
                await queue.put(None)

        task = asyncio.create_task(run())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not task.done():
                logger.info("Stream consumer went away, cancelling turn")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def list_tools(self) -> list[ToolSpec]:
        return await self.tools.refresh()

    async def aclose(self) -> None:
        for resource in self._resources:
            try:
                await resource.aclose()
            except Exception as exc:
                logger.warning("Error releasing %s: %s", type(resource).__name__, exc)

    async def _run(self, turn: _Turn) -> ChatResponse:
        turn.decision = decision = await self._decide(turn)

        if decision.direct_response and decision.tool_name and self.tool_calling == "out_of_band":
            return await self._direct_tool(turn, decision.tool_name)

        if decision.use_personal_knowledge:
            passages = await self._retrieve(turn)
            context = self.search.build_context(passages) if passages else ""
            if context:
                tool_name = decision.tool_name if self._combine_tools() else ""
                return await self._knowledge(turn, passages, context, tool_name)
            logger.warning("No knowledge context found, falling back to direct response")

        if self.tool_calling == "native":
            return await self._native_tools(turn)
        if decision.tool_name:
            return await self._tool_elaboration(turn, decision.tool_name)
        return await self._direct(turn)

    def _combine_tools(self) -> bool:
        return self.config.knowledge_tool_policy == "combined" and self.tool_calling == "out_of_band"

    async def _decide(self, turn: _Turn) -> IntentDecision:
        try:
            return await self.router.decide(turn.message, turn.history)
        except Exception:
            logger.exception("Intent router raised, using fallback decision")
            return IntentDecision.fallback()

    async def _retrieve(self, turn: _Turn) -> list[RetrievedPassage]:
        turn.state = TurnState.USING_KNOWLEDGE
        plan = turn.decision.retrieval if turn.decision else None
        try:
            return await self.search.retrieve(turn.message, plan)
        except Exception:
            logger.exception("Knowledge retrieval raised")
            return []

    async def _knowledge(
        self, turn: _Turn, passages: list[RetrievedPassage], context: str, tool_name: str
    ) -> ChatResponse:
        turn.route = "knowledge"
        turn.sources = [passage.source for passage in passages]
        persona = self.config.persona_name
        if tool_name:
            turn.route = "knowledge+tool"
            _, tool_context = await self._tool_context(turn, tool_name)
            content = COMBINED_CONTEXT_TEMPLATE.format(
                persona=persona, context=context, tool_context=tool_context, message=turn.message
            )
        else:
            content = KNOWLEDGE_CONTEXT_TEMPLATE.format(
                persona=persona, context=context, message=turn.message
            )
        conversation = self._conversation(KNOWLEDGE_PERSONA, turn, content)

        text = await self._generate(turn, conversation)
        if text is None:
            return self._fallback_response(turn)
        return RagResponse(
            message=text,
            retrieved=[passage.content for passage in passages],
            metadata=self._metadata(turn),
        )

    async def _direct_tool(self, turn: _Turn, tool_name: str) -> ChatResponse:
        turn.route = "tool_direct"
        result = await self._call_tool(turn, ToolCall(name=tool_name))
        output = self.formatters.format(tool_name, result)
        await self._stream_text(turn, output.formatted)
        turn.state = TurnState.DONE
        return ToolResponse(
            message=output.formatted,
            service=output.service,
            data=output.data,
            degraded=result.is_error,
            metadata=self._metadata(turn),
        )

    async def _tool_elaboration(self, turn: _Turn, tool_name: str) -> ChatResponse:
        turn.route = "tool"
        result, tool_context = await self._tool_context(turn, tool_name)
        content = TOOL_CONTEXT_TEMPLATE.format(tool_context=tool_context, message=turn.message)
        conversation = self._conversation(TOOL_PERSONA, turn, content)

        text = await self._generate(turn, conversation)
        if text is None:
            return self._fallback_response(turn)
        output = self.formatters.format(tool_name, result)
        return ToolResponse(
            message=text,
            service=output.service,
            data=output.data,
            metadata=self._metadata(turn),
        )

    async def _native_tools(self, turn: _Turn) -> ChatResponse:
        """Let the model pick tools itself; tool output becomes the final content."""
        turn.route = "native"
        turn.state = TurnState.GENERATING
        conversation = self._conversation(DIRECT_PERSONA, turn, turn.message)
        try:
            first_pass = await self.generator.generate_with_tools(
                conversation, self.tools.as_openai_tools()
            )
        except Exception as exc:
            return await self._fail(turn, exc)
        turn.model = first_pass.model

        requested = [call for call in first_pass.tool_calls if self.tools.has(call.name)]
        if not requested:
            await self._stream_text(turn, first_pass.text)
            turn.state = TurnState.DONE
            return DirectResponse(message=first_pass.text, metadata=self._metadata(turn))

        turn.route = "native_tool"
        outputs = []
        degraded = False
        for call in requested:
            result = await self._call_tool(turn, call)
            degraded = degraded or result.is_error
            outputs.append(self.formatters.format(call.name, result))
        text = "\n\n".join(output.formatted for output in outputs)
        await self._stream_text(turn, text)
        turn.state = TurnState.DONE
        return ToolResponse(
            message=text,
            service=outputs[0].service,
            data=outputs[0].data,
            degraded=degraded,
            metadata=self._metadata(turn),
        )

    async def _direct(self, turn: _Turn) -> ChatResponse:
        turn.route = "direct"
        turn.state = TurnState.DIRECT
        conversation = self._conversation(DIRECT_PERSONA, turn, turn.message)
        text = await self._generate(turn, conversation)
        if text is None:
            return self._fallback_response(turn)
        return DirectResponse(message=text, metadata=self._metadata(turn))

    async def _tool_context(self, turn: _Turn, tool_name: str) -> tuple[ToolResult, str]:
        result = await self._call_tool(turn, ToolCall(name=tool_name))
        if result.is_error:
            return result, f"[{tool_name}]: Error - Tool unavailable"
        return result, f"[{tool_name}]: {result.text or NO_DATA}"

    async def _call_tool(self, turn: _Turn, call: ToolCall) -> ToolResult:
        turn.state = TurnState.USING_TOOL
        await self._notify_tools_starting(turn, [call.name])
        try:
            return await self.tools.execute(call, observer=turn.tool_traces.append)
        except Exception as exc:
            logger.error("Tool %s could not be executed: %s", call.name, exc)
            turn.tool_traces.append(
                ToolTrace(
                    name=call.name,
                    input_payload=call.arguments,
                    output_preview=str(exc)[:320],
                    latency_ms=0.0,
                    is_error=True,
                )
            )
            return ToolResult.failure(f"Tool execution failed: {exc}")

    def _conversation(self, persona_template: str, turn: _Turn, content: str) -> list[Message]:
        return [
            Message(role="system", content=persona_template.format(persona=self.config.persona_name)),
            *turn.history,
            Message(role="user", content=content),
        ]

    async def _generate(self, turn: _Turn, conversation: list[Message]) -> str | None:
        """Run generation; ``None`` means a fallback chunk was delivered instead."""
        turn.state = TurnState.GENERATING
        sink = self._sink(turn) if turn.on_chunk is not None else None
        try:
            result = await self.generator.generate(conversation, on_chunk=sink)
        except Exception as exc:
            await self._fail(turn, exc)
            return None
        turn.model = result.model
        turn.state = TurnState.DONE
        return result.text

    async def _fail(self, turn: _Turn, exc: BaseException) -> ChatResponse:
        error = GenerationError.from_exception(exc)
        logger.error("Generation failed on %s route (%s): %s", turn.route, error.category.value, exc)
        turn.state = TurnState.ERROR_FALLBACK
        fallback = error.user_message
        if turn.delivered:
            fallback = "\n\n" + fallback
        await self._deliver(turn, fallback)
        return self._fallback_response(turn)

    def _fallback_response(self, turn: _Turn) -> ChatResponse:
        message = "".join(turn.delivered).strip() or USER_MESSAGES[ErrorCategory.UNKNOWN]
        return DirectResponse(message=message, degraded=True, metadata=self._metadata(turn))

    def _sink(self, turn: _Turn) -> ChunkCallback:
        async def sink(text: str) -> None:
            turn.state = TurnState.STREAMING
            await self._deliver(turn, text)

        return sink

    async def _deliver(self, turn: _Turn, text: str) -> None:
        turn.delivered.append(text)
        if turn.on_chunk is None or turn.sink_broken:
            return
        try:
            await _maybe_await(turn.on_chunk(text))
        except Exception as exc:
            turn.sink_broken = True
            logger.warning("Chunk sink failed, dropping further output: %s", exc)

    async def _stream_text(self, turn: _Turn, text: str) -> None:
        """Deliver preformatted text word by word with the configured pacing."""
        if turn.on_chunk is None:
            return
        turn.state = TurnState.STREAMING
        delay = self.config.direct_reply_delay_seconds
        for piece in _WORD_SPLIT.split(text):
            if not piece:
                continue
            await self._deliver(turn, piece)
            if delay > 0:
                await asyncio.sleep(delay)

    async def _notify_tools_starting(self, turn: _Turn, names: list[str]) -> None:
        if turn.on_tools_starting is None or turn.sink_broken:
            return
        try:
            await _maybe_await(turn.on_tools_starting(names))
        except Exception as exc:
            logger.warning("tools_starting notification failed: %s", exc)

    def _metadata(self, turn: _Turn) -> TurnMetadata:
        return TurnMetadata(
            route=turn.route,
            confidence=turn.confidence,
            tools=[trace.name for trace in turn.tool_traces],
            model=turn.model,
        )


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value

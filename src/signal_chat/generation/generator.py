"""Response generation over a LangChain chat model, with optional streaming."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from signal_chat.errors import GenerationError, MalformedRequestError
from signal_chat.shared import SharedHandle
from signal_chat.types import Message, ToolCall

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Awaitable[None] | None]


@dataclass(slots=True)
class GenerationResult:
    text: str
    model: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None


def to_langchain_messages(conversation: Sequence[Message]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in conversation:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return ""


def _check_conversation(conversation: Sequence[Message]) -> None:
    system_count = sum(1 for message in conversation if message.role == "system")
    if not conversation or conversation[0].role != "system" or system_count != 1:
        raise MalformedRequestError("Conversation must start with exactly one system message")


class _ChunkCallbackFailed(Exception):
    """Raised around an exception from the caller's chunk callback."""


async def _deliver(on_chunk: ChunkCallback, text: str) -> None:
    result = on_chunk(text)
    if inspect.isawaitable(result):
        await result


class ResponseGenerator:
    """Requests completions for a conversation.

    When ``on_chunk`` is given the model is streamed and the callback receives
    every non-empty delta in arrival order; the returned text is their
    concatenation. Backend failures surface as ``GenerationError`` subclasses;
    exceptions raised by ``on_chunk`` propagate unchanged.
    """

    def __init__(
        self,
        model: SharedHandle[BaseChatModel],
        *,
        model_name: str,
        max_tokens: int = 1000,
    ) -> None:
        self._model = model
        self.model_name = model_name
        self.max_tokens = max_tokens

    async def generate(
        self,
        conversation: Sequence[Message],
        *,
        max_tokens: int | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> GenerationResult:
        _check_conversation(conversation)
        messages = to_langchain_messages(conversation)
        budget = max_tokens or self.max_tokens

        try:
            chat = await self._model.get()
            runnable = chat.bind(max_tokens=budget)
            if on_chunk is None:
                reply = await runnable.ainvoke(messages)
                return self._result_from(reply)

            parts: list[str] = []
            async for chunk in runnable.astream(messages):
                delta = _content_text(chunk.content)
                if not delta:
                    continue
                parts.append(delta)
                try:
                    await _deliver(on_chunk, delta)
                except Exception as exc:
                    raise _ChunkCallbackFailed() from exc
            return GenerationResult(text="".join(parts), model=self.model_name)
        except _ChunkCallbackFailed as failed:
            raise failed.__cause__ from None
        except GenerationError:
            raise
        except Exception as exc:
            error = GenerationError.from_exception(exc)
            logger.error("LLM generation failed (%s): %s", error.category.value, exc)
            raise error from exc

    async def generate_with_tools(
        self,
        conversation: Sequence[Message],
        tools: Sequence[dict[str, Any]],
        *,
        max_tokens: int | None = None,
    ) -> GenerationResult:
        """One non-streaming pass with a tool catalog; the reply may request tool calls."""
        _check_conversation(conversation)
        messages = to_langchain_messages(conversation)

        try:
            chat = await self._model.get()
            runnable = chat.bind_tools(list(tools)).bind(max_tokens=max_tokens or self.max_tokens)
            reply = await runnable.ainvoke(messages)
        except Exception as exc:
            error = GenerationError.from_exception(exc)
            logger.error("LLM tool-calling pass failed (%s): %s", error.category.value, exc)
            raise error from exc
        return self._result_from(reply)

    def _result_from(self, reply: BaseMessage) -> GenerationResult:
        tool_calls = [
            ToolCall(name=call["name"], arguments=dict(call.get("args") or {}))
            for call in getattr(reply, "tool_calls", None) or []
        ]
        usage = getattr(reply, "usage_metadata", None) or {}
        model = reply.response_metadata.get("model_name") or self.model_name
        logger.info(
            "LLM response generated (model=%s, input_tokens=%s, output_tokens=%s)",
            model,
            usage.get("input_tokens"),
            usage.get("output_tokens"),
        )
        return GenerationResult(
            text=_content_text(reply.content),
            model=model,
            tool_calls=tool_calls,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
        )

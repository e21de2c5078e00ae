"""Tool catalog built on Pydantic v2 models."""

from __future__ import annotations

import logging
from collections.abc import Callable
from time import perf_counter
from typing import Any

from pydantic import BaseModel, Field

from signal_chat.tools.gateway import ToolGateway
from signal_chat.types import ToolCall, ToolResult, ToolTrace

logger = logging.getLogger(__name__)


def _empty_object_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


class ToolSpec(BaseModel):
    """Declarative tool specification for routing prompts and native tool calling."""

    name: str = Field(min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=_empty_object_schema)
    tags: list[str] = Field(default_factory=list)

    def as_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema or _empty_object_schema(),
            },
        }


class ToolRegistry:
    """Stores tool specs and executes them through the gateway."""

    def __init__(self, gateway: ToolGateway) -> None:
        self._gateway = gateway
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    async def refresh(self) -> list[ToolSpec]:
        """Merge the server's advertised catalog into the registry."""
        descriptors = await self._gateway.list_tools()
        for descriptor in descriptors:
            current = self._tools.get(descriptor.name)
            self._tools[descriptor.name] = ToolSpec(
                name=descriptor.name,
                description=descriptor.description or (current.description if current else ""),
                input_schema=descriptor.input_schema or _empty_object_schema(),
                tags=current.tags if current else [],
            )
        logger.info("Tool catalog refreshed (%d advertised, %d known)", len(descriptors), len(self._tools))
        return self.specs()

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def has(self, name: str) -> bool:
        return name in self._tools

    async def execute(
        self,
        call: ToolCall,
        *,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> ToolResult:
        """Run ``call`` through the gateway; ``observer`` also receives this call's trace."""
        if call.name not in self._tools:
            raise KeyError(f"Unknown tool: {call.name}")

        start = perf_counter()
        result = await self._gateway.call(call)
        latency_ms = (perf_counter() - start) * 1000.0

        trace = ToolTrace(
            name=call.name,
            input_payload=call.arguments,
            output_preview=result.text[:320],
            latency_ms=latency_ms,
            is_error=result.is_error,
        )
        for callback in (self._observer, observer):
            if callback is not None:
                callback(trace)
        return result

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def catalog(self) -> dict[str, str]:
        return {spec.name: spec.description for spec in self._tools.values()}

    def as_openai_tools(self) -> list[dict[str, Any]]:
        return [spec.as_openai_tool() for spec in self._tools.values()]

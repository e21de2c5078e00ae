"""MCP tool gateway over a single lazily opened client session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from fastmcp import Client
from fastmcp.client.transports import StdioTransport, StreamableHttpTransport

from signal_chat.config import ToolGatewayConfig
from signal_chat.types import ContentItem, ToolCall, ToolDescriptor, ToolResult

logger = logging.getLogger(__name__)


def normalize_content(raw: Any) -> list[ContentItem]:
    """Turn a single content item, a list of items, or nothing into ``ContentItem``s."""
    if raw is None:
        return []
    items = raw if isinstance(raw, (list, tuple)) else [raw]
    normalized: list[ContentItem] = []
    for item in items:
        if isinstance(item, str):
            normalized.append(ContentItem(kind="text", text=item))
        elif isinstance(item, dict):
            normalized.append(
                ContentItem(kind=str(item.get("type", "text")), text=str(item.get("text") or ""))
            )
        else:
            normalized.append(
                ContentItem(
                    kind=str(getattr(item, "type", "text")),
                    text=str(getattr(item, "text", "") or ""),
                )
            )
    return normalized


def client_from_config(config: ToolGatewayConfig) -> Client:
    if config.transport == "http":
        return Client(StreamableHttpTransport(config.url), timeout=config.timeout_seconds)
    return Client(
        StdioTransport(command=config.command, args=list(config.args), cwd=config.cwd),
        timeout=config.timeout_seconds,
    )


class ToolGateway:
    """Connect-once, call-many access to a tool-serving process.

    The session opens on first use. Any failure closes it so the next call
    reconnects; callers always get a ``ToolResult``.
    """

    def __init__(
        self,
        client_factory: Callable[[], Client],
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._client_factory = client_factory
        self._timeout = timeout_seconds
        self._session: Client | None = None
        self._lock: asyncio.Lock | None = None

    @classmethod
    def from_config(cls, config: ToolGatewayConfig) -> "ToolGateway":
        return cls(lambda: client_from_config(config), timeout_seconds=config.timeout_seconds)

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def list_tools(self) -> list[ToolDescriptor]:
        try:
            session = await self._ensure_session()
            tools = await asyncio.wait_for(session.list_tools(), self._timeout)
        except Exception as exc:
            logger.error("Listing tools failed: %s", exc)
            await self._discard_session()
            return []
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in tools
        ]

    async def call(self, tool_call: ToolCall) -> ToolResult:
        logger.info("Calling MCP tool: %s", tool_call.name)
        try:
            session = await self._ensure_session()
            raw = await asyncio.wait_for(
                session.call_tool_mcp(tool_call.name, tool_call.arguments),
                self._timeout,
            )
        except Exception as exc:
            logger.error("MCP tool %s failed: %s", tool_call.name, exc)
            await self._discard_session()
            return ToolResult.failure(f"Tool execution failed: {str(exc) or type(exc).__name__}")

        result = ToolResult(
            content_items=normalize_content(getattr(raw, "content", None)),
            is_error=bool(getattr(raw, "isError", False)),
        )
        logger.info(
            "MCP tool %s returned %d content items (is_error=%s)",
            tool_call.name,
            len(result.content_items),
            result.is_error,
        )
        return result

    async def aclose(self) -> None:
        await self._discard_session()

    async def _ensure_session(self) -> Client:
        if self._session is not None:
            return self._session
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._session is None:
                client = self._client_factory()
                await asyncio.wait_for(client.__aenter__(), self._timeout)
                self._session = client
                logger.info("Connected to MCP server")
        return self._session

    async def _discard_session(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await session.__aexit__(None, None, None)
        except Exception as exc:
            logger.warning("Error closing MCP session: %s", exc)

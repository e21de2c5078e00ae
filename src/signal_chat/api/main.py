"""FastAPI entrypoint for chat, tool listing, and trace endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, Field

from signal_chat.config import Settings
from signal_chat.obs.logging import configure_logging
from signal_chat.orchestration.factory import build_orchestrator
from signal_chat.orchestration.orchestrator import Orchestrator
from signal_chat.types import Message

logger = logging.getLogger(__name__)


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)
    history: list[HistoryMessage] = Field(
        default_factory=list,
        validation_alias=AliasChoices("history", "conversationHistory"),
    )

    def conversation(self) -> list[Message]:
        return [Message(role=turn.role, content=turn.content) for turn in self.history]


def create_app(orchestrator: Orchestrator | None = None) -> FastAPI:
    if orchestrator is None:
        settings = Settings()
        configure_logging(settings.log_level)
        orchestrator = build_orchestrator(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await orchestrator.aclose()

    app = FastAPI(title="Signal Chat", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    def _orchestrator(request: Request) -> Orchestrator:
        return request.app.state.orchestrator

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        current = _orchestrator(request)
        return {
            "status": "ok",
            "knowledge": await current.search.collection_info(),
            "tools": current.tools.names(),
            "trace_count": len(current.trace_store),
        }

    @app.post("/chat")
    async def chat(body: ChatRequest, request: Request) -> dict[str, Any]:
        response = await _orchestrator(request).handle_turn(body.message, body.conversation())
        return response.model_dump(mode="json")

    @app.post("/chat/stream")
    async def chat_stream(body: ChatRequest, request: Request) -> StreamingResponse:
        current = _orchestrator(request)

        async def lines() -> AsyncIterator[str]:
            async with aclosing(current.stream_turn(body.message, body.conversation())) as events:
                async for event in events:
                    yield json.dumps(event.as_dict()) + "\n"

        return StreamingResponse(lines(), media_type="application/x-ndjson")

    @app.get("/tools")
    async def tools(request: Request) -> dict[str, Any]:
        specs = await _orchestrator(request).list_tools()
        return {"tools": [spec.model_dump() for spec in specs]}

    @app.get("/traces")
    def traces(request: Request, limit: int = 20) -> dict[str, Any]:
        records = _orchestrator(request).trace_store.list_recent(limit=limit)
        return {"items": [asdict(record) for record in records]}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str, request: Request) -> dict[str, Any]:
        try:
            record = _orchestrator(request).trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics(request: Request) -> dict[str, Any]:
        return _orchestrator(request).trace_store.summary()

    return app

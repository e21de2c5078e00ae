"""Chat model construction."""

from __future__ import annotations

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI

from signal_chat.config import GenerationConfig


def create_chat_model(
    config: GenerationConfig,
    *,
    api_key: str | None,
    base_url: str | None = None,
    model: str | None = None,
    temperature: float | None = None,
) -> BaseChatModel:
    """Build an OpenAI-compatible chat model; retries are left to the caller."""
    return ChatOpenAI(
        model=model or config.model,
        temperature=config.temperature if temperature is None else temperature,
        api_key=api_key,
        base_url=base_url,
        timeout=config.timeout_seconds,
        max_retries=0,
    )

"""Configuration models for the chat orchestration core."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrievalBand(BaseModel):
    """Maps an intent-similarity score band to retrieval breadth and cutoff."""

    min_score: float = Field(ge=-1.0, le=1.0)
    top_k: int = Field(ge=1)
    cutoff: float = Field(ge=0.0, le=1.0)
    narrow_to_category: bool = False


def _default_bands() -> list[RetrievalBand]:
    return [
        RetrievalBand(min_score=0.6, top_k=10, cutoff=0.2, narrow_to_category=True),
        RetrievalBand(min_score=0.4, top_k=20, cutoff=0.4),
        RetrievalBand(min_score=-1.0, top_k=25, cutoff=0.7),
    ]


class RoutingConfig(BaseModel):
    """Configures intent routing strategy and its tunable thresholds."""

    strategy: Literal["embedding", "llm"] = "llm"
    bands: list[RetrievalBand] = Field(default_factory=_default_bands, min_length=1)
    history_messages: int = Field(default=3, ge=0)
    max_tokens: int = Field(default=200, ge=16)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    category_metadata_key: str = "source"
    category_sources: dict[str, str] = Field(
        default_factory=lambda: {"resume": "experience.md", "faq": "faq.md", "blog": "blog.md"}
    )
    exemplar_cache_path: str | None = None

    def band_for(self, score: float) -> RetrievalBand:
        """Return the first band (highest threshold first) the score reaches."""
        ordered = sorted(self.bands, key=lambda band: band.min_score, reverse=True)
        for band in ordered:
            if score >= band.min_score:
                return band
        return ordered[-1]


class RetrievalConfig(BaseModel):
    """Configures knowledge retrieval, reranking, and context assembly."""

    collection: str = "personal_knowledge"
    top_k: int = Field(default=3, ge=1)
    rerank_enabled: bool = False
    rerank_model: str = "rerank-v3.5"
    cutoff: float = Field(default=0.4, ge=0.0, le=1.0)
    context_char_budget: int = Field(default=6000, ge=1)
    context_top_n: int = Field(default=3, ge=1)


class GenerationConfig(BaseModel):
    """Configures language-model calls for answering and routing."""

    model: str = "gpt-4o-mini"
    routing_model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    tool_calling: Literal["out_of_band", "native"] = "out_of_band"


class ToolGatewayConfig(BaseModel):
    """Configures the connection to the tool-serving process."""

    transport: Literal["stdio", "http"] = "stdio"
    command: str = "node"
    args: list[str] = Field(default_factory=lambda: ["dist/index.js"])
    cwd: str | None = "../mcp"
    url: str = "http://localhost:3001/mcp"
    timeout_seconds: float = Field(default=30.0, gt=0.0)


class OrchestratorConfig(BaseModel):
    """Configures turn-level policy of the orchestrator."""

    knowledge_tool_policy: Literal["exclusive", "combined"] = "exclusive"
    history_limit: int = Field(default=10, ge=0)
    direct_reply_delay_seconds: float = Field(default=0.025, ge=0.0)
    persona_name: str = "Anthony"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables / .env file.

    Nested sections use ``__`` as delimiter, e.g. ``ROUTING__STRATEGY=embedding``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    openai_api_key: str | None = None
    llm_base_url: str | None = None
    embedding_model: str = "text-embedding-3-small"
    cohere_api_key: str | None = None
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    tools: ToolGatewayConfig = Field(default_factory=ToolGatewayConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)

"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant", "system"]


@dataclass(slots=True, frozen=True)
class Message:
    """One conversation turn."""

    role: Role
    content: str

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class RetrievedPassage:
    """A passage returned by relevance search, optionally reranked."""

    content: str
    source_id: str
    similarity_score: float
    relevance_score: float | None = None
    distance: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str:
        return str(self.metadata.get("source", self.source_id))

    @property
    def section(self) -> str | None:
        section = self.metadata.get("section")
        return str(section) if section is not None else None

    @property
    def score(self) -> float:
        """Relevance score when reranked, otherwise similarity."""
        if self.relevance_score is not None:
            return self.relevance_score
        return self.similarity_score


@dataclass(slots=True)
class SearchResult:
    query: str
    passages: list[RetrievedPassage] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "results": [
                {
                    "content": passage.content,
                    "metadata": passage.metadata,
                    "distance": passage.distance,
                    "id": passage.source_id,
                }
                for passage in self.passages
            ],
        }


class RetrievalPlan(BaseModel):
    """Retrieval breadth and cutoff selected for one request."""

    top_k: int = Field(ge=1)
    cutoff: float = Field(ge=0.0, le=1.0)
    metadata_filter: dict[str, Any] | None = None


class IntentDecision(BaseModel):
    """Routing decision produced once per request by an intent router.

    Validation accepts the camelCase wire names as well as the older
    ``useRAG``/``mcpTool(s)``/``reasoning`` spellings emitted by some prompts.
    """

    model_config = ConfigDict(extra="ignore")

    use_personal_knowledge: bool = Field(
        strict=True,
        validation_alias=AliasChoices("usePersonalKnowledge", "useRAG", "use_personal_knowledge"),
        serialization_alias="usePersonalKnowledge",
    )
    tool_name: str = Field(
        default="",
        validation_alias=AliasChoices("toolName", "mcpTool", "mcpTools", "tool_name"),
        serialization_alias="toolName",
    )
    direct_response: bool = Field(
        default=False,
        strict=True,
        validation_alias=AliasChoices("directResponse", "direct_response"),
        serialization_alias="directResponse",
    )
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = Field(
        default="",
        validation_alias=AliasChoices("rationale", "reasoning"),
    )
    category: str | None = None
    retrieval: RetrievalPlan | None = None

    @field_validator("tool_name", mode="before")
    @classmethod
    def _first_tool(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, list):
            return value[0] if value else ""
        return value

    @classmethod
    def fallback(cls, rationale: str = "Routing failed, defaulting to personal knowledge") -> "IntentDecision":
        return cls(
            use_personal_knowledge=True,
            tool_name="",
            direct_response=False,
            confidence=0.5,
            rationale=rationale,
        )


@dataclass(slots=True)
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ContentItem:
    kind: str
    text: str


@dataclass(slots=True)
class ToolResult:
    """Normalized outcome of one tool invocation."""

    content_items: list[ContentItem] = field(default_factory=list)
    is_error: bool = False

    @property
    def text(self) -> str:
        return " ".join(item.text for item in self.content_items if item.kind == "text" and item.text)

    @classmethod
    def failure(cls, description: str) -> "ToolResult":
        return cls(content_items=[ContentItem(kind="text", text=description)], is_error=True)


@dataclass(slots=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    is_error: bool = False


StreamEventType = Literal["chunk", "tools_starting", "done", "error"]


@dataclass(slots=True)
class StreamEvent:
    """One newline-delimited unit of the streaming surface."""

    type: StreamEventType
    data: Any

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


class TurnMetadata(BaseModel):
    route: str
    confidence: float = 0.0
    tools: list[str] = Field(default_factory=list)
    model: str | None = None
    latency_ms: float = 0.0
    trace_id: str | None = None


class _TurnResponse(BaseModel):
    message: str
    degraded: bool = False
    metadata: TurnMetadata


class RagResponse(_TurnResponse):
    kind: Literal["rag_response"] = "rag_response"
    retrieved: list[str] = Field(default_factory=list)


class ToolResponse(_TurnResponse):
    kind: Literal["tool_response"] = "tool_response"
    service: str
    data: dict[str, Any] = Field(default_factory=dict)


class DirectResponse(_TurnResponse):
    kind: Literal["direct_response"] = "direct_response"


ChatResponse = Annotated[
    RagResponse | ToolResponse | DirectResponse,
    Field(discriminator="kind"),
]

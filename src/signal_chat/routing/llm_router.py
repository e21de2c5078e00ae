"""Intent routing through one constrained language-model completion."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence

from pydantic import ValidationError

from signal_chat.config import RoutingConfig
from signal_chat.generation.generator import ResponseGenerator
from signal_chat.generation.prompts import build_routing_prompt, build_routing_query
from signal_chat.types import IntentDecision, Message

logger = logging.getLogger(__name__)

_FENCED = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", flags=re.DOTALL)

DEFAULT_TOPICS: dict[str, str] = {
    "experience": "career history, roles, and companies",
    "skills": "technical and leadership skills",
    "projects": "past projects and achievements",
    "interests": "hobbies and life outside work",
    "values": "principles and beliefs",
    "faq": "common personal questions",
    "blog": "what I write about in general",
}


def parse_routing_reply(text: str) -> IntentDecision | None:
    """Strip a code fence if present and validate the JSON body; ``None`` when invalid."""
    body = text.strip()
    match = _FENCED.match(body)
    if match:
        body = match.group(1)
    try:
        return IntentDecision.model_validate_json(body)
    except ValidationError as exc:
        logger.warning("Rejected routing reply (%d errors): %r", exc.error_count(), body[:200])
        return None


class LLMIntentRouter:
    """Asks a small, fast model for a JSON routing decision."""

    def __init__(
        self,
        generator: ResponseGenerator,
        *,
        tool_catalog: Callable[[], Mapping[str, str]],
        config: RoutingConfig | None = None,
        topics: Mapping[str, str] | None = None,
        persona: str = "the site owner",
    ) -> None:
        self.generator = generator
        self.config = config or RoutingConfig()
        self.topics = dict(topics if topics is not None else DEFAULT_TOPICS)
        self.persona = persona
        self._tool_catalog = tool_catalog

    async def decide(self, message: str, recent_history: Sequence[Message]) -> IntentDecision:
        tools = dict(self._tool_catalog())
        turns = [turn for turn in recent_history if turn.role != "system"]
        limit = self.config.history_messages
        history = turns[-limit:] if limit else []
        conversation = [
            Message(role="system", content=build_routing_prompt(self.persona, tools, self.topics)),
            Message(role="user", content=build_routing_query(message, history)),
        ]

        try:
            result = await self.generator.generate(conversation, max_tokens=self.config.max_tokens)
        except Exception as exc:
            logger.error("Routing call failed: %s. Defaulting to safe fallback.", exc)
            return IntentDecision.fallback()

        decision = parse_routing_reply(result.text)
        if decision is None:
            return IntentDecision.fallback("Unparseable routing reply, defaulting to personal knowledge")

        if decision.tool_name and decision.tool_name not in tools:
            logger.warning("Routing picked unknown tool %r; dropping it", decision.tool_name)
            decision = decision.model_copy(update={"tool_name": "", "direct_response": False})

        logger.info(
            "Routing decision: knowledge=%s tool=%r direct=%s (confidence %.2f): %s",
            decision.use_personal_knowledge,
            decision.tool_name,
            decision.direct_response,
            decision.confidence,
            decision.rationale,
        )
        return decision

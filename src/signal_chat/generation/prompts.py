"""Prompt templates for routing and answering."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from signal_chat.types import Message

KNOWLEDGE_PERSONA = (
    "You are {persona}, speaking in the first person on a personal portfolio site. "
    "Use the provided context to answer questions about yourself, your experience, "
    "and your background. If the context does not cover the question, say so "
    "plainly instead of guessing. Be conversational and authentic."
)

TOOL_PERSONA = (
    "You are {persona}, speaking in the first person on a personal portfolio site. "
    "Live data from your connected services is included with the question. "
    "Use it to answer naturally and do not invent details it does not contain."
)

DIRECT_PERSONA = (
    "You are {persona}, speaking in the first person on a personal portfolio site. "
    "Answer questions naturally and helpfully."
)

KNOWLEDGE_CONTEXT_TEMPLATE = "Context about {persona}:\n{context}\n\nUser question: {message}"

TOOL_CONTEXT_TEMPLATE = "Live data:\n{tool_context}\n\nUser question: {message}"

COMBINED_CONTEXT_TEMPLATE = (
    "Context about {persona}:\n{context}\n\nLive data:\n{tool_context}\n\nUser question: {message}"
)

ROUTING_INSTRUCTIONS = """You route questions for {persona}'s personal assistant.

For the current message decide:
1. Whether it needs {persona}'s personal knowledge base (background, experience, opinions).
2. Whether it needs live data from exactly one tool.
3. Whether that tool's formatted output can be the whole reply (directResponse).

Knowledge base topics:
{topics}

Tools:
{tools}

Rules:
- Pick a tool only for current or live data; pick the knowledge base for anything about {persona}'s history or personal details.
- Set directResponse to true only for plain requests for a tool's data, such as "what are you listening to?".
- Leave both off for general questions that are not about {persona}.
- toolName must be one of the listed tool names or "".

Reply with one JSON object and nothing else:
{{"usePersonalKnowledge": true|false, "toolName": "<tool name or empty>", "directResponse": true|false, "confidence": <0..1>, "rationale": "<short reason>"}}"""

ROUTING_QUERY_TEMPLATE = 'Current message: "{message}"'


def build_routing_prompt(
    persona: str,
    tools: Mapping[str, str],
    topics: Mapping[str, str],
) -> str:
    tool_lines = "\n".join(f"- {name}: {description}" for name, description in tools.items())
    topic_lines = "\n".join(f"- {name}: {description}" for name, description in topics.items())
    return ROUTING_INSTRUCTIONS.format(
        persona=persona,
        tools=tool_lines or "- (none available)",
        topics=topic_lines or "- (none)",
    )


def build_routing_query(message: str, history: Iterable[Message]) -> str:
    lines = [ROUTING_QUERY_TEMPLATE.format(message=message)]
    recent = "\n".join(f"{turn.role}: {turn.content}" for turn in history)
    if recent:
        lines.append(f"Recent conversation:\n{recent}")
    return "\n\n".join(lines)

"""Intent router contract."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from signal_chat.types import IntentDecision, Message


class IntentRouter(Protocol):
    async def decide(self, message: str, recent_history: Sequence[Message]) -> IntentDecision:
        """Return a routing decision; implementations never raise."""

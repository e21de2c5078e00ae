"""Intent exemplar phrases and their cached embedding table."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from signal_chat.retrieval.embedder import Embedder

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ExemplarGroup:
    """Phrases typical of one intent; ``tool_name`` binds the group to a live-data tool."""

    name: str
    phrases: tuple[str, ...]
    tool_name: str | None = None
    direct_response: bool = True


DEFAULT_GROUPS: tuple[ExemplarGroup, ...] = (
    ExemplarGroup(
        name="resume",
        phrases=(
            "Can I see your resume?",
            "Walk me through your work history",
            "Which companies have you worked for?",
            "What roles have you held?",
            "Where did you study?",
            "What is your professional background?",
            "Summarize your career so far",
            "What was your previous job?",
        ),
    ),
    ExemplarGroup(
        name="faq",
        phrases=(
            "What's your name?",
            "Where are you based?",
            "What do you like to do in your free time?",
            "What are your hobbies?",
            "Which languages do you speak?",
            "What are you good at?",
            "What's your favorite book?",
            "What's your favorite movie?",
        ),
    ),
    ExemplarGroup(
        name="blog",
        phrases=(
            "Do you write a blog?",
            "What have you written about?",
            "Where can I read your articles?",
            "What topics do you write on?",
            "Do you publish essays online?",
            "Can you share something you wrote?",
        ),
    ),
    ExemplarGroup(
        name="now_playing",
        phrases=(
            "What are you listening to?",
            "What song is playing right now?",
            "What music are you into at the moment?",
            "What was the last track you played on Spotify?",
        ),
        tool_name="get_current_spotify_track",
    ),
    ExemplarGroup(
        name="github",
        phrases=(
            "Show me your GitHub activity",
            "What have you pushed to GitHub recently?",
            "How many contributions do you have on GitHub?",
            "Which repositories have you pinned?",
        ),
        tool_name="get_github_activity",
    ),
)


class ExemplarTable:
    """Embeddings of every exemplar phrase, keyed by group name.

    The table is computed once and optionally persisted to ``cache_path``. A
    cache whose fingerprint does not match the current phrase list (or that
    cannot be read) is regenerated.
    """

    def __init__(
        self,
        embedder: Embedder,
        groups: Sequence[ExemplarGroup] = DEFAULT_GROUPS,
        *,
        cache_path: str | Path | None = None,
    ) -> None:
        if not groups:
            raise ValueError("at least one exemplar group is required")
        self.embedder = embedder
        self.groups = tuple(groups)
        self.cache_path = Path(cache_path) if cache_path else None
        self._vectors: dict[str, list[list[float]]] | None = None
        self._lock: asyncio.Lock | None = None

    def group(self, name: str) -> ExemplarGroup:
        for group in self.groups:
            if group.name == name:
                return group
        raise KeyError(f"Unknown exemplar group: {name}")

    def fingerprint(self) -> str:
        embedder_id = getattr(self.embedder, "model_name", type(self.embedder).__name__)
        payload = json.dumps(
            {
                "embedder": str(embedder_id),
                "groups": [[group.name, list(group.phrases)] for group in self.groups],
            },
            sort_keys=True,
        )
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()

    async def load(self) -> dict[str, list[list[float]]]:
        if self._vectors is not None:
            return self._vectors
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._vectors is None:
                vectors = self._read_cache()
                if vectors is None:
                    vectors = await self._generate()
                    self._write_cache(vectors)
                self._vectors = vectors
        return self._vectors

    async def _generate(self) -> dict[str, list[list[float]]]:
        logger.info("Generating intent embeddings for %d groups", len(self.groups))
        vectors: dict[str, list[list[float]]] = {}
        for group in self.groups:
            vectors[group.name] = await self.embedder.aembed_documents(list(group.phrases))
        return vectors

    def _read_cache(self) -> dict[str, list[list[float]]] | None:
        if self.cache_path is None or not self.cache_path.exists():
            return None
        try:
            cached = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable intent embedding cache %s: %s", self.cache_path, exc)
            return None
        if not isinstance(cached, dict) or cached.get("fingerprint") != self.fingerprint():
            logger.info("Intent embedding cache %s is stale", self.cache_path)
            return None
        vectors = cached.get("groups")
        if not isinstance(vectors, dict) or set(vectors) != {group.name for group in self.groups}:
            return None
        logger.info("Loaded intent embeddings from %s", self.cache_path)
        return vectors

    def _write_cache(self, vectors: dict[str, list[list[float]]]) -> None:
        if self.cache_path is None:
            return
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(
                json.dumps({"fingerprint": self.fingerprint(), "groups": vectors}),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Could not write intent embedding cache %s: %s", self.cache_path, exc)
            return
        logger.info("Saved intent embeddings to %s", self.cache_path)

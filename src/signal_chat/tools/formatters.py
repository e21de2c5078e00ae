"""Formatters turning tool results into structured data and display text."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

from signal_chat.types import ToolResult

logger = logging.getLogger(__name__)

NO_DATA = "No data available at the moment."
PARSE_FAILED = "Failed to parse response data"


@dataclass(slots=True)
class FormattedToolOutput:
    service: str
    data: dict[str, Any] = field(default_factory=dict)
    formatted: str = ""


def parse_timestamp(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _plural(count: int, one: str, many: str) -> str:
    return one if count == 1 else many.format(count=count)


def relative_time(moment: datetime, now: datetime | None = None) -> str:
    """Human distance between ``moment`` and now, e.g. "about 3 hours ago"."""
    now = now or datetime.now(timezone.utc)
    seconds = (now - moment).total_seconds()
    future = seconds < 0
    minutes = round(abs(seconds) / 60)

    if minutes < 1:
        phrase = "less than a minute"
    elif minutes < 45:
        phrase = _plural(minutes, "1 minute", "{count} minutes")
    elif minutes < 90:
        phrase = "about 1 hour"
    elif minutes < 1440:
        phrase = _plural(round(minutes / 60), "about 1 hour", "about {count} hours")
    elif minutes < 2520:
        phrase = "1 day"
    elif minutes < 43200:
        phrase = _plural(round(minutes / 1440), "1 day", "{count} days")
    elif minutes < 86400:
        phrase = _plural(round(minutes / 43200), "about 1 month", "about {count} months")
    else:
        months = int(minutes // 43200)
        if months < 12:
            phrase = _plural(round(minutes / 43200), "1 month", "{count} months")
        else:
            years, remainder = divmod(months, 12)
            if remainder < 3:
                phrase = _plural(years, "about 1 year", "about {count} years")
            elif remainder < 9:
                phrase = _plural(years, "over 1 year", "over {count} years")
            else:
                phrase = _plural(years + 1, "almost 1 year", "almost {count} years")

    return f"in {phrase}" if future else f"{phrase} ago"


def _time_ago(value: Any) -> str:
    if not isinstance(value, str) or not value:
        return ""
    try:
        return relative_time(parse_timestamp(value))
    except ValueError:
        return ""


class ToolFormatter(ABC):
    """Formats the result of the tools belonging to one service.

    Error results and empty results yield ``unavailable_message``; a JSON
    payload carrying an ``error`` field is surfaced verbatim; anything that
    cannot be parsed yields ``parse_failure_message``.
    """

    service: ClassVar[str]
    tools: ClassVar[tuple[str, ...]] = ()
    unavailable_message: ClassVar[str] = NO_DATA
    parse_failure_message: ClassVar[str] = NO_DATA

    def format(self, result: ToolResult) -> FormattedToolOutput:
        if result.is_error or not result.content_items:
            logger.warning("%s formatter: no valid result", self.service)
            return FormattedToolOutput(self.service, {"error": NO_DATA}, self.unavailable_message)

        try:
            payload = json.loads(result.content_items[0].text)
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            if payload.get("error"):
                error = str(payload["error"])
                logger.warning("%s formatter: tool returned error %r", self.service, error)
                return FormattedToolOutput(self.service, {"error": error}, error)
            data = self.extract(payload)
            return FormattedToolOutput(self.service, data, self.render(data))
        except (ValueError, TypeError, KeyError, AttributeError, IndexError) as exc:
            logger.error("Failed to parse %s response: %s", self.service, exc)
            return FormattedToolOutput(self.service, {"error": PARSE_FAILED}, self.parse_failure_message)

    @abstractmethod
    def extract(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Pick the fields used for display from the raw payload."""

    @abstractmethod
    def render(self, data: dict[str, Any]) -> str:
        """Human-readable markdown for ``data``."""


class NowPlayingFormatter(ToolFormatter):
    service = "spotify"
    tools = ("get_current_spotify_track",)
    unavailable_message = "I'm not currently listening to anything on Spotify."
    parse_failure_message = "I'm having trouble accessing Spotify right now."

    def extract(self, payload: dict[str, Any]) -> dict[str, Any]:
        artists = payload.get("artists") or []
        return {
            "track": payload.get("name"),
            "artist": artists[0].get("name") if artists else None,
            "album": (payload.get("album") or {}).get("name"),
            "url": (payload.get("external_urls") or {}).get("spotify"),
            "played_at": payload.get("played_at"),
        }

    def render(self, data: dict[str, Any]) -> str:
        if not data.get("track") or not data.get("artist"):
            return self.unavailable_message
        title = f"{data['track']} by {data['artist']}"
        link = f"[{title}]({data['url']})" if data.get("url") else title
        time_ago = _time_ago(data.get("played_at"))
        if time_ago:
            return f"I listened to {link} **{time_ago}**."
        return f"I'm listening to {link}."


class GitHubActivityFormatter(ToolFormatter):
    service = "github"
    tools = ("get_github_activity",)
    unavailable_message = "I'm having trouble accessing my GitHub activity right now."
    parse_failure_message = unavailable_message

    def extract(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "username": payload.get("username"),
            "profile_url": payload.get("profileUrl"),
            "total_contributions": payload.get("totalContributions"),
            "pinned_repos": list(payload.get("pinnedRepos") or []),
        }

    def render(self, data: dict[str, Any]) -> str:
        if not data.get("username"):
            return "I'm having trouble accessing my GitHub profile."
        lines = [
            f"So far I've made **{data.get('total_contributions') or 0}** contributions "
            "in the last year. Here are some of my pinned repos:",
            "",
        ]
        repos = data["pinned_repos"]
        if not repos:
            lines.append("No pinned repositories found.")
        for repo in repos:
            description = repo.get("description") or "No description."
            lines.append(f"- [{repo['name']}]({repo.get('url', '')}): {description}")
        return "\n".join(lines).strip()


class LatestPostFormatter(ToolFormatter):
    service = "blog"
    tools = ("get_latest_blog_post",)
    unavailable_message = "I'm having trouble accessing my blog posts right now."
    parse_failure_message = unavailable_message

    def extract(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "title": payload.get("title"),
            "url": payload.get("link") or payload.get("url"),
            "published_at": payload.get("publishedAt"),
        }

    def render(self, data: dict[str, Any]) -> str:
        if not data.get("title") or not data.get("url"):
            return "I don't have any recent blog posts to share right now."
        link = f"[{data['title']}]({data['url']})"
        time_ago = _time_ago(data.get("published_at"))
        if time_ago:
            return f"I wrote a post titled {link} **{time_ago}**."
        return f"My latest post is titled {link}."


class ProjectInfoFormatter(ToolFormatter):
    service = "project"
    tools = ("get_project_info",)
    unavailable_message = "No project info available."
    parse_failure_message = "I'm having trouble accessing the project info right now."

    def extract(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": payload.get("name"),
            "description": payload.get("description"),
            "url": payload.get("url"),
            "technologies": [str(item) for item in payload.get("technologies") or []],
        }

    def render(self, data: dict[str, Any]) -> str:
        sections = []
        if data.get("name"):
            sections.append(f"# {data['name']}")
        if data.get("description"):
            sections.append(data["description"])
        if data["technologies"]:
            stack = "\n".join(f"- {item}" for item in data["technologies"])
            sections.append(f"# Tech Stack\n{stack}")
        if data.get("url"):
            sections.append(f"# Repo\nCheck it out on [GitHub]({data['url']}) for more details.")
        return "\n\n".join(sections) or self.unavailable_message


class TextFormatter(ToolFormatter):
    """Fallback for tools without a dedicated formatter: passes text through."""

    service = "text"

    def format(self, result: ToolResult) -> FormattedToolOutput:
        text = result.text
        if result.is_error or not text:
            return FormattedToolOutput(self.service, {"error": NO_DATA}, NO_DATA)
        try:
            payload = json.loads(text)
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("error"):
            error = str(payload["error"])
            return FormattedToolOutput(self.service, {"error": error}, error)
        return FormattedToolOutput(self.service, {"text": text}, text)

    def extract(self, payload: dict[str, Any]) -> dict[str, Any]:
        return payload

    def render(self, data: dict[str, Any]) -> str:
        return json.dumps(data)


class FormatterRegistry:
    """Maps tool names to the formatter of their service."""

    def __init__(self, fallback: ToolFormatter | None = None) -> None:
        self._formatters: dict[str, ToolFormatter] = {}
        self._tool_to_service: dict[str, str] = {}
        self._fallback = fallback or TextFormatter()

    def register(self, formatter: ToolFormatter, tools: tuple[str, ...] | None = None) -> None:
        self._formatters[formatter.service] = formatter
        for tool_name in tools if tools is not None else formatter.tools:
            self._tool_to_service[tool_name] = formatter.service
        logger.debug("Registered formatter for service: %s", formatter.service)

    def service_for(self, tool_name: str) -> str:
        return self._tool_to_service.get(tool_name, self._fallback.service)

    def for_tool(self, tool_name: str) -> ToolFormatter:
        service = self._tool_to_service.get(tool_name)
        if service is None:
            return self._fallback
        return self._formatters[service]

    def format(self, tool_name: str, result: ToolResult) -> FormattedToolOutput:
        return self.for_tool(tool_name).format(result)

    @classmethod
    def with_defaults(cls) -> "FormatterRegistry":
        registry = cls()
        for formatter in (
            NowPlayingFormatter(),
            GitHubActivityFormatter(),
            LatestPostFormatter(),
            ProjectInfoFormatter(),
        ):
            registry.register(formatter)
        return registry

"""Catalog entries for the live-data tools served by the MCP process."""

from __future__ import annotations

from signal_chat.tools.registry import ToolRegistry, ToolSpec

BUILTIN_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="get_current_spotify_track",
        description="What I'm listening to on Spotify right now, or played most recently",
        tags=["spotify", "live"],
    ),
    ToolSpec(
        name="get_github_activity",
        description="Recent GitHub contributions and pinned repositories",
        tags=["github", "live"],
    ),
    ToolSpec(
        name="get_latest_blog_post",
        description="The most recent post from my blog",
        tags=["blog", "live"],
    ),
    ToolSpec(
        name="get_project_info",
        description="Information about this chat project: purpose, tech stack, repository",
        tags=["project"],
    ),
)


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Register the known tools so routing works before the server is first contacted.

    ``ToolRegistry.refresh`` later overwrites these with the server's own schemas.
    """
    for spec in BUILTIN_TOOLS:
        registry.register(spec.model_copy(deep=True))

"""Shared bot/workspace resolution helpers for commands."""

from __future__ import annotations

from pathlib import Path

from .. import paths
from ..errors import ConfigurationError
from ..registry import WorkspaceRegistry
from ..workspace import BotWorkspace, detect_project_root, lookup_workspace


def require_bot(bot: str) -> str:
    """Return ``bot`` when its directory exists; raise otherwise."""
    if not paths.bot_dir(bot).is_dir():
        raise ConfigurationError(
            f"unknown bot: {bot}",
            recovery_hint=f"run `openbot bots --init {bot}` to create it",
        )
    return bot


def resolve_existing_workspace(bot: str, slug: str | None) -> BotWorkspace:
    """Find a registered workspace by slug, or by the current project.

    Unlike a run, this never registers a new project.
    """
    if slug:
        found = lookup_workspace(bot, slug)
        if found is None:
            raise ConfigurationError(
                f"no workspace `{slug}` for bot {bot}",
                recovery_hint=f"run `openbot workspaces --bot {bot}` to list them",
            )
        return found
    project_root = detect_project_root(Path.cwd())
    entry = WorkspaceRegistry.for_bot(bot).find_by_path(project_root)
    if entry is None:
        raise ConfigurationError(
            f"bot {bot} has not run in {project_root}",
            recovery_hint="pass --workspace or run the bot here first",
        )
    return BotWorkspace(bot=bot, slug=entry.slug, project_root=project_root)

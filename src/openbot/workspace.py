"""Workspace identity: which (bot, project) scope a run stores state under."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from . import paths
from .registry import WorkspaceRegistry
from .worktrees import resolve_repo_root


@dataclass(frozen=True)
class BotWorkspace:
    """The (bot, project) scope that memory and history are stored under.

    Example:
        >>> ws = BotWorkspace(bot="docs", slug="app", project_root=Path("/src/app"))
        >>> ws.history_dir.parts[-2:]
        ('app', 'history')
    """

    bot: str
    slug: str
    project_root: Path

    @property
    def state_dir(self) -> Path:
        return paths.workspace_dir(self.bot, self.slug)

    @property
    def history_dir(self) -> Path:
        return paths.history_dir(self.bot, self.slug)

    @property
    def memory_path(self) -> Path:
        return paths.memory_path(self.bot, self.slug)


def detect_project_root(cwd: Path) -> Path:
    """Return the repository root for ``cwd``, or ``cwd`` outside git."""
    return resolve_repo_root(cwd) or cwd.resolve()


def resolve_workspace(bot: str, cwd: Path) -> BotWorkspace:
    """Register the project containing ``cwd`` and return its workspace."""
    project_root = detect_project_root(cwd)
    slug = WorkspaceRegistry.for_bot(bot).register(project_root)
    return BotWorkspace(bot=bot, slug=slug, project_root=project_root)


def lookup_workspace(bot: str, slug: str) -> BotWorkspace | None:
    """Return a registered workspace by slug without touching ``last_used``."""
    found = WorkspaceRegistry.for_bot(bot).find_by_slug(slug)
    if found is None:
        return None
    path, entry = found
    return BotWorkspace(bot=bot, slug=entry.slug, project_root=Path(path))

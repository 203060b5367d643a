"""Path helpers for locating OpenBot data directories and files."""

import os
from pathlib import Path

from platformdirs import user_data_dir

OPENBOT_APP_NAME = "openbot"
OPENBOT_HOME_ENV = "OPENBOT_HOME"
BOTS_DIRNAME = "bots"
SKILLS_DIRNAME = "skills"
WORKSPACES_DIRNAME = "workspaces"
HISTORY_DIRNAME = "history"
CONFIG_FILENAME = "config.md"
REGISTRY_FILENAME = "registry.json"
MEMORY_FILENAME = "memory.json"
METADATA_FILENAME = "metadata.json"
EVENTS_FILENAME = "events.jsonl"
WORKTREES_DIRNAME = "openbot-worktrees"
WORKTREE_BRANCH_PREFIX = "openbot/"


def openbot_data_dir() -> Path:
    """Return the base OpenBot data directory.

    ``OPENBOT_HOME`` overrides the platform user data directory.

    Example:
        >>> isinstance(openbot_data_dir(), Path)
        True
    """
    override = os.environ.get(OPENBOT_HOME_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return Path(user_data_dir(OPENBOT_APP_NAME))


def global_skills_dir() -> Path:
    """Return the directory holding skills shared by every bot.

    Example:
        >>> global_skills_dir().name == SKILLS_DIRNAME
        True
    """
    return openbot_data_dir() / SKILLS_DIRNAME


def bots_root() -> Path:
    """Return the directory containing one subdirectory per bot.

    Example:
        >>> bots_root().name == BOTS_DIRNAME
        True
    """
    return openbot_data_dir() / BOTS_DIRNAME


def bot_dir(bot: str) -> Path:
    return bots_root() / bot


def bot_config_path(bot: str) -> Path:
    """Return the path to ``config.md`` for a bot.

    Example:
        >>> bot_config_path("demo").name == CONFIG_FILENAME
        True
    """
    return bot_dir(bot) / CONFIG_FILENAME


def bot_skills_dir(bot: str) -> Path:
    return bot_dir(bot) / SKILLS_DIRNAME


def bot_workspaces_dir(bot: str) -> Path:
    """Return the directory that holds a bot's per-project state."""
    return bot_dir(bot) / WORKSPACES_DIRNAME


def registry_path(bot: str) -> Path:
    """Return the workspace registry document for a bot.

    Example:
        >>> registry_path("demo").name == REGISTRY_FILENAME
        True
    """
    return bot_workspaces_dir(bot) / REGISTRY_FILENAME


def workspace_dir(bot: str, slug: str) -> Path:
    return bot_workspaces_dir(bot) / slug


def memory_path(bot: str, slug: str) -> Path:
    """Return the memory document for a (bot, workspace) pair.

    Example:
        >>> memory_path("demo", "app").parts[-2:]
        ('app', 'memory.json')
    """
    return workspace_dir(bot, slug) / MEMORY_FILENAME


def history_dir(bot: str, slug: str) -> Path:
    """Return the session history directory for a (bot, workspace) pair.

    Example:
        >>> history_dir("demo", "app").name == HISTORY_DIRNAME
        True
    """
    return workspace_dir(bot, slug) / HISTORY_DIRNAME


def worktrees_root(git_common_dir: Path) -> Path:
    """Return the directory, inside git metadata, that holds run worktrees.

    Example:
        >>> worktrees_root(Path("/repo/.git")).as_posix()
        '/repo/.git/openbot-worktrees'
    """
    return git_common_dir / WORKTREES_DIRNAME

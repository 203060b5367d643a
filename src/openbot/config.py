"""Configuration helpers for OpenBot bots.

A bot lives in ``bots/<name>/`` under the data directory. Its ``config.md``
holds optional TOML frontmatter between ``+++`` lines followed by the
markdown instructions given to the agent.

Example:
    >>> parse_config_md("+++\\nsleep_secs = 0\\n+++\\nFix the tests.").sleep_secs
    0
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path

from pydantic import BaseModel, ValidationError

from . import paths
from .errors import ConfigurationError
from .models import (
    DEFAULT_INSTRUCTIONS,
    DEFAULT_MAX_SESSIONS,
    DEFAULT_SANDBOX,
    DEFAULT_SLEEP_SECS,
    BotConfig,
)

FRONTMATTER_DELIMITER = "+++"
DEFAULT_BOT_NAME = "default"


def load_json(path: Path) -> dict | None:
    """Load a JSON file if it exists.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed payload as a dict, or ``None`` if the file does not exist or
        does not hold a JSON object.

    Example:
        >>> load_json(Path("missing.json")) is None
        True
    """
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        try:
            payload = json.load(fh)
        except json.JSONDecodeError:
            return None
    if not isinstance(payload, dict):
        return None
    return payload


def write_json(path: Path, payload: dict | BaseModel) -> None:
    """Write a JSON payload to disk.

    Args:
        path: Path to the JSON file to write.
        payload: Dict or Pydantic model to serialize.
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")


def split_frontmatter(contents: str) -> tuple[str | None, str]:
    """Split ``config.md`` text into (frontmatter, body).

    Returns ``None`` for the frontmatter when the file has none.

    Raises:
        ConfigurationError: When the opening ``+++`` has no closing line.

    Example:
        >>> split_frontmatter("just instructions")
        (None, 'just instructions')
    """
    trimmed = contents.lstrip()
    if not trimmed.startswith(FRONTMATTER_DELIMITER):
        return None, contents.strip()
    lines = trimmed.splitlines()
    for idx in range(1, len(lines)):
        if lines[idx].strip() == FRONTMATTER_DELIMITER:
            frontmatter = "\n".join(lines[1:idx])
            body = "\n".join(lines[idx + 1 :]).strip()
            return frontmatter, body
    raise ConfigurationError(
        "config.md: missing closing +++",
        recovery_hint="close the frontmatter block with a line containing only +++",
    )


def parse_config_md(contents: str) -> BotConfig:
    """Parse ``config.md`` text into a validated ``BotConfig``.

    Raises:
        ConfigurationError: For malformed TOML or invalid field values.
    """
    frontmatter, body = split_frontmatter(contents)
    payload: dict = {}
    if frontmatter is not None:
        try:
            payload = tomllib.loads(frontmatter)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigurationError(f"config.md: invalid TOML frontmatter: {exc}") from exc
    if body:
        payload["instructions"] = body
    else:
        payload.pop("instructions", None)
    try:
        return BotConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"config.md: {exc}") from exc


def load_bot_config(bot: str, *, path: Path | None = None) -> BotConfig:
    """Load the config for a bot, falling back to defaults when absent."""
    config_path = path or paths.bot_config_path(bot)
    if not config_path.exists():
        return BotConfig()
    try:
        contents = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"could not read {config_path}: {exc}") from exc
    try:
        return parse_config_md(contents)
    except ConfigurationError as exc:
        raise ConfigurationError(
            f"{config_path}: {exc}",
            recovery_hint=exc.recovery_hint or f"fix or remove {config_path}",
        ) from exc


def with_overrides(
    config: BotConfig,
    *,
    prompt: str | None = None,
    max_sessions: int | None = None,
    model: str | None = None,
    sleep_secs: int | None = None,
    skip_git_check: bool = False,
    worktree: bool | None = None,
) -> BotConfig:
    """Apply CLI overrides on top of a loaded config.

    Example:
        >>> with_overrides(BotConfig(), max_sessions=1, sleep_secs=0).max_sessions
        1
    """
    updates: dict[str, object] = {}
    if prompt is not None:
        updates["instructions"] = prompt
    if max_sessions is not None:
        updates["max_sessions"] = max_sessions
    if model is not None:
        updates["model"] = model
    if sleep_secs is not None:
        updates["sleep_secs"] = sleep_secs
    if skip_git_check:
        updates["skip_git_check"] = True
    if worktree is not None:
        updates["worktree"] = worktree
    if not updates:
        return config
    try:
        return BotConfig.model_validate({**config.model_dump(), **updates})
    except ValidationError as exc:
        raise ConfigurationError(f"invalid option: {exc}") from exc


def serialize_config_md(config: BotConfig) -> str:
    """Render a config back to ``config.md``, writing only non-default fields.

    Example:
        >>> print(serialize_config_md(BotConfig(sleep_secs=5, instructions="Go.")))
        +++
        sleep_secs = 5
        +++
        <BLANKLINE>
        Go.
        <BLANKLINE>
    """
    lines = [FRONTMATTER_DELIMITER]
    if config.description:
        lines.append(f"description = {json.dumps(config.description)}")
    if config.max_sessions != DEFAULT_MAX_SESSIONS:
        lines.append(f"max_sessions = {config.max_sessions}")
    if config.sleep_secs != DEFAULT_SLEEP_SECS:
        lines.append(f"sleep_secs = {config.sleep_secs}")
    if config.model:
        lines.append(f"model = {json.dumps(config.model)}")
    if config.sandbox != DEFAULT_SANDBOX:
        lines.append(f"sandbox = {json.dumps(config.sandbox)}")
    if config.skip_git_check:
        lines.append("skip_git_check = true")
    if not config.worktree:
        lines.append("worktree = false")
    lines.append(FRONTMATTER_DELIMITER)
    lines.append("")
    lines.append(config.instructions or DEFAULT_INSTRUCTIONS)
    return "\n".join(lines) + "\n"


def list_bots() -> list[str]:
    """Return bot names found under the bots directory, sorted."""
    root = paths.bots_root()
    if not root.is_dir():
        return []
    return sorted(entry.name for entry in root.iterdir() if entry.is_dir())


def ensure_bot_dirs(bot: str) -> Path:
    """Create the directory layout for a bot and return its directory."""
    bot_dir = paths.bot_dir(bot)
    paths.bot_skills_dir(bot).mkdir(parents=True, exist_ok=True)
    paths.bot_workspaces_dir(bot).mkdir(parents=True, exist_ok=True)
    paths.global_skills_dir().mkdir(parents=True, exist_ok=True)
    return bot_dir

"""Implementation for the ``openbot bots`` command."""

from __future__ import annotations

from .. import config, paths
from ..errors import ConfigurationError
from ..io import say
from ..models import BotConfig
from ..registry import slugify


def list_bots(args: object) -> None:
    """List bots, or create one when ``init`` names a new bot.

    Example:
        $ openbot bots --init docs
    """
    name = getattr(args, "init", None)
    if name:
        _init_bot(str(name))
        return
    names = config.list_bots()
    if not names:
        say("No bots found. Create one with `openbot bots --init <name>`.")
        return
    for bot in names:
        try:
            description = config.load_bot_config(bot).description
        except ConfigurationError as exc:
            description = f"(invalid config: {exc})"
        say(f"{bot}  {description}".rstrip())


def _init_bot(name: str) -> None:
    if slugify(name) != name:
        raise ConfigurationError(
            f"invalid bot name: {name}",
            recovery_hint="use lowercase letters, digits and dashes",
        )
    config_path = paths.bot_config_path(name)
    if config_path.exists():
        say(f"Bot {name} already exists: {config_path}")
        return
    config.ensure_bot_dirs(name)
    config_path.write_text(config.serialize_config_md(BotConfig()), encoding="utf-8")
    say(f"Created bot {name}: {config_path}")

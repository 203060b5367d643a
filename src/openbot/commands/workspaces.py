"""Implementation for the ``openbot workspaces`` command."""

from __future__ import annotations

from pathlib import Path

from .. import history, paths
from ..io import say
from ..registry import WorkspaceRegistry
from .resolve import require_bot


def list_workspaces(args: object) -> None:
    """List the projects a bot has run in, most recently used first.

    Example:
        $ openbot workspaces --bot docs
    """
    bot = require_bot(getattr(args, "bot"))
    entries = WorkspaceRegistry.for_bot(bot).entries()
    if not entries:
        say("No workspaces found.")
        return
    entries.sort(key=lambda item: item[1].last_used, reverse=True)
    rows = [("slug", "sessions", "last_used", "path")]
    for path, entry in entries:
        count = history.count_sessions(paths.history_dir(bot, entry.slug))
        location = path if Path(path).exists() else f"{path} (missing)"
        rows.append(
            (entry.slug, str(count), entry.last_used.strftime("%Y-%m-%d %H:%M"), location)
        )
    widths = [max(len(row[index]) for row in rows) for index in range(len(rows[0]))]
    for row in rows:
        say(
            "  ".join(
                value.ljust(widths[index]) for index, value in enumerate(row)
            ).rstrip()
        )

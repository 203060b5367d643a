"""Implementation for the ``openbot memory`` commands."""

from __future__ import annotations

from pathlib import Path

from ..errors import ConfigurationError
from ..io import confirm, say
from ..memory import MemoryStore
from .resolve import require_bot, resolve_existing_workspace


def _memory_path(args: object) -> Path:
    bot = require_bot(getattr(args, "bot"))
    return resolve_existing_workspace(bot, getattr(args, "workspace", None)).memory_path


def show_memory(args: object) -> None:
    """Print memory entries for a workspace."""
    store = MemoryStore.load(_memory_path(args))
    say(store.render().rstrip("\n"))


def set_memory(args: object) -> None:
    store = MemoryStore.load(_memory_path(args))
    key = str(getattr(args, "key")).strip()
    if not key:
        raise ConfigurationError("memory key must not be empty")
    store.set(key, str(getattr(args, "value")))
    store.save()
    say(f"Set {key}.")


def remove_memory(args: object) -> None:
    store = MemoryStore.load(_memory_path(args))
    key = str(getattr(args, "key")).strip()
    if store.remove(key) is None:
        say(f"No entry named {key}.")
        return
    store.save()
    say(f"Removed {key}.")


def clear_memory(args: object) -> None:
    """Remove every entry, asking first unless ``--yes`` was given.

    An unreadable memory file is replaced with an empty one.
    """
    path = _memory_path(args)
    try:
        store = MemoryStore.load(path)
        count = len(store.entries)
    except ConfigurationError:
        store = MemoryStore(path)
        count = None
    if count == 0:
        say("No memory entries.")
        return
    question = "Replace the unreadable memory file?" if count is None else (
        f"Remove {count} memory entries?"
    )
    if not getattr(args, "yes", False) and not confirm(question, default=False):
        say("Aborted.")
        return
    store.clear()
    store.save()
    say("Memory cleared.")

"""Persistent key/value memory the agent keeps for a project."""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from . import config
from .errors import ConfigurationError
from .models import MemoryDocument


class MemoryStore:
    """Load, mutate and save ``memory.json`` for one (bot, workspace).

    Example:
        >>> store = MemoryStore(Path("/tmp/unused.json"))
        >>> store.set("style", "tabs")
        >>> store.render()
        '  style = tabs\\n'
    """

    def __init__(self, path: Path, document: MemoryDocument | None = None) -> None:
        self.path = path
        self.document = document or MemoryDocument()

    @classmethod
    def load(cls, path: Path) -> MemoryStore:
        """Load memory from ``path``; a missing file yields an empty store.

        Raises:
            ConfigurationError: When the file exists but is not a memory document.
        """
        if not path.exists():
            return cls(path)
        payload = config.load_json(path)
        if payload is None:
            raise ConfigurationError(
                f"invalid memory file {path}",
                recovery_hint="fix the JSON or run `openbot memory clear`",
            )
        try:
            document = MemoryDocument.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid memory file {path}: {exc}") from exc
        return cls(path, document)

    @property
    def entries(self) -> dict[str, str]:
        return self.document.entries

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        config.write_json(self.path, self.document)

    def set(self, key: str, value: str) -> None:
        self.document.entries[key] = value

    def remove(self, key: str) -> str | None:
        return self.document.entries.pop(key, None)

    def clear(self) -> None:
        self.document.entries.clear()

    def render(self) -> str:
        """Render entries sorted by key, one ``key = value`` per line."""
        if not self.document.entries:
            return "No memory entries.\n"
        return "".join(
            f"  {key} = {value}\n" for key, value in sorted(self.document.entries.items())
        )


def format_memory_section(store: MemoryStore) -> str:
    """Render memory as a prompt section (empty when there are no entries)."""
    if not store.entries:
        return ""
    lines = ["## Memory", ""]
    for key, value in sorted(store.entries.items()):
        lines.append(f"- **{key}**: {value}")
    return "\n".join(lines) + "\n"

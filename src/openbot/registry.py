"""Workspace registry: stable short slugs for project paths.

Each bot keeps ``workspaces/registry.json`` mapping canonical project paths to
slugs. The slug names the directory holding that project's memory and history.
A project that was moved or renamed reclaims its old slug (and history) as
long as the old path no longer exists.
"""

from __future__ import annotations

import datetime as dt
import re
from pathlib import Path

from pydantic import ValidationError

from . import config, log, paths
from .models import WorkspaceEntry, WorkspaceRegistryDocument

DEFAULT_SLUG = "project"
_INVALID_SLUG_CHARS = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUNS = re.compile(r"-{2,}")


def slugify(name: str) -> str:
    """Turn a directory name into a filesystem-safe slug.

    Example:
        >>> slugify("backend_api")
        'backend-api'
        >>> slugify("My  App!")
        'my-app'
        >>> slugify("___")
        'project'
    """
    lowered = name.lower()
    replaced = _INVALID_SLUG_CHARS.sub("-", lowered)
    collapsed = _HYPHEN_RUNS.sub("-", replaced).strip("-")
    return collapsed or DEFAULT_SLUG


def _now() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc).replace(microsecond=0)


class WorkspaceRegistry:
    """Registry of workspaces for one bot, persisted as JSON."""

    def __init__(self, path: Path, document: WorkspaceRegistryDocument | None = None) -> None:
        self.path = path
        self.document = document or WorkspaceRegistryDocument()

    @classmethod
    def for_bot(cls, bot: str) -> WorkspaceRegistry:
        return cls.load(paths.registry_path(bot))

    @classmethod
    def load(cls, path: Path) -> WorkspaceRegistry:
        """Load a registry, starting empty when missing or unreadable."""
        payload = config.load_json(path)
        if payload is None:
            return cls(path)
        try:
            document = WorkspaceRegistryDocument.model_validate(payload)
        except ValidationError as exc:
            log.warning(f"ignoring invalid workspace registry {path}: {exc}")
            return cls(path)
        return cls(path, document)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        config.write_json(self.path, self.document)

    def entries(self) -> list[tuple[str, WorkspaceEntry]]:
        """Return ``(path, entry)`` pairs ordered by slug."""
        return sorted(self.document.workspaces.items(), key=lambda item: item[1].slug)

    def find_by_slug(self, slug: str) -> tuple[str, WorkspaceEntry] | None:
        for path, entry in self.document.workspaces.items():
            if entry.slug == slug:
                return path, entry
        return None

    def find_by_path(self, path: Path) -> WorkspaceEntry | None:
        return self.document.workspaces.get(str(path.resolve()))

    def register(self, path: Path) -> str:
        """Return the slug for ``path``, registering it when new.

        Args:
            path: Project directory; canonicalized before lookup.

        Returns:
            The existing or newly assigned slug.
        """
        key = str(path.resolve())
        now = _now()
        workspaces = self.document.workspaces

        existing = workspaces.get(key)
        if existing is not None:
            existing.last_used = now
            self.save()
            return existing.slug

        base = slugify(Path(key).name)
        stale = [
            other
            for other, entry in workspaces.items()
            if entry.slug == base and not Path(other).exists()
        ]
        for other in stale:
            log.debug(f"workspace {other} no longer exists; {key} reclaims slug {base}")
            del workspaces[other]

        taken = {entry.slug for entry in workspaces.values()}
        slug = base
        counter = 2
        while slug in taken:
            slug = f"{base}-{counter}"
            counter += 1

        workspaces[key] = WorkspaceEntry(slug=slug, first_seen=now, last_used=now)
        self.save()
        return slug

"""Skill loading and prompt formatting.

Skills are markdown files, optionally starting with a ``---`` frontmatter
block (``name``, ``description``, ``source``, ``installed_at``). They are read
from the global skills directory and the bot's own skills directory and are
reloaded before every session so edits take effect without a restart.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from . import log, paths
from .models import SkillFrontmatter

FRONTMATTER_DELIMITER = "---"


@dataclass(frozen=True)
class Skill:
    name: str
    description: str
    body: str
    source_path: Path
    source: str | None = None
    installed_at: str | None = None


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def split_frontmatter(text: str) -> tuple[dict[str, str], str]:
    """Split a skill document into frontmatter fields and body.

    Missing or unclosed frontmatter yields no fields and the whole text as body.

    Example:
        >>> split_frontmatter("---\\nname: lint\\n---\\nRun ruff.")
        ({'name': 'lint'}, 'Run ruff.')
    """
    lines = text.splitlines()
    if not lines or lines[0].lstrip("\ufeff").strip() != FRONTMATTER_DELIMITER:
        return {}, text
    for idx in range(1, len(lines)):
        if lines[idx].strip() == FRONTMATTER_DELIMITER:
            fields: dict[str, str] = {}
            for raw in lines[1:idx]:
                if raw.startswith((" ", "\t")) or ":" not in raw:
                    continue
                key, value = raw.split(":", 1)
                key = key.strip()
                if key:
                    fields[key] = _strip_quotes(value.strip())
            body = "\n".join(lines[idx + 1 :]).lstrip()
            return fields, body
    return {}, text


def parse_skill_file(path: Path) -> Skill:
    """Parse one skill file, naming it after the file stem when unnamed.

    Raises:
        OSError: When the file cannot be read.
        ValidationError: When the frontmatter has invalid field values.
    """
    text = path.read_text(encoding="utf-8")
    fields, body = split_frontmatter(text)
    frontmatter = SkillFrontmatter.model_validate(fields)
    return Skill(
        name=frontmatter.name or path.stem,
        description=frontmatter.description or "",
        body=body.strip(),
        source_path=path,
        source=frontmatter.source,
        installed_at=frontmatter.installed_at,
    )


def skill_dirs(bot: str) -> list[Path]:
    """Return skill directories for a bot: global first, then bot-local."""
    return [paths.global_skills_dir(), paths.bot_skills_dir(bot)]


def load_skills(dirs: list[Path]) -> list[Skill]:
    """Load every ``*.md`` skill from ``dirs``; invalid files are skipped."""
    skills: list[Skill] = []
    for directory in dirs:
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.md")):
            try:
                skills.append(parse_skill_file(path))
            except (OSError, UnicodeDecodeError, ValidationError) as exc:
                log.warning(f"skipping skill file {path}: {exc}")
    return skills


def format_skills_section(skills: list[Skill]) -> str:
    """Render loaded skills as a prompt section (empty when none)."""
    if not skills:
        return ""
    out = ["## Available Skills", ""]
    for skill in skills:
        out.append(f"### {skill.name}")
        if skill.description:
            out.append(skill.description)
        if skill.body:
            out.append("")
            out.append(skill.body)
        out.append("")
    return "\n".join(out) + "\n"

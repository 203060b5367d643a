"""Prompt assembly for each autonomous session."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .memory import MemoryStore, format_memory_section
from .models import SessionRecord
from .skills import Skill, format_skills_section

HISTORY_DIGEST_CHARS = 200

STANDING_INSTRUCTIONS = """\
## Instructions
You are a fully autonomous agent. Do not ask for human input; make decisions and act.
Your goal is to ship working code: make changes, test them, and commit.

- Work through the task independently and make as much progress as you can
- When you are done, call the `session_complete` tool with a summary of what you accomplished
- You can call the `session_history` tool to browse previous sessions in detail. \
Use action='list' for an overview or action='view' with session_number to read the full \
transcript and commands (shows the end first; increase offset to page backward).
- Do not stop and ask for clarification; use your best judgment and keep moving
"""

SKILLS_SYSTEM_TEMPLATE = """\
## Skills System

Skills are reusable markdown workflows loaded into your prompt each session.
You currently have {{ skill_count }} skill(s) loaded (listed above under "Available Skills" if any).

**Creating skills:** Write a markdown file to `{{ skill_dir }}/` with frontmatter:
```
---
name: skill-name
description: What this skill does
---
Step-by-step instructions, examples, and guidelines here.
```
The skill will be loaded automatically in your next session.

**When to create a skill:** If you develop a reusable procedure, debugging technique,
or workflow pattern that would be useful across sessions, save it as a skill.
"""


def render_template(template: str, variables: Mapping[str, str]) -> str:
    """Render a template using a simple {{ key }} substitution.

    Example:
        >>> render_template("hi {{ name }}", {"name": "bot"})
        'hi bot'
    """
    rendered = template
    for key, value in variables.items():
        rendered = rendered.replace(f"{{{{ {key} }}}}", value)
    return rendered


def truncate(text: str, limit: int) -> str:
    """Cap ``text`` at ``limit`` characters.

    Example:
        >>> truncate("abcdef", 3)
        'abc'
    """
    if len(text) <= limit:
        return text
    return text[:limit]


@dataclass
class PromptContext:
    """Everything a session prompt is built from."""

    instructions: str
    session_number: int
    skills: list[Skill] = field(default_factory=list)
    memory: MemoryStore | None = None
    recent_history: list[SessionRecord] = field(default_factory=list)
    bot_skill_dir: Path | None = None
    project: str | None = None
    branch: str | None = None
    base_branch: str | None = None
    user_input: str | None = None


def _status_section(context: PromptContext) -> str:
    lines = ["## Status"]
    if context.project:
        lines.append(f"- Project: {context.project}")
    lines.append(f"- Session: {context.session_number}")
    if context.branch:
        base = context.base_branch or "HEAD"
        lines.extend(
            [
                f"- Branch: `{context.branch}` (based on `{base}`)",
                "- You are working in an isolated git worktree. Commit your changes on this branch.",
                "- When you call `session_complete`, choose an action for your commits:",
                f"- `merge`: your branch gets merged into `{base}`",
                "- `review`: leave the branch for the user to review",
                "- `discard`: drop the changes",
            ]
        )
    return "\n".join(lines) + "\n"


def _user_input_section(user_input: str) -> str:
    quoted = "\n".join(f"> {line}" for line in user_input.splitlines() or [""])
    return (
        "## User Input\n\n"
        "The user provided the following input. Address this directly in your response:\n\n"
        f"{quoted}\n"
    )


def _history_section(records: list[SessionRecord]) -> str:
    lines = ["### Recent History"]
    for record in records:
        summary = truncate(record.response_summary, HISTORY_DIGEST_CHARS)
        lines.append(f"- Session {record.session_number}: {summary}")
    return "\n".join(lines) + "\n"


def build_prompt(context: PromptContext) -> str:
    """Assemble the full prompt for one session."""
    sections = [context.instructions.rstrip() + "\n", _status_section(context)]

    skills_section = format_skills_section(context.skills)
    if skills_section:
        sections.append(skills_section)
    if context.memory is not None:
        memory_section = format_memory_section(context.memory)
        if memory_section:
            sections.append(memory_section)
    if context.user_input:
        sections.append(_user_input_section(context.user_input))
    if context.recent_history:
        sections.append(_history_section(context.recent_history))
    sections.append(STANDING_INSTRUCTIONS)
    sections.append(
        render_template(
            SKILLS_SYSTEM_TEMPLATE,
            {
                "skill_count": str(len(context.skills)),
                "skill_dir": str(context.bot_skill_dir or "skills"),
            },
        )
    )
    return "\n".join(sections)

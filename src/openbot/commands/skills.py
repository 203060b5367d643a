"""Implementation for the ``openbot skills`` command."""

from __future__ import annotations

from .. import skills
from ..io import say


def list_skills(args: object) -> None:
    """List the skills a bot would see in its next session.

    Example:
        $ openbot skills --bot docs
    """
    loaded = skills.load_skills(skills.skill_dirs(getattr(args, "bot")))
    if not loaded:
        say("No skills found.")
        return
    width = max(len(skill.name) for skill in loaded)
    for skill in loaded:
        say(f"{skill.name.ljust(width)}  {skill.description}".rstrip())

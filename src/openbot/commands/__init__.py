"""Command implementations exposed by the OpenBot CLI."""

from .bots import list_bots
from .history import list_sessions, show_session
from .memory import clear_memory, remove_memory, set_memory, show_memory
from .run import run_bot
from .skills import list_skills
from .workspaces import list_workspaces

__all__ = [
    "clear_memory",
    "list_bots",
    "list_sessions",
    "list_skills",
    "list_workspaces",
    "remove_memory",
    "run_bot",
    "set_memory",
    "show_memory",
    "show_session",
]

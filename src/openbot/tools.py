"""Dynamic tools the agent can call during a session.

Handlers are pure functions of their arguments and a ``ToolContext``; any
effect on the run (such as completing the session) is returned to the runner
as data rather than applied by the handler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from . import history
from .backend import ToolSpec
from .errors import EventLogIOError
from .models import COMPLETION_ACTION_VALUES

SESSION_COMPLETE = "session_complete"
SESSION_HISTORY = "session_history"
DEFAULT_COMPLETION_ACTION = "review"


@dataclass(frozen=True)
class CompletionSignal:
    """The agent declared the task finished.

    ``requested_action`` keeps what the agent asked for; ``action`` is the
    action that will be applied.
    """

    summary: str
    action: str
    requested_action: str | None = None

    @property
    def action_was_replaced(self) -> bool:
        return self.requested_action is not None and self.requested_action != self.action


@dataclass(frozen=True)
class ToolContext:
    history_dir: Path
    session_number: int


@dataclass(frozen=True)
class ToolOutcome:
    text: str
    effect: CompletionSignal | None = None
    success: bool = True


ToolHandler = Callable[[Mapping[str, Any], ToolContext], ToolOutcome]


@dataclass
class ToolRegistry:
    """Map tool names to specs and handlers."""

    _tools: dict[str, tuple[ToolSpec, ToolHandler]] = field(default_factory=dict)

    def register(self, spec: ToolSpec, handler: ToolHandler) -> None:
        if spec.name in self._tools:
            raise ValueError(f"tool already registered: {spec.name}")
        self._tools[spec.name] = (spec, handler)

    def specs(self) -> list[ToolSpec]:
        return [spec for spec, _ in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def dispatch(self, name: str, arguments: Mapping[str, Any], context: ToolContext) -> ToolOutcome:
        """Run a tool handler; unknown tools produce an error outcome.

        Example:
            >>> ToolRegistry().dispatch("nope", {}, ToolContext(Path("."), 1)).success
            False
        """
        entry = self._tools.get(name)
        if entry is None:
            return ToolOutcome(text=f"error: unknown tool `{name}`", success=False)
        _, handler = entry
        return handler(arguments, context)


SESSION_COMPLETE_SPEC = ToolSpec(
    name=SESSION_COMPLETE,
    description=(
        "Call when you have finished the task for this session. Provide a summary of "
        "what you accomplished and what should happen to the branch."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "summary": {"type": "string", "description": "What you accomplished."},
            "action": {
                "type": "string",
                "enum": list(COMPLETION_ACTION_VALUES),
                "description": "merge into the base branch, leave for review, or discard.",
            },
        },
        "required": ["summary", "action"],
        "additionalProperties": False,
    },
)

SESSION_HISTORY_SPEC = ToolSpec(
    name=SESSION_HISTORY,
    description=(
        "Browse previous sessions. action='list' gives an overview; action='view' with "
        "session_number shows a session's commands and response, ending at the most recent "
        "line. Increase offset to page backward."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["list", "view"]},
            "session_number": {"type": "integer", "minimum": 1},
            "offset": {"type": "integer", "minimum": 0},
            "limit": {"type": "integer", "minimum": 1},
            "section": {"type": "string", "enum": list(history.HISTORY_SECTION_VALUES)},
        },
        "required": ["action"],
        "additionalProperties": False,
    },
)


def normalize_action(value: object) -> tuple[str, str | None]:
    """Return ``(action, requested)``; unrecognized actions become ``review``.

    Example:
        >>> normalize_action(" Merge ")
        ('merge', 'merge')
        >>> normalize_action("ship-it")
        ('review', 'ship-it')
    """
    if not isinstance(value, str) or not value.strip():
        return DEFAULT_COMPLETION_ACTION, None
    requested = value.strip().lower()
    if requested in COMPLETION_ACTION_VALUES:
        return requested, requested
    return DEFAULT_COMPLETION_ACTION, requested


def handle_session_complete(arguments: Mapping[str, Any], context: ToolContext) -> ToolOutcome:
    summary = str(arguments.get("summary") or "").strip()
    action, requested = normalize_action(arguments.get("action"))
    signal = CompletionSignal(summary=summary, action=action, requested_action=requested)
    return ToolOutcome(
        text=f"Session marked complete (action: {action}). End your turn now.",
        effect=signal,
    )


def _int_argument(arguments: Mapping[str, Any], key: str, default: int | None) -> int | None:
    value = arguments.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"`{key}` must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{key}` must be an integer") from exc


def handle_session_history(arguments: Mapping[str, Any], context: ToolContext) -> ToolOutcome:
    action = str(arguments.get("action") or "list").strip().lower()
    try:
        if action == "list":
            records = history.list_sessions(context.history_dir)
            return ToolOutcome(text=history.format_session_list(records))
        if action != "view":
            return ToolOutcome(
                text=f"error: unknown action `{action}`; use 'list' or 'view'", success=False
            )
        session_number = _int_argument(arguments, "session_number", None)
        offset = _int_argument(arguments, "offset", 0) or 0
        limit = _int_argument(arguments, "limit", history.DEFAULT_PAGE_LIMIT)
    except ValueError as exc:
        return ToolOutcome(text=f"error: {exc}", success=False)

    if session_number is None:
        return ToolOutcome(text="error: `session_number` is required for view", success=False)
    section = str(arguments.get("section") or "all").strip().lower()
    if section not in history.HISTORY_SECTION_VALUES:
        return ToolOutcome(
            text=f"error: unknown section `{section}`; use response, commands or all",
            success=False,
        )
    record = history.find_by_number(context.history_dir, session_number)
    if record is None:
        return ToolOutcome(text=f"error: no session #{session_number}", success=False)
    try:
        events = history.load_events(context.history_dir, record.session_id)
    except EventLogIOError as exc:
        return ToolOutcome(text=f"error: {exc}", success=False)
    lines = history.session_content_lines(record, events, section)  # type: ignore[arg-type]
    page = history.paginate_lines(lines, offset, limit or history.DEFAULT_PAGE_LIMIT)
    return ToolOutcome(text=page.render())


def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(SESSION_COMPLETE_SPEC, handle_session_complete)
    registry.register(SESSION_HISTORY_SPEC, handle_session_history)
    return registry

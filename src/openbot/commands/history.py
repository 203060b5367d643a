"""Implementation for the ``openbot sessions`` commands."""

from __future__ import annotations

from .. import history
from ..errors import ConfigurationError, SessionLookupError
from ..io import say
from .resolve import require_bot, resolve_existing_workspace


def list_sessions(args: object) -> None:
    """List recorded sessions for a workspace.

    Args:
        args: CLI argument object with ``bot``, ``workspace`` and ``format``.

    Example:
        $ openbot sessions list --bot docs
    """
    bot = require_bot(getattr(args, "bot"))
    target = resolve_existing_workspace(bot, getattr(args, "workspace", None))
    records = history.list_sessions(target.history_dir)
    output_format = str(getattr(args, "format", "table")).strip().lower()
    if output_format not in ("table", "json"):
        raise ConfigurationError(
            f"unknown format: {output_format}", recovery_hint="use table or json"
        )
    if output_format == "json":
        say(history.history_json(records))
        return
    if not records:
        say("No sessions recorded.")
        return
    say(history.format_session_list(records))


def show_session(args: object) -> None:
    """Print one page of a session's content, newest lines last.

    Example:
        $ openbot sessions show 3 --section commands --offset 50
    """
    bot = require_bot(getattr(args, "bot"))
    target = resolve_existing_workspace(bot, getattr(args, "workspace", None))
    section = str(getattr(args, "section", "all")).strip().lower()
    if section not in history.HISTORY_SECTION_VALUES:
        raise ConfigurationError(
            f"unknown section: {section}", recovery_hint="use response, commands or all"
        )
    number = int(getattr(args, "number"))
    record = history.find_by_number(target.history_dir, number)
    if record is None:
        raise SessionLookupError(f"no session #{number} in workspace {target.slug}")
    events = history.load_events(target.history_dir, record.session_id)
    lines = history.session_content_lines(record, events, section)  # type: ignore[arg-type]
    page = history.paginate_lines(
        lines,
        int(getattr(args, "offset", 0)),
        int(getattr(args, "limit", history.DEFAULT_PAGE_LIMIT)),
    )
    say(page.render())

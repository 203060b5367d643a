"""Terminal output surfaces for a run.

The runner only hands text to a surface; it never waits on one. The plain
surface prints each line as soon as it is complete. The interactive surface
queues styled lines and flushes them above a one-line footer (status plus the
input being typed) on each render tick.
"""

from __future__ import annotations

import sys
from typing import IO

from rich.console import Console
from rich.control import Control
from rich.segment import ControlType
from rich.text import Text

from . import log

AGENT_PREFIX = "· "
COMMAND_PREFIX = "  $ "
INPUT_PREFIX = "› "


def styled_header(text: str) -> Text:
    return Text(text, style="bold")


def styled_agent(text: str) -> Text:
    line = Text(AGENT_PREFIX, style="bright_black")
    line.append(text)
    return line


def styled_command(command: str) -> Text:
    line = Text(COMMAND_PREFIX, style="dim cyan")
    line.append(command)
    return line


def styled_command_exit(code: int) -> Text:
    return Text(f"  exit code {code}", style="red")


def styled_status(text: str) -> Text:
    """Dim bracketed status such as ``[queued: ...]``.

    Example:
        >>> styled_status("interrupting...").plain
        '  [interrupting...]'
    """
    return Text(f"  [{text}]", style="bright_black")


def styled_user_input(text: str) -> Text:
    line = Text(INPUT_PREFIX, style="bold cyan")
    line.append(text)
    return line


def styled_detail(key: str, value: str) -> Text:
    """A ``key: value`` detail line with an aligned, dim key.

    Example:
        >>> styled_detail("Bot:", "docs").plain
        '  Bot:       docs'
    """
    line = Text(f"  {key:<10}", style="bright_black")
    line.append(value)
    return line


class TerminalSurface:
    """Shared line building; subclasses decide when lines reach the terminal."""

    interactive = False

    def __init__(self) -> None:
        self._partial = ""

    def emit(self, line: Text) -> None:
        raise NotImplementedError

    def header(self, text: str) -> None:
        self.emit(styled_header(text))

    def blank(self) -> None:
        self.emit(Text(""))

    def agent_delta(self, text: str) -> None:
        """Accumulate streamed agent text, emitting each completed line."""
        buffered = self._partial + text
        *complete, self._partial = buffered.split("\n")
        for line in complete:
            self.emit(styled_agent(line))

    def flush_partial(self) -> None:
        if self._partial:
            line, self._partial = self._partial, ""
            self.emit(styled_agent(line))

    def command(self, command: str) -> None:
        self.flush_partial()
        self.emit(styled_command(command))

    def command_exit(self, code: int) -> None:
        self.emit(styled_command_exit(code))

    def status(self, text: str) -> None:
        self.flush_partial()
        self.emit(styled_status(text))

    def user_input(self, text: str) -> None:
        self.flush_partial()
        self.emit(styled_user_input(text))

    def detail(self, key: str, value: str) -> None:
        self.emit(styled_detail(key, value))

    def set_status(self, text: str) -> None:
        """Update the footer status; no-op without a footer."""

    def set_input(self, text: str) -> None:
        """Update the footer input echo; no-op without a footer."""

    def render(self) -> None:
        """Redraw on a render tick; no-op for line-oriented output."""

    def close(self) -> None:
        self.flush_partial()


class PlainSurface(TerminalSurface):
    """Unstyled line output for pipes, files and dumb terminals."""

    def __init__(self, file: IO[str] | None = None) -> None:
        super().__init__()
        self.console = Console(
            file=file or sys.stdout,
            no_color=True,
            highlight=False,
            soft_wrap=True,
            emoji=False,
        )

    def emit(self, line: Text) -> None:
        self.console.print(line.plain, markup=False)


class InteractiveSurface(TerminalSurface):
    """Styled output with a footer holding the status and the input line."""

    interactive = True

    def __init__(self, console: Console | None = None) -> None:
        super().__init__()
        self.console = console or log.console(stderr=True)
        self._pending: list[Text] = []
        self._status = ""
        self._input = ""
        self._dirty = False
        self._footer_drawn = False

    def emit(self, line: Text) -> None:
        self._pending.append(line)
        self._dirty = True

    def set_status(self, text: str) -> None:
        if text != self._status:
            self._status = text
            self._dirty = True

    def set_input(self, text: str) -> None:
        if text != self._input:
            self._input = text
            self._dirty = True

    def _footer(self) -> Text:
        footer = Text(f" {self._status} ", style="white on grey23")
        footer.append(" ")
        footer.append(INPUT_PREFIX, style="bold cyan")
        footer.append(self._input)
        return footer

    def _clear_footer(self) -> None:
        if self._footer_drawn:
            self.console.control(
                Control((ControlType.CARRIAGE_RETURN,), (ControlType.ERASE_IN_LINE, 2))
            )
            self._footer_drawn = False

    def render(self) -> None:
        if not self._dirty:
            return
        self._dirty = False
        pending, self._pending = self._pending, []
        if not pending and not self._footer_drawn and not self._status and not self._input:
            return
        self._clear_footer()
        for line in pending:
            self.console.print(line, markup=False)
        self.console.print(self._footer(), end="", markup=False)
        self._footer_drawn = True

    def close(self) -> None:
        super().close()
        self._dirty = True
        self._status = ""
        self._input = ""
        self.render()
        self._clear_footer()

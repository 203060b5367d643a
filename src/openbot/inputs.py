"""Input sources the runner listens to while a run is in progress.

``KeyboardInput`` reads keystrokes from a terminal, ``LineInput`` reads whole
lines from a pipe or file, and ``NoInput`` never produces anything.
"""

from __future__ import annotations

import asyncio
import os
import stat
import sys
import termios
import tty
from dataclasses import dataclass
from typing import IO, Protocol, Union

from .terminal import TerminalSurface

ESC = "\x1b"
CTRL_C = "\x03"
_BACKSPACE = {"\x7f", "\b"}
_SUBMIT = {"\r", "\n"}


@dataclass(frozen=True)
class LineSubmitted:
    text: str


@dataclass(frozen=True)
class EscapePressed:
    pass


@dataclass(frozen=True)
class InterruptPressed:
    pass


@dataclass(frozen=True)
class EndOfInput:
    pass


InputEvent = Union[LineSubmitted, EscapePressed, InterruptPressed, EndOfInput]


class InputSource(Protocol):
    interactive: bool

    async def start(self) -> None: ...

    async def next_event(self) -> InputEvent: ...

    def close(self) -> None: ...


async def _wait_forever() -> InputEvent:
    await asyncio.get_running_loop().create_future()
    raise AssertionError("unreachable")


class NoInput:
    """An input source that never fires (``--no-input`` or ``/dev/null``)."""

    interactive = False

    async def start(self) -> None:
        return None

    async def next_event(self) -> InputEvent:
        return await _wait_forever()

    def close(self) -> None:
        return None


class LineInput:
    """Read newline-terminated input from a non-terminal stdin.

    Pipes and sockets are read through an asyncio stream; regular files are
    read in a worker thread. End of input is reported once.
    """

    interactive = False

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream or sys.stdin
        self._reader: asyncio.StreamReader | None = None
        self._transport: asyncio.BaseTransport | None = None
        self._eof = False

    async def start(self) -> None:
        try:
            mode = os.fstat(self.stream.fileno()).st_mode
        except (OSError, ValueError, AttributeError):
            return
        if not (stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode)):
            return
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        self._transport, _ = await loop.connect_read_pipe(lambda: protocol, self.stream)
        self._reader = reader

    async def _readline(self) -> str:
        if self._reader is not None:
            data = await self._reader.readline()
            return data.decode("utf-8", errors="replace")
        return await asyncio.to_thread(self.stream.readline)

    async def next_event(self) -> InputEvent:
        if self._eof:
            return await _wait_forever()
        line = await self._readline()
        if not line:
            self._eof = True
            return EndOfInput()
        return LineSubmitted(text=line.rstrip("\r\n"))

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None


class LineEditor:
    """Turn raw keystrokes into input events, keeping the line being typed.

    Example:
        >>> editor = LineEditor()
        >>> editor.feed("hx\\x7fi\\r")
        [LineSubmitted(text='hi')]
        >>> editor.feed("\\x1b")
        [EscapePressed()]
    """

    def __init__(self) -> None:
        self.buffer = ""

    def feed(self, data: str) -> list[InputEvent]:
        events: list[InputEvent] = []
        idx = 0
        while idx < len(data):
            char = data[idx]
            idx += 1
            if char == ESC:
                if idx < len(data) and data[idx] in "[O":
                    # Skip a CSI/SS3 sequence such as an arrow key.
                    idx += 1
                    while idx < len(data) and not ("@" <= data[idx] <= "~"):
                        idx += 1
                    idx += 1
                    continue
                events.append(EscapePressed())
            elif char == CTRL_C:
                events.append(InterruptPressed())
            elif char in _SUBMIT:
                text, self.buffer = self.buffer, ""
                events.append(LineSubmitted(text=text))
            elif char in _BACKSPACE:
                self.buffer = self.buffer[:-1]
            elif char == "\x15":
                self.buffer = ""
            elif char.isprintable():
                self.buffer += char
        return events


class KeyboardInput:
    """Read keystrokes from a terminal in cbreak mode via the event loop."""

    interactive = True

    def __init__(self, surface: TerminalSurface, stream: IO[str] | None = None) -> None:
        self.surface = surface
        self.stream = stream or sys.stdin
        self.editor = LineEditor()
        self._queue: asyncio.Queue[InputEvent] = asyncio.Queue()
        self._fd: int | None = None
        self._saved: list | None = None

    async def start(self) -> None:
        fd = self.stream.fileno()
        self._saved = termios.tcgetattr(fd)
        tty.setcbreak(fd)
        self._fd = fd
        asyncio.get_running_loop().add_reader(fd, self._on_readable)

    def _on_readable(self) -> None:
        assert self._fd is not None
        try:
            data = os.read(self._fd, 1024)
        except OSError:
            data = b""
        if not data:
            self._queue.put_nowait(EndOfInput())
            asyncio.get_running_loop().remove_reader(self._fd)
            return
        for event in self.editor.feed(data.decode("utf-8", errors="ignore")):
            self._queue.put_nowait(event)
        self.surface.set_input(self.editor.buffer)

    async def next_event(self) -> InputEvent:
        return await self._queue.get()

    def close(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            asyncio.get_running_loop().remove_reader(fd)
        except RuntimeError:
            pass
        if self._saved is not None:
            termios.tcsetattr(fd, termios.TCSADRAIN, self._saved)


def is_null_device(stream: IO[str]) -> bool:
    """Return ``True`` for a non-terminal character device such as ``/dev/null``."""
    try:
        mode = os.fstat(stream.fileno()).st_mode
    except (OSError, ValueError, AttributeError):
        return False
    return stat.S_ISCHR(mode) and not stream.isatty()


def select_input(surface: TerminalSurface, *, no_input: bool = False) -> InputSource:
    """Pick the input source matching the current stdin."""
    if no_input or is_null_device(sys.stdin):
        return NoInput()
    if sys.stdin.isatty() and surface.interactive:
        return KeyboardInput(surface)
    return LineInput()

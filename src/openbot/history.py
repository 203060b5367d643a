"""Per-session history: metadata plus an append-only event stream.

Each session is stored as ``history/<session_id>/`` containing
``metadata.json`` (a pretty-printed ``SessionRecord``) and ``events.jsonl``
(one ``SessionEvent`` per line). Legacy ``history/<session_id>.json`` files
from the single-file layout are still readable but never written.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import IO, Iterable, Literal

from pydantic import ValidationError

from . import paths
from .errors import EventLogIOError
from .models import (
    SESSION_EVENT_ADAPTER,
    CommandEntry,
    CommandEvent,
    MessageEvent,
    SessionEvent,
    SessionRecord,
)

HistorySection = Literal["all", "commands", "response"]
HISTORY_SECTION_VALUES = ("all", "commands", "response")
DEFAULT_PAGE_LIMIT = 50


def _dump_record(record: SessionRecord) -> str:
    return record.model_dump_json(indent=2) + "\n"


def _write_atomic(path: Path, text: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class SessionWriter:
    """Stream events for one session to disk as they happen.

    Example:
        >>> import datetime as dt, tempfile
        >>> record = SessionRecord(
        ...     session_id="s1",
        ...     session_number=1,
        ...     started_at=dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc),
        ... )
        >>> with tempfile.TemporaryDirectory() as tmp:
        ...     with SessionWriter.create(Path(tmp), record) as writer:
        ...         writer.append(MessageEvent(content="hi"))
        ...     [e.content for e in load_events(Path(tmp), "s1")]
        ['hi']
    """

    def __init__(self, session_dir: Path, stream: IO[str]) -> None:
        self.session_dir = session_dir
        self._stream: IO[str] | None = stream

    @classmethod
    def create(cls, history_dir: Path, record: SessionRecord) -> SessionWriter:
        """Create the session directory, write initial metadata, open the stream.

        Raises:
            EventLogIOError: When the directory already exists or cannot be written.
        """
        session_dir = history_dir / record.session_id
        try:
            history_dir.mkdir(parents=True, exist_ok=True)
            session_dir.mkdir()
            (session_dir / paths.METADATA_FILENAME).write_text(
                _dump_record(record), encoding="utf-8"
            )
            stream = (session_dir / paths.EVENTS_FILENAME).open("a", encoding="utf-8")
        except FileExistsError as exc:
            raise EventLogIOError(
                f"session directory already exists: {session_dir}",
                recovery_hint="session ids must be unique; start a new session",
            ) from exc
        except OSError as exc:
            raise EventLogIOError(f"could not create session log {session_dir}: {exc}") from exc
        return cls(session_dir, stream)

    @property
    def closed(self) -> bool:
        return self._stream is None

    def append(self, event: SessionEvent) -> None:
        """Append one event and flush it to disk before returning."""
        if self._stream is None:
            raise EventLogIOError(f"session log is closed: {self.session_dir}")
        line = SESSION_EVENT_ADAPTER.dump_json(event).decode("utf-8")
        try:
            self._stream.write(line + "\n")
            self._stream.flush()
            os.fsync(self._stream.fileno())
        except OSError as exc:
            raise EventLogIOError(f"could not append event: {exc}") from exc

    def finalize(self, record: SessionRecord) -> None:
        """Replace ``metadata.json`` with the final record and close the stream."""
        try:
            _write_atomic(self.session_dir / paths.METADATA_FILENAME, _dump_record(record))
        except OSError as exc:
            raise EventLogIOError(f"could not write final metadata: {exc}") from exc
        finally:
            self.close()

    def close(self) -> None:
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        stream.close()

    def __enter__(self) -> SessionWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def _parse_record(path: Path) -> SessionRecord | None:
    try:
        return SessionRecord.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError, ValueError):
        return None


def load_session(history_dir: Path, session_id: str) -> SessionRecord:
    """Load one session record (directory layout first, then legacy file).

    Raises:
        EventLogIOError: When the record is missing or unreadable.
    """
    meta_path = history_dir / session_id / paths.METADATA_FILENAME
    path = meta_path if meta_path.exists() else history_dir / f"{session_id}.json"
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise EventLogIOError(f"could not read session {session_id}: {exc}") from exc
    try:
        return SessionRecord.model_validate_json(text)
    except ValidationError as exc:
        raise EventLogIOError(f"invalid session metadata in {path}: {exc}") from exc


def _record_paths(history_dir: Path) -> Iterable[Path]:
    if not history_dir.is_dir():
        return
    for entry in sorted(history_dir.iterdir()):
        if entry.is_dir():
            meta_path = entry / paths.METADATA_FILENAME
            if meta_path.is_file():
                yield meta_path
        elif entry.suffix == ".json" and not entry.name.startswith("."):
            yield entry


def list_sessions(history_dir: Path) -> list[SessionRecord]:
    """Return every readable session record sorted by session number."""
    records = [
        record
        for record in (_parse_record(path) for path in _record_paths(history_dir))
        if record is not None
    ]
    records.sort(key=lambda record: record.session_number)
    return records


def count_sessions(history_dir: Path) -> int:
    return len(list_sessions(history_dir))


def recent_sessions(history_dir: Path, n: int) -> list[SessionRecord]:
    """Return the ``n`` most recent records, oldest first."""
    if n <= 0:
        return []
    return list_sessions(history_dir)[-n:]


def find_by_number(history_dir: Path, session_number: int) -> SessionRecord | None:
    for record in list_sessions(history_dir):
        if record.session_number == session_number:
            return record
    return None


def next_session_number(history_dir: Path) -> int:
    """Return the number for the next session in this history.

    A session whose metadata was written at start but never finalized still
    occupies its number, so numbering stays gap-free after a crash.

    Example:
        >>> next_session_number(Path("/nonexistent/history"))
        1
    """
    records = list_sessions(history_dir)
    if not records:
        return 1
    return max(record.session_number for record in records) + 1


def load_events(history_dir: Path, session_id: str) -> list[SessionEvent]:
    """Load a session's events, skipping blank and malformed lines."""
    events_path = history_dir / session_id / paths.EVENTS_FILENAME
    if not events_path.exists():
        return []
    events: list[SessionEvent] = []
    try:
        with events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                try:
                    events.append(SESSION_EVENT_ADAPTER.validate_json(line))
                except ValidationError:
                    continue
    except OSError as exc:
        raise EventLogIOError(f"could not read events for {session_id}: {exc}") from exc
    return events


def reconstruct_response(events: Iterable[SessionEvent]) -> str:
    """Join all message contents in order."""
    return "".join(event.content for event in events if isinstance(event, MessageEvent))


def extract_commands(events: Iterable[SessionEvent]) -> list[CommandEntry]:
    return [
        CommandEntry(
            command=event.command,
            exit_code=event.exit_code,
            duration_ms=event.duration_ms,
        )
        for event in events
        if isinstance(event, CommandEvent)
    ]


def format_duration(seconds: int) -> str:
    """Format a duration as ``1h02m03s`` / ``2m05s`` / ``7s``.

    Example:
        >>> format_duration(3723)
        '1h02m03s'
        >>> format_duration(7)
        '7s'
    """
    hours, rest = divmod(max(seconds, 0), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def session_content_lines(
    record: SessionRecord,
    events: list[SessionEvent],
    section: HistorySection = "all",
) -> list[str]:
    """Render a session as ordered text lines for paging.

    The header is always present. ``## Commands`` and ``## Response`` follow
    according to ``section``.
    """
    lines = [
        f"# Session {record.session_number} ({record.session_id})",
        f"started: {record.started_at.isoformat()}",
        f"duration: {format_duration(record.duration_secs)}",
        f"model: {record.model or 'default'}",
        f"action: {record.action or 'none'}",
    ]
    if record.tokens is not None:
        tokens = record.tokens
        lines.append(
            f"tokens: {tokens.input_tokens} in ({tokens.cached_input_tokens} cached), "
            f"{tokens.output_tokens} out"
        )
    if record.prompt_summary:
        lines.append(f"prompt: {record.prompt_summary}")

    if section in ("all", "commands"):
        commands = extract_commands(events)
        if commands:
            lines.append("")
            lines.append("## Commands")
            for entry in commands:
                lines.append(
                    f"$ {entry.command}  [exit {entry.exit_code}, {entry.duration_ms}ms]"
                )

    if section in ("all", "response"):
        response = reconstruct_response(events) or record.response_summary
        if response:
            lines.append("")
            lines.append("## Response")
            lines.extend(response.splitlines())
    return lines


@dataclass(frozen=True)
class Page:
    """A window of lines selected backward from the end of a document."""

    lines: list[str]
    start: int
    end: int
    total: int

    @property
    def has_older(self) -> bool:
        return self.start > 0

    def render(self) -> str:
        header = f"[lines {self.start + 1}-{self.end} of {self.total}]"
        if self.end <= self.start:
            header = f"[no lines in range; {self.total} total]"
        body = "\n".join(self.lines)
        if self.has_older:
            footer = f"[{self.start} earlier line(s); increase offset to see more]"
            return f"{header}\n{body}\n{footer}" if body else f"{header}\n{footer}"
        return f"{header}\n{body}" if body else header


def paginate_lines(lines: list[str], offset: int = 0, limit: int = DEFAULT_PAGE_LIMIT) -> Page:
    """Select ``limit`` lines ending ``offset`` lines before the end.

    Example:
        >>> paginate_lines([str(i) for i in range(10)], offset=2, limit=3).lines
        ['5', '6', '7']
        >>> paginate_lines(["a", "b"], offset=0, limit=5).lines
        ['a', 'b']
    """
    total = len(lines)
    offset = max(offset, 0)
    limit = max(limit, 0)
    end = max(0, total - offset)
    start = max(0, total - offset - limit)
    return Page(lines=lines[start:end], start=start, end=end, total=total)


def format_session_list(records: list[SessionRecord]) -> str:
    """Render a compact one-line-per-session listing for the agent."""
    if not records:
        return "No previous sessions."
    rows = []
    for record in records:
        summary = record.response_summary.replace("\n", " ").strip()
        if len(summary) > 120:
            summary = summary[:117] + "..."
        rows.append(
            f"#{record.session_number} {record.started_at:%Y-%m-%d %H:%M} "
            f"{format_duration(record.duration_secs)} "
            f"[{record.action or 'none'}] {summary}".rstrip()
        )
    return "\n".join(rows)


def history_json(records: list[SessionRecord]) -> str:
    return json.dumps([record.model_dump(mode="json") for record in records], indent=2)

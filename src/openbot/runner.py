"""The session loop: run the agent session after session until it is done.

Each session builds a fresh prompt, starts a backend session and streams its
events while also listening to the input source, the interrupt signal and a
render tick. Between sessions the runner sleeps until the timer fires, the
user types something, or shutdown is requested.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import signal
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from . import history, log, skills
from .backend import (
    AgentBackend,
    AgentSession,
    ApprovalRequest,
    BackendEvent,
    BackendFailure,
    CommandBegin,
    CommandEnd,
    MessageDelta,
    ShutdownComplete,
    TokenCount,
    ToolCallRequest,
    TurnAborted,
    TurnComplete,
)
from .errors import BackendError, ConfigurationError, EventLogIOError, SessionLookupError
from .history import SessionWriter
from .inputs import (
    EndOfInput,
    EscapePressed,
    InputEvent,
    InputSource,
    InterruptPressed,
    LineSubmitted,
)
from .memory import MemoryStore
from .models import (
    BotConfig,
    CommandEntry,
    CommandEvent,
    MessageEvent,
    SessionEvent,
    SessionRecord,
    TokenCountEvent,
    TokenSnapshot,
)
from .prompting import PromptContext, build_prompt
from .terminal import TerminalSurface
from .tools import CompletionSignal, ToolContext, ToolRegistry, default_registry
from .workspace import BotWorkspace
from .worktrees import Worktree, merge_worktree_branch

RENDER_TICK_SECONDS = 0.033
SHUTDOWN_TIMEOUT_SECONDS = 5.0
INTERRUPT_GRACE_SECONDS = 10.0
RECENT_HISTORY_COUNT = 5
PROMPT_SUMMARY_CHARS = 100
RESPONSE_SUMMARY_CHARS = 500


class RunState(str, Enum):
    IDLE = "idle"
    BUILDING_PROMPT = "building_prompt"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERRORED = "errored"
    SHUTTING_DOWN = "shutting_down"
    DONE = "done"


class TurnEnd(str, Enum):
    FINISHED = "finished"
    ABORTED = "aborted"
    ERRORED = "errored"


def truncate_summary(text: str, limit: int) -> str:
    """Cap ``text`` at ``limit`` characters, marking the cut with ``...``.

    Example:
        >>> truncate_summary("abcdef", 3)
        'abc...'
        >>> truncate_summary("abc", 3)
        'abc'
    """
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass
class SessionOutcome:
    """What happened in one session, as reported to the user."""

    record: SessionRecord
    end: TurnEnd
    completion: CompletionSignal | None = None
    commands: list[CommandEntry] = field(default_factory=list)
    note: str | None = None

    @property
    def completed(self) -> bool:
        return self.completion is not None


@dataclass
class _SessionState:
    session: AgentSession
    number: int
    writer: SessionWriter | None
    transcript: list[str] = field(default_factory=list)
    commands: list[CommandEntry] = field(default_factory=list)
    running: dict[str, tuple[str, float]] = field(default_factory=dict)
    tokens: TokenSnapshot | None = None
    completion: CompletionSignal | None = None
    events_failed: bool = False


class Runner:
    """Drive sessions for one bot in one workspace."""

    def __init__(
        self,
        *,
        config: BotConfig,
        workspace: BotWorkspace,
        backend: AgentBackend,
        surface: TerminalSurface,
        input_source: InputSource,
        tools: ToolRegistry | None = None,
        worktree: Worktree | None = None,
        resume_id: str | None = None,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS,
        interrupt_grace: float = INTERRUPT_GRACE_SECONDS,
    ) -> None:
        self.config = config
        self.workspace = workspace
        self.backend = backend
        self.surface = surface
        self.input_source = input_source
        self.tools = tools or default_registry()
        self.worktree = worktree
        self.resume_id = resume_id
        self.shutdown_timeout = shutdown_timeout
        self.interrupt_grace = interrupt_grace
        self.state = RunState.IDLE
        self.pending_input: str | None = None
        self.outcomes: list[SessionOutcome] = []
        self._shutdown = asyncio.Event()
        self._input_task: asyncio.Task[InputEvent] | None = None
        self._last_session: AgentSession | None = None
        self._signal_installed = False

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_interrupt(self) -> None:
        """Abort the in-flight turn and stop the run.

        A second request while already shutting down has no effect.
        """
        if self._shutdown.is_set():
            return
        log.debug("interrupt requested")
        self.surface.status("interrupting...")
        self._shutdown.set()

    def _install_signal_handler(self) -> None:
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, self.request_interrupt)
        except (NotImplementedError, RuntimeError, ValueError):
            log.debug("SIGINT handler unavailable; Ctrl-C keeps its default behavior")
            return
        self._signal_installed = True

    def _remove_signal_handler(self) -> None:
        if self._signal_installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
            self._signal_installed = False

    async def run(self) -> list[SessionOutcome]:
        """Run sessions until completion, the session limit, or shutdown."""
        self._install_signal_handler()
        await self.input_source.start()
        limit = self.config.max_sessions
        iteration = 0
        try:
            while not self._shutdown.is_set():
                iteration += 1
                outcome = await self._run_session(iteration, limit)
                self.outcomes.append(outcome)
                self._report(outcome)
                if outcome.completed:
                    break
                if limit and iteration >= limit:
                    break
                if self._shutdown.is_set():
                    break
                if self.config.sleep_secs > 0:
                    await self._sleep(self.config.sleep_secs)
        finally:
            self.state = RunState.SHUTTING_DOWN
            await self._shutdown_backend()
            if self._input_task is not None:
                self._input_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._input_task
                self._input_task = None
            self.input_source.close()
            self._remove_signal_handler()
            self.surface.close()
            self.state = RunState.DONE
        return self.outcomes

    def _next_input(self) -> asyncio.Task[InputEvent]:
        if self._input_task is None:
            self._input_task = asyncio.create_task(self.input_source.next_event())
        return self._input_task

    def _take_input(self) -> InputEvent:
        assert self._input_task is not None
        event = self._input_task.result()
        self._input_task = None
        return event

    def _build_prompt(self, number: int) -> str:
        dirs = skills.skill_dirs(self.workspace.bot)
        loaded_skills = skills.load_skills(dirs)
        try:
            memory = MemoryStore.load(self.workspace.memory_path)
        except ConfigurationError as exc:
            log.warning(f"{exc}; continuing without memory")
            memory = None
        try:
            recent = history.recent_sessions(self.workspace.history_dir, RECENT_HISTORY_COUNT)
        except OSError as exc:
            log.warning(f"could not read session history: {exc}")
            recent = []
        user_input, self.pending_input = self.pending_input, None
        context = PromptContext(
            instructions=self.config.instructions,
            session_number=number,
            skills=loaded_skills,
            memory=memory,
            recent_history=recent,
            bot_skill_dir=dirs[-1],
            project=str(self.workspace.project_root),
            branch=self.worktree.branch if self.worktree else None,
            base_branch=self.worktree.base_branch if self.worktree else None,
            user_input=user_input,
        )
        return build_prompt(context)

    async def _start_backend_session(self) -> AgentSession:
        resume_id, self.resume_id = self.resume_id, None
        if resume_id:
            try:
                session = await self.backend.start_session(resume_id)
                self.surface.status(f"resumed session {resume_id}")
                return session
            except SessionLookupError as exc:
                log.warning(f"{exc}; starting a new session")
        return await self.backend.start_session(None)

    def _open_writer(self, record: SessionRecord) -> SessionWriter | None:
        try:
            return SessionWriter.create(self.workspace.history_dir, record)
        except EventLogIOError as exc:
            log.warning(f"{exc}; this session will not be recorded")
            return None

    def _log_event(self, state: _SessionState, event: SessionEvent) -> None:
        if state.writer is None or state.events_failed:
            return
        try:
            state.writer.append(event)
        except EventLogIOError as exc:
            log.warning(f"{exc}; further events of this session are not recorded")
            state.events_failed = True

    async def _run_session(self, iteration: int, limit: int) -> SessionOutcome:
        self.state = RunState.BUILDING_PROMPT
        number = history.next_session_number(self.workspace.history_dir)
        of_limit = f"/{limit}" if limit else ""
        self.surface.blank()
        self.surface.header(f"## Session {number} ({iteration}{of_limit})")
        self.surface.set_status(f"session {number}: starting")
        prompt = self._build_prompt(number)

        session = await self._start_backend_session()
        self._last_session = session
        started_at = dt.datetime.now(tz=dt.timezone.utc).replace(microsecond=0)
        started = time.monotonic()
        record = SessionRecord(
            session_id=session.session_id,
            session_number=number,
            started_at=started_at,
            model=session.model or self.config.model or "",
            prompt_summary=truncate_summary(prompt, PROMPT_SUMMARY_CHARS),
        )
        state = _SessionState(session=session, number=number, writer=self._open_writer(record))

        end = TurnEnd.ERRORED
        try:
            self.state = RunState.SUBMITTED
            await session.submit(prompt)
            self.state = RunState.STREAMING
            self.surface.set_status(f"session {number}: working")
            end = await self._stream(state)
        except BackendError as exc:
            log.error(str(exc))
        self.surface.flush_partial()

        if state.completion is not None:
            self.state = RunState.COMPLETED
        elif end is TurnEnd.ABORTED:
            self.state = RunState.ABORTED
        elif end is TurnEnd.ERRORED:
            self.state = RunState.ERRORED

        note = self._post_hook(state.completion) if state.completion is not None else None
        response = "".join(state.transcript)
        if state.completion is not None and state.completion.summary:
            response = response or state.completion.summary
        final = record.model_copy(
            update={
                "duration_secs": int(time.monotonic() - started),
                "response_summary": truncate_summary(response, RESPONSE_SUMMARY_CHARS),
                "action": note,
                "tokens": state.tokens,
                "command_count": len(state.commands),
            }
        )
        if state.writer is not None:
            try:
                state.writer.finalize(final)
            except EventLogIOError as exc:
                log.warning(str(exc))
        return SessionOutcome(
            record=final,
            end=end,
            completion=state.completion,
            commands=state.commands,
            note=note,
        )

    async def _stream(self, state: _SessionState) -> TurnEnd:
        session = state.session
        backend_task: asyncio.Task[BackendEvent] = asyncio.create_task(session.next_event())
        shutdown_task = asyncio.create_task(self._shutdown.wait())
        tick_task = self._tick_task()
        interrupt_deadline: float | None = None
        try:
            while True:
                waiting: set[asyncio.Task[Any]] = {backend_task, self._next_input()}
                if interrupt_deadline is None:
                    waiting.add(shutdown_task)
                if tick_task is not None:
                    waiting.add(tick_task)
                timeout = None
                if interrupt_deadline is not None:
                    timeout = max(0.0, interrupt_deadline - time.monotonic())
                done, _ = await asyncio.wait(
                    waiting, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    log.warning("backend did not acknowledge the interrupt; abandoning turn")
                    return TurnEnd.ABORTED

                if tick_task is not None and tick_task in done:
                    self.surface.render()
                    tick_task = self._tick_task()

                if interrupt_deadline is None and shutdown_task in done:
                    interrupt_deadline = time.monotonic() + self.interrupt_grace
                    await session.interrupt()

                if self._input_task is not None and self._input_task in done:
                    event = self._take_input()
                    if await self._handle_stream_input(session, event):
                        interrupt_deadline = interrupt_deadline or (
                            time.monotonic() + self.interrupt_grace
                        )

                if backend_task in done:
                    try:
                        event = backend_task.result()
                    except BackendError as exc:
                        log.error(str(exc))
                        return TurnEnd.ERRORED
                    end = await self._handle_event(state, event)
                    if end is not None:
                        return end
                    backend_task = asyncio.create_task(session.next_event())
        finally:
            for task in (backend_task, shutdown_task, tick_task):
                if task is not None and not task.done():
                    task.cancel()
            self.surface.render()

    def _tick_task(self) -> asyncio.Task[None] | None:
        if not self.surface.interactive:
            return None
        return asyncio.create_task(asyncio.sleep(RENDER_TICK_SECONDS))

    async def _handle_stream_input(self, session: AgentSession, event: InputEvent) -> bool:
        """Handle input during a turn; return ``True`` when the turn was interrupted."""
        if isinstance(event, LineSubmitted):
            text = event.text.strip()
            if not text:
                return False
            self.surface.user_input(text)
            if await session.steer(text):
                self.surface.status(f"steered: {text}")
            else:
                self.pending_input = text
                self.surface.status(f"queued: {text}")
            return False
        if isinstance(event, EscapePressed):
            self.surface.status("aborting turn...")
            await session.interrupt()
            return True
        if isinstance(event, InterruptPressed):
            self.request_interrupt()
            return False
        if isinstance(event, EndOfInput):
            log.debug("input closed; finishing the run")
            self.surface.status("input closed; stopping")
            self._shutdown.set()
        return False

    async def _handle_event(self, state: _SessionState, event: BackendEvent) -> TurnEnd | None:
        session = state.session
        if isinstance(event, MessageDelta):
            state.transcript.append(event.text)
            self.surface.agent_delta(event.text)
            self._log_event(state, MessageEvent(content=event.text))
        elif isinstance(event, CommandBegin):
            state.running[event.call_id] = (event.command, time.monotonic())
            self.surface.command(event.command)
        elif isinstance(event, CommandEnd):
            command, began = state.running.pop(event.call_id, ("", time.monotonic()))
            duration_ms = event.duration_ms or int((time.monotonic() - began) * 1000)
            entry = CommandEntry(
                command=command, exit_code=event.exit_code, duration_ms=duration_ms
            )
            state.commands.append(entry)
            self._log_event(state, CommandEvent(**entry.model_dump()))
            if event.exit_code != 0:
                self.surface.command_exit(event.exit_code)
        elif isinstance(event, ToolCallRequest):
            await self._handle_tool_call(state, event)
        elif isinstance(event, ApprovalRequest):
            await session.approve(event.request_id, True)
        elif isinstance(event, TokenCount):
            state.tokens = event.usage
            self._log_event(state, TokenCountEvent.from_snapshot(event.usage))
        elif isinstance(event, TurnComplete):
            return TurnEnd.FINISHED
        elif isinstance(event, TurnAborted):
            self.surface.status(f"turn aborted: {event.reason}")
            return TurnEnd.ABORTED
        elif isinstance(event, BackendFailure):
            log.error(f"backend error: {event.message}")
            return TurnEnd.ERRORED
        elif isinstance(event, ShutdownComplete):
            log.error("backend exited during the session")
            self._shutdown.set()
            return TurnEnd.ERRORED
        return None

    async def _handle_tool_call(self, state: _SessionState, event: ToolCallRequest) -> None:
        context = ToolContext(
            history_dir=self.workspace.history_dir, session_number=state.number
        )
        outcome = self.tools.dispatch(event.name, event.arguments, context)
        if outcome.effect is not None:
            signal_ = outcome.effect
            if signal_.action_was_replaced:
                log.warning(
                    f"unrecognized completion action {signal_.requested_action!r}; "
                    f"treating it as {signal_.action!r}"
                )
            state.completion = signal_
            self.surface.status(f"session complete ({signal_.action})")
        elif not outcome.success:
            log.debug(f"tool {event.name} failed: {outcome.text}")
        await state.session.respond_to_tool(event.call_id, outcome.text, success=outcome.success)

    def _post_hook(self, completion: CompletionSignal) -> str:
        worktree = self.worktree
        action = completion.action
        if action == "merge":
            if worktree is None:
                return "merge requested (no worktree; changes are in place)"
            result = merge_worktree_branch(worktree.repo_root, worktree)
            if result.merged:
                self.surface.status(f"merged {worktree.branch} into {worktree.base_branch}")
                return f"merged into {worktree.base_branch}"
            log.warning(result.detail)
            return f"merge failed; branch {worktree.branch} kept"
        if action == "discard":
            if worktree is None:
                return "discarded (no worktree)"
            return f"discarded (branch {worktree.branch} kept)"
        if worktree is None:
            return "review (no worktree; changes are in place)"
        self.surface.detail("Branch:", worktree.branch)
        self.surface.detail("Compare:", f"git diff {worktree.base_branch}...{worktree.branch}")
        self.surface.detail("Merge:", f"git merge {worktree.branch}")
        return f"review on {worktree.branch}"

    def _report(self, outcome: SessionOutcome) -> None:
        record = outcome.record
        self.surface.blank()
        self.surface.detail("Duration:", history.format_duration(record.duration_secs))
        if record.tokens is not None:
            self.surface.detail(
                "Tokens:",
                f"{record.tokens.input_tokens} in, {record.tokens.output_tokens} out",
            )
        if outcome.note:
            self.surface.detail("Worktree:", outcome.note)
        elif outcome.end is TurnEnd.ERRORED:
            self.surface.detail("Status:", "session ended with an error")
        elif outcome.end is TurnEnd.ABORTED:
            self.surface.detail("Status:", "turn aborted")
        self.surface.detail(
            "Resume:", f"openbot run --bot {self.workspace.bot} --resume {record.session_id}"
        )
        self.surface.render()

    async def _sleep(self, seconds: int) -> None:
        """Wait for the timer, user input or shutdown, whichever comes first."""
        self.state = RunState.IDLE
        self.surface.status(f"sleeping {seconds}s (type to wake and add input)")
        self.surface.set_status(f"sleeping {seconds}s")
        timer = asyncio.create_task(asyncio.sleep(seconds))
        shutdown_task = asyncio.create_task(self._shutdown.wait())
        tick_task = self._tick_task()
        try:
            while True:
                waiting: set[asyncio.Task[Any]] = {timer, shutdown_task, self._next_input()}
                if tick_task is not None:
                    waiting.add(tick_task)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if tick_task is not None and tick_task in done:
                    self.surface.render()
                    tick_task = self._tick_task()
                if shutdown_task in done or timer in done:
                    return
                if self._input_task is not None and self._input_task in done:
                    event = self._take_input()
                    if isinstance(event, LineSubmitted):
                        text = event.text.strip()
                        if text:
                            self.pending_input = text
                            self.surface.user_input(text)
                            self.surface.status("input queued for the next session")
                            return
                    elif isinstance(event, InterruptPressed):
                        self.request_interrupt()
                        return
                    elif isinstance(event, EscapePressed):
                        return
                    elif isinstance(event, EndOfInput):
                        self.surface.status("input closed; stopping")
                        self._shutdown.set()
                        return
        finally:
            for task in (timer, shutdown_task, tick_task):
                if task is not None and not task.done():
                    task.cancel()
            self.surface.render()

    async def _shutdown_backend(self) -> None:
        session = self._last_session
        if session is None:
            return
        try:
            await session.shutdown()
        except BackendError as exc:
            log.debug(f"shutdown request failed: {exc}")
            return

        async def _wait_for_ack() -> None:
            while True:
                event = await session.next_event()
                if isinstance(event, ShutdownComplete):
                    return

        try:
            await asyncio.wait_for(_wait_for_ack(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            log.debug("backend did not confirm shutdown in time")
        except BackendError as exc:
            log.debug(f"backend shutdown: {exc}")

"""Codex backend: drive ``codex app-server`` over JSON-RPC on stdio.

One app-server process is shared by every session of a run; each session is
a Codex thread. Wire notifications are translated into ``openbot.backend``
events and queued per thread.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import shutil
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from . import __version__, log
from .backend import (
    ApprovalRequest,
    BackendEvent,
    BackendFailure,
    CommandBegin,
    CommandEnd,
    MessageDelta,
    ShutdownComplete,
    TokenCount,
    ToolCallRequest,
    ToolSpec,
    TurnAborted,
    TurnComplete,
)
from .errors import BackendError, SessionLookupError
from .models import BotConfig, TokenSnapshot

CODEX_PATH_ENV = "OPENBOT_CODEX_PATH"
_STREAM_LIMIT = 16 * 1024 * 1024
_CLOSE_TIMEOUT_SECONDS = 5.0

_APPROVAL_METHODS = {
    "item/commandExecution/requestApproval": ("command", "accept", "decline"),
    "item/fileChange/requestApproval": ("file_change", "accept", "decline"),
    "execCommandApproval": ("command", "approved", "denied"),
    "applyPatchApproval": ("file_change", "approved", "denied"),
}
_TOOL_CALL_METHOD = "item/tool/call"


class CodexRpcError(BackendError):
    """The app-server answered a request with a JSON-RPC error."""

    def __init__(self, method: str, error: object) -> None:
        message = error.get("message") if isinstance(error, dict) else None
        super().__init__(f"{method} failed: {message or error}")
        self.method = method
        self.error = error


def codex_executable() -> str:
    """Return the Codex executable from ``OPENBOT_CODEX_PATH`` or ``PATH``.

    Raises:
        BackendError: When Codex cannot be found.
    """
    override = os.environ.get(CODEX_PATH_ENV, "").strip()
    if override:
        candidate = Path(override).expanduser()
        if candidate.is_file():
            return str(candidate)
        raise BackendError(
            f"codex executable not found at {candidate}",
            recovery_hint=f"fix {CODEX_PATH_ENV} or unset it to search PATH",
        )
    binary = shutil.which("codex")
    if binary is None:
        raise BackendError(
            "missing required command: codex",
            recovery_hint=f"install the Codex CLI or set {CODEX_PATH_ENV}",
        )
    return binary


def codex_sessions_root() -> Path:
    return Path.home() / ".codex" / "sessions"


def read_session_id(path: Path) -> str | None:
    """Read the session ID from the ``session_meta`` line of a Codex rollout.

    Example:
        >>> read_session_id(Path("missing.jsonl")) is None
        True
    """
    if path.suffix != ".jsonl":
        return None
    try:
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    return None
                if isinstance(data, dict) and data.get("type") == "session_meta":
                    payload = data.get("payload")
                    if isinstance(payload, dict):
                        session_id = payload.get("id")
                        if session_id:
                            return str(session_id)
                return None
    except OSError:
        return None
    return None


def _iter_rollouts(sessions_root: Path) -> Iterator[Path]:
    if not sessions_root.exists():
        return
    for path in sessions_root.rglob("*.jsonl"):
        if path.is_file():
            yield path


def find_rollout(session_id: str, *, sessions_root: Path | None = None) -> Path | None:
    """Find the newest rollout file recorded for ``session_id``.

    Rollout file names end with the session id, so a name match is tried
    before reading each file's ``session_meta`` header.
    """
    root = sessions_root or codex_sessions_root()
    matches: list[tuple[float, Path]] = []
    for path in _iter_rollouts(root):
        if session_id not in path.stem and read_session_id(path) != session_id:
            continue
        try:
            matches.append((path.stat().st_mtime, path))
        except OSError:
            continue
    if not matches:
        return None
    matches.sort(key=lambda item: item[0], reverse=True)
    return matches[0][1]


def _as_dict(value: object) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


def token_snapshot_from_wire(params: dict[str, Any]) -> TokenSnapshot | None:
    """Build a snapshot from a ``thread/tokenUsage/updated`` payload.

    Example:
        >>> token_snapshot_from_wire(
        ...     {"tokenUsage": {"total": {"inputTokens": 5, "outputTokens": 2}}}
        ... ).output_tokens
        2
    """
    usage = _as_dict(params.get("tokenUsage") or params.get("token_usage"))
    total = _as_dict(usage.get("total") or usage.get("totals"))
    if not total:
        return None
    window = usage.get("modelContextWindow", params.get("modelContextWindow"))
    return TokenSnapshot(
        input_tokens=_as_int(total.get("inputTokens")),
        cached_input_tokens=_as_int(total.get("cachedInputTokens")),
        output_tokens=_as_int(total.get("outputTokens")),
        reasoning_output_tokens=_as_int(total.get("reasoningOutputTokens")),
        context_window=_as_int(window) if window is not None else None,
    )


def _command_text(item: dict[str, Any]) -> str:
    command = item.get("command")
    if isinstance(command, list):
        return " ".join(str(part) for part in command)
    return str(command or "")


def map_notification(method: str, params: dict[str, Any]) -> BackendEvent | None:
    """Translate one app-server notification into a backend event.

    Returns ``None`` for notifications the runner does not consume.

    Example:
        >>> map_notification("item/agentMessage/delta", {"delta": "hi"})
        MessageDelta(text='hi')
        >>> map_notification("turn/started", {}) is None
        True
    """
    if method == "item/agentMessage/delta":
        delta = params.get("delta")
        return MessageDelta(text=str(delta)) if delta else None
    if method in ("item/started", "item/completed"):
        item = _as_dict(params.get("item"))
        if item.get("type") != "commandExecution":
            return None
        call_id = str(item.get("id") or "")
        if method == "item/started":
            return CommandBegin(call_id=call_id, command=_command_text(item))
        exit_code = item.get("exitCode")
        return CommandEnd(
            call_id=call_id,
            exit_code=_as_int(exit_code, -1) if exit_code is not None else -1,
            duration_ms=_as_int(item.get("durationMs")),
        )
    if method == "thread/tokenUsage/updated":
        snapshot = token_snapshot_from_wire(params)
        return TokenCount(usage=snapshot) if snapshot is not None else None
    if method == "turn/completed":
        turn = _as_dict(params.get("turn"))
        status = str(turn.get("status") or "completed")
        if status == "interrupted":
            return TurnAborted(reason="interrupted")
        if status == "failed":
            error = _as_dict(turn.get("error"))
            return BackendFailure(message=str(error.get("message") or "turn failed"))
        return TurnComplete()
    return None


def _thread_id(params: dict[str, Any]) -> str | None:
    value = params.get("threadId") or params.get("conversationId")
    if isinstance(value, str) and value:
        return value
    return None


class CodexSession:
    """One Codex thread inside a shared app-server process."""

    def __init__(self, backend: CodexAppServerBackend, thread_id: str, model: str) -> None:
        self.session_id = thread_id
        self.model = model
        self._backend = backend
        self._events: asyncio.Queue[BackendEvent] = asyncio.Queue()
        self._turn_id: str | None = None
        self._tool_requests: dict[str, object] = {}
        self._approval_requests: dict[str, tuple[object, str]] = {}

    def _push(self, event: BackendEvent) -> None:
        if isinstance(event, (TurnComplete, TurnAborted, BackendFailure)):
            self._turn_id = None
        self._events.put_nowait(event)

    def _handle_notification(self, method: str, params: dict[str, Any]) -> None:
        if method == "turn/started":
            turn_id = _as_dict(params.get("turn")).get("id")
            if isinstance(turn_id, str):
                self._turn_id = turn_id
            return
        if method == "error":
            error = _as_dict(params.get("error"))
            log.debug(f"codex error notification: {error.get('message') or params}")
            return
        event = map_notification(method, params)
        if event is not None:
            self._push(event)

    def _handle_request(self, rpc_id: object, method: str, params: dict[str, Any]) -> bool:
        if method == _TOOL_CALL_METHOD:
            call_id = str(params.get("callId") or rpc_id)
            self._tool_requests[call_id] = rpc_id
            arguments = params.get("arguments")
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError:
                    arguments = {}
            self._push(
                ToolCallRequest(
                    call_id=call_id,
                    name=str(params.get("tool") or ""),
                    arguments=_as_dict(arguments),
                )
            )
            return True
        approval = _APPROVAL_METHODS.get(method)
        if approval is not None:
            kind, _, _ = approval
            request_id = str(rpc_id)
            self._approval_requests[request_id] = (rpc_id, method)
            self._push(ApprovalRequest(request_id=request_id, kind=kind))
            return True
        return False

    async def submit(self, text: str) -> None:
        result = await self._backend.request(
            "turn/start",
            {"threadId": self.session_id, "input": [{"type": "text", "text": text}]},
        )
        turn_id = _as_dict(result.get("turn")).get("id")
        if isinstance(turn_id, str) and turn_id:
            self._turn_id = turn_id

    async def next_event(self) -> BackendEvent:
        return await self._events.get()

    async def respond_to_tool(self, call_id: str, text: str, *, success: bool = True) -> None:
        rpc_id = self._tool_requests.pop(call_id, None)
        if rpc_id is None:
            log.warning(f"no pending tool call {call_id}")
            return
        await self._backend.respond(
            rpc_id,
            {"contentItems": [{"type": "inputText", "text": text}], "success": success},
        )

    async def approve(self, request_id: str, approved: bool = True) -> None:
        pending = self._approval_requests.pop(request_id, None)
        if pending is None:
            return
        rpc_id, method = pending
        _, accept, decline = _APPROVAL_METHODS[method]
        await self._backend.respond(rpc_id, {"decision": accept if approved else decline})

    async def interrupt(self) -> None:
        if self._turn_id is None:
            return
        try:
            await self._backend.request(
                "turn/interrupt", {"threadId": self.session_id, "turnId": self._turn_id}
            )
        except BackendError as exc:
            log.warning(f"interrupt failed: {exc}")

    async def steer(self, text: str) -> bool:
        if self._turn_id is None:
            return False
        try:
            await self._backend.request(
                "turn/steer",
                {
                    "threadId": self.session_id,
                    "expectedTurnId": self._turn_id,
                    "input": [{"type": "text", "text": text}],
                },
            )
        except BackendError as exc:
            log.debug(f"steering rejected: {exc}")
            return False
        return True

    async def shutdown(self) -> None:
        await self._backend.begin_shutdown()


class CodexAppServerBackend:
    """Run ``codex app-server`` and create sessions (threads) on it."""

    def __init__(
        self,
        cwd: Path,
        config: BotConfig,
        tools: list[ToolSpec],
        *,
        executable: str | None = None,
        sessions_root: Path | None = None,
    ) -> None:
        self.cwd = cwd
        self.config = config
        self.tools = tools
        self._executable = executable
        self._sessions_root = sessions_root
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task[None] | None = None
        self._stderr_reader: asyncio.Task[None] | None = None
        self._pending: dict[int, tuple[str, asyncio.Future[dict[str, Any]]]] = {}
        self._sessions: dict[str, CodexSession] = {}
        self._next_id = 0
        self._closed = False

    async def _ensure_started(self) -> None:
        if self._process is not None:
            if self._closed:
                raise BackendError("codex app-server has exited")
            return
        executable = self._executable or codex_executable()
        try:
            self._process = await asyncio.create_subprocess_exec(
                executable,
                "app-server",
                cwd=str(self.cwd),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            raise BackendError(f"could not start codex app-server: {exc}") from exc
        self._reader = asyncio.create_task(self._read_stdout())
        self._stderr_reader = asyncio.create_task(self._read_stderr())
        await self.request(
            "initialize",
            {"clientInfo": {"name": "openbot", "title": "OpenBot", "version": __version__}},
        )
        await self._send({"method": "initialized", "params": {}})

    async def _send(self, message: dict[str, Any]) -> None:
        if self._process is None or self._process.stdin is None or self._closed:
            raise BackendError("codex app-server is not running")
        data = json.dumps(message, separators=(",", ":")) + "\n"
        try:
            self._process.stdin.write(data.encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise BackendError(f"codex app-server closed its input: {exc}") from exc

    async def request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Send a JSON-RPC request and wait for its result."""
        self._next_id += 1
        rpc_id = self._next_id
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[rpc_id] = (method, future)
        try:
            await self._send({"id": rpc_id, "method": method, "params": params})
            return await future
        finally:
            self._pending.pop(rpc_id, None)

    async def respond(self, rpc_id: object, result: dict[str, Any]) -> None:
        await self._send({"id": rpc_id, "result": result})

    async def _read_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        while True:
            line = await self._process.stderr.readline()
            if not line:
                return
            log.trace(f"codex: {line.decode('utf-8', errors='replace').rstrip()}")

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        try:
            while True:
                line = await self._process.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    log.debug(f"ignoring non-JSON output from codex: {text[:200]}")
                    continue
                if isinstance(message, dict):
                    await self._dispatch(message)
        finally:
            self._closed = True
            for _, future in self._pending.values():
                if not future.done():
                    future.set_exception(BackendError("codex app-server exited"))
            for session in self._sessions.values():
                session._push(ShutdownComplete())

    async def _dispatch(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        rpc_id = message.get("id")
        if not isinstance(method, str):
            pending = self._pending.get(rpc_id) if isinstance(rpc_id, int) else None
            if pending is None or pending[1].done():
                return
            request_method, future = pending
            if "error" in message:
                future.set_exception(CodexRpcError(request_method, message["error"]))
            else:
                future.set_result(_as_dict(message.get("result")))
            return
        params = _as_dict(message.get("params"))
        thread_id = _thread_id(params)
        session = self._sessions.get(thread_id) if thread_id else None
        if rpc_id is None:
            if session is not None:
                session._handle_notification(method, params)
            return
        if session is None or not session._handle_request(rpc_id, method, params):
            await self._send(
                {"id": rpc_id, "error": {"code": -32601, "message": f"unsupported: {method}"}}
            )

    def _thread_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "cwd": str(self.cwd),
            "approvalPolicy": "never",
            "sandbox": self.config.sandbox,
            "dynamicTools": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": tool.input_schema,
                }
                for tool in self.tools
            ],
        }
        if self.config.model:
            params["model"] = self.config.model
        return params

    async def start_session(self, resume_id: str | None = None) -> CodexSession:
        await self._ensure_started()
        if resume_id:
            if find_rollout(resume_id, sessions_root=self._sessions_root) is None:
                raise SessionLookupError(
                    f"no Codex rollout found for session {resume_id}",
                    recovery_hint="check `openbot sessions list` for valid session ids",
                )
            try:
                result = await self.request(
                    "thread/resume", {"threadId": resume_id, **self._thread_params()}
                )
            except CodexRpcError as exc:
                raise SessionLookupError(f"could not resume session {resume_id}: {exc}") from exc
        else:
            result = await self.request("thread/start", self._thread_params())
        thread = _as_dict(result.get("thread"))
        thread_id = thread.get("id")
        if not isinstance(thread_id, str) or not thread_id:
            raise BackendError("codex app-server did not return a thread id")
        model = str(result.get("model") or self.config.model or "")
        session = CodexSession(self, thread_id, model)
        self._sessions[thread_id] = session
        return session

    async def begin_shutdown(self) -> None:
        """Close the server's input; it exits and sessions see ``ShutdownComplete``."""
        if self._process is None or self._process.stdin is None:
            return
        if not self._process.stdin.is_closing():
            self._process.stdin.close()

    async def close(self) -> None:
        if self._process is None:
            return
        await self.begin_shutdown()
        try:
            await asyncio.wait_for(self._process.wait(), timeout=_CLOSE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            log.debug("codex app-server did not exit; terminating")
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
            await self._process.wait()
        for task in (self._reader, self._stderr_reader):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                log.debug(f"codex reader stopped with an error: {exc!r}")

import asyncio
import json
import stat
import sys
import textwrap
from pathlib import Path

import pytest

import openbot.codex as codex
from openbot.backend import (
    ApprovalRequest,
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
from openbot.errors import BackendError, SessionLookupError
from openbot.models import BotConfig

FAKE_APP_SERVER = textwrap.dedent(
    """
    import json
    import os
    import sys

    def send(message):
        sys.stdout.write(json.dumps(message) + "\\n")
        sys.stdout.flush()

    def notify(method, **params):
        send({"method": method, "params": {"threadId": "thr-1", **params}})

    def read():
        line = sys.stdin.readline()
        return json.loads(line) if line else None

    while True:
        message = read()
        if message is None:
            break
        method = message.get("method")
        rpc_id = message.get("id")
        if rpc_id is None:
            continue
        if method == "initialize":
            send({"id": rpc_id, "result": {}})
        elif method == "thread/start":
            with open(os.environ["FAKE_CODEX_PARAMS"], "w") as fh:
                json.dump(message["params"], fh)
            send({"id": rpc_id, "result": {"thread": {"id": "thr-1"}, "model": "fake-model"}})
        elif method == "thread/resume":
            send({"id": rpc_id, "error": {"code": -32600, "message": "no rollout"}})
        elif method == "turn/start":
            send({"id": rpc_id, "result": {"turn": {"id": "turn-1"}}})
            notify("turn/started", turn={"id": "turn-1"})
            notify("item/agentMessage/delta", delta="Hello")
            item = {"type": "commandExecution", "id": "c1", "command": "ls -la"}
            notify("item/started", item=item)
            notify("item/completed", item={**item, "exitCode": 2, "durationMs": 30})
            notify(
                "thread/tokenUsage/updated",
                tokenUsage={"total": {"inputTokens": 11, "outputTokens": 7}},
            )
            send(
                {
                    "id": 900,
                    "method": "item/commandExecution/requestApproval",
                    "params": {"threadId": "thr-1"},
                }
            )
            approval = read()
            send(
                {
                    "id": 901,
                    "method": "item/tool/call",
                    "params": {
                        "threadId": "thr-1",
                        "callId": "call-1",
                        "tool": "session_complete",
                        "arguments": {"summary": "done", "action": "merge"},
                    },
                }
            )
            reply = read()
            notify("item/agentMessage/delta", delta=json.dumps([approval, reply]))
            notify("turn/completed", turn={"id": "turn-1", "status": "completed"})
        else:
            send({"id": rpc_id, "error": {"code": -32601, "message": "unknown"}})
    """
)


def _write_fake_server(tmp_path: Path) -> str:
    script = tmp_path / "fake-codex"
    script.write_text(f"#!{sys.executable}\n{FAKE_APP_SERVER}", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


@pytest.mark.parametrize(
    ("method", "params", "expected"),
    [
        ("item/agentMessage/delta", {"delta": "hi"}, MessageDelta(text="hi")),
        ("item/agentMessage/delta", {"delta": ""}, None),
        (
            "item/started",
            {"item": {"type": "commandExecution", "id": "c1", "command": ["git", "status"]}},
            CommandBegin(call_id="c1", command="git status"),
        ),
        (
            "item/completed",
            {"item": {"type": "commandExecution", "id": "c1", "exitCode": 1, "durationMs": 5}},
            CommandEnd(call_id="c1", exit_code=1, duration_ms=5),
        ),
        (
            "item/completed",
            {"item": {"type": "commandExecution", "id": "c1"}},
            CommandEnd(call_id="c1", exit_code=-1, duration_ms=0),
        ),
        ("item/completed", {"item": {"type": "agentMessage", "id": "m1"}}, None),
        ("turn/completed", {"turn": {"status": "completed"}}, TurnComplete()),
        ("turn/completed", {"turn": {"status": "interrupted"}}, TurnAborted(reason="interrupted")),
        (
            "turn/completed",
            {"turn": {"status": "failed", "error": {"message": "rate limited"}}},
            BackendFailure(message="rate limited"),
        ),
        ("thread/started", {}, None),
    ],
)
def test_map_notification(method: str, params: dict, expected: object) -> None:
    assert codex.map_notification(method, params) == expected


def test_token_snapshot_from_wire() -> None:
    snapshot = codex.token_snapshot_from_wire(
        {
            "tokenUsage": {
                "total": {
                    "inputTokens": 100,
                    "cachedInputTokens": 40,
                    "outputTokens": 20,
                    "reasoningOutputTokens": 5,
                },
                "modelContextWindow": 200000,
            }
        }
    )
    assert snapshot is not None
    assert snapshot.total_tokens == 120
    assert snapshot.cached_input_tokens == 40
    assert snapshot.context_window == 200000
    assert codex.token_snapshot_from_wire({}) is None
    event = codex.map_notification("thread/tokenUsage/updated", {"tokenUsage": {"total": {}}})
    assert event is None


def test_codex_executable_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    binary = tmp_path / "codex"
    binary.write_text("", encoding="utf-8")
    monkeypatch.setenv(codex.CODEX_PATH_ENV, str(binary))
    assert codex.codex_executable() == str(binary)

    monkeypatch.setenv(codex.CODEX_PATH_ENV, str(tmp_path / "missing"))
    with pytest.raises(BackendError):
        codex.codex_executable()


def test_find_rollout_by_name_and_header(tmp_path: Path) -> None:
    day = tmp_path / "2026" / "01" / "02"
    day.mkdir(parents=True)
    named = day / "rollout-2026-01-02T10-00-00-abc123.jsonl"
    named.write_text("", encoding="utf-8")
    headed = day / "rollout-other.jsonl"
    headed.write_text(
        json.dumps({"type": "session_meta", "payload": {"id": "zzz999"}}) + "\n",
        encoding="utf-8",
    )

    assert codex.find_rollout("abc123", sessions_root=tmp_path) == named
    assert codex.find_rollout("zzz999", sessions_root=tmp_path) == headed
    assert codex.read_session_id(headed) == "zzz999"
    assert codex.find_rollout("nope", sessions_root=tmp_path) is None
    assert codex.find_rollout("abc123", sessions_root=tmp_path / "missing") is None


def test_app_server_session_round_trip(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    executable = _write_fake_server(tmp_path)
    params_path = tmp_path / "thread-params.json"
    monkeypatch.setenv("FAKE_CODEX_PARAMS", str(params_path))
    tools = [ToolSpec(name="session_complete", description="done", input_schema={"type": "object"})]
    config = BotConfig(model="o4-mini", sandbox="read-only")

    async def scenario() -> list[object]:
        backend = codex.CodexAppServerBackend(
            tmp_path, config, tools, executable=executable, sessions_root=tmp_path / "sessions"
        )
        seen: list[object] = []
        session = await backend.start_session()
        assert session.session_id == "thr-1"
        assert session.model == "fake-model"
        await session.submit("go")
        while True:
            event = await asyncio.wait_for(session.next_event(), timeout=10)
            seen.append(event)
            if isinstance(event, ApprovalRequest):
                await session.approve(event.request_id, True)
            elif isinstance(event, ToolCallRequest):
                await session.respond_to_tool(event.call_id, "ok", success=True)
            elif isinstance(event, TurnComplete):
                break
        assert await session.steer("late") is False
        await session.shutdown()
        seen.append(await asyncio.wait_for(session.next_event(), timeout=10))
        await backend.close()
        return seen

    events = asyncio.run(scenario())

    thread_params = json.loads(params_path.read_text(encoding="utf-8"))
    assert thread_params["approvalPolicy"] == "never"
    assert thread_params["sandbox"] == "read-only"
    assert thread_params["model"] == "o4-mini"
    assert thread_params["dynamicTools"][0]["name"] == "session_complete"

    assert events[0] == MessageDelta(text="Hello")
    assert events[1] == CommandBegin(call_id="c1", command="ls -la")
    assert events[2] == CommandEnd(call_id="c1", exit_code=2, duration_ms=30)
    assert isinstance(events[3], TokenCount) and events[3].usage.input_tokens == 11
    assert isinstance(events[4], ApprovalRequest) and events[4].kind == "command"
    assert events[5] == ToolCallRequest(
        call_id="call-1", name="session_complete", arguments={"summary": "done", "action": "merge"}
    )
    replies = json.loads(events[6].text)
    assert replies[0] == {"id": 900, "result": {"decision": "accept"}}
    assert replies[1] == {
        "id": 901,
        "result": {"contentItems": [{"type": "inputText", "text": "ok"}], "success": True},
    }
    assert events[7] == TurnComplete()
    assert events[8] == ShutdownComplete()


def test_resume_without_rollout_raises_lookup_error(tmp_path: Path) -> None:
    executable = _write_fake_server(tmp_path)

    async def scenario() -> None:
        backend = codex.CodexAppServerBackend(
            tmp_path,
            BotConfig(),
            [],
            executable=executable,
            sessions_root=tmp_path / "sessions",
        )
        try:
            with pytest.raises(SessionLookupError):
                await backend.start_session("does-not-exist")
        finally:
            await backend.close()

    asyncio.run(scenario())


def test_missing_executable_is_backend_error(tmp_path: Path) -> None:
    async def scenario() -> None:
        backend = codex.CodexAppServerBackend(
            tmp_path, BotConfig(), [], executable=str(tmp_path / "nope")
        )
        with pytest.raises(BackendError):
            await backend.start_session()

    asyncio.run(scenario())


class _ExitedProcess:
    stdin = None

    async def wait(self) -> int:
        return 0


def test_close_tolerates_failed_reader(tmp_path: Path) -> None:
    async def broken_reader() -> None:
        raise ValueError("malformed frame")

    async def scenario() -> None:
        backend = codex.CodexAppServerBackend(tmp_path, BotConfig(), [])
        backend._process = _ExitedProcess()  # type: ignore[assignment]
        backend._reader = asyncio.create_task(broken_reader())
        await asyncio.sleep(0)
        await backend.close()

    asyncio.run(scenario())

"""Agent backend boundary: typed events and the session protocol.

The runner talks to the agent only through ``AgentBackend`` and
``AgentSession``. Backends translate their wire format into the event types
defined here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from .models import TokenSnapshot


@dataclass(frozen=True)
class MessageDelta:
    text: str


@dataclass(frozen=True)
class CommandBegin:
    call_id: str
    command: str


@dataclass(frozen=True)
class CommandEnd:
    call_id: str
    exit_code: int
    duration_ms: int = 0


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ApprovalRequest:
    request_id: str
    kind: str = "command"


@dataclass(frozen=True)
class TokenCount:
    usage: TokenSnapshot


@dataclass(frozen=True)
class TurnComplete:
    last_message: str | None = None


@dataclass(frozen=True)
class TurnAborted:
    reason: str = "interrupted"


@dataclass(frozen=True)
class BackendFailure:
    """The backend reported an error; the current turn is over."""

    message: str


@dataclass(frozen=True)
class ShutdownComplete:
    pass


BackendEvent = Union[
    MessageDelta,
    CommandBegin,
    CommandEnd,
    ToolCallRequest,
    ApprovalRequest,
    TokenCount,
    TurnComplete,
    TurnAborted,
    BackendFailure,
    ShutdownComplete,
]

TURN_ENDING_EVENTS = (TurnComplete, TurnAborted, BackendFailure)


@dataclass(frozen=True)
class ToolSpec:
    """A dynamic tool advertised to the agent."""

    name: str
    description: str
    input_schema: dict[str, Any]


class AgentSession(Protocol):
    """One conversation with the agent."""

    session_id: str
    model: str

    async def submit(self, text: str) -> None:
        """Start a turn with ``text`` as the user input."""
        ...

    async def next_event(self) -> BackendEvent: ...

    async def respond_to_tool(self, call_id: str, text: str, *, success: bool = True) -> None: ...

    async def approve(self, request_id: str, approved: bool = True) -> None: ...

    async def interrupt(self) -> None:
        """Abort the in-flight turn; the backend answers with ``TurnAborted``."""
        ...

    async def steer(self, text: str) -> bool:
        """Inject ``text`` into the running turn.

        Returns:
            ``False`` when the backend rejects mid-turn input.
        """
        ...

    async def shutdown(self) -> None:
        """Request orderly shutdown; the backend answers with ``ShutdownComplete``."""
        ...


class AgentBackend(Protocol):
    """Factory for agent sessions sharing one backend process."""

    async def start_session(self, resume_id: str | None = None) -> AgentSession:
        """Start a fresh session, or reattach to ``resume_id``.

        Raises:
            SessionLookupError: When ``resume_id`` does not exist.
            BackendError: When the backend cannot start a session.
        """
        ...

    async def close(self) -> None: ...

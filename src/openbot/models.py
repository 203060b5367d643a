"""Pydantic models for OpenBot configuration and persisted documents."""

from __future__ import annotations

import datetime as dt
from typing import Annotated, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)

SANDBOX_VALUES = ("read-only", "workspace-write", "danger-full-access")
SandboxMode = Literal["read-only", "workspace-write", "danger-full-access"]

COMPLETION_ACTION_VALUES = ("merge", "review", "discard")
CompletionAction = Literal["merge", "review", "discard"]

DEFAULT_INSTRUCTIONS = (
    "You are an autonomous AI agent. Complete tasks thoroughly and report your progress."
)
DEFAULT_MAX_SESSIONS = 10
DEFAULT_SLEEP_SECS = 30
DEFAULT_SANDBOX: SandboxMode = "workspace-write"


class BotConfig(BaseModel):
    """Runtime configuration for a bot, loaded from ``config.md``.

    Attributes:
        description: Short description of the bot.
        instructions: Base instructions (the markdown body of ``config.md``).
        max_sessions: Session limit; ``0`` means unlimited.
        sleep_secs: Seconds to sleep between sessions; ``0`` disables sleep.
        model: Optional model override passed to the backend.
        sandbox: Sandbox policy requested from the backend.
        skip_git_check: Allow running outside a git repository.
        worktree: Run each bot invocation in an isolated worktree.

    Example:
        >>> BotConfig.model_validate({"max_iterations": 3}).max_sessions
        3
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    description: str = ""
    instructions: str = DEFAULT_INSTRUCTIONS
    max_sessions: int = Field(
        default=DEFAULT_MAX_SESSIONS,
        ge=0,
        validation_alias=AliasChoices("max_sessions", "max_iterations"),
    )
    sleep_secs: int = Field(default=DEFAULT_SLEEP_SECS, ge=0)
    model: str | None = None
    sandbox: SandboxMode = DEFAULT_SANDBOX
    skip_git_check: bool = False
    worktree: bool = True

    @field_validator("description", mode="before")
    @classmethod
    def normalize_description(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("model", mode="before")
    @classmethod
    def normalize_model(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip()
            return normalized or None
        return value

    @field_validator("sandbox", mode="before")
    @classmethod
    def normalize_sandbox(cls, value: object) -> object:
        if value is None:
            return DEFAULT_SANDBOX
        if isinstance(value, str):
            return value.strip().lower()
        return value


class TokenSnapshot(BaseModel):
    """Token usage captured at the end of a session."""

    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_output_tokens: int = 0
    context_window: int | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class CommandEntry(BaseModel):
    """A shell command the agent ran during a session."""

    command: str
    exit_code: int
    duration_ms: int = 0


class SessionRecord(BaseModel):
    """Session-level metadata stored as ``metadata.json``.

    The record is written with placeholder values when a session starts and
    rewritten in full when it ends.

    Attributes:
        session_id: Backend session identifier; also the directory name.
        session_number: Global 1-based number within the workspace.
        started_at: UTC start time.
        duration_secs: Wall-clock duration in seconds.
        model: Model used for the session (empty when the backend default).
        prompt_summary: Truncated prompt text.
        response_summary: Truncated agent response.
        action: What happened to the worktree changes, when known.
        tokens: Final token usage, when reported.
        command_count: Number of commands executed.

    Example:
        >>> record = SessionRecord(
        ...     session_id="abc",
        ...     session_number=1,
        ...     started_at=dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc),
        ... )
        >>> record.action is None
        True
    """

    model_config = ConfigDict(extra="ignore")

    session_id: str
    session_number: int = Field(ge=1)
    started_at: dt.datetime
    duration_secs: int = 0
    model: str = ""
    prompt_summary: str = ""
    response_summary: str = ""
    action: str | None = None
    tokens: TokenSnapshot | None = None
    command_count: int | None = None


class MessageEvent(BaseModel):
    type: Literal["message"] = "message"
    content: str


class CommandEvent(BaseModel):
    type: Literal["command"] = "command"
    command: str
    exit_code: int
    duration_ms: int = 0


class TokenCountEvent(BaseModel):
    type: Literal["token_count"] = "token_count"
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_output_tokens: int = 0
    context_window: int | None = None

    @classmethod
    def from_snapshot(cls, snapshot: TokenSnapshot) -> TokenCountEvent:
        return cls(**snapshot.model_dump())


SessionEvent = Annotated[
    Union[MessageEvent, CommandEvent, TokenCountEvent],
    Field(discriminator="type"),
]
SESSION_EVENT_ADAPTER: TypeAdapter[SessionEvent] = TypeAdapter(SessionEvent)


class WorkspaceEntry(BaseModel):
    """Registry entry for one canonical project path."""

    slug: str
    first_seen: dt.datetime
    last_used: dt.datetime


class WorkspaceRegistryDocument(BaseModel):
    """Per-bot mapping of canonical project paths to workspace entries.

    Example:
        >>> WorkspaceRegistryDocument().workspaces
        {}
    """

    model_config = ConfigDict(extra="ignore")

    workspaces: dict[str, WorkspaceEntry] = Field(default_factory=dict)


class MemoryDocument(BaseModel):
    """Key/value memory persisted for a (bot, workspace) pair."""

    model_config = ConfigDict(extra="ignore")

    entries: dict[str, str] = Field(default_factory=dict)


class SkillFrontmatter(BaseModel):
    """Optional ``---`` frontmatter at the top of a skill file."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    description: str | None = None
    source: str | None = None
    installed_at: str | None = None

    @field_validator("name", "description", "source", "installed_at", mode="before")
    @classmethod
    def normalize_optional_strings(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            normalized = value.strip()
            return normalized or None
        return str(value)

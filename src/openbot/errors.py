"""Failure contracts for OpenBot runs.

Components raise ``OpenBotError`` subclasses for expected failures. Whether a
failure is fatal is decided by the caller: resource acquisition (repository
check, worktree creation, backend start) propagates to the CLI, while
per-session failures are logged and contained by the runner. Programmer bugs
raise normal exceptions.
"""

from __future__ import annotations

from typing import Literal

OpenBotErrorCode = Literal[
    "configuration",
    "repository",
    "worktree_creation",
    "worktree_cleanup",
    "event_log_io",
    "backend",
    "session_lookup",
]


class OpenBotError(Exception):
    """Expected failure with a stable code and an optional recovery hint."""

    code: OpenBotErrorCode

    def __init__(
        self,
        code: OpenBotErrorCode,
        message: str,
        *,
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.recovery_hint = recovery_hint


class ConfigurationError(OpenBotError):
    """Bot configuration is missing or invalid."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("configuration", message, recovery_hint=recovery_hint)


class RepositoryError(OpenBotError):
    """The run requires a git repository and none was found."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("repository", message, recovery_hint=recovery_hint)


class WorktreeCreationError(OpenBotError):
    """``git worktree add`` (or the branch lookup before it) failed."""

    def __init__(
        self,
        message: str,
        *,
        stderr: str = "",
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__("worktree_creation", message, recovery_hint=recovery_hint)
        self.stderr = stderr


class WorktreeCleanupError(OpenBotError):
    """``git worktree remove`` failed."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("worktree_cleanup", message, recovery_hint=recovery_hint)


class EventLogIOError(OpenBotError):
    """Reading or writing a session event log failed."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("event_log_io", message, recovery_hint=recovery_hint)


class BackendError(OpenBotError):
    """The agent backend failed or reported an error."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("backend", message, recovery_hint=recovery_hint)


class SessionLookupError(OpenBotError):
    """A session requested for resume could not be found."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("session_lookup", message, recovery_hint=recovery_hint)

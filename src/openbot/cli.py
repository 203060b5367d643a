"""Command-line entry point for OpenBot."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Annotated

import typer

from . import __version__, log
from .commands import bots as bots_cmd
from .commands import history as history_cmd
from .commands import memory as memory_cmd
from .commands import run as run_cmd
from .commands import skills as skills_cmd
from .commands import workspaces as workspaces_cmd
from .errors import OpenBotError
from .io import die

app = typer.Typer(
    help="Run an LLM coding agent unattended, session after session.",
    no_args_is_help=True,
    add_completion=False,
)
sessions_app = typer.Typer(help="Inspect recorded sessions.", no_args_is_help=True)
memory_app = typer.Typer(help="Manage a bot's workspace memory.", no_args_is_help=True)
app.add_typer(sessions_app, name="sessions")
app.add_typer(memory_app, name="memory")

BotOption = Annotated[str, typer.Option("--bot", "-b", help="Bot name.")]
WorkspaceOption = Annotated[
    str | None,
    typer.Option("--workspace", "-w", help="Workspace slug (defaults to the current project)."),
]


def _validate_log_level(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in log.LEVEL_NAMES:
        choices = ", ".join(log.LEVEL_NAMES)
        raise typer.BadParameter(f"expected one of: {choices}")
    return normalized


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"openbot {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Log verbosity: trace, debug, info, success, warning, error.",
            callback=_validate_log_level,
        ),
    ] = None,
    no_color: Annotated[
        bool, typer.Option("--no-color", help="Disable colored output.")
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show the version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    if log_level is not None:
        log.set_level(log_level)
    if no_color:
        log.set_no_color(True)


def _call(handler, args: SimpleNamespace) -> None:
    try:
        handler(args)
    except OpenBotError as exc:
        die(str(exc), hint=exc.recovery_hint)


@app.command("run")
def run_command(
    bot: BotOption = "default",
    prompt: Annotated[
        str | None,
        typer.Option("--prompt", "-p", help="Instructions for this run (overrides config.md)."),
    ] = None,
    max_sessions: Annotated[
        int | None,
        typer.Option("--max-sessions", "-n", min=0, help="Session limit; 0 means unlimited."),
    ] = None,
    sleep: Annotated[
        int | None,
        typer.Option("--sleep", "-s", min=0, help="Seconds to sleep between sessions."),
    ] = None,
    model: Annotated[str | None, typer.Option("--model", "-m", help="Model override.")] = None,
    resume: Annotated[
        str | None,
        typer.Option("--resume", help="Resume a previous backend session by id."),
    ] = None,
    skip_git_check: Annotated[
        bool,
        typer.Option("--skip-git-check", help="Allow running outside a git repository."),
    ] = False,
    worktree: Annotated[
        bool | None,
        typer.Option(
            "--worktree/--no-worktree",
            help="Run in an isolated git worktree (default from config).",
        ),
    ] = None,
    no_input: Annotated[
        bool,
        typer.Option("--no-input", help="Ignore stdin; never read user input."),
    ] = False,
) -> None:
    """Run a bot in the current project."""
    _call(
        run_cmd.run_bot,
        SimpleNamespace(
            bot=bot,
            prompt=prompt,
            max_sessions=max_sessions,
            sleep=sleep,
            model=model,
            resume=resume,
            skip_git_check=skip_git_check,
            worktree=worktree,
            no_input=no_input,
        ),
    )


@sessions_app.command("list")
def sessions_list_command(
    bot: BotOption = "default",
    workspace: WorkspaceOption = None,
    output_format: Annotated[
        str, typer.Option("--format", help="Output format: table or json.")
    ] = "table",
) -> None:
    """List sessions recorded for a workspace."""
    _call(
        history_cmd.list_sessions,
        SimpleNamespace(bot=bot, workspace=workspace, format=output_format),
    )


@sessions_app.command("show")
def sessions_show_command(
    number: Annotated[int, typer.Argument(min=1, help="Session number.")],
    bot: BotOption = "default",
    workspace: WorkspaceOption = None,
    section: Annotated[
        str, typer.Option("--section", help="response, commands or all.")
    ] = "all",
    offset: Annotated[
        int, typer.Option("--offset", min=0, help="Lines to skip back from the end.")
    ] = 0,
    limit: Annotated[int, typer.Option("--limit", min=1, help="Lines per page.")] = 50,
) -> None:
    """Show one session's commands and response."""
    _call(
        history_cmd.show_session,
        SimpleNamespace(
            bot=bot,
            workspace=workspace,
            number=number,
            section=section,
            offset=offset,
            limit=limit,
        ),
    )


@memory_app.command("show")
def memory_show_command(bot: BotOption = "default", workspace: WorkspaceOption = None) -> None:
    """Show memory entries."""
    _call(memory_cmd.show_memory, SimpleNamespace(bot=bot, workspace=workspace))


@memory_app.command("set")
def memory_set_command(
    key: Annotated[str, typer.Argument(help="Entry key.")],
    value: Annotated[str, typer.Argument(help="Entry value.")],
    bot: BotOption = "default",
    workspace: WorkspaceOption = None,
) -> None:
    """Set a memory entry."""
    _call(
        memory_cmd.set_memory,
        SimpleNamespace(bot=bot, workspace=workspace, key=key, value=value),
    )


@memory_app.command("remove")
def memory_remove_command(
    key: Annotated[str, typer.Argument(help="Entry key.")],
    bot: BotOption = "default",
    workspace: WorkspaceOption = None,
) -> None:
    """Remove a memory entry."""
    _call(memory_cmd.remove_memory, SimpleNamespace(bot=bot, workspace=workspace, key=key))


@memory_app.command("clear")
def memory_clear_command(
    bot: BotOption = "default",
    workspace: WorkspaceOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
) -> None:
    """Remove every memory entry."""
    _call(memory_cmd.clear_memory, SimpleNamespace(bot=bot, workspace=workspace, yes=yes))


@app.command("skills")
def skills_command(bot: BotOption = "default") -> None:
    """List skills available to a bot."""
    _call(skills_cmd.list_skills, SimpleNamespace(bot=bot))


@app.command("workspaces")
def workspaces_command(bot: BotOption = "default") -> None:
    """List projects a bot has run in."""
    _call(workspaces_cmd.list_workspaces, SimpleNamespace(bot=bot))


@app.command("bots")
def bots_command(
    init: Annotated[
        str | None, typer.Option("--init", help="Create a bot with a default config.md.")
    ] = None,
) -> None:
    """List bots, or create one."""
    _call(bots_cmd.list_bots, SimpleNamespace(init=init))


def main() -> None:
    app()

"""Implementation for the ``openbot run`` command."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from .. import config, git, log
from ..codex import CodexAppServerBackend
from ..errors import RepositoryError
from ..inputs import select_input
from ..io import say
from ..models import BotConfig
from ..runner import Runner
from ..terminal import InteractiveSurface, PlainSurface, TerminalSurface
from ..tools import default_registry
from ..workspace import BotWorkspace, resolve_workspace
from ..worktrees import Worktree, WorktreeGuard, create_worktree, resolve_repo_root


def _select_surface() -> TerminalSurface:
    if sys.stdout.isatty() and not log.no_color():
        return InteractiveSurface()
    return PlainSurface()


def _resolve_config(args: object) -> BotConfig:
    bot = getattr(args, "bot")
    loaded = config.load_bot_config(bot)
    return config.with_overrides(
        loaded,
        prompt=getattr(args, "prompt", None),
        max_sessions=getattr(args, "max_sessions", None),
        model=getattr(args, "model", None),
        sleep_secs=getattr(args, "sleep", None),
        skip_git_check=bool(getattr(args, "skip_git_check", False)),
        worktree=getattr(args, "worktree", None),
    )


async def _drive(runner: Runner, backend: CodexAppServerBackend) -> None:
    try:
        await runner.run()
    finally:
        await backend.close()


def run_bot(args: object) -> None:
    """Run a bot in the current project until it completes or stops.

    Args:
        args: CLI argument object with ``bot``, the config overrides,
            ``resume`` and ``no_input``.

    Raises:
        RepositoryError: Outside a git repository without ``--skip-git-check``.
        WorktreeCreationError: When the run's worktree cannot be created.

    Example:
        $ openbot run --bot docs -n 3 --sleep 0
    """
    bot = getattr(args, "bot")
    run_config = _resolve_config(args)
    cwd = Path.cwd()
    repo_root = resolve_repo_root(cwd)
    if repo_root is None and not run_config.skip_git_check:
        raise RepositoryError(
            f"not inside a git repository: {cwd}",
            recovery_hint="run from a git checkout or pass --skip-git-check",
        )
    config.ensure_bot_dirs(bot)
    target: BotWorkspace = resolve_workspace(bot, cwd)
    log.debug(f"workspace {target.slug} -> {target.project_root}")

    worktree: Worktree | None = None
    if run_config.worktree and repo_root is not None:
        worktree = create_worktree(repo_root, bot)
    elif run_config.worktree:
        log.info("not a git repository; running in place without a worktree")

    with WorktreeGuard(worktree) as guard:
        workdir = worktree.path if worktree else target.project_root
        surface = _select_surface()
        surface.detail("Bot:", bot)
        surface.detail("Project:", str(target.project_root))
        if worktree is not None:
            surface.detail("Worktree:", str(worktree.path))
            surface.detail("Branch:", f"{worktree.branch} (from {worktree.base_branch})")
        if worktree is None and repo_root is not None:
            branch = git.git_current_branch(repo_root)
            if branch:
                surface.detail("Branch:", f"{branch} (in place)")
        tools = default_registry()
        backend = CodexAppServerBackend(workdir, run_config, tools.specs())
        runner = Runner(
            config=run_config,
            workspace=target,
            backend=backend,
            surface=surface,
            input_source=select_input(surface, no_input=bool(getattr(args, "no_input", False))),
            tools=tools,
            worktree=worktree,
            resume_id=getattr(args, "resume", None),
        )
        asyncio.run(_drive(runner, backend))
        if runner.outcomes:
            last = runner.outcomes[-1]
            say(f"Ran {len(runner.outcomes)} session(s); last was #{last.record.session_number}.")
        if guard.release():
            say(f"Removed the worktree; branch {worktree.branch} is kept.")

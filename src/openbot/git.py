"""Git helper functions used by the OpenBot runner."""

from __future__ import annotations

from pathlib import Path

from . import exec as exec_util

_MISSING_GIT_RETURNCODE = 127


def git_command(args: list[str], *, git_path: str | None = None) -> list[str]:
    """Build a git command using an optional executable path.

    Example:
        >>> git_command(["status"])
        ['git', 'status']
    """
    resolved = git_path.strip() if isinstance(git_path, str) else ""
    if not resolved:
        resolved = "git"
    return [resolved, *args]


def _run_git(
    args: list[str], *, cwd: Path | None = None, git_path: str | None = None
) -> exec_util.CommandResult:
    cmd = git_command(args, git_path=git_path)
    result = exec_util.run_with_runner(exec_util.CommandRequest(argv=tuple(cmd), cwd=cwd))
    if result is None:
        return exec_util.CommandResult(
            argv=tuple(cmd),
            returncode=_MISSING_GIT_RETURNCODE,
            stdout="",
            stderr=f"missing required command: {cmd[0]}",
        )
    return result


def _split_nul(output: str) -> list[str]:
    return [item for item in output.split("\0") if item.strip()]


def git_repo_root(start: Path, *, git_path: str | None = None) -> Path | None:
    """Return the work-tree top level for a starting path.

    Inside a linked worktree this is the worktree itself; see
    ``git_main_repo_root`` for the repository shared by all worktrees.

    Example:
        >>> git_repo_root(Path(".")) is None or True
        True
    """
    result = _run_git(["-C", str(start), "rev-parse", "--show-toplevel"], git_path=git_path)
    if result.returncode != 0:
        return None
    resolved = result.stdout.strip()
    if not resolved:
        return None
    return Path(resolved)


def git_common_dir(start: Path, *, git_path: str | None = None) -> Path | None:
    """Return the absolute git directory shared by every worktree of a repo."""
    result = _run_git(["-C", str(start), "rev-parse", "--git-common-dir"], git_path=git_path)
    if result.returncode != 0:
        return None
    raw = result.stdout.strip()
    if not raw:
        return None
    common = Path(raw)
    if not common.is_absolute():
        common = start / common
    return common.resolve()


def git_main_repo_root(start: Path, *, git_path: str | None = None) -> Path | None:
    """Return the main work tree of the repository containing ``start``.

    Every linked worktree of a repository resolves to the same path, so state
    keyed on it (memory, history) is shared between them.
    """
    toplevel = git_repo_root(start, git_path=git_path)
    if toplevel is None:
        return None
    common = git_common_dir(start, git_path=git_path)
    if common is not None and common.name == ".git" and common.parent.is_dir():
        return common.parent
    return toplevel


def git_current_branch(repo_dir: Path, *, git_path: str | None = None) -> str | None:
    """Return the current branch name (``HEAD`` when detached).

    Example:
        >>> git_current_branch(Path(".")) is None or True
        True
    """
    result = _run_git(
        ["-C", str(repo_dir), "rev-parse", "--abbrev-ref", "HEAD"], git_path=git_path
    )
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def git_changed_paths(repo_dir: Path, *, git_path: str | None = None) -> list[str]:
    """Return tracked paths that differ from HEAD (staged and unstaged).

    A rename is reported as its deleted source and its new destination.
    """
    result = _run_git(
        ["-C", str(repo_dir), "diff", "HEAD", "--no-renames", "--name-only", "-z"],
        git_path=git_path,
    )
    if result.returncode != 0:
        return []
    return _split_nul(result.stdout)


def git_untracked_paths(repo_dir: Path, *, git_path: str | None = None) -> list[str]:
    """Return untracked paths that are not ignored."""
    result = _run_git(
        ["-C", str(repo_dir), "ls-files", "--others", "--exclude-standard", "-z"],
        git_path=git_path,
    )
    if result.returncode != 0:
        return []
    return _split_nul(result.stdout)


def git_ref_exists(repo_dir: Path, ref: str, *, git_path: str | None = None) -> bool:
    """Check whether a git ref exists.

    Example:
        >>> git_ref_exists(Path("."), "refs/heads/main") in {True, False}
        True
    """
    result = _run_git(
        ["-C", str(repo_dir), "show-ref", "--verify", "--quiet", ref], git_path=git_path
    )
    return result.returncode == 0


def git_branch_exists(repo_dir: Path, branch: str, *, git_path: str | None = None) -> bool:
    """Check whether a local branch exists."""
    if not branch:
        return False
    return git_ref_exists(repo_dir, f"refs/heads/{branch}", git_path=git_path)


def git_worktree_add(
    repo_root: Path, worktree_path: Path, branch: str, *, git_path: str | None = None
) -> exec_util.CommandResult:
    """Create ``worktree_path`` checked out on a new ``branch`` from HEAD."""
    return _run_git(
        ["-C", str(repo_root), "worktree", "add", str(worktree_path), "-b", branch],
        git_path=git_path,
    )


def git_worktree_remove(
    repo_root: Path, worktree_path: Path, *, git_path: str | None = None
) -> exec_util.CommandResult:
    """Force-remove a linked worktree directory; its branch is left alone."""
    return _run_git(
        ["-C", str(repo_root), "worktree", "remove", "--force", str(worktree_path)],
        git_path=git_path,
    )


def git_checkout(
    repo_dir: Path, branch: str, *, git_path: str | None = None
) -> exec_util.CommandResult:
    """Check out an existing branch."""
    return _run_git(["-C", str(repo_dir), "checkout", branch], git_path=git_path)


def git_merge_ff_only(
    repo_dir: Path, branch: str, *, git_path: str | None = None
) -> exec_util.CommandResult:
    """Fast-forward the current branch to ``branch``; never creates a merge commit."""
    return _run_git(["-C", str(repo_dir), "merge", "--ff-only", branch], git_path=git_path)

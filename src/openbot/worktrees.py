"""Isolated git worktrees for bot runs.

Each run gets a fresh branch ``openbot/<run>-<unix-ts>`` checked out in a
worktree stored inside the repository's git metadata directory. Uncommitted
changes in the user's checkout are copied in so the agent starts from the same
state the user sees. Removing a worktree never deletes its branch.
"""

from __future__ import annotations

import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType

from . import git, log, paths
from .errors import RepositoryError, WorktreeCleanupError, WorktreeCreationError


@dataclass(frozen=True)
class Worktree:
    """A worktree created for one run.

    Attributes:
        path: Worktree directory.
        branch: Branch created for the run.
        base_branch: Branch the run branch was created from.
        repo_root: Main checkout the worktree belongs to.
    """

    path: Path
    branch: str
    base_branch: str
    repo_root: Path


@dataclass
class PropagationReport:
    copied: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.copied) + len(self.removed)


@dataclass(frozen=True)
class MergeOutcome:
    """Result of fast-forwarding the base branch to the run branch."""

    merged: bool
    base_branch: str
    branch: str
    detail: str = ""


def resolve_repo_root(cwd: Path) -> Path | None:
    """Return the main checkout for ``cwd``, or ``None`` outside git.

    Every worktree of a repository resolves to the same directory.
    """
    base = cwd if cwd.is_dir() else cwd.parent
    return git.git_main_repo_root(base)


def run_suffix(run_name: str, timestamp: int | None = None) -> str:
    """Return the ``<run>-<unix-ts>`` suffix shared by branch and directory.

    Example:
        >>> run_suffix("docs", 1700000000)
        'docs-1700000000'
    """
    ts = int(time.time()) if timestamp is None else timestamp
    return f"{run_name}-{ts}"


def create_worktree(repo_root: Path, run_name: str) -> Worktree:
    """Create a worktree on a new branch and copy dirty state into it.

    Args:
        repo_root: Main checkout of the repository.
        run_name: Name used in the branch and directory (usually the bot name).

    Returns:
        The created worktree, already populated with the dirty state.

    Raises:
        WorktreeCreationError: When ``git worktree add`` fails.
    """
    base_branch = git.git_current_branch(repo_root) or "HEAD"
    common_dir = git.git_common_dir(repo_root)
    if common_dir is None:
        raise RepositoryError(
            f"not a git repository: {repo_root}",
            recovery_hint="run inside a git checkout or pass --no-worktree",
        )
    base_suffix = suffix = run_suffix(run_name)
    branch = f"{paths.WORKTREE_BRANCH_PREFIX}{suffix}"
    attempt = 1
    # Two runs started in the same second get distinct branches.
    while git.git_branch_exists(repo_root, branch):
        attempt += 1
        suffix = f"{base_suffix}-{attempt}"
        branch = f"{paths.WORKTREE_BRANCH_PREFIX}{suffix}"
    worktree_path = paths.worktrees_root(common_dir) / suffix

    result = git.git_worktree_add(repo_root, worktree_path, branch)
    if not result.ok:
        stderr = result.stderr.strip()
        raise WorktreeCreationError(
            f"git worktree add failed: {stderr or result.output()}",
            stderr=stderr,
            recovery_hint="check that HEAD points at a commit and the branch does not exist",
        )
    log.debug(f"created worktree {worktree_path} on {branch} (base {base_branch})")

    worktree = Worktree(
        path=worktree_path,
        branch=branch,
        base_branch=base_branch,
        repo_root=repo_root,
    )
    report = propagate_dirty_state(repo_root, worktree_path)
    if report.failed:
        log.warning(f"{len(report.failed)} uncommitted file(s) were not copied into the worktree")
    return worktree


def _copy_file(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)


def propagate_dirty_state(repo_root: Path, worktree_path: Path) -> PropagationReport:
    """Copy uncommitted changes from ``repo_root`` into ``worktree_path``.

    Tracked paths that differ from HEAD are copied when present and removed
    when deleted at the source. Untracked, non-ignored paths are copied with
    their parent directories. Each file is handled independently; failures
    are logged and recorded in the report.
    """
    report = PropagationReport()

    for relpath in git.git_changed_paths(repo_root):
        src = repo_root / relpath
        dst = worktree_path / relpath
        try:
            if src.is_file():
                _copy_file(src, dst)
                report.copied.append(relpath)
            elif not src.exists():
                if dst.is_file() or dst.is_symlink():
                    dst.unlink()
                report.removed.append(relpath)
        except OSError as exc:
            log.warning(f"could not propagate {relpath}: {exc}")
            report.failed.append(relpath)

    for relpath in git.git_untracked_paths(repo_root):
        src = repo_root / relpath
        dst = worktree_path / relpath
        if not src.is_file():
            continue
        try:
            _copy_file(src, dst)
            report.copied.append(relpath)
        except OSError as exc:
            log.warning(f"could not propagate {relpath}: {exc}")
            report.failed.append(relpath)

    if report.total:
        log.debug(
            f"propagated dirty state: {len(report.copied)} copied, "
            f"{len(report.removed)} removed"
        )
    return report


def remove_worktree(repo_root: Path, worktree_path: Path) -> None:
    """Force-remove a worktree directory. The branch is kept.

    Raises:
        WorktreeCleanupError: When ``git worktree remove`` fails.
    """
    result = git.git_worktree_remove(repo_root, worktree_path)
    if not result.ok:
        raise WorktreeCleanupError(
            f"git worktree remove failed: {result.output()}",
            recovery_hint=f"run `git worktree remove --force {worktree_path}` manually",
        )
    log.debug(f"removed worktree {worktree_path}")


def merge_worktree_branch(repo_root: Path, worktree: Worktree) -> MergeOutcome:
    """Fast-forward ``worktree.base_branch`` in the main checkout to the run branch.

    Git failures are reported in the outcome; the run branch is left intact.
    """
    checkout = git.git_checkout(repo_root, worktree.base_branch)
    if not checkout.ok:
        return MergeOutcome(
            merged=False,
            base_branch=worktree.base_branch,
            branch=worktree.branch,
            detail=f"checkout of {worktree.base_branch} failed: {checkout.output()}",
        )
    merge = git.git_merge_ff_only(repo_root, worktree.branch)
    if not merge.ok:
        return MergeOutcome(
            merged=False,
            base_branch=worktree.base_branch,
            branch=worktree.branch,
            detail=f"fast-forward merge failed: {merge.output()}",
        )
    return MergeOutcome(merged=True, base_branch=worktree.base_branch, branch=worktree.branch)


class WorktreeGuard:
    """Own a worktree and remove it exactly once when the scope exits.

    Example:
        >>> guard = WorktreeGuard(None)
        >>> guard.release()
        False
    """

    def __init__(self, worktree: Worktree | None) -> None:
        self.worktree = worktree
        self._released = False

    def release(self) -> bool:
        """Remove the worktree if one is held and not yet removed.

        Returns:
            ``True`` when a removal succeeded on this call.
        """
        if self.worktree is None or self._released:
            return False
        self._released = True
        try:
            remove_worktree(self.worktree.repo_root, self.worktree.path)
        except WorktreeCleanupError as exc:
            log.warning(str(exc))
            if exc.recovery_hint:
                log.warning(f"hint: {exc.recovery_hint}")
            return False
        return True

    def __enter__(self) -> WorktreeGuard:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

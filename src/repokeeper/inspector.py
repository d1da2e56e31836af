"""Inspect live repository state into a RepositoryStatus snapshot."""

import logging
from pathlib import Path

from repokeeper import parse
from repokeeper.context import TaskContext
from repokeeper.errors import CancelledError, GitError, classify_error
from repokeeper.models import ErrorClass, RepositoryStatus, Submodules, Tracking
from repokeeper.vcs import VCSAdapter

logger = logging.getLogger(__name__)


def inspect_repo(
    repo_path: Path,
    adapter: VCSAdapter,
    ctx: TaskContext | None = None,
) -> RepositoryStatus:
    """Inspect a single repository.

    Each step is a separate VCS call; a failing step truncates the snapshot
    and records ``error``/``error_class`` instead of raising. Only
    cancellation of the whole invocation propagates.

    Args:
        repo_path: Path to the repository root.
        adapter: VCS backend.
        ctx: Task context carrying deadline and cancellation.

    Returns:
        RepositoryStatus, possibly partial with an error set.

    Raises:
        CancelledError: If the invocation was cancelled.
    """
    status = RepositoryStatus(repo_id=parse.local_repo_id(repo_path), path=repo_path)

    if not repo_path.exists():
        return with_error(status, "path missing", ErrorClass.MISSING)

    try:
        populate_status(status, adapter, ctx)
    except CancelledError:
        raise
    except GitError as e:
        logger.warning("inspect failed for %s: %s", repo_path, e)
        return with_error(status, str(e), classify_error(e))
    except OSError as e:
        logger.warning("inspect failed for %s: %s", repo_path, e)
        return with_error(status, str(e), classify_error(e))

    return status


def populate_status(status: RepositoryStatus, adapter: VCSAdapter, ctx: TaskContext | None) -> None:
    """Fill ``status`` in place, step by step.

    Raises:
        GitError: On the first failing step.
    """
    path = status.path
    try:
        status.bare = adapter.is_bare(path, ctx=ctx)
    except GitError as e:
        e.error_class = ErrorClass.CORRUPT
        raise
    if not status.bare and not adapter.is_worktree(path, ctx=ctx):
        raise GitError(
            f"not inside a working tree: {path}", path, error_class=ErrorClass.CORRUPT
        )

    status.remotes = adapter.remotes(path, ctx=ctx)
    status.primary_remote = adapter.primary_remote([r.name for r in status.remotes])
    repo_id = adapter.normalize_url(status.primary_remote_url)
    if repo_id:
        status.repo_id = repo_id

    status.head = adapter.head(path, ctx=ctx)
    if status.bare:
        status.worktree = None
        status.tracking = Tracking()
    else:
        status.worktree = adapter.worktree_status(path, ctx=ctx)
        if status.head.detached:
            status.tracking = Tracking()
        else:
            status.tracking = adapter.tracking_status(path, status.head.branch, ctx=ctx)

    status.submodules = Submodules(has_submodules=adapter.has_submodules(path, ctx=ctx))


def with_error(
    status: RepositoryStatus, message: str, error_class: ErrorClass | None
) -> RepositoryStatus:
    """Record a failure on a snapshot."""
    status.error = message
    status.error_class = error_class or ErrorClass.UNKNOWN
    return status

"""Version-control capability interface and its git implementation.

The orchestration layer only talks to ``VCSAdapter``; it never calls git
directly, so another backend can be plugged in without touching it.
"""

import shlex
from abc import ABC, abstractmethod
from pathlib import Path

from repokeeper import git_ops, parse
from repokeeper.context import TaskContext
from repokeeper.models import Head, Remote, SyncResult, SyncStep, Tracking, Worktree

GIT_STEP_ARGS = {
    SyncStep.FETCH: git_ops.FETCH_ARGS,
    SyncStep.STASH: git_ops.stash_push_args(),
    SyncStep.REBASE: git_ops.PULL_REBASE_ARGS,
    SyncStep.STASH_POP: git_ops.STASH_POP_ARGS,
    SyncStep.PUSH: git_ops.PUSH_ARGS,
}


class VCSAdapter(ABC):
    """Operations repokeeper relies on from a version-control tool."""

    name: str = ""

    @abstractmethod
    def is_bare(self, path: Path, ctx: TaskContext | None = None) -> bool:
        """Classify the repository; raise GitError if it is not one."""

    @abstractmethod
    def is_worktree(self, path: Path, ctx: TaskContext | None = None) -> bool:
        """Whether the path is inside a working tree."""

    @abstractmethod
    def remotes(self, path: Path, ctx: TaskContext | None = None) -> list[Remote]:
        """All configured remotes."""

    @abstractmethod
    def head(self, path: Path, ctx: TaskContext | None = None) -> Head:
        """Current branch or detached state."""

    @abstractmethod
    def worktree_status(self, path: Path, ctx: TaskContext | None = None) -> Worktree:
        """Change counts of the working tree."""

    @abstractmethod
    def tracking_status(
        self, path: Path, branch: str, ctx: TaskContext | None = None
    ) -> Tracking:
        """Upstream tracking state of ``branch``."""

    @abstractmethod
    def has_submodules(self, path: Path, ctx: TaskContext | None = None) -> bool:
        """Submodule presence only."""

    @abstractmethod
    def fetch(self, path: Path, ctx: TaskContext | None = None) -> None:
        """Non-mutating fetch of all remotes."""

    @abstractmethod
    def describe_step(self, step: SyncStep, item: SyncResult) -> str:
        """Shell-like description of what ``step`` runs for a plan item."""

    @abstractmethod
    def stash_push(self, path: Path, ctx: TaskContext | None = None) -> bool:
        """Stash local changes; return True if something was stashed."""

    @abstractmethod
    def stash_pop(self, path: Path, ctx: TaskContext | None = None) -> None:
        """Restore the most recent stash."""

    @abstractmethod
    def pull_rebase(self, path: Path, ctx: TaskContext | None = None) -> None:
        """Rebase the current branch onto its upstream."""

    @abstractmethod
    def push(self, path: Path, ctx: TaskContext | None = None) -> None:
        """Push the current branch."""

    @abstractmethod
    def clone(
        self,
        remote_url: str,
        target: Path,
        branch: str | None = None,
        mirror: bool = False,
        ctx: TaskContext | None = None,
    ) -> None:
        """Clone ``remote_url`` into ``target``."""

    @abstractmethod
    def set_upstream(
        self, path: Path, upstream: str, branch: str, ctx: TaskContext | None = None
    ) -> None:
        """Configure ``branch`` to track ``upstream``."""

    @abstractmethod
    def set_remote_url(
        self, path: Path, remote: str, url: str, ctx: TaskContext | None = None
    ) -> None:
        """Rewrite a remote URL."""

    @abstractmethod
    def normalize_url(self, raw_url: str | None) -> str:
        """Machine-independent identifier for a remote URL."""

    @abstractmethod
    def primary_remote(self, remote_names: list[str]) -> str:
        """Preferred remote among ``remote_names``."""


class GitAdapter(VCSAdapter):
    """VCSAdapter backed by the git command line."""

    name = "git"

    def is_bare(self, path: Path, ctx: TaskContext | None = None) -> bool:
        return git_ops.is_bare_repository(path, ctx=ctx)

    def is_worktree(self, path: Path, ctx: TaskContext | None = None) -> bool:
        return git_ops.is_inside_work_tree(path, ctx=ctx)

    def remotes(self, path: Path, ctx: TaskContext | None = None) -> list[Remote]:
        return git_ops.list_remotes(path, ctx=ctx)

    def head(self, path: Path, ctx: TaskContext | None = None) -> Head:
        return git_ops.get_head(path, ctx=ctx)

    def worktree_status(self, path: Path, ctx: TaskContext | None = None) -> Worktree:
        return git_ops.get_worktree_status(path, ctx=ctx)

    def tracking_status(
        self, path: Path, branch: str, ctx: TaskContext | None = None
    ) -> Tracking:
        return git_ops.get_tracking(path, branch, ctx=ctx)

    def has_submodules(self, path: Path, ctx: TaskContext | None = None) -> bool:
        return git_ops.has_submodules(path, ctx=ctx)

    def fetch(self, path: Path, ctx: TaskContext | None = None) -> None:
        git_ops.fetch_repo(path, ctx=ctx)

    def describe_step(self, step: SyncStep, item: SyncResult) -> str:
        if step == SyncStep.CLONE:
            args = git_ops.clone_args(item.remote_url or "", item.path, item.branch, item.mirror)
        else:
            args = GIT_STEP_ARGS[step]
        return "git " + shlex.join(args)

    def stash_push(self, path: Path, ctx: TaskContext | None = None) -> bool:
        return git_ops.stash_push(path, ctx=ctx)

    def stash_pop(self, path: Path, ctx: TaskContext | None = None) -> None:
        git_ops.stash_pop(path, ctx=ctx)

    def pull_rebase(self, path: Path, ctx: TaskContext | None = None) -> None:
        git_ops.pull_rebase(path, ctx=ctx)

    def push(self, path: Path, ctx: TaskContext | None = None) -> None:
        git_ops.push_repo(path, ctx=ctx)

    def clone(
        self,
        remote_url: str,
        target: Path,
        branch: str | None = None,
        mirror: bool = False,
        ctx: TaskContext | None = None,
    ) -> None:
        git_ops.clone_repo(remote_url, target, branch=branch, mirror=mirror, ctx=ctx)

    def set_upstream(
        self, path: Path, upstream: str, branch: str, ctx: TaskContext | None = None
    ) -> None:
        git_ops.set_upstream(path, upstream, branch, ctx=ctx)

    def set_remote_url(
        self, path: Path, remote: str, url: str, ctx: TaskContext | None = None
    ) -> None:
        git_ops.set_remote_url(path, remote, url, ctx=ctx)

    def normalize_url(self, raw_url: str | None) -> str:
        return parse.normalize_url(raw_url)

    def primary_remote(self, remote_names: list[str]) -> str:
        return parse.primary_remote(remote_names)

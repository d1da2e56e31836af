"""Data models for repokeeper."""

import os
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_PROTECTED_BRANCHES = ["main", "master", "release/*"]
DEFAULT_EXCLUDE_PATTERNS = [
    "**/node_modules",
    "**/.terraform",
    "**/dist",
    "**/vendor",
]


def default_concurrency() -> int:
    """Default worker count: min(8, available CPUs)."""
    return min(8, os.cpu_count() or 1)


class RepoType(str, Enum):
    """Kind of clone recorded in the inventory."""

    CHECKOUT = "checkout"
    MIRROR = "mirror"


class EntryStatus(str, Enum):
    """Lifecycle status of an inventory entry."""

    PRESENT = "present"
    MISSING = "missing"
    MOVED = "moved"


class ErrorClass(str, Enum):
    """Coarse classification of a per-repository failure."""

    AUTH = "auth"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CORRUPT = "corrupt"
    MISSING_REMOTE = "missing_remote"
    MISSING = "missing"
    UNKNOWN = "unknown"
    SKIPPED = "skipped"
    INVALID = "invalid"


class Severity(IntEnum):
    """Severity signal surfaced to callers; doubles as the process exit code."""

    OK = 0
    WARNING = 1
    ERROR = 2


class TrackingStatus(str, Enum):
    """Relationship between the current branch and its upstream."""

    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"
    EQUAL = "equal"
    GONE = "gone"
    NONE = "none"


class InventoryEntry(BaseModel):
    """Persisted identity of one tracked repository."""

    repo_id: str
    path: Path
    remote_url: str | None = None
    type: RepoType = RepoType.CHECKOUT
    branch: str | None = None
    status: EntryStatus = EntryStatus.PRESENT
    last_seen: datetime | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)

    model_config = {"arbitrary_types_allowed": True}


class Remote(BaseModel):
    """A configured git remote."""

    name: str
    url: str


class Head(BaseModel):
    """Current HEAD state. Branch holds the short hash when detached."""

    branch: str = ""
    detached: bool = False


class Worktree(BaseModel):
    """Working tree change counts. Absent for bare repositories."""

    dirty: bool = False
    staged: int = 0
    unstaged: int = 0
    untracked: int = 0


class Tracking(BaseModel):
    """Upstream tracking state of the current branch.

    ``ahead`` and ``behind`` are None when the status is ``gone`` or ``none``,
    or when the counts could not be computed.
    """

    upstream: str = ""
    status: TrackingStatus = TrackingStatus.NONE
    ahead: int | None = None
    behind: int | None = None


class Submodules(BaseModel):
    """Submodule presence. Submodules are never expanded."""

    has_submodules: bool = False


class RepositoryStatus(BaseModel):
    """Live snapshot of one repository. Not persisted."""

    repo_id: str = ""
    path: Path
    type: RepoType = RepoType.CHECKOUT
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    bare: bool = False
    remotes: list[Remote] = Field(default_factory=list)
    primary_remote: str = ""
    head: Head = Field(default_factory=Head)
    worktree: Worktree | None = None
    tracking: Tracking = Field(default_factory=Tracking)
    submodules: Submodules = Field(default_factory=Submodules)
    error: str | None = None
    error_class: ErrorClass | None = None

    model_config = {"arbitrary_types_allowed": True}

    @property
    def primary_remote_url(self) -> str:
        """URL of the primary remote, or empty string."""
        for remote in self.remotes:
            if remote.name == self.primary_remote:
                return remote.url.strip()
        return ""

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def is_dirty(self) -> bool:
        return self.worktree is not None and self.worktree.dirty


class StatusFilter(str, Enum):
    """Selection applied to a status report."""

    ALL = "all"
    ERRORS = "errors"
    DIRTY = "dirty"
    CLEAN = "clean"
    GONE = "gone"
    DIVERGED = "diverged"
    REMOTE_MISMATCH = "remote-mismatch"
    MISSING = "missing"


class StatusReport(BaseModel):
    """Result of a status pass over the inventory."""

    generated_at: datetime
    repos: list[RepositoryStatus] = Field(default_factory=list)
    severity: Severity = Severity.OK


class SyncStep(str, Enum):
    """One git action inside a planned sync."""

    CLONE = "clone"
    FETCH = "fetch"
    STASH = "stash"
    REBASE = "rebase"
    STASH_POP = "stash_pop"
    PUSH = "push"


MUTATING_STEPS = frozenset({SyncStep.CLONE, SyncStep.STASH, SyncStep.REBASE, SyncStep.PUSH})


class OutcomeKind(str, Enum):
    """Stable outcome identifiers for sync results."""

    FETCHED = "fetched"
    REBASED = "rebased"
    STASHED_REBASED = "stashed_rebased"
    PUSHED = "pushed"
    CLONED = "cloned"
    SKIPPED_MISSING = "skipped_missing"
    SKIPPED_DETACHED = "skipped_detached"
    SKIPPED_NO_UPSTREAM = "skipped_no_upstream"
    SKIPPED_GONE = "skipped_gone"
    SKIPPED_DIVERGED = "skipped_diverged"
    SKIPPED_DIRTY = "skipped_dirty"
    SKIPPED_PROTECTED_BRANCH = "skipped_protected_branch"
    SKIPPED_NOT_ALLOWED = "skipped_not_allowed"
    SKIPPED_BARE = "skipped_bare"
    SKIPPED_UNCONFIRMED = "skipped_unconfirmed"
    FAILED = "failed"
    FAILED_INSPECT = "failed_inspect"
    FAILED_FETCH = "failed_fetch"
    FAILED_STASH = "failed_stash"
    FAILED_REBASE = "failed_rebase"
    FAILED_STASH_POP = "failed_stash_pop"
    FAILED_PUSH = "failed_push"
    FAILED_CLONE = "failed_clone"

    @property
    def is_failure(self) -> bool:
        return self.value.startswith("failed")

    @property
    def is_skip(self) -> bool:
        return self.value.startswith("skipped")


class SyncResult(BaseModel):
    """Planned or executed sync outcome for one repository.

    A plan is a list of SyncResult with ``planned=True``; ``steps`` lists the
    git actions that execution will run, in order. ``remote_url``, ``branch``
    and ``mirror`` carry the clone inputs for missing checkouts.
    """

    repo_id: str
    path: Path
    action: str = ""
    outcome: OutcomeKind
    ok: bool = True
    error_class: ErrorClass | None = None
    error: str | None = None
    steps: list[SyncStep] = Field(default_factory=list)
    planned: bool = False
    remote_url: str | None = None
    branch: str | None = None
    mirror: bool = False

    model_config = {"arbitrary_types_allowed": True}

    @property
    def is_mutating(self) -> bool:
        return any(step in MUTATING_STEPS for step in self.steps)


class SyncSummary(BaseModel):
    """Aggregate of a sync run."""

    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    counts: dict[str, int] = Field(default_factory=dict)
    failures: list[SyncResult] = Field(default_factory=list)
    severity: Severity = Severity.OK


class ReconcileMode(str, Enum):
    """Direction of a remote-mismatch reconcile."""

    NONE = "none"
    REGISTRY = "registry"
    GIT = "git"


class RemoteMismatchPlan(BaseModel):
    """One proposed remote URL correction."""

    repo_id: str
    path: Path
    primary_remote: str = ""
    action: str
    current_value: str
    target_value: str
    recorded_url: str
    live_url: str
    ok: bool = True
    error_class: ErrorClass | None = None
    error: str | None = None

    model_config = {"arbitrary_types_allowed": True}


class UpstreamRepairPlan(BaseModel):
    """Proposed or applied upstream tracking repair for one repository."""

    repo_id: str
    path: Path
    local_branch: str = ""
    current_upstream: str = ""
    target_upstream: str = ""
    action: str = "unchanged"
    ok: bool = True
    error_class: ErrorClass | None = None
    error: str | None = None

    model_config = {"arbitrary_types_allowed": True}

    @property
    def needs_change(self) -> bool:
        return self.action == "set upstream"


class SyncOptions(BaseModel):
    """Per-invocation sync policy."""

    update_local: bool = False
    push_local: bool = False
    rebase_dirty: bool = False
    force: bool = False
    protected_branches: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROTECTED_BRANCHES)
    )
    allow_protected_rebase: bool = False
    update_branches: list[str] = Field(default_factory=lambda: ["*"])
    checkout_missing: bool = False
    continue_on_error: bool = True
    assume_yes: bool = False
    concurrency: int | None = None
    timeout: float | None = None


class SyncConfig(BaseModel):
    """Sync defaults loaded from the config file."""

    update_local: bool = False
    push_local: bool = False
    rebase_dirty: bool = False
    protected_branches: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROTECTED_BRANCHES)
    )
    update_branches: list[str] = Field(default_factory=lambda: ["*"])
    continue_on_error: bool = True


class Config(BaseModel):
    """Application configuration loaded from YAML."""

    roots: list[Path] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS)
    )
    follow_symlinks: bool = False
    concurrency: int = Field(default_factory=default_concurrency, ge=1)
    timeout_seconds: float = Field(default=60, gt=0)
    inventory_path: Path | None = None
    stale_days: int = 30
    main_branch: str | None = None
    sync: SyncConfig = Field(default_factory=SyncConfig)

    model_config = {"arbitrary_types_allowed": True}

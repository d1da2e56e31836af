"""Engine: the operations exposed to the CLI and other callers.

The engine owns the inventory for one invocation. Workers only ever see
copies of entries; every merge back into the inventory happens here, on
the calling thread, after the orchestrator returns.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from repokeeper import labels, parse, reconcile, sync
from repokeeper.context import Invocation, TaskContext
from repokeeper.errors import EntryNotFoundError, classify_error
from repokeeper.inspector import inspect_repo, with_error
from repokeeper.inventory import Inventory
from repokeeper.models import (
    Config,
    EntryStatus,
    ErrorClass,
    InventoryEntry,
    OutcomeKind,
    ReconcileMode,
    RemoteMismatchPlan,
    RepositoryStatus,
    Severity,
    StatusFilter,
    StatusReport,
    SyncOptions,
    SyncResult,
    Tracking,
    TrackingStatus,
    UpstreamRepairPlan,
)
from repokeeper.orchestrator import run_many
from repokeeper.scanner import find_git_repos, reconcile_inventory
from repokeeper.vcs import GitAdapter, VCSAdapter

logger = logging.getLogger(__name__)


def status_severity(status: RepositoryStatus) -> Severity:
    """Dirty trees, gone upstreams and missing paths warn; other errors fail."""
    if status.has_error:
        if status.error_class == ErrorClass.MISSING:
            return Severity.WARNING
        return Severity.ERROR
    if status.is_dirty or status.tracking.status == TrackingStatus.GONE:
        return Severity.WARNING
    return Severity.OK


def filter_status(
    status_filter: StatusFilter,
    status: RepositoryStatus,
    inventory: Inventory,
    adapter: VCSAdapter,
) -> bool:
    """Whether a repository belongs in a filtered status report."""
    if status_filter == StatusFilter.ALL:
        return True
    if status_filter == StatusFilter.ERRORS:
        return status.has_error
    if status_filter == StatusFilter.MISSING:
        return status.error_class == ErrorClass.MISSING
    if status_filter == StatusFilter.DIRTY:
        return status.is_dirty
    if status_filter == StatusFilter.CLEAN:
        return not status.has_error and not status.is_dirty
    if status_filter == StatusFilter.GONE:
        return status.tracking.status == TrackingStatus.GONE
    if status_filter == StatusFilter.DIVERGED:
        return status.tracking.status == TrackingStatus.DIVERGED
    if status_filter == StatusFilter.REMOTE_MISMATCH:
        if status.has_error:
            return False
        entry = reconcile.find_entry_for_status(inventory, status)
        return entry is not None and reconcile.has_remote_mismatch(status, entry, adapter)
    return True


class Engine:
    """Scan, status, sync and reconcile operations over one inventory."""

    def __init__(
        self,
        config: Config,
        inventory: Inventory,
        adapter: VCSAdapter | None = None,
        invocation: Invocation | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize Engine.

        Args:
            config: Loaded configuration.
            inventory: Inventory mutated by scan, sync and reconcile.
            adapter: VCS backend, git by default.
            invocation: Per-invocation cancellation and severity.
            clock: Source of timestamps, injectable for tests.
        """
        self.config = config
        self.inventory = inventory
        self.adapter = adapter or GitAdapter()
        self.invocation = invocation or Invocation()
        self.clock = clock

    def inspect_paths(self, paths: list[Path]) -> list[RepositoryStatus]:
        """Inspect repositories concurrently; results sorted by (repo_id, path)."""

        def task(path: Path, ctx: TaskContext) -> RepositoryStatus:
            return inspect_repo(path, self.adapter, ctx)

        def on_error(path: Path, error: BaseException) -> RepositoryStatus:
            status = RepositoryStatus(repo_id=parse.local_repo_id(path), path=path)
            return with_error(status, str(error), classify_error(error))

        return run_many(
            paths,
            task,
            on_error,
            max_parallel=self.config.concurrency,
            per_item_timeout=self.config.timeout_seconds,
            invocation=self.invocation,
        )

    def inspect_entries(self, entries: list[InventoryEntry]) -> list[RepositoryStatus]:
        """Inspect inventory entries; missing ones are reported without git calls.

        Inventory type, labels and annotations are copied onto each status and
        failed inspections keep the inventory's repo_id.
        """
        present = [entry for entry in entries if entry.status != EntryStatus.MISSING]
        inspected = {status.path: status for status in self.inspect_paths([e.path for e in present])}

        statuses: list[RepositoryStatus] = []
        for entry in entries:
            status = inspected.get(entry.path)
            if status is None or entry.status == EntryStatus.MISSING:
                status = RepositoryStatus(repo_id=entry.repo_id, path=entry.path, tracking=Tracking())
                with_error(status, "path missing", ErrorClass.MISSING)
            else:
                status = status.model_copy(deep=True)
                if status.has_error:
                    status.repo_id = entry.repo_id
            status.type = entry.type
            status.labels = dict(entry.labels)
            status.annotations = dict(entry.annotations)
            statuses.append(status)

        statuses.sort(key=lambda s: (s.repo_id, str(s.path)))
        return statuses

    def scan(
        self,
        roots: list[Path] | None = None,
        excludes: list[str] | None = None,
    ) -> list[RepositoryStatus]:
        """Discover repositories and merge them into the inventory.

        Args:
            roots: Directories to walk; the configured roots by default.
            excludes: Exclusion patterns; the configured ones by default.

        Returns:
            One status per discovered repository.
        """
        roots = roots if roots is not None else self.config.roots
        excludes = excludes if excludes is not None else self.config.exclude_patterns

        candidates = list(find_git_repos(roots, excludes, self.config.follow_symlinks))
        logger.info("found %d repositories under %d roots", len(candidates), len(roots))
        statuses = self.inspect_paths([candidate.path for candidate in candidates])

        healthy = []
        for status in statuses:
            if status.has_error:
                logger.warning("not recording %s: %s", status.path, status.error)
                self.invocation.raise_severity(Severity.WARNING)
                continue
            healthy.append(status)

        now = self.clock()
        reconcile_inventory(self.inventory, healthy, now)
        self.inventory.updated_at = now
        return statuses

    def select_entries(
        self, selector: list[labels.LabelRequirement] | None = None
    ) -> list[InventoryEntry]:
        """Copies of the inventory entries whose labels satisfy ``selector``."""
        entries = self.inventory.snapshot()
        if not selector:
            return entries
        return [entry for entry in entries if labels.labels_match(entry.labels, selector)]

    def status(
        self,
        status_filter: StatusFilter = StatusFilter.ALL,
        selector: list[labels.LabelRequirement] | None = None,
    ) -> StatusReport:
        """Inspect the selected inventory entries and build a filtered report.

        The report severity covers every selected repository, including ones
        removed by ``status_filter``.
        """
        statuses = self.inspect_entries(self.select_entries(selector))
        severity = max((status_severity(s) for s in statuses), default=Severity.OK)
        self.invocation.raise_severity(severity)

        repos = [
            s for s in statuses if filter_status(status_filter, s, self.inventory, self.adapter)
        ]
        return StatusReport(generated_at=self.clock(), repos=repos, severity=severity)

    def plan_sync(
        self,
        options: SyncOptions,
        selector: list[labels.LabelRequirement] | None = None,
    ) -> list[SyncResult]:
        """Inspect once and compute the sync plan. Nothing is mutated."""
        entries = self.select_entries(selector)
        statuses = self.inspect_entries(entries)
        return sync.build_plan(statuses, entries, options, self.adapter)

    def label(
        self,
        target: str,
        set_labels: dict[str, str] | None = None,
        remove_keys: list[str] | None = None,
    ) -> InventoryEntry:
        """Set and remove labels on the entry addressed by path or repo_id.

        Removals apply after assignments. ``updated_at`` moves only when the
        labels actually change.

        Raises:
            EntryNotFoundError: If no entry, or several entries, match ``target``.
        """
        matches = self.inventory.lookup(target)
        if not matches:
            raise EntryNotFoundError(f"no inventory entry matches {target!r}")
        if len(matches) > 1:
            paths = ", ".join(str(entry.path) for entry in matches)
            raise EntryNotFoundError(f"{target!r} matches several entries ({paths}); use a path")

        entry = matches[0]
        updated = dict(entry.labels)
        updated.update(set_labels or {})
        for key in remove_keys or []:
            updated.pop(key, None)

        if updated != entry.labels:
            entry.labels = updated
            self.inventory.updated_at = self.clock()
            logger.info("labels of %s set to %s", entry.path, updated)
        return entry

    def execute_sync(
        self,
        plan: list[SyncResult],
        options: SyncOptions,
        confirmed: bool = False,
    ) -> list[SyncResult]:
        """Execute a plan and record re-cloned entries as present.

        Raises:
            ConfirmationRequiredError: If the plan mutates and was not confirmed.
        """
        results = sync.execute_plan(
            plan, self.adapter, options, confirmed=confirmed, invocation=self.invocation
        )

        now = self.clock()
        for result in results:
            if result.ok and result.outcome == OutcomeKind.CLONED:
                entry = self.inventory.find(result.repo_id, result.path)
                if entry is not None:
                    entry.status = EntryStatus.PRESENT
                    entry.last_seen = now

        self.invocation.raise_severity(sync.summarize(results).severity)
        return results

    def plan_remote_mismatch_reconcile(self, mode: ReconcileMode) -> list[RemoteMismatchPlan]:
        if mode == ReconcileMode.NONE:
            return []
        statuses = self.inspect_entries(self.inventory.snapshot())
        return reconcile.build_plans(statuses, self.inventory, self.adapter, mode)

    def apply_remote_mismatch_reconcile(
        self,
        plans: list[RemoteMismatchPlan],
        mode: ReconcileMode,
        confirmed: bool = False,
    ) -> list[RemoteMismatchPlan]:
        applied = reconcile.apply_plans(
            plans,
            self.inventory,
            self.adapter,
            mode,
            confirmed=confirmed,
            now=self.clock(),
            invocation=self.invocation,
            timeout=self.config.timeout_seconds,
        )
        if any(not plan.ok for plan in applied):
            self.invocation.raise_severity(Severity.ERROR)
        return applied

    def plan_upstream_repair(self) -> list[UpstreamRepairPlan]:
        statuses = self.inspect_entries(self.inventory.snapshot())
        return reconcile.plan_upstream_repair(
            statuses, self.inventory, self.config.main_branch
        )

    def apply_upstream_repair(
        self,
        plans: list[UpstreamRepairPlan],
        confirmed: bool = False,
    ) -> list[UpstreamRepairPlan]:
        results = reconcile.apply_upstream_repair(
            plans,
            self.inventory,
            self.adapter,
            confirmed=confirmed,
            now=self.clock(),
            invocation=self.invocation,
            timeout=self.config.timeout_seconds,
        )
        if any(not plan.ok for plan in results):
            self.invocation.raise_severity(Severity.ERROR)
        return results

    def prune_stale(self) -> int:
        """Drop missing entries unseen for ``stale_days``; returns the count."""
        pruned = self.inventory.prune_stale(timedelta(days=self.config.stale_days), now=self.clock())
        if pruned:
            logger.info("pruned %d stale inventory entries", pruned)
        return pruned

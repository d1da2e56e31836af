"""Sync planning and execution for inspected repositories.

Planning is pure: it turns already-collected RepositoryStatus snapshots into
a list of SyncResult items with ``planned=True`` and explicit ``steps``.
Execution runs exactly those steps and never re-inspects.
"""

import fnmatch
import logging
from pathlib import Path

from repokeeper.context import Invocation, TaskContext
from repokeeper.errors import ConfirmationRequiredError, GitError, classify_error
from repokeeper.models import (
    Config,
    EntryStatus,
    ErrorClass,
    InventoryEntry,
    OutcomeKind,
    RepositoryStatus,
    RepoType,
    Severity,
    SyncOptions,
    SyncResult,
    SyncStep,
    SyncSummary,
    TrackingStatus,
)
from repokeeper.orchestrator import run_many, run_one
from repokeeper.vcs import GitAdapter, VCSAdapter

logger = logging.getLogger(__name__)

SKIPPED_LOCAL_UPDATE = "skipped-local-update: "
SKIPPED_NO_UPSTREAM = "skipped-no-upstream"
SKIPPED_UNCONFIRMED = "skipped-unconfirmed"
MISSING = "missing"
MISSING_REMOTE_FOR_CHECKOUT = "missing remote_url for checkout"

FETCH_FAILURE_MESSAGES = {
    ErrorClass.AUTH: "sync-fetch-auth",
    ErrorClass.NETWORK: "sync-fetch-network",
    ErrorClass.TIMEOUT: "sync-fetch-timeout",
    ErrorClass.CORRUPT: "sync-fetch-corrupt",
    ErrorClass.MISSING_REMOTE: "sync-fetch-missing-remote",
}
FETCH_FAILED = "sync-fetch-failed"

STEP_FAILURES = {
    SyncStep.CLONE: OutcomeKind.FAILED_CLONE,
    SyncStep.FETCH: OutcomeKind.FAILED_FETCH,
    SyncStep.STASH: OutcomeKind.FAILED_STASH,
    SyncStep.REBASE: OutcomeKind.FAILED_REBASE,
    SyncStep.STASH_POP: OutcomeKind.FAILED_STASH_POP,
    SyncStep.PUSH: OutcomeKind.FAILED_PUSH,
}


def sync_options_from_config(config: Config, **overrides) -> SyncOptions:
    """Build SyncOptions from config defaults and CLI overrides.

    Args:
        config: Loaded configuration.
        **overrides: SyncOptions fields; None values are ignored.

    Returns:
        SyncOptions for one invocation.
    """
    values = {
        "update_local": config.sync.update_local,
        "push_local": config.sync.push_local,
        "rebase_dirty": config.sync.rebase_dirty,
        "protected_branches": list(config.sync.protected_branches),
        "update_branches": list(config.sync.update_branches),
        "continue_on_error": config.sync.continue_on_error,
        "concurrency": config.concurrency,
        "timeout": config.timeout_seconds,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return SyncOptions(**values)


def matches_branch(branch: str, patterns: list[str]) -> bool:
    """Check a branch name against glob patterns such as ``release/*``."""
    branch = branch.strip()
    if not branch:
        return False
    return any(
        fnmatch.fnmatchcase(branch, pattern.strip()) for pattern in patterns if pattern.strip()
    )


def local_update_skip(
    status: RepositoryStatus, options: SyncOptions
) -> tuple[OutcomeKind, str] | None:
    """Apply the local-update policy in its fixed order.

    Ahead and equal branches are not skips; the caller handles them.

    Args:
        status: Inspected repository.
        options: Sync policy.

    Returns:
        (outcome, reason) when the local update must be skipped, else None.
    """
    branch = status.head.branch
    tracking = status.tracking

    if status.bare:
        return OutcomeKind.SKIPPED_BARE, "bare repository"
    if status.head.detached:
        return OutcomeKind.SKIPPED_DETACHED, "detached HEAD"
    if not matches_branch(branch, options.update_branches):
        return OutcomeKind.SKIPPED_NOT_ALLOWED, f"branch {branch!r} is not in update_branches"
    if matches_branch(branch, options.protected_branches) and not options.allow_protected_rebase:
        return OutcomeKind.SKIPPED_PROTECTED_BRANCH, f"branch {branch!r} is protected"
    if status.worktree is None:
        return OutcomeKind.SKIPPED_DIRTY, "dirty state unknown"
    if status.worktree.dirty and not options.rebase_dirty:
        return OutcomeKind.SKIPPED_DIRTY, "dirty working tree"
    if tracking.status == TrackingStatus.GONE:
        return OutcomeKind.SKIPPED_GONE, "upstream no longer exists"
    if not tracking.upstream or tracking.status == TrackingStatus.NONE:
        return OutcomeKind.SKIPPED_NO_UPSTREAM, "branch is not tracking an upstream"
    if tracking.status == TrackingStatus.DIVERGED and not options.force:
        return (
            OutcomeKind.SKIPPED_DIVERGED,
            "branch has diverged (use --force to rebase anyway)",
        )
    return None


def build_plan(
    statuses: list[RepositoryStatus],
    entries: list[InventoryEntry],
    options: SyncOptions,
    adapter: VCSAdapter | None = None,
) -> list[SyncResult]:
    """Compute the sync plan from one inspection pass.

    No git command runs here. Statuses are matched to entries by path;
    statuses without an entry are planned from the live snapshot alone.

    Args:
        statuses: Inspected repositories.
        entries: Inventory entries to sync.
        options: Sync policy.
        adapter: Backend used to describe the planned commands.

    Returns:
        Plan items sorted by (repo_id, path).
    """
    adapter = adapter or GitAdapter()
    by_path = {status.path: status for status in statuses}

    planned_paths: set[Path] = set()
    plan: list[SyncResult] = []
    for entry in entries:
        planned_paths.add(entry.path)
        plan.append(plan_item(by_path.get(entry.path), entry, options, adapter))
    for status in statuses:
        if status.path not in planned_paths:
            planned_paths.add(status.path)
            plan.append(plan_item(status, None, options, adapter))

    plan.sort(key=lambda item: (item.repo_id, str(item.path)))
    return plan


def plan_item(
    status: RepositoryStatus | None,
    entry: InventoryEntry | None,
    options: SyncOptions,
    adapter: VCSAdapter,
) -> SyncResult:
    """Plan one repository following the sync state machine."""
    if entry is not None:
        repo_id, path = entry.repo_id, entry.path
    elif status is not None:
        repo_id, path = status.repo_id, status.path
    else:
        raise ValueError("plan_item needs a status or an inventory entry")

    item = SyncResult(repo_id=repo_id, path=path, outcome=OutcomeKind.FETCHED, planned=True)

    missing = (
        status is None
        or status.error_class == ErrorClass.MISSING
        or (entry is not None and entry.status == EntryStatus.MISSING)
    )
    if missing:
        return plan_missing(item, entry, options, adapter)

    if status.has_error:
        return item.model_copy(
            update={
                "outcome": OutcomeKind.FAILED_INSPECT,
                "ok": False,
                "error": status.error,
                "error_class": status.error_class or ErrorClass.UNKNOWN,
            }
        )

    if not status.remotes:
        return item.model_copy(
            update={
                "outcome": OutcomeKind.SKIPPED_NO_UPSTREAM,
                "error_class": ErrorClass.SKIPPED,
                "error": SKIPPED_NO_UPSTREAM,
            }
        )

    steps = [SyncStep.FETCH]
    outcome = OutcomeKind.FETCHED
    if options.update_local:
        skip = local_update_skip(status, options)
        if skip is not None:
            outcome, reason = skip
            return finish(
                item,
                steps,
                outcome,
                adapter,
                error_class=ErrorClass.SKIPPED,
                error=SKIPPED_LOCAL_UPDATE + reason,
            )
        steps, outcome = plan_local_update(status, options)

    return finish(item, steps, outcome, adapter)


def plan_local_update(
    status: RepositoryStatus, options: SyncOptions
) -> tuple[list[SyncStep], OutcomeKind]:
    """Steps for a branch that passed the local-update policy."""
    tracking = status.tracking.status
    steps = [SyncStep.FETCH]

    if tracking == TrackingStatus.AHEAD:
        if options.push_local:
            return [*steps, SyncStep.PUSH], OutcomeKind.PUSHED
        return steps, OutcomeKind.FETCHED
    if tracking == TrackingStatus.EQUAL:
        return steps, OutcomeKind.FETCHED

    stash = status.is_dirty and options.rebase_dirty
    if stash:
        steps.append(SyncStep.STASH)
    steps.append(SyncStep.REBASE)
    if stash:
        steps.append(SyncStep.STASH_POP)
    outcome = OutcomeKind.STASHED_REBASED if stash else OutcomeKind.REBASED
    return steps, outcome


def plan_missing(
    item: SyncResult,
    entry: InventoryEntry | None,
    options: SyncOptions,
    adapter: VCSAdapter,
) -> SyncResult:
    """Plan a repository whose path is gone: fail, or re-clone when asked."""
    if not options.checkout_missing or entry is None:
        return item.model_copy(
            update={
                "outcome": OutcomeKind.FAILED,
                "ok": False,
                "error": MISSING,
                "error_class": ErrorClass.MISSING,
            }
        )

    remote_url = (entry.remote_url or "").strip()
    if not remote_url:
        return item.model_copy(
            update={
                "outcome": OutcomeKind.FAILED,
                "ok": False,
                "error": MISSING_REMOTE_FOR_CHECKOUT,
                "error_class": ErrorClass.INVALID,
            }
        )

    item = item.model_copy(
        update={
            "remote_url": remote_url,
            "branch": (entry.branch or "").strip() or None,
            "mirror": entry.type == RepoType.MIRROR,
        }
    )
    return finish(item, [SyncStep.CLONE], OutcomeKind.CLONED, adapter)


def finish(
    item: SyncResult,
    steps: list[SyncStep],
    outcome: OutcomeKind,
    adapter: VCSAdapter,
    error_class: ErrorClass | None = None,
    error: str | None = None,
) -> SyncResult:
    item = item.model_copy(
        update={"steps": steps, "outcome": outcome, "error_class": error_class, "error": error}
    )
    item.action = describe_action(item, adapter)
    return item


def describe_action(item: SyncResult, adapter: VCSAdapter) -> str:
    """Shell-like rendering of every planned step, joined with ``&&``."""
    return " && ".join(adapter.describe_step(step, item) for step in item.steps)


def requires_confirmation(plan: list[SyncResult], assume_yes: bool = False) -> bool:
    """Whether executing ``plan`` needs operator confirmation.

    Fetch-only plans never do; any clone, stash, rebase or push does unless
    ``assume_yes`` is set.
    """
    if assume_yes:
        return False
    return any(item.is_mutating for item in plan)


def decline_mutations(plan: list[SyncResult], adapter: VCSAdapter | None = None) -> list[SyncResult]:
    """Reduce a plan to its non-mutating part after the operator said no.

    Items with mutating steps become ``skipped_unconfirmed`` and keep only
    their fetch step.

    Args:
        plan: Plan from build_plan.
        adapter: Backend used to describe the remaining commands.

    Returns:
        New plan that never requires confirmation.
    """
    adapter = adapter or GitAdapter()
    reduced: list[SyncResult] = []
    for item in plan:
        if not item.is_mutating:
            reduced.append(item.model_copy(deep=True))
            continue
        steps = [step for step in item.steps if step == SyncStep.FETCH]
        reduced.append(
            finish(
                item,
                steps,
                OutcomeKind.SKIPPED_UNCONFIRMED,
                adapter,
                error_class=ErrorClass.SKIPPED,
                error=SKIPPED_UNCONFIRMED,
            )
        )
    return reduced


def execute_plan(
    plan: list[SyncResult],
    adapter: VCSAdapter,
    options: SyncOptions | None = None,
    confirmed: bool = False,
    invocation: Invocation | None = None,
) -> list[SyncResult]:
    """Run exactly the steps of a plan.

    With ``continue_on_error`` every repository runs concurrently and
    failures are collected; otherwise repositories run one at a time in
    (repo_id, path) order and execution stops at the first failure.

    Args:
        plan: Plan from build_plan.
        adapter: VCS backend.
        options: Sync policy; only concurrency, timeout, continue_on_error
            and assume_yes are read here.
        confirmed: Whether the operator confirmed the mutating steps.
        invocation: Owning invocation for cancellation.

    Returns:
        Executed results, sorted by (repo_id, path).

    Raises:
        ConfirmationRequiredError: If the plan mutates and nobody confirmed.
    """
    options = options or SyncOptions()
    if requires_confirmation(plan, options.assume_yes) and not confirmed:
        raise ConfirmationRequiredError(
            "sync plan contains clone, stash, rebase or push steps; confirmation required"
        )
    invocation = invocation or Invocation()

    def task(item: SyncResult, ctx: TaskContext) -> SyncResult:
        return execute_item(item, adapter, ctx)

    if options.continue_on_error:
        return run_many(
            plan,
            task,
            on_error=failed_result,
            max_parallel=options.concurrency,
            per_item_timeout=options.timeout,
            invocation=invocation,
        )

    results: list[SyncResult] = []
    for item in sorted(plan, key=lambda i: (i.repo_id, str(i.path))):
        result = run_one(item.model_copy(deep=True), task, failed_result, options.timeout, invocation)
        results.append(result)
        if not result.ok:
            logger.info("stopping sync after failure in %s", result.path)
            break
    return results


def execute_item(item: SyncResult, adapter: VCSAdapter, ctx: TaskContext | None = None) -> SyncResult:
    """Run the steps of one plan item in order, stopping at the first failure.

    Args:
        item: Planned item.
        adapter: VCS backend.
        ctx: Task context carrying deadline and cancellation.

    Returns:
        The executed result.
    """
    result = item.model_copy(deep=True)
    result.planned = False
    stashed = False

    for step in item.steps:
        try:
            if step == SyncStep.CLONE:
                adapter.clone(
                    item.remote_url or "",
                    Path(item.path),
                    branch=item.branch,
                    mirror=item.mirror,
                    ctx=ctx,
                )
            elif step == SyncStep.FETCH:
                adapter.fetch(item.path, ctx=ctx)
            elif step == SyncStep.STASH:
                stashed = adapter.stash_push(item.path, ctx=ctx)
            elif step == SyncStep.REBASE:
                adapter.pull_rebase(item.path, ctx=ctx)
            elif step == SyncStep.STASH_POP:
                if stashed:
                    adapter.stash_pop(item.path, ctx=ctx)
            elif step == SyncStep.PUSH:
                adapter.push(item.path, ctx=ctx)
        except (GitError, OSError) as e:
            logger.warning("%s failed for %s: %s", step.value, item.path, e)
            return mark_failed(result, step, e)

    if result.outcome == OutcomeKind.STASHED_REBASED and not stashed:
        result.outcome = OutcomeKind.REBASED
    return result


def mark_failed(result: SyncResult, step: SyncStep, error: BaseException) -> SyncResult:
    """Record the failure of ``step`` on an executed result."""
    error_class = classify_error(error) or ErrorClass.UNKNOWN
    result.outcome = STEP_FAILURES[step]
    result.ok = False
    result.error_class = error_class
    if step == SyncStep.FETCH:
        result.error = FETCH_FAILURE_MESSAGES.get(error_class, FETCH_FAILED)
    else:
        result.error = str(error)
    return result


def failed_result(item: SyncResult, error: BaseException) -> SyncResult:
    """Failure result for an item whose task raised or never started."""
    result = item.model_copy(deep=True)
    result.planned = False
    result.outcome = OutcomeKind.FAILED
    result.ok = False
    result.error_class = classify_error(error) or ErrorClass.UNKNOWN
    result.error = str(error)
    return result


def result_severity(result: SyncResult) -> Severity:
    """Missing entries and skips are warnings; other failures are errors."""
    if not result.ok:
        if result.error_class == ErrorClass.MISSING:
            return Severity.WARNING
        return Severity.ERROR
    if result.outcome.is_skip:
        return Severity.WARNING
    return Severity.OK


def summarize(results: list[SyncResult]) -> SyncSummary:
    """Aggregate results into counts and an ordered failure list.

    Args:
        results: Planned or executed results.

    Returns:
        SyncSummary; failures are ordered by (repo_id, path).
    """
    summary = SyncSummary(total=len(results))
    for result in results:
        key = result.outcome.value
        summary.counts[key] = summary.counts.get(key, 0) + 1
        if not result.ok:
            summary.failed += 1
            summary.failures.append(result)
        elif result.outcome.is_skip:
            summary.skipped += 1
        else:
            summary.succeeded += 1
        summary.severity = max(summary.severity, result_severity(result))

    summary.failures.sort(key=lambda r: (r.repo_id, str(r.path)))
    return summary

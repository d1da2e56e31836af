"""Remote-mismatch reconciliation and upstream tracking repair.

Both follow plan-then-apply: ``build_plans`` / ``plan_upstream_repair``
never mutate anything, and the apply functions are gated by the same
confirmation policy as sync.
"""

import logging
from datetime import datetime

from repokeeper.context import Invocation, TaskContext
from repokeeper.errors import ConfirmationRequiredError, classify_error
from repokeeper.inventory import Inventory
from repokeeper.models import (
    EntryStatus,
    ErrorClass,
    InventoryEntry,
    ReconcileMode,
    RemoteMismatchPlan,
    RepositoryStatus,
    TrackingStatus,
    UpstreamRepairPlan,
)
from repokeeper.orchestrator import run_many
from repokeeper.vcs import VCSAdapter

logger = logging.getLogger(__name__)

ACTION_ADOPT_LIVE = "set registry remote_url to live git remote"
ACTION_PUSH_RECORDED = "set git remote URL to registry remote_url"

REPAIR_SET = "set upstream"
REPAIR_DONE = "repaired"
REPAIR_FAILED = "failed"


def parse_reconcile_mode(raw: str | None) -> ReconcileMode:
    """Parse a reconcile mode; empty input means ``none``.

    Raises:
        ValueError: If the value is not none, registry or git.
    """
    value = (raw or "").strip().lower()
    if not value:
        return ReconcileMode.NONE
    try:
        return ReconcileMode(value)
    except ValueError:
        raise ValueError(
            f"unsupported reconcile mode {raw!r} (expected none, registry, or git)"
        ) from None


def find_entry_for_status(inventory: Inventory, status: RepositoryStatus) -> InventoryEntry | None:
    """Inventory entry describing a live repository.

    Matches by (repo_id, path), then by path, then by repo_id.
    """
    entry = inventory.find(status.repo_id, status.path)
    if entry is not None:
        return entry
    entry = inventory.find_by_path(status.path)
    if entry is not None:
        return entry
    matches = inventory.find_by_repo_id(status.repo_id)
    return matches[0] if matches else None


def has_remote_mismatch(
    status: RepositoryStatus, entry: InventoryEntry, adapter: VCSAdapter
) -> bool:
    """Whether the recorded and live primary-remote URLs name different repos."""
    recorded = (entry.remote_url or "").strip()
    live = status.primary_remote_url
    if not recorded or not live:
        return False
    return adapter.normalize_url(recorded) != adapter.normalize_url(live)


def build_plans(
    statuses: list[RepositoryStatus],
    inventory: Inventory,
    adapter: VCSAdapter,
    mode: ReconcileMode,
) -> list[RemoteMismatchPlan]:
    """Propose one correction per repository whose remote drifted.

    Args:
        statuses: Inspected repositories.
        inventory: Inventory holding the recorded URLs.
        adapter: Backend used to normalize URLs.
        mode: ``registry`` adopts the live URL, ``git`` restores the recorded one.

    Returns:
        Plans sorted by (repo_id, path); empty for mode ``none``.
    """
    if mode == ReconcileMode.NONE:
        return []

    plans: list[RemoteMismatchPlan] = []
    for status in statuses:
        if status.has_error:
            continue
        entry = find_entry_for_status(inventory, status)
        if entry is None or not has_remote_mismatch(status, entry, adapter):
            continue

        recorded = (entry.remote_url or "").strip()
        live = status.primary_remote_url
        if mode == ReconcileMode.REGISTRY:
            action, current, target = ACTION_ADOPT_LIVE, recorded, live
        else:
            if not status.primary_remote:
                continue
            action, current, target = ACTION_PUSH_RECORDED, live, recorded

        plans.append(
            RemoteMismatchPlan(
                repo_id=entry.repo_id,
                path=status.path,
                primary_remote=status.primary_remote,
                action=action,
                current_value=current,
                target_value=target,
                recorded_url=recorded,
                live_url=live,
            )
        )

    plans.sort(key=lambda p: (p.repo_id, str(p.path)))
    return plans


def apply_plans(
    plans: list[RemoteMismatchPlan],
    inventory: Inventory,
    adapter: VCSAdapter,
    mode: ReconcileMode,
    confirmed: bool = False,
    now: datetime | None = None,
    invocation: Invocation | None = None,
    timeout: float | None = None,
) -> list[RemoteMismatchPlan]:
    """Apply remote-mismatch plans in one direction.

    ``registry`` rewrites ``remote_url`` and ``last_seen`` in the inventory
    and never touches git; ``git`` runs ``git remote set-url`` and leaves the
    inventory alone.

    Args:
        plans: Plans from build_plans.
        inventory: Inventory to update in registry mode.
        adapter: VCS backend for git mode.
        mode: Reconcile direction.
        confirmed: Whether the operator confirmed.
        now: Timestamp recorded in registry mode.
        invocation: Owning invocation for cancellation.
        timeout: Per-repository timeout in git mode.

    Returns:
        The plans with ``ok``/``error`` filled in.

    Raises:
        ConfirmationRequiredError: If there is something to apply and nobody confirmed.
    """
    if not plans or mode == ReconcileMode.NONE:
        return []
    if not confirmed:
        raise ConfirmationRequiredError("remote reconcile requires confirmation")

    if mode == ReconcileMode.REGISTRY:
        now = now or datetime.now()
        applied = []
        for plan in plans:
            entry = inventory.find(plan.repo_id, plan.path) or inventory.find_by_path(plan.path)
            result = plan.model_copy(deep=True)
            if entry is None:
                result.ok = False
                result.error_class = ErrorClass.MISSING
                result.error = "inventory entry not found"
            else:
                entry.remote_url = plan.live_url
                entry.last_seen = now
                logger.info("recorded remote of %s is now %s", entry.path, plan.live_url)
            applied.append(result)
        return applied

    def task(plan: RemoteMismatchPlan, ctx: TaskContext) -> RemoteMismatchPlan:
        adapter.set_remote_url(plan.path, plan.primary_remote, plan.recorded_url, ctx=ctx)
        logger.info("set %s of %s to %s", plan.primary_remote, plan.path, plan.recorded_url)
        return plan

    def on_error(plan: RemoteMismatchPlan, error: BaseException) -> RemoteMismatchPlan:
        plan.ok = False
        plan.error_class = classify_error(error) or ErrorClass.UNKNOWN
        plan.error = str(error)
        return plan

    return run_many(plans, task, on_error, per_item_timeout=timeout, invocation=invocation)


def plan_upstream_repair(
    statuses: list[RepositoryStatus],
    inventory: Inventory,
    main_branch: str | None = None,
) -> list[UpstreamRepairPlan]:
    """Find branches whose upstream is missing or points somewhere unexpected.

    The target upstream is ``<primary remote>/<branch>`` where the branch is
    the entry's preferred branch, else ``main_branch``, else the current one.

    Args:
        statuses: Inspected repositories.
        inventory: Inventory entries to consider.
        main_branch: Configured main-branch override.

    Returns:
        One plan per inventory entry, sorted by (repo_id, path).
    """
    by_path = {status.path: status for status in statuses}
    plans: list[UpstreamRepairPlan] = []

    for entry in inventory.sorted_entries():
        plan = UpstreamRepairPlan(repo_id=entry.repo_id, path=entry.path)
        plans.append(plan)

        if entry.status == EntryStatus.MISSING:
            plan.action = "skip missing"
            continue
        status = by_path.get(entry.path)
        if status is None:
            plan.action = REPAIR_FAILED
            plan.ok = False
            plan.error_class = ErrorClass.MISSING
            plan.error = "status missing for inventory path"
            continue

        plan.local_branch = status.head.branch
        plan.current_upstream = status.tracking.upstream.strip()
        if status.has_error:
            plan.action = "skip status error"
            plan.error_class = status.error_class
            plan.error = status.error
            continue
        if status.bare or status.head.detached or not status.head.branch.strip():
            plan.action = "skip detached"
            continue
        if not status.primary_remote:
            plan.action = "skip no remote"
            continue

        target_branch = (
            (entry.branch or "").strip() or (main_branch or "").strip() or status.head.branch
        )
        plan.target_upstream = f"{status.primary_remote}/{target_branch}"
        if needs_upstream_repair(status, plan.target_upstream):
            plan.action = REPAIR_SET

    return plans


def needs_upstream_repair(status: RepositoryStatus, target_upstream: str) -> bool:
    target = target_upstream.strip()
    if not target:
        return False
    if status.tracking.upstream.strip() != target:
        return True
    return status.tracking.status == TrackingStatus.NONE


def apply_upstream_repair(
    plans: list[UpstreamRepairPlan],
    inventory: Inventory,
    adapter: VCSAdapter,
    confirmed: bool = False,
    now: datetime | None = None,
    invocation: Invocation | None = None,
    timeout: float | None = None,
) -> list[UpstreamRepairPlan]:
    """Run ``git branch --set-upstream-to`` for every plan that needs it.

    Repaired entries get their preferred branch, ``last_seen`` and status
    updated in the inventory after all workers finish.

    Returns:
        All plans; changed ones carry ``repaired`` or ``failed``.

    Raises:
        ConfirmationRequiredError: If something would change and nobody confirmed.
    """
    pending = [plan for plan in plans if plan.needs_change]
    if pending and not confirmed:
        raise ConfirmationRequiredError("upstream repair requires confirmation")

    def task(plan: UpstreamRepairPlan, ctx: TaskContext) -> UpstreamRepairPlan:
        adapter.set_upstream(plan.path, plan.target_upstream, plan.local_branch, ctx=ctx)
        plan.action = REPAIR_DONE
        return plan

    def on_error(plan: UpstreamRepairPlan, error: BaseException) -> UpstreamRepairPlan:
        plan.action = REPAIR_FAILED
        plan.ok = False
        plan.error_class = classify_error(error) or ErrorClass.UNKNOWN
        plan.error = str(error)
        return plan

    done = run_many(pending, task, on_error, per_item_timeout=timeout, invocation=invocation)

    now = now or datetime.now()
    for plan in done:
        if not plan.ok:
            logger.warning("upstream repair failed for %s: %s", plan.path, plan.error)
            continue
        entry = inventory.find(plan.repo_id, plan.path)
        if entry is not None:
            entry.branch = plan.target_upstream.split("/", 1)[1]
            entry.last_seen = now
            entry.status = EntryStatus.PRESENT

    by_key = {(plan.repo_id, str(plan.path)): plan for plan in done}
    return [by_key.get((plan.repo_id, str(plan.path)), plan) for plan in plans]

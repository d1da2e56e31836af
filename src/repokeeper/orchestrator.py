"""Bounded concurrent execution of per-repository tasks."""

import copy
import logging
import queue
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from repokeeper.context import Invocation, TaskContext
from repokeeper.errors import CancelledError, GitTimeoutError
from repokeeper.models import default_concurrency

logger = logging.getLogger(__name__)

MAX_RESULT_BUFFER = 100

T = TypeVar("T")
R = TypeVar("R")

_STOP = object()


def result_buffer_size(item_count: int) -> int:
    """Capacity of the result queue: one per item, capped."""
    if item_count <= 0:
        return 1
    return min(item_count, MAX_RESULT_BUFFER)


def default_sort_key(result: Any) -> tuple[str, str]:
    """Order results by repo_id, then path."""
    return str(getattr(result, "repo_id", "")), str(getattr(result, "path", ""))


def copy_value(value: T) -> T:
    """Copy a task input or output so workers never share state."""
    model_copy = getattr(value, "model_copy", None)
    if model_copy is not None:
        return model_copy(deep=True)
    return copy.deepcopy(value)


class _WorkerCrash:
    """Carries an exception raised outside any task back to the caller."""

    def __init__(self, error: BaseException) -> None:
        self.error = error


def run_many(
    items: Sequence[T],
    task: Callable[[T, TaskContext], R],
    on_error: Callable[[T, BaseException], R],
    max_parallel: int | None = None,
    per_item_timeout: float | None = None,
    invocation: Invocation | None = None,
    sort_key: Callable[[R], Any] | None = default_sort_key,
) -> list[R]:
    """Run ``task`` over ``items`` on a bounded pool of worker threads.

    Inputs are copied before dispatch and outputs copied on return, so the
    caller can merge results single-threaded. Each task gets its own
    deadline; a timeout or exception affects only that item and is turned
    into a result by ``on_error``. Results are sorted deterministically.

    Args:
        items: Inputs, one per repository.
        task: Callable run in a worker: ``task(item, ctx) -> result``.
        on_error: Builds a failure result from an item and its exception.
        max_parallel: Worker count; defaults to min(8, CPUs).
        per_item_timeout: Seconds each task may run; None for no deadline.
        invocation: Owning invocation; cancelling it stops all tasks.
        sort_key: Key for the final ordering; None keeps completion order.

    Returns:
        One result per item.
    """
    invocation = invocation or Invocation()
    if not items:
        return []

    workers = max(1, min(max_parallel or default_concurrency(), len(items)))
    inbox: queue.Queue = queue.Queue()
    outbox: queue.Queue = queue.Queue(maxsize=result_buffer_size(len(items)))

    for item in items:
        inbox.put(copy_value(item))
    for _ in range(workers):
        inbox.put(_STOP)

    def worker() -> None:
        while True:
            item = inbox.get()
            if item is _STOP:
                return
            try:
                outbox.put(run_one(item, task, on_error, per_item_timeout, invocation))
            except BaseException as e:
                outbox.put(_WorkerCrash(e))

    results: list[R] = []
    crash: _WorkerCrash | None = None
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="repokeeper") as executor:
        futures = [executor.submit(worker) for _ in range(workers)]
        try:
            for _ in range(len(items)):
                result = outbox.get()
                if isinstance(result, _WorkerCrash):
                    crash = crash or result
                    invocation.cancel()
                    continue
                results.append(result)
        except BaseException:
            # Interrupted while waiting: kill in-flight git processes and
            # unblock workers so the pool can shut down.
            invocation.cancel()
            while not all(future.done() for future in futures):
                try:
                    outbox.get(timeout=0.1)
                except queue.Empty:
                    pass
            raise
        for future in futures:
            future.result()

    if crash is not None:
        raise crash.error

    if sort_key is not None:
        results.sort(key=sort_key)
    return results


def run_one(
    item: T,
    task: Callable[[T, TaskContext], R],
    on_error: Callable[[T, BaseException], R],
    per_item_timeout: float | None,
    invocation: Invocation,
) -> R:
    """Run one task with its own deadline and convert failures to results."""
    if invocation.cancelled:
        return on_error(item, CancelledError("invocation cancelled before start"))

    ctx = invocation.task_context(per_item_timeout)
    try:
        result = task(item, ctx)
    except (GitTimeoutError, CancelledError) as e:
        logger.warning("task timed out: %s", e)
        return on_error(item, e)
    except Exception as e:  # noqa: BLE001
        logger.warning("task failed: %s", e, exc_info=logger.isEnabledFor(logging.DEBUG))
        return on_error(item, e)
    return copy_value(result)

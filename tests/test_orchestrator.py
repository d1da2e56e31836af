"""Tests for bounded concurrent execution."""

import threading
import time
from dataclasses import dataclass, field

import pytest

from repokeeper.context import Invocation
from repokeeper.errors import CancelledError, GitTimeoutError
from repokeeper.orchestrator import result_buffer_size, run_many, run_one


@dataclass
class Item:
    repo_id: str
    path: str
    tags: list[str] = field(default_factory=list)


@dataclass
class Outcome:
    repo_id: str
    path: str
    ok: bool = True
    error: str = ""


def succeed(item: Item, ctx) -> Outcome:
    return Outcome(item.repo_id, item.path)


def record_failure(item: Item, error: BaseException) -> Outcome:
    return Outcome(item.repo_id, item.path, ok=False, error=f"{type(error).__name__}: {error}")


def make_items(count: int) -> list[Item]:
    return [Item(repo_id=f"repo-{i:02d}", path=f"/code/{i}") for i in range(count)]


class TestRunMany:
    def test_empty(self):
        assert run_many([], succeed, record_failure) == []

    def test_one_result_per_item_in_sorted_order(self):
        items = list(reversed(make_items(10)))
        results = run_many(items, succeed, record_failure, max_parallel=4)
        assert [r.repo_id for r in results] == [f"repo-{i:02d}" for i in range(10)]

    def test_order_is_independent_of_completion_order(self):
        def slow_first(item: Item, ctx) -> Outcome:
            if item.repo_id == "repo-00":
                time.sleep(0.1)
            return succeed(item, ctx)

        results = run_many(make_items(5), slow_first, record_failure, max_parallel=5)
        assert [r.repo_id for r in results] == [f"repo-{i:02d}" for i in range(5)]

    def test_concurrency_never_exceeds_bound(self):
        lock = threading.Lock()
        running = 0
        peak = 0

        def task(item: Item, ctx) -> Outcome:
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(0.02)
            with lock:
                running -= 1
            return succeed(item, ctx)

        results = run_many(make_items(12), task, record_failure, max_parallel=3)
        assert len(results) == 12
        assert 1 <= peak <= 3

    def test_exception_affects_only_its_item(self):
        def task(item: Item, ctx) -> Outcome:
            if item.repo_id == "repo-02":
                raise RuntimeError("boom")
            return succeed(item, ctx)

        results = run_many(make_items(4), task, record_failure, max_parallel=2)
        failed = [r for r in results if not r.ok]
        assert [r.repo_id for r in failed] == ["repo-02"]
        assert failed[0].error == "RuntimeError: boom"
        assert sum(r.ok for r in results) == 3

    def test_per_item_deadline(self):
        def task(item: Item, ctx) -> Outcome:
            if item.repo_id == "repo-01":
                while not ctx.expired:
                    time.sleep(0.01)
                raise GitTimeoutError("Command timed out", None)
            return succeed(item, ctx)

        results = run_many(make_items(3), task, record_failure, per_item_timeout=0.05)
        by_id = {r.repo_id: r for r in results}
        assert not by_id["repo-01"].ok
        assert "GitTimeoutError" in by_id["repo-01"].error
        assert by_id["repo-00"].ok
        assert by_id["repo-02"].ok

    def test_each_task_gets_its_own_deadline(self):
        seen = []

        def task(item: Item, ctx) -> Outcome:
            seen.append(ctx.deadline)
            time.sleep(0.01)
            return succeed(item, ctx)

        run_many(make_items(3), task, record_failure, max_parallel=1, per_item_timeout=10)
        assert len(set(seen)) == 3

    def test_inputs_are_copied(self):
        items = make_items(2)

        def task(item: Item, ctx) -> Outcome:
            item.tags.append("touched")
            return succeed(item, ctx)

        run_many(items, task, record_failure)
        assert all(item.tags == [] for item in items)

    def test_cancel_marks_remaining_items(self):
        invocation = Invocation()

        def task(item: Item, ctx) -> Outcome:
            if item.repo_id == "repo-00":
                invocation.cancel()
            ctx.check()
            return succeed(item, ctx)

        results = run_many(
            make_items(5), task, record_failure, max_parallel=1, invocation=invocation
        )
        assert len(results) == 5
        assert not any(r.ok for r in results)
        assert all("CancelledError" in r.error for r in results)

    def test_keyboard_interrupt_propagates_and_cancels(self):
        invocation = Invocation()

        def task(item: Item, ctx) -> Outcome:
            if item.repo_id == "repo-01":
                raise KeyboardInterrupt
            return succeed(item, ctx)

        with pytest.raises(KeyboardInterrupt):
            run_many(make_items(4), task, record_failure, max_parallel=2, invocation=invocation)
        assert invocation.cancelled

    def test_large_batches_complete(self):
        results = run_many(make_items(250), succeed, record_failure, max_parallel=8)
        assert len(results) == 250

    def test_unsorted_keeps_all_results(self):
        results = run_many(make_items(6), succeed, record_failure, sort_key=None)
        assert sorted(r.repo_id for r in results) == [f"repo-{i:02d}" for i in range(6)]


class TestRunOne:
    def test_cancelled_before_start(self):
        invocation = Invocation()
        invocation.cancel()
        calls = []
        result = run_one(
            Item("r", "/r"), lambda item, ctx: calls.append(item), record_failure, None, invocation
        )
        assert calls == []
        assert not result.ok
        assert "CancelledError" in result.error

    def test_cancelled_error_is_converted(self):
        def task(item, ctx):
            raise CancelledError("stop")

        result = run_one(Item("r", "/r"), task, record_failure, None, Invocation())
        assert result.error == "CancelledError: stop"


def test_result_buffer_size():
    assert result_buffer_size(0) == 1
    assert result_buffer_size(5) == 5
    assert result_buffer_size(10_000) == 100

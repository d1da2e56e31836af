"""Per-invocation context: cancellation, task deadlines, severity."""

import threading
import time

from repokeeper.errors import CancelledError
from repokeeper.models import Severity


class TaskContext:
    """Deadline and cancellation view handed to one worker task.

    The cancel event is shared with the owning Invocation; the deadline is
    private to the task.
    """

    def __init__(self, cancel_event: threading.Event, deadline: float | None = None) -> None:
        """Initialize TaskContext.

        Args:
            cancel_event: Event set when the whole invocation is cancelled.
            deadline: ``time.monotonic()`` value after which the task times out.
        """
        self.cancel_event = cancel_event
        self.deadline = deadline

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self, cap: float | None = None) -> float | None:
        """Seconds left before the deadline, optionally capped.

        Args:
            cap: Upper bound to apply, e.g. a per-command timeout.

        Returns:
            Remaining seconds (never negative), or None when unbounded.
        """
        left = None if self.deadline is None else max(0.0, self.deadline - time.monotonic())
        if cap is None:
            return left
        if left is None:
            return cap
        return min(left, cap)

    def check(self) -> None:
        """Raise CancelledError if the invocation was cancelled."""
        if self.cancelled:
            raise CancelledError("invocation cancelled")


class Invocation:
    """Explicit state for one command invocation.

    Carries the cancellation signal propagated to every in-flight git
    subprocess and the accumulated severity. It is passed down instead of
    living in module globals so concurrent invocations never interfere.
    """

    def __init__(self) -> None:
        self.cancel_event = threading.Event()
        self.severity = Severity.OK

    def cancel(self) -> None:
        """Cancel the invocation; running git commands are killed."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def task_context(self, timeout: float | None = None) -> TaskContext:
        """Create a context for one task with its own deadline.

        Args:
            timeout: Seconds the task may run, None or <= 0 for no deadline.

        Returns:
            TaskContext sharing this invocation's cancel event.
        """
        deadline = None
        if timeout is not None and timeout > 0:
            deadline = time.monotonic() + timeout
        return TaskContext(self.cancel_event, deadline)

    def raise_severity(self, severity: Severity) -> Severity:
        """Raise the accumulated severity; it never decreases.

        Args:
            severity: Severity observed by the caller.

        Returns:
            The accumulated severity.
        """
        if severity > self.severity:
            self.severity = severity
        return self.severity

    @property
    def exit_code(self) -> int:
        return int(self.severity)

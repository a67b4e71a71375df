"""Cancellable background tasks with exactly-once outcome delivery.

A CancellableTask is a unit of work with ``call()`` and ``cancel()``.
Cancellation is cooperative: ``cancel()`` only sets a flag, and the body
raises TaskCancelled when it notices. The runner turns each execution into
one TaskOutcome and hands it to a TaskListener once, after the body has
returned.

States: CREATED -> RUNNING -> {COMPLETED, CANCELLED, FAILED}. A task
cancelled while still CREATED goes straight to CANCELLED and its body
never runs.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from tmcclient.errors import TaskCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")


class TaskState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.CANCELLED, TaskState.FAILED)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskOutcome(Generic[T]):
    kind: OutcomeKind
    value: Any = None
    error: BaseException | None = None

    @classmethod
    def success(cls, value: Any) -> TaskOutcome:
        return cls(OutcomeKind.SUCCESS, value=value)

    @classmethod
    def cancelled(cls) -> TaskOutcome:
        return cls(OutcomeKind.CANCELLED)

    @classmethod
    def failed(cls, error: BaseException) -> TaskOutcome:
        return cls(OutcomeKind.FAILED, error=error)

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_cancelled(self) -> bool:
        return self.kind == OutcomeKind.CANCELLED

    @property
    def is_failed(self) -> bool:
        return self.kind == OutcomeKind.FAILED

    def unwrap(self) -> Any:
        """Return the value, or raise the captured error / TaskCancelled."""
        if self.kind == OutcomeKind.SUCCESS:
            return self.value
        if self.kind == OutcomeKind.CANCELLED:
            raise TaskCancelled("Task was cancelled")
        raise self.error


_STATE_FOR_OUTCOME = {
    OutcomeKind.SUCCESS: TaskState.COMPLETED,
    OutcomeKind.CANCELLED: TaskState.CANCELLED,
    OutcomeKind.FAILED: TaskState.FAILED,
}


# ── Tasks ───────────────────────────────────────────────────────────


class CancellableTask(Generic[T]):
    """Base class for deferred, cooperatively cancellable work."""

    def __init__(self) -> None:
        self._cancel_requested = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise TaskCancelled(f"{type(self).__name__} cancelled")

    def sleep(self, seconds: float) -> None:
        """Like time.sleep, but returns early once cancel() is called."""
        self._cancel_requested.wait(seconds)

    def cancel(self) -> bool:
        self._cancel_requested.set()
        return True

    def call(self) -> T:
        raise NotImplementedError


class FunctionTask(CancellableTask[T]):
    """Wraps a callable taking the task itself, so it can poll ``cancelled``."""

    def __init__(self, fn: Callable[[CancellableTask], T]):
        super().__init__()
        self.fn = fn

    def call(self) -> T:
        self.check_cancelled()
        return self.fn(self)


class MappedTask(CancellableTask[U]):
    """Runs an inner task and post-processes its result.

    ``on_error`` may translate an exception from the inner task; it must
    either return a value or raise.
    """

    def __init__(self, inner: CancellableTask[T], transform: Callable[[T], U],
                 on_error: Callable[[Exception], U] | None = None):
        super().__init__()
        self.inner = inner
        self.transform = transform
        self.on_error = on_error

    def call(self) -> U:
        try:
            result = self.inner.call()
        except TaskCancelled:
            raise
        except Exception as e:
            if self.on_error is None:
                raise
            return self.on_error(e)
        return self.transform(result)

    def cancel(self) -> bool:
        super().cancel()
        return self.inner.cancel()


# ── Listeners ───────────────────────────────────────────────────────


class TaskListener:
    """Receives exactly one of the three callbacks per task execution."""

    def task_ready(self, value: Any) -> None:
        pass

    def task_cancelled(self) -> None:
        pass

    def task_failed(self, error: BaseException) -> None:
        pass


class CallbackListener(TaskListener):
    def __init__(self, on_ready: Callable[[Any], None] | None = None,
                 on_cancelled: Callable[[], None] | None = None,
                 on_failed: Callable[[BaseException], None] | None = None):
        self.on_ready = on_ready
        self.on_cancelled = on_cancelled
        self.on_failed = on_failed

    def task_ready(self, value: Any) -> None:
        if self.on_ready:
            self.on_ready(value)

    def task_cancelled(self) -> None:
        if self.on_cancelled:
            self.on_cancelled()

    def task_failed(self, error: BaseException) -> None:
        if self.on_failed:
            self.on_failed(error)


# ── Execution ───────────────────────────────────────────────────────


class TaskHandle(Generic[T]):
    """One execution of a task: its state machine and its single outcome."""

    def __init__(self, task: CancellableTask[T], listener: TaskListener | None = None,
                 description: str = ""):
        self.task = task
        self.listener = listener
        self.description = description or type(task).__name__
        self._lock = threading.Lock()
        self._state = TaskState.CREATED
        self._outcome: TaskOutcome | None = None
        self._done = threading.Event()

    @property
    def state(self) -> TaskState:
        with self._lock:
            return self._state

    @property
    def outcome(self) -> TaskOutcome | None:
        with self._lock:
            return self._outcome

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> TaskOutcome | None:
        """Block until the outcome has been delivered. None on timeout."""
        if not self._done.wait(timeout):
            return None
        return self.outcome

    def cancel(self) -> bool:
        with self._lock:
            state = self._state
            if state == TaskState.CREATED:
                self._state = TaskState.CANCELLED
        if state == TaskState.CREATED:
            self.task.cancel()
            logger.debug("Task cancelled before start: %s", self.description)
            self._finish(TaskOutcome.cancelled())
            return True
        if state == TaskState.RUNNING:
            return self.task.cancel()
        return False

    def run(self) -> None:
        with self._lock:
            if self._state != TaskState.CREATED:
                return
            self._state = TaskState.RUNNING

        try:
            outcome = TaskOutcome.success(self.task.call())
        except TaskCancelled:
            outcome = TaskOutcome.cancelled()
        except Exception as e:
            logger.debug("Task failed: %s: %s", self.description, e)
            outcome = TaskOutcome.failed(e)
        except BaseException as e:
            # SystemExit or KeyboardInterrupt: record an outcome, then propagate.
            self._finish(TaskOutcome.failed(e))
            raise
        self._finish(outcome)

    def _finish(self, outcome: TaskOutcome) -> None:
        with self._lock:
            if self._outcome is not None:
                return
            self._outcome = outcome
            self._state = _STATE_FOR_OUTCOME[outcome.kind]
        try:
            self._deliver(outcome)
        finally:
            self._done.set()

    def _deliver(self, outcome: TaskOutcome) -> None:
        if self.listener is None:
            return
        try:
            if outcome.kind == OutcomeKind.SUCCESS:
                self.listener.task_ready(outcome.value)
            elif outcome.kind == OutcomeKind.CANCELLED:
                self.listener.task_cancelled()
            else:
                self.listener.task_failed(outcome.error)
        except Exception:
            logger.warning("Listener for %s raised", self.description, exc_info=True)


def run_task(task: CancellableTask[T], listener: TaskListener | None = None) -> TaskOutcome:
    """Run a task on the calling thread and return its outcome."""
    handle = TaskHandle(task, listener)
    handle.run()
    return handle.outcome


class TaskRunner:
    """Executes tasks on a thread pool.

    The pool bounds how many bodies run at once; tasks beyond that wait in
    CREATED and can still be cancelled without ever running.
    """

    def __init__(self, max_workers: int | None = None, thread_name_prefix: str = "tmc-task"):
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix=thread_name_prefix)

    def start(self, task: CancellableTask[T], listener: TaskListener | None = None,
              description: str = "") -> TaskHandle[T]:
        handle = TaskHandle(task, listener, description)
        logger.debug("Starting task: %s", handle.description)
        try:
            self._executor.submit(handle.run)
        except RuntimeError as e:
            # Runner already shut down; the handle fails instead of staying CREATED.
            logger.warning("Could not start %s: %s", handle.description, e)
            handle._finish(TaskOutcome.failed(e))
        return handle

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> TaskRunner:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)


class TaskGroup:
    """A set of handles that can be joined together, e.g. on shutdown."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: list[TaskHandle] = []

    def add(self, handle: TaskHandle) -> TaskHandle:
        with self._lock:
            self._handles = [h for h in self._handles if not h.done()]
            self._handles.append(handle)
        return handle

    def active(self) -> list[TaskHandle]:
        with self._lock:
            return [h for h in self._handles if not h.done()]

    def cancel_all(self) -> None:
        for handle in self.active():
            handle.cancel()

    def join_all(self, timeout: float | None = None) -> bool:
        """Block until every member is terminal. False if the timeout ran out.

        Waiting only reads task state, so an interrupted wait leaves every
        task untouched.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for handle in self.active():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if handle.wait(remaining) is None:
                return False
        return True

    def __len__(self) -> int:
        return len(self.active())

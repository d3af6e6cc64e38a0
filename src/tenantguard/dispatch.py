"""
Background work dispatch and bounded collaborator calls.

Audit writes and the event logging pipeline run on a single worker
thread so the caller never waits on them. Tasks run in submission order
and are retried until they succeed or exhaust their attempts.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from .errors import CollaboratorTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

_collaborator_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="tenantguard-io")


def call_with_timeout(collaborator: str, timeout: float | None, fn: Callable[..., T], *args: Any) -> T:
    """Run a collaborator call, raising CollaboratorTimeout past ``timeout`` seconds."""
    if timeout is None or timeout <= 0:
        return fn(*args)
    future = _collaborator_pool.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise CollaboratorTimeout(collaborator, timeout) from None


@dataclass
class _Task:
    name: str
    fn: Callable[..., Any]
    args: tuple[Any, ...] = ()
    max_attempts: int | None = None


@dataclass
class DispatcherStats:
    submitted: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    failures: list[str] = field(default_factory=list)


class BackgroundDispatcher:
    """Single-worker queue with at-least-once retry semantics."""

    def __init__(self, max_attempts: int = 3, retry_delay: float = 0.05, name: str = "tenantguard-dispatch"):
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.stats = DispatcherStats()
        self._queue: queue.Queue[_Task | None] = queue.Queue()
        self._stats_lock = threading.Lock()
        self._closed = False
        self._worker = threading.Thread(target=self._run, name=name, daemon=True)
        self._worker.start()

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, max_attempts: int | None = None) -> bool:
        """
        Queue a task. Never raises; returns False once the dispatcher is closed.

        ``max_attempts=1`` runs a task exactly once, for work that is not
        safe to repeat and retries its own fallible steps via ``call_with_retry``.
        """
        if self._closed:
            logger.warning("Dispatcher closed, dropping task %s", name)
            return False
        with self._stats_lock:
            self.stats.submitted += 1
        self._queue.put(_Task(name=name, fn=fn, args=args, max_attempts=max_attempts))
        return True

    def call_with_retry(self, name: str, fn: Callable[..., T], *args: Any, max_attempts: int | None = None) -> T:
        """Run ``fn`` in the calling thread, retrying failures. Re-raises the last error."""
        limit = max(1, max_attempts or self.max_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(*args)
            except Exception:
                if attempt >= limit:
                    raise
                logger.warning("Task %s failed (attempt %d), retrying", name, attempt)
                with self._stats_lock:
                    self.stats.retried += 1
                time.sleep(self.retry_delay)

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is None:
                    return
                self._execute(task)
            finally:
                self._queue.task_done()

    def _execute(self, task: _Task) -> None:
        try:
            self.call_with_retry(task.name, task.fn, *task.args, max_attempts=task.max_attempts)
        except Exception:
            logger.exception("Task %s failed", task.name)
            with self._stats_lock:
                self.stats.failed += 1
                self.stats.failures.append(task.name)
            return
        with self._stats_lock:
            self.stats.completed += 1

    def flush(self, timeout: float | None = 5.0) -> bool:
        """Block until every queued task has run. Returns False on timeout."""
        if timeout is None:
            self._queue.join()
            return True
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def close(self, timeout: float | None = 5.0) -> None:
        if self._closed:
            return
        self.flush(timeout)
        self._closed = True
        self._queue.put(None)
        self._worker.join(timeout)

    @property
    def pending(self) -> int:
        return self._queue.unfinished_tasks

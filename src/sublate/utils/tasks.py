"""Detached task execution with cooperative cancellation.

Each translation run executes as one background task. The runner allows at
most one in-flight task per key (``(project_id, target_lang)``) and hands
back a ``TaskHandle`` the caller can wait on or cancel.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Hashable


class TaskAlreadyRunningError(RuntimeError):
    """Raised when a task is spawned for a key that already has one in flight."""


class TaskCancelledError(RuntimeError):
    """Raised at a checkpoint once the task's token has been cancelled."""


class CancellationToken:
    """Shared flag checked by long-running work between steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TaskCancelledError("task cancelled")


class TaskHandle:
    def __init__(self, key: Hashable, future: Future, token: CancellationToken) -> None:
        self.key = key
        self._future = future
        self.token = token

    def cancel(self) -> None:
        """Request cooperative cancellation; the task stops at its next checkpoint."""
        self.token.cancel()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> Any:
        """Wait for the task and return its result, re-raising its exception."""
        return self._future.result(timeout=timeout)


class TaskRunner:
    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sublate")
        self._active: dict[Hashable, TaskHandle] = {}
        self._lock = threading.Lock()

    def is_running(self, key: Hashable) -> bool:
        with self._lock:
            handle = self._active.get(key)
            return handle is not None and not handle.done()

    def spawn(
        self,
        key: Hashable,
        fn: Callable[[CancellationToken], Any],
        token: CancellationToken | None = None,
    ) -> TaskHandle:
        """Run ``fn(token)`` in the background under ``key``."""
        token = token or CancellationToken()
        with self._lock:
            current = self._active.get(key)
            if current is not None and not current.done():
                raise TaskAlreadyRunningError(f"A task is already running for {key!r}")
            future = self._executor.submit(fn, token)
            handle = TaskHandle(key, future, token)
            self._active[key] = handle
        future.add_done_callback(lambda _f: self._release(key, handle))
        return handle

    def _release(self, key: Hashable, handle: TaskHandle) -> None:
        with self._lock:
            if self._active.get(key) is handle:
                del self._active[key]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

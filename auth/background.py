"""
auth/background.py -- Detached bookkeeping jobs.

Counter updates after a login attempt and notification emails must happen
even if the client disconnects or the request times out. They are submitted
here instead of running inside the request: the request thread returns as
soon as the job is queued, and nothing the request does afterwards can cancel
it.

Every job is wrapped so that an exception is logged and swallowed -- a failed
counter increment must never turn into a failed login response. Each job's
lifetime is bounded by the store timeouts of the calls it makes; jobs that
run longer than task_timeout are logged as slow so a degraded Redis shows up
in the logs.

drain() waits for queued jobs to finish. The app calls it on shutdown; tests
call it before asserting on counter state.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures

logger = logging.getLogger("authguard.background")


class BackgroundRunner:
    def __init__(self, max_workers: int = 4, task_timeout: float = 10.0) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="authguard-bg")
        self._task_timeout = task_timeout
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[..., object], *args, **kwargs) -> Future:
        """Queue fn(*args, **kwargs) as a detached job labelled name for the logs."""
        future = self._executor.submit(self._run, name, fn, args, kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, name: str, fn: Callable[..., object], args: tuple, kwargs: dict) -> None:
        start = time.monotonic()
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception("Background job %s failed", name)
        elapsed = time.monotonic() - start
        if elapsed > self._task_timeout:
            logger.warning("Background job %s took %.1fs (limit %.1fs)", name, elapsed, self._task_timeout)

    def drain(self, timeout: float | None = None) -> bool:
        """Block until every queued job finishes. Returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, timeout: float | None = None) -> None:
        if not self.drain(timeout):
            logger.warning("Shutting down with background jobs still running")
        self._executor.shutdown(wait=False, cancel_futures=True)

"""
Executors Module - Schedulers for evaluation pipelines.
=======================================================

The orchestrator hands each pipeline to a ``concurrent.futures.Executor``
and keeps the returned Future as the run's supervising handle.

- ``create_executor``: thread pool used in production
- ``InlineExecutor``: runs work inside ``submit`` and returns an already
  finished Future; used by tests and synchronous CLI runs
"""

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable


class InlineExecutor(Executor):
    """Executor that runs each callable synchronously in the caller's thread."""

    def __init__(self):
        self._shutdown = False
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")

        future: Future = Future()
        if not future.set_running_or_notify_cancel():
            return future

        try:
            result = fn(*args, **kwargs)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        with self._lock:
            self._shutdown = True


def create_executor(max_workers: int = 4) -> ThreadPoolExecutor:
    """Thread pool for evaluation pipelines (I/O bound on retrieval calls)."""
    return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="kbeval-eval")

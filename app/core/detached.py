"""Fire-and-forget execution for best-effort side effects."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock
from typing import Any, Callable

LOGGER = logging.getLogger(__name__)


class DetachedTaskRunner:
    """Run callables off the request path; failures are logged, never raised.

    ``submit`` returns ``None``; a failed email or activity update never
    reaches the request that scheduled it.
    """

    def __init__(self, *, max_workers: int = 2, thread_name_prefix: str = "detached") -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix=thread_name_prefix,
        )
        self._lock = Lock()
        self._closed = False
        self._failures = 0

    @property
    def failures(self) -> int:
        """Number of detached tasks that raised since startup."""
        return self._failures

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Schedule ``fn`` and forget about it."""
        with self._lock:
            if self._closed:
                LOGGER.warning("detached_task_dropped", extra={"task": name})
                return
            future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(lambda done: self._on_done(name, done))

    def _on_done(self, name: str, future: Future) -> None:
        exc = future.exception()
        if exc is None:
            return
        with self._lock:
            self._failures += 1
        LOGGER.error(
            "detached_task_failed",
            extra={"task": name},
            exc_info=(type(exc), exc, exc.__traceback__),
        )

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for in-flight tasks."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

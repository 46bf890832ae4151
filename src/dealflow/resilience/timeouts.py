"""Bounded-time execution of blocking calls to external collaborators."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class BoundedCaller:
    """Run blocking calls on a worker pool and stop waiting after a timeout.

    A call that exceeds its timeout keeps running on its worker thread, but
    its result is discarded: callers see ``TimeoutError`` and must treat the
    attempt as failed without committing anything.

    Create one per process and call :meth:`shutdown` on teardown.
    """

    def __init__(self, max_workers: int = 16) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="dealflow-io"
        )

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        timeout: float,
        name: str = "external_call",
        **kwargs: Any,
    ) -> T:
        """Invoke ``func(*args, **kwargs)`` and wait at most *timeout* seconds.

        Raises:
            TimeoutError: If no result arrived in time.
            Exception: Whatever *func* raised.
        """
        future = self._executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            future.cancel()
            logger.warning("external_call_timed_out", call=name, timeout=timeout)
            raise

    def shutdown(self) -> None:
        """Stop accepting work; in-flight calls are abandoned."""
        self._executor.shutdown(wait=False, cancel_futures=True)

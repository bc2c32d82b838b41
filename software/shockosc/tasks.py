"""Supervised fire-and-forget work for the loops."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Run callables off the calling loop; failures are logged, never lost."""

    def __init__(self, max_workers: int = 4, name: str = "shockosc-task"):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)

    def spawn(self, label: str, fn: Callable[..., Any], *args: Any) -> Future:
        future = self._executor.submit(fn, *args)
        future.add_done_callback(partial(self._report, label))
        return future

    @staticmethod
    def _report(label: str, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background task '%s' failed: %s", label, exc, exc_info=exc)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

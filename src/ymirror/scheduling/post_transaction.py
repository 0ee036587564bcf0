"""Callbacks that run after a flush transaction commits.

Each callback runs inside the caller-supplied lock.  Failures are logged
and never interrupt the remaining callbacks.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager

logger = logging.getLogger(__name__)


class PostTransactionQueue:
    def __init__(self) -> None:
        self._tasks: list[Callable[[], None]] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def enqueue(self, task: Callable[[], None]) -> None:
        self._tasks.append(task)

    def clear(self) -> None:
        self._tasks = []

    def flush(self, lock: Callable[[], AbstractContextManager]) -> int:
        """Run and drop every queued task.  Returns the number of failures."""
        tasks, self._tasks = self._tasks, []
        failures = 0
        for task in tasks:
            try:
                with lock():
                    task()
            except Exception as exc:
                failures += 1
                logger.warning("ymirror: post-transaction callback failed: %s", exc, exc_info=True)
        return failures

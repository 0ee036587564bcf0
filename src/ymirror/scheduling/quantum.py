"""Scheduling-quantum strategies: when a pending write batch is flushed.

A strategy exposes ``schedule(callback) -> bool``.  It returns ``False``
when it could not arrange for *callback* to run; the caller then keeps its
work pending until an explicit flush.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from ymirror.core.constants import QUANTUM_ASYNCIO, QUANTUM_MANUAL

logger = logging.getLogger(__name__)


class Quantum(Protocol):
    def schedule(self, callback: Callable[[], None]) -> bool: ...


class AsyncioQuantum:
    """Run the callback on the next iteration of the running event loop."""

    def schedule(self, callback: Callable[[], None]) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; pending writes wait for an explicit flush()")
            return False
        loop.call_soon(callback)
        return True


class ManualQuantum:
    """Collect callbacks until :meth:`run_pending` is called.

    Useful in synchronous code and tests, where "end of the current tick"
    is whatever point the caller chooses.
    """

    def __init__(self) -> None:
        self._callbacks: list[Callable[[], None]] = []

    @property
    def pending(self) -> int:
        return len(self._callbacks)

    def schedule(self, callback: Callable[[], None]) -> bool:
        self._callbacks.append(callback)
        return True

    def run_pending(self) -> int:
        """Run callbacks scheduled so far.  Returns how many ran."""
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return len(callbacks)


def quantum_from_name(name: str) -> Quantum:
    """Build the strategy named in config (``asyncio`` or ``manual``)."""
    if name == QUANTUM_ASYNCIO:
        return AsyncioQuantum()
    if name == QUANTUM_MANUAL:
        return ManualQuantum()
    raise ValueError(f"Unknown quantum strategy: '{name}'")

"""Per-mirror synchronization state.

One context owns everything a mirror needs: the identity arena, the write
scheduler, the bridge, the reconciler, the reentrancy flags and the list of
teardown callbacks.  Several contexts may mirror different roots of the same
document; each gets its own origin marker.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from ymirror.bridge.bridge import IdentityBridge
from ymirror.bridge.identity import IdentityArena
from ymirror.core.config import MirrorConfig, resolve_config
from ymirror.core.ids import generate_origin
from ymirror.mirror.leaf import LeafRef
from ymirror.reconcile.reconciler import Reconciler
from ymirror.scheduling.quantum import Quantum, quantum_from_name
from ymirror.scheduling.write_scheduler import WriteScheduler

logger = logging.getLogger(__name__)


class SynchronizationContext:
    def __init__(
        self,
        doc: Any,
        *,
        config: Mapping[str, object] | None = None,
        quantum: Quantum | None = None,
    ) -> None:
        self.doc = doc
        self.config: MirrorConfig = resolve_config(config)
        self.origin = generate_origin()
        self.arena = IdentityArena()
        self.scheduler = WriteScheduler(self, quantum or quantum_from_name(self.config["quantum"]))
        self.bridge = IdentityBridge(self)
        self.reconciler = Reconciler(self)
        self._reconciling = False
        self._flushing = False
        self._disposed = False
        self._disposables: list[Callable[[], None]] = []
        self._delta_paths: frozenset[tuple] = frozenset()

    @property
    def debug(self) -> bool:
        return bool(self.config.get("debug"))

    @property
    def trace(self) -> bool:
        return bool(self.config.get("trace"))

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def is_reconciling(self) -> bool:
        return self._reconciling

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    # -- guards -------------------------------------------------------------

    @contextmanager
    def reconciling(self) -> Iterator[None]:
        """Suppress local-write forwarding while the engine itself edits the mirror."""
        previous = self._reconciling
        self._reconciling = True
        try:
            yield
        finally:
            self._reconciling = previous

    @contextmanager
    def flushing(self) -> Iterator[None]:
        """Mark a transaction committed by this context."""
        previous = self._flushing
        self._flushing = True
        try:
            yield
        finally:
            self._flushing = previous

    @contextmanager
    def delta_pass(self, paths: set[tuple]) -> Iterator[None]:
        """Record the array paths whose delta the current event pass replays."""
        previous = self._delta_paths
        self._delta_paths = frozenset(paths)
        try:
            yield
        finally:
            self._delta_paths = previous

    def has_delta(self, path: tuple) -> bool:
        return path in self._delta_paths

    # -- lifecycle ----------------------------------------------------------

    def register_disposable(self, callback: Callable[[], None]) -> None:
        self._disposables.append(callback)

    def dispose(self) -> None:
        """Stop both directions of propagation.  Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        self.scheduler.clear()
        disposables, self._disposables = self._disposables, []
        for callback in reversed(disposables):
            try:
                callback()
            except Exception as exc:
                logger.warning("ymirror: disposable failed: %s", exc)
        for entry in self.arena.clear():
            if entry.unsubscribe is not None:
                entry.unsubscribe()
            entry.node._ref = None
            for child in entry.node.children():
                if isinstance(child, LeafRef):
                    child.close()
        if self.debug:
            logger.debug("context %s disposed", self.origin)

"""Route deep change events from the shared document to the reconciler.

Events from transactions this context committed itself are ignored.  The
rest are handled parents first.  Each event path is walked through the
mirror tree; where the walk reaches the event's target, keyed targets are
reconciled for the reported keys and indexed targets get their delta
replayed.  Where the walk stops early, the deepest bound node reached (the
reconciliation boundary) gets a full structural check.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ymirror.core.guards import is_indexed, is_keyed, is_leaf
from ymirror.mirror.nodes import MirrorDict, MirrorList, MirrorNode

if TYPE_CHECKING:
    from ymirror.core.context import SynchronizationContext

logger = logging.getLogger(__name__)


class ChangeRouter:
    def __init__(self, context: SynchronizationContext, root: MirrorNode) -> None:
        self.context = context
        self.root = root
        self.handled = 0

    def attach(self, container: Any) -> None:
        """Observe *container* deeply until the context is disposed."""
        subscription = container.observe_deep(self._handle)
        self.context.register_disposable(lambda: container.unobserve(subscription))

    def _handle(self, events: list, txn: Any) -> None:
        context = self.context
        if context.disposed or context.is_flushing:
            return
        if txn.origin == context.origin:
            return

        events = sorted((e for e in events if not is_leaf(e.target)), key=lambda e: len(e.path))
        if not events:
            return
        self.handled += 1
        delta_paths = {tuple(e.path) for e in events if is_indexed(e.target)}

        with context.reconciling(), context.delta_pass(delta_paths):
            for event in events:
                path = tuple(event.path)
                node, reached, complete = self._resolve(path)
                if context.debug:
                    logger.debug("event at %r resolved to %r (complete=%s)", path, reached, complete)
                if not complete:
                    context.reconciler.reconcile_boundary(node, reached, None)
                elif isinstance(node, MirrorList) and is_indexed(event.target):
                    context.reconciler.apply_delta(node, event.delta, path)
                elif isinstance(node, MirrorDict) and is_keyed(event.target):
                    context.reconciler.reconcile_boundary(node, path, set(event.keys))
                else:
                    context.reconciler.reconcile_boundary(node, path, None)

    def _resolve(self, path: tuple) -> tuple[MirrorNode, tuple, bool]:
        """Walk *path* from the root.

        Returns ``(node, reached, complete)``: the deepest bound node on the
        path, the path prefix leading to it, and whether that is the full path.
        """
        node = self.root
        for depth, step in enumerate(path):
            child = None
            if isinstance(node, MirrorDict):
                child = node.get(step) if isinstance(step, str) else None
            elif isinstance(node, MirrorList) and isinstance(step, int) and 0 <= step < len(node):
                child = node[step]
            if not (isinstance(child, MirrorNode) and child.is_bound):
                return node, path[:depth], False
            node = child
        return node, path, True

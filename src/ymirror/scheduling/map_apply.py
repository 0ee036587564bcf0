"""Apply pending keyed writes inside the flush transaction."""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING

from ymirror.bridge.identity import NodeRef
from ymirror.scheduling.batch import PendingEntry
from ymirror.scheduling.post_transaction import PostTransactionQueue

if TYPE_CHECKING:
    from ymirror.core.context import SynchronizationContext

logger = logging.getLogger(__name__)


def apply_map_deletes(context: SynchronizationContext, map_deletes: dict[NodeRef, set[str]]) -> None:
    """Delete keys first so a later set on the same container sees a clean slate."""
    for ref, keys in map_deletes.items():
        entry = context.arena.get(ref)
        if entry is None:
            continue
        container = entry.container
        if context.debug:
            logger.debug("map deletes: handle=%d keys=%s", ref[0], sorted(keys))
        for key in sorted(keys):
            if key in container:
                del container[key]


def apply_map_sets(
    context: SynchronizationContext,
    map_sets: dict[NodeRef, dict[str, PendingEntry]],
    post_queue: PostTransactionQueue,
) -> None:
    for ref, pending in map_sets.items():
        entry = context.arena.get(ref)
        if entry is None:
            continue
        container = entry.container
        if context.debug:
            logger.debug("map sets: handle=%d keys=%s", ref[0], sorted(pending))
        for key, item in pending.items():
            container[key] = item.shared
            if item.after is not None:
                post_queue.enqueue(partial(item.after, item.shared, item.bindings))

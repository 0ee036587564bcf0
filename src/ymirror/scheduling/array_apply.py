"""Apply pending indexed writes inside the flush transaction.

Per array, in this order:

1. replaces, as delete-then-insert at the same index, highest index first;
2. pure deletes, highest index first;
3. pure inserts.  Without deletes, a contiguous run starting at 0 or at the
   current length goes in as one bulk insert.  Otherwise a tail cursor
   appends every insert that originated at or past the batch-start length
   or the lowest deleted index, and the rest are inserted at their
   (clamped) index.

The batch-start length comes from *lengths* when the scheduler recorded
one, so a tail insert stays a tail insert after remote changes to the
array were integrated while it was pending.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from ymirror.bridge.identity import NodeRef
from ymirror.scheduling.batch import PendingEntry
from ymirror.scheduling.post_transaction import PostTransactionQueue

if TYPE_CHECKING:
    from ymirror.core.context import SynchronizationContext

logger = logging.getLogger(__name__)


def apply_array_operations(
    context: SynchronizationContext,
    array_sets: dict[NodeRef, dict[int, PendingEntry]],
    array_deletes: dict[NodeRef, set[int]],
    array_replaces: dict[NodeRef, dict[int, PendingEntry]],
    post_queue: PostTransactionQueue,
    lengths: dict[NodeRef, int] | None = None,
) -> None:
    refs = list(dict.fromkeys([*array_replaces, *array_deletes, *array_sets]))
    for ref in refs:
        entry = context.arena.get(ref)
        if entry is None:
            continue
        array = entry.container
        length_at_start = (lengths or {}).get(ref, len(array))
        sets = array_sets.get(ref, {})
        deletes = array_deletes.get(ref, set())
        replaces = array_replaces.get(ref, {})

        if context.debug:
            logger.debug(
                "array ops: handle=%d length=%d replaces=%s deletes=%s inserts=%s",
                ref[0],
                length_at_start,
                sorted(replaces),
                sorted(deletes),
                sorted(sets),
            )

        _apply_replaces(array, replaces, post_queue)
        _apply_deletes(array, deletes)
        if sets:
            _apply_inserts(array, sets, deletes, length_at_start, post_queue)

        post_queue.enqueue(partial(context.reconciler.finalize_array, entry.node, array))


def _enqueue_after(item: PendingEntry, post_queue: PostTransactionQueue) -> None:
    if item.after is not None:
        post_queue.enqueue(partial(item.after, item.shared, item.bindings))


def _apply_replaces(array: Any, replaces: dict[int, PendingEntry], post_queue: PostTransactionQueue) -> None:
    for index in sorted(replaces, reverse=True):
        item = replaces[index]
        if 0 <= index < len(array):
            del array[index]
            array.insert(min(index, len(array)), item.shared)
        else:
            array.insert(max(0, min(index, len(array))), item.shared)
        _enqueue_after(item, post_queue)


def _apply_deletes(array: Any, deletes: set[int]) -> None:
    for index in sorted(deletes, reverse=True):
        if 0 <= index < len(array):
            del array[index]


def _insert_run(array: Any, index: int, items: list[PendingEntry], post_queue: PostTransactionQueue) -> None:
    for offset, item in enumerate(items):
        array.insert(index + offset, item.shared)
    for item in items:
        _enqueue_after(item, post_queue)


def _try_bulk_insert(array: Any, sets: dict[int, PendingEntry], post_queue: PostTransactionQueue) -> bool:
    indices = sorted(sets)
    first, last = indices[0], indices[-1]
    if last - first + 1 != len(indices):
        return False
    if first == 0:
        _insert_run(array, 0, [sets[i] for i in indices], post_queue)
        return True
    if first == len(array):
        _insert_run(array, len(array), [sets[i] for i in indices], post_queue)
        return True
    return False


def _apply_inserts(
    array: Any,
    sets: dict[int, PendingEntry],
    deletes: set[int],
    length_at_start: int,
    post_queue: PostTransactionQueue,
) -> None:
    if not deletes and _try_bulk_insert(array, sets, post_queue):
        return

    first_delete = min(deletes) if deletes else None
    tail_cursor = len(array)
    for index in sorted(sets):
        item = sets[index]
        append = (
            index >= length_at_start
            or (first_delete is not None and index >= first_delete)
            or index >= len(array)
        )
        target = tail_cursor if append else max(0, min(index, len(array)))
        array.insert(target, item.shared)
        # An in-place insert at or before the cursor shifts the tail too.
        if append or target <= tail_cursor:
            tail_cursor += 1
        _enqueue_after(item, post_queue)

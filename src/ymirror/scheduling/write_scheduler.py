"""Accumulate planned writes for one scheduling quantum and flush them.

Pending writes are keyed by the target node's arena ref, then by key or
index, so repeated writes to the same slot within a quantum collapse to
the last one.  A flush:

1. takes the pending batch and starts a fresh one;
2. plans each list's folded records once, against the shared length
   recorded when its first record of the quantum arrived;
3. merges a leftover delete and insert on the same index into a replace,
   and drops a delete already covered by a replace;
4. purges every pending write aimed at a node inside a subtree this batch
   replaces, deletes or overwrites, from both the batch and whatever has
   been queued since;
5. drops inserts shadowed by a replace on the same index;
6. converts every value, then applies everything in one transaction
   tagged with the context's origin marker: map deletes, map sets, array
   operations;
7. runs post-commit callbacks (upgrades, finalize reconciles, releases)
   under the reentrancy lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING, Any

from ymirror.bridge.identity import NodeRef
from ymirror.core.constants import PHASE_ARRAY_OPERATIONS, PHASE_MAP_DELETES, PHASE_MAP_SETS
from ymirror.core.converter import convert
from ymirror.core.errors import MirrorError, TransactionError, ValidationError
from ymirror.mirror.leaf import LeafRef
from ymirror.mirror.nodes import MirrorNode
from ymirror.mirror.ops import RawOp
from ymirror.planning.array_planner import plan_array_ops
from ymirror.scheduling.array_apply import apply_array_operations
from ymirror.scheduling.batch import AfterCommit, PendingArray, PendingEntry
from ymirror.scheduling.map_apply import apply_map_deletes, apply_map_sets
from ymirror.scheduling.post_transaction import PostTransactionQueue
from ymirror.scheduling.quantum import Quantum

if TYPE_CHECKING:
    from ymirror.core.context import SynchronizationContext

logger = logging.getLogger(__name__)


class _Batch:
    """One quantum's worth of pending writes."""

    def __init__(self) -> None:
        self.map_sets: dict[NodeRef, dict[str, PendingEntry]] = {}
        self.map_deletes: dict[NodeRef, set[str]] = {}
        self.array_sets: dict[NodeRef, dict[int, PendingEntry]] = {}
        self.array_deletes: dict[NodeRef, set[int]] = {}
        self.array_replaces: dict[NodeRef, dict[int, PendingEntry]] = {}
        self.array_ops: dict[NodeRef, PendingArray] = {}
        # Batch-start shared length for each array planned from folded records.
        self.array_lengths: dict[NodeRef, int] = {}
        # Lists whose folded records cancelled out; still checked after the flush.
        self.settle: list[NodeRef] = []
        # id(value) -> value for every mirror node or leaf this batch displaces.
        self.displaced: dict[int, MirrorNode | LeafRef] = {}

    def structures(self) -> tuple[dict, ...]:
        return (
            self.map_sets,
            self.map_deletes,
            self.array_sets,
            self.array_deletes,
            self.array_replaces,
            self.array_ops,
        )

    def __bool__(self) -> bool:
        return any(self.structures())

    def refs(self) -> set[NodeRef]:
        refs: set[NodeRef] = set()
        for structure in self.structures():
            refs.update(structure)
        return refs

    def drop(self, ref: NodeRef) -> bool:
        dropped = False
        for structure in self.structures():
            if structure.pop(ref, None) is not None:
                dropped = True
        return dropped


def _subtree_refs(node: MirrorNode) -> set[NodeRef]:
    refs: set[NodeRef] = set()
    stack = [node]
    seen: set[int] = set()
    while stack:
        current = stack.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        if current._ref is not None:
            refs.add(current._ref)
        stack.extend(child for child in current.children() if isinstance(child, MirrorNode))
    return refs


class WriteScheduler:
    """Per-context write batching."""

    def __init__(self, context: SynchronizationContext, quantum: Quantum) -> None:
        self.context = context
        self.quantum = quantum
        self._batch = _Batch()
        self._scheduled = False
        self.flush_count = 0

    @property
    def has_pending(self) -> bool:
        return bool(self._batch)

    # -- enqueue ------------------------------------------------------------

    def enqueue_map_set(
        self,
        ref: NodeRef,
        key: str,
        value: Any,
        *,
        after: AfterCommit | None = None,
        displaced: Any = None,
    ) -> None:
        self._batch.map_sets.setdefault(ref, {})[key] = PendingEntry(value, after)
        deletes = self._batch.map_deletes.get(ref)
        if deletes is not None:
            deletes.discard(key)
        self._note_displaced(displaced)
        self._schedule()

    def enqueue_map_delete(self, ref: NodeRef, key: str, *, displaced: Any = None) -> None:
        self._batch.map_deletes.setdefault(ref, set()).add(key)
        sets = self._batch.map_sets.get(ref)
        if sets is not None:
            sets.pop(key, None)
        self._note_displaced(displaced)
        self._schedule()

    def enqueue_array_set(self, ref: NodeRef, index: int, value: Any, *, after: AfterCommit | None = None) -> None:
        self._batch.array_sets.setdefault(ref, {})[index] = PendingEntry(value, after)
        self._schedule()

    def enqueue_array_replace(
        self,
        ref: NodeRef,
        index: int,
        value: Any,
        *,
        after: AfterCommit | None = None,
        displaced: Any = None,
    ) -> None:
        self._batch.array_replaces.setdefault(ref, {})[index] = PendingEntry(value, after)
        self._note_displaced(displaced)
        self._schedule()

    def enqueue_array_delete(self, ref: NodeRef, index: int, *, displaced: Any = None) -> None:
        self._batch.array_deletes.setdefault(ref, set()).add(index)
        self._note_displaced(displaced)
        self._schedule()

    def enqueue_array_ops(
        self,
        ref: NodeRef,
        ops: list[RawOp],
        *,
        length: int,
        upgrade: Callable[..., None] | None = None,
    ) -> None:
        """Add one batch of list records; they are planned together at flush.

        *length* is the shared array's current length.  Only the first batch
        of a quantum records it.
        """
        pending = self._batch.array_ops.get(ref)
        if pending is None:
            pending = self._batch.array_ops[ref] = PendingArray(length, upgrade)
        pending.extend(ops)
        self._schedule()

    def shift_array(self, ref: NodeRef | None, at: int, count: int) -> None:
        """Account for a remote insert (or delete, if *count* is negative) of *count* items at *at*."""
        pending = self._batch.array_ops.get(ref) if ref is not None else None
        if pending is not None and count:
            pending.shift(at, count)

    def has_pending_array(self, ref: NodeRef | None) -> bool:
        return ref is not None and ref in self._batch.array_ops

    def pending_keys(self, ref: NodeRef | None) -> set:
        """Keys (or indices) of *ref* with a write still waiting for a flush."""
        if ref is None:
            return set()
        keys: set = set()
        keys.update(self._batch.map_sets.get(ref, ()))
        keys.update(self._batch.map_deletes.get(ref, ()))
        return keys

    def _note_displaced(self, value: Any) -> None:
        self._note_displaced_in(self._batch, value)

    def _schedule(self) -> None:
        if self._scheduled:
            return
        self._scheduled = self.quantum.schedule(self._on_quantum)

    def _on_quantum(self) -> None:
        self._scheduled = False
        try:
            self.flush()
        except MirrorError:
            logger.exception("ymirror: scheduled flush failed")

    def clear(self) -> None:
        """Drop every pending write without applying it."""
        self._batch = _Batch()

    # -- flush --------------------------------------------------------------

    def flush(self) -> bool:
        """Apply pending writes now.  Returns ``True`` if a transaction was committed.

        Raises ``TransactionError`` if applying a phase fails.
        """
        context = self.context
        if context.disposed or context.is_flushing:
            return False
        self._scheduled = False

        batch, self._batch = self._batch, _Batch()
        self._expand_array_ops(batch)
        self._merge_array_ops(batch)
        purged = self._purge(batch)
        self._drop_shadowed_inserts(batch)

        for ref in batch.refs():
            if context.arena.get(ref) is None:
                batch.drop(ref)

        post_queue = PostTransactionQueue()
        release = partial(context.bridge.release_detached, list(batch.displaced.values()))

        if not batch:
            self._enqueue_settle(batch, post_queue)
            if batch.displaced:
                post_queue.enqueue(release)
            post_queue.flush(context.reconciling)
            return False

        self._prepare(batch)
        if context.trace:
            self._trace(batch, purged)

        with context.flushing():
            with context.doc.transaction(origin=context.origin):
                self._run_phase(PHASE_MAP_DELETES, apply_map_deletes, context, batch.map_deletes)
                self._run_phase(PHASE_MAP_SETS, apply_map_sets, context, batch.map_sets, post_queue)
                self._run_phase(
                    PHASE_ARRAY_OPERATIONS,
                    apply_array_operations,
                    context,
                    batch.array_sets,
                    batch.array_deletes,
                    batch.array_replaces,
                    post_queue,
                    batch.array_lengths,
                )
        self.flush_count += 1
        self._enqueue_settle(batch, post_queue)

        # Releases must see the tree after upgrades and finalize reconciles.
        if batch.displaced:
            post_queue.enqueue(release)
        post_queue.flush(context.reconciling)
        return True

    @staticmethod
    def _run_phase(phase: str, apply, *args) -> None:
        try:
            apply(*args)
        except Exception as exc:
            raise TransactionError(phase, exc) from exc

    def _expand_array_ops(self, batch: _Batch) -> None:
        """Plan each list's folded records against its length at quantum start."""
        for ref, pending in batch.array_ops.items():
            if self.context.arena.get(ref) is None:
                continue
            plan = plan_array_ops(pending.net_ops(), pending.length_at_start, debug=self.context.debug)
            if not plan:
                batch.settle.append(ref)
                continue
            batch.array_lengths[ref] = pending.length_at_start
            for index, value in plan.replaces.items():
                entry = PendingEntry(value, self._after(pending, index, value))
                batch.array_replaces.setdefault(ref, {})[index] = entry
                self._note_displaced_in(batch, pending.originals.get(index))
            for index in plan.deletes:
                batch.array_deletes.setdefault(ref, set()).add(index)
                self._note_displaced_in(batch, pending.originals.get(index))
            for index, value in plan.inserts.items():
                entry = PendingEntry(value, self._after(pending, index, value))
                batch.array_sets.setdefault(ref, {})[index] = entry
        batch.array_ops.clear()

    def _enqueue_settle(self, batch: _Batch, post_queue: PostTransactionQueue) -> None:
        for ref in batch.settle:
            entry = self.context.arena.get(ref)
            if entry is not None:
                post_queue.enqueue(partial(self.context.reconciler.finalize_array, entry.node, entry.container))

    @staticmethod
    def _after(pending: PendingArray, index: int, value: Any) -> AfterCommit | None:
        if pending.upgrade is None:
            return None
        return partial(pending.upgrade, index, value)

    @staticmethod
    def _note_displaced_in(batch: _Batch, value: Any) -> None:
        if isinstance(value, (MirrorNode, LeafRef)):
            batch.displaced[id(value)] = value

    @staticmethod
    def _merge_array_ops(batch: _Batch) -> None:
        for ref, deletes in list(batch.array_deletes.items()):
            sets = batch.array_sets.get(ref)
            if sets:
                for index in sorted(deletes):
                    if index in sets:
                        batch.array_replaces.setdefault(ref, {})[index] = sets.pop(index)
                        deletes.discard(index)
                if not sets:
                    del batch.array_sets[ref]
            replaces = batch.array_replaces.get(ref)
            if replaces:
                deletes.difference_update(replaces)
            if not deletes:
                del batch.array_deletes[ref]

    def _purge(self, batch: _Batch) -> int:
        doomed: set[NodeRef] = set()
        for value in batch.displaced.values():
            if isinstance(value, MirrorNode):
                doomed |= _subtree_refs(value)
        purged = 0
        for ref in doomed:
            if batch.drop(ref):
                purged += 1
            if self._batch.drop(ref):
                purged += 1
        if purged and self.context.debug:
            logger.debug("purged pending writes for %d displaced containers", purged)
        return purged

    @staticmethod
    def _drop_shadowed_inserts(batch: _Batch) -> None:
        for ref, replaces in batch.array_replaces.items():
            sets = batch.array_sets.get(ref)
            if not sets:
                continue
            for index in replaces:
                sets.pop(index, None)
            if not sets:
                del batch.array_sets[ref]

    def _prepare(self, batch: _Batch) -> None:
        for structure in (batch.map_sets, batch.array_sets, batch.array_replaces):
            for ref, pending in structure.items():
                owner = self.context.arena.get(ref).node
                for slot in list(pending):
                    item = pending[slot]
                    try:
                        item.shared = convert(item.value, item.bindings, owner)
                    except ValidationError as exc:
                        logger.error("ymirror: dropping write to %r: %s", slot, exc)
                        del pending[slot]

    @staticmethod
    def _trace(batch: _Batch, purged: int) -> None:
        logger.debug(
            "flush intents: map_sets=%s map_deletes=%s array_sets=%s array_deletes=%s array_replaces=%s purged=%d",
            {ref[0]: sorted(keys) for ref, keys in batch.map_sets.items()},
            {ref[0]: sorted(keys) for ref, keys in batch.map_deletes.items()},
            {ref[0]: sorted(keys) for ref, keys in batch.array_sets.items()},
            {ref[0]: sorted(keys) for ref, keys in batch.array_deletes.items()},
            {ref[0]: sorted(keys) for ref, keys in batch.array_replaces.items()},
            purged,
        )

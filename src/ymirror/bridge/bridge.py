"""Identity bridge: one mirror node per shared container, and local writes into the scheduler.

``materialize`` builds (or returns) the mirror node for a shared container.
Every bound node carries a subscription that turns its mutation batches
into pending shared-document operations.  Values are validated before
anything is queued; a rejected key or index is rolled back in the mirror
and the error propagates to the code that made the assignment.

After a flush commits, ``_upgrade`` binds the nodes created by the
conversion to their now-integrated containers, or swaps in freshly
materialized nodes where a value could not be bound in place.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from ymirror.bridge.identity import ArenaEntry
from ymirror.core.constants import is_internal_key
from ymirror.core.converter import Binding, validate
from ymirror.core.errors import ValidationError
from ymirror.core.guards import is_container, is_keyed, is_leaf, is_shared
from ymirror.mirror.leaf import LeafRef
from ymirror.mirror.nodes import MirrorDict, MirrorList, MirrorNode
from ymirror.mirror.ops import UNDEFINED, RawOp
from ymirror.planning.map_planner import plan_map_ops

if TYPE_CHECKING:
    from ymirror.core.context import SynchronizationContext

logger = logging.getLogger(__name__)


class IdentityBridge:
    def __init__(self, context: SynchronizationContext) -> None:
        self.context = context
        self.arena = context.arena

    # -- lookups ------------------------------------------------------------

    def node_of(self, container: Any) -> MirrorNode | None:
        return self.arena.node_of(container)

    def container_of(self, node: MirrorNode) -> Any:
        return self.arena.container_of(node)

    def is_live(self, node: Any) -> bool:
        """``True`` if *node* is bound in this context's arena."""
        return isinstance(node, MirrorNode) and self.arena.get(node._ref) is not None

    # -- materialization ----------------------------------------------------

    def materialize(self, container: Any) -> MirrorNode:
        """Return the mirror node for *container*, building it on first use.

        Containers are recognised by wrapper object.  pycrdt hands out a new
        wrapper on every read and the wrappers carry no identity of the
        shared type behind them, so a wrapper read from the document by the
        caller is not the one the arena holds; passing it builds a second,
        separately bound node.  Reach nodes through the mirror tree (or
        ``container_of``) instead; reconciliation re-points existing nodes
        at newer wrappers by position.
        """
        node = self.arena.node_of(container)
        if node is not None:
            return node
        if is_keyed(container):
            node = MirrorDict({key: self.materialize_value(container[key]) for key in container.keys()})
        else:
            node = MirrorList([self.materialize_value(value) for value in container])
        self.bind(node, container)
        return node

    def materialize_value(self, value: Any) -> Any:
        """Mirror form of a value read from the shared document."""
        if is_container(value):
            return self.materialize(value)
        if is_leaf(value):
            ref = LeafRef(value)
            ref.watch()
            return ref
        return value

    def bind(self, node: MirrorNode, container: Any) -> ArenaEntry:
        """Pair *node* with *container* and start forwarding its local writes."""
        entry = self.arena.register(container, node)
        node._ref = entry.ref
        node._bound_once = True
        entry.unsubscribe = node.subscribe(partial(self._on_local_ops, node))
        if self.context.debug:
            logger.debug("bound %s to handle %d", type(node).__name__, entry.handle)
        return entry

    def rebind(self, node: MirrorNode, container: Any) -> None:
        """Point a bound node at another wrapper for the container it now mirrors."""
        if node._ref is not None:
            self.arena.rebind(node._ref, container)

    # -- release ------------------------------------------------------------

    def release(self, value: Any) -> None:
        """Unbind *value* and everything below it, closing leaf observers."""
        if isinstance(value, LeafRef):
            value.close()
            return
        if not isinstance(value, MirrorNode):
            return
        entry = self.arena.get(value._ref)
        if entry is not None:
            if entry.unsubscribe is not None:
                entry.unsubscribe()
            self.arena.release(entry.ref)
        value._ref = None
        for child in value.children():
            self.release(child)

    def release_detached(self, values: list) -> None:
        """Release every value in *values* that no longer has a parent node."""
        for value in values:
            if isinstance(value, (MirrorNode, LeafRef)) and not value._parents:
                self.release(value)

    # -- local mutations ----------------------------------------------------

    def _on_local_ops(self, node: MirrorNode, ops: list[RawOp]) -> None:
        context = self.context
        if context.disposed or context.is_reconciling:
            return
        entry = self.arena.get(node._ref)
        if entry is None:
            return
        direct = [op for op in ops if op.depth == 1 and not is_internal_key(op.key)]
        nested = [op for op in ops if op.depth > 1]
        if nested:
            self._check_nested(node, nested)
        if not direct:
            return
        if isinstance(node, MirrorDict):
            self._on_map_ops(node, entry, direct)
        else:
            self._on_list_ops(node, entry, direct)

    def _check_nested(self, node: MirrorNode, ops: list[RawOp]) -> None:
        # Only the nearest bound ancestor validates writes into an unbound subtree.
        target: Any = node
        for key in ops[0].path[:-1]:
            target = target[key]
            if not isinstance(target, MirrorNode) or target.is_bound:
                return
        local = [RawOp(op.op, op.path[-1:], op.new_value, op.prev_value) for op in ops]
        try:
            for op in local:
                if op.op != "set" or is_internal_key(op.key):
                    continue
                if isinstance(target, MirrorDict) and not isinstance(op.key, str):
                    raise ValidationError(
                        f"Key {op.key!r} is a {type(op.key).__name__}; keys must be strings.",
                        kind="non-string-key",
                        value=op.key,
                    )
                validate(op.new_value, in_object=isinstance(target, MirrorDict))
        except ValidationError:
            with self.context.reconciling():
                target._revert(local)
            raise

    def _on_map_ops(self, node: MirrorDict, entry: ArenaEntry, ops: list[RawOp]) -> None:
        scheduler = self.context.scheduler
        plan = plan_map_ops(ops)
        first_prev: dict = {}
        for op in ops:
            first_prev.setdefault(op.key, op.prev_value)

        for key in plan.deletes:
            if isinstance(key, str):
                scheduler.enqueue_map_delete(entry.ref, key, displaced=first_prev[key])

        error: ValidationError | None = None
        for key, value in plan.sets.items():
            try:
                if not isinstance(key, str):
                    raise ValidationError(
                        f"Key {key!r} is a {type(key).__name__}; keys must be strings.",
                        kind="non-string-key",
                        value=key,
                    )
                validate(value)
            except ValidationError as exc:
                with self.context.reconciling():
                    node._revert([op for op in ops if op.key == key])
                if error is None:
                    error = exc
                continue
            if value is UNDEFINED:
                value = None
                with self.context.reconciling():
                    node[key] = None
            displaced = first_prev[key]
            scheduler.enqueue_map_set(
                entry.ref,
                key,
                value,
                after=partial(self._upgrade, node, key, value),
                displaced=None if displaced is value else displaced,
            )
        if error is not None:
            raise error

    def _on_list_ops(self, node: MirrorList, entry: ArenaEntry, ops: list[RawOp]) -> None:
        context = self.context
        try:
            for op in ops:
                if op.op == "set":
                    validate(op.new_value, allow_clone=True)
        except ValidationError:
            with context.reconciling():
                node._revert(ops)
            raise

        settled = []
        for op in ops:
            if op.op == "set" and op.new_value is UNDEFINED:
                with context.reconciling():
                    node[op.key] = None
                op = op._replace(new_value=None)
            settled.append(op)
        context.scheduler.enqueue_array_ops(
            entry.ref,
            settled,
            length=len(entry.container),
            upgrade=partial(self._upgrade, node),
        )

    # -- upgrade after commit -----------------------------------------------

    def _upgrade(self, owner: MirrorNode, key: Any, original: Any, shared: Any, bindings: list[Binding]) -> None:
        # Bindings come parent first; once a node is replaced, its descendants' bindings are moot.
        superseded: set[int] = set()
        for binding in bindings:
            if binding.owner is not None and id(binding.owner) in superseded:
                superseded.add(id(binding.node))
                continue
            if binding.fresh:
                if not binding.node.is_bound:
                    self.bind(binding.node, binding.shared)
                    self._settle_children(binding.node)
                    continue
                if self.container_of(binding.node) is binding.shared:
                    continue
                # One unflushed node written to two slots: the other slot bound it first.
                superseded.add(id(binding.node))
            if binding.node is original:
                self._swap(owner, original, self.materialize(binding.shared), key)
            elif binding.owner is not None:
                self._swap(binding.owner, binding.node, self.materialize(binding.shared))
        if isinstance(original, LeafRef) or is_shared(original):
            self._swap(owner, original, self.materialize_value(shared), key)

    def _settle_children(self, node: MirrorNode) -> None:
        for key, child in node.items_with_keys():
            if child is UNDEFINED:
                node[key] = None
            elif is_shared(child):
                node[key] = self.materialize_value(child)

    @staticmethod
    def _swap(owner: MirrorNode, old: Any, new: Any, key: Any = None) -> None:
        """Replace *old* with *new* in *owner*, preferring slot *key* when it still holds *old*."""
        try:
            held = key is not None and owner[key] is old
        except (KeyError, IndexError):
            held = False
        if not held:
            key = owner._key_of(old)
        if key is not None:
            owner[key] = new

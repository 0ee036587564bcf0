"""Bring mirror nodes back in line with their shared containers.

Structural reconciliation compares a node with its container slot by slot:

* keyed nodes take the symmetric difference of keys, re-materialize keys
  the change reported as rewritten, and (on a full check) recurse into
  child containers of the same kind;
* indexed nodes are rebuilt positionally, reusing bound children of the
  same kind so unaffected subtrees keep their identity.

Delta reconciliation replays an array's retain/delete/insert delta on the
mirror so shifted items keep their nodes.  Every write here must happen
inside the context's reconciling lock; callers take it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ymirror.core.constants import is_internal_key
from ymirror.core.guards import is_container, is_indexed, is_keyed, is_leaf
from ymirror.mirror.leaf import LeafRef
from ymirror.mirror.nodes import MirrorDict, MirrorList, MirrorNode, same_value

if TYPE_CHECKING:
    from ymirror.core.context import SynchronizationContext

logger = logging.getLogger(__name__)


def _same_kind(node: Any, container: Any) -> bool:
    return (isinstance(node, MirrorDict) and is_keyed(container)) or (
        isinstance(node, MirrorList) and is_indexed(container)
    )


class Reconciler:
    def __init__(self, context: SynchronizationContext) -> None:
        self.context = context

    @property
    def bridge(self):
        return self.context.bridge

    # -- entry points -------------------------------------------------------

    def reconcile_boundary(self, node: MirrorNode, path: tuple = (), keys: set | None = None) -> None:
        """Reconcile *node* against its own container.

        *keys* lists the keys a change event reported for a keyed node; ``None``
        requests a full check.
        """
        container = self.bridge.container_of(node)
        if container is None:
            return
        if self.context.debug:
            logger.debug("reconcile %s at %r keys=%s", type(node).__name__, path, keys)
        if isinstance(node, MirrorDict):
            self.reconcile_keyed(node, container, path, keys)
        else:
            self.reconcile_indexed(node, container, path)

    def reconcile_container(self, node: MirrorNode, container: Any, path: tuple = ()) -> None:
        """Full check of *node* against *container*, recursing into children."""
        if isinstance(node, MirrorDict):
            self.reconcile_keyed(node, container, path, None)
        else:
            self.reconcile_indexed(node, container, path, force=True)

    # -- keyed --------------------------------------------------------------

    def reconcile_keyed(self, node: MirrorDict, container: Any, path: tuple = (), keys: set | None = None) -> None:
        pending = self.context.scheduler.pending_keys(node._ref)
        shared_keys = set(container.keys())
        mirror_keys = {key for key in node.keys() if not is_internal_key(key)}

        for key in sorted(mirror_keys - shared_keys - pending, key=str):
            dropped = node[key]
            del node[key]
            self._drop(dropped)

        for key in sorted(shared_keys - pending, key=str):
            value = container[key]
            if key not in mirror_keys or (keys is not None and key in keys):
                self._assign(node, key, value)
            elif keys is None:
                current = node[key]
                kept = self._reuse(current, value, path + (key,))
                if kept is not current:
                    node[key] = kept
                    self._drop(current)

    # -- indexed ------------------------------------------------------------

    def reconcile_indexed(
        self,
        node: MirrorList,
        container: Any,
        path: tuple = (),
        *,
        force: bool = False,
        recurse: bool = True,
    ) -> None:
        """Rebuild *node* from *container*.

        Skipped unless *force* for arrays carrying a delta in the current
        pass and for arrays with local writes waiting for a flush.
        """
        if not force and (self.context.has_delta(path) or self.context.scheduler.has_pending_array(node._ref)):
            return
        old = node.children()
        new = []
        for index, value in enumerate(container):
            current = old[index] if index < len(old) else None
            if recurse:
                new.append(self._reuse(current, value, path + (index,)))
            else:
                new.append(self._reuse_shallow(current, value))
        if len(old) == len(new) and all(a is b for a, b in zip(old, new)):
            return
        node.splice(0, len(node), *new)
        kept = {id(value) for value in new}
        for value in old:
            if id(value) not in kept:
                self._drop(value)

    def finalize_array(self, node: MirrorList, container: Any) -> None:
        """Post-flush check that *node* matches *container*; rebuild only on mismatch."""
        if not self.bridge.is_live(node):
            return
        if self._matches(node, container):
            return
        if self.context.debug:
            logger.debug("finalize: rebuilding list of length %d against %d", len(node), len(container))
        self.reconcile_indexed(node, container, force=True)

    # -- delta --------------------------------------------------------------

    def apply_delta(self, node: MirrorList, delta: list[dict], path: tuple = ()) -> None:
        """Replay an array delta on *node*.

        An insert whose items are already in place (the node has the
        container's length and the slots match) is skipped.  Pending local
        list writes are shifted along with each replayed insert or delete.
        A node that does not match its container after the replay is
        rebuilt, unless local writes are pending: those are still in the
        mirror but not yet in the container, and the post-flush finalize
        settles the node.
        """
        container = self.bridge.container_of(node)
        if container is None:
            return
        scheduler = self.context.scheduler

        cursor = 0
        for part in delta:
            if "retain" in part:
                cursor += part["retain"]
            elif "delete" in part:
                removed = node.splice(cursor, part["delete"])
                scheduler.shift_array(node._ref, cursor, -part["delete"])
                for value in removed:
                    self._drop(value)
            elif "insert" in part:
                values = list(part["insert"])
                if len(node) == len(container) and self._slots_match(node[cursor : cursor + len(values)], values):
                    cursor += len(values)
                    continue
                items = [self.bridge.materialize_value(value) for value in values]
                node.splice(cursor, 0, *items)
                scheduler.shift_array(node._ref, cursor, len(items))
                cursor += len(items)

        if self._matches(node, container):
            return
        if scheduler.has_pending_array(node._ref):
            logger.debug("delta replay at %r left local writes pending; finalize settles it", path)
            return
        logger.debug("delta replay diverged at %r; rebuilding", path)
        self.reconcile_indexed(node, container, path, force=True)

    # -- helpers ------------------------------------------------------------

    def _assign(self, node: MirrorDict, key: str, value: Any) -> None:
        current = node.get(key)
        fresh = self.bridge.materialize_value(value)
        if key in node and same_value(current, fresh):
            return
        node[key] = fresh
        self._drop(current)

    def _reuse(self, current: Any, value: Any, path: tuple) -> Any:
        """Keep *current* for *value* when it still fits, else materialize."""
        if is_container(value):
            if isinstance(current, MirrorNode) and current.is_bound and _same_kind(current, value):
                self.bridge.rebind(current, value)
                if isinstance(current, MirrorDict):
                    self.reconcile_keyed(current, value, path, None)
                else:
                    self.reconcile_indexed(current, value, path)
                return current
            return self.bridge.materialize(value)
        return self._reuse_shallow(current, value)

    def _reuse_shallow(self, current: Any, value: Any) -> Any:
        if is_container(value):
            if isinstance(current, MirrorNode) and current.is_bound and _same_kind(current, value):
                self.bridge.rebind(current, value)
                return current
            return self.bridge.materialize(value)
        if is_leaf(value):
            if isinstance(current, LeafRef) and type(current.leaf) is type(value) and str(current) == str(value):
                return current
            return self.bridge.materialize_value(value)
        if same_value(current, value):
            return current
        return value

    def _matches(self, node: MirrorList, container: Any) -> bool:
        if len(node) != len(container):
            return False
        return self._slots_match(node.children(), list(container))

    @staticmethod
    def _slots_match(currents: list, values: list) -> bool:
        if len(currents) != len(values):
            return False
        for current, value in zip(currents, values):
            if is_container(value):
                if not (isinstance(current, MirrorNode) and current.is_bound and _same_kind(current, value)):
                    return False
            elif is_leaf(value):
                if not (isinstance(current, LeafRef) and type(current.leaf) is type(value)):
                    return False
            elif not same_value(current, value):
                return False
        return True

    def _drop(self, value: Any) -> None:
        if isinstance(value, (MirrorNode, LeafRef)) and not value._parents:
            self.bridge.release(value)

"""Observable mutable mirror nodes.

``MirrorDict`` and ``MirrorList`` behave like ``dict`` and ``list``.  Every
mutator changes the node and then synchronously delivers one batch of
:class:`~ymirror.mirror.ops.RawOp` records to the node's subscribers.
An exception raised by a subscriber propagates to the code that called the
mutator.

Batches bubble to parent nodes with the child's key prepended to each path,
so a subscriber on a node sees nested writes as records of depth > 1.

Plain ``dict``/``list`` values assigned into a node are wrapped into new
(unbound) mirror nodes so later nested edits are tracked too.

List mutators emit records in the order an in-place splice would touch
slots: shifted elements are ``set`` at their new index, vacated tail slots
are ``delete``d, and inserted items are ``set`` last.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping, MutableMapping, MutableSequence
from typing import Any

from ymirror.mirror.leaf import LeafRef
from ymirror.mirror.ops import UNDEFINED, RawOp

Subscriber = Callable[[list[RawOp]], None]


class _Hole:
    def __repr__(self) -> str:
        return "<hole>"


_HOLE = _Hole()


def same_value(a: Any, b: Any) -> bool:
    """Return ``True`` if assigning *b* over *a* would change nothing."""
    if a is b:
        return True
    if isinstance(a, (MirrorNode, LeafRef, dict, list)) or isinstance(b, (MirrorNode, LeafRef, dict, list)):
        return False
    return type(a) is type(b) and a == b


def plain(value: Any) -> Any:
    """Deep-copy *value* into plain Python data."""
    if isinstance(value, MirrorNode):
        return value.snapshot()
    if isinstance(value, LeafRef):
        return str(value)
    if value is UNDEFINED:
        return None
    if type(value) is dict:
        return {k: plain(v) for k, v in value.items()}
    if type(value) is list:
        return [plain(v) for v in value]
    return value


class MirrorNode(ABC):
    """Behaviour shared by mirror dicts and lists."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._parents: list[MirrorNode] = []
        # (handle, generation) in the owning context's arena once bound.
        self._ref: tuple[int, int] | None = None
        self._bound_once = False

    # -- subscription -------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call *callback* with every batch of records.  Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            for i, existing in enumerate(self._subscribers):
                if existing is callback:
                    del self._subscribers[i]
                    return

        return unsubscribe

    def _notify(self, ops: list[RawOp]) -> None:
        if not ops:
            return
        for callback in list(self._subscribers):
            callback(ops)
        for parent in list(self._parents):
            key = parent._key_of(self)
            if key is None:
                continue
            parent._notify([RawOp(o.op, (key,) + o.path, o.new_value, o.prev_value) for o in ops])

    # -- binding state ------------------------------------------------------

    @property
    def is_bound(self) -> bool:
        """``True`` while this node mirrors a live shared container."""
        return self._ref is not None

    @property
    def was_bound(self) -> bool:
        """``True`` once the node has mirrored a shared container, even after release."""
        return self._bound_once

    @property
    def parents(self) -> tuple:
        return tuple(self._parents)

    # -- parent bookkeeping -------------------------------------------------

    def _adopt(self, value: Any) -> Any:
        if type(value) is dict:
            value = MirrorDict(value)
        elif type(value) is list:
            value = MirrorList(value)
        if isinstance(value, (MirrorNode, LeafRef)):
            value._parents.append(self)
        return value

    def _orphan(self, value: Any) -> None:
        if isinstance(value, (MirrorNode, LeafRef)):
            for i, parent in enumerate(value._parents):
                if parent is self:
                    del value._parents[i]
                    return

    @abstractmethod
    def _key_of(self, child: Any) -> Any: ...

    @abstractmethod
    def _revert(self, ops: list[RawOp]) -> None: ...

    @abstractmethod
    def snapshot(self) -> Any: ...

    def to_py(self) -> Any:
        """Alias of :meth:`snapshot`."""
        return self.snapshot()

    @abstractmethod
    def children(self) -> Iterable[Any]: ...

    @abstractmethod
    def items_with_keys(self) -> Iterable[tuple[Any, Any]]: ...


# ---------------------------------------------------------------------------
# Keyed node
# ---------------------------------------------------------------------------


class MirrorDict(MirrorNode, MutableMapping):
    """Mutable mapping mirroring a shared ``Map``."""

    def __init__(self, initial: Mapping | None = None) -> None:
        super().__init__()
        self._items: dict = {}
        if initial:
            for key, value in initial.items():
                self._items[key] = self._adopt(value)

    def __getitem__(self, key: Any) -> Any:
        return self._items[key]

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __setitem__(self, key: Any, value: Any) -> None:
        op = self._set(key, value)
        if op is not None:
            self._notify([op])

    def __delitem__(self, key: Any) -> None:
        prev = self._items.pop(key)
        self._orphan(prev)
        self._notify([RawOp("delete", (key,), UNDEFINED, prev)])

    def _set(self, key: Any, value: Any) -> RawOp | None:
        prev = self._items.get(key, UNDEFINED)
        if key in self._items and same_value(prev, value):
            return None
        value = self._adopt(value)
        self._items[key] = value
        self._orphan(prev)
        return RawOp("set", (key,), value, prev)

    def update(self, other: Any = (), /, **kwargs: Any) -> None:
        """Like ``dict.update`` but delivered as a single batch."""
        if isinstance(other, Mapping):
            pairs = list(other.items())
        elif hasattr(other, "keys"):
            pairs = [(k, other[k]) for k in other.keys()]
        else:
            pairs = list(other)
        pairs.extend(kwargs.items())
        ops = [op for op in (self._set(k, v) for k, v in pairs) if op is not None]
        self._notify(ops)

    def clear(self) -> None:
        ops = []
        for key in list(self._items):
            prev = self._items.pop(key)
            self._orphan(prev)
            ops.append(RawOp("delete", (key,), UNDEFINED, prev))
        self._notify(ops)

    def _key_of(self, child: Any) -> Any:
        for key, value in self._items.items():
            if value is child:
                return key
        return None

    def _revert(self, ops: list[RawOp]) -> None:
        undo = []
        for op in reversed(ops):
            key = op.path[0]
            current = self._items.get(key, UNDEFINED)
            if op.prev_value is UNDEFINED:
                if key in self._items:
                    self._orphan(self._items.pop(key))
                    undo.append(RawOp("delete", (key,), UNDEFINED, current))
            else:
                if current is not op.prev_value:
                    self._orphan(current)
                    self._items[key] = op.prev_value
                    if isinstance(op.prev_value, (MirrorNode, LeafRef)):
                        op.prev_value._parents.append(self)
                    undo.append(RawOp("set", (key,), op.prev_value, current))
        self._notify(undo)

    def children(self) -> Iterable[Any]:
        return list(self._items.values())

    def items_with_keys(self) -> Iterable[tuple[Any, Any]]:
        return list(self._items.items())

    def snapshot(self) -> dict:
        """Return a deep plain-``dict`` copy."""
        return {key: plain(value) for key, value in self._items.items()}

    def __repr__(self) -> str:
        state = "bound" if self.is_bound else "unbound"
        return f"MirrorDict({self._items!r}, {state})"


# ---------------------------------------------------------------------------
# Indexed node
# ---------------------------------------------------------------------------


class MirrorList(MirrorNode, MutableSequence):
    """Mutable sequence mirroring a shared ``Array``."""

    def __init__(self, initial: Iterable | None = None) -> None:
        super().__init__()
        self._items: list = []
        if initial:
            self._items = [self._adopt(value) for value in initial]

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            return list(self._items[index])
        return self._items[index]

    def __iter__(self):
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (MirrorList, list)):
            return len(self) == len(other) and all(a == b for a, b in zip(self._items, other))
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def _normalize(self, index: int) -> int:
        if index < 0:
            index += len(self._items)
        if not 0 <= index < len(self._items):
            raise IndexError("list assignment index out of range")
        return index

    def __setitem__(self, index: Any, value: Any) -> None:
        if isinstance(index, slice):
            self._set_slice(index, value)
            return
        index = self._normalize(index)
        prev = self._items[index]
        if same_value(prev, value):
            return
        value = self._adopt(value)
        self._items[index] = value
        self._orphan(prev)
        self._notify([RawOp("set", (index,), value, prev)])

    def _set_slice(self, index: slice, values: Iterable) -> None:
        values = list(values)
        start, stop, step = index.indices(len(self._items))
        if step == 1:
            self.splice(start, max(0, stop - start), *values)
            return
        targets = list(range(start, stop, step))
        if len(targets) != len(values):
            raise ValueError(
                f"attempt to assign sequence of size {len(values)} to extended slice of size {len(targets)}"
            )
        ops = []
        for i, value in zip(targets, values):
            prev = self._items[i]
            if same_value(prev, value):
                continue
            value = self._adopt(value)
            self._items[i] = value
            self._orphan(prev)
            ops.append(RawOp("set", (i,), value, prev))
        self._notify(ops)

    def __delitem__(self, index: Any) -> None:
        if isinstance(index, slice):
            start, stop, step = index.indices(len(self._items))
            if step == 1:
                self.splice(start, max(0, stop - start))
                return
            for i in sorted(range(start, stop, step), reverse=True):
                self.splice(i, 1)
            return
        self.splice(self._normalize(index), 1)

    def insert(self, index: int, value: Any) -> None:
        n = len(self._items)
        if index < 0:
            index = max(0, index + n)
        self.splice(min(index, n), 0, value)

    def append(self, value: Any) -> None:
        self.splice(len(self._items), 0, value)

    def extend(self, values: Iterable) -> None:
        self.splice(len(self._items), 0, *list(values))

    def __iadd__(self, values: Iterable) -> MirrorList:
        self.extend(values)
        return self

    def pop(self, index: int = -1) -> Any:
        if not self._items:
            raise IndexError("pop from empty list")
        index = self._normalize(index)
        item = self._items[index]
        self.splice(index, 1)
        return item

    def clear(self) -> None:
        self.splice(0, len(self._items))

    def reverse(self) -> None:
        self._permute(list(reversed(self._items)))

    def sort(self, *, key: Callable | None = None, reverse: bool = False) -> None:
        self._permute(sorted(self._items, key=key, reverse=reverse))

    def _permute(self, new_items: list) -> None:
        old = self._items
        ops = [RawOp("set", (i,), new, prev) for i, (new, prev) in enumerate(zip(new_items, old)) if new is not prev]
        self._items = new_items
        self._notify(ops)

    def splice(self, start: int, delete_count: int | None = None, *items: Any) -> list:
        """Remove *delete_count* items at *start*, insert *items* there, return the removed items."""
        n = len(self._items)
        if start < 0:
            start = max(0, start + n)
        start = min(start, n)
        if delete_count is None:
            delete_count = n - start
        delete_count = max(0, min(delete_count, n - start))
        new = [self._adopt(value) for value in items]
        removed = self._items[start : start + delete_count]

        work: list = list(self._items)
        ops: list[RawOp] = []
        m, d = len(new), delete_count

        def record(index: int, value: Any) -> None:
            prev = work[index]
            if prev is not value:
                ops.append(RawOp("set", (index,), value, UNDEFINED if prev is _HOLE else prev))
            work[index] = value

        if m < d:
            for k in range(start, n - d):
                record(k + m, work[k + d])
            for k in range(n, n - d + m, -1):
                ops.append(RawOp("delete", (k - 1,), UNDEFINED, work[k - 1]))
                work.pop()
        elif m > d:
            work.extend([_HOLE] * (m - d))
            for k in range(n - d, start, -1):
                record(k + m - 1, work[k + d - 1])
        for j, value in enumerate(new):
            record(start + j, value)

        self._items = work
        for value in removed:
            self._orphan(value)
        self._notify(ops)
        return removed

    def _key_of(self, child: Any) -> Any:
        for i, value in enumerate(self._items):
            if value is child:
                return i
        return None

    def _revert(self, ops: list[RawOp]) -> None:
        before = list(self._items)
        work = list(self._items)
        for op in reversed(ops):
            index = op.path[0]
            if index >= len(work):
                work.extend([_HOLE] * (index + 1 - len(work)))
            work[index] = _HOLE if op.prev_value is UNDEFINED else op.prev_value
        while work and work[-1] is _HOLE:
            work.pop()
        work = [None if value is _HOLE else value for value in work]
        self._replace_items(before, work)

    def _replace_items(self, before: list, after: list) -> None:
        for value in before:
            self._orphan(value)
        for value in after:
            if isinstance(value, (MirrorNode, LeafRef)):
                value._parents.append(self)
        self._items = after
        ops = []
        for i in range(max(len(before), len(after))):
            prev = before[i] if i < len(before) else UNDEFINED
            if i >= len(after):
                ops.append(RawOp("delete", (i,), UNDEFINED, prev))
            elif prev is not after[i]:
                ops.append(RawOp("set", (i,), after[i], prev))
        self._notify(ops)

    def children(self) -> Iterable[Any]:
        return list(self._items)

    def items_with_keys(self) -> Iterable[tuple[Any, Any]]:
        return list(enumerate(self._items))

    def snapshot(self) -> list:
        """Return a deep plain-``list`` copy."""
        return [plain(value) for value in self._items]

    def __repr__(self) -> str:
        state = "bound" if self.is_bound else "unbound"
        return f"MirrorList({self._items!r}, {state})"

"""Pending write entries shared by the scheduler and the apply functions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ymirror.core.converter import Binding
from ymirror.mirror.ops import UNDEFINED, RawOp

AfterCommit = Callable[[Any, list[Binding]], None]


@dataclass
class PendingEntry:
    """A value waiting to be written, plus what to do once it is integrated.

    ``shared`` and ``bindings`` are filled in by the scheduler right before
    the flush transaction opens.
    """

    value: Any
    after: AfterCommit | None = None
    shared: Any = None
    bindings: list[Binding] = field(default_factory=list)


@dataclass
class PendingArray:
    """Every list record a node produced in one quantum, folded per slot.

    Records are in-place slot writes on the list as it stood when each was
    made, so keeping the last record per index yields the net change from
    the quantum-start list to the current one.  ``length_at_start`` is the
    shared array's length when the first record arrived, shifted by remote
    changes integrated since.
    """

    length_at_start: int
    upgrade: Callable[..., None] | None = None
    slots: dict[int, RawOp] = field(default_factory=dict)
    # index -> value the slot held at quantum start (UNDEFINED past the end)
    originals: dict[int, Any] = field(default_factory=dict)

    def extend(self, ops: list[RawOp]) -> None:
        for op in ops:
            self.originals.setdefault(op.key, op.prev_value)
            self.slots[op.key] = op

    def net_ops(self) -> list[RawOp]:
        """Records that still change the quantum-start list."""
        ops = []
        for index in sorted(self.slots):
            op = self.slots[index]
            if op.op == "delete" and index >= self.length_at_start:
                continue
            if op.op == "set" and self.originals.get(index, UNDEFINED) is op.new_value:
                continue
            ops.append(op)
        return ops

    def shift(self, at: int, count: int) -> None:
        """Move slots for *count* items inserted (or, if negative, deleted) remotely at *at*."""
        start = self.length_at_start
        slots: dict[int, RawOp] = {}
        originals: dict[int, Any] = {}
        for index, op in self.slots.items():
            if index < start and index < at:
                moved = index
            elif index < start and count < 0 and index < at - count:
                continue
            else:
                moved = index + count
            slots[moved] = op._replace(path=(moved,) + op.path[1:])
            originals[moved] = self.originals.get(index, UNDEFINED)
        self.slots = slots
        self.originals = originals
        self.length_at_start = max(0, start + count)

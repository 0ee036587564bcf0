"""Classify one batch of keyed mutation records into sets and deletes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ymirror.mirror.ops import RawOp


@dataclass
class MapPlan:
    sets: dict[str, Any] = field(default_factory=dict)
    deletes: set[str] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.sets or self.deletes)


def plan_map_ops(ops: list[RawOp]) -> MapPlan:
    """Last writer wins per key.

    A delete followed by a set on the same key leaves only the set, and a
    set followed by a delete leaves only the delete.  Records deeper than
    one level are ignored.
    """
    plan = MapPlan()
    for op in ops:
        if op.depth != 1:
            continue
        key = op.key
        if op.op == "set":
            plan.sets[key] = op.new_value
            plan.deletes.discard(key)
        elif op.op == "delete":
            plan.deletes.add(key)
            plan.sets.pop(key, None)
    return plan

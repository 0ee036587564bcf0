"""Recover insert/delete/replace intents from flattened list mutation records.

The mirror reports list mutations as per-slot ``set`` and ``delete``
records.  The planner turns one batch of them back into intents:

* a delete and a set on the same index become a replace when the index
  existed at batch start (otherwise the set stays an insert);
* a lone set with no deletes is a replace when in bounds, else an insert;
* with several sets or any deletes, sets at or after the lowest deleted
  index become inserts so splice-style batches keep their order; other
  in-bounds sets are replaces and out-of-bounds sets are inserts;
* remaining deletes are pure deletes.

The result depends only on the set of records, not on their order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ymirror.mirror.ops import RawOp

logger = logging.getLogger(__name__)


@dataclass
class ArrayPlan:
    inserts: dict[int, Any] = field(default_factory=dict)
    deletes: set[int] = field(default_factory=set)
    replaces: dict[int, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.inserts or self.deletes or self.replaces)


def _index_of(op: RawOp) -> int | None:
    if op.depth != 1:
        return None
    index = op.key
    if isinstance(index, bool):
        return None
    if isinstance(index, int):
        return index
    if isinstance(index, str) and index.isdigit():
        return int(index)
    return None


def plan_array_ops(ops: list[RawOp], length_at_start: int, *, debug: bool = False) -> ArrayPlan:
    """Classify *ops* against the shared array length at batch start."""
    sets_by_index: dict[int, Any] = {}
    deletes_by_index: set[int] = set()

    for op in ops:
        index = _index_of(op)
        if index is None:
            continue
        if op.op == "set":
            sets_by_index[index] = op.new_value
        elif op.op == "delete":
            deletes_by_index.add(index)

    plan = ArrayPlan()
    original_deletes = set(deletes_by_index)

    for index in sorted(original_deletes):
        if index in sets_by_index:
            deletes_by_index.discard(index)
            if index < length_at_start:
                plan.replaces[index] = sets_by_index.pop(index)

    remaining = sorted(sets_by_index)
    if len(remaining) == 1 and not original_deletes:
        index = remaining[0]
        if index < length_at_start:
            plan.replaces[index] = sets_by_index[index]
        else:
            plan.inserts[index] = sets_by_index[index]
    else:
        lowest_delete = min(original_deletes) if original_deletes else None
        for index in remaining:
            value = sets_by_index[index]
            if lowest_delete is not None and index >= lowest_delete:
                plan.inserts[index] = value
            elif index < length_at_start:
                plan.replaces[index] = value
            else:
                plan.inserts[index] = value

    plan.deletes = deletes_by_index

    if debug:
        logger.debug(
            "array plan: length=%d inserts=%s deletes=%s replaces=%s",
            length_at_start,
            sorted(plan.inserts),
            sorted(plan.deletes),
            sorted(plan.replaces),
        )
    return plan

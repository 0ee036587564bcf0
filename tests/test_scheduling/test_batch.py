"""Tests for folding list records across one quantum."""

from __future__ import annotations

from ymirror.mirror.nodes import MirrorList
from ymirror.mirror.ops import UNDEFINED, RawOp
from ymirror.scheduling.batch import PendingArray


def _fold(start: list, *edits) -> tuple[PendingArray, MirrorList]:
    node = MirrorList(start)
    pending = PendingArray(len(start))
    node.subscribe(pending.extend)
    for edit in edits:
        edit(node)
    return pending, node


def _net(pending: PendingArray) -> dict:
    return {op.key: (op.op, op.new_value) for op in pending.net_ops()}


class TestNetOps:
    def test_last_record_per_slot_wins(self) -> None:
        pending, node = _fold(["a", "b", "c"], lambda xs: xs.insert(0, "x"), lambda xs: xs.__delitem__(2))
        assert node.snapshot() == ["x", "a", "c"]
        assert _net(pending) == {0: ("set", "x"), 1: ("set", "a")}

    def test_delete_past_the_start_length_is_dropped(self) -> None:
        pending, _ = _fold(["a"], lambda xs: xs.append("b"), lambda xs: xs.pop())
        assert pending.net_ops() == []

    def test_slot_restored_to_its_original_is_dropped(self) -> None:
        pending, _ = _fold(["a", "b"], lambda xs: xs.insert(0, "x"), lambda xs: xs.pop(0))
        assert pending.net_ops() == []

    def test_shrinking_keeps_tail_deletes(self) -> None:
        pending, node = _fold(["a", "b", "c"], lambda xs: xs.pop(), lambda xs: xs.pop())
        assert node.snapshot() == ["a"]
        assert _net(pending) == {1: ("delete", UNDEFINED), 2: ("delete", UNDEFINED)}

    def test_originals_are_kept_from_the_first_record(self) -> None:
        pending, _ = _fold(["a", "b"], lambda xs: xs.__setitem__(0, "x"), lambda xs: xs.__setitem__(0, "y"))
        assert pending.originals == {0: "a"}
        assert _net(pending) == {0: ("set", "y")}


class TestShift:
    def test_remote_insert_before_a_tail_append(self) -> None:
        pending = PendingArray(3)
        pending.extend([RawOp("set", (3,), "d", UNDEFINED)])
        pending.shift(0, 1)
        assert pending.length_at_start == 4
        assert _net(pending) == {4: ("set", "d")}
        assert pending.slots[4].path == (4,)

    def test_remote_insert_after_an_edited_slot(self) -> None:
        pending = PendingArray(3)
        pending.extend([RawOp("set", (0,), "x", "a")])
        pending.shift(2, 2)
        assert _net(pending) == {0: ("set", "x")}
        assert pending.length_at_start == 5

    def test_remote_delete_drops_edits_to_deleted_slots(self) -> None:
        pending = PendingArray(3)
        pending.extend([RawOp("set", (1,), "x", "b"), RawOp("set", (2,), "y", "c"), RawOp("set", (3,), "t", UNDEFINED)])
        pending.shift(1, -1)
        assert _net(pending) == {1: ("set", "y"), 2: ("set", "t")}
        assert pending.originals[1] == "c"
        assert pending.length_at_start == 2

"""Tests for the keyed planner."""

from __future__ import annotations

from ymirror.mirror.ops import UNDEFINED, RawOp
from ymirror.planning.map_planner import plan_map_ops


def _set(key, value, prev=UNDEFINED) -> RawOp:
    return RawOp("set", (key,), value, prev)


def _delete(key, prev=None) -> RawOp:
    return RawOp("delete", (key,), UNDEFINED, prev)


class TestPlanMapOps:
    def test_set(self) -> None:
        plan = plan_map_ops([_set("a", 1)])
        assert plan.sets == {"a": 1}
        assert plan.deletes == set()

    def test_last_set_wins(self) -> None:
        plan = plan_map_ops([_set("a", 1), _set("a", 2)])
        assert plan.sets == {"a": 2}

    def test_delete_then_set_is_set(self) -> None:
        plan = plan_map_ops([_delete("a"), _set("a", 3)])
        assert plan.sets == {"a": 3}
        assert plan.deletes == set()

    def test_set_then_delete_is_delete(self) -> None:
        plan = plan_map_ops([_set("a", 3), _delete("a")])
        assert plan.sets == {}
        assert plan.deletes == {"a"}

    def test_nested_records_ignored(self) -> None:
        plan = plan_map_ops([RawOp("set", ("a", "b"), 1, UNDEFINED)])
        assert not plan

    def test_independent_keys(self) -> None:
        plan = plan_map_ops([_set("a", 1), _delete("b"), _set("c", 2)])
        assert plan.sets == {"a": 1, "c": 2}
        assert plan.deletes == {"b"}

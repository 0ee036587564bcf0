"""Tests for the handle-addressed identity arena."""

from __future__ import annotations

import pytest

from ymirror.bridge.identity import IdentityArena


class Thing:
    """Stand-in for a container or node; identity is all the arena looks at."""


@pytest.fixture()
def arena() -> IdentityArena:
    return IdentityArena()


class TestRegister:
    def test_lookup_both_ways(self, arena: IdentityArena) -> None:
        container, node = Thing(), Thing()
        entry = arena.register(container, node)
        assert arena.node_of(container) is node
        assert arena.container_of(node) is container
        assert arena.get(entry.ref) is entry
        assert arena.entry_of(node) is entry

    def test_duplicate_container_rejected(self, arena: IdentityArena) -> None:
        container = Thing()
        arena.register(container, Thing())
        with pytest.raises(ValueError, match="Container"):
            arena.register(container, Thing())

    def test_duplicate_node_rejected(self, arena: IdentityArena) -> None:
        node = Thing()
        arena.register(Thing(), node)
        with pytest.raises(ValueError, match="Node"):
            arena.register(Thing(), node)

    def test_unknown_lookups_are_none(self, arena: IdentityArena) -> None:
        assert arena.node_of(Thing()) is None
        assert arena.container_of(Thing()) is None
        assert arena.get(None) is None


class TestRelease:
    def test_release_drops_both_sides(self, arena: IdentityArena) -> None:
        container, node = Thing(), Thing()
        entry = arena.register(container, node)
        arena.release(entry.ref)
        assert arena.node_of(container) is None
        assert arena.container_of(node) is None
        assert len(arena) == 0

    def test_stale_ref_resolves_to_nothing(self, arena: IdentityArena) -> None:
        old = arena.register(Thing(), Thing())
        arena.release(old.ref)
        new = arena.register(Thing(), Thing())
        assert new.handle == old.handle
        assert new.generation == old.generation + 1
        assert arena.get(old.ref) is None
        assert arena.get(new.ref) is new

    def test_release_twice_is_harmless(self, arena: IdentityArena) -> None:
        entry = arena.register(Thing(), Thing())
        assert arena.release(entry.ref) is entry
        assert arena.release(entry.ref) is None

    def test_clear_returns_every_entry(self, arena: IdentityArena) -> None:
        for _ in range(3):
            arena.register(Thing(), Thing())
        assert len(arena.clear()) == 3
        assert len(arena) == 0


class TestRebind:
    def test_rebind_moves_container_side(self, arena: IdentityArena) -> None:
        old, new, node = Thing(), Thing(), Thing()
        entry = arena.register(old, node)
        arena.rebind(entry.ref, new)
        assert arena.container_of(node) is new
        assert arena.node_of(new) is node
        assert arena.node_of(old) is None

    def test_rebind_stale_ref_is_ignored(self, arena: IdentityArena) -> None:
        entry = arena.register(Thing(), Thing())
        arena.release(entry.ref)
        arena.rebind(entry.ref, Thing())
        assert len(arena) == 0

"""Handle-addressed arena pairing shared containers with their mirror nodes.

Each materialized container gets one entry holding both sides.  Entries are
addressed by ``(handle, generation)`` refs; a released handle is reused with
a bumped generation so stale refs held by pending operations resolve to
nothing instead of to an unrelated node.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

NodeRef = tuple[int, int]


@dataclass
class ArenaEntry:
    handle: int
    generation: int
    container: Any
    node: Any
    unsubscribe: Callable[[], None] | None = None

    @property
    def ref(self) -> NodeRef:
        return (self.handle, self.generation)


class IdentityArena:
    """Bidirectional container <-> node lookup owned by one context."""

    def __init__(self) -> None:
        self._entries: dict[int, ArenaEntry] = {}
        self._generations: dict[int, int] = {}
        self._free: list[int] = []
        self._next_handle = 0
        # id() keys stay valid because entries hold strong references.
        self._by_container: dict[int, int] = {}
        self._by_node: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ArenaEntry]:
        return iter(list(self._entries.values()))

    def register(self, container: Any, node: Any) -> ArenaEntry:
        """Create an entry for a container/node pair.

        Raises ``ValueError`` if either side is already registered.
        """
        if id(container) in self._by_container:
            raise ValueError("Container is already registered")
        if id(node) in self._by_node:
            raise ValueError("Node is already registered")
        if self._free:
            handle = self._free.pop()
        else:
            handle = self._next_handle
            self._next_handle += 1
        generation = self._generations.get(handle, 0)
        entry = ArenaEntry(handle, generation, container, node)
        self._entries[handle] = entry
        self._by_container[id(container)] = handle
        self._by_node[id(node)] = handle
        return entry

    def get(self, ref: NodeRef | None) -> ArenaEntry | None:
        """Resolve *ref*, or ``None`` if it was released."""
        if ref is None:
            return None
        handle, generation = ref
        entry = self._entries.get(handle)
        if entry is None or entry.generation != generation:
            return None
        return entry

    def node_of(self, container: Any) -> Any:
        handle = self._by_container.get(id(container))
        return None if handle is None else self._entries[handle].node

    def container_of(self, node: Any) -> Any:
        handle = self._by_node.get(id(node))
        return None if handle is None else self._entries[handle].container

    def entry_of(self, node: Any) -> ArenaEntry | None:
        handle = self._by_node.get(id(node))
        return None if handle is None else self._entries[handle]

    def rebind(self, ref: NodeRef, container: Any) -> None:
        """Point an entry at another wrapper object for the same shared container."""
        entry = self.get(ref)
        if entry is None or entry.container is container:
            return
        del self._by_container[id(entry.container)]
        entry.container = container
        self._by_container[id(container)] = entry.handle

    def release(self, ref: NodeRef) -> ArenaEntry | None:
        """Drop an entry and retire its generation."""
        entry = self.get(ref)
        if entry is None:
            return None
        del self._entries[entry.handle]
        del self._by_container[id(entry.container)]
        del self._by_node[id(entry.node)]
        self._generations[entry.handle] = entry.generation + 1
        self._free.append(entry.handle)
        return entry

    def clear(self) -> list[ArenaEntry]:
        """Drop every entry and return them."""
        entries = list(self._entries.values())
        for entry in entries:
            self.release(entry.ref)
        return entries

"""Version-counted wrapper around a shared leaf value (Text and the Xml types).

The mirror never copies a leaf's content.  It holds a ``LeafRef`` that
forwards reads and edits to the live shared object and bumps ``version``
every time the leaf changes, so mirror subscribers are told about edits
made through the leaf's own API.
"""

from __future__ import annotations

from typing import Any

from ymirror.core.constants import LEAF_VERSION_KEY
from ymirror.mirror.ops import RawOp


class LeafRef:
    """Forwarding decorator over one shared leaf."""

    def __init__(self, leaf: Any) -> None:
        self._leaf = leaf
        self._version = 0
        self._parents: list = []
        self._subscription = None

    @property
    def leaf(self) -> Any:
        return self._leaf

    @property
    def version(self) -> int:
        return self._version

    @property
    def watching(self) -> bool:
        return self._subscription is not None

    def watch(self) -> None:
        """Start counting changes of the underlying leaf."""
        if self._subscription is None:
            self._subscription = self._leaf.observe(self._on_change)

    def close(self) -> None:
        """Stop observing the leaf.  Safe to call more than once."""
        if self._subscription is not None:
            self._leaf.unobserve(self._subscription)
            self._subscription = None

    def _on_change(self, event) -> None:
        self._version += 1
        op = RawOp("set", (LEAF_VERSION_KEY,), self._version, self._version - 1)
        for parent in list(self._parents):
            key = parent._key_of(self)
            if key is not None:
                parent._notify([RawOp(op.op, (key,) + op.path, op.new_value, op.prev_value)])

    # -- forwarding ---------------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        if name == "_leaf":
            raise AttributeError(name)
        return getattr(self._leaf, name)

    def __str__(self) -> str:
        return str(self._leaf)

    def __len__(self) -> int:
        return len(self._leaf)

    def __iadd__(self, value: Any) -> LeafRef:
        self._leaf += value
        return self

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LeafRef):
            return self._leaf is other._leaf or str(self) == str(other)
        if isinstance(other, str):
            return str(self) == other
        return NotImplemented

    __hash__ = object.__hash__

    def __repr__(self) -> str:
        return f"LeafRef({type(self._leaf).__name__}, {str(self._leaf)!r}, version={self._version})"

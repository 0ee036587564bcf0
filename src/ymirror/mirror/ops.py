"""Raw mutation records emitted by mirror nodes."""

from __future__ import annotations

from typing import Any, NamedTuple


class _Undefined:
    """Marker for an absent value (a missing key, or a slot past the end)."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()


class RawOp(NamedTuple):
    """One flattened mutation: ``("set" | "delete", path, new_value, prev_value)``.

    ``path`` is relative to the node that delivers the record; a path of
    length 1 addresses a direct key/index of that node.
    """

    op: str
    path: tuple
    new_value: Any
    prev_value: Any

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def key(self) -> Any:
        return self.path[0]

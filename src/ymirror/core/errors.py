"""Exception types raised by the mirror engine.

Every message starts with ``[ymirror]`` so callers can match on it.
Validation errors carry a ``kind`` naming the rejected shape:

    undefined-in-object, function, bigint, non-finite, non-plain,
    non-string-key, reparenting
"""

from __future__ import annotations

VALIDATION_KINDS = frozenset(
    {
        "undefined-in-object",
        "function",
        "bigint",
        "non-finite",
        "non-plain",
        "non-string-key",
        "reparenting",
    }
)

_HINTS = {
    "undefined-in-object": "Use None instead, or omit the key.",
    "function": "Store data only; keep callables in application code.",
    "bigint": "Convert the integer to a string, or keep it within the signed 64-bit range.",
    "non-finite": "Replace inf/nan with None or a string representation.",
    "non-plain": "Convert to plain dict/list/str/int/float/bool/None first (e.g. datetime.isoformat()).",
    "non-string-key": "Dictionary keys must be strings.",
    "reparenting": "Deep-copy the value before assigning it to a new location.",
}


class MirrorError(Exception):
    """Base class for all mirror engine errors."""

    def __init__(self, message: str) -> None:
        super().__init__(f"[ymirror] {message}")


class ValidationError(MirrorError):
    """Raised when a value cannot be stored in the shared document.

    The offending mirror key/index has already been rolled back when the
    error reaches the caller.
    """

    def __init__(self, message: str, *, kind: str, value: object = None) -> None:
        if kind not in VALIDATION_KINDS:
            raise ValueError(f"Unknown validation kind: '{kind}'")
        super().__init__(message)
        self.kind = kind
        self.value = value

    @property
    def hint(self) -> str:
        return _HINTS[self.kind]


class ReparentError(ValidationError):
    """Raised when a shared container that is already attached is assigned again."""

    def __init__(self, message: str, *, value: object = None) -> None:
        super().__init__(message, kind="reparenting", value=value)


class TransactionError(MirrorError):
    """Raised when applying a flush to the shared document fails."""

    def __init__(self, phase: str, cause: BaseException) -> None:
        super().__init__(f"Transaction failed during {phase}: {cause}")
        self.phase = phase
        self.cause = cause

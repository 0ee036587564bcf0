"""Validation and conversion between plain/mirror values and pycrdt values.

``validate`` never mutates anything; ``convert`` runs only on values that
passed validation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from pycrdt import Array, Map, Text

from ymirror.core.constants import INT64_MAX, INT64_MIN
from ymirror.core.errors import ReparentError, ValidationError
from ymirror.core.guards import is_attached, is_container, is_leaf, is_shared
from ymirror.mirror.leaf import LeafRef
from ymirror.mirror.nodes import MirrorDict, MirrorNode
from ymirror.mirror.ops import UNDEFINED


@dataclass
class Binding:
    """A mirror node paired with the shared value created for it by :func:`convert`.

    ``fresh`` nodes were never bound and can adopt *shared* in place once it is
    integrated.  Other nodes were cloned, and *owner* is the mirror node that
    holds them and must swap in a new node.
    """

    node: MirrorNode
    shared: Any
    owner: MirrorNode | None
    fresh: bool


def _describe(value: Any) -> str:
    return type(value).__name__


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate(value: Any, *, in_object: bool = False, allow_clone: bool = False) -> None:
    """Raise ``ValidationError`` if *value* cannot be stored in a shared document.

    Args:
        value: Candidate value, possibly nested.
        in_object: ``True`` when *value* is the value of a dict entry, where
            ``UNDEFINED`` is not allowed.  At the top level and inside lists
            ``UNDEFINED`` is accepted and later stored as ``None``.
        allow_clone: Accept an attached Text leaf by copying it.  Used for
            list slots, where shifting items re-writes every later slot.
    """
    _validate(value, in_object, set(), cloning=allow_clone)


def _validate(value: Any, in_object: bool, seen: set[int], *, cloning: bool) -> None:
    if value is UNDEFINED:
        if in_object:
            raise ValidationError(
                "UNDEFINED is not allowed inside objects. Use None or omit the key.",
                kind="undefined-in-object",
                value=value,
            )
        return
    if value is None or isinstance(value, (bool, str)):
        return
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise ValidationError(
                f"Integer {value} is outside the signed 64-bit range.",
                kind="bigint",
                value=value,
            )
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(
                f"Non-finite float {value!r} cannot be stored.",
                kind="non-finite",
                value=value,
            )
        return
    if isinstance(value, LeafRef):
        if cloning and isinstance(value.leaf, Text):
            return
        raise ReparentError(
            f"{_describe(value.leaf)} is already attached to a document and cannot be re-parented.",
            value=value,
        )
    if is_shared(value):
        if is_attached(value):
            raise ReparentError(
                f"{_describe(value)} is already attached to a document and cannot be re-parented.",
                value=value,
            )
        return

    marker = id(value)
    if marker in seen:
        raise ValidationError("Circular reference detected.", kind="non-plain", value=value)

    if isinstance(value, MirrorNode):
        seen.add(marker)
        _validate_children(value, seen, cloning=cloning or value.was_bound)
        seen.discard(marker)
        return
    if type(value) is dict or type(value) is list:
        seen.add(marker)
        _validate_children(value, seen, cloning=cloning)
        seen.discard(marker)
        return
    if callable(value):
        raise ValidationError(
            f"Callable {getattr(value, '__name__', _describe(value))} cannot be stored.",
            kind="function",
            value=value,
        )
    raise ValidationError(
        f"Unsupported type {_describe(value)}; only dict, list, str, int, float, bool and None can be stored.",
        kind="non-plain",
        value=value,
    )


def _validate_children(container: Any, seen: set[int], *, cloning: bool) -> None:
    if isinstance(container, (dict, MirrorDict)):
        for key, child in container.items():
            if not isinstance(key, str):
                raise ValidationError(
                    f"Key {key!r} is a {_describe(key)}; keys must be strings.",
                    kind="non-string-key",
                    value=key,
                )
            _validate(child, True, seen, cloning=cloning)
    else:
        for child in container:
            _validate(child, False, seen, cloning=cloning)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def convert(value: Any, bindings: list[Binding] | None = None, owner: MirrorNode | None = None) -> Any:
    """Turn a validated value into something pycrdt can store.

    Plain containers become preliminary ``Map``/``Array`` values.  Unbound
    mirror nodes are converted from their current content; nodes that were
    bound before are deep-cloned first, since one shared container cannot be
    attached twice.  Every (node, shared) pair created is appended to
    *bindings*.
    """
    if bindings is None:
        bindings = []
    if value is UNDEFINED or value is None:
        return None
    if isinstance(value, (bool, str, int, float)):
        return value
    if isinstance(value, LeafRef):
        return _clone_leaf(value)
    if is_shared(value):
        return value
    if isinstance(value, MirrorNode):
        if value.was_bound:
            shared = _from_plain(clone_plain(value))
            bindings.append(Binding(value, shared, owner, fresh=False))
            return shared
        binding = Binding(value, None, owner, fresh=True)
        bindings.append(binding)
        if isinstance(value, MirrorDict):
            shared = Map({k: convert(v, bindings, value) for k, v in value.items_with_keys()})
        else:
            shared = Array([convert(v, bindings, value) for v in value.children()])
        binding.shared = shared
        return shared
    if type(value) is dict:
        return Map({k: convert(v, bindings, owner) for k, v in value.items()})
    if type(value) is list:
        return Array([convert(v, bindings, owner) for v in value])
    raise ValidationError(f"Cannot convert {_describe(value)}.", kind="non-plain", value=value)


def clone_plain(node: MirrorNode) -> Any:
    """Deep-copy a mirror node to plain data, cloning Text leaves as new ``Text`` values."""
    if isinstance(node, MirrorDict):
        return {k: _clone_child(v) for k, v in node.items_with_keys()}
    return [_clone_child(v) for v in node.children()]


def _clone_child(value: Any) -> Any:
    if isinstance(value, MirrorNode):
        return clone_plain(value)
    if isinstance(value, LeafRef):
        return _clone_leaf(value)
    if value is UNDEFINED:
        return None
    return value


def _clone_leaf(ref: LeafRef) -> Any:
    if isinstance(ref.leaf, Text):
        return Text(str(ref.leaf))
    raise ReparentError(
        f"{_describe(ref.leaf)} cannot be copied; only Text leaves can be cloned.",
        value=ref,
    )


def _from_plain(value: Any) -> Any:
    if type(value) is dict:
        return Map({k: _from_plain(v) for k, v in value.items()})
    if type(value) is list:
        return Array([_from_plain(v) for v in value])
    return value


# ---------------------------------------------------------------------------
# Read-back
# ---------------------------------------------------------------------------


def plain_from_mirror(node: MirrorNode) -> Any:
    """Deep-copy a mirror node to plain data without touching shared state."""
    return node.snapshot()


def to_plain(value: Any) -> Any:
    """Convert a value read from a shared document into plain Python data."""
    if is_container(value):
        return value.to_py()
    if is_leaf(value):
        return str(value)
    return value

"""Type guards over pycrdt shared types.

All knowledge of how pycrdt represents integration state lives here.
"""

from __future__ import annotations

from pycrdt import Array, Map, Text, XmlElement, XmlFragment, XmlText

KEYED_TYPES = (Map,)
INDEXED_TYPES = (Array,)
CONTAINER_TYPES = (Map, Array)
# Shared scalars with their own mutation API; wrapped, never mirrored recursively.
LEAF_TYPES = (Text, XmlFragment, XmlElement, XmlText)
SHARED_TYPES = CONTAINER_TYPES + LEAF_TYPES


def is_keyed(value: object) -> bool:
    return isinstance(value, KEYED_TYPES)


def is_indexed(value: object) -> bool:
    return isinstance(value, INDEXED_TYPES)


def is_container(value: object) -> bool:
    return isinstance(value, CONTAINER_TYPES)


def is_leaf(value: object) -> bool:
    return isinstance(value, LEAF_TYPES)


def is_shared(value: object) -> bool:
    return isinstance(value, SHARED_TYPES)


def is_attached(value: object) -> bool:
    """Return ``True`` if *value* is a shared type already integrated in a document.

    Preliminary types (built with ``Map({...})`` etc. and not yet inserted)
    return ``False``.
    """
    return is_shared(value) and getattr(value, "_integrated", None) is not None

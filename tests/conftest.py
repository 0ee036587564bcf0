"""Shared test fixtures."""

from __future__ import annotations

import pytest
from pycrdt import Array, Doc, Map

from ymirror.scheduling.quantum import ManualQuantum
from ymirror.synced import create_synced_proxy


def get_map_root(doc: Doc) -> Map:
    return doc.get("root", type=Map)


def get_array_root(doc: Doc) -> Array:
    return doc.get("root", type=Array)


def sync(source: Doc, target: Doc) -> None:
    """Deliver every change *target* has not seen yet from *source*."""
    target.apply_update(source.get_update(target.get_state()))


@pytest.fixture()
def doc() -> Doc:
    return Doc()


@pytest.fixture()
def remote_doc() -> Doc:
    return Doc()


@pytest.fixture()
def quantum() -> ManualQuantum:
    """A deferral strategy the test drains explicitly."""
    return ManualQuantum()


@pytest.fixture()
def synced(doc: Doc, quantum: ManualQuantum):
    """A mirror over a Map root; disposed after the test."""
    handle = create_synced_proxy(doc, get_map_root, quantum=quantum)
    yield handle
    handle.dispose()


@pytest.fixture()
def synced_list(doc: Doc, quantum: ManualQuantum):
    """A mirror over an Array root; disposed after the test."""
    handle = create_synced_proxy(doc, get_array_root, quantum=quantum)
    yield handle
    handle.dispose()


@pytest.fixture()
def remote_root(remote_doc: Doc) -> Map:
    return get_map_root(remote_doc)


@pytest.fixture()
def relay():
    """Return the one-way sync helper: ``relay(source_doc, target_doc)``."""
    return sync

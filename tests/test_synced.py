"""End-to-end tests for synced proxies."""

from __future__ import annotations

import logging

import pytest
from pycrdt import Array, Doc, Map, Text

from ymirror import (
    UNDEFINED,
    LeafRef,
    ManualQuantum,
    MirrorError,
    ValidationError,
    create_synced_proxy,
    synced_text,
)


def _map_root(doc: Doc) -> Map:
    return doc.get("root", type=Map)


def _array_root(doc: Doc) -> Array:
    return doc.get("root", type=Array)


@pytest.fixture()
def peer_quantum() -> ManualQuantum:
    return ManualQuantum()


@pytest.fixture()
def peer(remote_doc: Doc, peer_quantum: ManualQuantum):
    """A second mirror over the remote document, with its own quantum."""
    handle = create_synced_proxy(remote_doc, _map_root, quantum=peer_quantum)
    yield handle
    handle.dispose()


class TestScenarios:
    def test_push_then_edit_is_one_transaction(self, synced_list, doc: Doc, quantum) -> None:
        origins: list = []
        root = _array_root(doc)
        subscription = root.observe_deep(lambda events, txn: origins.append(txn.origin))

        synced_list.proxy.append({"id": 1})
        synced_list.proxy[0]["vote"] = 2
        quantum.run_pending()

        assert _array_root(doc).to_py() == [{"id": 1, "vote": 2}]
        assert origins == [synced_list.origin]
        assert synced_list.context.scheduler.flush_count == 1
        root.unobserve(subscription)

    def test_splice_keeps_neighbours(self, synced_list, doc: Doc, quantum) -> None:
        synced_list.proxy.extend([{"n": "a"}, {"n": "b"}, {"n": "c"}])
        quantum.run_pending()
        a, b, c = synced_list.proxy[0], synced_list.proxy[1], synced_list.proxy[2]

        synced_list.proxy.splice(1, 1, {"n": "X"})
        quantum.run_pending()

        assert _array_root(doc).to_py() == [{"n": "a"}, {"n": "X"}, {"n": "c"}]
        assert synced_list.proxy[0] is a
        assert synced_list.proxy[2] is c
        assert synced_list.proxy[1].is_bound
        assert not b.is_bound

    def test_splice_on_scalars(self, synced_list, doc: Doc, quantum) -> None:
        synced_list.proxy.extend(["a", "b", "c"])
        quantum.run_pending()
        assert synced_list.proxy.splice(1, 1, "X") == ["b"]
        quantum.run_pending()
        assert _array_root(doc).to_py() == ["a", "X", "c"]

    def test_undefined_top_level_and_nested(self, synced, doc: Doc, quantum) -> None:
        synced.proxy["k"] = UNDEFINED
        synced.proxy["o"] = {"x": 1}
        with pytest.raises(ValidationError):
            synced.proxy["o"]["y"] = UNDEFINED
        quantum.run_pending()
        assert _map_root(doc).to_py() == {"k": None, "o": {"x": 1}}

    def test_remote_mid_array_insert_is_one_splice(self, synced_list, remote_doc: Doc, doc: Doc, relay) -> None:
        remote = _array_root(remote_doc)
        remote.extend([Map({"n": 1}), Map({"n": 3})])
        relay(remote_doc, doc)
        first, last = synced_list.proxy[0], synced_list.proxy[1]

        batches: list = []
        synced_list.proxy.subscribe(batches.append)
        remote.insert(1, Map({"n": 2}))
        relay(remote_doc, doc)

        assert [item["n"] for item in synced_list.proxy] == [1, 2, 3]
        assert synced_list.proxy[0] is first
        assert synced_list.proxy[2] is last
        assert len(batches) == 1

    def test_delete_parent_of_pending_write(self, synced, doc: Doc, quantum) -> None:
        synced.proxy["obj"] = {"a": {"b": 1}}
        quantum.run_pending()

        synced.proxy["obj"]["a"]["b"] = 2
        del synced.proxy["obj"]["a"]
        quantum.run_pending()

        assert _map_root(doc).to_py() == {"obj": {}}


class TestConvergence:
    def test_two_mirrors_converge(
        self, synced, peer, peer_quantum, doc: Doc, remote_doc: Doc, quantum, relay
    ) -> None:
        synced.proxy["x"] = 1
        peer.proxy["y"] = [1, 2]
        quantum.run_pending()
        peer_quantum.run_pending()

        relay(doc, remote_doc)
        relay(remote_doc, doc)

        assert synced.proxy.snapshot() == {"x": 1, "y": [1, 2]}
        assert peer.proxy.snapshot() == synced.proxy.snapshot()
        assert _map_root(doc).to_py() == _map_root(remote_doc).to_py()

    def test_remote_changes_are_not_written_back(
        self, synced, peer, peer_quantum, doc: Doc, remote_doc: Doc, quantum, relay
    ) -> None:
        synced.proxy["obj"] = {"list": [1, {"deep": True}]}
        quantum.run_pending()
        relay(doc, remote_doc)

        assert peer.router.handled == 1
        assert not peer.context.scheduler.has_pending
        assert peer_quantum.pending == 0

    def test_edits_flow_back(
        self, synced, peer, peer_quantum, doc: Doc, remote_doc: Doc, quantum, relay
    ) -> None:
        synced.proxy["obj"] = {"n": 1}
        quantum.run_pending()
        relay(doc, remote_doc)
        node = synced.proxy["obj"]

        peer.proxy["obj"]["n"] = 2
        peer_quantum.run_pending()
        relay(remote_doc, doc)

        assert synced.proxy["obj"] is node
        assert node["n"] == 2

    def test_pending_append_survives_a_remote_insert(
        self, synced_list, doc: Doc, remote_doc: Doc, quantum, relay
    ) -> None:
        synced_list.proxy.extend(["a", "b", "c"])
        quantum.run_pending()
        relay(doc, remote_doc)

        synced_list.proxy.append("d")
        _array_root(remote_doc).insert(0, "z")
        relay(remote_doc, doc)

        assert synced_list.proxy.snapshot() == ["z", "a", "b", "c", "d"]
        quantum.run_pending()
        assert _array_root(doc).to_py() == ["z", "a", "b", "c", "d"]
        assert synced_list.proxy.snapshot() == ["z", "a", "b", "c", "d"]

        relay(doc, remote_doc)
        assert _array_root(remote_doc).to_py() == ["z", "a", "b", "c", "d"]

    def test_pending_append_survives_a_remote_delete(
        self, synced_list, doc: Doc, remote_doc: Doc, quantum, relay
    ) -> None:
        synced_list.proxy.extend(["a", "b", "c"])
        quantum.run_pending()
        relay(doc, remote_doc)

        synced_list.proxy.append("d")
        del _array_root(remote_doc)[0]
        relay(remote_doc, doc)

        assert synced_list.proxy.snapshot() == ["b", "c", "d"]
        quantum.run_pending()
        assert _array_root(doc).to_py() == ["b", "c", "d"]
        assert synced_list.proxy.snapshot() == ["b", "c", "d"]

    def test_text_edits_reach_the_peer(self, synced, peer, doc: Doc, remote_doc: Doc, quantum, relay) -> None:
        synced.proxy["t"] = synced_text("hi")
        quantum.run_pending()
        relay(doc, remote_doc)
        remote_ref = peer.proxy["t"]
        assert isinstance(remote_ref, LeafRef)

        local_ref = synced.proxy["t"]
        local_ref += "!"
        relay(doc, remote_doc)

        assert str(peer.proxy["t"]) == "hi!"
        assert remote_ref.version == 1


class TestBootstrap:
    def test_empty_root(self, synced, doc: Doc) -> None:
        assert synced.bootstrap({"todos": [{"title": "a"}], "count": 0}) is True
        assert _map_root(doc).to_py() == {"todos": [{"title": "a"}], "count": 0}
        assert synced.proxy["todos"][0].is_bound
        assert synced.router.handled == 0

    def test_array_root(self, synced_list, doc: Doc) -> None:
        assert synced_list.bootstrap([1, {"a": 2}]) is True
        assert _array_root(doc).to_py() == [1, {"a": 2}]
        assert synced_list.proxy[1].is_bound

    def test_non_empty_root_is_left_alone(self, synced, quantum, caplog: pytest.LogCaptureFixture) -> None:
        synced.proxy["a"] = 1
        quantum.run_pending()
        with caplog.at_level(logging.WARNING, logger="ymirror"):
            assert synced.bootstrap({"b": 2}) is False
        assert "bootstrap skipped" in caplog.text
        assert "b" not in synced.proxy

    def test_empty_input(self, synced) -> None:
        assert synced.bootstrap({}) is False
        assert synced.bootstrap() is False

    def test_invalid_data_writes_nothing(self, synced, doc: Doc) -> None:
        with pytest.raises(ValidationError):
            synced.bootstrap({"ok": 1, "bad": {1, 2}})
        assert _map_root(doc).to_py() == {}

    def test_after_dispose(self, synced) -> None:
        synced.dispose()
        with pytest.raises(MirrorError, match="disposed"):
            synced.bootstrap({"a": 1})


class TestLifecycle:
    def test_dispose_is_idempotent(self, synced) -> None:
        synced.dispose()
        synced.dispose()
        assert synced.disposed

    def test_dispose_stops_local_propagation(self, synced, doc: Doc, quantum) -> None:
        synced.proxy["a"] = 1
        synced.dispose()
        synced.proxy["b"] = 2
        quantum.run_pending()
        assert synced.flush() is False
        assert _map_root(doc).to_py() == {}

    def test_dispose_closes_leaf_observers(self, doc: Doc, quantum) -> None:
        _map_root(doc)["t"] = Text("x")
        handle = create_synced_proxy(doc, _map_root, quantum=quantum)
        ref = handle.proxy["t"]
        assert ref.watching
        handle.dispose()
        assert not ref.watching

    def test_context_manager(self, doc: Doc, quantum) -> None:
        with create_synced_proxy(doc, _map_root, quantum=quantum) as handle:
            handle.proxy["a"] = 1
            handle.flush()
        assert handle.disposed
        assert _map_root(doc).to_py() == {"a": 1}

    def test_explicit_flush(self, synced, doc: Doc) -> None:
        synced.proxy["a"] = 1
        assert synced.flush() is True
        assert synced.flush() is False
        assert _map_root(doc).to_py() == {"a": 1}

    def test_root_must_be_a_container(self, doc: Doc) -> None:
        with pytest.raises(MirrorError, match="Map or Array"):
            create_synced_proxy(doc, lambda d: d.get("text", type=Text))

    def test_repr(self, synced) -> None:
        assert "live" in repr(synced)
        synced.dispose()
        assert "disposed" in repr(synced)

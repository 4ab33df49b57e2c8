"""
Unit tests for the reconciliation state machine, run against in-memory fakes.
"""
import pytest

from label_preserver.core.constants import FINALIZER_NAME
from label_preserver.core.errors import DecodeError, TransientError
from label_preserver.lib.models import ReconcileEvent, StoredLabelRecord, NodeIdentity
from label_preserver.lib.sync.merge import PREFER_STORED
from label_preserver.lib.sync.reconciler import Reconciler


@pytest.fixture
def reconciler(store, nodes):
    return Reconciler(store, nodes, use_finalizer=False)


def remove_and_recreate(reconciler, nodes, name, old_labels, new_labels):
    nodes.create(name, old_labels, uid="old")
    del nodes.nodes[name]
    reconciler.reconcile(ReconcileEvent.removed(name, old_labels, uid="old"))
    nodes.create(name, new_labels, uid="new")
    reconciler.reconcile(ReconcileEvent.observed(name, new_labels, uid="new"))


def test_round_trip_without_collision(reconciler, store, nodes):
    remove_and_recreate(reconciler, nodes, "worker-1", {"a": "1"}, {})

    assert nodes.nodes["worker-1"].labels == {"a": "1"}
    assert "worker-1" not in store.records


def test_round_trip_with_collision_keeps_live_value(reconciler, store, nodes):
    remove_and_recreate(reconciler, nodes, "worker-1", {"a": "1"}, {"a": "2"})

    assert nodes.nodes["worker-1"].labels == {"a": "2"}
    assert nodes.patches == []
    assert "worker-1" not in store.records


def test_round_trip_keeps_keys_with_slashes(reconciler, store, nodes):
    labels = {"label.to.persist.com/test_slash": "v1", "plain": "v2"}
    remove_and_recreate(reconciler, nodes, "worker-1", labels, {"new_key": "new"})

    assert nodes.nodes["worker-1"].labels == {**labels, "new_key": "new"}


def test_stored_preference_overwrites_live_value(store, nodes):
    reconciler = Reconciler(store, nodes, prefer=PREFER_STORED, use_finalizer=False)
    remove_and_recreate(reconciler, nodes, "worker-1", {"a": "1"}, {"a": "2"})

    assert nodes.nodes["worker-1"].labels == {"a": "1"}


def test_duplicate_removal_writes_one_record(reconciler, store):
    event = ReconcileEvent.removed("worker-1", {"a": "1"})

    reconciler.reconcile(event)
    reconciler.reconcile(event)

    assert list(store.records) == ["worker-1"]
    assert store.records["worker-1"].labels == {"a": "1"}
    assert [c for c in store.calls if c[0] == "put"] == [("put", "worker-1")]


def test_removal_keeps_pending_record(reconciler, store):
    reconciler.reconcile(ReconcileEvent.removed("worker-1", {"a": "1"}))
    reconciler.reconcile(ReconcileEvent.removed("worker-1", {"kubernetes.io/hostname": "worker-1"}))

    assert store.records["worker-1"].labels == {"a": "1"}
    assert [c for c in store.calls if c[0] == "put"] == [("put", "worker-1")]


def test_removal_overwrites_retained_record(reconciler, store):
    store.records["worker-1"] = StoredLabelRecord(NodeIdentity("worker-1"), {"a": "1"}, pending=False)

    reconciler.reconcile(ReconcileEvent.removed("worker-1", {"a": "2"}))

    assert store.records["worker-1"].labels == {"a": "2"}
    assert store.records["worker-1"].pending is True


def test_removal_without_known_labels_is_a_no_op(reconciler, store):
    reconciler.reconcile(ReconcileEvent.removed("ghost", None))

    assert store.records == {}
    assert store.calls == []


def test_removal_with_empty_labels_keeps_pending_record(reconciler, store):
    store.records["worker-1"] = StoredLabelRecord(NodeIdentity("worker-1"), {"team": "gpu"})

    reconciler.reconcile(ReconcileEvent.removed("worker-1", {}))

    assert store.records["worker-1"].labels == {"team": "gpu"}
    assert ("delete", "worker-1") not in store.calls


def test_removal_with_empty_labels_clears_retained_record(reconciler, store):
    store.records["worker-1"] = StoredLabelRecord(NodeIdentity("worker-1"), {"old": "x"}, pending=False)

    reconciler.reconcile(ReconcileEvent.removed("worker-1", {}))

    assert store.records == {}


def test_observed_without_record_is_a_no_op(reconciler, store, nodes):
    nodes.create("worker-1", {"a": "1"})

    reconciler.reconcile(ReconcileEvent.observed("worker-1", {"a": "1"}))

    assert nodes.patches == []
    assert store.records == {}


def test_corrupted_record_is_ignored_on_observe(reconciler, store, nodes):
    store.records["worker-1"] = DecodeError("record is not valid JSON")
    nodes.create("worker-1", {"live": "1"})

    reconciler.reconcile(ReconcileEvent.observed("worker-1", {"live": "1"}))

    assert nodes.nodes["worker-1"].labels == {"live": "1"}
    assert nodes.patches == []


def test_corrupted_record_is_overwritten_on_removal(reconciler, store):
    store.records["worker-1"] = DecodeError("record has no 'labels' mapping")

    reconciler.reconcile(ReconcileEvent.removed("worker-1", {"a": "1"}))

    assert store.records["worker-1"].labels == {"a": "1"}


def test_transient_patch_failure_keeps_record(reconciler, store, nodes):
    store.records["worker-1"] = StoredLabelRecord(NodeIdentity("worker-1"), {"a": "1"})
    nodes.create("worker-1", {})
    nodes.fail["patch_labels"] = [TransientError("patch labels on worker-1: 503 Service Unavailable")]

    with pytest.raises(TransientError):
        reconciler.reconcile(ReconcileEvent.observed("worker-1", {}))
    assert "worker-1" in store.records

    reconciler.reconcile(ReconcileEvent.observed("worker-1", {}))
    assert nodes.nodes["worker-1"].labels == {"a": "1"}
    assert "worker-1" not in store.records


def test_node_vanishing_before_restore_is_benign(reconciler, store):
    store.records["worker-1"] = StoredLabelRecord(NodeIdentity("worker-1"), {"a": "1"})

    reconciler.reconcile(ReconcileEvent.observed("worker-1", {}))

    assert store.records["worker-1"].labels == {"a": "1"}


def test_restore_reads_current_labels_not_event_snapshot(reconciler, store, nodes):
    store.records["worker-1"] = StoredLabelRecord(NodeIdentity("worker-1"), {"a": "1"})
    nodes.create("worker-1", {"a": "set-after-event"})

    reconciler.reconcile(ReconcileEvent.observed("worker-1", {}))

    assert nodes.nodes["worker-1"].labels == {"a": "set-after-event"}


def test_retained_record_is_marked_applied_and_not_reapplied(store, nodes):
    reconciler = Reconciler(store, nodes, use_finalizer=False, retain_records=True)
    remove_and_recreate(reconciler, nodes, "worker-1", {"a": "1"}, {})

    record = store.records["worker-1"]
    assert record.pending is False

    nodes.nodes["worker-1"].labels.pop("a")
    reconciler.reconcile(ReconcileEvent.observed("worker-1", {}))
    assert nodes.nodes["worker-1"].labels == {}


def test_observed_adds_finalizer(store, nodes):
    reconciler = Reconciler(store, nodes, use_finalizer=True)
    nodes.create("worker-1", {"a": "1"})

    reconciler.reconcile(ReconcileEvent.observed("worker-1", {"a": "1"}))

    assert FINALIZER_NAME in nodes.nodes["worker-1"].finalizers


def test_terminating_node_is_stored_then_released(store, nodes):
    reconciler = Reconciler(store, nodes, use_finalizer=True)
    nodes.create("worker-1", {"a": "1"}, finalizers=[FINALIZER_NAME], deleting=True)

    reconciler.reconcile(ReconcileEvent.removed("worker-1", {"a": "1"}))

    assert store.records["worker-1"].labels == {"a": "1"}
    assert "worker-1" not in nodes.nodes


def test_observed_on_terminating_node_defers_restore(store, nodes):
    reconciler = Reconciler(store, nodes, use_finalizer=True)
    store.records["worker-1"] = StoredLabelRecord(NodeIdentity("worker-1"), {"a": "1"})
    nodes.create("worker-1", {}, finalizers=[FINALIZER_NAME], deleting=True)

    reconciler.reconcile(ReconcileEvent.observed("worker-1", {}))

    assert nodes.patches == []
    assert store.records["worker-1"].pending is True


def test_deleted_label_is_not_restored_on_next_cycle(reconciler, store, nodes):
    remove_and_recreate(reconciler, nodes, "worker-1", {"keep": "1", "drop": "2"}, {})
    nodes.nodes["worker-1"].labels.pop("drop")

    current = dict(nodes.nodes["worker-1"].labels)
    del nodes.nodes["worker-1"]
    reconciler.reconcile(ReconcileEvent.removed("worker-1", current))
    nodes.create("worker-1", {})
    reconciler.reconcile(ReconcileEvent.observed("worker-1", {}))

    assert nodes.nodes["worker-1"].labels == {"keep": "1"}


def test_flapping_replacement_does_not_replace_pending_labels(store, nodes):
    reconciler = Reconciler(store, nodes, use_finalizer=True)
    store.records["worker-1"] = StoredLabelRecord(NodeIdentity("worker-1"), {"team": "gpu"})

    # replacement shows up already terminating, then goes away with only default labels
    defaults = {"kubernetes.io/hostname": "worker-1"}
    nodes.create("worker-1", defaults, uid="flap", finalizers=[FINALIZER_NAME], deleting=True)
    reconciler.reconcile(ReconcileEvent.observed("worker-1", defaults, uid="flap"))
    reconciler.reconcile(ReconcileEvent.removed("worker-1", defaults, uid="flap"))
    assert "worker-1" not in nodes.nodes

    nodes.create("worker-1", defaults, uid="stable")
    reconciler.reconcile(ReconcileEvent.observed("worker-1", defaults, uid="stable"))

    assert nodes.nodes["worker-1"].labels.get("team") == "gpu"
    assert "worker-1" not in store.records

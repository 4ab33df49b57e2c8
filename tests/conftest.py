"""
Shared fixtures: in-memory stand-ins for the label store and the node API,
plus builders for kubernetes client objects.
"""
from types import SimpleNamespace

import pytest
from kubernetes.client import V1Node, V1ObjectMeta

from label_preserver.core.constants import FINALIZER_NAME
from label_preserver.core.errors import NotFoundError
from label_preserver.lib.models import StoredLabelRecord
from label_preserver.lib.sync.label_store import LabelStore
from label_preserver.lib.sync.node_labels import NodeSnapshot


class FakeLabelStore(LabelStore):
    """Dict-backed store. Put an Exception in `records` to make get() raise it."""

    def __init__(self):
        self.records = {}
        self.calls = []
        self.fail = {}  # method name -> list of exceptions raised on the next calls

    def _maybe_fail(self, method):
        queued = self.fail.get(method)
        if queued:
            raise queued.pop(0)

    def get(self, identity):
        self.calls.append(("get", identity.name))
        self._maybe_fail("get")
        record = self.records.get(identity.name)
        if isinstance(record, Exception):
            raise record
        return record

    def put(self, identity, labels):
        self.calls.append(("put", identity.name))
        self._maybe_fail("put")
        self.records[identity.name] = StoredLabelRecord(identity, dict(labels), pending=True)

    def delete(self, identity):
        self.calls.append(("delete", identity.name))
        self._maybe_fail("delete")
        self.records.pop(identity.name, None)

    def mark_applied(self, identity):
        self.calls.append(("mark_applied", identity.name))
        record = self.records.get(identity.name)
        if isinstance(record, StoredLabelRecord):
            self.records[identity.name] = StoredLabelRecord(record.identity, record.labels, pending=False)


class FakeNodeApi:
    """Cluster nodes kept as NodeSnapshots, with merge-patch label semantics."""

    def __init__(self, finalizer=FINALIZER_NAME):
        self.nodes = {}
        self.finalizer = finalizer
        self.patches = []
        self.fail = {}

    def _maybe_fail(self, method):
        queued = self.fail.get(method)
        if queued:
            raise queued.pop(0)

    def create(self, name, labels=None, uid=None, finalizers=None, deleting=False):
        self.nodes[name] = NodeSnapshot(
            name=name,
            uid=uid or f"uid-{name}-{len(self.patches)}",
            labels=dict(labels or {}),
            finalizers=list(finalizers or []),
            deleting=deleting,
            resource_version="1",
        )
        return self.nodes[name]

    def get(self, name):
        self._maybe_fail("get")
        if name not in self.nodes:
            raise NotFoundError(f"read node {name}: not found")
        node = self.nodes[name]
        return NodeSnapshot(node.name, node.uid, dict(node.labels), list(node.finalizers),
                            node.deleting, node.resource_version)

    def patch_labels(self, name, labels):
        self._maybe_fail("patch_labels")
        if name not in self.nodes:
            raise NotFoundError(f"patch labels on {name}: not found")
        self.patches.append((name, dict(labels)))
        self.nodes[name].labels.update(labels)

    def add_finalizer(self, snapshot):
        node = self.nodes.get(snapshot.name)
        if node is not None and self.finalizer not in node.finalizers:
            node.finalizers.append(self.finalizer)

    def remove_finalizer(self, snapshot):
        node = self.nodes.get(snapshot.name)
        if node is None:
            return
        node.finalizers = [f for f in node.finalizers if f != self.finalizer]
        if node.deleting and not node.finalizers:
            del self.nodes[snapshot.name]


def make_node(name, labels=None, uid=None, resource_version="1", finalizers=None, deleting=False):
    return V1Node(
        metadata=V1ObjectMeta(
            name=name,
            uid=uid or f"uid-{name}",
            labels=labels,
            resource_version=resource_version,
            finalizers=finalizers,
            deletion_timestamp="2024-01-01T00:00:00Z" if deleting else None,
        )
    )


def make_node_list(nodes, resource_version="100"):
    return SimpleNamespace(items=list(nodes), metadata=SimpleNamespace(resource_version=resource_version))


@pytest.fixture
def store():
    return FakeLabelStore()


@pytest.fixture
def nodes():
    return FakeNodeApi()

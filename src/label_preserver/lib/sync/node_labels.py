"""
node_labels.py
- Thin adapter over the Kubernetes node object:
    - Reading a node's identity, labels and deletion state
    - Merge-patching labels (only the given keys are touched)
    - Adding and removing the controller's finalizer
"""

from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from label_preserver.core.constants import FINALIZER_NAME, MERGE_PATCH
from label_preserver.core.errors import classify_api_error


@dataclass
class NodeSnapshot:
    name: str
    uid: Optional[str] = None
    labels: dict = field(default_factory=dict)
    finalizers: List[str] = field(default_factory=list)
    deleting: bool = False
    resource_version: Optional[str] = None


def snapshot_from_node(node):
    """Flatten a V1Node into a NodeSnapshot."""
    meta = node.metadata
    return NodeSnapshot(
        name=meta.name,
        uid=meta.uid,
        labels=dict(meta.labels or {}),
        finalizers=list(meta.finalizers or []),
        deleting=meta.deletion_timestamp is not None,
        resource_version=meta.resource_version,
    )


class NodeApi:
    def __init__(self, core_api, request_timeout=None, finalizer=FINALIZER_NAME):
        self.core_api = core_api
        self.request_timeout = request_timeout
        self.finalizer = finalizer

    def _call(self, action, fn, *args, **kwargs):
        if self.request_timeout:
            kwargs["_request_timeout"] = self.request_timeout
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            raise classify_api_error(e, action) from e

    def get(self, name):
        """
        Read the current state of a node.

        Raises:
            NotFoundError: The node no longer exists.
            TransientError: The API could not be reached.
        """
        node = self._call(f"read node {name}", self.core_api.read_node, name)
        return snapshot_from_node(node)

    def patch_labels(self, name, labels):
        """Merge-patch `labels` onto the node. Keys not named in `labels` are left alone."""
        if not labels:
            return
        self._call(f"patch labels on {name}", self.core_api.patch_node, name,
                   {"metadata": {"labels": dict(labels)}},
                   _content_type=MERGE_PATCH)
        logger.info(f"[nodes] Patched {len(labels)} label(s) on {name}: {sorted(labels)}")

    def add_finalizer(self, snapshot):
        if self.finalizer in snapshot.finalizers:
            return
        finalizers = snapshot.finalizers + [self.finalizer]
        self._patch_finalizers(snapshot, finalizers)
        logger.debug(f"[nodes] Added finalizer to {snapshot.name}")

    def remove_finalizer(self, snapshot):
        if self.finalizer not in snapshot.finalizers:
            return
        finalizers = [f for f in snapshot.finalizers if f != self.finalizer]
        self._patch_finalizers(snapshot, finalizers)
        logger.debug(f"[nodes] Removed finalizer from {snapshot.name}")

    def _patch_finalizers(self, snapshot, finalizers):
        # resourceVersion makes the list replacement fail with 409 if someone else changed it
        body = {"metadata": {"finalizers": finalizers, "resourceVersion": snapshot.resource_version}}
        self._call(f"patch finalizers on {snapshot.name}", self.core_api.patch_node, snapshot.name, body,
                   _content_type=MERGE_PATCH)

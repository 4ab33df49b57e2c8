"""
reconciler.py
- Per-node state machine driving the label store towards the live cluster state.
- REMOVED: capture the node's last known labels in the store.
- OBSERVED: merge stored labels back onto the node, then consume the record.
- Holds no state of its own; every call re-reads the store and the node.

Callers guarantee that at most one reconcile() runs per node name at a time.
"""

from loguru import logger

from label_preserver.core.errors import DecodeError, NotFoundError
from label_preserver.lib.models import EventKind
from label_preserver.lib.sync.merge import PREFER_LIVE, labels_to_patch, merge


class Reconciler:
    def __init__(self, store, nodes, prefer=PREFER_LIVE, use_finalizer=True, retain_records=False):
        """
        Args:
            store (LabelStore): Where removed nodes' labels are kept.
            nodes (NodeApi): Node read/patch adapter.
            prefer (str): Merge side that wins on key collisions ("live" or "stored").
            use_finalizer (bool): Hold deleting nodes until their labels are stored.
            retain_records (bool): Keep consumed records with the pending flag cleared
                instead of deleting them.
        """
        self.store = store
        self.nodes = nodes
        self.prefer = prefer
        self.use_finalizer = use_finalizer
        self.retain_records = retain_records

    def reconcile(self, event):
        """
        Apply one lifecycle event.

        NotFoundError and DecodeError are handled here; TransientError and
        anything unexpected propagate so the work queue can retry.
        """
        try:
            if event.kind is EventKind.REMOVED:
                self._handle_removed(event)
            else:
                self._handle_observed(event)
        except NotFoundError as e:
            logger.info(f"[reconcile] {event.name} vanished mid-reconcile ({e}), nothing to do for this event.")

    # --- Present -> Absent ---
    def _handle_removed(self, event):
        name = event.name
        if event.labels is None:
            logger.debug(f"[reconcile] {name} removed with no known labels, nothing to preserve.")
            return

        existing = self._read_record(event.identity)
        if existing is not None and existing.pending:
            # labels still waiting for a restore; a short-lived replacement must not replace them
            logger.info(f"[reconcile] {name} already has a pending record, keeping it.")
        elif not event.labels:
            logger.info(f"[reconcile] {name} removed without labels, clearing any stale record.")
            self.store.delete(event.identity)
        else:
            self.store.put(event.identity, event.labels)
            logger.info(f"[reconcile] Stored {len(event.labels)} label(s) for removed node {name}.")

        self._release(name)

    def _release(self, name):
        """Drop our finalizer from a node that is still terminating."""
        if not self.use_finalizer:
            return
        try:
            snapshot = self.nodes.get(name)
        except NotFoundError:
            return
        if snapshot.deleting:
            self.nodes.remove_finalizer(snapshot)
            logger.info(f"[reconcile] Released finalizer on terminating node {name}.")

    # --- Absent -> Present ---
    def _handle_observed(self, event):
        name = event.name
        record = self._read_record(event.identity)

        if record is None or not record.pending:
            if self.use_finalizer:
                self._ensure_finalizer(name)
            return

        snapshot = self.nodes.get(name)
        if snapshot.deleting:
            # a REMOVED event for this node is already on its way
            logger.debug(f"[reconcile] {name} is terminating, deferring restore.")
            return

        if self.use_finalizer:
            self.nodes.add_finalizer(snapshot)

        merged = merge(snapshot.labels, record.labels, prefer=self.prefer)
        patch = labels_to_patch(snapshot.labels, merged)
        if patch:
            self.nodes.patch_labels(name, patch)
            logger.info(f"[reconcile] Restored {len(patch)} label(s) on {name}.")
        else:
            logger.info(f"[reconcile] {name} already carries every stored label.")

        if self.retain_records:
            self.store.mark_applied(event.identity)
        else:
            self.store.delete(event.identity)

    def _ensure_finalizer(self, name):
        snapshot = self.nodes.get(name)
        if not snapshot.deleting:
            self.nodes.add_finalizer(snapshot)

    def _read_record(self, identity):
        try:
            return self.store.get(identity)
        except DecodeError as e:
            logger.warning(f"[reconcile] Stored record for {identity.name} is corrupted ({e}); treating it as absent.")
            return None

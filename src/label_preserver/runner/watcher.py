"""
watcher.py
- List-then-watch over cluster nodes, turned into ReconcileEvents.
- Every (re)connect starts with a full list so removals missed while
  disconnected are still reported, using the labels last seen for that node.
- Runs in its own thread; the blocking HTTP stream never touches the event loop.
"""

import random
import threading

from kubernetes import watch
from kubernetes.client.rest import ApiException
from loguru import logger
from urllib3.exceptions import HTTPError as TransportError

from label_preserver.core.constants import (
    DEFAULT_WATCH_TIMEOUT_SECONDS,
    FINALIZER_NAME,
    WATCH_BACKOFF_CAP_SECONDS,
    WATCH_READ_MARGIN_SECONDS,
)
from label_preserver.core.errors import TransientError
from label_preserver.lib.models import ReconcileEvent
from label_preserver.lib.sync.node_labels import snapshot_from_node


def fingerprint(snapshot, finalizer=FINALIZER_NAME):
    """The parts of a node the reconciler reacts to. Status heartbeats don't change it."""
    return (
        snapshot.uid,
        tuple(sorted(snapshot.labels.items())),
        snapshot.deleting,
        finalizer in snapshot.finalizers,
    )


def event_for(snapshot):
    if snapshot.deleting:
        return ReconcileEvent.removed(snapshot.name, snapshot.labels, uid=snapshot.uid)
    return ReconcileEvent.observed(snapshot.name, snapshot.labels, uid=snapshot.uid)


class NodeWatcher:
    def __init__(self, core_api, timeout_seconds=DEFAULT_WATCH_TIMEOUT_SECONDS, finalizer=FINALIZER_NAME,
                 watch_factory=watch.Watch):
        self.core_api = core_api
        self.timeout_seconds = timeout_seconds
        self.finalizer = finalizer
        self.watch_factory = watch_factory
        self._cache = {}  # node name -> NodeSnapshot last seen
        self._stop = threading.Event()
        self._active_watch = None
        self._lock = threading.Lock()

    def stop(self):
        """Request a stop and interrupt any open watch stream."""
        self._stop.set()
        with self._lock:
            active = self._active_watch
        if active is not None:
            active.stop()

    @property
    def stopped(self):
        return self._stop.is_set()

    def run(self, sink):
        """Push every event into `sink` until stop() is called."""
        logger.info("[watcher] Watching nodes cluster-wide.")
        for event in self.events():
            sink(event)
        logger.info("[watcher] Stopped.")

    def events(self):
        """
        Lazy, infinite, at-least-once stream of ReconcileEvents.

        Yields:
            ReconcileEvent: One per node transition. Ends only after stop().
        """
        backoff = 1
        while not self.stopped:
            try:
                node_list = self.core_api.list_node()
                resource_version = node_list.metadata.resource_version
                logger.info(f"[watcher] Listed {len(node_list.items)} node(s) at resourceVersion {resource_version}")
                yield from self._resync(node_list.items)
                yield from self._stream(resource_version)
                backoff = 1
            except ApiException as e:
                if e.status == 410:
                    logger.warning("[watcher] Watch resource version expired, re-listing")
                    continue
                if e.status in (401, 403):
                    logger.error(f"[watcher] Node API access denied (status={e.status}). "
                                 "Check the controller's RBAC and service account.")
                    backoff = WATCH_BACKOFF_CAP_SECONDS
                else:
                    logger.warning(f"[watcher] Kubernetes API watch error: {e.status} {e.reason}")
                backoff = self._pause(backoff)
            except (TransportError, TransientError, ConnectionError, TimeoutError) as e:
                logger.warning(f"[watcher] Lost connection to the API server: {e}")
                backoff = self._pause(backoff)

    def _stream(self, resource_version):
        w = self.watch_factory()
        with self._lock:
            self._active_watch = w
        try:
            stream = w.stream(
                self.core_api.list_node,
                resource_version=resource_version,
                timeout_seconds=self.timeout_seconds,
                _request_timeout=self.timeout_seconds + WATCH_READ_MARGIN_SECONDS,
                allow_watch_bookmarks=True,
            )
            for raw in stream:
                if self.stopped:
                    break
                event_type = raw.get("type")
                if event_type == "ERROR":
                    status = (raw.get("raw_object") or {}).get("code")
                    raise ApiException(status=status, reason="watch stream error")
                if event_type == "BOOKMARK":
                    continue
                yield from self._on_watch_event(event_type, raw["object"])
        finally:
            w.stop()
            with self._lock:
                if self._active_watch is w:
                    self._active_watch = None

    def _resync(self, nodes):
        previous = self._cache
        current = {}
        events = []
        for node in nodes:
            snapshot = snapshot_from_node(node)
            current[snapshot.name] = snapshot
            events.extend(self._transition(previous.get(snapshot.name), snapshot, force=True))

        for name, gone in previous.items():
            if name not in current:
                logger.info(f"[watcher] {name} disappeared while disconnected")
                events.append(ReconcileEvent.removed(name, gone.labels, uid=gone.uid))

        self._cache = current
        return events

    def _on_watch_event(self, event_type, node):
        snapshot = snapshot_from_node(node)
        if event_type == "DELETED":
            self._cache.pop(snapshot.name, None)
            return [ReconcileEvent.removed(snapshot.name, snapshot.labels, uid=snapshot.uid)]

        previous = self._cache.get(snapshot.name)
        self._cache[snapshot.name] = snapshot
        return self._transition(previous, snapshot)

    def _transition(self, previous, snapshot, force=False):
        events = []
        if previous is not None and previous.uid and snapshot.uid and previous.uid != snapshot.uid:
            # same name, new object: the delete in between was never seen
            events.append(ReconcileEvent.removed(previous.name, previous.labels, uid=previous.uid))
        elif not force and previous is not None and \
                fingerprint(previous, self.finalizer) == fingerprint(snapshot, self.finalizer):
            return events
        events.append(event_for(snapshot))
        return events

    def _pause(self, backoff):
        jittered = backoff * (0.5 + random.random())
        self._stop.wait(timeout=jittered)
        return min(backoff * 2, WATCH_BACKOFF_CAP_SECONDS)

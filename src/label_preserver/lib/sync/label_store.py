"""
label_store.py
- Persists the labels of removed nodes in one ConfigMap per node name.
- The whole label set is stored as a single JSON document so keys with slashes
  (e.g. topology.kubernetes.io/zone) never become ConfigMap data keys.
- Classifies failures: absent record -> None, bad payload -> DecodeError,
  conflicts/outages -> TransientError.
"""

import hashlib
import json

from kubernetes.client.rest import ApiException
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from label_preserver.core.constants import (
    CONFIGMAP_MAX_NAME_LENGTH,
    CONFIGMAP_PREFIX,
    MANAGED_BY_LABEL,
    MERGE_PATCH,
    NODE_NAME_ANNOTATION,
    NODE_UID_ANNOTATION,
    PENDING_FLAG_KEY,
    RECORD_DATA_KEY,
    SERVICE_NAME,
)
from label_preserver.core.errors import DecodeError, NotFoundError, TransientError, classify_api_error
from label_preserver.lib.models import NodeIdentity, StoredLabelRecord

# Short in-call retries; the work queue handles anything longer.
store_retry = retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(TransientError),
)


def configmap_name(node_name):
    """
    ConfigMap name holding the record for `node_name`.

    Node names are already valid DNS subdomains; only the length can overflow
    once the prefix is added, in which case the tail is replaced by a digest.
    """
    name = f"{CONFIGMAP_PREFIX}{node_name}"
    if len(name) <= CONFIGMAP_MAX_NAME_LENGTH:
        return name
    digest = hashlib.sha256(node_name.encode("utf-8")).hexdigest()[:10]
    head = name[:CONFIGMAP_MAX_NAME_LENGTH - len(digest) - 1].rstrip("-.")
    return f"{head}-{digest}"


def encode_labels(labels):
    return json.dumps({"labels": dict(labels)}, sort_keys=True)


def decode_labels(payload):
    """
    Parse a stored `{"labels": {...}}` document.

    Raises:
        DecodeError: If the payload is not JSON or does not have the expected shape.
    """
    try:
        document = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"record is not valid JSON: {e}") from e

    labels = document.get("labels") if isinstance(document, dict) else None
    if not isinstance(labels, dict):
        raise DecodeError("record has no 'labels' mapping")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in labels.items()):
        raise DecodeError("record labels must map strings to strings")
    return labels


class LabelStore:
    """Interface every label store implements. Calls for one name are never concurrent."""

    def get(self, identity):
        raise NotImplementedError

    def put(self, identity, labels):
        raise NotImplementedError

    def delete(self, identity):
        raise NotImplementedError

    def mark_applied(self, identity):
        raise NotImplementedError


class ConfigMapLabelStore(LabelStore):
    def __init__(self, core_api, namespace, request_timeout=None):
        self.core_api = core_api
        self.namespace = namespace
        self.request_timeout = request_timeout

    def _call(self, action, fn, *args, **kwargs):
        if self.request_timeout:
            kwargs["_request_timeout"] = self.request_timeout
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            raise classify_api_error(e, action) from e

    def get(self, identity):
        """
        Fetch the record for a node.

        Returns:
            StoredLabelRecord or None: None when no record exists.

        Raises:
            DecodeError: The ConfigMap exists but its payload is unusable.
            TransientError: The API could not be reached or is overloaded.
        """
        name = configmap_name(identity.name)
        try:
            cm = self._call(f"read {name}", self.core_api.read_namespaced_config_map, name, self.namespace)
        except NotFoundError:
            return None

        data = cm.data or {}
        if RECORD_DATA_KEY not in data:
            raise DecodeError(f"{name} has no '{RECORD_DATA_KEY}' entry")
        labels = decode_labels(data[RECORD_DATA_KEY])
        annotations = (cm.metadata.annotations if cm.metadata else None) or {}
        stored_identity = NodeIdentity(identity.name, annotations.get(NODE_UID_ANNOTATION))
        return StoredLabelRecord(stored_identity, labels, pending=data.get(PENDING_FLAG_KEY, "1") == "1")

    @store_retry
    def put(self, identity, labels):
        """Create or overwrite the pending record for a node. Re-putting the same labels is a no-op."""
        name = configmap_name(identity.name)
        data = {RECORD_DATA_KEY: encode_labels(labels), PENDING_FLAG_KEY: "1"}
        body = {
            "metadata": {
                "name": name,
                "namespace": self.namespace,
                "labels": {MANAGED_BY_LABEL: SERVICE_NAME},
                "annotations": self._annotations(identity),
            },
            "data": data,
        }
        try:
            self.core_api.create_namespaced_config_map(self.namespace, body, **self._timeout())
            logger.info(f"[store] Created {name} with {len(labels)} label(s)")
            return
        except ApiException as e:
            if e.status != 409:
                raise classify_api_error(e, f"create {name}") from e
        except Exception as e:
            raise classify_api_error(e, f"create {name}") from e

        existing = self._call(f"read {name}", self.core_api.read_namespaced_config_map, name, self.namespace)
        if (existing.data or {}) == data:
            logger.debug(f"[store] {name} already holds these labels, skipping write")
            return
        self._call(f"patch {name}", self.core_api.patch_namespaced_config_map, name, self.namespace,
                   {"metadata": {"annotations": body["metadata"]["annotations"]}, "data": data},
                   _content_type=MERGE_PATCH)
        logger.info(f"[store] Overwrote {name} with {len(labels)} label(s)")

    @store_retry
    def delete(self, identity):
        name = configmap_name(identity.name)
        try:
            self._call(f"delete {name}", self.core_api.delete_namespaced_config_map, name, self.namespace)
            logger.info(f"[store] Deleted {name}")
        except NotFoundError:
            logger.debug(f"[store] {name} already gone")

    @store_retry
    def mark_applied(self, identity):
        """Clear the pending flag but keep the labels (record retention)."""
        name = configmap_name(identity.name)
        try:
            self._call(f"patch {name}", self.core_api.patch_namespaced_config_map, name, self.namespace,
                       {"data": {PENDING_FLAG_KEY: "0"}}, _content_type=MERGE_PATCH)
            logger.info(f"[store] Marked {name} as applied")
        except NotFoundError:
            logger.debug(f"[store] {name} already gone, nothing to mark")

    def _annotations(self, identity):
        annotations = {NODE_NAME_ANNOTATION: identity.name}
        if identity.uid:
            annotations[NODE_UID_ANNOTATION] = identity.uid
        return annotations

    def _timeout(self):
        return {"_request_timeout": self.request_timeout} if self.request_timeout else {}


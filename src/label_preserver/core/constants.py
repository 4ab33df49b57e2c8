"""
constants.py
- Project-wide constants shared across the store, reconciler and runners.
- Includes ConfigMap layout keys, the node finalizer and retry defaults.
"""

SERVICE_NAME = "node-label-preserver"

# --- Node Finalizer ---
FINALIZER_NAME = "node-label-preserver.io/finalizer"

# --- Label Record Layout (one ConfigMap per node) ---
CONFIGMAP_PREFIX = "node-labels-"
CONFIGMAP_MAX_NAME_LENGTH = 253
RECORD_DATA_KEY = "preserved-labels.json"
PENDING_FLAG_KEY = "labels-pending"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
NODE_NAME_ANNOTATION = "node-label-preserver.io/node-name"
NODE_UID_ANNOTATION = "node-label-preserver.io/node-uid"

# --- Retry Timing Defaults ---
DEFAULT_RETRY_BASE_DELAY = 1.0  # seconds
DEFAULT_RETRY_MAX_DELAY = 300.0  # seconds
DEFAULT_RETRY_MAX_ATTEMPTS = 10

# --- Watch ---
DEFAULT_WATCH_TIMEOUT_SECONDS = 300
WATCH_BACKOFF_CAP_SECONDS = 30
WATCH_READ_MARGIN_SECONDS = 30  # client-side read timeout on top of the server-side watch timeout

# --- Patch content type ---
# JSON merge patch replaces lists wholesale; strategic merge would union finalizers
MERGE_PATCH = "application/merge-patch+json"

# --- API status codes worth retrying ---
TRANSIENT_STATUS_CODES = {409, 429, 500, 502, 503, 504}

"""
errors.py
- Error taxonomy shared by the label store, node adapter, reconciler and work queue.
- classify_api_error() maps Kubernetes client failures onto that taxonomy.
"""

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from label_preserver.core.constants import TRANSIENT_STATUS_CODES


class PreserverError(Exception):
    """Base class for every error raised by the controller."""


class TransientError(PreserverError):
    """External I/O failure or optimistic-lock conflict. Retried with backoff."""


class DecodeError(PreserverError):
    """A stored label record exists but its payload cannot be decoded."""


class NotFoundError(PreserverError):
    """The node or record vanished between read and write."""


class PermanentError(PreserverError):
    """Retry budget for an identity is exhausted."""

    def __init__(self, name, attempts, cause=None):
        super().__init__(f"giving up on {name} after {attempts} attempts: {cause}")
        self.name = name
        self.attempts = attempts
        self.cause = cause


def classify_api_error(exc, action):
    """
    Translate a Kubernetes client exception into the controller's taxonomy.

    Args:
        exc (Exception): The error raised by the API client.
        action (str): Short description used in the resulting message.

    Returns:
        PreserverError: An instance ready to be raised ``from exc``.
    """
    if isinstance(exc, ApiException):
        if exc.status == 404:
            return NotFoundError(f"{action}: not found")
        if exc.status in TRANSIENT_STATUS_CODES:
            return TransientError(f"{action}: {exc.status} {exc.reason}")
        return PreserverError(f"{action}: {exc.status} {exc.reason}")
    if isinstance(exc, (TransportError, ConnectionError, TimeoutError)):
        return TransientError(f"{action}: {exc}")
    return PreserverError(f"{action}: {exc}")

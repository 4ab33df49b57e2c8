"""
models.py
- Value types passed between the watcher, work queue, reconciler and label store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

LabelSet = Dict[str, str]


@dataclass(frozen=True)
class NodeIdentity:
    """Stable node key. Records are keyed on `name`; `uid` changes on re-creation."""

    name: str
    uid: Optional[str] = field(default=None, compare=False)


class EventKind(Enum):
    OBSERVED = "observed"
    REMOVED = "removed"


@dataclass(frozen=True)
class ReconcileEvent:
    """
    One lifecycle observation for a node.

    `labels` is the live snapshot for OBSERVED, the last known label set for
    REMOVED, or None when nothing about the node's labels is known.
    """

    identity: NodeIdentity
    kind: EventKind
    labels: Optional[LabelSet] = None

    @property
    def name(self):
        return self.identity.name

    @classmethod
    def observed(cls, name, labels, uid=None):
        return cls(NodeIdentity(name, uid), EventKind.OBSERVED, dict(labels or {}))

    @classmethod
    def removed(cls, name, labels, uid=None):
        return cls(NodeIdentity(name, uid), EventKind.REMOVED, None if labels is None else dict(labels))


@dataclass(frozen=True)
class StoredLabelRecord:
    identity: NodeIdentity
    labels: LabelSet
    pending: bool = True

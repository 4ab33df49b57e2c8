"""
merge.py
- Pure label merge policy used when a node re-appears with a stored label record.
"""

PREFER_LIVE = "live"
PREFER_STORED = "stored"


def merge(live, stored, prefer=PREFER_LIVE):
    """
    Combine a node's live labels with its previously stored labels.

    Keys only in `stored` are added. Keys in both keep the value of the side
    named by `prefer`; with the default, labels already set on the re-created
    node are never overwritten by stored history. Other live keys pass through.

    Args:
        live (dict): Labels currently on the node.
        stored (dict): Labels captured when the node was removed.
        prefer (str): "live" or "stored".

    Returns:
        dict: The merged label set. Neither input is modified.
    """
    if prefer == PREFER_LIVE:
        result = dict(stored)
        result.update(live)
    elif prefer == PREFER_STORED:
        result = dict(live)
        result.update(stored)
    else:
        raise ValueError(f"unknown merge preference: {prefer!r}")
    return result


def labels_to_patch(live, merged):
    """Return only the keys whose value in `merged` differs from `live` (merge-patch body)."""
    return {key: value for key, value in merged.items() if live.get(key) != value}

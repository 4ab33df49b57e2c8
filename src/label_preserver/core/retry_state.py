'''
retry_state.py
- In-memory retry tracking for node reconciliations.
- Centralized logic for exponential backoff, attempt budgets and reset on success.
'''

import time
from collections import defaultdict

from label_preserver.core.constants import (
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY,
)


class RetryState:
    """
    Tracks {node_name: {failures: int, last_attempt: float_timestamp}}.

    Nothing here survives a restart: a restarted controller re-lists every
    node and starts each identity with a fresh budget.
    """

    def __init__(self, base_delay=DEFAULT_RETRY_BASE_DELAY, max_delay=DEFAULT_RETRY_MAX_DELAY,
                 max_attempts=DEFAULT_RETRY_MAX_ATTEMPTS):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._state = defaultdict(lambda: {"failures": 0, "last_attempt": 0.0})

    def record_failure(self, name):
        """
        Increment the failure count for `name` and return the new count.
        """
        state = self._state[name]
        state["failures"] += 1
        state["last_attempt"] = time.time()
        return state["failures"]

    def failures(self, name):
        if name not in self._state:
            return 0
        return self._state[name]["failures"]

    def exhausted(self, name):
        return self.failures(name) > self.max_attempts

    def backoff_for(self, failures):
        """
        Delay before retry number `failures` (1-based): base * 2**(failures-1), capped.
        """
        if failures <= 0:
            return 0.0
        return min(self.max_delay, self.base_delay * (2 ** min(failures - 1, 32)))

    def clear(self, name):
        """
        Reset the retry state for a node (e.g. after a successful reconciliation).
        """
        self._state.pop(name, None)

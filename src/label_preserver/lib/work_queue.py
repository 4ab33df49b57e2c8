"""
work_queue.py
- Deduplicating, per-node serialized asyncio work queue feeding the reconciler.
- Guarantees:
    - At most one worker holds a given node name at any time
    - Back-to-back events of the same kind for one node collapse into one (newest wins)
    - Events of different kinds for one node are handed out in arrival order
    - Failed events are retried with capped exponential backoff, ahead of later events
"""

import asyncio
from collections import deque

from loguru import logger

from label_preserver.core.errors import PermanentError
from label_preserver.core.retry_state import RetryState


class QueueShutDown(Exception):
    """Raised by get() once the queue has been shut down."""


class WorkQueue:
    def __init__(self, retry_state=None):
        self.retries = retry_state or RetryState()
        self._pending = {}  # node name -> deque of ReconcileEvent
        self._ready = asyncio.Queue()  # node names with pending events, not held, not parked
        self._ready_names = set()
        self._processing = set()
        self._parked = {}  # node name -> asyncio.TimerHandle
        self._shutting_down = False

    def __len__(self):
        return sum(len(events) for events in self._pending.values())

    def add(self, event):
        """
        Enqueue an event. Safe to call from the event loop only; threads must
        go through loop.call_soon_threadsafe.
        """
        if self._shutting_down:
            return
        name = event.name
        backlog = self._pending.setdefault(name, deque())
        if backlog and backlog[-1].kind is event.kind:
            backlog[-1] = event
            logger.debug(f"[queue] Coalesced {event.kind.value} event for {name}")
            return
        backlog.append(event)
        self._mark_ready(name)

    async def get(self):
        """
        Wait for the next node name nobody else holds and return (name, event).

        Raises:
            QueueShutDown: The queue was shut down.
        """
        if self._shutting_down:
            raise QueueShutDown()
        name = await self._ready.get()
        if name is None or self._shutting_down:
            # pass the sentinel on so every waiting worker wakes up
            self._ready.put_nowait(None)
            raise QueueShutDown()
        self._ready_names.discard(name)
        event = self._pending[name].popleft()
        if not self._pending[name]:
            del self._pending[name]
        self._processing.add(name)
        return name, event

    def done(self, name):
        """Release a node name taken with get()."""
        self._processing.discard(name)
        if name in self._pending and name not in self._parked:
            self._mark_ready(name)

    def forget(self, name):
        """Reset the retry budget for a node after a successful reconciliation."""
        self.retries.clear(name)

    def requeue(self, event, error=None):
        """
        Schedule a failed event for another attempt.

        The event goes back to the head of its node's backlog and the node is
        parked until the backoff delay elapses, so newer events cannot overtake it.

        Returns:
            float: The backoff delay in seconds.

        Raises:
            PermanentError: The retry budget for this node is exhausted.
        """
        name = event.name
        failures = self.retries.record_failure(name)
        if self.retries.exhausted(name):
            self.retries.clear(name)
            raise PermanentError(name, failures - 1, error)

        backlog = self._pending.setdefault(name, deque())
        if not (backlog and backlog[0].kind is event.kind):
            backlog.appendleft(event)

        delay = self.retries.backoff_for(failures)
        loop = asyncio.get_running_loop()
        self._parked[name] = loop.call_later(delay, self._unpark, name)
        logger.debug(f"[queue] Retrying {name} in {delay:.1f}s (attempt {failures})")
        return delay

    def shutdown(self):
        self._shutting_down = True
        for handle in self._parked.values():
            handle.cancel()
        self._parked.clear()
        self._ready.put_nowait(None)

    def _unpark(self, name):
        self._parked.pop(name, None)
        if name in self._pending and name not in self._processing:
            self._mark_ready(name)

    def _mark_ready(self, name):
        if name in self._processing or name in self._parked or name in self._ready_names:
            return
        self._ready_names.add(name)
        self._ready.put_nowait(name)

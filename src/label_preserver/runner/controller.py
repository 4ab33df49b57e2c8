#!/usr/bin/env python3
"""
controller.py
- Wires the node watcher, work queue and reconciler together.
- Launches:
    - Watcher thread: blocking node stream, handed to the loop thread-safely
    - Worker tasks: bounded pool, one in-flight reconciliation per node name
    - Heartbeat task: keeps the liveness file fresh while the watcher is alive
"""

import asyncio
import contextlib
import threading

import sentry_sdk
from loguru import logger

from label_preserver.core.errors import PermanentError, TransientError
from label_preserver.core.retry_state import RetryState
from label_preserver.lib.work_queue import QueueShutDown, WorkQueue
from label_preserver.utils.healthcheck import touch_heartbeat

HEARTBEAT_INTERVAL = 10  # seconds


async def worker(worker_id, queue, reconciler):
    """Pull events off the queue until it shuts down. Never dies on a reconcile error."""
    logger.debug(f"[worker-{worker_id}] Started.")
    while True:
        try:
            name, event = await queue.get()
        except QueueShutDown:
            logger.debug(f"[worker-{worker_id}] Queue shut down, exiting.")
            return

        try:
            await asyncio.to_thread(reconciler.reconcile, event)
            queue.forget(name)
        except Exception as e:
            handle_failure(queue, event, e)
        finally:
            queue.done(name)


def handle_failure(queue, event, error):
    name = event.name
    if isinstance(error, TransientError):
        logger.warning(f"[worker] Transient failure reconciling {name} ({event.kind.value}): {error}")
    else:
        logger.opt(exception=error).error(f"[worker] Unexpected failure reconciling {name} ({event.kind.value})")

    try:
        queue.requeue(event, error)
    except PermanentError as permanent:
        logger.error(f"[worker] ❌ {permanent}. Dropping this {event.kind.value} event.")
        sentry_sdk.capture_exception(permanent)


class Controller:
    def __init__(self, watcher, reconciler, worker_count=4, retry_state=None, heartbeat_file=None):
        self.watcher = watcher
        self.reconciler = reconciler
        self.worker_count = max(1, worker_count)
        self.retry_state = retry_state or RetryState()
        self.heartbeat_file = heartbeat_file
        self.queue = None
        self._stopping = None
        self._watcher_thread = None

    def stop(self):
        if self._stopping is not None:
            self._stopping.set()

    async def run(self):
        loop = asyncio.get_running_loop()
        self._stopping = asyncio.Event()
        self.queue = WorkQueue(self.retry_state)

        def sink(event):
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(self.queue.add, event)

        def run_watcher():
            try:
                self.watcher.run(sink)
            except Exception as e:
                logger.opt(exception=e).critical(f"[controller] Watcher thread crashed: {e}")
                sentry_sdk.capture_exception(e)
                loop.call_soon_threadsafe(self.stop)

        self._watcher_thread = threading.Thread(target=run_watcher, name="node-watcher", daemon=True)
        self._watcher_thread.start()

        workers = [asyncio.create_task(worker(i, self.queue, self.reconciler)) for i in range(self.worker_count)]
        heartbeat = asyncio.create_task(self._heartbeat()) if self.heartbeat_file else None
        logger.info(f"[controller] Running with {self.worker_count} worker(s).")

        await self._stopping.wait()
        logger.info("[controller] Shutting down, letting in-flight reconciliations finish...")

        self.watcher.stop()
        self.queue.shutdown()
        await asyncio.gather(*workers)
        if heartbeat is not None:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
        await asyncio.to_thread(self._watcher_thread.join, 5)
        logger.info("[controller] Stopped.")

    async def _heartbeat(self):
        while True:
            if self._watcher_thread is not None and self._watcher_thread.is_alive():
                touch_heartbeat(self.heartbeat_file)
            await asyncio.sleep(HEARTBEAT_INTERVAL)

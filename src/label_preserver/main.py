#!/usr/bin/env python3
"""
main.py
- Main asynchronous entrypoint for the node-label-preserver container.
- Sets up logging (and Sentry when SENTRY_DSN is set), loads settings,
  connects to the Kubernetes API and runs the controller until SIGTERM/SIGINT.
"""

import asyncio
import signal

import sentry_sdk
from loguru import logger

from label_preserver.core.config import SENTRY_DSN, SETTINGS_FILE, load_settings
from label_preserver.core.constants import FINALIZER_NAME
from label_preserver.core.kube_client import load_core_api
from label_preserver.core.log import setup_logging
from label_preserver.core.retry_state import RetryState
from label_preserver.lib.sync.label_store import ConfigMapLabelStore
from label_preserver.lib.sync.node_labels import NodeApi
from label_preserver.lib.sync.reconciler import Reconciler
from label_preserver.runner.controller import Controller
from label_preserver.runner.watcher import NodeWatcher


def build_controller(settings, core_api):
    store = ConfigMapLabelStore(core_api, settings.store_namespace, request_timeout=settings.kube_request_timeout)
    nodes = NodeApi(core_api, request_timeout=settings.kube_request_timeout)
    reconciler = Reconciler(
        store,
        nodes,
        use_finalizer=settings.use_finalizer,
        retain_records=settings.retain_records,
    )
    watcher = NodeWatcher(core_api, timeout_seconds=settings.watch_timeout_seconds)
    retry_state = RetryState(
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        max_attempts=settings.retry_max_attempts,
    )
    return Controller(
        watcher,
        reconciler,
        worker_count=settings.worker_count,
        retry_state=retry_state,
        heartbeat_file=settings.heartbeat_file,
    )


async def run(controller):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, controller.stop)
    await controller.run()


def main():
    settings = load_settings(SETTINGS_FILE)
    setup_logging(settings.log_level)

    # OPTIONAL: Only if you have a Sentry DSN
    if SENTRY_DSN:
        sentry_sdk.init(dsn=SENTRY_DSN, traces_sample_rate=0.0)
        logger.info("[main] Sentry error reporting enabled.")

    logger.info("[main] Starting node-label-preserver")
    logger.info(f"[main] Storing label backups in ConfigMaps within namespace: {settings.store_namespace}")
    if settings.use_finalizer:
        logger.info(f"[main] Using finalizer: {FINALIZER_NAME}")

    core_api = load_core_api()
    asyncio.run(run(build_controller(settings, core_api)))
    logger.info("[main] Exited cleanly.")


if __name__ == "__main__":
    main()

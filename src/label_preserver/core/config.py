"""
config.py
- Defines global configuration values derived from environment variables.
- load_settings() bundles them (plus optional YAML overrides) for the controller.
"""

import os
from dataclasses import dataclass, fields, replace

from loguru import logger

from label_preserver.core.config_loader import load_yaml
from label_preserver.core.constants import (
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_WATCH_TIMEOUT_SECONDS,
)

# --- Runtime Behavior Flags ---
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
USE_FINALIZER = os.getenv("USE_FINALIZER", "true").lower() == "true"
RETAIN_RECORDS = os.getenv("RETAIN_RECORDS", "false").lower() == "true"

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

# --- Storage & Workers ---
STORE_NAMESPACE = os.getenv("STORE_NAMESPACE", "default")
WORKER_COUNT = int(os.getenv("WORKER_COUNT", "4"))
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", str(DEFAULT_RETRY_BASE_DELAY)))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", str(DEFAULT_RETRY_MAX_DELAY)))
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", str(DEFAULT_RETRY_MAX_ATTEMPTS)))

# --- Kubernetes API ---
WATCH_TIMEOUT_SECONDS = int(os.getenv("WATCH_TIMEOUT_SECONDS", str(DEFAULT_WATCH_TIMEOUT_SECONDS)))
KUBE_REQUEST_TIMEOUT = float(os.getenv("KUBE_REQUEST_TIMEOUT", "30"))

# --- Paths & Integrations ---
SETTINGS_FILE = os.getenv("SETTINGS_FILE", "/etc/node-label-preserver/settings.yml")
HEARTBEAT_FILE = os.getenv("HEARTBEAT_FILE", "/tmp/node-label-preserver.alive")
SENTRY_DSN = os.getenv("SENTRY_DSN")


@dataclass(frozen=True)
class Settings:
    log_level: str = LOG_LEVEL
    store_namespace: str = STORE_NAMESPACE
    worker_count: int = WORKER_COUNT
    retry_base_delay: float = RETRY_BASE_DELAY
    retry_max_delay: float = RETRY_MAX_DELAY
    retry_max_attempts: int = RETRY_MAX_ATTEMPTS
    watch_timeout_seconds: int = WATCH_TIMEOUT_SECONDS
    kube_request_timeout: float = KUBE_REQUEST_TIMEOUT
    use_finalizer: bool = USE_FINALIZER
    retain_records: bool = RETAIN_RECORDS
    heartbeat_file: str = HEARTBEAT_FILE


def load_settings(path=SETTINGS_FILE):
    """
    Build the controller settings from environment defaults and the YAML file at `path`.

    Keys in the file use the Settings field names. Unknown keys are ignored
    with a warning; values are coerced to the field's type.

    Returns:
        Settings: The merged settings.
    """
    settings = Settings()
    overrides = load_yaml(path)
    if not overrides:
        return settings

    known = {f.name for f in fields(Settings)}
    changes = {}
    for key, value in overrides.items():
        if key not in known:
            logger.warning(f"[config] Unknown setting '{key}' in {path}, ignoring.")
            continue
        changes[key] = _coerce(value, type(getattr(settings, key)))
    if "log_level" in changes:
        changes["log_level"] = changes["log_level"].upper()

    logger.info(f"[config] Loaded overrides from {path}: {sorted(changes)}")
    return replace(settings, **changes)


def _coerce(value, kind):
    if kind is bool and isinstance(value, str):
        return value.lower() == "true"
    return kind(value)

#!/usr/bin/env python3
"""
healthcheck.py
- Liveness check for an exec probe.
- Returns exit code 0 if the controller touched its heartbeat file recently, 1 if not.
"""

import os
import sys
import time
from pathlib import Path

from label_preserver.core.config import HEARTBEAT_FILE

MAX_HEARTBEAT_AGE = int(os.getenv("MAX_HEARTBEAT_AGE", "60"))  # seconds


def touch_heartbeat(path):
    Path(path).touch()


def is_healthy(path=HEARTBEAT_FILE, max_age=MAX_HEARTBEAT_AGE, now=None):
    heartbeat = Path(path)
    if not heartbeat.exists():
        return False
    now = time.time() if now is None else now
    return now - heartbeat.stat().st_mtime <= max_age


def main():
    if is_healthy(HEARTBEAT_FILE, MAX_HEARTBEAT_AGE):
        sys.exit(0)  # Healthy
    else:
        print(f"❌ Healthcheck failed: heartbeat {HEARTBEAT_FILE} missing or older than {MAX_HEARTBEAT_AGE}s")
        sys.exit(1)  # Unhealthy


if __name__ == "__main__":
    main()

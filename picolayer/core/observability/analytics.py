"""
Analytics — anonymous usage events, fire-and-forget.

An event is sent only when analytics are enabled (the default) and
``PH_PICOLAYER_API_KEY`` is present. Delivery happens on a daemon
thread; failures are logged at DEBUG and never reach the caller.
Set ``PICOLAYER_NO_ANALYTICS=1`` to disable entirely.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import platform
import socket
import threading
import urllib.request
from pathlib import Path
from typing import Any

from picolayer import __version__

logger = logging.getLogger(__name__)

API_KEY_ENV = "PH_PICOLAYER_API_KEY"
CAPTURE_URL = "https://app.posthog.com/capture/"

_MACHINE_ID_FILES = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))


def track_event(
    event: str,
    properties: dict[str, Any] | None = None,
    *,
    enabled: bool = True,
) -> threading.Thread | None:
    """Queue one analytics event.

    Returns:
        The delivery thread, or None when nothing was sent.
    """
    if not enabled:
        return None

    api_key = os.environ.get(API_KEY_ENV)
    if not api_key:
        logger.debug("Analytics key not set (%s) — skipping event %s", API_KEY_ENV, event)
        return None

    payload = {
        "api_key": api_key,
        "event": event,
        "distinct_id": distinct_id(),
        "properties": {
            "version": __version__,
            "os": platform.system().lower(),
            "arch": platform.machine().lower(),
            **(properties or {}),
        },
    }

    thread = threading.Thread(target=_send, args=(payload,), daemon=True)
    thread.start()
    return thread


def distinct_id() -> str:
    """Anonymous, stable host identifier (hash of machine-id or hostname)."""
    for candidate in _MACHINE_ID_FILES:
        try:
            raw = candidate.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if raw:
            return hashlib.sha256(raw.encode()).hexdigest()[:32]
    return hashlib.sha256(socket.gethostname().encode()).hexdigest()[:32]


def _send(payload: dict[str, Any]) -> None:
    body = json.dumps(payload).encode()
    req = urllib.request.Request(
        CAPTURE_URL,
        data=body,
        headers={"Content-Type": "application/json", "User-Agent": "picolayer"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            resp.read()
        logger.debug("Tracked event: %s", payload["event"])
    except OSError as e:
        logger.debug("Failed to track event %s: %s", payload["event"], e)

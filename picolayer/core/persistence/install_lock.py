"""
Install lock — host-wide mutual exclusion for the install pipeline.

The lock is a JSON file (``{"pid": ..., "timestamp": ...}``) created
with ``O_CREAT | O_EXCL`` in the lock directory. A lock older than
``STALE_AFTER`` seconds is considered abandoned: it is renamed aside
and its age checked again before it is deleted. While
a fresh lock is held by someone else we sleep ``RETRY_DELAY`` and try
again, up to ``MAX_RETRIES`` times, then give up with ``LockHeld``.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path

from picolayer.core.errors import FilesystemError, LockHeld

logger = logging.getLogger(__name__)

LOCK_FILE = ".picolayer.lock"
STALE_AFTER = 300.0
RETRY_DELAY = 0.1
MAX_RETRIES = 50


def lock_path(lock_dir: Path) -> Path:
    return Path(lock_dir) / LOCK_FILE


def read_lock(path: Path) -> dict | None:
    """Return the holder record, or None if missing or unreadable."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.debug("Unreadable lock file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def lock_age(path: Path, now: float | None = None) -> float | None:
    """Seconds since the holder took the lock (None if it vanished).

    Uses the recorded timestamp, falling back to the file mtime when
    the content is missing or malformed.
    """
    now = time.time() if now is None else now
    info = read_lock(path)
    if info is None:
        return None
    stamp = info.get("timestamp")
    if not isinstance(stamp, (int, float)):
        try:
            stamp = path.stat().st_mtime
        except FileNotFoundError:
            return None
    return now - stamp


class InstallLock:
    """Context manager holding the global install lock.

    Usage::

        with InstallLock(settings.lock_dir):
            ...
    """

    def __init__(
        self,
        lock_dir: Path,
        *,
        stale_after: float | None = None,
        retry_delay: float | None = None,
        max_retries: int | None = None,
    ):
        self.path = lock_path(lock_dir)
        self.stale_after = STALE_AFTER if stale_after is None else stale_after
        self.retry_delay = RETRY_DELAY if retry_delay is None else retry_delay
        self.max_retries = MAX_RETRIES if max_retries is None else max_retries
        self.held = False

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise FilesystemError(self.path, e, "create") from e
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({"pid": os.getpid(), "timestamp": time.time()}, f)
        return True

    def _break_stale(self) -> None:
        """Move the stale lock aside, then check what was actually moved.

        Between our age check and the rename another waiter may have
        replaced the stale file with its own fresh lock. The rename
        claims exactly one file; if the claimed file is fresh it is
        linked back under the lock name for its holder.
        """
        claimed = self.path.with_name(f"{self.path.name}.stale-{os.getpid()}-{time.monotonic_ns()}")
        try:
            os.rename(self.path, claimed)
        except FileNotFoundError:
            return
        except OSError as e:
            raise FilesystemError(self.path, e, "remove") from e

        age = lock_age(claimed)
        if age is not None and age <= self.stale_after:
            try:
                os.link(claimed, self.path)
                logger.debug("Lock %s was renewed by another waiter; put it back", self.path)
            except FileExistsError:
                logger.warning("Lock %s was replaced twice while breaking a stale lock", self.path)
            except OSError as e:
                raise FilesystemError(self.path, e, "restore") from e
        claimed.unlink(missing_ok=True)

    def acquire(self) -> None:
        """Take the lock or raise ``LockHeld``.

        Raises:
            LockHeld: Retries exhausted while another holder kept the lock.
            FilesystemError: The lock directory or file cannot be written.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(self.path.parent, e, "create") from e
        attempts = 0
        while True:
            if self._try_create():
                self.held = True
                logger.debug("Acquired install lock %s", self.path)
                return

            age = lock_age(self.path)
            if age is not None and age > self.stale_after:
                logger.warning(
                    "Removing stale install lock %s (held %.0fs, holder %s)",
                    self.path, age, (read_lock(self.path) or {}).get("pid", "?"),
                )
                self._break_stale()
                continue

            attempts += 1
            if attempts > self.max_retries:
                raise LockHeld(self.path, self.max_retries)
            logger.debug("Install lock busy, retry %d/%d", attempts, self.max_retries)
            time.sleep(self.retry_delay)

    def release(self) -> None:
        """Remove the lock file; failures are logged, never raised."""
        if not self.held:
            return
        self.held = False
        try:
            self.path.unlink()
            logger.debug("Released install lock %s", self.path)
        except OSError as e:
            logger.warning("Could not remove install lock %s: %s", self.path, e)

    def __enter__(self) -> InstallLock:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()

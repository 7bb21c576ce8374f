"""Shared authentication constants and utilities.

This module contains the timings used by the MitID capture loop and the
file helpers shared by the session store.
"""

import fcntl
import logging
import os
import stat
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

# Timeouts
NAVIGATION_TIMEOUT_MS = 60_000
RELOAD_TIMEOUT_MS = 30_000
QR_SETTLE_DELAY_MS = 3_000
DEFAULT_POLL_TIMEOUT_MS = 30_000
CHECK_AUTH_TIMEOUT_MS = 120_000

# Polling cadence and QR staleness
COOKIE_POLL_INTERVAL_SEC = 3.0
QR_REFRESH_AFTER_SEC = 4 * 60

# Browser window
BROWSER_ARGS = ["--no-sandbox", "--start-maximized"]
VIEWPORT = {"width": 1280, "height": 900}

# Storage
SESSION_LOCK_FILENAME = ".session.lock"
SESSION_LOCK_TIMEOUT_SEC = 10


def ensure_private_dir(path: Path) -> Path:
    """Create a directory with owner-only permissions (0700) if missing."""
    path.mkdir(parents=True, exist_ok=True)

    try:
        os.chmod(path, stat.S_IRWXU)  # 0700
    except OSError:
        pass  # May fail on some systems, but directory is still created

    return path


def secure_file(path: Path) -> None:
    """Set owner-only permissions on a file that holds the session cookie."""
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)  # 0600
    except OSError:
        pass  # May fail on some systems


@contextmanager
def session_file_lock(lock_path: Path, timeout: int = SESSION_LOCK_TIMEOUT_SEC):
    """Context manager for exclusive access to the session record.

    Keeps the keepalive task and a CLI process from interleaving writes.

    Usage:
        with session_file_lock(store.lock_path):
            # read-modify-write the session file
            ...

    Args:
        lock_path: Lock file next to the session record
        timeout: Maximum seconds to wait for lock (default: 10)

    Raises:
        TimeoutError: If lock cannot be acquired within timeout
    """
    lock_file = None

    try:
        lock_file = open(lock_path, "w")

        start_time = time.time()
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                logger.debug(f"Acquired session lock {lock_path.name}")
                break
            except BlockingIOError:
                elapsed = time.time() - start_time
                if elapsed >= timeout:
                    raise TimeoutError(
                        f"Could not acquire session lock after {timeout}s. "
                        "Another process may be writing the session."
                    )
                time.sleep(0.05)

        yield

    finally:
        if lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            except OSError:
                pass
            lock_file.close()

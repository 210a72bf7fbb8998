"""Lock guarding a destination directory against concurrent runs."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from pathlib import Path

import filelock

from geoip2update.errors import LockError

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def destination_lock(path: Path | None, *, verbose: bool = False) -> Iterator[None]:
    """Hold the run lock for the duration of the block.

    The lock is taken without waiting: if another process already updates
    the same destination, the run is refused rather than queued.

    Args:
        path: Path to the lock file, or None to run unlocked.
        verbose: Enable verbose logging.

    Raises:
        LockError: If another process holds the lock.

    """
    if path is None:
        yield
        return

    lock = filelock.FileLock(str(path))
    try:
        lock.acquire(timeout=0)
    except filelock.Timeout as e:
        msg = f"Could not acquire lock on {path}: another update may be running"
        raise LockError(msg) from e
    if verbose:
        logger.info("Acquired lock: %s", path)

    try:
        yield
    finally:
        lock.release()
        if verbose:
            logger.info("Released lock: %s", path)

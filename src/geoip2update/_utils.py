"""Internal utilities for geoip2update."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def cleanup_temp_file(temp_path: str | Path) -> None:
    """Remove a temporary file, logging a warning on failure.

    A file that is already gone is not an error.

    Args:
        temp_path: Path to the temporary file.

    """
    try:
        os.unlink(temp_path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Failed to clean up temp file: %s", temp_path, exc_info=True)


def cleanup_temp_dir(temp_dir: str | Path) -> None:
    """Recursively remove a temporary directory, logging a warning on failure.

    Args:
        temp_dir: Path to the temporary directory.

    """
    try:
        shutil.rmtree(temp_dir)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning(
            "Failed to clean up temp directory: %s", temp_dir, exc_info=True
        )


def sync_dir(path: Path) -> None:
    """Sync directory to ensure renames are persisted.

    Args:
        path: Directory path to sync.

    """
    if not hasattr(os, "O_DIRECTORY"):
        return
    try:
        fd = os.open(str(path), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        # Some filesystems don't support directory fsync
        logger.warning("Failed to sync directory %s", path, exc_info=True)


def check_edition_id(edition_id: str) -> None:
    """Reject edition IDs that could escape the destination directory.

    Args:
        edition_id: The edition ID.

    Raises:
        ValueError: If edition_id contains path traversal characters.

    """
    if (
        not edition_id
        or "/" in edition_id
        or "\\" in edition_id
        or ".." in edition_id
        or ":" in edition_id
    ):
        msg = f"Invalid edition_id: {edition_id}"
        raise ValueError(msg)

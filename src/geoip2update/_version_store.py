"""Persistent record of the version marker installed for each edition."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from geoip2update._utils import check_edition_id, cleanup_temp_file, sync_dir

logger = logging.getLogger(__name__)

VERSION_FILE_NAME = ".geoip2update.versions"


def _parse_line(line: str) -> tuple[str, int] | None:
    """Split a record line into its edition ID and marker.

    Returns:
        The (edition_id, marker) pair, or None if the line is malformed.

    """
    edition_id, sep, marker = line.strip().rpartition(":")
    if not sep or not edition_id:
        return None
    try:
        return edition_id, int(marker)
    except ValueError:
        return None


class VersionStore:
    """Reads and writes the ``edition:marker`` record file.

    The file lives in the destination root and holds one line per edition.
    Lines are matched on the full edition ID, so ``GeoLite2-ASN`` and
    ``GeoLite2-ASN-CSV`` never shadow each other. Lines belonging to other
    editions are preserved verbatim when a record is rewritten.
    """

    def __init__(self, directory: Path, *, verbose: bool = False) -> None:
        """Initialize the store.

        Args:
            directory: Destination root holding the record file.
            verbose: Enable verbose logging.

        """
        self._dir = directory
        self._path = directory / VERSION_FILE_NAME
        self._verbose = verbose

    @property
    def path(self) -> Path:
        """Return the path of the record file."""
        return self._path

    def read(self, edition_id: str) -> int | None:
        """Return the stored version marker for an edition.

        When the file holds several records for the edition, the last one
        wins.

        Args:
            edition_id: The edition ID.

        Returns:
            The stored marker, or None if the edition has no record.

        """
        matches: list[int] = []
        for line in self._read_lines():
            parsed = _parse_line(line)
            if parsed is None:
                logger.warning("Ignoring malformed line in %s: %r", self._path, line)
                continue
            if parsed[0] == edition_id:
                matches.append(parsed[1])

        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "%s holds %d records for %s, using the last one",
                self._path,
                len(matches),
                edition_id,
            )
        return matches[-1]

    def write(self, edition_id: str, marker: int) -> None:
        """Record the version marker for an edition.

        The whole file is written to a temporary file and renamed over the
        old one.

        Args:
            edition_id: The edition ID.
            marker: The version marker to store.

        Raises:
            ValueError: If edition_id cannot be stored in the record format.
            OSError: If file operations fail.

        """
        check_edition_id(edition_id)

        kept = []
        for line in self._read_lines():
            parsed = _parse_line(line)
            if parsed is not None and parsed[0] == edition_id:
                continue
            kept.append(line)
        kept.append(f"{edition_id}:{marker}")
        content = "".join(f"{line}\n" for line in kept)

        fd, temp_path = tempfile.mkstemp(
            suffix=".temporary",
            prefix=f"{VERSION_FILE_NAME}_",
            dir=self._dir,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self._path)
        except BaseException:
            cleanup_temp_file(temp_path)
            raise

        sync_dir(self._dir)

        if self._verbose:
            logger.info("Stored version %d for %s", marker, edition_id)

    def _read_lines(self) -> list[str]:
        """Return the non-blank lines of the file; undecodable lines are dropped."""
        try:
            data = self._path.read_bytes()
        except FileNotFoundError:
            return []

        lines = []
        for raw in data.splitlines():
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("Ignoring undecodable line in %s: %r", self._path, raw)
                continue
            if line.strip():
                lines.append(line)
        return lines

"""Archive extraction and destination reconciliation for geoip2update."""

from __future__ import annotations

import enum
import importlib.util
import logging
import os
import re
import shutil
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from geoip2update._utils import (
    check_edition_id,
    cleanup_temp_dir,
    cleanup_temp_file,
    sync_dir,
)
from geoip2update.errors import ExtractError, InstallError, UnsupportedArchiveError
from geoip2update.models import ArchiveKind

logger = logging.getLogger(__name__)

_SUFFIXES = (
    (".tar.gz", ArchiveKind.GZIP_TAR),
    (".tgz", ArchiveKind.GZIP_TAR),
    (".zip", ArchiveKind.ZIP),
)


def available_archive_kinds() -> frozenset[ArchiveKind]:
    """Return the archive kinds this interpreter can decode.

    Both gzip and deflate-compressed zip members need zlib, which is an
    optional extension module in some Python builds.
    """
    if importlib.util.find_spec("zlib") is None:
        return frozenset()
    return frozenset(ArchiveKind)


def archive_kind_for(path: Path) -> ArchiveKind:
    """Determine the archive kind from a file name.

    Args:
        path: Path to the archive.

    Returns:
        The archive kind.

    Raises:
        UnsupportedArchiveError: If the suffix is not recognized.

    """
    name = path.name.lower()
    for suffix, kind in _SUFFIXES:
        if name.endswith(suffix):
            return kind
    msg = f"unsupported archive type: {path.name}"
    raise UnsupportedArchiveError(msg)


def extract_archive(path: Path, staging_dir: Path) -> None:
    """Decode an archive into a staging directory, preserving internal paths.

    Args:
        path: Path to the archive.
        staging_dir: Existing directory to extract into.

    Raises:
        UnsupportedArchiveError: If the suffix is not recognized.
        ExtractError: If the archive cannot be decoded.

    """
    kind = archive_kind_for(path)
    try:
        if kind is ArchiveKind.GZIP_TAR:
            with tarfile.open(path, mode="r:gz") as tar:
                tar.extractall(staging_dir, filter="data")
        else:
            with zipfile.ZipFile(path) as zf:
                zf.extractall(staging_dir)
    except (tarfile.TarError, zipfile.BadZipFile, EOFError, OSError) as e:
        msg = f"Failed to extract {path.name}: {e}"
        raise ExtractError(msg) from e


class MatchStatus(enum.Enum):
    """Outcome of looking for the edition directory in a staging root."""

    FOUND = "found"
    NOT_FOUND = "not found"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class DirectoryMatch:
    """Result of find_edition_directory.

    Attributes:
        status: Whether exactly one, none, or several directories matched.
        candidates: The matching directories, sorted by name.

    """

    status: MatchStatus
    candidates: tuple[Path, ...] = field(default_factory=tuple)

    @property
    def path(self) -> Path:
        """Return the matched directory.

        Raises:
            LookupError: If the match is not FOUND.

        """
        if self.status is not MatchStatus.FOUND:
            msg = f"no unique edition directory ({self.status.value})"
            raise LookupError(msg)
        return self.candidates[0]


def find_edition_directory(staging_root: Path, edition_id: str) -> DirectoryMatch:
    """Locate the top-level directory holding an edition's files.

    The download service names the directory after the edition, usually
    with a date suffix such as ``GeoLite2-City_20240101``.

    Args:
        staging_root: Directory the archive was extracted into.
        edition_id: The edition ID.

    Returns:
        The match result.

    """
    pattern = re.compile(rf"^{re.escape(edition_id)}[_\d]*$")
    candidates = tuple(
        sorted(
            entry
            for entry in staging_root.iterdir()
            if entry.is_dir() and not entry.is_symlink() and pattern.match(entry.name)
        )
    )
    if not candidates:
        return DirectoryMatch(MatchStatus.NOT_FOUND)
    if len(candidates) > 1:
        return DirectoryMatch(MatchStatus.AMBIGUOUS, candidates)
    return DirectoryMatch(MatchStatus.FOUND, candidates)


def _replace_directory(new_dir: Path, target: Path) -> None:
    """Swap new_dir into place at target, restoring target on failure."""
    if not target.exists():
        os.replace(new_dir, target)
        return

    backup = new_dir.with_name(f"{new_dir.name}.old")
    os.replace(target, backup)
    try:
        os.replace(new_dir, target)
    except OSError:
        os.replace(backup, target)
        raise
    cleanup_temp_dir(backup)


def _install_files(files: list[Path], edition_id: str, destination_root: Path) -> None:
    """Move files into a fresh directory and swap it in as the edition's."""
    new_dir = Path(
        tempfile.mkdtemp(prefix=f".{edition_id}_", suffix=".new", dir=destination_root)
    )
    try:
        for entry in files:
            shutil.move(entry, new_dir / entry.name)
        os.chmod(new_dir, 0o755)
        _replace_directory(new_dir, destination_root / edition_id)
    except BaseException:
        cleanup_temp_dir(new_dir)
        raise
    sync_dir(destination_root)


def unpack_edition(
    archive_path: Path,
    edition_id: str,
    destination_root: Path,
    staging_root: Path,
    *,
    data_suffix: str | None = None,
    verbose: bool = False,
) -> list[str]:
    """Install the files of a downloaded archive as the edition's directory.

    The regular files found directly inside the edition directory of the
    archive become the complete content of ``destination_root/edition_id``.
    When data_suffix is given, only files with that suffix are kept, which
    drops READMEs and license notices. Nested directories and everything
    outside the edition directory are dropped as well. The new directory is
    assembled next to the old one and renamed into place, so a failure
    leaves the previous content untouched. The archive and the staging
    directory are removed in every case.

    Args:
        archive_path: Path to the downloaded archive.
        edition_id: The edition ID.
        destination_root: Directory holding one subdirectory per edition.
        staging_root: Scratch directory for extraction.
        data_suffix: Suffix of the data files to keep, e.g. ".mmdb".
        verbose: Enable verbose logging.

    Returns:
        Sorted names of the installed files.

    Raises:
        UnsupportedArchiveError: If the archive suffix is not recognized.
        ExtractError: If the archive cannot be decoded or its layout is
            unexpected.
        InstallError: If the destination cannot be updated.

    """
    staging_dir: Path | None = None
    try:
        check_edition_id(edition_id)
        archive_kind_for(archive_path)
        staging_dir = Path(
            tempfile.mkdtemp(prefix=f"{edition_id}_", suffix=".extract", dir=staging_root)
        )
        extract_archive(archive_path, staging_dir)

        match = find_edition_directory(staging_dir, edition_id)
        if match.status is MatchStatus.NOT_FOUND:
            msg = f"archive does not contain a {edition_id} directory"
            raise ExtractError(msg, edition_id)
        if match.status is MatchStatus.AMBIGUOUS:
            names = ", ".join(c.name for c in match.candidates)
            msg = f"archive contains several {edition_id} directories: {names}"
            raise ExtractError(msg, edition_id)

        files = [
            entry
            for entry in match.path.iterdir()
            if entry.is_file()
            and not entry.is_symlink()
            and (data_suffix is None or entry.name.endswith(data_suffix))
        ]
        if not files:
            kind = f"{data_suffix} files" if data_suffix else "files"
            msg = f"{match.path.name} in archive holds no {kind}"
            raise ExtractError(msg, edition_id)

        try:
            _install_files(files, edition_id, destination_root)
        except OSError as e:
            msg = f"failed to install {edition_id}: {e}"
            raise InstallError(msg, edition_id) from e
    finally:
        if staging_dir is not None:
            cleanup_temp_dir(staging_dir)
        cleanup_temp_file(archive_path)

    installed = sorted(entry.name for entry in files)
    if verbose:
        logger.info("Installed %s: %s", edition_id, ", ".join(installed))
    return installed

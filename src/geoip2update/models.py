"""Data models for geoip2update."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any


class DatabaseKind(enum.Enum):
    """The kind of data files an edition ships."""

    BINARY = "mmdb"
    TABULAR = "csv"

    @property
    def file_suffix(self) -> str:
        """Return the suffix of the data files, including the dot."""
        return f".{self.value}"


class ArchiveKind(enum.Enum):
    """The container format an edition is distributed in.

    The value is the file suffix used both in the download request and in
    the name of the staged archive.
    """

    GZIP_TAR = "tar.gz"
    ZIP = "zip"

    @property
    def suffix(self) -> str:
        """Return the file suffix without a leading dot."""
        return self.value


class EditionStatus(enum.Enum):
    """Terminal state of one edition in a run."""

    SKIPPED = "skipped"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class Edition:
    """A database product tracked independently for updates.

    Attributes:
        edition_id: The edition ID, e.g. "GeoLite2-City".
        database_kind: Whether the edition ships MMDB or CSV files.
        archive_kind: The archive format used to ship the files.

    """

    edition_id: str
    database_kind: DatabaseKind
    archive_kind: ArchiveKind


@dataclass(frozen=True)
class RemoteEditionMetadata:
    """Metadata reported by the download service for an edition.

    Attributes:
        edition_id: The edition ID.
        filename: The file name suggested by the service.
        version: Version marker, the Unix timestamp of the archive's
            Last-Modified date.
        content_length: Archive size in bytes, if reported.

    """

    edition_id: str
    filename: str
    version: int
    content_length: int | None = None


@dataclass(frozen=True)
class EditionResult:
    """Outcome of processing a single edition.

    Attributes:
        edition_id: The edition ID.
        status: Whether the edition was skipped, updated or failed.
        message: Human-readable sentence naming the edition.
        error_kind: Name of the error class when the edition failed.
        old_version: Version marker stored before the run.
        new_version: Version marker reported by the service.
        checked_at: When the edition was processed.

    """

    edition_id: str
    status: EditionStatus
    message: str
    error_kind: str | None = None
    old_version: int | None = None
    new_version: int | None = None
    checked_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate that timestamps are timezone-aware."""
        if self.checked_at is not None and self.checked_at.tzinfo is None:
            msg = "checked_at must be timezone-aware"
            raise ValueError(msg)

    @property
    def was_updated(self) -> bool:
        """Return True if new files were installed for the edition."""
        return self.status is EditionStatus.UPDATED

    @property
    def failed(self) -> bool:
        """Return True if the edition ended in an error."""
        return self.status is EditionStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation suitable for JSON output.

        """
        result: dict[str, Any] = {
            "edition_id": self.edition_id,
            "status": self.status.value,
            "message": self.message,
        }
        if self.error_kind:
            result["error"] = self.error_kind
        if self.old_version is not None:
            result["old_version"] = self.old_version
        if self.new_version is not None:
            result["new_version"] = self.new_version
        if self.checked_at:
            result["checked_at"] = int(self.checked_at.timestamp())
        return result


def _build_edition_table() -> MappingProxyType[str, Edition]:
    products = (
        "GeoLite2-ASN",
        "GeoLite2-City",
        "GeoLite2-Country",
        "GeoIP2-ASN",
        "GeoIP2-City",
        "GeoIP2-Country",
        "GeoIP2-ISP",
        "GeoIP2-Domain",
        "GeoIP2-Connection-Type",
        "GeoIP2-Anonymous-IP",
        "GeoIP2-Enterprise",
    )
    table: dict[str, Edition] = {}
    for product in products:
        table[product] = Edition(product, DatabaseKind.BINARY, ArchiveKind.GZIP_TAR)
        csv_id = f"{product}-CSV"
        table[csv_id] = Edition(csv_id, DatabaseKind.TABULAR, ArchiveKind.ZIP)
    return MappingProxyType(table)


# Editions known to the download service, keyed by edition ID.
EDITIONS = _build_edition_table()

DEFAULT_EDITION_IDS = ("GeoLite2-ASN", "GeoLite2-City", "GeoLite2-Country")

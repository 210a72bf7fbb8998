"""Shared test helpers for geoip2update tests."""

from __future__ import annotations

import io
import tarfile
import zipfile
from datetime import UTC, datetime
from email.utils import format_datetime
from pathlib import Path

from pytest_httpserver import HTTPServer

LAST_MODIFIED = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)
LAST_MODIFIED_TS = int(LAST_MODIFIED.timestamp())


def edition_files(edition_id: str, suffix: str = "_20240115") -> dict[str, bytes]:
    """Return the typical content of an edition archive."""
    return {
        f"{edition_id}{suffix}/{edition_id}.mmdb": f"{edition_id} data".encode(),
        f"{edition_id}{suffix}/COPYRIGHT.txt": b"copyright",
        f"{edition_id}{suffix}/LICENSE.txt": b"license",
    }


def create_test_tar_gz(files: dict[str, bytes]) -> bytes:
    """Create a tar.gz archive holding the given files."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def create_test_zip(files: dict[str, bytes]) -> bytes:
    """Create a zip archive holding the given files."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def create_test_archive_file(tmp_path: Path, name: str, data: bytes) -> Path:
    """Write archive bytes to tmp_path/name and return the path."""
    path = tmp_path / name
    path.write_bytes(data)
    return path


def expect_edition(
    httpserver: HTTPServer,
    edition_id: str,
    *,
    archive: bytes | None = None,
    suffix: str = "tar.gz",
    license_key: str = "test_key",
    last_modified: datetime = LAST_MODIFIED,
    status: int = 200,
    filename: str | None = None,
) -> None:
    """Register the HEAD probe and, when given an archive, the download."""
    query = {"edition_id": edition_id, "suffix": suffix, "license_key": license_key}
    headers = {
        "Last-Modified": format_datetime(last_modified, usegmt=True),
        "Content-Disposition": (
            f"attachment; filename={filename or f'{edition_id}_20240115.{suffix}'}"
        ),
    }
    # HEAD responses drop the body but keep its Content-Length.
    httpserver.expect_request(
        "/app/geoip_download", method="HEAD", query_string=query
    ).respond_with_data(
        archive or b"",
        status=status,
        headers=headers if status == 200 else None,
    )
    if archive is not None:
        httpserver.expect_request(
            "/app/geoip_download", method="GET", query_string=query
        ).respond_with_data(
            archive, content_type="application/gzip", headers=headers
        )

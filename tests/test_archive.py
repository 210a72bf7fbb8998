"""Tests for archive extraction and destination reconciliation."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path
from unittest.mock import patch

import pytest

from geoip2update._archive import (
    MatchStatus,
    archive_kind_for,
    available_archive_kinds,
    extract_archive,
    find_edition_directory,
    unpack_edition,
)
from geoip2update.errors import ExtractError, InstallError, UnsupportedArchiveError
from geoip2update.models import ArchiveKind
from tests.conftest import (
    create_test_archive_file,
    create_test_tar_gz,
    create_test_zip,
    edition_files,
)


@pytest.fixture
def dirs(tmp_path: Path) -> tuple[Path, Path]:
    destination = tmp_path / "dest"
    staging = tmp_path / "tmp"
    destination.mkdir()
    staging.mkdir()
    return destination, staging


class TestArchiveKind:
    """Tests for archive_kind_for."""

    @pytest.mark.parametrize(
        ("name", "kind"),
        [
            ("GeoLite2-City_20240115.tar.gz", ArchiveKind.GZIP_TAR),
            ("GeoLite2-City.TGZ", ArchiveKind.GZIP_TAR),
            ("GeoLite2-City-CSV_20240115.zip", ArchiveKind.ZIP),
        ],
    )
    def test_known_suffixes(self, name: str, kind: ArchiveKind) -> None:
        assert archive_kind_for(Path(name)) is kind

    def test_unknown_suffix(self) -> None:
        with pytest.raises(UnsupportedArchiveError, match="unsupported archive type"):
            archive_kind_for(Path("GeoLite2-City.rar"))

    def test_available_kinds(self) -> None:
        assert available_archive_kinds() == frozenset(ArchiveKind)

    def test_no_kinds_without_zlib(self) -> None:
        with patch("geoip2update._archive.importlib.util.find_spec", return_value=None):
            assert available_archive_kinds() == frozenset()


class TestExtractArchive:
    """Tests for extract_archive."""

    def test_invalid_gzip(self, tmp_path: Path) -> None:
        path = create_test_archive_file(tmp_path, "bad.tar.gz", b"not gzip data")
        out = tmp_path / "out"
        out.mkdir()

        with pytest.raises(ExtractError, match="Failed to extract"):
            extract_archive(path, out)

    def test_invalid_zip(self, tmp_path: Path) -> None:
        path = create_test_archive_file(tmp_path, "bad.zip", b"not zip data")
        out = tmp_path / "out"
        out.mkdir()

        with pytest.raises(ExtractError, match="Failed to extract"):
            extract_archive(path, out)

    def test_path_traversal_member_rejected(self, tmp_path: Path) -> None:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            info = tarfile.TarInfo(name="../escape.txt")
            info.size = 1
            tar.addfile(info, io.BytesIO(b"x"))
        path = create_test_archive_file(tmp_path, "evil.tar.gz", buffer.getvalue())
        out = tmp_path / "out"
        out.mkdir()

        with pytest.raises(ExtractError):
            extract_archive(path, out)

        assert not (tmp_path / "escape.txt").exists()


class TestFindEditionDirectory:
    """Tests for find_edition_directory."""

    def test_found_with_date_suffix(self, tmp_path: Path) -> None:
        (tmp_path / "GeoLite2-City_20240115").mkdir()
        (tmp_path / "README.txt").write_text("x")

        match = find_edition_directory(tmp_path, "GeoLite2-City")

        assert match.status is MatchStatus.FOUND
        assert match.path == tmp_path / "GeoLite2-City_20240115"

    def test_found_without_suffix(self, tmp_path: Path) -> None:
        (tmp_path / "GeoLite2-City").mkdir()

        match = find_edition_directory(tmp_path, "GeoLite2-City")

        assert match.status is MatchStatus.FOUND

    def test_other_edition_not_matched(self, tmp_path: Path) -> None:
        (tmp_path / "GeoLite2-City-CSV_20240115").mkdir()

        match = find_edition_directory(tmp_path, "GeoLite2-City")

        assert match.status is MatchStatus.NOT_FOUND
        with pytest.raises(LookupError):
            _ = match.path

    def test_file_with_matching_name_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "GeoLite2-City_20240115").write_text("not a directory")

        match = find_edition_directory(tmp_path, "GeoLite2-City")

        assert match.status is MatchStatus.NOT_FOUND

    def test_ambiguous(self, tmp_path: Path) -> None:
        (tmp_path / "GeoLite2-City_20240101").mkdir()
        (tmp_path / "GeoLite2-City_20240115").mkdir()

        match = find_edition_directory(tmp_path, "GeoLite2-City")

        assert match.status is MatchStatus.AMBIGUOUS
        assert len(match.candidates) == 2


class TestUnpackEdition:
    """Tests for unpack_edition."""

    def test_keeps_only_flat_data_files(self, dirs: tuple[Path, Path]) -> None:
        destination, staging = dirs
        files = {
            "EditionA_20240101/EditionA.mmdb": b"mmdb",
            "EditionA_20240101/COPYRIGHT.txt": b"copyright",
        }
        archive = create_test_archive_file(
            staging, "EditionA.tar.gz", create_test_tar_gz(files)
        )

        installed = unpack_edition(
            archive, "EditionA", destination, staging, data_suffix=".mmdb"
        )

        edition_dir = destination / "EditionA"
        assert installed == ["EditionA.mmdb"]
        assert sorted(p.name for p in edition_dir.iterdir()) == ["EditionA.mmdb"]
        assert (edition_dir / "EditionA.mmdb").read_bytes() == b"mmdb"
        assert not (edition_dir / "COPYRIGHT.txt").exists()
        assert not archive.exists()
        assert list(staging.iterdir()) == []

    def test_nested_directories_and_siblings_dropped(self, dirs: tuple[Path, Path]) -> None:
        destination, staging = dirs
        files = {
            "EditionA_20240101/EditionA.mmdb": b"mmdb",
            "EditionA_20240101/docs/COPYRIGHT.txt": b"copyright",
            "README.txt": b"readme",
        }
        archive = create_test_archive_file(
            staging, "EditionA.tar.gz", create_test_tar_gz(files)
        )

        unpack_edition(archive, "EditionA", destination, staging)

        edition_dir = destination / "EditionA"
        assert sorted(p.name for p in edition_dir.iterdir()) == ["EditionA.mmdb"]
        assert not (edition_dir / "COPYRIGHT.txt").exists()
        assert not (edition_dir / "docs").exists()
        assert not archive.exists()
        assert list(staging.iterdir()) == []

    def test_zip_archive(self, dirs: tuple[Path, Path]) -> None:
        destination, staging = dirs
        files = {
            "GeoLite2-City-CSV_20240115/GeoLite2-City-Blocks-IPv4.csv": b"a,b\n",
            "GeoLite2-City-CSV_20240115/GeoLite2-City-Locations-en.csv": b"c,d\n",
        }
        archive = create_test_archive_file(
            staging, "GeoLite2-City-CSV.zip", create_test_zip(files)
        )

        installed = unpack_edition(archive, "GeoLite2-City-CSV", destination, staging)

        assert installed == [
            "GeoLite2-City-Blocks-IPv4.csv",
            "GeoLite2-City-Locations-en.csv",
        ]
        assert (destination / "GeoLite2-City-CSV" / "GeoLite2-City-Blocks-IPv4.csv").exists()

    def test_strict_mirror_removes_stale_files(self, dirs: tuple[Path, Path]) -> None:
        destination, staging = dirs
        edition_dir = destination / "GeoLite2-City"
        edition_dir.mkdir()
        (edition_dir / "GeoLite2-City.mmdb").write_bytes(b"old")
        (edition_dir / "stale.mmdb").write_bytes(b"stale")
        archive = create_test_archive_file(
            staging,
            "GeoLite2-City.tar.gz",
            create_test_tar_gz(edition_files("GeoLite2-City")),
        )

        unpack_edition(archive, "GeoLite2-City", destination, staging)

        assert (edition_dir / "GeoLite2-City.mmdb").read_bytes() == b"GeoLite2-City data"
        assert not (edition_dir / "stale.mmdb").exists()
        # No temporary siblings remain in the destination.
        assert sorted(p.name for p in destination.iterdir()) == ["GeoLite2-City"]

    def test_does_not_touch_other_editions(self, dirs: tuple[Path, Path]) -> None:
        destination, staging = dirs
        other = destination / "GeoLite2-Country"
        other.mkdir()
        (other / "GeoLite2-Country.mmdb").write_bytes(b"country")
        (destination / "unrelated.txt").write_text("keep me")
        archive = create_test_archive_file(
            staging,
            "GeoLite2-City.tar.gz",
            create_test_tar_gz(edition_files("GeoLite2-City")),
        )

        unpack_edition(archive, "GeoLite2-City", destination, staging)

        assert (other / "GeoLite2-Country.mmdb").read_bytes() == b"country"
        assert (destination / "unrelated.txt").read_text() == "keep me"

    def test_missing_edition_directory(self, dirs: tuple[Path, Path]) -> None:
        destination, staging = dirs
        archive = create_test_archive_file(
            staging,
            "GeoLite2-City.tar.gz",
            create_test_tar_gz({"Something-Else/file.mmdb": b"x"}),
        )

        with pytest.raises(ExtractError, match="does not contain"):
            unpack_edition(archive, "GeoLite2-City", destination, staging)

        assert not archive.exists()
        assert list(staging.iterdir()) == []
        assert list(destination.iterdir()) == []

    def test_ambiguous_layout_keeps_previous_files(
        self, dirs: tuple[Path, Path]
    ) -> None:
        destination, staging = dirs
        edition_dir = destination / "GeoLite2-City"
        edition_dir.mkdir()
        (edition_dir / "GeoLite2-City.mmdb").write_bytes(b"old")
        files = {
            "GeoLite2-City_20240101/GeoLite2-City.mmdb": b"one",
            "GeoLite2-City_20240115/GeoLite2-City.mmdb": b"two",
        }
        archive = create_test_archive_file(
            staging, "GeoLite2-City.tar.gz", create_test_tar_gz(files)
        )

        with pytest.raises(ExtractError, match="several"):
            unpack_edition(archive, "GeoLite2-City", destination, staging)

        assert (edition_dir / "GeoLite2-City.mmdb").read_bytes() == b"old"
        assert not archive.exists()

    def test_empty_edition_directory(self, dirs: tuple[Path, Path]) -> None:
        destination, staging = dirs
        archive = create_test_archive_file(
            staging,
            "GeoLite2-City.tar.gz",
            create_test_tar_gz({"GeoLite2-City_20240115/nested/x.mmdb": b"x"}),
        )

        with pytest.raises(ExtractError, match="holds no files"):
            unpack_edition(archive, "GeoLite2-City", destination, staging)

        assert not (destination / "GeoLite2-City").exists()

    def test_unsupported_archive(self, dirs: tuple[Path, Path]) -> None:
        destination, staging = dirs
        archive = create_test_archive_file(staging, "GeoLite2-City.rar", b"data")

        with pytest.raises(UnsupportedArchiveError):
            unpack_edition(archive, "GeoLite2-City", destination, staging)

        assert not archive.exists()

    def test_failed_swap_restores_previous_directory(
        self, dirs: tuple[Path, Path]
    ) -> None:
        destination, staging = dirs
        edition_dir = destination / "GeoLite2-City"
        edition_dir.mkdir()
        (edition_dir / "GeoLite2-City.mmdb").write_bytes(b"old")
        archive = create_test_archive_file(
            staging,
            "GeoLite2-City.tar.gz",
            create_test_tar_gz(edition_files("GeoLite2-City")),
        )

        real_replace = __import__("os").replace
        calls = []

        def flaky_replace(src: Path, dst: Path) -> None:
            calls.append((src, dst))
            # Second rename moves the new directory into place.
            if len(calls) == 2:
                raise OSError("disk on fire")
            real_replace(src, dst)

        with (
            patch("geoip2update._archive.os.replace", side_effect=flaky_replace),
            pytest.raises(InstallError, match="failed to install GeoLite2-City") as exc_info,
        ):
            unpack_edition(archive, "GeoLite2-City", destination, staging)

        assert isinstance(exc_info.value.__cause__, OSError)
        assert (edition_dir / "GeoLite2-City.mmdb").read_bytes() == b"old"
        assert sorted(p.name for p in destination.iterdir()) == ["GeoLite2-City"]
        assert not archive.exists()

    def test_invalid_edition_id_still_removes_archive(
        self, dirs: tuple[Path, Path]
    ) -> None:
        destination, staging = dirs
        archive = create_test_archive_file(
            staging,
            "evil.tar.gz",
            create_test_tar_gz(edition_files("GeoLite2-City")),
        )

        with pytest.raises(ValueError, match="Invalid edition_id"):
            unpack_edition(archive, "../evil", destination, staging)

        assert not archive.exists()
        assert list(destination.iterdir()) == []

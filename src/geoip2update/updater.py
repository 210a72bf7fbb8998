"""Update orchestration for geoip2update."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

from geoip2update._archive import available_archive_kinds, unpack_edition
from geoip2update._file_lock import destination_lock
from geoip2update._version_store import VersionStore
from geoip2update.client import Client
from geoip2update.errors import (
    EditionError,
    InstallError,
    LockError,
    MissingCapabilityError,
    UnknownEditionError,
)
from geoip2update.models import (
    ArchiveKind,
    Edition,
    EditionResult,
    EditionStatus,
    RemoteEditionMetadata,
)

if TYPE_CHECKING:
    from geoip2update.config import Config

logger = logging.getLogger(__name__)

# Called with (edition_id, content_length) before a download starts; the
# returned context manager's ``update`` method receives chunk sizes.
ProgressFactory = Callable[[str, int | None], contextlib.AbstractContextManager[Any]]


def _describe(edition_id: str, exc: BaseException) -> str:
    return f"{edition_id}: {exc}"


class Updater:
    """Orchestrates edition updates.

    Each configured edition is probed, compared with the version stored
    locally, and downloaded and installed when the versions differ. Errors
    are isolated per edition: a failing edition is recorded and the run
    continues with the next one.

    Example:
        config = Config(
            license_key="your_key",
            editions=("GeoLite2-City",),
            directory=Path("/var/lib/GeoIP"),
        )

        async with Updater(config) as updater:
            await updater.run()

        print(updater.updated(), updater.errors())

    """

    def __init__(
        self,
        config: Config,
        *,
        capabilities: frozenset[ArchiveKind] | None = None,
        progress: ProgressFactory | None = None,
    ) -> None:
        """Initialize the updater.

        Args:
            config: Configuration for the updater.
            capabilities: Archive kinds that can be decoded. Defaults to
                what the running interpreter supports.
            progress: Factory for download progress displays.

        """
        self._config = config
        self._capabilities = (
            available_archive_kinds() if capabilities is None else capabilities
        )
        self._progress = progress
        self._client: Client | None = None
        self._store: VersionStore | None = None
        self._exit_stack: contextlib.AsyncExitStack | None = None
        self._results: list[EditionResult] = []
        self._fatal_errors: list[str] = []

    async def __aenter__(self) -> Self:
        """Enter async context manager."""
        self._exit_stack = contextlib.AsyncExitStack()
        try:
            client = Client(
                license_key=self._config.license_key,
                host=self._config.host,
                proxy=self._config.proxy,
                retry_for=self._config.retry_for,
            )
            self._client = await self._exit_stack.enter_async_context(client)
        except BaseException:
            await self._exit_stack.aclose()
            raise

        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager."""
        if self._exit_stack:
            await self._exit_stack.aclose()
            self._exit_stack = None

    def updated(self) -> list[str]:
        """Return one message per skipped or updated edition, in order."""
        return [r.message for r in self._results if not r.failed]

    def errors(self) -> list[str]:
        """Return fatal errors, then one message per failed edition."""
        return self._fatal_errors + [r.message for r in self._results if r.failed]

    def results(self) -> list[EditionResult]:
        """Return the structured result of every processed edition."""
        return list(self._results)

    def validate(self) -> list[str]:
        """Check the preconditions of a run.

        Returns:
            Messages describing every failed precondition.

        """
        config = self._config
        problems = []
        if not config.license_key:
            problems.append("License key not specified.")
        if not config.editions:
            problems.append("No editions specified.")
        problems.extend(_check_writable_dir("Destination", config.directory))
        problems.extend(_check_writable_dir("Temporary", config.tmp_dir))
        return problems

    async def run(self) -> list[EditionResult]:
        """Run the update process for all configured editions.

        Precondition failures and lock failures abort the run before any
        edition is processed; they are reported through errors().

        Returns:
            List of update results for each edition.

        """
        if not self._client:
            msg = "Updater must be used as async context manager"
            raise RuntimeError(msg)

        self._results = []
        self._fatal_errors = self.validate()
        if self._fatal_errors:
            for problem in self._fatal_errors:
                logger.error("%s", problem)
            return []

        directory = self._config.directory
        assert directory is not None
        self._store = VersionStore(directory, verbose=self._config.verbose)

        with contextlib.ExitStack() as stack:
            try:
                stack.enter_context(
                    destination_lock(self._config.lock_file, verbose=self._config.verbose)
                )
            except LockError as e:
                self._fatal_errors = [str(e)]
                logger.error("%s", e)
                return []

            self._results = await self._run_updates()

        return list(self._results)

    async def _run_updates(self) -> list[EditionResult]:
        """Run updates for all editions with configured parallelism.

        Returns:
            List of update results in configured order.

        """
        edition_ids = self._config.editions
        parallelism = self._config.parallelism

        if parallelism <= 1 or len(edition_ids) <= 1:
            return [await self._update_edition(eid) for eid in edition_ids]

        semaphore = asyncio.Semaphore(parallelism)

        async def update_with_semaphore(edition_id: str) -> EditionResult:
            async with semaphore:
                return await self._update_edition(edition_id)

        results = await asyncio.gather(
            *(update_with_semaphore(eid) for eid in edition_ids)
        )
        return list(results)

    async def _update_edition(self, edition_id: str) -> EditionResult:
        """Process one edition, converting any failure into a result.

        Args:
            edition_id: The edition ID.

        Returns:
            Result for the edition.

        """
        try:
            return await self._update_edition_unchecked(edition_id)
        except EditionError as e:
            e.edition_id = e.edition_id or edition_id
            logger.warning("%s", _describe(edition_id, e))
            return self._failed(edition_id, e)
        except (OSError, ValueError) as e:
            logger.warning("%s", _describe(edition_id, e), exc_info=True)
            return self._failed(edition_id, e)
        except Exception as e:
            logger.exception("Unexpected error updating %s", edition_id)
            return self._failed(edition_id, e)

    async def _update_edition_unchecked(self, edition_id: str) -> EditionResult:
        if not self._client or not self._store:
            msg = "Updater not initialized"
            raise RuntimeError(msg)

        edition = self._config.edition_table.get(edition_id)
        if edition is None:
            msg = "unsupported edition"
            raise UnknownEditionError(msg, edition_id)
        if edition.archive_kind not in self._capabilities:
            msg = (
                f"cannot decode {edition.archive_kind.suffix} archives "
                "in this Python installation"
            )
            raise MissingCapabilityError(msg, edition_id)

        metadata = await self._client.probe(edition)
        old_version = self._local_version(edition_id)
        checked_at = datetime.now(timezone.utc)

        if old_version == metadata.version:
            if self._config.verbose:
                logger.info("Edition %s up to date", edition_id)
            return EditionResult(
                edition_id=edition_id,
                status=EditionStatus.SKIPPED,
                message=f"{edition_id} does not need to be updated.",
                old_version=old_version,
                new_version=metadata.version,
                checked_at=checked_at,
            )

        if self._config.verbose:
            logger.info(
                "Updates available for %s (%s -> %s)",
                edition_id,
                old_version,
                metadata.version,
            )

        archive_path = await self._fetch(edition, metadata)
        await asyncio.to_thread(
            unpack_edition,
            archive_path,
            edition_id,
            self._config.directory,  # type: ignore[arg-type]
            self._config.tmp_dir,
            data_suffix=edition.database_kind.file_suffix,
            verbose=self._config.verbose,
        )
        # Store writes happen on the event loop thread, one at a time.
        try:
            self._store.write(edition_id, metadata.version)
        except OSError as e:
            msg = f"failed to record version {metadata.version}: {e}"
            raise InstallError(msg, edition_id) from e

        return EditionResult(
            edition_id=edition_id,
            status=EditionStatus.UPDATED,
            message=f"{edition_id} has been updated.",
            old_version=old_version,
            new_version=metadata.version,
            checked_at=checked_at,
        )

    async def _fetch(self, edition: Edition, metadata: RemoteEditionMetadata) -> Path:
        """Download an edition's archive to its staging path."""
        assert self._client is not None
        staging_path = self._config.tmp_dir / (
            f"{edition.edition_id}.{edition.archive_kind.suffix}"
        )
        if self._config.verbose:
            logger.info("Downloading %s to %s", metadata.filename, staging_path)

        if self._progress is None:
            return await self._client.fetch(edition, staging_path)
        with self._progress(edition.edition_id, metadata.content_length) as bar:
            return await self._client.fetch(edition, staging_path, bar.update)

    def _local_version(self, edition_id: str) -> int | None:
        """Return the stored marker, ignoring it if the files are missing."""
        assert self._store is not None
        version = self._store.read(edition_id)
        if version is None:
            return None
        if not (self._config.directory / edition_id).is_dir():  # type: ignore[operator]
            if self._config.verbose:
                logger.info("Directory for %s is missing, ignoring stored version", edition_id)
            return None
        return version

    @staticmethod
    def _failed(edition_id: str, exc: BaseException) -> EditionResult:
        return EditionResult(
            edition_id=edition_id,
            status=EditionStatus.FAILED,
            message=_describe(edition_id, exc),
            error_kind=type(exc).__name__,
            checked_at=datetime.now(timezone.utc),
        )


def _check_writable_dir(label: str, path: Path | None) -> list[str]:
    if path is None:
        return [f"{label} directory not specified."]
    if not path.is_dir() or not os.access(path, os.W_OK | os.X_OK):
        return [f"{label} directory {path} is not writable."]
    return []

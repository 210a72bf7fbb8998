"""HTTP client for the MaxMind GeoIP download service."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import TYPE_CHECKING, Self

import aiohttp
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_delay,
    wait_exponential,
)

from geoip2update import __version__
from geoip2update._utils import cleanup_temp_file
from geoip2update.errors import (
    DownloadError,
    EditionNotFoundError,
    InvalidCredentialError,
    MalformedVersionError,
    NotEntitledError,
    RemoteError,
    RemoteUnavailableError,
)
from geoip2update.models import Edition, RemoteEditionMetadata

if TYPE_CHECKING:
    from datetime import timedelta

logger = logging.getLogger(__name__)

DEFAULT_HOST = "https://download.maxmind.com"
DOWNLOAD_PATH = "/app/geoip_download"

ChunkCallback = Callable[[int], object]


def _is_retryable_error(exception: BaseException) -> bool:
    """Determine if an exception is retryable.

    Args:
        exception: The exception to check.

    Returns:
        True if the exception should trigger a retry.

    """
    if isinstance(exception, RemoteUnavailableError):
        return True
    if isinstance(exception, RemoteError):
        # Only 5xx (server) errors are retryable
        return exception.status_code >= 500
    if isinstance(exception, DownloadError):
        if exception.status_code is not None:
            return exception.status_code >= 500
        return isinstance(exception.__cause__, (aiohttp.ClientError, TimeoutError))
    return False


def parse_version_marker(value: str | None) -> int:
    """Parse a Last-Modified header into a Unix timestamp.

    Args:
        value: The header value.

    Returns:
        Seconds since the epoch.

    Raises:
        ValueError: If the value is missing or not an HTTP date.

    """
    if not value:
        msg = "missing Last-Modified header"
        raise ValueError(msg)
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, IndexError) as e:
        raise ValueError(str(e)) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


class Client:
    """Async HTTP client for the MaxMind GeoIP download service.

    Example:
        async with Client(license_key="key") as client:
            metadata = await client.probe(EDITIONS["GeoLite2-City"])
            path = await client.fetch(
                EDITIONS["GeoLite2-City"], Path("/tmp/GeoLite2-City.tar.gz")
            )

    """

    def __init__(
        self,
        license_key: str,
        *,
        host: str = DEFAULT_HOST,
        proxy: str | None = None,
        retry_for: timedelta | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            license_key: MaxMind license key.
            host: Download server URL.
            proxy: Proxy URL (http or https).
            retry_for: Duration to retry failed requests.

        """
        self._license_key = license_key
        self._host = host.rstrip("/")
        self._proxy = proxy
        self._retry_for = retry_for
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> Self:
        """Enter async context manager."""
        headers = {"User-Agent": f"geoip2update/{__version__}"}
        self._session = aiohttp.ClientSession(headers=headers)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager."""
        if self._session:
            await self._session.close()
            self._session = None

    @property
    def url(self) -> str:
        """Return the download endpoint URL."""
        return f"{self._host}{DOWNLOAD_PATH}"

    def _query(self, edition: Edition) -> dict[str, str]:
        return {
            "edition_id": edition.edition_id,
            "suffix": edition.archive_kind.suffix,
            "license_key": self._license_key,
        }

    def _require_session(self) -> aiohttp.ClientSession:
        if not self._session:
            msg = "Client must be used as async context manager"
            raise RuntimeError(msg)
        return self._session

    def _with_retry(self, func: Callable) -> Callable:
        if not self._retry_for or self._retry_for.total_seconds() <= 0:
            return func
        return retry(
            stop=stop_after_delay(self._retry_for.total_seconds()),
            wait=wait_exponential(multiplier=1, min=1, max=60),
            retry=retry_if_exception(_is_retryable_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )(func)

    async def probe(self, edition: Edition) -> RemoteEditionMetadata:
        """Ask the service for an edition's metadata without fetching it.

        Args:
            edition: The edition to probe.

        Returns:
            Metadata for the edition's current archive.

        Raises:
            InvalidCredentialError: If the license key is rejected.
            NotEntitledError: If the key may not download the edition.
            EditionNotFoundError: If the service does not know the edition.
            RemoteUnavailableError: If the service cannot be reached.
            MalformedVersionError: If the version marker cannot be parsed.
            RemoteError: If the server returns another error status.

        """
        return await self._with_retry(self._probe)(edition)

    async def _probe(self, edition: Edition) -> RemoteEditionMetadata:
        """Probe without retry."""
        session = self._require_session()
        edition_id = edition.edition_id

        try:
            async with session.head(
                self.url,
                params=self._query(edition),
                proxy=self._proxy,
                allow_redirects=True,
            ) as response:
                _raise_for_probe_status(edition_id, response.status)

                disposition = response.content_disposition
                filename = disposition.filename if disposition else None
                if not filename:
                    msg = "edition not found remotely"
                    raise EditionNotFoundError(msg, edition_id)

                last_modified = response.headers.get("Last-Modified")
                try:
                    version = parse_version_marker(last_modified)
                except ValueError as e:
                    msg = f"malformed version marker {last_modified!r}"
                    raise MalformedVersionError(msg, edition_id) from e

                return RemoteEditionMetadata(
                    edition_id=edition_id,
                    filename=os.path.basename(filename),
                    version=version,
                    content_length=response.content_length,
                )
        except (aiohttp.ClientError, TimeoutError) as e:
            msg = f"download service unavailable: {e}"
            raise RemoteUnavailableError(msg, edition_id) from e

    async def fetch(
        self,
        edition: Edition,
        destination: Path,
        on_chunk: ChunkCallback | None = None,
    ) -> Path:
        """Stream an edition's archive to a file.

        Any file already at destination is removed first. If the transfer
        fails, the partial file is removed before the error is raised.

        Args:
            edition: The edition to download.
            destination: Path of the archive file to write.
            on_chunk: Called with the size of each chunk written.

        Returns:
            The destination path.

        Raises:
            DownloadError: If the transfer fails.

        """
        return await self._with_retry(self._fetch)(edition, destination, on_chunk)

    async def _fetch(
        self,
        edition: Edition,
        destination: Path,
        on_chunk: ChunkCallback | None,
    ) -> Path:
        """Fetch without retry."""
        session = self._require_session()
        edition_id = edition.edition_id
        cleanup_temp_file(destination)

        try:
            async with session.get(
                self.url,
                params=self._query(edition),
                proxy=self._proxy,
            ) as response:
                if response.status != 200:
                    reason = f"Remote server response code {response.status}"
                    raise DownloadError(
                        f"download error. {reason}.",
                        edition_id,
                        reason=reason,
                        status_code=response.status,
                    )

                with destination.open("wb") as f:
                    async for chunk in response.content.iter_chunked(64 * 1024):
                        f.write(chunk)
                        if on_chunk is not None:
                            on_chunk(len(chunk))
                    f.flush()
                    os.fsync(f.fileno())
        except (aiohttp.ClientError, TimeoutError) as e:
            cleanup_temp_file(destination)
            msg = f"download error. {e}"
            raise DownloadError(msg, edition_id, reason=str(e)) from e
        except BaseException:
            cleanup_temp_file(destination)
            raise

        return destination


def _raise_for_probe_status(edition_id: str, status: int) -> None:
    if status == 200:
        return
    if status == 401:
        msg = "invalid license key"
        raise InvalidCredentialError(msg, edition_id)
    if status == 403:
        msg = "license key is not entitled to download this edition"
        raise NotEntitledError(msg, edition_id)
    if status == 404:
        msg = "edition not found remotely"
        raise EditionNotFoundError(msg, edition_id)
    raise RemoteError(
        f"unexpected HTTP status code: {status}",
        status_code=status,
        edition_id=edition_id,
    )

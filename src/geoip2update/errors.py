"""Exception classes for geoip2update."""

from __future__ import annotations


class GeoIP2UpdateError(Exception):
    """Base exception for geoip2update errors."""


class ConfigError(GeoIP2UpdateError):
    """Configuration is invalid or incomplete."""


class LockError(GeoIP2UpdateError):
    """Could not acquire file lock."""


class EditionError(GeoIP2UpdateError):
    """An error scoped to a single edition.

    Edition errors never abort a run: the updater records them against the
    edition and carries on with the next one.
    """

    def __init__(self, message: str, edition_id: str = "") -> None:
        """Initialize EditionError.

        Args:
            message: Error message.
            edition_id: The edition the error belongs to.

        """
        super().__init__(message)
        self.edition_id = edition_id


class UnknownEditionError(EditionError):
    """The edition ID is not in the edition lookup table."""


class MissingCapabilityError(EditionError):
    """The runtime cannot decode the archive kind used by the edition."""


class ProbeError(EditionError):
    """Base class for errors reported by the remote metadata probe."""


class InvalidCredentialError(ProbeError):
    """The remote service rejected the license key."""


class NotEntitledError(ProbeError):
    """The license key is not entitled to download the edition."""


class EditionNotFoundError(ProbeError):
    """The remote service does not know the edition."""


class RemoteUnavailableError(ProbeError):
    """The remote service could not be reached."""


class MalformedVersionError(ProbeError):
    """The remote version marker could not be parsed."""


class RemoteError(ProbeError):
    """The remote service answered with an unexpected status code."""

    def __init__(
        self,
        message: str,
        status_code: int,
        edition_id: str = "",
        body: str = "",
    ) -> None:
        """Initialize RemoteError.

        Args:
            message: Error message.
            status_code: HTTP status code.
            edition_id: The edition the error belongs to.
            body: Response body, if available.

        """
        super().__init__(message, edition_id)
        self.status_code = status_code
        self.body = body


class DownloadError(EditionError):
    """Error transferring an archive body."""

    def __init__(
        self,
        message: str,
        edition_id: str = "",
        reason: str = "",
        status_code: int | None = None,
    ) -> None:
        """Initialize DownloadError.

        Args:
            message: Error message.
            edition_id: The edition the error belongs to.
            reason: Short description of the transport failure.
            status_code: HTTP status code, if the server answered.

        """
        super().__init__(message, edition_id)
        self.reason = reason or message
        self.status_code = status_code


class ExtractError(EditionError):
    """The archive could not be decoded or has an unexpected layout."""


class UnsupportedArchiveError(ExtractError):
    """The archive has a suffix that is not a known archive kind."""


class InstallError(EditionError):
    """Extracted files could not be installed or their version recorded."""

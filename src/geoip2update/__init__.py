"""Keep local copies of MaxMind GeoIP2 editions up to date."""

from __future__ import annotations

from importlib.metadata import version

__version__ = version("geoip2update")

from geoip2update.client import Client
from geoip2update.config import Config
from geoip2update.errors import (
    ConfigError,
    DownloadError,
    EditionError,
    EditionNotFoundError,
    ExtractError,
    GeoIP2UpdateError,
    InstallError,
    InvalidCredentialError,
    LockError,
    MalformedVersionError,
    MissingCapabilityError,
    NotEntitledError,
    ProbeError,
    RemoteError,
    RemoteUnavailableError,
    UnknownEditionError,
    UnsupportedArchiveError,
)
from geoip2update.models import (
    DEFAULT_EDITION_IDS,
    EDITIONS,
    ArchiveKind,
    DatabaseKind,
    Edition,
    EditionResult,
    EditionStatus,
    RemoteEditionMetadata,
)
from geoip2update.updater import Updater

__all__ = [
    "DEFAULT_EDITION_IDS",
    "EDITIONS",
    "ArchiveKind",
    "Client",
    "Config",
    "ConfigError",
    "DatabaseKind",
    "DownloadError",
    "Edition",
    "EditionError",
    "EditionNotFoundError",
    "EditionResult",
    "EditionStatus",
    "ExtractError",
    "GeoIP2UpdateError",
    "InstallError",
    "InvalidCredentialError",
    "LockError",
    "MalformedVersionError",
    "MissingCapabilityError",
    "NotEntitledError",
    "ProbeError",
    "RemoteEditionMetadata",
    "RemoteError",
    "RemoteUnavailableError",
    "UnknownEditionError",
    "UnsupportedArchiveError",
    "Updater",
    "__version__",
]

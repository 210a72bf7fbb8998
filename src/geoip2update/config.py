"""Configuration management for geoip2update."""

from __future__ import annotations

import os
import re
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import NamedTuple, Self
from urllib.parse import urlparse, urlunparse

from geoip2update._defaults import get_default_config_file, get_default_tmp_directory
from geoip2update.client import DEFAULT_HOST
from geoip2update.errors import ConfigError
from geoip2update.models import DEFAULT_EDITION_IDS, EDITIONS, Edition

_SCHEME_RE = re.compile(r"(?i)\A([a-z][a-z0-9+\-.]*)://")
_DURATION_RE = re.compile(
    r"(?:(?P<hours>\d+)h)?(?:(?P<minutes>\d+)m)?(?:(?P<seconds>\d+)s)?"
)

_PROXY_SCHEMES = ("http", "https")
_DEFAULT_PROXY_PORT = 1080

LOCK_FILE_NAME = ".geoip2update.lock"

# Recognized keys of a parameter mapping and the Config field each sets.
_MAPPING_KEYS = {
    "license_key": "license_key",
    "editions": "editions",
    "dir": "directory",
    "tmpDir": "tmp_dir",
    "tmp_dir": "tmp_dir",
    "host": "host",
    "proxy": "proxy",
    "retry_for": "retry_for",
    "parallelism": "parallelism",
    "lock_file": "lock_file",
}


@dataclass(frozen=True)
class Config:
    """Configuration for geoip2update.

    Attributes:
        license_key: MaxMind license key.
        editions: Edition IDs to keep up to date, in processing order.
            Duplicates are dropped.
        directory: Destination root holding one directory per edition.
        tmp_dir: Directory used to stage downloaded archives.
        host: Download server URL.
        proxy: Proxy URL (http or https).
        retry_for: Duration to retry failed requests.
        parallelism: Number of editions processed concurrently.
        lock_file: Path to lock file for preventing concurrent runs.
        verbose: Enable verbose output.
        output: Enable JSON output.
        edition_table: Lookup table describing the known editions.

    """

    license_key: str = field(default="", repr=False)
    editions: tuple[str, ...] = DEFAULT_EDITION_IDS
    directory: Path | None = None
    tmp_dir: Path = field(default_factory=get_default_tmp_directory)
    host: str = DEFAULT_HOST
    proxy: str | None = None
    retry_for: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    parallelism: int = 1
    lock_file: Path | None = None
    verbose: bool = False
    output: bool = False
    edition_table: Mapping[str, Edition] = field(
        default_factory=lambda: EDITIONS, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        """Normalize and validate values after initialization."""
        editions = self.editions
        if isinstance(editions, str):
            editions = editions.split()
        object.__setattr__(self, "editions", tuple(dict.fromkeys(editions)))

        if self.directory is not None:
            object.__setattr__(self, "directory", Path(self.directory))
        object.__setattr__(self, "tmp_dir", Path(self.tmp_dir))
        if self.lock_file is None:
            if self.directory is not None:
                object.__setattr__(self, "lock_file", self.directory / LOCK_FILE_NAME)
        else:
            object.__setattr__(self, "lock_file", Path(self.lock_file))

        if self.parallelism < 1:
            msg = f"parallelism should be greater than 0, got '{self.parallelism}'"
            raise ConfigError(msg)

    @classmethod
    def from_mapping(cls, params: Mapping[str, object]) -> Self:
        """Build a configuration from build-tool style parameters.

        Recognized keys are ``license_key``, ``editions``, ``dir``, ``tmpDir``
        (or ``tmp_dir``), ``host``, ``proxy``, ``retry_for``, ``parallelism``
        and ``lock_file``.

        Args:
            params: Parameter mapping.

        Returns:
            Loaded configuration.

        Raises:
            ConfigError: If a key is unknown or a value has the wrong type.

        """
        unknown = sorted(str(key) for key in params if key not in _MAPPING_KEYS)
        if unknown:
            msg = f"unknown configuration option(s): {', '.join(unknown)}"
            raise ConfigError(msg)

        values: dict[str, object] = {}
        for key, value in params.items():
            name = _MAPPING_KEYS[key]
            if name in values:
                msg = f"`{key}' duplicates another option for {name}"
                raise ConfigError(msg)
            values[name] = _coerce_mapping_value(key, name, value)

        return cls(**values)  # type: ignore[arg-type]

    @classmethod
    def from_pyproject(cls, path: Path) -> Self:
        """Load the ``[tool.geoip2update]`` table of a pyproject.toml file.

        Relative ``dir`` and ``tmpDir`` values are resolved against the
        directory containing the file.

        Args:
            path: Path to pyproject.toml.

        Returns:
            Loaded configuration.

        Raises:
            ConfigError: If the file cannot be read or the table is invalid.

        """
        try:
            with path.open("rb") as f:
                data = tomllib.load(f)
        except OSError as e:
            msg = f"error opening file: {e}"
            raise ConfigError(msg) from e
        except tomllib.TOMLDecodeError as e:
            msg = f"invalid TOML in {path}: {e}"
            raise ConfigError(msg) from e

        table = data.get("tool", {}).get("geoip2update")
        if not isinstance(table, dict):
            msg = f"{path} has no [tool.geoip2update] table"
            raise ConfigError(msg)

        params = dict(table)
        for key in ("dir", "tmpDir", "tmp_dir", "lock_file"):
            if isinstance(params.get(key), str):
                params[key] = path.parent / params[key]
        return cls.from_mapping(params)

    @classmethod
    def from_file(
        cls,
        config_file: Path | None = None,
        *,
        database_directory: Path | None = None,
        tmp_directory: Path | None = None,
        parallelism: int | None = None,
        verbose: bool = False,
        output: bool = False,
    ) -> Self:
        """Load a GeoIP2Update.conf file, the environment and explicit overrides.

        Later sources win: file values are replaced by ``GEOIP2UPDATE_*``
        variables, which are replaced by the keyword arguments given here.
        Without config_file, the default file is read if it exists.

        Raises:
            ConfigError: If configuration is invalid.

        """
        if config_file is None:
            default_file = get_default_config_file()
            config_file = default_file if default_file.exists() else None

        values = _parse_config_file(config_file) if config_file else {}
        values.update(_parse_environment())

        overrides = {
            "directory": database_directory,
            "tmp_dir": tmp_directory,
            "parallelism": parallelism if parallelism and parallelism > 0 else None,
            "verbose": True if verbose else None,
            "output": True if output else None,
        }
        values.update((k, v) for k, v in overrides.items() if v is not None)

        proxy = _build_proxy_url(
            values.pop("_proxy_url", None),  # type: ignore[arg-type]
            values.pop("_proxy_user_password", None),  # type: ignore[arg-type]
        )
        if proxy:
            values["proxy"] = proxy

        return cls(**values)  # type: ignore[arg-type]


def _coerce_mapping_value(key: str, name: str, value: object) -> object:
    """Check and convert one value of a parameter mapping.

    Raises:
        ConfigError: If the value has the wrong type.

    """
    if name in ("license_key", "host", "proxy"):
        if not isinstance(value, str):
            msg = f"`{key}' must be a string"
            raise ConfigError(msg)
        if name == "host":
            return _parse_host(value)
        if name == "proxy":
            return _build_proxy_url(value, None)
        return value

    if name == "editions":
        if isinstance(value, str):
            return value.split()
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return tuple(value)
        msg = f"`{key}' must be a list of edition IDs"
        raise ConfigError(msg)

    if name in ("directory", "tmp_dir", "lock_file"):
        if not isinstance(value, (str, os.PathLike)):
            msg = f"`{key}' must be a path"
            raise ConfigError(msg)
        return Path(value)

    if name == "retry_for":
        if isinstance(value, bool):
            msg = f"`{key}' must be a number of seconds or a duration"
            raise ConfigError(msg)
        if isinstance(value, (int, float)):
            if value < 0:
                msg = f"'{value}' is not a valid duration"
                raise ConfigError(msg)
            return timedelta(seconds=value)
        if isinstance(value, str):
            return _parse_duration(value)
        if isinstance(value, timedelta):
            return value
        msg = f"`{key}' must be a number of seconds or a duration"
        raise ConfigError(msg)

    # parallelism
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"'{value}' is not a valid parallelism value"
        raise ConfigError(msg)
    return value


def _parse_host(value: str) -> str:
    """Return the host as a URL, assuming https when it has no scheme."""
    try:
        parsed = urlparse(value)
        if not (parsed.scheme and parsed.netloc):
            parsed = urlparse(f"https://{value}")
    except ValueError as e:
        msg = f"failed to parse Host: {e}"
        raise ConfigError(msg) from e
    return urlunparse(parsed)


def _parse_parallelism(value: str) -> int:
    try:
        parallelism = int(value)
    except ValueError as e:
        msg = f"'{value}' is not a valid parallelism value"
        raise ConfigError(msg) from e
    if parallelism <= 0:
        msg = f"parallelism should be greater than 0, got '{parallelism}'"
        raise ConfigError(msg)
    return parallelism


def _parse_duration(value: str) -> timedelta:
    """Parse durations such as ``90s``, ``5m`` or ``1h30m``."""
    match = _DURATION_RE.fullmatch(value)
    if not value or match is None:
        msg = f"'{value}' is not a valid duration"
        raise ConfigError(msg)
    return timedelta(**{unit: int(n) for unit, n in match.groupdict("0").items()})


class _TextOption(NamedTuple):
    """A setting that can come from the config file or the environment."""

    file_key: str
    env_var: str
    name: str
    convert: Callable[[str], object]


# Proxy parts are stored under private names and joined by _build_proxy_url.
_TEXT_OPTIONS = (
    _TextOption("LicenseKey", "GEOIP2UPDATE_LICENSE_KEY", "license_key", str),
    _TextOption("EditionIDs", "GEOIP2UPDATE_EDITION_IDS", "editions", str.split),
    _TextOption("DatabaseDirectory", "GEOIP2UPDATE_DB_DIR", "directory", Path),
    _TextOption("TempDirectory", "GEOIP2UPDATE_TMP_DIR", "tmp_dir", Path),
    _TextOption("Host", "GEOIP2UPDATE_HOST", "host", _parse_host),
    _TextOption("LockFile", "GEOIP2UPDATE_LOCK_FILE", "lock_file", Path),
    _TextOption("Proxy", "GEOIP2UPDATE_PROXY", "_proxy_url", str),
    _TextOption(
        "ProxyUserPassword",
        "GEOIP2UPDATE_PROXY_USER_PASSWORD",
        "_proxy_user_password",
        str,
    ),
    _TextOption("RetryFor", "GEOIP2UPDATE_RETRY_FOR", "retry_for", _parse_duration),
    _TextOption(
        "Parallelism", "GEOIP2UPDATE_PARALLELISM", "parallelism", _parse_parallelism
    ),
)
_FILE_OPTIONS = {option.file_key: option for option in _TEXT_OPTIONS}


def _parse_config_file(path: Path) -> dict[str, object]:
    """Read a GeoIP2Update.conf file.

    Each non-blank line that does not start with ``#`` holds an option name
    and its value separated by whitespace. An option may appear only once.

    Raises:
        ConfigError: If the file cannot be read or holds an invalid line.

    """
    try:
        lines = path.read_text().splitlines()
    except OSError as e:
        msg = f"error opening file: {e}"
        raise ConfigError(msg) from e

    values: dict[str, object] = {}
    seen: set[str] = set()
    for line_num, raw in enumerate(lines, 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        key, *rest = line.split(None, 1)
        if not rest:
            msg = f"invalid format on line {line_num}"
            raise ConfigError(msg)
        if key in seen:
            msg = f"`{key}' is in the config multiple times"
            raise ConfigError(msg)
        seen.add(key)

        option = _FILE_OPTIONS.get(key)
        if option is None:
            msg = f"unknown option `{key}' on line {line_num}"
            raise ConfigError(msg)
        values[option.name] = option.convert(rest[0])

    return values


def _parse_environment() -> dict[str, object]:
    """Collect settings from ``GEOIP2UPDATE_*`` environment variables.

    Raises:
        ConfigError: If a variable holds an invalid value.

    """
    values: dict[str, object] = {
        option.name: option.convert(os.environ[option.env_var])
        for option in _TEXT_OPTIONS
        if os.environ.get(option.env_var)
    }

    # A key file takes precedence over GEOIP2UPDATE_LICENSE_KEY.
    if key_file := os.environ.get("GEOIP2UPDATE_LICENSE_KEY_FILE"):
        try:
            values["license_key"] = Path(key_file).read_text().strip()
        except OSError as e:
            msg = f"failed to open GEOIP2UPDATE_LICENSE_KEY_FILE: {e}"
            raise ConfigError(msg) from e

    if verbose := os.environ.get("GEOIP2UPDATE_VERBOSE"):
        if verbose not in ("0", "1"):
            msg = "`GEOIP2UPDATE_VERBOSE' must be 0 or 1"
            raise ConfigError(msg)
        values["verbose"] = verbose == "1"

    return values


def _proxy_userinfo(
    username: str | None, password: str | None, user_password: str | None
) -> str | None:
    if username:
        return f"{username}:{password}" if password else username
    if not user_password:
        return None
    if ":" not in user_password:
        msg = "proxy user/password is malformed"
        raise ConfigError(msg)
    return user_password


def _build_proxy_url(
    proxy_url: str | None,
    proxy_user_password: str | None,
) -> str | None:
    """Normalize a proxy setting into an http(s) URL with an explicit port.

    A bare host gets the http scheme and a missing port defaults to 1080.
    Credentials embedded in the URL take precedence over
    proxy_user_password, which must look like ``user:password``.

    Returns:
        The proxy URL, or None when no proxy is configured.

    Raises:
        ConfigError: If the scheme is unsupported or a part is malformed.

    """
    if not proxy_url:
        return None

    match = _SCHEME_RE.match(proxy_url)
    scheme = match.group(1).lower() if match else "http"
    if scheme not in _PROXY_SCHEMES:
        msg = f"unsupported proxy type: {scheme}"
        raise ConfigError(msg)
    if match is None:
        proxy_url = f"{scheme}://{proxy_url}"

    try:
        parsed = urlparse(proxy_url)
        port = parsed.port
    except ValueError as e:
        msg = f"parsing proxy URL: {e}"
        raise ConfigError(msg) from e
    if port is None:
        port = _DEFAULT_PROXY_PORT

    netloc = f"{parsed.hostname or ''}:{port}"
    userinfo = _proxy_userinfo(parsed.username, parsed.password, proxy_user_password)
    if userinfo:
        netloc = f"{userinfo}@{netloc}"
    return urlunparse((scheme, netloc, parsed.path, "", "", ""))

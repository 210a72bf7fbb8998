"""Platform-specific default paths for geoip2update."""

from __future__ import annotations

import os
import platform
import tempfile
from pathlib import Path


def get_default_config_file() -> Path:
    """Get the platform-specific default configuration file path.

    Returns:
        Path to the default configuration file.

    """
    if platform.system() == "Windows":
        system_drive = os.environ.get("SYSTEMDRIVE", "C:")
        return Path(system_drive) / "ProgramData/GeoIP2Update/GeoIP2Update.conf"
    return Path("/usr/local/etc/GeoIP2Update.conf")


def get_default_tmp_directory() -> Path:
    """Get the directory used to stage downloaded archives.

    Returns:
        The platform temporary directory.

    """
    return Path(tempfile.gettempdir())

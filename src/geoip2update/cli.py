"""Command-line interface for geoip2update."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import json
import logging
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import click

from geoip2update import __version__
from geoip2update.config import LOCK_FILE_NAME, Config
from geoip2update.errors import ConfigError
from geoip2update.updater import Updater

logger = logging.getLogger(__name__)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="GEOIP2UPDATE_CONF_FILE",
    help="Configuration file.",
)
@click.option(
    "--pyproject",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read settings from the [tool.geoip2update] table of a pyproject.toml.",
)
@click.option(
    "--database-directory",
    "-d",
    type=click.Path(path_type=Path),
    help="Store editions in this directory (uses config if not specified).",
)
@click.option(
    "--tmp-dir",
    type=click.Path(path_type=Path),
    help="Stage downloaded archives in this directory.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Use verbose output.",
)
@click.option(
    "--output",
    "-o",
    is_flag=True,
    help="Output per-edition results in JSON format.",
)
@click.option(
    "--progress",
    is_flag=True,
    help="Show a progress bar while downloading.",
)
@click.option(
    "--parallelism",
    type=int,
    default=0,
    help="Set the number of editions updated concurrently.",
)
@click.version_option(__version__, "-V", "--version", prog_name="geoip2update")
def main(
    config_file: Path | None,
    pyproject: Path | None,
    database_directory: Path | None,
    tmp_dir: Path | None,
    verbose: bool,
    output: bool,
    progress: bool,
    parallelism: int,
) -> None:
    """Update MaxMind GeoIP2 and GeoLite2 editions.

    Downloads the configured editions when the server reports a version
    that differs from the one installed, and installs each edition's files
    in its own directory. Configuration can be provided via a configuration
    file, a pyproject.toml table, environment variables, or command-line
    options.

    Example usage:

        # Using a configuration file
        geoip2update -f /etc/GeoIP2Update.conf

        # Using environment variables
        export GEOIP2UPDATE_LICENSE_KEY=your_key
        export GEOIP2UPDATE_EDITION_IDS="GeoLite2-City GeoLite2-Country-CSV"
        geoip2update -d /var/lib/GeoIP

        # Using the [tool.geoip2update] table of a project
        geoip2update --pyproject pyproject.toml --progress
    """
    config = _setup(
        config_file,
        pyproject,
        database_directory,
        tmp_dir,
        verbose,
        output,
        parallelism,
    )

    try:
        updater = asyncio.run(_run(config, progress=progress))
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(130)

    if config.output:
        click.echo(json.dumps([r.to_dict() for r in updater.results()]))
    else:
        for message in updater.updated():
            click.secho(message, fg="green")

    errors = updater.errors()
    for message in errors:
        click.secho(message, fg="red", err=True)
    if errors:
        sys.exit(1)


def _setup(
    config_file: Path | None,
    pyproject: Path | None,
    database_directory: Path | None,
    tmp_dir: Path | None,
    verbose: bool,
    output: bool,
    parallelism: int,
) -> Config:
    """Validate CLI args, configure logging, and load configuration."""
    if parallelism < 0:
        raise click.UsageError("Parallelism must be a positive number.")
    if config_file and pyproject:
        raise click.UsageError("--config-file and --pyproject are mutually exclusive.")

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
    )

    try:
        if pyproject:
            config = _override(
                Config.from_pyproject(pyproject),
                directory=database_directory,
                tmp_dir=tmp_dir,
                parallelism=parallelism or None,
                verbose=verbose or None,
                output=output or None,
            )
        else:
            config = Config.from_file(
                config_file=config_file,
                database_directory=database_directory,
                tmp_directory=tmp_dir,
                parallelism=parallelism if parallelism > 0 else None,
                verbose=verbose,
                output=output,
            )
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    if verbose:
        logger.info("geoip2update version %s", __version__)
        if config_file or pyproject:
            logger.info("Using config file %s", config_file or pyproject)
        logger.info("Using destination directory %s", config.directory)

    return config


def _override(config: Config, **overrides: Any) -> Config:
    """Apply the CLI arguments that were given to a loaded configuration."""
    changes = {name: value for name, value in overrides.items() if value is not None}
    if (
        "directory" in changes
        and config.directory is not None
        and config.lock_file == config.directory / LOCK_FILE_NAME
    ):
        changes["lock_file"] = None
    return dataclasses.replace(config, **changes)


def _progress_bar(edition_id: str, length: int | None) -> contextlib.AbstractContextManager[Any]:
    if not length:
        return contextlib.nullcontext(SimpleNamespace(update=lambda n: None))
    return click.progressbar(
        length=length,
        label=f"  - Downloading {edition_id}",
        file=sys.stderr,
    )


async def _run(config: Config, *, progress: bool = False) -> Updater:
    """Run the updater with the given configuration.

    Args:
        config: The configuration to use.
        progress: Show download progress bars.

    Returns:
        The updater, holding the results of the run.

    """
    async with Updater(config, progress=_progress_bar if progress else None) as updater:
        await updater.run()
    return updater


if __name__ == "__main__":
    main()

"""
Aperium — CLI entrypoint.

Usage:
    aper --help
    aper create htop-pack --debian "apt install htop"
    aper install htop-pack.apm
    aper view htop-pack.apm
"""

from __future__ import annotations

import os
from pathlib import Path

import click

from aperium import __version__
from aperium.core.observability.logging_config import resolve_level, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="aper")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to settings file (default: ~/.aperium/config.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Aperium — create and install encrypted per-distro packages."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get("APERIUM_LOG_FILE"),
        log_file_level=os.environ.get("APERIUM_LOG_FILE_LEVEL"),
    )


# ── Register commands from aperium/ui/cli/ ────────────────────────

from aperium.ui.cli.packages import create, detect, install, list_installed, view  # noqa: E402

cli.add_command(install)
cli.add_command(create)
cli.add_command(view)
cli.add_command(detect)
cli.add_command(list_installed)


if __name__ == "__main__":
    cli()

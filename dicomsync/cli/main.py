"""Main CLI entry point for dicomsync."""

from __future__ import annotations

import click

from dicomsync import __version__
from dicomsync.cli.auth import auth
from dicomsync.cli.config_cmd import config
from dicomsync.cli.store import store
from dicomsync.cli.transfer import export, import_


@click.group()
@click.version_option(version=__version__, prog_name="dicomsync")
def cli() -> None:
    """dicomsync - Synchronise DICOM files with a Cloud Healthcare DICOM store.

    Uploads local files to a DICOM store and downloads the studies it holds.

    Get started:

      dicomsync config init      # Create a profile for your store

      dicomsync auth login       # Authorize with your Google account

      dicomsync export ./dicom   # Upload files

      dicomsync import           # Poll the store and download studies

    Use --help on any command for more information.
    """
    pass


cli.add_command(config)
cli.add_command(auth)
cli.add_command(store)
cli.add_command(export)
cli.add_command(import_)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

"""
Console-script entry point: runs the CLI and turns stray exceptions into the
documented exit codes.
"""

import asyncio
import logging
import sys

import click
from rich.console import Console

from omero_downloader.cli.app import app
from omero_downloader.cli.formatters import format_error_with_suggestions
from omero_downloader.exceptions import DownloaderError


def main() -> None:
    log = logging.getLogger("omero_downloader")
    stderr = Console(stderr=True)

    try:
        # Not standalone, so Ctrl-C is not reported with click's exit code 1
        result = app(standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except (click.Abort, KeyboardInterrupt, asyncio.CancelledError):
        stderr.print("\n[yellow]Interrupted; partial files were discarded.[/yellow]")
        sys.exit(DownloaderError.exit_code)
    except DownloaderError as e:
        stderr.print(format_error_with_suggestions(e))
        sys.exit(e.exit_code)
    except Exception as e:
        log.debug("Unhandled exception:", exc_info=True)
        stderr.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        sys.exit(DownloaderError.exit_code)
    sys.exit(result if isinstance(result, int) else 0)


if __name__ == "__main__":
    main()

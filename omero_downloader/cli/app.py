"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from omero_downloader import __version__
from omero_downloader.api.client import RemoteSession
from omero_downloader.core.download_manager import DownloadManager
from omero_downloader.exceptions import DownloaderError, UsageError
from omero_downloader.models.config import DownloadConfig
from omero_downloader.models.stats import DownloadStats
from omero_downloader.models.targets import Target, parse_targets
from omero_downloader.storage.config_manager import ConfigManager
from omero_downloader.utils.path import LocalPaths

from .formatters import format_error_with_suggestions, print_summary_panel

console = Console()
err_console = Console(stderr=True)

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("omero_downloader")

app = typer.Typer(
    name="omero-download",
    help="Download the original files of images from an OMERO server.",
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
    context_settings={"help_option_names": []},
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "omero-download"


CONFIG_FILE = get_config_dir() / "config.ini"


def _help_callback(ctx: typer.Context, value: bool) -> None:
    if value and not ctx.resilient_parsing:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=1)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]omero-download[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()


def _fail(error: Exception, code: int, context: dict | None = None) -> typer.Exit:
    err_console.print(format_error_with_suggestions(error, context))
    return typer.Exit(code=code)


async def _download_async(
    config: DownloadConfig, targets: list[Target]
) -> tuple[DownloadStats, float]:
    """Logs in, runs the download and always releases the session."""
    session = RemoteSession(config.base_url)
    try:
        if config.session_key:
            await session.authenticator.authenticate_with_key(config.session_key)
        else:
            await session.authenticator.authenticate_with_credentials(
                config.user, config.password
            )

        paths = LocalPaths(config.base_dir)
        manager = DownloadManager(config, session, paths, console)

        start_time = time.monotonic()
        stats = await manager.execute(targets)
        return stats, time.monotonic() - start_time
    finally:
        await session.close()


@app.command()
def download(
    targets: list[str] | None = typer.Argument(  # noqa: B008
        None,
        help="What to download, e.g. Image:1,2 or Dataset:5.",
        metavar="Target:ids...",
        show_default=False,
    ),
    # --- Connection Options ---
    server: str | None = typer.Option(
        None, "-s", "--server", help="OMERO server host name (default localhost)."
    ),
    port: int | None = typer.Option(
        None, "-p", "--port", help="OMERO server port number (default 4064)."
    ),
    user: str | None = typer.Option(None, "-u", "--user", help="OMERO username."),
    password: str | None = typer.Option(
        None, "-w", "--pass", help="OMERO password.", show_default=False
    ),
    key: str | None = typer.Option(
        None, "-k", "--key", help="OMERO session key.", show_default=False
    ),
    # Flags default to None so an unset flag leaves the config file's value alone
    insecure: bool | None = typer.Option(
        None,
        "--insecure/--secure",
        help="Connect over plain HTTP instead of HTTPS.",
        show_default=False,
    ),
    # --- Selection Options ---
    only_binary: bool | None = typer.Option(
        None,
        "--only-binary/--no-only-binary",
        "-b",
        help="Download only binary files.",
        show_default=False,
    ),
    only_companion: bool | None = typer.Option(
        None,
        "--only-companion/--no-only-companion",
        "-c",
        help="Download only companion files.",
        show_default=False,
    ),
    whole_fileset: bool | None = typer.Option(
        None,
        "--whole-fileset/--no-whole-fileset",
        "-f",
        help="Download whole filesets.",
        show_default=False,
    ),
    # --- Behavior Options ---
    base: Path | None = typer.Option(
        None, "-d", "--base", help="Base directory for download (default ./download)."
    ),
    workers: int | None = typer.Option(
        None, "--workers", help="Number of files to download at once (default 1)."
    ),
    poll_interval: float | None = typer.Option(
        None, "--poll-interval", help="Seconds between polls of a server request."
    ),
    max_wait: float | None = typer.Option(
        None, "--max-wait", help="Seconds to wait for a server request to finish."
    ),
    config_file: Path = typer.Option(  # noqa: B008
        CONFIG_FILE, "--config", help="INI file with default option values."
    ),
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Show debug logging."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
        expose_value=False,
    ),
    show_help: bool = typer.Option(
        False,
        "-h",
        "--help",
        help="Show this message and exit.",
        callback=_help_callback,
        is_eager=True,
        expose_value=False,
    ),
):
    """Download OMERO images' original files in bulk."""
    logging.getLogger("omero_downloader").setLevel("DEBUG" if verbose else "INFO")

    cli_options = {
        name: value
        for name, value in {
            "server": server,
            "port": port,
            "user": user,
            "password": password,
            "session_key": key,
            "insecure": insecure,
            "only_binary": only_binary,
            "only_companion": only_companion,
            "whole_fileset": whole_fileset,
            "base_dir": base,
            "workers": workers,
            "poll_interval": poll_interval,
            "max_wait": max_wait,
        }.items()
        if value is not None
    }

    try:
        config = ConfigManager(config_file).load_config(cli_options)
        parsed_targets = parse_targets(targets or [])
    except UsageError as e:
        raise _fail(e, e.exit_code) from e

    if config.session_key and (config.user or config.password):
        log.warning(
            "[yellow]Username and password ignored if session key is provided.[/yellow]"
        )

    try:
        stats, duration = asyncio.run(_download_async(config, parsed_targets))
    except DownloaderError as e:
        raise _fail(e, e.exit_code) from e
    except Exception as e:
        log.debug("Full traceback:", exc_info=True)
        raise _fail(e, DownloaderError.exit_code, {"type": "Unexpected"}) from e

    print_summary_panel(stats, duration, console)
    if not stats.succeeded:
        raise typer.Exit(code=DownloaderError.exit_code)

"""
Rich renderables for errors and the end-of-run summary.
"""

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from omero_downloader.models.stats import DownloadStats
from omero_downloader.utils.formatting import format_duration, format_ids, format_size

# Hints shown under an error, keyed by exception class name
ERROR_HINTS: dict[str, list[str]] = {
    "AuthenticationError": [
        "Verify the username and password, or the session key.",
        "A session key may have expired; log in again to obtain a new one.",
    ],
    "ConfigurationError": [
        "Check the command-line options and the configuration file.",
        "Run with -h to list the available options.",
    ],
    "TargetSyntaxError": [
        "Targets take the form Type:id[,id...], e.g. Image:1,2 or Dataset:5.",
    ],
    "ProtocolMismatchError": [
        "The server answered with an unexpected response type.",
        "The client and server versions may be incompatible.",
    ],
    "RequestTimeoutError": [
        "The server did not finish the request in time.",
        "Increase --max-wait or try again when the server is less busy.",
    ],
    "TransientRemoteError": [
        "The server could not be reached or reported an internal error.",
        "Check the server address and your connection, then try again.",
    ],
    "BaseDirectoryError": [
        "Choose a writable download directory with --base.",
    ],
}
DEFAULT_HINTS = ["Run the command with -v for detailed logs."]


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Renders an error and hints for fixing it as a red panel."""
    name = type(error).__name__
    hints = ERROR_HINTS.get(name, DEFAULT_HINTS)

    headline = Text.assemble((f"{name}: ", "bold red"), str(error))
    parts = [
        headline,
        Text(),
        Text("What to try", style="bold yellow"),
        Text("\n".join(f"• {hint}" for hint in hints)),
    ]
    if context:
        parts += [Text(), Text(f"Context: {context}", style="dim")]

    return Panel(
        Group(*parts),
        title="[bold red]omero-download failed[/bold red]",
        border_style="red",
        expand=False,
    )


def print_summary_panel(
    stats: DownloadStats, duration_s: float, console: Console | None = None
):
    """Prints what the run downloaded, skipped and failed."""
    console = console or Console()

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right", min_width=20)
    table.add_column(justify="left")

    table.add_row("Images:", f"[cyan]{stats.images_wanted}[/cyan]")
    table.add_row("Files:", f"[cyan]{stats.files_total}[/cyan]")
    table.add_row("✓ Downloaded:", f"[bold green]{stats.files_downloaded}[/bold green]")
    if stats.files_present:
        table.add_row("○ Already present:", f"[yellow]{stats.files_present}[/yellow]")
    if stats.files_failed:
        table.add_row(
            "✗ Failed:",
            f"[bold red]{stats.files_failed}[/bold red] "
            f"[dim]({format_ids(stats.failed_file_ids)})[/dim]",
        )
    if stats.required_failures:
        table.add_row(
            "✗ Required by targets:",
            f"[bold red]{format_ids(stats.required_failures)}[/bold red]",
        )

    rate = stats.total_size_downloaded / duration_s if duration_s > 0 else 0
    table.add_row()
    table.add_row("Transferred:", f"[cyan]{format_size(stats.total_size_downloaded)}[/cyan]")
    table.add_row("Rate:", f"[magenta]{format_size(int(rate))}/s[/magenta]")
    table.add_row("Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    complete = stats.succeeded
    console.print()
    console.print(
        Panel(
            table,
            title="[bold]Download Complete[/bold]" if complete else "[bold]Download Incomplete[/bold]",
            border_style="green" if complete else "red",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )

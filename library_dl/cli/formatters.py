"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from library_dl.models.config import DownloadConfig, RunSettings, is_database_storage
from library_dl.models.progress import ProgressRecord
from library_dl.models.records import LibraryInfo, RunResult, RunStatus
from library_dl.utils.formatting import format_duration, format_size

HIDDEN_KEYS = ("connection_url",)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `library-dl init <CONNECTION_URL>` to create a configuration.",
            "• Check the values shown by `library-dl --show-config`.",
            "• `max_workers` must be between 1 and 10.",
        ],
        "DataSourceError": [
            "• Verify the connection URL in the configuration file.",
            "• Make sure the database server is reachable from this machine.",
            "• Run `library-dl diagnose` to test the connection.",
        ],
        "RunSetupError": [
            "• Check that the download path exists and is writable.",
            "• The run directory may belong to a different library.",
        ],
        "PermissionError": [
            "• The download path is not writable by the current user.",
            "• Choose another location with `download_path` in the config.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding the connection string."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key in HIDDEN_KEYS and value:
            value = "[hidden]"
        content += f"{key} = {escape(str(value))}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: DownloadConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    backend = config.connection_url.split(":", 1)[0]
    storage = (
        "Database"
        if is_database_storage(config.storage_location)
        else f"File System ({config.storage_root or 'storage'})"
    )

    table.add_row("Database:", f"[green]{escape(backend)}[/green]")
    table.add_row("Download Path:", escape(config.download_path or "(store / default)"))
    table.add_row("File Storage:", escape(storage))
    table.add_row("Max Workers:", str(config.max_workers))
    table.add_row("Page Size:", str(config.page_size))

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_run_settings(settings: RunSettings):
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("Download Path:", escape(str(settings.download_path)))
    if settings.store_files_in_db:
        table.add_row("File Storage:", "Database")
    else:
        table.add_row("File Storage:", "File System")
        table.add_row("Storage Root:", escape(str(settings.storage_root)))
    console.print(table)


def print_libraries_table(libraries: list[LibraryInfo]):
    """Displays all non-deleted libraries."""
    console = Console()
    if not libraries:
        console.print("[yellow]No libraries found.[/yellow]")
        return

    table = Table(title="Libraries", box=box.ROUNDED)
    table.add_column("ID", justify="right", style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Description", style="dim")
    table.add_column("Documents", justify="right", style="green")
    for library in libraries:
        table.add_row(
            str(library.id),
            escape(library.name),
            escape(library.description),
            f"{library.document_count:,}",
        )
    console.print(table)


def print_library_info(library: LibraryInfo):
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("ID:", str(library.id))
    table.add_row("Name:", escape(library.name))
    if library.description:
        table.add_row("Description:", escape(library.description))
    table.add_row("Documents:", f"[green]{library.document_count:,}[/green]")
    console.print(Panel(table, title="[bold]Library[/bold]", border_style="cyan"))


def print_runs_table(runs: list[ProgressRecord]):
    """Displays incomplete runs, numbered for use with `resume`."""
    console = Console()
    if not runs:
        console.print("[green]No incomplete downloads found.[/green]")
        return

    table = Table(title="Incomplete Downloads", box=box.ROUNDED)
    table.add_column("#", justify="right", style="bold magenta")
    table.add_column("Library", style="cyan")
    table.add_column("Progress", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Last Update", style="dim")
    table.add_column("Directory", style="dim")
    for i, run in enumerate(runs, 1):
        table.add_row(
            str(i),
            f"{escape(run.library_name)} ({run.library_id})",
            f"{run.successful_count:,}/{run.total_documents:,}",
            str(run.failed_count),
            f"{run.last_update_time:%Y-%m-%d %H:%M:%S}",
            escape(Path(run.download_path).name),
        )
    console.print(table)


def print_large_library_warning(document_count: int, files_per_second: float):
    console = Console()
    estimate = format_duration(document_count / files_per_second)
    console.print(
        Panel(
            f"This library contains [bold]{document_count:,}[/bold] documents.\n"
            f"At roughly {files_per_second:.0f} files/s the download takes about "
            f"[bold]{estimate}[/bold].\n"
            "Progress is saved after every batch; an interrupted download can be "
            "resumed later.",
            title="[bold yellow]⚠ Large Library[/bold yellow]",
            border_style="yellow",
            expand=False,
        )
    )


def print_summary_panel(result: RunResult, duration_s: float):
    """Displays the final summary of a library download run."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "Library:", f"{escape(result.library_name)} (ID: {result.library_id})"
    )
    stats_table.add_row("Total Documents:", f"{result.total_documents:,}")
    stats_table.add_row(
        "✓ Downloaded:", f"[bold green]{result.success_count}[/bold green]"
    )
    if result.skipped_count > 0:
        stats_table.add_row("○ Skipped:", f"[yellow]{result.skipped_count}[/yellow]")
    if result.failed_count > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{result.failed_count}[/bold red]")

    stats_table.add_row("", "")
    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(result.bytes_written)}[/cyan]"
    )
    if result.bytes_written > 0 and duration_s > 0:
        avg_speed = result.bytes_written / duration_s
        stats_table.add_row(
            "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
        )
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")
    processed = result.success_count + result.skipped_count + result.failed_count
    if processed > 0 and duration_s > 0:
        stats_table.add_row(
            "Throughput:", f"[cyan]{processed / duration_s:.1f} files/s[/cyan]"
        )
    if result.run_dir:
        stats_table.add_row("Saved To:", f"[dim]{escape(str(result.run_dir))}[/dim]")
    if result.error:
        stats_table.add_row("Error:", f"[red]{escape(result.error)}[/red]")
    if result.status == RunStatus.CANCELLED:
        stats_table.add_row("", "")
        stats_table.add_row(
            "Partial Progress:",
            "[yellow]saved. Run the same download again to resume.[/yellow]",
        )

    titles = {
        RunStatus.COMPLETED: ("📚 [bold]Download Complete![/bold]", "green"),
        RunStatus.CANCELLED: ("⏸ [bold]Download Cancelled[/bold]", "yellow"),
        RunStatus.NOT_FOUND: ("[bold]Library Not Found[/bold]", "red"),
        RunStatus.FATAL: ("✗ [bold]Download Failed[/bold]", "red"),
    }
    title, border_color = titles[result.status]
    if result.status == RunStatus.COMPLETED and result.failed_count > 0:
        title = "📚 [bold]Download Finished With Failures[/bold]"
        border_color = "yellow"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()

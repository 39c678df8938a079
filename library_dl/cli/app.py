"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import json
import logging
import os
import signal
import time
from contextlib import suppress
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from library_dl import __version__
from library_dl.core.orchestrator import DownloadOrchestrator
from library_dl.exceptions import ConfigurationError, DataSourceError, LibraryDlError
from library_dl.models.config import MAX_PARALLEL_LIMIT, DownloadConfig, RunSettings
from library_dl.models.records import RunResult, RunStatus
from library_dl.source.client import LibraryStoreClient
from library_dl.source.gateway import MetadataGateway
from library_dl.storage.config_manager import ConfigManager
from library_dl.storage.progress_store import ProgressStore

from .formatters import (
    print_config,
    print_large_library_warning,
    print_libraries_table,
    print_library_info,
    print_run_settings,
    print_runs_table,
    print_summary_panel,
    print_validation_table,
)
from .progress_manager import ProgressManager

LARGE_LIBRARY_THRESHOLD = 10_000
WORKER_PROMPT_THRESHOLD = 1_000
ESTIMATED_FILES_PER_SECOND = 50

console = Console()

logging.basicConfig(
    level="WARNING",
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
log = logging.getLogger("library_dl")

app = typer.Typer(
    name="library-dl",
    help=(
        "Download whole document libraries from a document store, with"
        " resumable, parallel downloads. Use 'library-dl <command> --help'"
        " for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "library-dl"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Document Library Downloader CLI"""
    if version:
        console.print(f"[bold]library-dl[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose >= 2:
        log_level = "DEBUG"
    elif verbose == 1:
        log_level = "INFO"
    logging.getLogger("library_dl").setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]library-dl init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        print_config(CONFIG_FILE, config_manager.get_config_for_display())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def _load_config(cli_options: dict | None = None) -> DownloadConfig:
    try:
        return ConfigManager(CONFIG_FILE).load_config(cli_options)
    except ConfigurationError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e


async def _resolve_run_settings(
    gateway: MetadataGateway, config: DownloadConfig
) -> RunSettings:
    """Reads the store's Setting table once, falling back to the config file."""
    try:
        store_settings = await gateway.load_settings()
    except DataSourceError as e:
        log.warning(
            f"[yellow]Could not read settings from the database, "
            f"using the config file:[/] {e}"
        )
        store_settings = {}
    return RunSettings.resolve(store_settings, config)


def _save_session_history(result: RunResult, duration_s: float) -> None:
    """Appends one JSON line describing a finished run to the history file."""
    history_file = CONFIG_DIR / "session_history.jsonl"
    try:
        with open(history_file, "a", encoding="utf-8") as f:
            session_data = {
                "timestamp": int(time.time()),
                "library_id": result.library_id,
                "library_name": result.library_name,
                "status": result.status.value,
                "total_documents": result.total_documents,
                "documents_downloaded": result.success_count,
                "documents_skipped": result.skipped_count,
                "documents_failed": result.failed_count,
                "bytes_written": result.bytes_written,
                "resumed": result.resumed,
                "duration_seconds": round(duration_s, 2),
            }
            json.dump(session_data, f)
            f.write("\n")
    except OSError as e:
        log.warning(f"[yellow]Could not save session history:[/] {e}")


def _choose_workers(document_count: int, workers: int | None, default: int) -> int:
    if document_count > LARGE_LIBRARY_THRESHOLD:
        print_large_library_warning(document_count, ESTIMATED_FILES_PER_SECOND)
    if workers is not None:
        return workers
    if document_count <= WORKER_PROMPT_THRESHOLD:
        return default
    chosen = typer.prompt(
        f"Number of parallel downloads (1-{MAX_PARALLEL_LIMIT})",
        default=default,
        type=int,
    )
    if not 1 <= chosen <= MAX_PARALLEL_LIMIT:
        console.print(
            f"[red]✗ Parallel downloads must be between 1 and {MAX_PARALLEL_LIMIT}."
            "[/red]"
        )
        raise typer.Exit(code=1)
    return chosen


def _run_download(
    config: DownloadConfig,
    library_id: int,
    workers: int | None,
    assume_yes: bool,
    show_messages: bool,
    fresh: bool = False,
    run_dir: Path | None = None,
) -> RunResult | None:
    """
    Runs one library download end to end. Returns None if the user declined
    to start it.
    """
    client = LibraryStoreClient(config.connection_url)

    async def _download_async() -> tuple[RunResult | None, float]:
        gateway = MetadataGateway(client)
        library = await gateway.library_info(library_id)
        if library is None:
            console.print(
                f"[red]✗ Library with ID {library_id} not found or has been deleted."
                "[/red]"
            )
            raise typer.Exit(code=1)

        print_library_info(library)
        settings = await _resolve_run_settings(gateway, config)
        print_run_settings(settings)

        max_parallel = _choose_workers(
            library.document_count, workers, config.max_workers
        )
        if not assume_yes and not typer.confirm(
            f"Download {library.document_count:,} documents with "
            f"{max_parallel} parallel downloads?",
            default=True,
        ):
            console.print("[yellow]Operation cancelled.[/yellow]")
            return None, 0.0

        orchestrator = DownloadOrchestrator(
            gateway, settings, ProgressStore(), page_size=config.page_size
        )
        cancel_event = asyncio.Event()

        def _on_interrupt():
            if cancel_event.is_set():
                console.print("[yellow]Already cancelling, please wait...[/yellow]")
                return
            console.print(
                "\n[yellow]⚠️  Cancelling after the current downloads finish..."
                "[/yellow]"
            )
            cancel_event.set()

        loop = asyncio.get_running_loop()
        handler_installed = False
        with suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(signal.SIGINT, _on_interrupt)
            handler_installed = True

        console.print("[bold cyan]📚 Starting download session...[/bold cyan]")
        try:
            with ProgressManager(console, show_messages=show_messages) as progress:
                result = await orchestrator.run(
                    library_id,
                    max_parallel=max_parallel,
                    progress_callback=progress.update,
                    log_callback=progress.log_message,
                    cancel_event=cancel_event,
                    run_dir=run_dir,
                    resume=not fresh,
                )
                duration = progress.elapsed
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)
        return result, duration

    try:
        result, duration = asyncio.run(_download_async())
    except DataSourceError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    finally:
        client.close()

    if result is None:
        return None
    print_summary_panel(result, duration)
    _save_session_history(result, duration)
    return result


def _exit_for(result: RunResult | None) -> None:
    if result is not None and result.status in (RunStatus.NOT_FOUND, RunStatus.FATAL):
        raise typer.Exit(code=1)


@app.command()
def init(
    connection_url: str = typer.Argument(
        ...,
        help="SQLAlchemy URL of the document store database.",
        metavar="<CONNECTION_URL>",
    ),
    download_path: str | None = typer.Option(
        None, "--download-path", "-d", help="Directory that receives run folders."
    ),
    storage_location: str | None = typer.Option(
        None,
        "--storage-location",
        help="Where file payloads live: 'database' or 'filesystem'.",
    ),
    storage_root: str | None = typer.Option(
        None, "--storage-root", help="Root of the file-share chunk directories."
    ),
    workers: int | None = typer.Option(
        None,
        "-w",
        "--workers",
        min=1,
        max=MAX_PARALLEL_LIMIT,
        help="Default number of parallel downloads.",
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration."
    ),
):
    """Initialize configuration with the document store connection."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "connection_url": connection_url,
        "download_path": download_path,
        "storage_location": storage_location,
        "storage_root": storage_root,
        "max_workers": workers,
    }
    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")

    client = LibraryStoreClient(connection_url)
    try:
        if client.test_connection():
            console.print("[green]✓ Connected to the document store.[/green]")
        else:
            console.print(
                "[yellow]⚠️  Could not connect to the document store. "
                "Check the connection URL.[/yellow]"
            )
    finally:
        client.close()
    console.print("List libraries with: [cyan]library-dl libraries[/cyan]")


@app.command(name="libraries")
def libraries_command():
    """List all libraries with their document counts."""
    config = _load_config()
    client = LibraryStoreClient(config.connection_url)
    try:
        print_libraries_table(client.list_libraries())
    except DataSourceError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    finally:
        client.close()


@app.command()
def info(library_id: int = typer.Argument(..., help="ID of the library.")):
    """Show details of a single library."""
    config = _load_config()
    client = LibraryStoreClient(config.connection_url)
    try:
        library = client.library_info(library_id)
    except DataSourceError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    finally:
        client.close()

    if library is None:
        console.print(
            f"[red]✗ Library with ID {library_id} not found or has been deleted.[/red]"
        )
        raise typer.Exit(code=1)
    print_library_info(library)


@app.command(name="download")
def download_command(
    library_id: int = typer.Argument(..., help="ID of the library to download."),
    workers: int | None = typer.Option(
        None,
        "-w",
        "--workers",
        min=1,
        max=MAX_PARALLEL_LIMIT,
        help="Number of parallel downloads (overrides the config, 1-10).",
    ),
    fresh: bool = typer.Option(
        False,
        "--fresh",
        help="Start a new run folder instead of resuming an incomplete one.",
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Start without asking for confirmation."
    ),
    messages: bool = typer.Option(
        False, "--messages", "-m", help="Print run messages above the progress bar."
    ),
):
    """Download every document of a library, resuming where possible."""
    config = _load_config({"max_workers": workers})
    result = _run_download(
        config, library_id, workers, yes, messages, fresh=fresh
    )
    _exit_for(result)


@app.command()
def runs():
    """List incomplete downloads that can be resumed."""
    config = _load_config()
    client = LibraryStoreClient(config.connection_url)

    async def _settings() -> RunSettings:
        return await _resolve_run_settings(MetadataGateway(client), config)

    try:
        settings = asyncio.run(_settings())
    finally:
        client.close()
    print_runs_table(ProgressStore().list_all_incomplete_runs(settings.download_path))


@app.command()
def resume(
    index: int = typer.Argument(
        1, min=1, help="Number of the run to resume, as listed by 'runs'."
    ),
    workers: int | None = typer.Option(
        None,
        "-w",
        "--workers",
        min=1,
        max=MAX_PARALLEL_LIMIT,
        help="Number of parallel downloads (overrides the config, 1-10).",
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Start without asking for confirmation."
    ),
    messages: bool = typer.Option(
        False, "--messages", "-m", help="Print run messages above the progress bar."
    ),
):
    """Resume an incomplete download."""
    config = _load_config({"max_workers": workers})
    client = LibraryStoreClient(config.connection_url)

    async def _settings() -> RunSettings:
        return await _resolve_run_settings(MetadataGateway(client), config)

    try:
        settings = asyncio.run(_settings())
    finally:
        client.close()

    incomplete = ProgressStore().list_all_incomplete_runs(settings.download_path)
    if not incomplete:
        console.print("[green]No incomplete downloads found.[/green]")
        raise typer.Exit()
    if index > len(incomplete):
        console.print(
            f"[red]✗ There are only {len(incomplete)} incomplete downloads.[/red]"
        )
        raise typer.Exit(code=1)

    record = incomplete[index - 1]
    console.print(
        f"[cyan]Resuming '{record.library_name}' "
        f"({record.successful_count:,}/{record.total_documents:,} done)...[/cyan]"
    )
    result = _run_download(
        config,
        record.library_id,
        workers,
        yes,
        messages,
        run_dir=Path(record.download_path),
    )
    _exit_for(result)


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config_manager = ConfigManager(CONFIG_FILE)
        config = config_manager.load_config()
        print_validation_table(config)
    except LibraryDlError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e


@app.command()
def diagnose():
    """Diagnose common configuration and connectivity issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print(
            "[red]✗ Config file not found.[/] Run [cyan]library-dl init[/cyan]."
        )
        raise typer.Exit(code=1)
    try:
        config = ConfigManager(CONFIG_FILE).load_config()
        console.print("[green]✓[/] Configuration file is valid and can be loaded.")
    except ConfigurationError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        raise typer.Exit(code=1) from e

    console.print("\n[dim]Testing connection to the document store...[/dim]")
    client = LibraryStoreClient(config.connection_url)
    try:
        if client.test_connection():
            console.print("[green]✓[/] Successfully connected to the document store.")
            try:
                libraries = client.list_libraries()
                console.print(f"[green]✓[/] Found {len(libraries)} libraries.")
            except DataSourceError as e:
                console.print(f"[red]✗ Could not read libraries: {e}[/red]")
                issues_found = True
        else:
            console.print("[red]✗ Could not connect to the document store.[/red]")
            issues_found = True

        async def _settings() -> RunSettings:
            return await _resolve_run_settings(MetadataGateway(client), config)

        settings = asyncio.run(_settings())
    finally:
        client.close()

    download_path = settings.download_path
    nearest_existing = download_path
    while not nearest_existing.exists() and nearest_existing != nearest_existing.parent:
        nearest_existing = nearest_existing.parent
    if os.access(nearest_existing, os.W_OK):
        console.print(f"[green]✓[/] Download path is writable: [dim]{download_path}[/dim]")
    else:
        console.print(f"[red]✗ Download path is not writable: {download_path}[/red]")
        issues_found = True

    if not settings.store_files_in_db:
        if settings.storage_root.is_dir():
            console.print(
                f"[green]✓[/] Storage root found: [dim]{settings.storage_root}[/dim]"
            )
        else:
            console.print(
                f"[red]✗ Storage root not found: {settings.storage_root}[/red]"
            )
            issues_found = True

    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)

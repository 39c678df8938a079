"""
The main orchestrator for downloading a whole library: pages through its
documents, rebuilds them with bounded parallelism, checkpoints progress after
every page, and honours cooperative cancellation.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from rich.markup import escape

from library_dl.exceptions import RunSetupError
from library_dl.models.config import DEFAULT_PAGE_SIZE, MAX_PARALLEL_LIMIT, RunSettings
from library_dl.models.progress import ProgressRecord
from library_dl.models.records import DocumentRef, LibraryInfo, RunResult, RunStatus
from library_dl.models.stats import DownloadStats
from library_dl.source.gateway import MetadataGateway
from library_dl.storage.error_log import ErrorLog
from library_dl.storage.progress_store import ProgressStore
from library_dl.utils.formatting import timestamped
from library_dl.utils.path import create_run_dir, document_output_path

from .reconstructor import ChunkReconstructor

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
LogCallback = Callable[[str], None]


@dataclass
class _RunContext:
    """Everything shared by the tasks of one run."""

    library: LibraryInfo
    run_dir: Path
    record: ProgressRecord
    stats: DownloadStats
    error_log: ErrorLog
    reconstructor: ChunkReconstructor
    semaphore: asyncio.Semaphore
    cancel_event: asyncio.Event
    progress_callback: ProgressCallback | None
    log_callback: LogCallback | None


class DownloadOrchestrator:
    """Downloads every non-deleted document of a library into a run directory."""

    def __init__(
        self,
        gateway: MetadataGateway,
        settings: RunSettings,
        progress_store: ProgressStore | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.gateway = gateway
        self.settings = settings
        self.progress_store = progress_store or ProgressStore()
        self.page_size = page_size

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    @staticmethod
    def _emit(
        log_callback: LogCallback | None, message: str, level: str = "info"
    ) -> None:
        getattr(log, level)(message)
        if log_callback:
            try:
                log_callback(timestamped(message))
            except Exception as e:
                log.debug(f"Log callback raised: {e}")

    @staticmethod
    def _report_progress(ctx: _RunContext, current: int) -> None:
        if ctx.progress_callback:
            try:
                ctx.progress_callback(current, ctx.library.document_count)
            except Exception as e:
                log.debug(f"Progress callback raised: {e}")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        library_id: int,
        max_parallel: int = 4,
        progress_callback: ProgressCallback | None = None,
        log_callback: LogCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        run_dir: Path | None = None,
        resume: bool = True,
    ) -> RunResult:
        """
        Downloads a library.

        Args:
            library_id: The library to download.
            max_parallel: Number of documents rebuilt concurrently (1-10).
            progress_callback: Called with (processed, total) after every
                document and at every page boundary.
            log_callback: Receives timestamped run-level messages.
            cancel_event: When set, no further pages or documents are started.
            run_dir: Reuse this run directory and its saved progress instead of
                looking up the latest incomplete run.
            resume: When False and no run_dir is given, always start a fresh
                run directory.

        Returns:
            A RunResult; only setup failures produce a FATAL status.
        """
        if not 1 <= max_parallel <= MAX_PARALLEL_LIMIT:
            raise ValueError(
                f"max_parallel must be between 1 and {MAX_PARALLEL_LIMIT}, "
                f"got {max_parallel}"
            )
        cancel_event = cancel_event or asyncio.Event()

        self._emit(log_callback, "=== STARTING LIBRARY DOWNLOAD ===")
        self._emit(log_callback, f"Library ID: {library_id}")
        for key, value in self.settings.describe().items():
            self._emit(log_callback, f"{key}: {value}", "debug")

        try:
            library = await self.gateway.library_info(library_id)
        except Exception as e:
            self._emit(log_callback, f"Could not read library {library_id}: {e}", "error")
            return RunResult(RunStatus.FATAL, library_id, error=str(e))

        if library is None:
            message = f"Library with ID {library_id} not found or has been deleted"
            self._emit(log_callback, message, "warning")
            return RunResult(RunStatus.NOT_FOUND, library_id, error=message)

        self._emit(
            log_callback, f"Library: {library.name} ({library.document_count} documents)"
        )
        if library.document_count == 0:
            return RunResult(
                RunStatus.COMPLETED,
                library_id,
                library_name=library.name,
                message="No documents found to download in this library.",
            )

        try:
            run_dir, record, resumed = self._prepare_run(library, run_dir, resume)
        except RunSetupError as e:
            self._emit(log_callback, str(e), "error")
            return RunResult(
                RunStatus.FATAL,
                library_id,
                library_name=library.name,
                total_documents=library.document_count,
                error=str(e),
            )

        ctx = _RunContext(
            library=library,
            run_dir=run_dir,
            record=record,
            stats=DownloadStats(total_documents=library.document_count),
            error_log=ErrorLog(run_dir),
            reconstructor=ChunkReconstructor(
                self.gateway,
                store_files_in_db=self.settings.store_files_in_db,
                storage_root=self.settings.storage_root,
            ),
            semaphore=asyncio.Semaphore(max_parallel),
            cancel_event=cancel_event,
            progress_callback=progress_callback,
            log_callback=log_callback,
        )

        if resumed:
            self._emit(
                log_callback,
                f"Resuming run in {run_dir} "
                f"({record.successful_count} done, {record.failed_count} failed before)",
            )
        else:
            self._emit(log_callback, f"Download path: {run_dir}")
        await ctx.error_log.write_header(
            library.name, library.id, library.document_count, max_parallel, resumed
        )
        await self.progress_store.save(record, run_dir)

        return await self._execute(ctx, resumed, max_parallel)

    def _prepare_run(
        self, library: LibraryInfo, run_dir: Path | None, resume: bool = True
    ) -> tuple[Path, ProgressRecord, bool]:
        """Picks the run directory and its progress record (loaded or fresh)."""
        base_dir = self.settings.download_path
        if run_dir is None and resume:
            run_dir = self.progress_store.find_latest_incomplete_run(base_dir, library.id)

        if run_dir is not None:
            record = self.progress_store.load(run_dir)
            if record is not None and record.library_id != library.id:
                raise RunSetupError(
                    f"Run directory '{run_dir}' belongs to library {record.library_id}"
                )
            if record is not None:
                record.library_name = library.name
                record.download_path = str(run_dir)
                record.total_documents = library.document_count
                return run_dir, record, True
            if not run_dir.is_dir():
                try:
                    run_dir.mkdir(parents=True)
                except OSError as e:
                    raise RunSetupError(
                        f"Cannot create run directory '{run_dir}': {e}"
                    ) from e
        else:
            try:
                run_dir = create_run_dir(base_dir, library.id)
            except OSError as e:
                raise RunSetupError(
                    f"Cannot create run directory under '{base_dir}': {e}"
                ) from e

        record = ProgressRecord(
            library_id=library.id,
            library_name=library.name,
            download_path=str(run_dir),
            total_documents=library.document_count,
        )
        return run_dir, record, False

    async def _execute(
        self, ctx: _RunContext, resumed: bool, max_parallel: int
    ) -> RunResult:
        library = ctx.library
        total_pages = math.ceil(library.document_count / self.page_size)
        self._emit(
            ctx.log_callback,
            f"Processing {total_pages} batches of {self.page_size} documents each "
            f"with {max_parallel} parallel downloads",
        )

        cancelled = False
        fatal_error = ""
        for page_no in range(total_pages):
            if ctx.cancel_event.is_set():
                cancelled = True
                break

            self._emit(
                ctx.log_callback, f"--- Processing batch {page_no + 1} of {total_pages} ---"
            )
            try:
                documents = await self.gateway.fetch_page(
                    library.id, page_no * self.page_size, self.page_size
                )
            except Exception as e:
                fatal_error = f"Could not fetch batch {page_no + 1}: {e}"
                self._emit(ctx.log_callback, fatal_error, "error")
                break

            if not documents:
                self._emit(
                    ctx.log_callback,
                    f"Batch {page_no + 1} returned no documents; stopping.",
                    "warning",
                )
                break

            cancelled = await self._process_page(ctx, documents)
            await self.progress_store.save(ctx.record, ctx.run_dir)
            self._report_progress(ctx, ctx.stats.processed)
            if cancelled:
                break

        completed = not cancelled and not fatal_error and ctx.record.failed_count == 0
        await ctx.record.set_completed(completed)
        await self.progress_store.save(ctx.record, ctx.run_dir)

        stats = ctx.stats
        result = RunResult(
            RunStatus.COMPLETED,
            library.id,
            library_name=library.name,
            total_documents=library.document_count,
            success_count=stats.downloaded,
            failed_count=stats.failed,
            skipped_count=stats.skipped,
            bytes_written=stats.bytes_written,
            resumed=resumed,
            run_dir=ctx.run_dir,
        )
        if fatal_error:
            result.status = RunStatus.FATAL
            result.error = fatal_error
            result.message = "Library download stopped; progress saved for resume."
            self._emit(ctx.log_callback, "=== LIBRARY DOWNLOAD FAILED ===", "error")
        elif cancelled:
            result.status = RunStatus.CANCELLED
            result.message = (
                "Download cancelled by user. Partial progress saved; "
                "run again to resume."
            )
            await ctx.error_log.record_cancelled()
            self._emit(ctx.log_callback, "Download cancelled", "warning")
        else:
            result.message = (
                f"Download completed. Success: {stats.downloaded}, "
                f"Skipped: {stats.skipped}, Failed: {stats.failed}"
            )
            self._emit(ctx.log_callback, "=== LIBRARY DOWNLOAD COMPLETED ===")
        self._emit(ctx.log_callback, result.message)
        return result

    # ------------------------------------------------------------------
    # Pages and documents
    # ------------------------------------------------------------------

    async def _process_page(
        self, ctx: _RunContext, documents: list[DocumentRef]
    ) -> bool:
        """
        Admits one task per document through the semaphore and waits for all
        admitted tasks. Returns True if admission stopped due to cancellation.
        """
        tasks: list[asyncio.Task] = []
        cancelled = False
        try:
            for document in documents:
                if ctx.cancel_event.is_set():
                    cancelled = True
                    break
                await ctx.semaphore.acquire()
                if ctx.cancel_event.is_set():
                    ctx.semaphore.release()
                    cancelled = True
                    break
                tasks.append(asyncio.create_task(self._run_task(ctx, document)))
        finally:
            if tasks:
                await asyncio.gather(*tasks)
        return cancelled

    async def _run_task(self, ctx: _RunContext, document: DocumentRef) -> None:
        """Task boundary: any exception becomes a per-document failure."""
        try:
            await self._download_document(ctx, document)
        except Exception as e:
            log.debug(f"Document {document.id} raised", exc_info=True)
            await self._record_failure(ctx, document, f"{type(e).__name__}: {e}")
        finally:
            ctx.semaphore.release()

    async def _download_document(self, ctx: _RunContext, document: DocumentRef) -> None:
        if ctx.record.is_successful(document.id):
            await self._record_skip(ctx, document)
            return

        if not document.name.strip():
            await self._record_failure(ctx, document, "Document has no name")
            return

        output_path = document_output_path(
            ctx.run_dir, document.relative_path, document.name
        )
        if await asyncio.to_thread(output_path.exists):
            await self._record_skip(ctx, document)
            return

        result = await ctx.reconstructor.reconstruct(
            document.file_id, document.archived, output_path
        )
        if not result.success:
            await self._record_failure(ctx, document, result.error)
            return

        await ctx.record.mark_success(document.id)
        current = await ctx.stats.record_download(result.bytes_written)
        log.debug(
            f"Saved document {document.id} from {result.source} "
            f"({result.bytes_written} bytes)"
        )
        self._report_progress(ctx, current)

    async def _record_skip(self, ctx: _RunContext, document: DocumentRef) -> None:
        await ctx.record.mark_success(document.id)
        current = await ctx.stats.record_skip()
        self._report_progress(ctx, current)

    async def _record_failure(
        self, ctx: _RunContext, document: DocumentRef, error: str
    ) -> None:
        await ctx.record.mark_failed(document.id, document.name)
        await ctx.error_log.record_failure(
            document.id, document.file_id, document.name, error
        )
        current = await ctx.stats.record_failure()
        log.warning(
            f"[red]✗ Failed:[/] {escape(document.name or str(document.id))} "
            f"({escape(error)})"
        )
        self._report_progress(ctx, current)

"""
Append-only, human-readable failure log kept inside each run directory.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import aiofiles

log = logging.getLogger(__name__)

ERROR_LOG_FILE_NAME = "_download_log.txt"


class ErrorLog:
    """Serializes appends from concurrent download tasks to one text file."""

    def __init__(self, run_dir: Path, file_name: str = ERROR_LOG_FILE_NAME):
        self.path = run_dir / file_name
        self._lock = asyncio.Lock()

    async def append(self, text: str) -> None:
        async with self._lock:
            try:
                async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
                    await f.write(text)
            except OSError as e:
                log.warning(f"[yellow]Could not write to '{self.path}':[/] {e}")

    async def write_header(
        self,
        library_name: str,
        library_id: int,
        total_documents: int,
        max_parallel: int,
        resumed: bool = False,
    ) -> None:
        title = "Resumed Library Download" if resumed else "Library Download Log"
        await self.append(
            f"{title} - {datetime.now():%Y-%m-%d %H:%M:%S}\n"
            f"Library: {library_name} (ID: {library_id})\n"
            f"Total Documents: {total_documents}\n"
            f"Max Parallel Downloads: {max_parallel}\n\n"
        )

    async def record_failure(
        self, document_id: int, file_id: int, document_name: str, error: str
    ) -> None:
        await self.append(
            f"FAILED document_id={document_id} file_id={file_id} "
            f"name={document_name!r} error={error}\n"
        )

    async def record_cancelled(self) -> None:
        await self.append("\n*** Download cancelled by user ***\n")

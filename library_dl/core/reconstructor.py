"""
Rebuilds a single document's bytes from database chunks, a single blob, or a
chunk directory on the file share.
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import aiofiles

from library_dl.exceptions import (
    ChunkLayoutError,
    ChunkMissingError,
    EmptyPayloadError,
    ReconstructionError,
)
from library_dl.source.gateway import MetadataGateway
from library_dl.source.schema import TERMINAL_CHUNK_INDEX
from library_dl.utils.path import create_dir, partial_path

log = logging.getLogger(__name__)

SOURCE_DB_CHUNKS = "db-chunks"
SOURCE_BLOB = "blob"
SOURCE_FS_CHUNKS = "fs-chunks"


def physical_chunk_index(position: int, chunk_count: int) -> int:
    """
    Maps a logical chunk position (1..count) to the index it is stored
    under. The last chunk is always stored under the terminal index.
    """
    return TERMINAL_CHUNK_INDEX if position == chunk_count else position


def chunk_file_sort_key(path: Path) -> int:
    """Orders chunk files by numeric name, with the terminal chunk last."""
    stem = path.stem
    if stem == str(TERMINAL_CHUNK_INDEX):
        return sys.maxsize
    try:
        return int(stem)
    except ValueError:
        raise ChunkLayoutError(
            f"Unexpected file '{path.name}' in chunk directory '{path.parent}'"
        ) from None


@dataclass
class ReconstructionResult:
    """Outcome of rebuilding one document."""

    success: bool
    source: str = ""
    bytes_written: int = 0
    error: str = ""


class ChunkReconstructor:
    """
    Writes a document to disk from the first available source:

    1. database chunks (database storage mode, chunk count > 0)
    2. the file's single blob (database mode with no chunks, or file-share
       mode without a chunk directory)
    3. a chunk directory named after the file id (file-share storage mode)

    Output is written to a temporary sibling file and only moved onto the
    final path once every byte has been written.
    """

    def __init__(
        self,
        gateway: MetadataGateway,
        store_files_in_db: bool = True,
        storage_root: Path | None = None,
    ):
        self.gateway = gateway
        self.store_files_in_db = store_files_in_db
        self.storage_root = storage_root or Path("storage")

    async def reconstruct(
        self, file_id: int, archived: bool, output_path: Path
    ) -> ReconstructionResult:
        """
        Rebuilds ``file_id`` at ``output_path``.

        Expected failures (missing chunks, empty payloads, malformed chunk
        directories) are returned as an unsuccessful result; I/O errors and
        data-source errors propagate to the caller.
        """
        await asyncio.to_thread(create_dir, output_path.parent)
        temp_path = partial_path(output_path, file_id)
        try:
            source, size = await self._write_payload(file_id, archived, temp_path)
            await asyncio.to_thread(os.replace, temp_path, output_path)
            return ReconstructionResult(True, source=source, bytes_written=size)
        except ReconstructionError as e:
            log.debug(f"Reconstruction of file {file_id} failed: {e}")
            return ReconstructionResult(False, error=str(e))
        finally:
            try:
                await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            except OSError:
                log.debug(f"Could not remove partial file '{temp_path}'")

    async def _write_payload(
        self, file_id: int, archived: bool, temp_path: Path
    ) -> tuple[str, int]:
        if self.store_files_in_db:
            chunk_count = await self.gateway.chunk_count(file_id, archived)
            if chunk_count > 0:
                log.debug(f"File {file_id} is chunked ({chunk_count} chunks)")
                size = await self._write_db_chunks(
                    file_id, archived, chunk_count, temp_path
                )
                return SOURCE_DB_CHUNKS, size
            return SOURCE_BLOB, await self._write_blob(file_id, temp_path)

        chunk_dir = self.storage_root / str(file_id)
        if not await asyncio.to_thread(chunk_dir.is_dir):
            return SOURCE_BLOB, await self._write_blob(file_id, temp_path)
        return SOURCE_FS_CHUNKS, await self._write_fs_chunks(chunk_dir, temp_path)

    async def _write_db_chunks(
        self, file_id: int, archived: bool, chunk_count: int, temp_path: Path
    ) -> int:
        written = 0
        for position in range(1, chunk_count + 1):
            index = physical_chunk_index(position, chunk_count)
            data = await self.gateway.fetch_chunk(file_id, index, archived)
            if data is None:
                raise ChunkMissingError(
                    f"Chunk {index} (position {position} of {chunk_count}) "
                    f"of file {file_id} not found"
                )
            mode = "wb" if position == 1 else "ab"
            async with aiofiles.open(temp_path, mode) as f:
                await f.write(data)
            written += len(data)
        return written

    async def _write_blob(self, file_id: int, temp_path: Path) -> int:
        data = await self.gateway.fetch_blob(file_id)
        if not data:
            raise EmptyPayloadError(f"File {file_id} has no stored payload")
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)
        return len(data)

    def _list_chunk_files(self, chunk_dir: Path) -> list[Path]:
        entries = [path for path in chunk_dir.iterdir() if path.is_file()]
        return sorted(entries, key=chunk_file_sort_key)

    async def _write_fs_chunks(self, chunk_dir: Path, temp_path: Path) -> int:
        chunk_files = await asyncio.to_thread(self._list_chunk_files, chunk_dir)
        if not chunk_files:
            raise ChunkLayoutError(f"Chunk directory '{chunk_dir}' is empty")

        written = 0
        for position, chunk_file in enumerate(chunk_files):
            async with aiofiles.open(chunk_file, "rb") as src:
                data = await src.read()
            mode = "wb" if position == 0 else "ab"
            async with aiofiles.open(temp_path, mode) as f:
                await f.write(data)
            written += len(data)
        return written

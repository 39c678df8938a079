"""
Serialized async access to the shared document store connection.
"""

import asyncio
import logging
from typing import Any, Callable

from library_dl.models.records import DocumentRef, LibraryInfo

from .client import LibraryStoreClient

log = logging.getLogger(__name__)


class MetadataGateway:
    """
    Runs every call that touches the store's single connection behind one
    lock, so at most one such call is in flight at any time. Disk I/O done
    by download tasks is not limited by this gate.
    """

    def __init__(self, client: LibraryStoreClient):
        self.client = client
        self._lock = asyncio.Lock()

    async def _run_in_executor(self, func: Callable[..., Any], *args) -> Any:
        """Runs a synchronous client call in a worker thread, one at a time."""
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    async def load_settings(self) -> dict[str, str]:
        return await self._run_in_executor(self.client.load_settings)

    async def list_libraries(self) -> list[LibraryInfo]:
        return await self._run_in_executor(self.client.list_libraries)

    async def library_info(self, library_id: int) -> LibraryInfo | None:
        return await self._run_in_executor(self.client.library_info, library_id)

    async def fetch_page(
        self, library_id: int, skip: int, take: int
    ) -> list[DocumentRef]:
        log.debug(f"Fetching documents {skip}..{skip + take} of library {library_id}")
        return await self._run_in_executor(
            self.client.fetch_page, library_id, skip, take
        )

    async def chunk_count(self, file_id: int, archived: bool) -> int:
        return await self._run_in_executor(self.client.chunk_count, file_id, archived)

    async def fetch_chunk(
        self, file_id: int, index: int, archived: bool
    ) -> bytes | None:
        return await self._run_in_executor(
            self.client.fetch_chunk, file_id, index, archived
        )

    async def fetch_blob(self, file_id: int) -> bytes | None:
        return await self._run_in_executor(self.client.fetch_blob, file_id)

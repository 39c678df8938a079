"""
Async-safe counters for a single library download run.
"""

import asyncio
from dataclasses import dataclass, field


@dataclass
class DownloadStats:
    """Tracks per-run document counters shared by concurrent download tasks."""

    total_documents: int = 0
    processed: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    bytes_written: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def record_download(self, size: int = 0) -> int:
        """Counts a reconstructed document and returns the processed total."""
        async with self._lock:
            self.downloaded += 1
            self.bytes_written += size
            self.processed += 1
            return self.processed

    async def record_skip(self) -> int:
        async with self._lock:
            self.skipped += 1
            self.processed += 1
            return self.processed

    async def record_failure(self) -> int:
        async with self._lock:
            self.failed += 1
            self.processed += 1
            return self.processed

"""
Resumable run state: which documents of a library run succeeded or failed.
"""

import asyncio
from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class ProgressSnapshot(BaseModel):
    """The persisted (JSON) form of a run's progress."""

    library_id: int = Field(..., alias="libraryId")
    library_name: str = Field("", alias="libraryName")
    download_path: str = Field(..., alias="downloadPath")
    start_time: datetime = Field(default_factory=datetime.now, alias="startTime")
    last_update_time: datetime = Field(
        default_factory=datetime.now, alias="lastUpdateTime"
    )
    total_documents: int = Field(0, alias="totalDocuments")
    successful_documents: list[int] = Field(
        default_factory=list, alias="successfulDocuments"
    )
    failed_documents: dict[int, str] = Field(
        default_factory=dict, alias="failedDocuments"
    )
    is_completed: bool = Field(False, alias="isCompleted")

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True

    @field_validator("start_time", "last_update_time")
    @classmethod
    def to_local_naive(cls, v: datetime) -> datetime:
        """Stores every timestamp as naive local time so runs stay comparable."""
        if v.tzinfo is not None:
            return v.astimezone().replace(tzinfo=None)
        return v


class ProgressRecord:
    """
    Mutable progress of one run, shared by concurrent download tasks.

    The successful set and the failed map are only changed through the
    methods below, under a single lock, so an id is never in both.
    """

    def __init__(
        self,
        library_id: int,
        library_name: str,
        download_path: str,
        total_documents: int,
        start_time: datetime | None = None,
        last_update_time: datetime | None = None,
        successful: Iterable[int] = (),
        failed: dict[int, str] | None = None,
        completed: bool = False,
    ):
        self.library_id = library_id
        self.library_name = library_name
        self.download_path = download_path
        self.total_documents = total_documents
        self.start_time = start_time or datetime.now()
        self.last_update_time = last_update_time or self.start_time
        self._successful: set[int] = set(successful)
        self._failed: dict[int, str] = {
            doc_id: name
            for doc_id, name in (failed or {}).items()
            if doc_id not in self._successful
        }
        self._completed = completed
        self._lock = asyncio.Lock()

    @classmethod
    def from_snapshot(cls, snapshot: ProgressSnapshot) -> "ProgressRecord":
        return cls(
            library_id=snapshot.library_id,
            library_name=snapshot.library_name,
            download_path=snapshot.download_path,
            total_documents=snapshot.total_documents,
            start_time=snapshot.start_time,
            last_update_time=snapshot.last_update_time,
            successful=snapshot.successful_documents,
            failed=snapshot.failed_documents,
            completed=snapshot.is_completed,
        )

    @property
    def is_completed(self) -> bool:
        return self._completed

    @property
    def successful_count(self) -> int:
        return len(self._successful)

    @property
    def failed_count(self) -> int:
        return len(self._failed)

    def is_successful(self, document_id: int) -> bool:
        return document_id in self._successful

    async def mark_success(self, document_id: int) -> None:
        async with self._lock:
            self._successful.add(document_id)
            self._failed.pop(document_id, None)

    async def mark_failed(self, document_id: int, document_name: str) -> None:
        async with self._lock:
            self._successful.discard(document_id)
            self._failed[document_id] = document_name

    async def set_completed(self, completed: bool) -> None:
        async with self._lock:
            self._completed = completed

    async def snapshot(self, touch: bool = False) -> ProgressSnapshot:
        """
        Returns a consistent copy of the record. With ``touch`` the
        last-update time is advanced first.
        """
        async with self._lock:
            if touch:
                self.last_update_time = datetime.now()
            return ProgressSnapshot(
                library_id=self.library_id,
                library_name=self.library_name,
                download_path=self.download_path,
                start_time=self.start_time,
                last_update_time=self.last_update_time,
                total_documents=self.total_documents,
                successful_documents=sorted(self._successful),
                failed_documents=dict(sorted(self._failed.items())),
                is_completed=self._completed,
            )

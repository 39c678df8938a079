"""
Plain data records exchanged between the data source and the download engine.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


@dataclass(frozen=True)
class LibraryInfo:
    """A library and its number of non-deleted documents."""

    id: int
    name: str
    description: str = ""
    document_count: int = 0


@dataclass(frozen=True)
class DocumentRef:
    """The minimal per-document projection needed to rebuild one file."""

    id: int
    name: str
    file_id: int
    archived: bool = False
    relative_path: str = ""


class RunStatus(Enum):
    """Terminal states of a library download run."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    FATAL = "fatal"


@dataclass
class RunResult:
    """Outcome of a library download run."""

    status: RunStatus
    library_id: int
    library_name: str = ""
    total_documents: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    bytes_written: int = 0
    resumed: bool = False
    run_dir: Path | None = None
    message: str = ""
    error: str = ""

    @property
    def is_success(self) -> bool:
        return self.status == RunStatus.COMPLETED

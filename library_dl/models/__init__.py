"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core
data structures used throughout the application, such as configuration, run
progress and statistics.
"""

from .config import DownloadConfig, RunSettings
from .progress import ProgressRecord, ProgressSnapshot
from .records import DocumentRef, LibraryInfo, RunResult, RunStatus
from .stats import DownloadStats

__all__ = [
    "DocumentRef",
    "DownloadConfig",
    "DownloadStats",
    "LibraryInfo",
    "ProgressRecord",
    "ProgressSnapshot",
    "RunResult",
    "RunSettings",
    "RunStatus",
]

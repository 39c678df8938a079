"""
Utilities for handling run directories and document output paths.
"""

import re
from datetime import datetime
from pathlib import Path

from pathvalidate import sanitize_filename

RUN_DIR_PREFIX = "Library_"
RUN_DIR_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def run_dir_pattern(library_id: int | None = None) -> str:
    """Glob pattern matching the run directories of one (or every) library."""
    if library_id is None:
        return f"{RUN_DIR_PREFIX}*"
    return f"{RUN_DIR_PREFIX}{library_id}_*"


def create_run_dir(
    base_dir: Path, library_id: int, now: datetime | None = None
) -> Path:
    """
    Creates a fresh run directory named after the library and the start time.
    A numeric suffix is added when that name is already taken.
    """
    stamp = (now or datetime.now()).strftime(RUN_DIR_TIMESTAMP_FORMAT)
    name = f"{RUN_DIR_PREFIX}{library_id}_{stamp}"
    create_dir(base_dir)
    candidate = base_dir / name
    suffix = 0
    while True:
        try:
            candidate.mkdir()
            return candidate
        except FileExistsError:
            suffix += 1
            candidate = base_dir / f"{name}_{suffix}"


def relative_parts(relative_path: str | None) -> list[str]:
    """
    Splits a stored relative path on either separator, dropping empty, '.'
    and '..' segments, and sanitizes each remaining segment.
    """
    if not relative_path:
        return []
    parts = []
    for segment in re.split(r"[\\/]+", relative_path):
        segment = segment.strip()
        if segment in ("", ".", ".."):
            continue
        if cleaned := sanitize_filename(segment):
            parts.append(cleaned)
    return parts


def document_output_path(run_dir: Path, relative_path: str | None, name: str) -> Path:
    """Builds the final on-disk path of a document inside a run directory."""
    file_name = sanitize_filename(name)
    if not file_name:
        raise ValueError(f"Document name {name!r} is not a usable file name")
    return run_dir.joinpath(*relative_parts(relative_path)) / file_name


def partial_path(final_path: Path, file_id: int) -> Path:
    """Temporary sibling path used while a document is being rebuilt."""
    return final_path.with_name(f"{final_path.name}.{file_id}.part")

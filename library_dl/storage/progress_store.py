"""
Persists, loads and discovers the resumable state of library download runs.

Each run directory holds one JSON state file, rewritten atomically after
every page of documents.
"""

import asyncio
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from library_dl.models.progress import ProgressRecord, ProgressSnapshot
from library_dl.utils.path import run_dir_pattern

log = logging.getLogger(__name__)

STATE_FILE_NAME = "_progress.json"


class ProgressStore:
    """Reads and writes ``_progress.json`` files inside run directories."""

    def __init__(self, state_file_name: str = STATE_FILE_NAME):
        self.state_file_name = state_file_name

    def state_path(self, run_dir: Path) -> Path:
        return run_dir / self.state_file_name

    def _write_sync(self, snapshot: ProgressSnapshot, run_dir: Path) -> None:
        path = self.state_path(run_dir)
        temp_path = path.with_name(f"{path.name}.tmp")
        temp_path.write_text(
            snapshot.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )
        os.replace(temp_path, path)

    async def save(self, record: ProgressRecord, run_dir: Path) -> bool:
        """
        Atomically overwrites the run's state file. Failures are logged and
        reported through the return value, never raised.
        """
        try:
            snapshot = await record.snapshot(touch=True)
            await asyncio.to_thread(self._write_sync, snapshot, run_dir)
            return True
        except Exception as e:
            log.error(f"[red]Could not save progress to '{run_dir}': {e}[/red]")
            return False

    def read_snapshot(self, run_dir: Path) -> ProgressSnapshot | None:
        """Returns the stored snapshot, or None if it is missing or unreadable."""
        path = self.state_path(run_dir)
        if not path.is_file():
            return None
        try:
            return ProgressSnapshot.model_validate_json(
                path.read_text(encoding="utf-8")
            )
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            log.warning(f"[yellow]Ignoring unreadable progress file '{path}': {e}[/yellow]")
            return None

    def load(self, run_dir: Path) -> ProgressRecord | None:
        snapshot = self.read_snapshot(run_dir)
        return ProgressRecord.from_snapshot(snapshot) if snapshot else None

    def _incomplete_snapshots(
        self, base_dir: Path, library_id: int | None = None
    ) -> list[tuple[Path, ProgressSnapshot]]:
        if not base_dir.is_dir():
            return []
        found = []
        for run_dir in base_dir.glob(run_dir_pattern(library_id)):
            if not run_dir.is_dir():
                continue
            snapshot = self.read_snapshot(run_dir)
            if snapshot is None or snapshot.is_completed:
                continue
            if library_id is not None and snapshot.library_id != library_id:
                continue
            found.append((run_dir, snapshot))
        return found

    def find_latest_incomplete_run(self, base_dir: Path, library_id: int) -> Path | None:
        """
        Returns the most recently started run directory of the library whose
        state file exists and is not completed.
        """
        candidates = self._incomplete_snapshots(base_dir, library_id)
        if not candidates:
            return None
        run_dir, _ = max(
            candidates, key=lambda item: (item[1].start_time, item[0].name)
        )
        return run_dir

    def list_all_incomplete_runs(self, base_dir: Path) -> list[ProgressRecord]:
        """
        All incomplete runs under ``base_dir``, most recently updated first.
        Each record's ``download_path`` is the directory it was found in,
        which may differ from the stored path if the run was moved.
        """
        candidates = self._incomplete_snapshots(base_dir)
        candidates.sort(key=lambda item: item[1].last_update_time, reverse=True)
        records = []
        for run_dir, snapshot in candidates:
            record = ProgressRecord.from_snapshot(snapshot)
            record.download_path = str(run_dir)
            records.append(record)
        return records

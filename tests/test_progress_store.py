import json
from datetime import datetime, timedelta

import pytest

from library_dl.models.progress import ProgressRecord, ProgressSnapshot
from library_dl.storage.progress_store import STATE_FILE_NAME, ProgressStore


def _write_state(run_dir, library_id, start, update=None, completed=False):
    run_dir.mkdir(parents=True, exist_ok=True)
    snapshot = ProgressSnapshot(
        library_id=library_id,
        library_name=f"Library {library_id}",
        download_path=str(run_dir),
        start_time=start,
        last_update_time=update or start,
        total_documents=10,
        is_completed=completed,
    )
    (run_dir / STATE_FILE_NAME).write_text(
        snapshot.model_dump_json(by_alias=True), encoding="utf-8"
    )


@pytest.mark.asyncio
async def test_save_writes_camel_case_state(tmp_path):
    record = ProgressRecord(3, "Board Minutes", str(tmp_path), 4, successful=[2, 1])
    await record.mark_failed(4, "broken.doc")

    assert await ProgressStore().save(record, tmp_path)

    data = json.loads((tmp_path / STATE_FILE_NAME).read_text(encoding="utf-8"))
    assert data["libraryId"] == 3
    assert data["libraryName"] == "Board Minutes"
    assert data["successfulDocuments"] == [1, 2]
    assert data["failedDocuments"] == {"4": "broken.doc"}
    assert data["isCompleted"] is False
    assert not (tmp_path / f"{STATE_FILE_NAME}.tmp").exists()

    loaded = ProgressStore().load(tmp_path)
    assert loaded.is_successful(1)
    assert loaded.failed_count == 1
    assert loaded.total_documents == 4


@pytest.mark.asyncio
async def test_save_failure_is_reported_not_raised(tmp_path):
    record = ProgressRecord(3, "Board Minutes", "x", 4)

    assert not await ProgressStore().save(record, tmp_path / "missing")


def test_missing_or_corrupt_state_loads_as_none(tmp_path):
    store = ProgressStore()
    assert store.load(tmp_path) is None

    (tmp_path / STATE_FILE_NAME).write_text("{not json", encoding="utf-8")
    assert store.load(tmp_path) is None

    (tmp_path / STATE_FILE_NAME).write_text('{"libraryId": "x"}', encoding="utf-8")
    assert store.load(tmp_path) is None


def test_finds_latest_incomplete_run_of_a_library(tmp_path):
    now = datetime(2024, 5, 1, 12, 0, 0)
    _write_state(tmp_path / "Library_1_20240501_100000", 1, now - timedelta(hours=2))
    _write_state(tmp_path / "Library_1_20240501_110000", 1, now - timedelta(hours=1))
    _write_state(tmp_path / "Library_1_20240501_120000", 1, now, completed=True)
    _write_state(tmp_path / "Library_2_20240501_130000", 2, now + timedelta(hours=1))
    corrupt = tmp_path / "Library_1_20240501_140000"
    corrupt.mkdir()
    (corrupt / STATE_FILE_NAME).write_text("garbage", encoding="utf-8")

    found = ProgressStore().find_latest_incomplete_run(tmp_path, 1)

    assert found == tmp_path / "Library_1_20240501_110000"


def test_no_incomplete_run_found(tmp_path):
    store = ProgressStore()
    assert store.find_latest_incomplete_run(tmp_path / "nowhere", 1) is None

    _write_state(tmp_path / "Library_1_20240501_120000", 1, datetime.now(), completed=True)
    assert store.find_latest_incomplete_run(tmp_path, 1) is None


def test_lists_all_incomplete_runs_most_recently_updated_first(tmp_path):
    base = datetime(2024, 5, 1)
    _write_state(tmp_path / "Library_1_a", 1, base, update=base + timedelta(days=1))
    _write_state(tmp_path / "Library_2_a", 2, base, update=base + timedelta(days=3))
    _write_state(tmp_path / "Library_3_a", 3, base, update=base + timedelta(days=2))
    _write_state(tmp_path / "Library_4_a", 4, base, completed=True)
    (tmp_path / "unrelated").mkdir()

    runs = ProgressStore().list_all_incomplete_runs(tmp_path)

    assert [run.library_id for run in runs] == [2, 3, 1]


@pytest.mark.asyncio
async def test_record_keeps_successful_and_failed_disjoint():
    record = ProgressRecord(1, "L", "d", 3)

    await record.mark_failed(1, "a")
    await record.mark_success(1)
    await record.mark_success(2)
    await record.mark_failed(2, "b")

    snapshot = await record.snapshot()
    assert snapshot.successful_documents == [1]
    assert snapshot.failed_documents == {2: "b"}


def test_record_from_overlapping_snapshot_prefers_success():
    snapshot = ProgressSnapshot(
        library_id=1,
        download_path="d",
        successful_documents=[1, 2],
        failed_documents={2: "b", 3: "c"},
    )

    record = ProgressRecord.from_snapshot(snapshot)

    assert record.successful_count == 2
    assert record.failed_count == 1


def test_offset_and_local_timestamps_can_be_compared(tmp_path):
    local = tmp_path / "Library_1_20240101_090000"
    _write_state(local, 1, datetime(2024, 1, 1, 9, 0, 0))
    offset = tmp_path / "Library_1_20240101_100000"
    offset.mkdir()
    (offset / STATE_FILE_NAME).write_text(
        json.dumps(
            {
                "libraryId": 1,
                "downloadPath": str(offset),
                "startTime": "2030-01-01T10:00:00+02:00",
                "lastUpdateTime": "2030-01-01T10:05:00+02:00",
            }
        ),
        encoding="utf-8",
    )
    store = ProgressStore()

    assert store.find_latest_incomplete_run(tmp_path, 1) == offset
    runs = store.list_all_incomplete_runs(tmp_path)
    assert [run.download_path for run in runs] == [str(offset), str(local)]
    assert runs[0].start_time.tzinfo is None


@pytest.mark.asyncio
async def test_listed_runs_point_at_the_directory_they_were_found_in(tmp_path):
    original = tmp_path / "Library_1_20240101_090000"
    original.mkdir()
    record = ProgressRecord(1, "Minutes", str(original), 3, successful=[1, 2])
    assert await ProgressStore().save(record, original)
    moved = original.rename(tmp_path / "Library_1_20240101_090000_moved")

    runs = ProgressStore().list_all_incomplete_runs(tmp_path)

    assert [run.download_path for run in runs] == [str(moved)]
    assert runs[0].successful_count == 2

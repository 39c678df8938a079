import asyncio
import json

import pytest
from typer.testing import CliRunner

from library_dl import __main__ as entry_point
from library_dl import __version__
from library_dl.cli import app as cli_app
from library_dl.exceptions import ConfigurationError
from library_dl.models.progress import ProgressRecord
from library_dl.storage.progress_store import ProgressStore
from library_dl.utils.path import create_run_dir

runner = CliRunner()


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    monkeypatch.setattr(cli_app, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(cli_app, "CONFIG_FILE", config_dir / "config.ini")
    return config_dir


@pytest.fixture
def library(store):
    store.library(1, "Legal")
    store.library(2, "HR")
    store.folder(10, 1)
    store.file(100, blob=b"first")
    store.file(101, blob=b"second")
    store.document(1, 10, 100, "one.txt")
    store.document(2, 10, 101, "two.txt", path="Sub")
    return store


@pytest.fixture
def configured(config_dir, store_url, library, tmp_path):
    result = runner.invoke(
        cli_app.app,
        ["init", store_url, "--download-path", str(tmp_path / "out"), "--force"],
    )
    assert result.exit_code == 0, result.output
    return tmp_path / "out"


def test_version():
    result = runner.invoke(cli_app.app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_config_and_checks_connection(configured, config_dir):
    text = (config_dir / "config.ini").read_text(encoding="utf-8")

    assert "connection_url = sqlite:///" in text
    assert "max_workers = 4" in text


def test_commands_without_config_fail(config_dir):
    result = runner.invoke(cli_app.app, ["libraries"])

    assert result.exit_code == 1
    assert "init" in result.output


def test_libraries_lists_names(configured):
    result = runner.invoke(cli_app.app, ["libraries"])

    assert result.exit_code == 0, result.output
    assert "Legal" in result.output
    assert "HR" in result.output


def test_info_for_unknown_library_fails(configured):
    result = runner.invoke(cli_app.app, ["info", "99"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_download_writes_documents_and_history(configured, config_dir):
    result = runner.invoke(cli_app.app, ["download", "1", "--yes", "--workers", "2"])

    assert result.exit_code == 0, result.output
    run_dirs = list(configured.glob("Library_1_*"))
    assert len(run_dirs) == 1
    assert (run_dirs[0] / "one.txt").read_bytes() == b"first"
    assert (run_dirs[0] / "Sub" / "two.txt").read_bytes() == b"second"

    history = (config_dir / "session_history.jsonl").read_text(encoding="utf-8")
    entry = json.loads(history.splitlines()[-1])
    assert entry["library_id"] == 1
    assert entry["status"] == "completed"
    assert entry["documents_downloaded"] == 2
    assert entry["bytes_written"] == len(b"first") + len(b"second")
    assert "Total Size" in result.output


def test_download_can_be_declined(configured):
    result = runner.invoke(cli_app.app, ["download", "1"], input="n\n")

    assert result.exit_code == 0
    assert "cancelled" in result.output
    assert not list(configured.glob("Library_1_*"))


def test_download_rejects_out_of_range_workers(configured):
    result = runner.invoke(cli_app.app, ["download", "1", "--workers", "11"])

    assert result.exit_code != 0


def test_download_of_unknown_library_fails(configured):
    result = runner.invoke(cli_app.app, ["download", "42", "--yes"])

    assert result.exit_code == 1


def test_runs_and_resume(configured):
    empty = runner.invoke(cli_app.app, ["runs"])
    assert "No incomplete downloads" in empty.output

    run_dir = create_run_dir(configured, 1)
    record = ProgressRecord(1, "Legal", str(run_dir), 2, successful=[1])
    assert asyncio.run(ProgressStore().save(record, run_dir))

    listed = runner.invoke(cli_app.app, ["runs"])
    assert listed.exit_code == 0, listed.output
    assert "Legal" in listed.output

    resumed = runner.invoke(cli_app.app, ["resume", "1", "--yes"])
    assert resumed.exit_code == 0, resumed.output
    assert not (run_dir / "one.txt").exists()
    assert (run_dir / "Sub" / "two.txt").read_bytes() == b"second"

    after = runner.invoke(cli_app.app, ["runs"])
    assert "No incomplete downloads" in after.output


def test_validate_and_diagnose(configured):
    validated = runner.invoke(cli_app.app, ["validate"])
    assert validated.exit_code == 0, validated.output
    assert "Validated Settings" in validated.output

    diagnosed = runner.invoke(cli_app.app, ["diagnose"])
    assert diagnosed.exit_code == 0, diagnosed.output
    assert "All checks passed" in diagnosed.output


@pytest.mark.parametrize(
    "error, exit_code, expected",
    [
        (ConfigurationError("no connection url"), 1, "no connection url"),
        (RuntimeError("boom"), 1, "Unexpected"),
        (KeyboardInterrupt(), 0, "interrupted"),
    ],
)
def test_entry_point_reports_escaped_errors(
    monkeypatch, capsys, error, exit_code, expected
):
    def failing_app():
        raise error

    monkeypatch.setattr(entry_point, "app", failing_app)

    with pytest.raises(SystemExit) as exc_info:
        entry_point.main()

    assert exc_info.value.code == exit_code
    assert expected in capsys.readouterr().out

"""End-to-end tests for the command line interface."""
import logging

import psutil
import pytest
import typer
from typer.testing import CliRunner

from reprieve import config as config_module
from reprieve import main
from reprieve.config import __version__
from reprieve.main import app, parse_ranges
from reprieve.reaper.store import TrashStore
from reprieve.utils.safe_console import SafeConsole

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Private home trash, no foreign volumes, and a wide console."""
    trash = tmp_path / "trash"
    monkeypatch.setenv("REPRIEVE_HOME_TRASH", str(trash))
    monkeypatch.delenv("REPRIEVE_CROSS_DEVICE", raising=False)
    monkeypatch.delenv("REPRIEVE_MAX_NAME_ATTEMPTS", raising=False)
    monkeypatch.delenv("REPRIEVE_LOG_LEVEL", raising=False)
    monkeypatch.setattr(psutil, "disk_partitions", lambda all=False: [])
    monkeypatch.setattr(config_module, "_config", None)
    monkeypatch.setattr(main, "console", SafeConsole(width=500))
    monkeypatch.setattr(main, "err_console", SafeConsole(stderr=True, width=500))
    yield trash
    logger = logging.getLogger("reprieve")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True


@pytest.fixture
def files(tmp_path):
    work = tmp_path / "work"
    work.mkdir()
    for name, content in (("notes.txt", "notes"), ("debug.log", "log line")):
        (work / name).write_text(content)
    return work


def test_put_list_restore(files):
    notes = files / "notes.txt"

    result = runner.invoke(app, ["put", str(notes)])
    assert result.exit_code == 0, result.output
    assert not notes.exists()

    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0, result.output
    assert str(notes) in result.output

    result = runner.invoke(app, ["restore", "1"])
    assert result.exit_code == 0, result.output
    assert notes.read_text() == "notes"


def test_put_reports_failures_and_continues(files):
    result = runner.invoke(app, ["put", str(files / "missing.txt"), str(files / "notes.txt")])

    assert result.exit_code == 1
    assert "missing.txt" in result.output
    assert not (files / "notes.txt").exists()


def test_list_of_empty_trash():
    result = runner.invoke(app, ["list"])

    assert result.exit_code == 0
    assert "Trash is empty." in result.output


def test_list_filters_by_glob(files):
    runner.invoke(app, ["put", str(files / "notes.txt"), str(files / "debug.log")])

    result = runner.invoke(app, ["list", "--glob", "*.log", "--size"])

    assert result.exit_code == 0, result.output
    assert "debug.log" in result.output
    assert "notes.txt" not in result.output
    assert "8 B" in result.output

    result = runner.invoke(app, ["list", "--glob", "*.png"])
    assert "No matching items." in result.output


def test_list_size_of_vanished_item_is_unknown(files, monkeypatch):
    runner.invoke(app, ["put", str(files / "notes.txt")])

    def vanished(self, item):
        raise FileNotFoundError(item.payload_location)

    monkeypatch.setattr(TrashStore, "payload_size", vanished)

    result = runner.invoke(app, ["list", "--size"])

    assert result.exit_code == 0, result.output
    assert "notes.txt" in result.output
    assert "?" in result.output


def test_list_rejects_bad_duration(files):
    result = runner.invoke(app, ["list", "--older-than", "soon"])

    assert result.exit_code != 0


def test_restore_by_filter(files):
    runner.invoke(app, ["put", str(files / "notes.txt"), str(files / "debug.log")])

    result = runner.invoke(app, ["restore", "--glob", "*.log"])

    assert result.exit_code == 0, result.output
    assert (files / "debug.log").exists()
    assert not (files / "notes.txt").exists()


def test_restore_needs_a_selection(files):
    runner.invoke(app, ["put", str(files / "notes.txt")])

    result = runner.invoke(app, ["restore"])

    assert result.exit_code == 1
    assert not (files / "notes.txt").exists()


def test_restore_to_other_path(files, tmp_path):
    runner.invoke(app, ["put", str(files / "notes.txt")])
    target = tmp_path / "elsewhere" / "copy.txt"

    result = runner.invoke(app, ["restore", "1", "--to", str(target)])

    assert result.exit_code == 0, result.output
    assert target.read_text() == "notes"


def test_restore_to_requires_single_item(files, tmp_path):
    runner.invoke(app, ["put", str(files / "notes.txt"), str(files / "debug.log")])

    result = runner.invoke(app, ["restore", "1-2", "--to", str(tmp_path / "x")])

    assert result.exit_code == 1
    assert not (tmp_path / "x").exists()


def test_restore_out_of_range_index(files):
    runner.invoke(app, ["put", str(files / "notes.txt")])

    result = runner.invoke(app, ["restore", "2"])

    assert result.exit_code == 1
    assert not (files / "notes.txt").exists()


def test_restore_refuses_to_overwrite(files):
    notes = files / "notes.txt"
    runner.invoke(app, ["put", str(notes)])
    notes.write_text("replacement")

    result = runner.invoke(app, ["restore", "1"])

    assert result.exit_code == 1
    assert notes.read_text() == "replacement"


def test_empty_requires_all_or_filter(files):
    runner.invoke(app, ["put", str(files / "notes.txt")])

    result = runner.invoke(app, ["empty"])

    assert result.exit_code == 1
    assert "notes.txt" in runner.invoke(app, ["list"]).output


def test_empty_all_can_be_declined(files):
    runner.invoke(app, ["put", str(files / "notes.txt")])

    result = runner.invoke(app, ["empty", "--all"], input="n\n")

    assert result.exit_code == 1
    assert "notes.txt" in runner.invoke(app, ["list"]).output


def test_empty_all_with_confirmation(files):
    runner.invoke(app, ["put", str(files / "notes.txt"), str(files / "debug.log")])

    result = runner.invoke(app, ["empty", "--all"], input="y\n")

    assert result.exit_code == 0, result.output
    assert "Purged 2 item(s)" in result.output
    assert "Trash is empty." in runner.invoke(app, ["list"]).output


def test_empty_by_filter(files):
    runner.invoke(app, ["put", str(files / "notes.txt"), str(files / "debug.log")])

    result = runner.invoke(app, ["empty", "--glob", "*.log", "--yes"])

    assert result.exit_code == 0, result.output
    assert "Purged 1 item(s)" in result.output
    listing = runner.invoke(app, ["list"]).output
    assert "notes.txt" in listing
    assert "debug.log" not in listing


def test_empty_all_rejects_filters(files):
    result = runner.invoke(app, ["empty", "--all", "--glob", "*.log", "--yes"])

    assert result.exit_code == 1


def test_invalid_configuration_is_reported(files, monkeypatch):
    monkeypatch.setenv("REPRIEVE_CROSS_DEVICE", "teleport")

    result = runner.invoke(app, ["put", str(files / "notes.txt")])

    assert result.exit_code == 1
    assert "REPRIEVE_CROSS_DEVICE" in result.output
    assert (files / "notes.txt").exists()


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.parametrize("specs,expected", [
    (["1"], [1]),
    (["3-5"], [3, 4, 5]),
    (["2,7", "1"], [2, 7, 1]),
    (["1-2", "2-3"], [1, 2, 3]),
])
def test_parse_ranges(specs, expected):
    assert parse_ranges(specs) == expected


@pytest.mark.parametrize("spec", ["0", "a", "5-3", "1-", ""])
def test_parse_ranges_rejects_garbage(spec):
    with pytest.raises(typer.BadParameter):
        parse_ranges([spec])

"""Tests for translating filesystem failures into trash errors."""
import errno
import os
from datetime import datetime
from pathlib import Path

import pytest

from reprieve.reaper.errors import (
    MoveFailedError,
    NotFoundError,
    PermissionDeniedError,
    translate_os_error,
)
from reprieve.reaper.store import TrashStore


@pytest.mark.parametrize("code,expected", [
    (errno.ENOENT, NotFoundError),
    (errno.EACCES, PermissionDeniedError),
    (errno.EPERM, PermissionDeniedError),
    (errno.EROFS, PermissionDeniedError),
    (errno.ENOSPC, MoveFailedError),
    (errno.EIO, MoveFailedError),
    (errno.ENAMETOOLONG, MoveFailedError),
])
def test_errno_mapping(code, expected):
    error = translate_os_error(OSError(code, os.strerror(code)), "/data/report.txt", "move to trash")

    assert type(error) is expected
    assert error.path == Path("/data/report.txt")
    assert os.strerror(code) in str(error)
    assert "move to trash" in str(error)


def test_error_without_errno_is_a_move_failure():
    error = translate_os_error(OSError("weird"), Path("/x"), "restore")

    assert isinstance(error, MoveFailedError)
    assert "weird" in str(error)


def raise_errno(code):
    def fail(*args, **kwargs):
        raise OSError(code, os.strerror(code))
    return fail


def test_denied_rename_into_store_rolls_back(tmp_path, data_dir, monkeypatch):
    store = TrashStore(tmp_path / "Trash")
    store.ensure()
    source = data_dir / "report.txt"
    source.write_text("abc")
    reservation = store.reserve("report.txt")
    monkeypatch.setattr(os, "rename", raise_errno(errno.EACCES))

    with pytest.raises(PermissionDeniedError) as exc_info:
        store.commit(reservation, source, source, datetime(2024, 5, 1, 12, 0, 0))

    assert isinstance(exc_info.value.__cause__, OSError)
    assert exc_info.value.__cause__.errno == errno.EACCES
    assert exc_info.value.path == source
    assert not reservation.info_path.exists()
    assert source.read_text() == "abc"


def test_denied_put_leaves_source_in_place(engine, data_dir, monkeypatch):
    source = data_dir / "report.txt"
    source.write_text("abc")
    monkeypatch.setattr(os, "rename", raise_errno(errno.EPERM))

    with pytest.raises(PermissionDeniedError):
        engine.put(source)

    monkeypatch.undo()
    assert source.read_text() == "abc"
    assert list(engine.list()) == []


def test_denied_restore_keeps_item_trashed(engine, data_dir, monkeypatch):
    source = data_dir / "report.txt"
    source.write_text("abc")
    item = engine.put(source)
    monkeypatch.setattr(os, "link", raise_errno(errno.EACCES))

    with pytest.raises(PermissionDeniedError) as exc_info:
        engine.restore(item)

    assert exc_info.value.__cause__.errno == errno.EACCES
    monkeypatch.undo()
    assert not source.exists()
    assert list(engine.list()) == [item]

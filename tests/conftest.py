"""Shared fixtures: a private home trash and fake mount points under tmp_path."""
import os
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from reprieve.reaper.safe_delete import TrashContext, TrashEngine
from reprieve.reaper.volumes import VolumeResolver


class FakeMounts:
    """Stand-in for os.path.ismount plus the mount table.

    Only "/" and explicitly added directories count as mount points, so a
    test can pretend a subdirectory of tmp_path is a separate volume.
    """

    def __init__(self):
        self.mounts = {"/"}

    def add(self, path):
        os.makedirs(path, exist_ok=True)
        path = os.path.realpath(path)
        self.mounts.add(path)
        return Path(path)

    def __call__(self, path):
        return os.path.normpath(str(path)) in self.mounts

    def mount_points(self):
        # The real "/" is left out so a machine's own trash never leaks in
        return sorted(m for m in self.mounts if m != "/")


class FakeClock:
    """Deterministic, manually advanced clock."""

    def __init__(self, start=datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def mounts():
    return FakeMounts()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def home_trash(tmp_path):
    return tmp_path / "home" / ".local" / "share" / "Trash"


@pytest.fixture
def data_dir(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def resolver(home_trash, mounts):
    return VolumeResolver(home_trash, uid=1000, ismount=mounts, mount_points=mounts.mount_points)


@pytest.fixture
def context(resolver, clock):
    return TrashContext(resolver, clock=clock)


@pytest.fixture
def engine(context):
    return TrashEngine(context)

"""Volume resolution: which mounted filesystem a path lives on, and which
trash store belongs to that filesystem.

A payload must be trashed into a store on its own volume so the move is a
plain rename. Store roots follow the freedesktop.org layout:

- the home trash (``$XDG_DATA_HOME/Trash``) for the volume holding it
- ``<mount>/.Trash/<uid>`` when an administrator created a sticky ``.Trash``
- ``<mount>/.Trash-<uid>`` otherwise
"""
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import psutil

from .errors import UnresolvableVolumeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Volume:
    """A mounted filesystem."""

    mount_point: Path
    device: int


@dataclass(frozen=True)
class StoreLocation:
    """Root of a trash store and the mount point of the volume it serves."""

    root: Path
    mount_point: Path


def mount_points_from_psutil() -> List[str]:
    """List every mount point the kernel reports.

    Raises:
        UnresolvableVolumeError: If mount information cannot be read
    """
    try:
        return [partition.mountpoint for partition in psutil.disk_partitions(all=True)]
    except (OSError, psutil.Error) as e:
        raise UnresolvableVolumeError(f"Cannot read mount table: {e}") from e


def has_sticky_bit(path: Path) -> bool:
    """True when ``path`` is a real directory (not a symlink) with the sticky bit."""
    try:
        st = os.lstat(path)
    except OSError:
        return False
    return stat.S_ISDIR(st.st_mode) and bool(st.st_mode & stat.S_ISVTX)


class VolumeResolver:
    """Map paths to volumes and volumes to trash store roots.

    Resolved mappings are cached for the lifetime of the resolver; mount
    topology is not expected to change during one run.
    """

    def __init__(self, home_trash: str | Path, uid: Optional[int] = None,
                 ismount: Callable[[str], bool] = os.path.ismount,
                 mount_points: Optional[Callable[[], Iterable[str]]] = None):
        """Initialize resolver.

        Args:
            home_trash: Root of the user's home trash store
            uid: User id used in per-volume store names (default: current user)
            ismount: Predicate telling whether a directory is a mount point
            mount_points: Callable listing all mount points, used by listing
                (default: the kernel mount table via psutil)
        """
        self.home_trash = Path(os.path.abspath(home_trash))
        self.uid = os.getuid() if uid is None else uid
        self._ismount = ismount
        self._mount_points = mount_points if mount_points is not None else mount_points_from_psutil
        self._stores: Dict[Path, StoreLocation] = {}
        self._home_volume: Optional[Volume] = None

    def volume_of(self, path: str | Path) -> Volume:
        """Find the volume an existing path lives on.

        The path itself may be a symlink or a mount point, so the volume of
        its parent directory is what counts.

        Args:
            path: Path to resolve

        Returns:
            Volume containing the path

        Raises:
            UnresolvableVolumeError: If the path does not exist or cannot be stat-ed
        """
        path = Path(os.path.abspath(path))
        if not os.path.lexists(path):
            raise UnresolvableVolumeError(f"Path does not exist: {path}", path)

        parent = Path(os.path.realpath(path.parent))
        return self._volume_for_directory(parent)

    def store_for(self, path: str | Path) -> StoreLocation:
        """Trash store root to use for ``path``.

        Raises:
            UnresolvableVolumeError: If the path's volume cannot be determined
        """
        volume = self.volume_of(path)

        cached = self._stores.get(volume.mount_point)
        if cached is not None:
            return cached

        if volume.mount_point == self.home_volume().mount_point:
            location = StoreLocation(self.home_trash, volume.mount_point)
        else:
            location = StoreLocation(self._top_trash_root(volume.mount_point), volume.mount_point)

        logger.debug("Volume %s uses trash store %s", volume.mount_point, location.root)
        self._stores[volume.mount_point] = location
        return location

    def home_volume(self) -> Volume:
        """Volume holding the home trash (which may not exist yet)."""
        if self._home_volume is None:
            self._home_volume = self._volume_for_directory(Path(os.path.realpath(self.home_trash)))
        return self._home_volume

    def known_stores(self) -> List[StoreLocation]:
        """Every store root that currently exists, home trash first.

        Listing never creates stores, so only directories already on disk are
        returned. A shared ``.Trash`` without the sticky bit is ignored.
        """
        stores: List[StoreLocation] = []
        seen = set()

        def add(location: StoreLocation):
            key = os.path.realpath(location.root)
            if key in seen or not location.root.is_dir():
                return
            seen.add(key)
            stores.append(location)

        add(StoreLocation(self.home_trash, self.home_volume().mount_point))

        for mount in self._mount_points():
            mount_path = Path(mount)
            shared = mount_path / ".Trash"
            if has_sticky_bit(shared):
                add(StoreLocation(shared / str(self.uid), mount_path))
            elif (shared / str(self.uid)).is_dir():
                logger.warning("Ignoring %s: parent is not a sticky directory", shared / str(self.uid))
            add(StoreLocation(mount_path / f".Trash-{self.uid}", mount_path))

        return stores

    def _volume_for_directory(self, directory: Path) -> Volume:
        current = directory
        while not self._ismount(str(current)) and current.parent != current:
            current = current.parent

        try:
            device = os.stat(current).st_dev
        except OSError as e:
            raise UnresolvableVolumeError(f"Cannot stat mount point {current}: {e}", current) from e

        return Volume(mount_point=current, device=device)

    def _top_trash_root(self, mount_point: Path) -> Path:
        shared = mount_point / ".Trash"
        if has_sticky_bit(shared):
            return shared / str(self.uid)
        return mount_point / f".Trash-{self.uid}"

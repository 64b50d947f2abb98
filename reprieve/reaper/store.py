"""On-disk trash store: payloads under ``files/``, metadata under ``info/``.

Every primitive here is a single atomic filesystem step or a short sequence
ordered so that an interrupted process leaves self-describing state:

- ``reserve`` claims a name by exclusively creating an empty (pending) record
- ``commit`` renames the payload in, then replaces the pending record with the
  finished one in a single ``os.replace``
- ``delete`` renames the payload into ``expunged/`` before touching the
  record, so a half-deleted payload is never listed as restorable
"""
import logging
import os
import secrets
import shutil
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple

from .errors import (
    CorruptRecordError,
    MoveFailedError,
    NameTakenError,
    OrphanedMetadataError,
    OrphanedPayloadError,
    TrashError,
    translate_os_error,
)
from .trash_info import EXTENSION, TrashInfo

logger = logging.getLogger(__name__)

WarningCallback = Callable[[TrashError], None]


@dataclass(frozen=True)
class TrashedItem:
    """One committed entry of a trash store."""

    id: str
    original_path: Path
    deleted_at: datetime
    payload_location: Path
    info_path: Path
    store_root: Path


@dataclass(frozen=True)
class Reservation:
    """A claimed, still pending, entry name."""

    name: str
    info_path: Path


def remove_path(path: Path):
    """Delete a file, symlink, or directory tree."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def tree_size(path: Path) -> int:
    """Total size in bytes of a file or directory tree, symlinks not followed."""
    if not path.is_dir() or path.is_symlink():
        return os.lstat(path).st_size

    total = 0
    for dirpath, dirnames, filenames in os.walk(path):
        # os.walk lists symlinks to directories under dirnames without descending
        links = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
        for name in filenames + links:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except FileNotFoundError:
                continue
    return total


class TrashStore:
    """A single per-volume trash store."""

    def __init__(self, root: str | Path, mount_point: Optional[str | Path] = None):
        """Initialize store handle. Nothing is created on disk until ``ensure``.

        Args:
            root: Store root directory
            mount_point: Mount point of the volume the store serves; relative
                paths in records written by other tools are resolved against it
        """
        self.root = Path(root)
        self.mount_point = Path(mount_point) if mount_point is not None else None
        self.files_dir = self.root / "files"
        self.info_dir = self.root / "info"
        self.expunged_dir = self.root / "expunged"

    def __repr__(self):
        return f"TrashStore({str(self.root)!r})"

    def ensure(self):
        """Create the store directories (mode 0700) if missing."""
        for directory in (self.root, self.files_dir, self.info_dir):
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)

    def payload_path_for(self, name: str) -> Path:
        return self.files_dir / name

    def info_path_for(self, name: str) -> Path:
        return self.info_dir / f"{name}{EXTENSION}"

    def name_in_use(self, name: str) -> bool:
        """True if either a payload or a record already uses ``name``."""
        return (os.path.lexists(self.payload_path_for(name))
                or os.path.lexists(self.info_path_for(name)))

    def reserve(self, name: str) -> Reservation:
        """Claim ``name`` by exclusively creating its (empty) record.

        Args:
            name: Entry name to claim

        Returns:
            Reservation handle for ``commit`` or ``abort``

        Raises:
            NameTakenError: If the record already exists or a stray payload
                occupies the name
            OSError: On any other filesystem failure
        """
        info_path = self.info_path_for(name)
        try:
            fd = os.open(info_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError as e:
            raise NameTakenError(f"Trash entry name already taken: {name}", info_path) from e
        os.close(fd)

        reservation = Reservation(name=name, info_path=info_path)

        # An orphaned payload without a record must not be overwritten
        if os.path.lexists(self.payload_path_for(name)):
            self.abort(reservation)
            raise NameTakenError(f"Stray payload occupies trash entry name: {name}",
                                 self.payload_path_for(name))

        logger.debug("Reserved %s", info_path)
        return reservation

    def abort(self, reservation: Reservation):
        """Drop a reservation that will not be committed."""
        try:
            reservation.info_path.unlink()
        except FileNotFoundError:
            pass
        logger.debug("Released reservation %s", reservation.info_path)

    def commit(self, reservation: Reservation, source_path: str | Path,
               original_path: str | Path, timestamp: datetime) -> TrashedItem:
        """Move ``source_path`` into the store and finalize its record.

        Args:
            reservation: Handle returned by ``reserve``
            source_path: Path to move (must be on this store's volume)
            original_path: Absolute path recorded for restoring
            timestamp: Deletion time recorded in the record

        Returns:
            The committed TrashedItem

        Raises:
            NotFoundError, PermissionDeniedError, MoveFailedError: If the payload
                could not be moved in (reservation rolled back) or the record
                could not be written (payload moved back first)
        """
        payload = self.payload_path_for(reservation.name)

        try:
            os.rename(source_path, payload)
        except OSError as e:
            self.abort(reservation)
            raise translate_os_error(e, source_path, "move to trash") from e

        logger.debug("Moved %s -> %s", source_path, payload)

        info = TrashInfo(original_path=Path(original_path), deleted_at=timestamp)
        try:
            self._write_record(reservation.info_path, info.to_text())
        except OSError as e:
            self._undo_payload_move(payload, Path(source_path))
            self.abort(reservation)
            raise MoveFailedError(f"Cannot write trash info {reservation.info_path}: {e}",
                                  reservation.info_path) from e

        return TrashedItem(
            id=reservation.name,
            original_path=Path(original_path),
            deleted_at=timestamp,
            payload_location=payload,
            info_path=reservation.info_path,
            store_root=self.root,
        )

    def list(self, on_warning: Optional[WarningCallback] = None) -> Iterator[TrashedItem]:
        """Lazily yield every committed, restorable item.

        Pending reservations, unparsable records, records without a payload and
        payloads without a record are skipped and reported through the logger
        and ``on_warning``. Entries that vanish mid-scan are silently skipped.
        Each call starts a fresh scan.
        """
        try:
            entries = os.scandir(self.info_dir)
        except FileNotFoundError:
            return
        except OSError as e:
            self._warn(translate_os_error(e, self.info_dir, "scan"), on_warning)
            return

        with entries:
            for entry in entries:
                if not entry.name.endswith(EXTENSION):
                    continue
                item = self._load(entry.name[:-len(EXTENSION)], on_warning)
                if item is not None:
                    yield item

        self._report_orphaned_payloads(on_warning)

    def release(self, item: TrashedItem) -> Tuple[Path, Path]:
        """On-disk (payload, record) locations of ``item``."""
        return item.payload_location, item.info_path

    def delete(self, item: TrashedItem):
        """Permanently remove an item's payload and record.

        Raises:
            OSError: If the payload cannot be moved out or the record removed
        """
        payload, info_path = self.release(item)

        self.expunged_dir.mkdir(mode=0o700, exist_ok=True)
        doomed = self.expunged_dir / secrets.token_hex(8)
        try:
            os.rename(payload, doomed)
        except FileNotFoundError:
            doomed = None

        try:
            info_path.unlink()
        except FileNotFoundError:
            pass

        if doomed is not None:
            remove_path(doomed)
        logger.debug("Deleted %s", item.id)

    def payload_size(self, item: TrashedItem) -> int:
        """Byte size of an item's payload (recursive for directories)."""
        return tree_size(item.payload_location)

    def sweep_expunged(self) -> int:
        """Finish deletions a previous process was interrupted in.

        Returns:
            Number of leftovers removed
        """
        removed = 0
        try:
            entries = list(self.expunged_dir.iterdir())
        except FileNotFoundError:
            return 0
        for leftover in entries:
            remove_path(leftover)
            removed += 1
        if removed:
            logger.info("Swept %d interrupted deletion(s) in %s", removed, self.root)
        return removed

    def clear_orphans(self, grace_seconds: float = 3600.0) -> int:
        """Remove orphaned payloads and records older than ``grace_seconds``.

        The grace period keeps in-flight puts of concurrent processes (which
        look orphaned for an instant) out of reach.

        Returns:
            Number of orphaned entries removed
        """
        cutoff = time.time() - grace_seconds
        removed = 0

        for info_path in self._iter_dir(self.info_dir):
            if not info_path.name.endswith(EXTENSION):
                continue
            name = info_path.name[:-len(EXTENSION)]
            payload = self.payload_path_for(name)
            empty = self._is_empty(info_path)
            if os.path.lexists(payload) and not empty:
                continue
            if not self._older_than(info_path, cutoff):
                continue
            if os.path.lexists(payload):
                remove_path(payload)
            info_path.unlink(missing_ok=True)
            removed += 1

        for payload in self._iter_dir(self.files_dir):
            if os.path.lexists(self.info_path_for(payload.name)):
                continue
            if self._older_than(payload, cutoff):
                remove_path(payload)
                removed += 1

        return removed

    def _load(self, name: str, on_warning: Optional[WarningCallback]) -> Optional[TrashedItem]:
        info_path = self.info_path_for(name)
        payload = self.payload_path_for(name)

        try:
            text = info_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            self._warn(CorruptRecordError(f"Trash info {info_path} is not UTF-8", info_path), on_warning)
            return None
        except OSError as e:
            self._warn(translate_os_error(e, info_path, "read"), on_warning)
            return None

        if not text.strip():
            if os.path.lexists(payload):
                self._warn(OrphanedPayloadError(
                    f"Payload {payload} has no committed trash info (interrupted put)", payload), on_warning)
            else:
                self._warn(OrphanedMetadataError(
                    f"Pending trash info {info_path} was never committed", info_path), on_warning)
            return None

        try:
            info = TrashInfo.from_text(text, volume_root=self.mount_point, source=info_path)
        except CorruptRecordError as e:
            self._warn(e, on_warning)
            return None

        if not os.path.lexists(payload):
            # Vanished between the scan and now, or left behind by a crash
            if os.path.lexists(info_path):
                self._warn(OrphanedMetadataError(
                    f"Trash info {info_path} has no payload", info_path), on_warning)
            return None

        return TrashedItem(
            id=name,
            original_path=info.original_path,
            deleted_at=info.deleted_at,
            payload_location=payload,
            info_path=info_path,
            store_root=self.root,
        )

    def _report_orphaned_payloads(self, on_warning: Optional[WarningCallback]):
        for payload in self._iter_dir(self.files_dir):
            if not os.path.lexists(self.info_path_for(payload.name)) and os.path.lexists(payload):
                self._warn(OrphanedPayloadError(
                    f"Payload {payload} has no trash info", payload), on_warning)

    def _write_record(self, info_path: Path, text: str):
        # Fixed-length hidden temp name: ignored by list(), and never longer than
        # NAME_MAX however long the entry name is
        temp_path = info_path.with_name(f".{secrets.token_hex(8)}.tmp")
        try:
            with open(temp_path, "x", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, info_path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    def _undo_payload_move(self, payload: Path, source_path: Path):
        try:
            os.rename(payload, source_path)
        except OSError as e:
            logger.error("Could not move %s back to %s: %s", payload, source_path, e)

    @staticmethod
    def _warn(error: TrashError, on_warning: Optional[WarningCallback]):
        logger.warning("%s", error)
        if on_warning is not None:
            on_warning(error)

    @staticmethod
    def _iter_dir(directory: Path) -> Iterator[Path]:
        try:
            entries = list(directory.iterdir())
        except FileNotFoundError:
            return
        yield from entries

    @staticmethod
    def _is_empty(path: Path) -> bool:
        try:
            return os.lstat(path).st_size == 0
        except FileNotFoundError:
            return False

    @staticmethod
    def _older_than(path: Path, cutoff: float) -> bool:
        # A rename keeps mtime but bumps ctime
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            return False
        return max(st.st_mtime, st.st_ctime) < cutoff

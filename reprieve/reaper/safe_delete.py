"""Trash engine: put, list, restore and purge across per-volume trash stores."""
import errno
import logging
import os
import secrets
import shutil
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt

from .errors import (
    CrossDeviceRefusedError,
    DestinationExistsError,
    MoveFailedError,
    NameExhaustedError,
    NameTakenError,
    NotFoundError,
    PurgeNotConfirmedError,
    TrashError,
    translate_os_error,
)
from .filters import SortOrder, TrashFilter
from .namer import EntryNamer
from .store import TrashedItem, TrashStore, WarningCallback, remove_path, tree_size
from .volumes import VolumeResolver

logger = logging.getLogger(__name__)

DEFAULT_MAX_NAME_ATTEMPTS = 100


class CrossDevicePolicy(str, Enum):
    """What restore does when the destination is on another volume."""

    COPY = "copy"
    REFUSE = "refuse"


class TrashContext:
    """Process state shared by engine operations.

    Holds the volume resolver (and its volume -> store cache) plus engine
    settings. Built explicitly and handed to :class:`TrashEngine`, so several
    independent engines can live in one process.
    """

    def __init__(self, resolver: VolumeResolver, namer: Optional[EntryNamer] = None,
                 cross_device: CrossDevicePolicy = CrossDevicePolicy.COPY,
                 max_name_attempts: int = DEFAULT_MAX_NAME_ATTEMPTS,
                 clock: Callable[[], datetime] = datetime.now):
        """Initialize context.

        Args:
            resolver: Maps paths to their volume's trash store
            namer: Entry name generator (default: EntryNamer())
            cross_device: Policy for restores crossing volumes
            max_name_attempts: Naming collisions tolerated before giving up
            clock: Source of deletion timestamps
        """
        if max_name_attempts < 1:
            raise ValueError("max_name_attempts must be at least 1")
        self.resolver = resolver
        self.namer = namer or EntryNamer()
        self.cross_device = CrossDevicePolicy(cross_device)
        self.max_name_attempts = max_name_attempts
        self.clock = clock
        self._stores: Dict[Path, TrashStore] = {}

    @classmethod
    def from_config(cls, config) -> "TrashContext":
        """Build a context from a :class:`reprieve.config.Config`."""
        return cls(
            resolver=VolumeResolver(config.home_trash),
            cross_device=CrossDevicePolicy(config.cross_device_policy),
            max_name_attempts=config.max_name_attempts,
        )

    def store_for(self, path: str | Path) -> TrashStore:
        """Trash store on the same volume as ``path``."""
        location = self.resolver.store_for(path)
        return self._store(location.root, location.mount_point)

    def store_of(self, item: TrashedItem) -> TrashStore:
        """Trash store an item was listed from."""
        return self._stores.get(item.store_root) or self._store(item.store_root, None)

    def known_stores(self) -> List[TrashStore]:
        """Every existing store on every mounted volume."""
        return [self._store(location.root, location.mount_point)
                for location in self.resolver.known_stores()]

    def _store(self, root: Path, mount_point: Optional[Path]) -> TrashStore:
        store = self._stores.get(root)
        if store is None:
            store = TrashStore(root, mount_point)
            self._stores[root] = store
        return store


class TrashEngine:
    """Move files to trash instead of deleting them, and bring them back.

    The engine never prompts or prints; failures are raised as
    :class:`reprieve.reaper.errors.TrashError` subclasses.
    """

    def __init__(self, context: TrashContext):
        self.context = context

    def put(self, path: str | Path) -> TrashedItem:
        """Move a file or directory into its volume's trash store.

        Args:
            path: File, directory or symlink to trash (symlinks are not followed)

        Returns:
            The new TrashedItem

        Raises:
            NotFoundError: If the path does not exist
            PermissionDeniedError: If the path or the store is not writable
            MoveFailedError: If the rename fails or the path may not be trashed
            NameExhaustedError: If no free entry name was found
            UnresolvableVolumeError: If the path's volume cannot be determined
        """
        original = Path(os.path.abspath(path))

        if not os.path.lexists(original):
            raise NotFoundError(f"File not found: {original}", original)

        store = self.context.store_for(original)
        self._refuse_unsafe(path, original, store)

        try:
            store.ensure()
        except OSError as e:
            raise translate_os_error(e, store.root, "create trash store") from e

        reservation = self._reserve(store, original.name)
        deleted_at = self.context.clock().replace(microsecond=0)
        item = store.commit(reservation, original, original, deleted_at)

        logger.info("Trashed %s as %s in %s", original, item.id, store.root)
        return item

    def put_many(self, paths: Iterable[str | Path]) -> Iterator[Tuple[Path, Union[TrashedItem, TrashError]]]:
        """Trash several paths, yielding ``(path, item_or_error)`` per path.

        Unlike ``put``, one failure does not stop the rest.
        """
        for path in paths:
            try:
                yield Path(path), self.put(path)
            except TrashError as e:
                yield Path(path), e

    def list(self, trash_filter: Optional[TrashFilter] = None,
             order: SortOrder = SortOrder.NEWEST_FIRST,
             on_warning: Optional[WarningCallback] = None) -> Iterator[TrashedItem]:
        """Yield trashed items from every existing store.

        Args:
            trash_filter: Optional selection criteria
            order: Sort order; ``SortOrder.NONE`` streams without buffering
            on_warning: Called with each skipped entry's error (corrupt,
                pending, or orphaned records)

        Yields:
            Matching TrashedItems
        """
        items = self._matching(trash_filter, on_warning)

        if order == SortOrder.NONE:
            yield from items
        elif order == SortOrder.PATH:
            yield from sorted(items, key=lambda item: (str(item.original_path), item.deleted_at))
        else:
            yield from sorted(items, key=lambda item: (item.deleted_at, str(item.original_path)),
                              reverse=order == SortOrder.NEWEST_FIRST)

    def restore(self, item: TrashedItem, destination: Optional[str | Path] = None) -> Path:
        """Move a trashed item back to its original (or another) location.

        Never overwrites: an existing destination aborts before anything is
        touched. Files and symlinks are moved with a hard link plus unlink, so
        a destination created by another process after that check still wins.
        Directories are renamed; there a destination appearing between the
        check and the rename is only caught if it is non-empty. Metadata is
        removed only once the payload is in place, and on failure the parent
        directories this call created are removed again.

        Args:
            item: Item from ``list``
            destination: Where to restore (default: the item's original path)

        Returns:
            Path the item was restored to

        Raises:
            DestinationExistsError: If something already exists at the destination
            NotFoundError: If the payload is no longer in the trash
            CrossDeviceRefusedError: If copying across volumes is disallowed
            MoveFailedError, PermissionDeniedError: If the move fails
        """
        target = Path(os.path.abspath(destination if destination is not None else item.original_path))
        store = self.context.store_of(item)
        payload, info_path = store.release(item)

        if os.path.lexists(target):
            raise DestinationExistsError(f"Refusing to overwrite existing {target}", target)
        if not os.path.lexists(payload):
            raise NotFoundError(f"{item.id} is no longer in the trash", payload)

        same_device = self._same_device(payload, self._nearest_existing(target.parent))
        if not same_device:
            self._check_cross_device(target)

        created = self._make_parents(target.parent)
        try:
            if not same_device:
                self._copy_across_devices(store, item, target)
                return target
            try:
                self._move_into_place(payload, target)
            except FileExistsError as e:
                raise DestinationExistsError(f"Refusing to overwrite existing {target}", target) from e
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise translate_os_error(e, payload, "restore") from e
                # Same st_dev but different mounts (e.g. bind mounts)
                self._copy_across_devices(store, item, target)
                return target
        except TrashError:
            self._remove_created(created)
            raise

        try:
            info_path.unlink(missing_ok=True)
        except OSError as e:
            raise translate_os_error(e, info_path, "remove trash info") from e

        logger.info("Restored %s to %s", item.id, target)
        return target

    def purge(self, selector=None, confirmed: bool = False) -> int:
        """Permanently delete trashed items.

        Args:
            selector: A TrashedItem, an iterable of TrashedItems, a TrashFilter,
                or None for everything
            confirmed: Must be True to purge everything (``None`` selector or
                an empty filter)

        Returns:
            Number of items purged

        Raises:
            PurgeNotConfirmedError: If everything was selected without confirmation
            PermissionDeniedError, MoveFailedError: If a deletion fails
        """
        purge_all = selector is None or (isinstance(selector, TrashFilter) and selector.is_empty())

        if purge_all and not confirmed:
            raise PurgeNotConfirmedError("Emptying the whole trash requires confirmation")

        if isinstance(selector, TrashedItem):
            items: List[TrashedItem] = [selector]
        elif selector is None or isinstance(selector, TrashFilter):
            # Materialize before deleting so the scan does not see its own deletions
            items = list(self.list(selector, order=SortOrder.NONE))
        else:
            items = list(selector)

        count = 0
        for item in items:
            store = self.context.store_of(item)
            try:
                store.delete(item)
            except OSError as e:
                raise translate_os_error(e, item.payload_location, "purge") from e
            logger.info("Purged %s (%s)", item.id, item.original_path)
            count += 1

        if purge_all:
            for store in self.context.known_stores():
                try:
                    store.sweep_expunged()
                    store.clear_orphans()
                except OSError as e:
                    raise translate_os_error(e, store.root, "clean up") from e

        return count

    def _matching(self, trash_filter: Optional[TrashFilter],
                  on_warning: Optional[WarningCallback]) -> Iterator[TrashedItem]:
        now = self.context.clock()
        for store in self.context.known_stores():
            for item in store.list(on_warning):
                if trash_filter is None or trash_filter.matches(item, now, size_of=store.payload_size):
                    yield item

    def _reserve(self, store: TrashStore, basename: str):
        candidates = self.context.namer.candidates(store, basename, self.context.max_name_attempts)

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.context.max_name_attempts),
                retry=retry_if_exception_type(NameTakenError),
                reraise=False,
            ):
                with attempt:
                    name = next(candidates, None)
                    if name is None:
                        raise NameExhaustedError(
                            f"No free trash entry name for {basename!r} in {store.root}", store.root)
                    try:
                        return store.reserve(name)
                    except NameTakenError:
                        logger.debug("Lost race for entry name %s, trying next", name)
                        raise
                    except OSError as e:
                        raise translate_os_error(e, store.info_dir, "reserve entry in") from e
        except RetryError as e:
            raise NameExhaustedError(
                f"No free trash entry name for {basename!r} in {store.root}", store.root) from e

    def _copy_across_devices(self, store: TrashStore, item: TrashedItem, target: Path):
        """Restore by copy, verify, rename into place, then delete from trash.

        The copy lands in a hidden ``.partial`` sibling of the target first, so
        an interrupted restore leaves a recognisable partial copy and an
        untouched, still listable trash entry.
        """
        self._check_cross_device(target)

        payload = item.payload_location
        partial = target.with_name(f".reprieve-{secrets.token_hex(8)}.partial")

        try:
            if payload.is_dir() and not payload.is_symlink():
                shutil.copytree(payload, partial, symlinks=True)
            else:
                shutil.copy2(payload, partial, follow_symlinks=False)
        except OSError as e:
            self._discard(partial)
            raise translate_os_error(e, target, "copy to") from e

        expected, copied = tree_size(payload), tree_size(partial)
        if expected != copied:
            self._discard(partial)
            raise MoveFailedError(
                f"Copy of {item.id} to {target} is incomplete ({copied} of {expected} bytes)", target)

        if os.path.lexists(target):
            self._discard(partial)
            raise DestinationExistsError(f"Refusing to overwrite existing {target}", target)

        try:
            self._move_into_place(partial, target)
        except FileExistsError as e:
            self._discard(partial)
            raise DestinationExistsError(f"Refusing to overwrite existing {target}", target) from e
        except OSError as e:
            self._discard(partial)
            raise translate_os_error(e, target, "restore") from e

        try:
            store.delete(item)
        except OSError as e:
            raise translate_os_error(e, payload, "remove restored payload") from e

        logger.info("Restored %s to %s by copying across devices", item.id, target)

    def _check_cross_device(self, target: Path):
        if self.context.cross_device == CrossDevicePolicy.REFUSE:
            raise CrossDeviceRefusedError(
                f"{target} is on another volume than the trash; cross-device restore is disabled", target)

    @staticmethod
    def _move_into_place(source: Path, target: Path):
        """Move ``source`` to ``target`` without replacing anything at ``target``.

        Raises:
            FileExistsError: If ``target`` appeared in the meantime
            OSError: On any other failure (``EXDEV`` across mounts)
        """
        if source.is_dir() and not source.is_symlink():
            os.rename(source, target)
            return
        try:
            os.link(source, target, follow_symlinks=False)
        except FileExistsError:
            raise
        except OSError as e:
            # Filesystems without hard links (FAT, some network mounts)
            if e.errno not in (errno.EPERM, errno.EOPNOTSUPP, errno.EMLINK):
                raise
            os.rename(source, target)
            return
        os.unlink(source)

    @staticmethod
    def _nearest_existing(directory: Path) -> Path:
        while not os.path.lexists(directory) and directory.parent != directory:
            directory = directory.parent
        return directory

    @staticmethod
    def _make_parents(directory: Path) -> List[Path]:
        """Create ``directory`` and missing ancestors; return what was created, deepest last."""
        missing = []
        current = directory
        while not os.path.lexists(current) and current.parent != current:
            missing.append(current)
            current = current.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            TrashEngine._remove_created(list(reversed(missing)))
            raise translate_os_error(e, directory, "create directory") from e
        return list(reversed(missing))

    @staticmethod
    def _remove_created(created: List[Path]):
        for directory in reversed(created):
            try:
                directory.rmdir()
            except OSError:
                break

    @staticmethod
    def _discard(path: Path):
        if os.path.lexists(path):
            try:
                remove_path(path)
            except OSError as e:
                logger.error("Could not remove partial copy %s: %s", path, e)

    @staticmethod
    def _same_device(payload: Path, directory: Path) -> bool:
        try:
            return os.lstat(payload).st_dev == os.stat(directory).st_dev
        except OSError:
            return False

    @staticmethod
    def _refuse_unsafe(raw_path: str | Path, original: Path, store: TrashStore):
        name = os.path.basename(str(raw_path).rstrip("/"))
        if name in ("", ".", "..") or original == Path(original.anchor):
            raise MoveFailedError(f"Refusing to trash {raw_path}", original)

        store_root = Path(os.path.abspath(store.root))
        if original == store_root or original in store_root.parents:
            raise MoveFailedError(f"Refusing to trash {original}: it contains the trash store", original)
        if store_root in original.parents:
            raise MoveFailedError(f"{original} is already in the trash", original)

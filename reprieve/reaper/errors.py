"""Typed failures raised by the trash engine.

Every error carries the path it is about so the front end can render a useful
message without parsing strings.
"""
import errno
from pathlib import Path
from typing import Optional


class TrashError(Exception):
    """Base class for every trash engine failure."""

    def __init__(self, message: str, path: Optional[str | Path] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class NotFoundError(TrashError):
    """Source (or destination parent) does not exist."""


class PermissionDeniedError(TrashError):
    """The filesystem refused access."""


class UnresolvableVolumeError(TrashError):
    """Mount point for a path could not be determined."""


class NameTakenError(TrashError):
    """A metadata record with the requested name already exists."""


class NameExhaustedError(TrashError):
    """Every candidate name was taken within the attempt budget."""


class MoveFailedError(TrashError):
    """I/O failure while renaming or copying a payload."""


class CrossDeviceRefusedError(MoveFailedError):
    """Restore would cross devices and the policy forbids copying."""


class DestinationExistsError(TrashError):
    """Restore target already exists; nothing was touched."""


class CorruptRecordError(TrashError):
    """A metadata record could not be parsed."""


class OrphanedPayloadError(TrashError):
    """Payload found in the store without a committed metadata record."""


class OrphanedMetadataError(TrashError):
    """Metadata record found without its payload."""


class PurgeNotConfirmedError(TrashError):
    """Purging everything was requested without explicit confirmation."""


def translate_os_error(exc: OSError, path: str | Path, action: str) -> TrashError:
    """Map an OSError onto the engine's error taxonomy.

    Args:
        exc: Error raised by the filesystem
        path: Path the failing call was operating on
        action: Short verb phrase used in the message (e.g. 'move to trash')

    Returns:
        TrashError subclass instance (caller raises it ``from exc``)
    """
    reason = exc.strerror or str(exc)
    if exc.errno == errno.ENOENT:
        return NotFoundError(f"Cannot {action} {path}: {reason}", path)
    if exc.errno in (errno.EACCES, errno.EPERM, errno.EROFS):
        return PermissionDeniedError(f"Cannot {action} {path}: {reason}", path)
    return MoveFailedError(f"Cannot {action} {path}: {reason}", path)

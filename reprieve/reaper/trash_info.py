"""Trash info records: the sidecar metadata kept for every trashed payload.

The record is the freedesktop.org ``.trashinfo`` key-value format so that
other trash-aware tools (trash-cli, desktop file managers) can read what we
write and vice versa::

    [Trash Info]
    Path=/home/user/report%20final.txt
    DeletionDate=2024-05-01T12:34:56
"""
import configparser
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote_to_bytes

from .errors import CorruptRecordError

SECTION = "Trash Info"
EXTENSION = ".trashinfo"
DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def encode_path(path: str | Path) -> str:
    """Percent-encode a path for the ``Path=`` key.

    Works on the raw filesystem bytes so undecodable names survive a round trip.
    """
    return quote(os.fsencode(str(path)), safe="/")


def decode_path(value: str) -> str:
    """Reverse of :func:`encode_path`."""
    return os.fsdecode(unquote_to_bytes(value))


@dataclass(frozen=True)
class TrashInfo:
    """Parsed contents of one metadata record."""

    original_path: Path
    deleted_at: datetime

    def to_text(self) -> str:
        """Serialize to the on-disk record format.

        Returns:
            Record text, newline terminated
        """
        return (
            f"[{SECTION}]\n"
            f"Path={encode_path(self.original_path)}\n"
            f"DeletionDate={self.deleted_at.strftime(DATETIME_FORMAT)}\n"
        )

    @classmethod
    def from_text(cls, text: str, volume_root: Optional[Path] = None,
                  source: Optional[Path] = None) -> "TrashInfo":
        """Parse record text.

        Args:
            text: Raw record contents
            volume_root: Mount point used to absolutize relative ``Path`` values
                written by tools that store paths relative to the volume
            source: Record file the text came from (used in error messages)

        Returns:
            Parsed TrashInfo

        Raises:
            CorruptRecordError: If the section, a key, or the date is malformed
        """
        where = source if source is not None else "<record>"
        parser = configparser.ConfigParser(interpolation=None, delimiters=("=",))
        parser.optionxform = str

        try:
            parser.read_string(text)
        except configparser.Error as e:
            raise CorruptRecordError(f"Unparsable trash info {where}: {e}", source) from e

        if not parser.has_section(SECTION):
            raise CorruptRecordError(f"Missing [{SECTION}] section in {where}", source)

        section = parser[SECTION]
        raw_path = section.get("Path")
        raw_date = section.get("DeletionDate")

        if not raw_path:
            raise CorruptRecordError(f"Missing Path in {where}", source)
        if not raw_date:
            raise CorruptRecordError(f"Missing DeletionDate in {where}", source)

        try:
            deleted_at = datetime.strptime(raw_date.strip(), DATETIME_FORMAT)
        except ValueError as e:
            raise CorruptRecordError(f"Bad DeletionDate {raw_date!r} in {where}", source) from e

        original_path = Path(decode_path(raw_path.strip()))
        if not original_path.is_absolute():
            if volume_root is None:
                raise CorruptRecordError(f"Relative Path {raw_path!r} in {where}", source)
            original_path = Path(volume_root) / original_path

        return cls(original_path=original_path, deleted_at=deleted_at)

    @classmethod
    def from_file(cls, info_path: str | Path, volume_root: Optional[Path] = None) -> "TrashInfo":
        """Read and parse a record file.

        Raises:
            FileNotFoundError: If the record vanished (left to the caller to handle)
            CorruptRecordError: If the contents are malformed or not UTF-8
        """
        info_path = Path(info_path)
        try:
            text = info_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise CorruptRecordError(f"Trash info {info_path} is not UTF-8", info_path) from e
        return cls.from_text(text, volume_root=volume_root, source=info_path)

"""Selection of trashed items for listing, restoring and purging."""
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, List, Optional

from .store import TrashedItem

DURATION_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


class SortOrder(str, Enum):
    """Ordering of listed items."""

    NEWEST_FIRST = "newest"
    OLDEST_FIRST = "oldest"
    PATH = "path"
    NONE = "none"


def parse_duration(text: str) -> timedelta:
    """Parse durations like ``30d``, ``12h``, ``90m``, ``2w`` or bare days ``7``.

    Raises:
        ValueError: If the text is not a duration
    """
    match = re.fullmatch(r"\s*(\d+)\s*([smhdw]?)\s*", text)
    if not match:
        raise ValueError(f"Invalid duration: {text!r} (expected e.g. 30d, 12h, 90m)")
    amount, unit = match.groups()
    return timedelta(**{DURATION_UNITS[unit or "d"]: int(amount)})


@dataclass
class TrashFilter:
    """Criteria an item must meet. Globs and regexes are alternatives (any
    may match); every other criterion must hold. An empty filter selects
    everything.
    """

    globs: List[str] = field(default_factory=list)
    regexes: List[str] = field(default_factory=list)
    directory: Optional[Path] = None
    older_than: Optional[timedelta] = None
    newer_than: Optional[timedelta] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None

    def __post_init__(self):
        self._compiled = [re.compile(pattern) for pattern in self.regexes]

    def is_empty(self) -> bool:
        """True when no criterion is set, i.e. the filter selects everything."""
        return not (self.globs or self.regexes or self.directory is not None
                    or self.older_than is not None or self.newer_than is not None
                    or self.min_size is not None or self.max_size is not None)

    @property
    def needs_size(self) -> bool:
        return self.min_size is not None or self.max_size is not None

    def matches(self, item: TrashedItem, now: Optional[datetime] = None,
                size_of: Optional[Callable[[TrashedItem], int]] = None) -> bool:
        """Check one item against every criterion.

        Args:
            item: Item to test
            now: Reference time for age criteria (default: current time)
            size_of: Payload size function, required for size criteria

        Returns:
            True if the item is selected
        """
        original = str(item.original_path)

        if self.globs or self._compiled:
            if not (any(self._glob_matches(pattern, item.original_path) for pattern in self.globs)
                    or any(regex.search(original) for regex in self._compiled)):
                return False

        if self.directory is not None:
            directory = Path(self.directory)
            if item.original_path != directory and directory not in item.original_path.parents:
                return False

        if self.older_than is not None or self.newer_than is not None:
            age = (now or datetime.now()) - item.deleted_at
            if self.older_than is not None and age < self.older_than:
                return False
            if self.newer_than is not None and age > self.newer_than:
                return False

        if self.needs_size:
            if size_of is None:
                raise ValueError("size_of is required for size criteria")
            try:
                size = size_of(item)
            except FileNotFoundError:
                return False
            if self.min_size is not None and size < self.min_size:
                return False
            if self.max_size is not None and size > self.max_size:
                return False

        return True

    @staticmethod
    def _glob_matches(pattern: str, path: Path) -> bool:
        # Slash-free patterns match the basename, like a shell glob in a directory
        if "/" in pattern:
            return fnmatchcase(str(path), pattern)
        return fnmatchcase(path.name, pattern)

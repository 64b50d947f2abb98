"""Collision-free entry names inside a trash store."""
import os
from typing import Iterator

from .trash_info import EXTENSION

# Longest file name most POSIX filesystems accept, in bytes
NAME_MAX = 255


class EntryNamer:
    """Suggest entry names: ``name``, ``name.1``, ``name.2``, ...

    Suggestions are advisory. The store's exclusive create of the metadata
    record is what actually claims a name, so a suggestion may still lose a
    race against another process.
    """

    def __init__(self, name_max: int = NAME_MAX):
        self.name_max = name_max

    def candidates(self, store, basename: str, limit: int) -> Iterator[str]:
        """Yield names not currently used by a payload or a record.

        Args:
            store: TrashStore to check for existing entries
            basename: Basename of the path being trashed
            limit: Number of disambiguator values to consider

        Yields:
            Candidate names, in order
        """
        for index in range(limit):
            suffix = "" if index == 0 else f".{index}"
            name = self.fit(basename, suffix) + suffix
            if store.name_in_use(name):
                continue
            yield name

    def fit(self, basename: str, suffix: str) -> str:
        """Shorten ``basename`` so ``basename + suffix + .trashinfo`` fits NAME_MAX."""
        budget = self.name_max - len(os.fsencode(suffix + EXTENSION))
        encoded = os.fsencode(basename)
        if len(encoded) <= budget:
            return basename
        # errors="ignore" drops a multi-byte sequence cut in half
        return encoded[:budget].decode("utf-8", errors="ignore") or "_"

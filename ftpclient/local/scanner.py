"""Local filesystem scanner for tree transfers.

Enumerates local directories in sorted order and walks a tree lazily,
one directory level at a time, skipping excluded folder names.
"""

import bisect
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Tuple, Union

logger = logging.getLogger("ftpclient.local_scanner")


@dataclass(frozen=True)
class LocalEntry:
    """One entry of a local directory."""
    name: str
    is_directory: bool
    size: int


def list_directory(path: Union[str, Path]) -> List[LocalEntry]:
    """
    List a local directory sorted by name.

    Args:
        path: Directory to list

    Returns:
        Entries sorted by name (sizes of directories are 0)

    Raises:
        OSError: If the directory cannot be read
    """
    entries = []
    with os.scandir(path) as it:
        for entry in it:
            is_dir = entry.is_dir()
            size = 0 if is_dir else entry.stat().st_size
            entries.append(LocalEntry(entry.name, is_dir, size))
    entries.sort(key=lambda e: e.name)
    return entries


class ExclusionSet:
    """Case-insensitive set of folder names, looked up by binary search."""

    def __init__(self, names: Iterable[str] = ()):
        self._names = sorted({name.lower() for name in names if name})

    def __contains__(self, name: str) -> bool:
        name = name.lower()
        index = bisect.bisect_left(self._names, name)
        return index < len(self._names) and self._names[index] == name

    def __len__(self) -> int:
        return len(self._names)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._names)


@dataclass
class PlanLevel:
    """One directory of a DirectoryPlan: its files and subdirectories."""
    path: Path
    relative: Tuple[str, ...]
    files: List[LocalEntry]
    subdirs: List[LocalEntry]


class DirectoryPlan:
    """
    Lazy depth-first decomposition of a local tree.

    Each directory is listed only when the walk reaches it, so memory
    grows with tree depth rather than tree size. Excluded folder names
    are never listed or entered.
    """

    def __init__(self, root: Union[str, Path], excluded: Iterable[str] = ()):
        """
        Initialize the plan.

        Args:
            root: Local directory at the top of the tree
            excluded: Folder names (case-insensitive) that are never entered
        """
        self._root = Path(root)
        self._excluded = excluded if isinstance(excluded, ExclusionSet) else ExclusionSet(excluded)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def excluded(self) -> ExclusionSet:
        return self._excluded

    def is_excluded(self, name: str) -> bool:
        return name in self._excluded

    def level(self, path: Path, relative: Tuple[str, ...] = ()) -> PlanLevel:
        """List one directory, splitting files and non-excluded subdirectories."""
        files, subdirs = [], []
        for entry in list_directory(path):
            if not entry.is_directory:
                files.append(entry)
            elif self.is_excluded(entry.name):
                logger.debug(f"Skipping excluded directory: {path / entry.name}")
            else:
                subdirs.append(entry)
        return PlanLevel(path, relative, files, subdirs)

    def walk(self, path: Path = None, relative: Tuple[str, ...] = ()) -> Iterator[Tuple[Tuple[str, ...], bool]]:
        """
        Yield (relative path parts, is_directory) depth-first, sorted by name.

        Files of a directory come first, then each subdirectory followed by
        its contents.
        """
        level = self.level(path or self._root, relative)
        for entry in level.files:
            yield relative + (entry.name,), False
        for entry in level.subdirs:
            sub = relative + (entry.name,)
            yield sub, True
            yield from self.walk(level.path / entry.name, sub)

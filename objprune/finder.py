"""
Discovery of candidate objects under a prune root.
"""

import logging
from typing import AsyncIterator, Callable, Optional

from .errors import FinderError
from .models import ObjectKind, ObjectRecord
from .store import ObjectStore, normalize_path

logger = logging.getLogger(__name__)

PathFilter = Callable[[str], bool]


def accept_all(path: str) -> bool:
    return True


class ObjectFinder:
    """
    Walks an object store depth-first and yields the objects found.

    Directories are traversed but never yielded. The optional filter is
    applied to object paths only.
    """

    def __init__(self, store: ObjectStore, root: str, filter_func: Optional[PathFilter] = None):
        self.store = store
        self.root = normalize_path(root)
        self.filter_func = filter_func or accept_all

        self.directories_visited = 0
        self.objects_found = 0
        self.objects_filtered = 0

    def __aiter__(self) -> AsyncIterator[ObjectRecord]:
        return self.find()

    async def find(self) -> AsyncIterator[ObjectRecord]:
        try:
            kind = await self.store.stat(self.root)
        except OSError as e:
            raise FinderError(f"failed to stat {self.root}: {e}") from e

        if kind is None:
            raise FinderError(f"no such file or directory: {self.root}")

        if kind == ObjectKind.OBJECT:
            record = ObjectRecord(path=self.root, kind=ObjectKind.OBJECT)
            if self._accept(record):
                yield record
            return

        pending = [self.root]
        while pending:
            directory = pending.pop()
            try:
                entries = await self.store.list_directory(directory)
            except OSError as e:
                raise FinderError(f"failed to list {directory}: {e}") from e
            self.directories_visited += 1

            subdirectories = []
            for entry in entries:
                if entry.kind == ObjectKind.DIRECTORY:
                    subdirectories.append(entry.path)
                elif self._accept(entry):
                    yield entry

            # reversed so that the stack pops them in listing order
            pending.extend(reversed(subdirectories))

        logger.debug(
            f"Finder done under {self.root}: {self.directories_visited} directories, "
            f"{self.objects_found} objects, {self.objects_filtered} filtered out"
        )

    def _accept(self, record: ObjectRecord) -> bool:
        if self.filter_func(record.path):
            self.objects_found += 1
            return True
        self.objects_filtered += 1
        return False

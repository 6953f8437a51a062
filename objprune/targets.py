"""
Targets consume policy decisions.

A target accepts DecisionRecords, one at a time:

    action 'remove'   the object (or the subtree it names) should be removed
    action 'skip'     the object is kept; 'reason' says why

DryRunTarget only reports what would happen. RemoverTarget applies the
decisions and is the only part of the pipeline that changes storage.
"""

import errno
import json
import logging
import posixpath
import sys
from abc import ABC, abstractmethod
from typing import Optional, Set, TextIO

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .models import DecisionAction, DecisionRecord, ObjectKind
from .store import ObjectStore, normalize_path

logger = logging.getLogger(__name__)

_PERMANENT_ERRNOS = {
    errno.ENOENT, errno.EACCES, errno.EPERM, errno.ENOTDIR, errno.EISDIR, errno.ENOTEMPTY, errno.EROFS
}


def _is_transient(error: BaseException) -> bool:
    """Storage errors worth retrying: OSErrors other than missing paths or permissions."""
    return isinstance(error, OSError) and error.errno not in _PERMANENT_ERRNOS


class DecisionTarget(ABC):
    """Base class for decision targets."""

    def __init__(self):
        self.removed = 0
        self.skipped = 0

    async def write(self, decision: DecisionRecord) -> None:
        """Validate and handle one decision."""
        decision.validate()
        await self._write(decision)
        if decision.action == DecisionAction.REMOVE:
            self.removed += 1
        else:
            self.skipped += 1

    async def close(self) -> None:
        """Called once after the last decision."""
        pass

    @abstractmethod
    async def _write(self, decision: DecisionRecord) -> None:
        pass


class DryRunTarget(DecisionTarget):
    """Prints what would be done without touching storage."""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__()
        self.stream = stream if stream is not None else sys.stdout

    async def _write(self, decision: DecisionRecord) -> None:
        print(self.format_decision(decision), file=self.stream)

    @staticmethod
    def format_decision(decision: DecisionRecord) -> str:
        if decision.action == DecisionAction.SKIP:
            return f"would skip ({decision.reason}): {json.dumps(decision.path)}"
        return f"would remove: {json.dumps(decision.path)}"


class RemoverTarget(DecisionTarget):
    """
    Removes objects as decided.

    A removed path that names a directory is removed together with everything
    under it, children first. The roots removed during the run are remembered
    so that a later decision for a path inside one of them does nothing.
    """

    def __init__(self, store: ObjectStore):
        super().__init__()
        self.store = store
        self.objects_deleted = 0
        self.directories_deleted = 0
        self._removed_roots: Set[str] = set()

    def already_removed(self, path: str) -> bool:
        """Check whether path is, or lives under, a root removed in this run."""
        current = normalize_path(path)
        while True:
            if current in self._removed_roots:
                return True
            parent = posixpath.dirname(current)
            if parent == current:
                return False
            current = parent

    async def _write(self, decision: DecisionRecord) -> None:
        if decision.action == DecisionAction.SKIP:
            logger.debug(f"Keeping {decision.path} ({decision.reason})")
            return

        path = normalize_path(decision.path)
        if self.already_removed(path):
            logger.debug(f"Already removed: {path}")
            return

        logger.info(f"Removing {path}")
        await self._remove_tree(path)
        self._removed_roots.add(path)

    async def _remove_tree(self, path: str) -> None:
        kind = await self.store.stat(path)
        if kind is None:
            logger.warning(f"Nothing to remove at {path}")
            return

        if kind == ObjectKind.OBJECT:
            await self._remove_object(path)
            return

        for entry in await self.store.list_directory(path):
            if entry.kind == ObjectKind.DIRECTORY:
                await self._remove_tree(entry.path)
            else:
                await self._remove_object(entry.path)
        await self._remove_directory(path)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        retry=retry_if_exception(_is_transient),
        reraise=True
    )
    async def _remove_object(self, path: str) -> None:
        await self.store.remove_object(path)
        self.objects_deleted += 1

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        retry=retry_if_exception(_is_transient),
        reraise=True
    )
    async def _remove_directory(self, path: str) -> None:
        await self.store.remove_directory(path)
        self.directories_deleted += 1

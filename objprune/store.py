"""
Object store interfaces.

This module provides the abstract interface the finder and the remover use to
reach storage, and a backend that serves a local directory tree.
"""

import asyncio
import logging
import os
import posixpath
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from .errors import StorePathError
from .models import ObjectKind, ObjectRecord

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """Abstract interface for object stores addressed by POSIX-style paths."""

    @abstractmethod
    async def list_directory(self, path: str) -> List[ObjectRecord]:
        """List the immediate children of a directory."""
        pass

    @abstractmethod
    async def stat(self, path: str) -> Optional[ObjectKind]:
        """Return the kind of the entry at path, or None if it does not exist."""
        pass

    @abstractmethod
    async def remove_object(self, path: str) -> None:
        """Remove a single object."""
        pass

    @abstractmethod
    async def remove_directory(self, path: str) -> None:
        """Remove an empty directory."""
        pass


def normalize_path(path: str) -> str:
    """Normalize a store path to an absolute POSIX path without '..' parts."""
    if not path:
        raise StorePathError("empty store path")
    normalized = posixpath.normpath("/" + path.lstrip("/"))
    # normpath collapses '..' against the root, so compare the parts
    if ".." in path.split("/"):
        raise StorePathError(f"path escapes the object store: {path}")
    return normalized


class LocalObjectStore(ObjectStore):
    """
    Object store backed by a local directory.

    Store path '/a/b' maps to '<base_dir>/a/b'. Blocking filesystem calls are
    run in a worker thread so the event loop keeps servicing other stages.
    """

    def __init__(self, base_dir: str = "/"):
        self.base_dir = Path(base_dir).resolve()

    def local_path(self, path: str) -> Path:
        """Translate a store path into a local filesystem path."""
        normalized = normalize_path(path)
        local = self.base_dir / normalized.lstrip("/")
        if local != self.base_dir and self.base_dir not in local.parents:
            raise StorePathError(f"path escapes the object store: {path}")
        return local

    async def list_directory(self, path: str) -> List[ObjectRecord]:
        parent = normalize_path(path)
        local = self.local_path(parent)

        def _scan():
            with os.scandir(local) as it:
                return sorted((entry.name, entry.is_dir(follow_symlinks=False)) for entry in it)

        entries = []
        for name, is_dir in await asyncio.to_thread(_scan):
            kind = ObjectKind.DIRECTORY if is_dir else ObjectKind.OBJECT
            entries.append(ObjectRecord(path=posixpath.join(parent, name), kind=kind))
        return entries

    async def stat(self, path: str) -> Optional[ObjectKind]:
        local = self.local_path(path)

        def _stat() -> Optional[ObjectKind]:
            if local.is_dir() and not local.is_symlink():
                return ObjectKind.DIRECTORY
            if local.exists() or local.is_symlink():
                return ObjectKind.OBJECT
            return None

        return await asyncio.to_thread(_stat)

    async def remove_object(self, path: str) -> None:
        local = self.local_path(path)
        logger.debug(f"Removing object {local}")
        await asyncio.to_thread(local.unlink)

    async def remove_directory(self, path: str) -> None:
        local = self.local_path(path)
        if local == self.base_dir:
            raise StorePathError(f"refusing to remove the store root: {path}")
        logger.debug(f"Removing directory {local}")
        await asyncio.to_thread(local.rmdir)

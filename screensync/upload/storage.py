"""
Object storage holding raw advertiser videos.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

from screensync.common.exceptions import StorageError


class ObjectStorage(ABC):
    """Raw bytes by storage path."""

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Return the object's bytes; raise StorageError when unreadable."""
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        pass


class FilesystemObjectStorage(ObjectStorage):
    """Objects stored as files under a root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        full = (self.root / path.lstrip("/")).resolve()
        if self.root != full and self.root not in full.parents:
            raise StorageError(f"Path escapes storage root: {path}", {"path": path})
        return full

    async def read(self, path: str) -> bytes:
        full = self._resolve(path)
        try:
            return await asyncio.to_thread(full.read_bytes)
        except OSError as e:
            raise StorageError(f"Cannot read object {path}: {e}", {"path": path}) from e

    async def exists(self, path: str) -> bool:
        full = self._resolve(path)
        return await asyncio.to_thread(full.is_file)

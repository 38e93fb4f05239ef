"""Write-once blob storage on the local filesystem.

Objects are addressed by a relative path such as
``unprocessed_fonts/<owner>/<ingest>/<name>``. A committed object is
never overwritten. Resumable uploads write to a ``.part`` sidecar that
is renamed into place on commit, so readers never see partial bytes.

File IO runs in worker threads so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path, PurePosixPath

from fontingest.exceptions import ObjectNotFound, StoreUnavailableError

logger = logging.getLogger(__name__)

STREAM_CHUNK_BYTES = 256 * 1024


class ObjectExists(StoreUnavailableError):
    """A committed object already exists at the target path."""


class LocalObjectStore:
    """Directory-backed object store.

    Usage::

        objects = LocalObjectStore(Path("data/objects"))
        await objects.put(data, "unprocessed_fonts/u1/abc/Inter.ttf")
        data = await objects.get("unprocessed_fonts/u1/abc/Inter.ttf")
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"Invalid object path: {path}")
        return self.root.joinpath(*rel.parts)

    # ------------------------------------------------------------------
    # Whole-object operations
    # ------------------------------------------------------------------

    def _put_sync(self, data: bytes, path: str) -> str:
        target = self._resolve(path)
        if target.exists():
            raise ObjectExists(f"Object already exists: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, target)
        return path

    async def put(self, data: bytes, path: str) -> str:
        """Store *data* at *path*.

        Raises:
            ObjectExists: If an object is already committed at *path*.
            StoreUnavailableError: On filesystem errors.
        """
        try:
            return await asyncio.to_thread(self._put_sync, data, path)
        except ObjectExists:
            raise
        except OSError as exc:
            raise StoreUnavailableError(f"put {path} failed: {exc}") from exc

    async def get(self, path: str) -> bytes:
        """Return the bytes at *path*.

        Raises:
            ObjectNotFound: If nothing is committed at *path*.
        """
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise ObjectNotFound(path) from exc
        except OSError as exc:
            raise StoreUnavailableError(f"get {path} failed: {exc}") from exc

    async def open_stream(self, path: str, chunk_size: int = STREAM_CHUNK_BYTES) -> AsyncIterator[bytes]:
        """Yield the object at *path* in chunks."""
        target = self._resolve(path)
        if not target.is_file():
            raise ObjectNotFound(path)
        with open(target, "rb") as f:
            while True:
                block = await asyncio.to_thread(f.read, chunk_size)
                if not block:
                    break
                yield block

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).is_file)

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError as exc:
            raise ObjectNotFound(path) from exc

    async def move(self, source: str, destination: str) -> str:
        """Re-home an object (copy to *destination*, then delete *source*)."""
        data = await self.get(source)
        await self.put(data, destination)
        await self.delete(source)
        logger.debug("Moved object %s -> %s", source, destination)
        return destination

    # ------------------------------------------------------------------
    # Resumable uploads
    # ------------------------------------------------------------------

    def _part(self, path: str) -> Path:
        target = self._resolve(path)
        return target.with_name(target.name + ".part")

    async def part_size(self, path: str) -> int:
        """Bytes already received for an uncommitted upload at *path*."""
        part = self._part(path)
        return await asyncio.to_thread(lambda: part.stat().st_size if part.exists() else 0)

    def _append_sync(self, path: str, chunk: bytes, offset: int) -> int:
        part = self._part(path)
        part.parent.mkdir(parents=True, exist_ok=True)
        mode = "r+b" if part.exists() else "wb"
        with open(part, mode) as f:
            f.seek(offset)
            f.write(chunk)
            f.truncate()
            return f.tell()

    async def append_part(self, path: str, chunk: bytes, offset: int) -> int:
        """Write *chunk* at *offset* of the pending upload; returns new size."""
        try:
            return await asyncio.to_thread(self._append_sync, path, chunk, offset)
        except OSError as exc:
            raise StoreUnavailableError(f"append {path} failed: {exc}") from exc

    def _commit_sync(self, path: str) -> str:
        target = self._resolve(path)
        if target.exists():
            raise ObjectExists(f"Object already exists: {path}")
        os.replace(self._part(path), target)
        return path

    async def commit_part(self, path: str) -> str:
        """Atomically publish the pending upload at *path*."""
        try:
            return await asyncio.to_thread(self._commit_sync, path)
        except ObjectExists:
            raise
        except FileNotFoundError as exc:
            raise ObjectNotFound(path) from exc
        except OSError as exc:
            raise StoreUnavailableError(f"commit {path} failed: {exc}") from exc

    async def discard_part(self, path: str) -> None:
        part = self._part(path)
        await asyncio.to_thread(lambda: part.unlink(missing_ok=True))

"""Quick and full content hashes for font buffers.

``quick_hash`` fingerprints the leading 2 MiB plus the byte length so
same-session duplicates can be suspected before a large file is fully
read. ``content_hash`` covers every byte and is the authoritative
deduplication key; when client and server disagree the server value wins.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import struct
from pathlib import Path

logger = logging.getLogger(__name__)

QUICK_HASH_PREFIX_BYTES = 2 * 1024 * 1024
HASH_CHUNK_BYTES = 1024 * 1024


def quick_hash(data: bytes) -> str:
    """Return the quick fingerprint of *data* as a hex string.

    SHA-256 over the first ``min(2 MiB, len)`` bytes, then SHA-256 again
    over that digest followed by the length as a little-endian uint64.
    """
    head = hashlib.sha256(memoryview(data)[:QUICK_HASH_PREFIX_BYTES]).digest()
    return hashlib.sha256(head + struct.pack("<Q", len(data))).hexdigest()


def content_hash(data: bytes, chunk_size: int = HASH_CHUNK_BYTES) -> str:
    """Return the SHA-256 hex digest of the entire buffer."""
    sha256 = hashlib.sha256()
    view = memoryview(data)
    for offset in range(0, len(view), chunk_size):
        sha256.update(view[offset : offset + chunk_size])
    return sha256.hexdigest()


def hash_file(path: Path, chunk_size: int = HASH_CHUNK_BYTES) -> tuple[str, str]:
    """Stream *path* from disk and return ``(quick_hash, content_hash)``.

    Args:
        path: Font file on disk.
        chunk_size: Read size per iteration.

    Returns:
        Tuple of hex digests identical to hashing the full bytes in memory.
    """
    full = hashlib.sha256()
    head = hashlib.sha256()
    head_remaining = QUICK_HASH_PREFIX_BYTES
    total = 0
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(chunk_size), b""):
            full.update(block)
            if head_remaining > 0:
                head.update(block[:head_remaining])
                head_remaining -= min(len(block), head_remaining)
            total += len(block)
    quick = hashlib.sha256(head.digest() + struct.pack("<Q", total)).hexdigest()
    return quick, full.hexdigest()


async def content_hash_async(data: bytes, chunk_size: int = HASH_CHUNK_BYTES) -> str:
    """Hash *data* without holding the event loop for more than one chunk.

    Each chunk is digested in a worker thread, and control returns to the
    loop between chunks so progress consumers keep running.
    """
    sha256 = hashlib.sha256()
    view = memoryview(data)
    for offset in range(0, len(view), chunk_size):
        await asyncio.to_thread(sha256.update, view[offset : offset + chunk_size])
    return sha256.hexdigest()


async def quick_hash_async(data: bytes) -> str:
    return await asyncio.to_thread(quick_hash, data)

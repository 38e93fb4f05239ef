"""Upload registration and resumable chunked transfer.

``register_upload`` creates the Ingest (rejecting oversize files, unknown
extensions and same-owner duplicates). :class:`UploadSession` then moves
the bytes into the object store chunk by chunk, walking the upload lane
through hashing -> uploading -> uploaded -> verifying, with user-driven
pause/resume/cancel and bounded retry on transient store errors.

A canceled session discards its partial bytes and leaves the analysis
lane at ``not_started``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import PurePosixPath

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from fontingest.config import ConfigProvider
from fontingest.exceptions import DuplicateDetected, StoreUnavailableError, UploadRejected
from fontingest.hashing import content_hash_async, quick_hash_async
from fontingest.models import Ingest, UploadState
from fontingest.normalize import NORMALIZATION_SPEC_VERSION
from fontingest.parser import SUPPORTED_EXTENSIONS
from fontingest.storage import LocalObjectStore
from fontingest.store import IngestRepository

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 25 * 1024 * 1024
UPLOAD_CHUNK_BYTES = 256 * 1024


def _safe_name(filename: str) -> str:
    name = PurePosixPath(filename.replace("\\", "/")).name
    return name or "font"


def validate_upload(filename: str, size: int) -> None:
    """Reject files over 25 MB or with an unsupported extension.

    Raises:
        UploadRejected: With a user-facing message.
    """
    extension = PurePosixPath(filename).suffix.lower().lstrip(".")
    if extension not in SUPPORTED_EXTENSIONS:
        raise UploadRejected(
            f"{filename}: unsupported file type .{extension or '?'} "
            f"(allowed: {', '.join(sorted(SUPPORTED_EXTENSIONS))})"
        )
    if size > MAX_UPLOAD_BYTES:
        raise UploadRejected(
            f"{filename}: {size / 1024 / 1024:.1f} MB exceeds the 25 MB limit"
        )
    if size == 0:
        raise UploadRejected(f"{filename}: empty file")


async def register_upload(
    ingests: IngestRepository,
    config: ConfigProvider,
    owner_id: str,
    filename: str,
    data: bytes,
    preview_family_key: str | None = None,
) -> Ingest:
    """Create a pending Ingest for *data* owned by *owner_id*.

    Args:
        ingests: Ingest repository.
        config: Provides the unprocessed-fonts path prefix.
        owner_id: Uploading user.
        filename: Original file name.
        data: File bytes.
        preview_family_key: Provisional key from the client preview, if any.

    Returns:
        The new Ingest (upload ``pending``, analysis ``not_started``).

    Raises:
        UploadRejected: Size or extension check failed.
        DuplicateDetected: The owner already uploaded identical bytes.
    """
    validate_upload(filename, len(data))

    digest = await content_hash_async(data)
    existing = await ingests.find_by_content_hash(owner_id, digest)
    if existing is not None:
        logger.info("Duplicate upload of %s by %s (ingest %s)", filename, owner_id, existing.id)
        raise DuplicateDetected(existing.id, digest)

    ingest = await ingests.create(
        owner_id,
        filename,
        content_hash=digest,
        size=len(data),
        preview_family_key=preview_family_key,
        normalization_spec_version=NORMALIZATION_SPEC_VERSION,
    )
    prefix = config.get_str("unprocessed_fonts_path")
    storage_path = f"{prefix}/{owner_id}/{ingest.id}/{_safe_name(filename)}"
    return await ingests.update(ingest.id, storage_path=storage_path)


class UploadSession:
    """Resumable chunked transfer of one Ingest's bytes.

    Usage::

        session = UploadSession(ingests, objects, ingest, data)
        task = asyncio.create_task(session.run())
        session.pause()
        session.resume()
        ingest = await task

    Pause and cancel take effect at the next chunk boundary.
    """

    def __init__(
        self,
        ingests: IngestRepository,
        objects: LocalObjectStore,
        ingest: Ingest,
        data: bytes,
        chunk_size: int = UPLOAD_CHUNK_BYTES,
        max_attempts: int = 3,
        base_delay: float = 0.25,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_chunk: Callable[[int, int], None] | None = None,
    ) -> None:
        if ingest.storage_path is None:
            raise ValueError(f"Ingest {ingest.id} has no storage path")
        self._ingests = ingests
        self._objects = objects
        self._ingest = ingest
        self._data = data
        self._chunk_size = chunk_size
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep
        self._on_chunk = on_chunk
        self._pause_requested = False
        self._cancel_requested = False
        self._wake = asyncio.Event()

    @property
    def ingest(self) -> Ingest:
        return self._ingest

    # ------------------------------------------------------------------
    # User controls
    # ------------------------------------------------------------------

    def pause(self) -> None:
        self._pause_requested = True
        self._wake.clear()

    def resume(self) -> None:
        self._pause_requested = False
        self._wake.set()

    def cancel(self) -> None:
        self._cancel_requested = True
        self._wake.set()

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    async def _transition(self, event: str, **extra: object) -> None:
        self._ingest = await self._ingests.transition_upload(self._ingest.id, event, **extra)

    async def _checkpoint(self) -> bool:
        """Honor pause/cancel requests. Returns False if canceled."""
        if self._pause_requested and not self._cancel_requested:
            await self._transition("pause")
            logger.info("Upload %s paused", self._ingest.id)
            await self._wake.wait()
            if not self._cancel_requested:
                await self._transition("resume")
                logger.info("Upload %s resumed", self._ingest.id)
        if self._cancel_requested:
            await self._objects.discard_part(self._ingest.storage_path)
            await self._transition("cancel")
            logger.info("Upload %s canceled", self._ingest.id)
            return False
        return True

    async def _backoff(self, seconds: float) -> None:
        await self._transition("retry")
        await self._sleep(seconds)
        await self._transition("start_upload")

    async def _write_chunk(self, offset: int) -> int:
        chunk = self._data[offset : offset + self._chunk_size]
        path = self._ingest.storage_path

        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Chunk write for %s failed at offset %d (attempt %d/%d): %s",
                self._ingest.id, offset, retry_state.attempt_number, self._max_attempts, exc,
            )

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StoreUnavailableError),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential_jitter(initial=self._base_delay, jitter=self._base_delay),
            before_sleep=_log_retry,
            sleep=self._backoff,
            reraise=True,
        ):
            with attempt:
                return await self._objects.append_part(path, chunk, offset)
        raise AssertionError("unreachable")

    async def run(self) -> Ingest:
        """Transfer, commit and verify. Returns the final Ingest.

        Store failures after retries leave the upload lane ``failed`` with
        error code ``store_unavailable``.
        """
        path = self._ingest.storage_path
        if self._ingest.upload_state is UploadState.PENDING:
            await self._transition("start_hashing")
            quick = await quick_hash_async(self._data)
            digest = await content_hash_async(self._data)
            await self._transition("start_upload", quick_hash=quick, content_hash=digest)

        total = len(self._data)
        try:
            offset = await self._objects.part_size(path)
            while offset < total:
                if not await self._checkpoint():
                    return self._ingest
                offset = await self._write_chunk(offset)
                if self._on_chunk is not None:
                    self._on_chunk(offset, total)
            if not await self._checkpoint():
                return self._ingest
            await self._objects.commit_part(path)
        except StoreUnavailableError as exc:
            self._ingest = await self._ingests.mark_failed(
                self._ingest.id, "upload", str(exc), "store_unavailable"
            )
            return self._ingest

        await self._transition("complete_upload")
        return await self._verify()

    async def _verify(self) -> Ingest:
        await self._transition("verify")
        stored = await self._objects.get(self._ingest.storage_path)
        digest = await content_hash_async(stored)
        if digest != self._ingest.content_hash:
            await self._transition(
                "fail", error="Stored bytes do not match content hash", error_code="hash_mismatch"
            )
            return self._ingest
        await self._transition("verified")
        logger.info("Upload %s stored (%d bytes)", self._ingest.id, len(stored))
        return self._ingest

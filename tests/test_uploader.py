"""Tests for upload registration and resumable chunked transfer."""

from __future__ import annotations

import asyncio

import pytest

from fontingest.exceptions import DuplicateDetected, StoreUnavailableError, UploadRejected
from fontingest.models import AnalysisState, Ingest, UploadState
from fontingest.storage import LocalObjectStore
from fontingest.uploader import MAX_UPLOAD_BYTES, UploadSession, register_upload, validate_upload


class FlakyObjectStore(LocalObjectStore):
    """Fails the first ``failures`` chunk writes with a store error."""

    def __init__(self, root, failures: int) -> None:
        super().__init__(root)
        self.failures = failures

    async def append_part(self, path, chunk, offset):
        if self.failures > 0:
            self.failures -= 1
            raise StoreUnavailableError("disk hiccup")
        return await super().append_part(path, chunk, offset)


async def _wait_for_state(ingests, ingest_id, state: UploadState) -> None:
    for _ in range(500):
        if (await ingests.require(ingest_id)).upload_state is state:
            return
        await asyncio.sleep(0.001)
    raise AssertionError(f"ingest never reached {state.value}")


# ======================================================================
# Registration
# ======================================================================


class TestValidateUpload:
    @pytest.mark.parametrize("name", ["a.ttf", "b.OTF", "c.woff", "d.woff2", "e.eot"])
    def test_accepts_font_extensions(self, name):
        validate_upload(name, 100)

    @pytest.mark.parametrize("name", ["a.zip", "b", "c.ttf.exe"])
    def test_rejects_other_extensions(self, name):
        with pytest.raises(UploadRejected):
            validate_upload(name, 100)

    def test_rejects_oversize(self):
        with pytest.raises(UploadRejected, match="25 MB"):
            validate_upload("a.ttf", MAX_UPLOAD_BYTES + 1)

    def test_rejects_empty(self):
        with pytest.raises(UploadRejected):
            validate_upload("a.ttf", 0)


class TestRegisterUpload:
    async def test_creates_pending_ingest_with_path(self, ingests, config, font_bytes):
        ingest = await register_upload(ingests, config, "owner", "dir\\Inter.ttf", font_bytes)
        assert ingest.upload_state is UploadState.PENDING
        assert ingest.storage_path == f"unprocessed_fonts/owner/{ingest.id}/Inter.ttf"
        assert ingest.normalization_spec_version == "1.0.0"
        assert len(ingest.content_hash) == 64

    async def test_duplicate_per_owner(self, ingests, config, font_bytes):
        first = await register_upload(ingests, config, "owner", "a.ttf", font_bytes)
        with pytest.raises(DuplicateDetected) as info:
            await register_upload(ingests, config, "owner", "copy.ttf", font_bytes)
        assert info.value.existing_ingest_id == first.id
        # Another owner may upload the same bytes.
        await register_upload(ingests, config, "someone-else", "a.ttf", font_bytes)


# ======================================================================
# UploadSession
# ======================================================================


class TestUploadSession:
    async def test_full_transfer(self, ingests, objects, config, font_bytes):
        ingest = await register_upload(ingests, config, "owner", "a.ttf", font_bytes)
        seen = []
        session = UploadSession(
            ingests, objects, ingest, font_bytes, chunk_size=256, on_chunk=lambda o, t: seen.append(o)
        )
        result = await session.run()

        assert result.upload_state is UploadState.UPLOADED
        assert result.analysis_state is AnalysisState.NOT_STARTED
        assert result.quick_hash
        assert await objects.get(ingest.storage_path) == font_bytes
        assert seen[-1] == len(font_bytes)
        assert seen == sorted(seen)

    async def test_retry_on_store_error(self, ingests, tmp_path, config, font_bytes, no_sleep):
        objects = FlakyObjectStore(tmp_path / "objects", failures=2)
        ingest = await register_upload(ingests, config, "owner", "a.ttf", font_bytes)
        session = UploadSession(ingests, objects, ingest, font_bytes, sleep=no_sleep)
        result = await session.run()
        assert result.upload_state is UploadState.UPLOADED

    async def test_exhausted_retries_fail_upload(self, ingests, tmp_path, config, font_bytes, no_sleep):
        objects = FlakyObjectStore(tmp_path / "objects", failures=10)
        ingest = await register_upload(ingests, config, "owner", "a.ttf", font_bytes)
        session = UploadSession(ingests, objects, ingest, font_bytes, max_attempts=2, sleep=no_sleep)
        result = await session.run()
        assert result.upload_state is UploadState.FAILED
        assert result.error_code == "store_unavailable"
        assert result.analysis_state is AnalysisState.NOT_STARTED

    async def test_pause_and_resume(self, ingests, objects, config, font_bytes):
        ingest = await register_upload(ingests, config, "owner", "a.ttf", font_bytes)
        session = UploadSession(ingests, objects, ingest, font_bytes, chunk_size=128)
        session.pause()
        task = asyncio.create_task(session.run())

        await _wait_for_state(ingests, ingest.id, UploadState.PAUSED)
        assert not task.done()
        session.resume()
        result = await task

        assert result.upload_state is UploadState.UPLOADED
        assert await objects.get(ingest.storage_path) == font_bytes

    async def test_cancel_while_paused(self, ingests, objects, config, font_bytes):
        ingest = await register_upload(ingests, config, "owner", "a.ttf", font_bytes)
        session = UploadSession(ingests, objects, ingest, font_bytes, chunk_size=128)
        session.pause()
        task = asyncio.create_task(session.run())

        await _wait_for_state(ingests, ingest.id, UploadState.PAUSED)
        session.cancel()
        result = await task

        assert result.upload_state is UploadState.CANCELED
        assert result.analysis_state is AnalysisState.NOT_STARTED
        assert not await objects.exists(ingest.storage_path)
        assert await objects.part_size(ingest.storage_path) == 0

    async def test_resumes_from_existing_part(self, ingests, objects, config, font_bytes):
        ingest = await register_upload(ingests, config, "owner", "a.ttf", font_bytes)
        await objects.append_part(ingest.storage_path, font_bytes[:100], 0)
        result = await UploadSession(ingests, objects, ingest, font_bytes).run()
        assert result.upload_state is UploadState.UPLOADED
        assert await objects.get(ingest.storage_path) == font_bytes

    def test_requires_storage_path(self):
        with pytest.raises(ValueError):
            UploadSession(None, None, Ingest(id="x", owner_id="o", original_name="a.ttf"), b"")

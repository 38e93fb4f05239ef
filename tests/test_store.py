"""Tests for the document store, repositories and object store."""

from __future__ import annotations

import pytest

from fontingest.exceptions import ObjectNotFound, StoreUnavailableError
from fontingest.models import FontFamily, FontVariant
from fontingest.storage import LocalObjectStore, ObjectExists
from fontingest.store import DocumentStore, family_doc_id


# ======================================================================
# DocumentStore
# ======================================================================


class TestDocumentStore:
    """Per-key document operations and filtered scans."""

    async def test_put_get(self, doc_store):
        doc = await doc_store.put("things", "a", {"x": 1})
        assert doc["created_at"] and doc["updated_at"]
        assert (await doc_store.get("things", "a"))["x"] == 1
        assert await doc_store.get("things", "missing") is None

    async def test_put_keeps_created_at(self, doc_store):
        first = await doc_store.put("things", "a", {"x": 1})
        second = await doc_store.put("things", "a", {**first, "x": 2})
        assert second["created_at"] == first["created_at"]

    async def test_put_fills_null_created_at(self, doc_store):
        doc = await doc_store.put("things", "a", {"x": 1, "created_at": None})
        assert doc["created_at"]
        assert (await doc_store.get("things", "a"))["created_at"] == doc["created_at"]

    async def test_merge_is_shallow(self, doc_store):
        await doc_store.put("things", "a", {"x": 1, "nested": {"a": 1}})
        merged = await doc_store.merge("things", "a", {"y": 2, "nested": {"b": 2}})
        assert merged["x"] == 1 and merged["y"] == 2
        assert merged["nested"] == {"b": 2}

    async def test_merge_creates(self, doc_store):
        await doc_store.merge("things", "new", {"y": 2})
        assert (await doc_store.get("things", "new"))["y"] == 2

    async def test_delete(self, doc_store):
        await doc_store.put("things", "a", {})
        await doc_store.delete("things", "a")
        assert await doc_store.get("things", "a") is None

    async def test_query_filters_and_pages(self, doc_store):
        for i in range(5):
            await doc_store.put("things", f"k{i}", {"owner": "o1" if i % 2 == 0 else "o2"})

        owned = await doc_store.query("things", {"owner": "o1"})
        assert [key for key, _ in owned] == ["k0", "k2", "k4"]

        page1 = await doc_store.query("things", limit=2)
        page2 = await doc_store.query("things", limit=2, start_after=page1[-1][0])
        assert [k for k, _ in page1] == ["k0", "k1"]
        assert [k for k, _ in page2] == ["k2", "k3"]

    async def test_query_null_filter(self, doc_store):
        await doc_store.put("things", "a", {"owner": None})
        await doc_store.put("things", "b", {})
        await doc_store.put("things", "c", {"owner": "o"})
        rows = await doc_store.query("things", {"owner": None})
        assert [k for k, _ in rows] == ["a", "b"]

    async def test_not_connected(self, tmp_path):
        store = DocumentStore(str(tmp_path / "x.db"))
        with pytest.raises(StoreUnavailableError):
            await store.get("things", "a")

    async def test_unopenable_path(self, tmp_path):
        store = DocumentStore(str(tmp_path / "no" / "such" / "dir" / "x.db"))
        with pytest.raises(StoreUnavailableError):
            await store.connect()


# ======================================================================
# Repositories
# ======================================================================


class TestIngestRepository:
    async def test_create_defaults(self, ingests):
        ingest = await ingests.create("owner", "Inter.ttf", content_hash="abc", size=10)
        assert ingest.upload_state.value == "pending"
        assert ingest.analysis_state.value == "not_started"
        assert ingest.created_at

    async def test_find_by_content_hash_is_owner_scoped(self, ingests):
        ingest = await ingests.create("owner", "a.ttf", content_hash="abc")
        assert (await ingests.find_by_content_hash("owner", "abc")).id == ingest.id
        assert await ingests.find_by_content_hash("other", "abc") is None

    async def test_require_unknown(self, ingests):
        with pytest.raises(KeyError):
            await ingests.require("nope")

    async def test_list_for_owner(self, ingests):
        await ingests.create("a", "1.ttf")
        await ingests.create("b", "2.ttf")
        await ingests.create("a", "3.ttf")
        assert {i.original_name for i in await ingests.list_for_owner("a")} == {"1.ttf", "3.ttf"}
        assert len(await ingests.list_for_owner()) == 3


class TestFamilyRepository:
    async def test_round_trip_and_last_writer_wins(self, families):
        family = FontFamily(
            id=family_doc_id("owner", "inter"),
            owner_id="owner",
            name="Inter",
            normalized_name="inter",
            variants=[FontVariant("v1", "i1", "Regular", "ttf", "h1")],
        )
        await families.put(family)
        family.description = "Second write"
        await families.put(family)

        stored = await families.get("owner__inter")
        assert stored.description == "Second write"
        assert stored.variants[0].content_hash == "h1"

    async def test_list_for_owner_none_selects_unowned(self, families):
        await families.put(FontFamily(id="x", owner_id=None, name="X", normalized_name="x"))
        await families.put(FontFamily(id="y", owner_id="o", name="Y", normalized_name="y"))
        assert [f.id for f in await families.list_for_owner(None)] == ["x"]


# ======================================================================
# LocalObjectStore
# ======================================================================


class TestLocalObjectStore:
    async def test_put_get_write_once(self, objects):
        await objects.put(b"data", "a/b/c.ttf")
        assert await objects.get("a/b/c.ttf") == b"data"
        with pytest.raises(ObjectExists):
            await objects.put(b"other", "a/b/c.ttf")

    async def test_missing_object(self, objects):
        with pytest.raises(ObjectNotFound):
            await objects.get("nope.ttf")

    @pytest.mark.parametrize("path", ["/abs.ttf", "../escape.ttf"])
    def test_rejects_escaping_paths(self, objects, path):
        with pytest.raises(ValueError):
            objects._resolve(path)

    async def test_move(self, objects):
        await objects.put(b"data", "src/a.ttf")
        await objects.move("src/a.ttf", "dst/a.ttf")
        assert not await objects.exists("src/a.ttf")
        assert await objects.get("dst/a.ttf") == b"data"

    async def test_resumable_parts(self, objects):
        path = "up/a.ttf"
        assert await objects.part_size(path) == 0
        await objects.append_part(path, b"abc", 0)
        assert await objects.part_size(path) == 3
        assert not await objects.exists(path)
        await objects.append_part(path, b"def", 3)
        await objects.commit_part(path)
        assert await objects.get(path) == b"abcdef"

    async def test_open_stream(self, objects):
        await objects.put(b"x" * 10, "s.ttf")
        chunks = [c async for c in objects.open_stream("s.ttf", chunk_size=4)]
        assert chunks == [b"xxxx", b"xxxx", b"xx"]

    async def test_discard_part(self, objects):
        await objects.append_part("d.ttf", b"abc", 0)
        await objects.discard_part("d.ttf")
        assert await objects.part_size("d.ttf") == 0

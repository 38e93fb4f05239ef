"""Tests for provisional preview grouping."""

from __future__ import annotations

import pytest

from fontingest.models import FileRecord, FontMetadata, VariableAxis
from fontingest.preview import group_preview, load_record, load_records, preview_files


def _record(filename: str, family: str, style: str = "Regular", **meta) -> FileRecord:
    return FileRecord(
        filename=filename,
        size=100,
        metadata=FontMetadata(family_name=family, subfamily_name=style, **meta),
    )


class TestGroupPreview:
    """Grouping by normalized family key and slot conflicts."""

    def test_groups_by_normalized_name(self):
        result = group_preview(
            [
                _record("a.ttf", "Inter"),
                _record("b.ttf", "INTER™", "Bold"),
                _record("c.ttf", "Roboto"),
            ]
        )
        assert set(result.families) == {"inter", "roboto"}
        inter = result.families["inter"]
        assert inter.display_name == "Inter"
        assert inter.styles == {"Regular", "Bold"}
        assert inter.total_size == 200
        assert not inter.conflicts

    def test_same_slot_is_a_conflict(self):
        result = group_preview(
            [
                _record("a.ttf", "Inter"),
                _record("b.otf", "Inter", "regular", format="otf"),
                _record("c.ttf", "Inter", "Regular"),
            ]
        )
        family = result.families["inter"]
        assert len(family.conflicts) == 1
        assert family.conflicts[0].files == ["a.ttf", "b.otf", "c.ttf"]
        assert family.conflicts[0].style == "Regular"
        assert family.styles == {"Regular"}
        assert len(family.files) == 3
        assert family.formats == {"ttf", "otf"}
        assert result.conflict_count == 1

    def test_different_families_never_conflict(self):
        result = group_preview([_record("a.ttf", "Inter"), _record("b.ttf", "Roboto")])
        assert result.conflict_count == 0

    def test_failed_records_kept_out_of_families(self):
        records = [
            _record("a.ttf", "Inter"),
            FileRecord(filename="bad.ttf", size=3, parse_error="not a font"),
        ]
        result = group_preview(records)
        assert [f.filename for f in result.failed] == ["bad.ttf"]
        assert result.total_files == 2

    def test_variable_flag(self):
        axis = VariableAxis("wght", "Weight", 100, 400, 900)
        result = group_preview([_record("v.ttf", "Inter", axes=[axis])])
        assert result.families["inter"].has_variable

    def test_result_is_provisional(self):
        assert group_preview([]).provisional


class TestSpecMismatch:
    def test_no_server_version(self):
        assert not group_preview([]).spec_mismatch

    @pytest.mark.parametrize("server,expected", [("1.0.0", False), ("1.1.0", True), ("2.0.0", True)])
    def test_against_server(self, server, expected):
        assert group_preview([], server_spec_version=server).spec_mismatch is expected


class TestLoadRecords:
    def test_load_record_captures_parse_failure(self):
        record = load_record("bad.ttf", b"junk")
        assert not record.parsed
        assert record.parse_error
        assert record.content_hash and record.quick_hash

    async def test_order_and_progress(self, write_font, tmp_path):
        paths = [write_font(f"f{i}.ttf", family=f"Fam {chr(65 + i)}") for i in range(5)]
        bad = tmp_path / "bad.ttf"
        bad.write_bytes(b"junk")
        paths.insert(2, bad)

        events = []
        records = await load_records(paths, window=2, on_progress=events.append)

        assert [r.filename for r in records] == [p.name for p in paths]
        assert len(events) == len(paths)
        assert [e.completed for e in events] == list(range(1, len(paths) + 1))
        assert {e.index for e in events} == set(range(len(paths)))
        assert [e.ok for e in events if e.filename == "bad.ttf"] == [False]

    async def test_unreadable_path(self, tmp_path):
        records = await load_records([tmp_path / "missing.ttf"])
        assert records[0].parse_error

    async def test_preview_files_accounts_for_every_file(self, write_font, tmp_path):
        paths = [
            write_font("a.ttf", family="Inter"),
            write_font("b.ttf", family="Inter", style="Bold", weight=700),
            write_font("c.ttf", family="Inter", version="Version 2.000"),
        ]
        bad = tmp_path / "bad.woff"
        bad.write_bytes(b"wOFFjunk")
        paths.append(bad)

        result = await preview_files(paths, server_spec_version="1.0.0")

        assert result.total_files == 4
        assert len(result.failed) == 1
        family = result.families["inter"]
        assert family.styles == {"Regular", "Bold"}
        assert family.conflicts[0].files == ["a.ttf", "c.ttf"]
        assert not result.spec_mismatch

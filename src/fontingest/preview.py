"""Provisional, client-side family grouping before upload.

Files are hashed and parsed in small concurrent windows, then grouped by
normalized family key. A (family, subfamily) slot held by more than one
file is recorded as a conflict instead of being overwritten. Files that
fail to parse are kept out of the groups and reported separately, so
every input file ends up in exactly one of ``families`` or ``failed``.

The grouping is a best-effort preview only: the server is authoritative
and may regroup (for instance when an earlier upload already owns the
family name). Consumers must label it provisional and warn when the
normalization ruleset version differs between client and server.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from fontingest.exceptions import ParseError
from fontingest.hashing import content_hash, quick_hash
from fontingest.models import FileRecord
from fontingest.normalize import (
    NORMALIZATION_SPEC_VERSION,
    normalize_family_name,
    should_warn_about_spec_mismatch,
)
from fontingest.parser import parse_font

logger = logging.getLogger(__name__)

PREVIEW_WINDOW = 3


@dataclass
class StyleConflict:
    """Two or more files competing for one subfamily slot."""

    style: str
    files: list[str]


@dataclass
class ProvisionalFamily:
    """Client-local grouping of files sharing a normalized family key."""

    normalized_name: str
    display_name: str
    files: list[FileRecord] = field(default_factory=list)
    styles: set[str] = field(default_factory=set)
    conflicts: list[StyleConflict] = field(default_factory=list)
    has_variable: bool = False
    total_size: int = 0
    formats: set[str] = field(default_factory=set)

    def conflict_for(self, style: str) -> StyleConflict | None:
        for conflict in self.conflicts:
            if conflict.style.casefold() == style.casefold():
                return conflict
        return None


@dataclass
class FailedFile:
    filename: str
    error: str


@dataclass
class PreviewResult:
    """Output of a preview run. Always provisional."""

    families: dict[str, ProvisionalFamily]
    failed: list[FailedFile]
    spec_version: str = NORMALIZATION_SPEC_VERSION
    server_spec_version: str | None = None
    provisional: bool = True

    @property
    def spec_mismatch(self) -> bool:
        if self.server_spec_version is None:
            return False
        return should_warn_about_spec_mismatch(self.spec_version, self.server_spec_version)

    @property
    def total_files(self) -> int:
        return sum(len(f.files) for f in self.families.values()) + len(self.failed)

    @property
    def conflict_count(self) -> int:
        return sum(len(f.conflicts) for f in self.families.values())


@dataclass
class PreviewProgress:
    """Emitted once per file as it finishes; may arrive out of submission order."""

    filename: str
    index: int
    completed: int
    total: int
    ok: bool


def _style_label(subfamily: str | None) -> str:
    label = " ".join((subfamily or "").split())
    return label or "Regular"


def group_preview(
    records: Iterable[FileRecord],
    server_spec_version: str | None = None,
) -> PreviewResult:
    """Group parsed records by normalized family key.

    Args:
        records: Parsed-or-failed file records in submission order.
        server_spec_version: Normalization ruleset version reported by the
            server, used only for the mismatch warning.

    Returns:
        PreviewResult with one ProvisionalFamily per normalized key.
    """
    families: dict[str, ProvisionalFamily] = {}
    failed: list[FailedFile] = []
    # (family key, casefolded style) -> (first file, its style label)
    occupied: dict[tuple[str, str], tuple[str, str]] = {}

    for record in records:
        if record.metadata is None:
            failed.append(FailedFile(record.filename, record.parse_error or "unparsed"))
            continue

        meta = record.metadata
        key = normalize_family_name(meta.family_name)
        style = _style_label(meta.subfamily_name)

        family = families.get(key)
        if family is None:
            family = ProvisionalFamily(normalized_name=key, display_name=meta.family_name)
            families[key] = family

        slot = (key, style.casefold())
        if slot in occupied:
            holder, style = occupied[slot]
            conflict = family.conflict_for(style)
            if conflict is None:
                family.conflicts.append(StyleConflict(style, [holder, record.filename]))
            else:
                conflict.files.append(record.filename)
            logger.info("Style conflict in %s/%s: %s", key, style, record.filename)
        else:
            occupied[slot] = (record.filename, style)

        family.files.append(record)
        family.styles.add(style)
        family.total_size += record.size
        family.formats.add(meta.format)
        family.has_variable = family.has_variable or meta.is_variable

    return PreviewResult(
        families=families,
        failed=failed,
        server_spec_version=server_spec_version,
    )


def load_record(filename: str, data: bytes) -> FileRecord:
    """Hash and parse one buffer; parse failures are captured, not raised."""
    record = FileRecord(
        filename=filename,
        size=len(data),
        quick_hash=quick_hash(data),
        content_hash=content_hash(data),
    )
    try:
        record.metadata = parse_font(data, filename)
    except ParseError as exc:
        logger.warning("Preview parse failed: %s", exc)
        record.parse_error = exc.reason
    return record


async def _load_path(path: Path) -> FileRecord:
    try:
        data = await asyncio.to_thread(path.read_bytes)
    except OSError as exc:
        return FileRecord(filename=path.name, size=0, parse_error=str(exc))
    return await asyncio.to_thread(load_record, path.name, data)


async def load_records(
    paths: Sequence[Path],
    window: int = PREVIEW_WINDOW,
    on_progress: Callable[[PreviewProgress], None] | None = None,
) -> list[FileRecord]:
    """Hash and parse *paths* in concurrent windows of *window* files.

    Progress events fire as each file completes, which inside a window
    may differ from submission order. The returned list is in
    submission order.
    """
    total = len(paths)
    results: list[FileRecord | None] = [None] * total
    completed = 0

    for start in range(0, total, window):
        indices = range(start, min(start + window, total))

        async def _indexed(i: int) -> tuple[int, FileRecord]:
            return i, await _load_path(Path(paths[i]))

        for next_done in asyncio.as_completed([_indexed(i) for i in indices]):
            i, record = await next_done
            results[i] = record
            completed += 1
            if on_progress is not None:
                on_progress(
                    PreviewProgress(
                        filename=record.filename,
                        index=i,
                        completed=completed,
                        total=total,
                        ok=record.parsed,
                    )
                )

    return [r for r in results if r is not None]


async def preview_files(
    paths: Sequence[Path],
    window: int = PREVIEW_WINDOW,
    on_progress: Callable[[PreviewProgress], None] | None = None,
    server_spec_version: str | None = None,
) -> PreviewResult:
    """Load *paths* and return their provisional grouping."""
    records = await load_records(paths, window=window, on_progress=on_progress)
    result = group_preview(records, server_spec_version=server_spec_version)
    logger.info(
        "Preview: %d families, %d conflicts, %d failed of %d files",
        len(result.families),
        result.conflict_count,
        len(result.failed),
        result.total_files,
    )
    return result

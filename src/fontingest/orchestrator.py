"""Server-side processing of stored uploads.

:class:`IngestOrchestrator` takes an Ingest whose bytes are in the
object store and carries it to a terminal analysis state:

1. Re-hash the stored bytes (server hash wins).
2. Parse; a parse failure fails the upload lane with ``parse_error``.
3. Resolve the canonical family for (owner, normalized name).
4. Detect a style conflict and apply the conflict policy.
5. Run the analysis pipeline, advancing the analysis lane per stage.
6. Persist the family (last writer wins) and re-home the blob.

Items run concurrently up to ``ai_max_concurrent_ops``. Work on the same
family is serialized in-process around conflict detection and the
family write. A store outage fails the Ingest with
``store_unavailable``; any other per-item failure is logged and never
aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath

from fontingest.analysis.pipeline import STAGE_ENRICHED, AnalysisPipeline, PipelineResult
from fontingest.config import ConfigProvider
from fontingest.exceptions import (
    AnalysisError,
    ConflictDetected,
    ObjectNotFound,
    ParseError,
    StoreUnavailableError,
)
from fontingest.families import (
    apply_analysis,
    apply_conflict_policy,
    build_variant,
    find_conflicts,
    merge_variant,
    new_family,
)
from fontingest.hashing import content_hash_async
from fontingest.models import (
    UPLOAD_COMPLETED,
    AnalysisState,
    ConflictPolicy,
    ConflictResolution,
    FontFamily,
    FontMetadata,
    Ingest,
)
from fontingest.normalize import normalize_family_name
from fontingest.parser import parse_font
from fontingest.storage import LocalObjectStore
from fontingest.store import FamilyRepository, IngestRepository, family_doc_id
from fontingest.visual_metrics import compute_visual_metrics

logger = logging.getLogger(__name__)

# Analysis states a crashed worker can leave behind.
_IN_FLIGHT = frozenset(
    {AnalysisState.ANALYZING, AnalysisState.ENRICHING, AnalysisState.RETRYING}
)


@dataclass
class ProcessSummary:
    """Counts from :meth:`IngestOrchestrator.process_many`."""

    total: int = 0
    complete: int = 0
    quarantined: int = 0
    failed: int = 0
    skipped: int = 0


class IngestOrchestrator:
    """Drives stored uploads through parsing, family resolution and analysis.

    Usage::

        orchestrator = IngestOrchestrator(ingests, families, objects, pipeline, config)
        ingest = await orchestrator.process(ingest_id)

    Args:
        ingests: Ingest repository.
        families: Family repository.
        objects: Object store holding the uploaded bytes.
        pipeline: Analysis pipeline.
        config: Injected configuration provider.
    """

    def __init__(
        self,
        ingests: IngestRepository,
        families: FamilyRepository,
        objects: LocalObjectStore,
        pipeline: AnalysisPipeline,
        config: ConfigProvider,
    ) -> None:
        self._ingests = ingests
        self._families = families
        self._objects = objects
        self._pipeline = pipeline
        self._config = config
        self._family_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process(self, ingest_id: str) -> Ingest:
        """Process one stored upload to a terminal (or quarantined) state.

        Returns:
            The Ingest after processing.

        Raises:
            KeyError: Unknown ingest id.
        """
        ingest = await self._ingests.require(ingest_id)
        if ingest.upload_state not in UPLOAD_COMPLETED:
            logger.info(
                "Skipping ingest %s: upload is %s", ingest.id, ingest.upload_state.value
            )
            return ingest
        try:
            return await self._process(ingest)
        except StoreUnavailableError as exc:
            return await self._ingests.mark_failed(
                ingest.id, "analysis", str(exc), "store_unavailable"
            )

    async def process_many(self, ingest_ids: list[str]) -> ProcessSummary:
        """Process *ingest_ids* concurrently, bounded by ``ai_max_concurrent_ops``."""
        semaphore = asyncio.Semaphore(max(1, self._config.get_int("ai_max_concurrent_ops")))
        summary = ProcessSummary(total=len(ingest_ids))

        async def _one(ingest_id: str) -> None:
            async with semaphore:
                try:
                    ingest = await self.process(ingest_id)
                except Exception:
                    logger.exception("Processing failed for ingest %s", ingest_id)
                    summary.failed += 1
                    return
            if ingest.quarantined:
                summary.quarantined += 1
            elif ingest.analysis_state is AnalysisState.COMPLETE:
                summary.complete += 1
            elif ingest.error_code:
                summary.failed += 1
            else:
                summary.skipped += 1

        await asyncio.gather(*(_one(i) for i in ingest_ids))
        logger.info(
            "Processed %d ingests: %d complete, %d quarantined, %d failed, %d skipped",
            summary.total, summary.complete, summary.quarantined, summary.failed, summary.skipped,
        )
        return summary

    async def resolve_conflict(
        self, ingest_id: str, policy: ConflictPolicy, resolved_by: str
    ) -> Ingest:
        """Record a user's conflict policy for a quarantined Ingest and reprocess it.

        Raises:
            ValueError: The Ingest is not quarantined.
        """
        ingest = await self._ingests.require(ingest_id)
        if not ingest.quarantined:
            raise ValueError(f"Ingest {ingest_id} has no unresolved style conflict")
        resolution = ConflictResolution(
            type=policy,
            resolved_at=datetime.now(timezone.utc).isoformat(),
            resolved_by=resolved_by,
        )
        ingest = await self._ingests.update(
            ingest_id, conflict_resolution=resolution.to_dict()
        )
        logger.info("Conflict on %s resolved by %s: %s", ingest_id, resolved_by, policy.value)
        if policy is ConflictPolicy.QUARANTINE:
            return ingest
        if ingest.analysis_state is AnalysisState.QUARANTINED:
            await self._ingests.transition_analysis(ingest_id, "requeue")
        return await self.process(ingest_id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _family_lock(self, family_id: str) -> AsyncIterator[None]:
        """Serialize work on one family; the lock is dropped once nobody holds or awaits it."""
        lock = self._family_locks.setdefault(family_id, asyncio.Lock())
        self._lock_users[family_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[family_id] -= 1
            if not self._lock_users[family_id]:
                del self._lock_users[family_id]
                del self._family_locks[family_id]

    def _object_path(self, prefix_key: str, ingest: Ingest) -> str:
        name = PurePosixPath(ingest.storage_path or ingest.original_name).name
        return f"{self._config.get_str(prefix_key)}/{ingest.owner_id}/{ingest.id}/{name}"

    async def _rehome(self, ingest: Ingest, prefix_key: str) -> str | None:
        """Move the blob under *prefix_key*; returns the new path."""
        source = ingest.storage_path
        destination = self._object_path(prefix_key, ingest)
        if source is None or source == destination:
            return source
        try:
            await self._objects.move(source, destination)
        except ObjectNotFound:
            logger.warning("Blob %s already moved or missing", source)
            return source
        await self._ingests.update(ingest.id, storage_path=destination)
        return destination

    async def _load(self, ingest: Ingest) -> bytes | None:
        try:
            data = await self._objects.get(ingest.storage_path)
        except ObjectNotFound as exc:
            await self._ingests.mark_failed(ingest.id, "upload", str(exc), "object_not_found")
            return None
        digest = await content_hash_async(data)
        if ingest.content_hash and digest != ingest.content_hash:
            logger.warning(
                "Content hash mismatch for %s: client %s, server %s",
                ingest.id, ingest.content_hash[:12], digest[:12],
            )
        if digest != ingest.content_hash:
            await self._ingests.update(ingest.id, content_hash=digest)
            ingest.content_hash = digest
        return data

    async def _process(self, ingest: Ingest) -> Ingest:
        data = await self._load(ingest)
        if data is None:
            return await self._ingests.require(ingest.id)

        try:
            meta = parse_font(data, ingest.original_name)
        except ParseError as exc:
            await self._rehome(ingest, "failed_processing_path")
            return await self._ingests.transition_upload(
                ingest.id, "fail", error=exc.reason, error_code="parse_error"
            )

        analyze = self._pipeline.is_enabled()
        if analyze:
            await self._enqueue(ingest)

        family_id = family_doc_id(ingest.owner_id, normalize_family_name(meta.family_name))
        async with self._family_lock(family_id):
            family, quarantined = await self._place_variant(ingest, meta, family_id)
        if quarantined:
            if analyze:
                return await self._ingests.transition_analysis(ingest.id, "quarantine")
            return await self._ingests.require(ingest.id)

        if not analyze:
            logger.info("Analysis disabled; %s stored without analysis", ingest.id)
            return await self._ingests.require(ingest.id)

        return await self._analyze(ingest, meta, family.id)

    async def _enqueue(self, ingest: Ingest) -> None:
        state = ingest.analysis_state
        if state is AnalysisState.NOT_STARTED:
            await self._ingests.transition_analysis(ingest.id, "enqueue")
        elif state is not AnalysisState.QUEUED:
            if state in _IN_FLIGHT:
                logger.warning("Ingest %s was left %s; requeueing", ingest.id, state.value)
            await self._ingests.transition_analysis(ingest.id, "requeue")

    async def _place_variant(
        self, ingest: Ingest, meta: FontMetadata, family_id: str
    ) -> tuple[FontFamily, bool]:
        """Add the Ingest's variant to its family, honoring the conflict policy.

        Returns:
            ``(family, quarantined)``.
        """
        family = await self._families.get(family_id) or new_family(ingest.owner_id, meta)
        processed_path = self._object_path("processed_fonts_path", ingest)
        variant = build_variant(ingest, meta, ingest.content_hash, processed_path)

        conflicts = find_conflicts(family, variant)
        if conflicts:
            policy = (
                ingest.conflict_resolution.type
                if ingest.conflict_resolution is not None
                else ConflictPolicy.QUARANTINE
            )
            outcome = apply_conflict_policy(family, variant, conflicts, policy)
            if outcome.quarantined:
                conflict = ConflictDetected(
                    family.normalized_name,
                    variant.subfamily,
                    [c.ingest_id for c in conflicts] + [ingest.id],
                )
                await self._ingests.update(
                    ingest.id,
                    family_id=family.id,
                    quarantined=True,
                    error="; ".join([*outcome.warnings, str(conflict)]),
                    error_code="style_conflict",
                )
                return family, True
        else:
            merge_variant(family, variant)

        family = await self._families.put(family)
        await self._ingests.update(
            ingest.id, family_id=family.id, quarantined=False, error=None, error_code=None
        )
        await self._rehome(ingest, "processed_fonts_path")
        return family, False

    async def _analyze(self, ingest: Ingest, meta: FontMetadata, family_id: str) -> Ingest:
        await self._ingests.transition_analysis(ingest.id, "start")

        async def on_stage(stage: str) -> None:
            if stage == STAGE_ENRICHED:
                await self._ingests.transition_analysis(ingest.id, "enrich")

        try:
            result = await self._pipeline.run(meta, compute_visual_metrics(meta), on_stage)
        except AnalysisError as exc:
            return await self._ingests.transition_analysis(
                ingest.id, "fail", error=str(exc), error_code=f"{exc.stage}_rejected"
            )

        for warning in result.warnings:
            logger.debug("Ingest %s: %s", ingest.id, warning)

        if result.analysis_state is not AnalysisState.COMPLETE:
            return await self._ingests.transition_analysis(
                ingest.id,
                "fail",
                error="; ".join(result.errors) or "analysis incomplete",
                error_code=result.errors[0] if result.errors else "analysis_incomplete",
            )

        await self._store_analysis(family_id, result)
        return await self._ingests.transition_analysis(ingest.id, "finish")

    async def _store_analysis(self, family_id: str, result: PipelineResult) -> None:
        async with self._family_lock(family_id):
            family = await self._families.get(family_id)
            if family is None:
                logger.warning("Family %s vanished before analysis was stored", family_id)
                return
            apply_analysis(family, result)
            await self._families.put(family)

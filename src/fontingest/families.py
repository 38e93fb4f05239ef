"""Canonical family assembly and style-conflict policies.

A family holds at most one primary variant per (subfamily, format).
When a newly processed file lands on a subfamily slot that is already
occupied by different bytes, the Ingest's conflict policy decides what
happens:

* ``quarantine`` (default): the new file is held back; the family is
  left untouched until a user picks another policy.
* ``keep_alternates``: the new file joins the family flagged as an
  alternate.
* ``replace_older``: the existing variants in the slot are removed and
  the new file takes their place.
* ``merge_stylistic_sets``: no automatic merge exists; logged and
  handled as ``quarantine``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fontingest.analysis.pipeline import PipelineResult
from fontingest.models import (
    ConflictPolicy,
    FontFamily,
    FontMetadata,
    FontVariant,
    Ingest,
)
from fontingest.normalize import normalize_family_name
from fontingest.store import family_doc_id

logger = logging.getLogger(__name__)


@dataclass
class ConflictOutcome:
    """What a conflict policy did to the family.

    Attributes:
        policy: Policy actually applied (after any fallback).
        quarantined: New variant held back; family unchanged.
        replaced: Variants removed from the family.
        warnings: Human-readable notes for the Ingest log.
    """

    policy: ConflictPolicy
    quarantined: bool = False
    replaced: list[FontVariant] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def new_family(owner_id: str, meta: FontMetadata) -> FontFamily:
    normalized = normalize_family_name(meta.family_name)
    return FontFamily(
        id=family_doc_id(owner_id, normalized),
        owner_id=owner_id,
        name=meta.family_name or normalized,
        normalized_name=normalized,
        foundry=meta.foundry,
    )


def build_variant(
    ingest: Ingest, meta: FontMetadata, content_hash: str, storage_path: str | None
) -> FontVariant:
    return FontVariant(
        id=ingest.id,
        ingest_id=ingest.id,
        subfamily=meta.subfamily_name or "Regular",
        format=meta.format,
        content_hash=content_hash,
        postscript_name=meta.postscript_name,
        weight_class=meta.weight_class,
        is_variable=meta.is_variable,
        storage_path=storage_path,
    )


def variant_key(variant: FontVariant) -> tuple[str, str]:
    """Identity of a variant within a family: postscript name (or subfamily) + format."""
    name = variant.postscript_name or variant.subfamily
    return name.strip().casefold(), variant.format.lower()


def find_conflicts(family: FontFamily, variant: FontVariant) -> list[FontVariant]:
    """Existing primary variants in *variant*'s subfamily slot with different bytes."""
    return [
        existing
        for existing in family.variant_for(variant.subfamily)
        if existing.content_hash != variant.content_hash
        and existing.ingest_id != variant.ingest_id
        and not existing.alternate
    ]


def merge_variant(family: FontFamily, variant: FontVariant) -> bool:
    """Insert or replace *variant* by :func:`variant_key`; never duplicates.

    Returns:
        True if the variant was new to the family.
    """
    for index, existing in enumerate(family.variants):
        if existing.ingest_id == variant.ingest_id:
            family.variants[index] = variant
            return False
    key = variant_key(variant)
    for index, existing in enumerate(family.variants):
        if variant_key(existing) == key and existing.alternate == variant.alternate:
            family.variants[index] = variant
            return False
    family.variants.append(variant)
    return True


def apply_conflict_policy(
    family: FontFamily,
    variant: FontVariant,
    conflicts: list[FontVariant],
    policy: ConflictPolicy,
) -> ConflictOutcome:
    """Apply *policy* to a detected style conflict, mutating *family*.

    Args:
        family: Canonical family (mutated unless quarantined).
        variant: Newly processed variant.
        conflicts: Output of :func:`find_conflicts` (non-empty).
        policy: Requested resolution.

    Returns:
        ConflictOutcome describing the effect.
    """
    if policy is ConflictPolicy.MERGE_STYLISTIC_SETS:
        message = (
            f"merge_stylistic_sets cannot be applied automatically to "
            f"{family.normalized_name}/{variant.subfamily}; quarantining"
        )
        logger.warning(message)
        outcome = apply_conflict_policy(family, variant, conflicts, ConflictPolicy.QUARANTINE)
        outcome.warnings.insert(0, message)
        return outcome

    if policy is ConflictPolicy.QUARANTINE:
        logger.info(
            "Style conflict in %s/%s; quarantining ingest %s",
            family.normalized_name, variant.subfamily, variant.ingest_id,
        )
        return ConflictOutcome(policy=policy, quarantined=True)

    if policy is ConflictPolicy.KEEP_ALTERNATES:
        variant.alternate = True
        merge_variant(family, variant)
        logger.info("Kept %s as alternate %s in %s", variant.ingest_id, variant.subfamily, family.id)
        return ConflictOutcome(policy=policy)

    # replace_older
    doomed = {id(v) for v in conflicts}
    family.variants = [v for v in family.variants if id(v) not in doomed]
    merge_variant(family, variant)
    logger.info(
        "Replaced %d variant(s) of %s/%s with %s",
        len(conflicts), family.id, variant.subfamily, variant.ingest_id,
    )
    return ConflictOutcome(policy=policy, replaced=list(conflicts))


def apply_analysis(family: FontFamily, result: PipelineResult) -> None:
    """Copy a completed pipeline result onto the family record."""
    final = result.final
    if final is None:
        return
    family.classification = final.style_primary.value
    family.tags = result.tags()
    if result.description:
        family.description = result.description
    family.metadata = {**family.metadata, **result.to_metadata()}
    if result.enriched is not None and family.foundry is None:
        foundry = next((p.name for p in result.enriched.people if p.role == "foundry"), None)
        if foundry:
            family.foundry = foundry

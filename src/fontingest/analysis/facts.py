"""Deterministic foundational facts merged into the analysis output.

Everything here is rule-based and derived from parsed metadata only.
Missing inputs cause the corresponding key to be omitted; nothing in
this module raises for incomplete metadata.
"""

from __future__ import annotations

import logging
from typing import Any

from fontingest.models import FontMetadata

logger = logging.getLogger(__name__)

AXIS_ROLES: dict[str, str] = {
    "wght": "weight",
    "wdth": "width",
    "opsz": "optical_size",
    "ital": "italic",
    "slnt": "slant",
    "GRAD": "grade",
}

# Table tag -> color font format, in preference order.
COLOR_FORMATS: tuple[tuple[str, str], ...] = (
    ("COLR", "colr"),
    ("SVG", "svg"),
    ("sbix", "sbix"),
    ("CBDT", "cbdt"),
)


def normalize_feature_tags(tags: list[str] | None) -> list[str]:
    """Deduplicate, uppercase and sort OpenType feature tags."""
    return sorted({t.strip().upper() for t in tags or [] if t and t.strip()})


def axis_role(tag: str) -> str:
    return AXIS_ROLES.get(tag, "custom")


def color_format(tables: list[str] | None) -> str | None:
    present = set(tables or [])
    for table, name in COLOR_FORMATS:
        if table in present:
            return name
    return None


def rendering_profile(meta: FontMetadata) -> str:
    """Best guess at the rasterization path: variable, hinted TrueType or CFF."""
    if meta.is_variable:
        return "variable"
    if meta.outline_format == "cff":
        return "cff"
    if meta.is_hinted:
        return "truetype_hinted"
    return "truetype"


def optical_bucket(point_size: float, thresholds: tuple[float, float, float]) -> str:
    """Map a point size to caption / text / subhead / display."""
    caption_max, text_max, subhead_max = thresholds
    if point_size <= caption_max:
        return "caption"
    if point_size <= text_max:
        return "text"
    if point_size <= subhead_max:
        return "subhead"
    return "display"


def derive_foundational_facts(
    meta: FontMetadata, optical_thresholds: tuple[float, float, float] = (9.0, 18.0, 36.0)
) -> dict[str, Any]:
    """Build the foundational facts record for *meta*.

    Args:
        meta: Parsed font metadata.
        optical_thresholds: Upper point-size bounds for caption, text and
            subhead buckets.

    Returns:
        Dict with only the keys whose inputs were present.
    """
    facts: dict[str, Any] = {}

    features = normalize_feature_tags(meta.features)
    if features:
        facts["feature_tags"] = features

    if meta.axes:
        facts["axes"] = [
            {
                "tag": axis.tag,
                "role": axis_role(axis.tag),
                "min": axis.min_value,
                "default": axis.default_value,
                "max": axis.max_value,
            }
            for axis in meta.axes
        ]

    fmt = color_format(meta.color_tables)
    if fmt is not None:
        facts["color_format"] = fmt

    facts["rendering_profile"] = rendering_profile(meta)

    opsz = next((a for a in meta.axes if a.tag == "opsz"), None)
    if opsz is not None:
        facts["optical_size_bucket"] = optical_bucket(opsz.default_value, optical_thresholds)
        low = optical_bucket(opsz.min_value, optical_thresholds)
        high = optical_bucket(opsz.max_value, optical_thresholds)
        if low != high:
            facts["optical_size_range"] = [low, high]

    if meta.glyph_count:
        facts["glyph_count"] = meta.glyph_count

    return facts

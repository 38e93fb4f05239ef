"""Controlled vocabulary for font classification (taxonomy 1.0.0).

The model may only answer with these values. Anything else is either a
blocking validation error (primary style) or a logged warning.
"""

from __future__ import annotations

from enum import Enum

TAXONOMY_VERSION = "1.0.0"

UNKNOWN = "unknown"


class StylePrimary(str, Enum):
    """Top-level classification. Exactly 1 per family."""

    SERIF = "serif"
    SANS = "sans"
    SLAB = "slab"
    MONO = "mono"
    DISPLAY = "display"
    SCRIPT = "script"
    BLACKLETTER = "blackletter"
    ICON = "icon"


class Substyle(str, Enum):
    """Secondary classification, constrained by the primary."""

    OLDSTYLE = "oldstyle"
    TRANSITIONAL = "transitional"
    DIDONE = "didone"
    HUMANIST = "humanist"
    GROTESQUE = "grotesque"
    NEO_GROTESQUE = "neo_grotesque"
    GEOMETRIC = "geometric"
    HUMANIST_SERIF = "humanist_serif"
    MECHANISTIC = "mechanistic"
    CLARENDON = "clarendon"
    ROUNDED = "rounded"
    REVERSE_CONTRAST = "reverse_contrast"
    HANDWRITING = "handwriting"
    BRUSH = "brush"
    CALLIGRAPHIC = "calligraphic"
    STENCIL = "stencil"
    BITMAP = "bitmap"
    DECORATIVE = "decorative"
    INDUSTRIAL = "industrial"
    TECHNO = "techno"
    UNKNOWN = "unknown"


STYLE_PRIMARY: tuple[str, ...] = tuple(s.value for s in StylePrimary)
SUBSTYLE: tuple[str, ...] = tuple(s.value for s in Substyle)

MOODS: tuple[str, ...] = (
    "neutral",
    "friendly",
    "authoritative",
    "elegant",
    "playful",
    "technical",
    "classic",
    "brutal",
    "warm",
    "refined",
    "energetic",
    "minimalist",
    "retro",
    "futuristic",
    "serious",
    "expressive",
)

USE_CASES: tuple[str, ...] = (
    "body_text",
    "ui",
    "editorial",
    "poster",
    "branding",
    "wayfinding",
    "code",
    "packaging",
    "headlines",
    "signage",
    "motion",
    "print",
    "digital",
    "decorative",
    "variable_expressive",
)

WARNINGS: tuple[str, ...] = (
    "insufficient_script_support",
    "shaping_issues",
    "license_unknown",
    "conflicting_metadata",
    "low_contrast_for_body",
    "poor_legibility_small_sizes",
    "web_claims_disagree",
    "partial_enrichment",
    "duplicate_font",
    "variable_axes_missing",
    "corrupted_tables",
    "color_font_detected",
    "non_latin_primary_script",
)

STYLE_SUBTYPE_MAP: dict[str, frozenset[str]] = {
    "serif": frozenset({
        "oldstyle", "transitional", "didone", "humanist_serif", "mechanistic",
        "clarendon", "reverse_contrast", "decorative", "unknown",
    }),
    "sans": frozenset({
        "humanist", "grotesque", "neo_grotesque", "geometric", "industrial",
        "techno", "rounded", "reverse_contrast", "unknown",
    }),
    "slab": frozenset({"mechanistic", "clarendon", "rounded", "reverse_contrast", "unknown"}),
    "mono": frozenset({"unknown"}),
    "display": frozenset({
        "stencil", "bitmap", "decorative", "reverse_contrast", "industrial", "techno", "unknown",
    }),
    "script": frozenset({"handwriting", "brush", "calligraphic", "decorative", "unknown"}),
    "blackletter": frozenset({"decorative", "reverse_contrast", "unknown"}),
    "icon": frozenset({"unknown"}),
}


def is_valid_primary(value: str) -> bool:
    return value in STYLE_PRIMARY


def is_valid_subtype(primary: str, substyle: str) -> bool:
    return substyle in STYLE_SUBTYPE_MAP.get(primary, frozenset())


def is_valid_mood(value: str) -> bool:
    return value in MOODS


def is_valid_use_case(value: str) -> bool:
    return value in USE_CASES

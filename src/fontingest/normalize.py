"""Family-name normalization, ruleset version 1.0.0.

The normalized key is the grouping key for every downstream operation:
preview grouping on the client and canonical family resolution on the
server both call :func:`normalize_family_name`. The function is pure,
total and idempotent.

Rules, applied in order:
  1. Unicode NFC, lowercase, drop trademark glyphs (™ ® ©).
  2. Drop parenthetical suffixes, then punctuation except hyphens.
  3. Whitespace, underscores and hyphen runs become a single hyphen.
  4. Drop 3-4 digit numeric weights ("400", "1000").
  5. Repeatedly strip foundry suffixes (``-by-...``, ``-std``,
     ``-office``, ``-web``) and trailing style tokens ("bold", "italic",
     ...) until the key is stable; the first token is never stripped.
  6. Empty result becomes ``"unknown"``.

Design-line qualifiers (text, display, pro, ...) are part of the family
identity and are kept; :func:`extract_design_line_qualifier` reports them.
"""

from __future__ import annotations

import re
import unicodedata

NORMALIZATION_SPEC_VERSION = "1.0.0"

UNKNOWN_FAMILY = "unknown"

STYLE_TOKENS: frozenset[str] = frozenset({
    "regular",
    "italic",
    "oblique",
    "bold",
    "black",
    "condensed",
    "extended",
    "narrow",
    "wide",
    "thin",
    "extralight",
    "light",
    "medium",
    "semibold",
    "extrabold",
    "ultra",
    "heavy",
})

DESIGN_LINE_QUALIFIERS: tuple[str, ...] = (
    "text",
    "display",
    "caption",
    "headline",
    "ui",
    "pro",
    "nova",
    "sans",
    "serif",
    "mono",
)

FOUNDRY_SUFFIX_TOKENS: frozenset[str] = frozenset({"std", "office", "web"})

_TRADEMARKS = re.compile(r"[™®©]")
_PARENTHETICAL = re.compile(r"\([^)]*\)")
_PUNCTUATION = re.compile(r"[^\w\s-]")
_SEPARATORS = re.compile(r"[\s_-]+")
_NUMERIC_WEIGHT = re.compile(r"^\d{3,4}$")


def _strip_tail(tokens: list[str]) -> list[str]:
    # "by" introduces a foundry credit: drop it and everything after.
    if "by" in tokens[1:]:
        tokens = tokens[: tokens.index("by", 1)]
    while len(tokens) > 1 and (
        tokens[-1] in STYLE_TOKENS or tokens[-1] in FOUNDRY_SUFFIX_TOKENS
    ):
        tokens = tokens[:-1]
    return tokens


def normalize_family_name(raw: str | None) -> str:
    """Return the normalized grouping key for a raw family name.

    Never raises; ``None``, empty and all-punctuation input map to
    ``"unknown"``.

    >>> normalize_family_name("  Helvetica  Neue™  ")
    'helvetica-neue'
    """
    if not raw or not isinstance(raw, str):
        return UNKNOWN_FAMILY

    text = unicodedata.normalize("NFC", raw).lower()
    text = _TRADEMARKS.sub("", text)
    text = _PARENTHETICAL.sub(" ", text)
    text = _PUNCTUATION.sub("", text)

    tokens = [t for t in _SEPARATORS.split(text) if t]
    tokens = [t for t in tokens if not _NUMERIC_WEIGHT.match(t)]
    if not tokens:
        return UNKNOWN_FAMILY

    return "-".join(_strip_tail(tokens))


def extract_design_line_qualifier(raw: str | None) -> str | None:
    """Return the first design-line qualifier present as a name token."""
    if not raw:
        return None
    tokens = set(_SEPARATORS.split(_PUNCTUATION.sub("", raw.lower())))
    for qualifier in DESIGN_LINE_QUALIFIERS:
        if qualifier in tokens:
            return qualifier
    return None


def _version_parts(version: str) -> list[int]:
    parts = []
    for piece in version.strip().split("."):
        try:
            parts.append(int(piece))
        except ValueError:
            parts.append(0)
    return parts


def compare_spec_versions(left: str, right: str) -> int:
    """Compare dotted versions; returns -1, 0 or 1."""
    a, b = _version_parts(left), _version_parts(right)
    width = max(len(a), len(b))
    a += [0] * (width - len(a))
    b += [0] * (width - len(b))
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def should_warn_about_spec_mismatch(client_version: str, server_version: str) -> bool:
    """True when the client ruleset is older, or the major versions differ."""
    if compare_spec_versions(client_version, server_version) < 0:
        return True
    return _version_parts(client_version)[0] != _version_parts(server_version)[0]

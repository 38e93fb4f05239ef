"""Font binary parsing via fontTools.

Turns raw bytes into a :class:`FontMetadata` record or raises
:class:`ParseError`. Collections (``.ttc``/``.otc``) yield their first
face. WOFF and WOFF2 containers are decompressed by fontTools itself
(WOFF2 needs the ``brotli`` extra).
"""

from __future__ import annotations

import io
import logging
from pathlib import Path

from fontTools.ttLib import TTCollection, TTFont, TTLibError

from fontingest.exceptions import ParseError
from fontingest.models import FontMetadata, VariableAxis

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset({"ttf", "otf", "woff", "woff2", "eot"})
COLOR_TABLES: tuple[str, ...] = ("COLR", "CPAL", "CBDT", "sbix", "SVG ")
# Family name of last resort when the name table and file name give nothing.
UNKNOWN_FAMILY = "Unknown Family"


def _name(font: TTFont, *name_ids: int) -> str | None:
    if "name" not in font:
        return None
    table = font["name"]
    for name_id in name_ids:
        value = table.getDebugName(name_id)
        if value and value.strip():
            return value.strip()
    return None


def _feature_tags(font: TTFont) -> list[str]:
    tags: set[str] = set()
    for table_tag in ("GSUB", "GPOS"):
        if table_tag not in font:
            continue
        feature_list = getattr(font[table_tag].table, "FeatureList", None)
        if feature_list is None:
            continue
        for record in feature_list.FeatureRecord:
            tags.add(record.FeatureTag)
    return sorted(tags)


def _axes(font: TTFont) -> list[VariableAxis]:
    if "fvar" not in font:
        return []
    axes = []
    for axis in font["fvar"].axes:
        axes.append(
            VariableAxis(
                tag=axis.axisTag,
                name=_name(font, axis.axisNameID) or axis.axisTag,
                min_value=float(axis.minValue),
                default_value=float(axis.defaultValue),
                max_value=float(axis.maxValue),
            )
        )
    return axes


def _container_format(font: TTFont, filename: str) -> str:
    if font.flavor in ("woff", "woff2"):
        return font.flavor
    if font.sfntVersion == "OTTO":
        return "otf"
    suffix = Path(filename).suffix.lower().lstrip(".")
    return "otf" if suffix == "otf" else "ttf"


def _open(data: bytes) -> TTFont:
    buffer = io.BytesIO(data)
    if data[:4] == b"ttcf":
        collection = TTCollection(buffer)
        if not collection.fonts:
            raise TTLibError("empty font collection")
        return collection.fonts[0]
    return TTFont(buffer)


def parse_font(data: bytes, filename: str) -> FontMetadata:
    """Extract family, style, metrics, axes and feature data from *data*.

    Args:
        data: Complete font file bytes.
        filename: Original file name, used for format hints and errors.

    Returns:
        Parsed metadata. Subfamily defaults to ``"Regular"``; a missing
        family name falls back to the full name, then the file stem.

    Raises:
        ParseError: If the bytes are empty, corrupt, or not a font.
    """
    if not data:
        raise ParseError(filename, "empty file")
    try:
        font = _open(data)
    except Exception as exc:  # fontTools raises many unrelated types on bad input
        raise ParseError(filename, str(exc) or type(exc).__name__) from exc

    try:
        family = _name(font, 16, 1, 4) or Path(filename).stem or UNKNOWN_FAMILY

        os2 = font["OS/2"] if "OS/2" in font else None
        head = font["head"] if "head" in font else None
        post = font["post"] if "post" in font else None

        x_height = getattr(os2, "sxHeight", None) if os2 is not None else None
        cap_height = getattr(os2, "sCapHeight", None) if os2 is not None else None

        return FontMetadata(
            family_name=family,
            subfamily_name=_name(font, 17, 2) or "Regular",
            postscript_name=_name(font, 6),
            version=_name(font, 5),
            foundry=_name(font, 8),
            designer=_name(font, 9),
            format=_container_format(font, filename),
            weight_class=os2.usWeightClass if os2 is not None else None,
            italic_angle=float(post.italicAngle) if post is not None else None,
            units_per_em=head.unitsPerEm if head is not None else None,
            x_height=x_height or None,
            cap_height=cap_height or None,
            family_class=(os2.sFamilyClass >> 8) if os2 is not None else None,
            glyph_count=font["maxp"].numGlyphs if "maxp" in font else 0,
            features=_feature_tags(font),
            axes=_axes(font),
            color_tables=[t.strip() for t in COLOR_TABLES if t in font],
            is_fixed_pitch=bool(post.isFixedPitch) if post is not None else False,
            is_hinted="fpgm" in font or "prep" in font,
            outline_format="cff" if ("CFF " in font or "CFF2" in font) else "truetype",
        )
    except ParseError:
        raise
    except Exception as exc:
        raise ParseError(filename, f"unreadable table data: {exc}") from exc
    finally:
        font.close()


def parse_font_file(path: Path) -> FontMetadata:
    """Read *path* and parse it; IO errors surface as :class:`ParseError`."""
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ParseError(str(path), str(exc)) from exc
    return parse_font(data, Path(path).name)

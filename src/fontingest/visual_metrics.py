"""Table-derived visual metrics.

No rendering is involved: each metric is a heuristic over OS/2, post and
head values already present in :class:`FontMetadata`. Metrics whose inputs
are missing are left out of the result rather than guessed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass

from fontingest.models import FontMetadata

logger = logging.getLogger(__name__)

# IBM font class (OS/2 sFamilyClass high byte) -> coarse classification.
_FAMILY_CLASS_NAMES: dict[int, str] = {
    1: "Serif",
    2: "Serif",
    3: "Serif",
    4: "Serif",
    5: "Serif",
    7: "Serif",
    8: "Sans Serif",
    9: "Ornamental",
    10: "Script",
    12: "Symbolic",
}


def classify_family(meta: FontMetadata) -> str | None:
    """Return a coarse class name from fixed pitch flag and sFamilyClass.

    Fonts with no usable family class fall back to "sans"/"serif"/"mono"
    tokens in the family name.
    """
    if meta.is_fixed_pitch:
        return "Monospace"
    kind = _FAMILY_CLASS_NAMES.get(meta.family_class) if meta.family_class else None
    if kind is not None:
        return kind
    tokens = set(re.split(r"[\s_-]+", (meta.family_name or "").lower()))
    if "mono" in tokens:
        return "Monospace"
    if "sans" in tokens:
        return "Sans Serif"
    if "serif" in tokens:
        return "Serif"
    return None


@dataclass
class VisualMetrics:
    """Measured or estimated glyph-shape indicators."""

    x_height_ratio: float | None = None
    contrast_index: float | None = None
    stress_angle_deg: float | None = None
    aperture_index: float | None = None
    roundness: float | None = None
    spacing_stddev: float | None = None
    serif_detected: bool | None = None
    terminal_style: str | None = None

    def to_dict(self) -> dict[str, float | bool | str]:
        """Only the metrics that were actually computed."""
        return {k: v for k, v in asdict(self).items() if v is not None}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_visual_metrics(meta: FontMetadata) -> VisualMetrics:
    """Estimate visual metrics for *meta*.

    Args:
        meta: Parsed font metadata.

    Returns:
        VisualMetrics with unsupported fields left as ``None``.
    """
    metrics = VisualMetrics()
    upm = meta.units_per_em or 1000
    kind = classify_family(meta)

    if meta.x_height:
        metrics.x_height_ratio = round(meta.x_height / upm, 4)
    elif meta.cap_height:
        metrics.x_height_ratio = round(meta.cap_height * 0.7 / upm, 4)

    if kind is not None:
        metrics.serif_detected = kind == "Serif"
        metrics.terminal_style = {"Serif": "bracketed", "Sans Serif": "sheared"}.get(
            kind, "unknown"
        )
        metrics.roundness = 0.5 if kind == "Sans Serif" else 0.3

    if meta.italic_angle is not None:
        metrics.stress_angle_deg = meta.italic_angle

    if meta.weight_class:
        if kind == "Serif":
            metrics.contrast_index = round(_clamp((900 - meta.weight_class) / 1000, 0.1, 0.5), 4)
        else:
            metrics.contrast_index = round(_clamp((900 - meta.weight_class) / 2000, 0.05, 0.3), 4)

    if metrics.x_height_ratio:
        metrics.aperture_index = round(_clamp(metrics.x_height_ratio * 1.2, 0.3, 0.8), 4)

    if kind == "Monospace":
        metrics.spacing_stddev = 0.0
    elif meta.weight_class:
        metrics.spacing_stddev = round(0.08 * (0.5 + (900 - meta.weight_class) / 1000), 4)

    logger.debug("Visual metrics for %s: %s", meta.family_name, metrics.to_dict())
    return metrics

"""Two-level validation for model-produced classifications.

Distinguishes blocking errors (reject the stage result) from warnings
(accept, log). Repairs common model slips before checking: value
spelling ("Neo-Grotesque" -> "neo_grotesque"), out-of-range confidences
(clamped), and ``evidence`` used in place of ``evidence_keys``.

Blocking: missing or invalid ``style_primary.value``; missing ``moods``
or ``use_cases`` arrays; tag items without a value.
Warnings: substyle not allowed under the primary; off-vocabulary moods
or use cases (dropped from the cleaned result); bad or missing
confidences; missing evidence.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from fontingest.analysis.schemas import VisualAnalysis
from fontingest.analysis.taxonomy import (
    UNKNOWN,
    is_valid_mood,
    is_valid_primary,
    is_valid_subtype,
    is_valid_use_case,
)
from fontingest.visual_metrics import VisualMetrics

logger = logging.getLogger(__name__)


@dataclass
class ValidationOutcome:
    """Result of validating one stage's parsed output.

    Attributes:
        errors: Blocking problems; the stage result is rejected.
        warnings: Non-blocking problems; logged and carried forward.
        repaired_fields: Descriptions of automatic repairs.
        cleaned: Repaired dict with off-vocabulary tags removed.
        result: Typed model when there are no errors.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    repaired_fields: list[str] = field(default_factory=list)
    cleaned: dict[str, Any] | None = None
    result: BaseModel | None = None

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _norm_value(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().lower().replace(" ", "_").replace("-", "_")


def _repair_item(item: dict, label: str, outcome: ValidationOutcome) -> None:
    """Normalize value, evidence alias and confidence of one tag in place."""
    raw = item.get("value")
    value = _norm_value(raw)
    if value is not None and value != raw:
        item["value"] = value
        outcome.repaired_fields.append(f"{label}.value: {raw!r} -> {value!r}")

    if "evidence_keys" not in item and isinstance(item.get("evidence"), list):
        item["evidence_keys"] = item.pop("evidence")
        outcome.repaired_fields.append(f"{label}: evidence -> evidence_keys")

    conf = item.get("confidence")
    if isinstance(conf, bool) or not isinstance(conf, (int, float)):
        outcome.warnings.append(f"{label} {value or '?'} has invalid confidence: {conf!r}")
        item["confidence"] = 0.0
    elif conf < 0.0 or conf > 1.0:
        outcome.warnings.append(f"{label} {value} has invalid confidence: {conf}")
        item["confidence"] = min(1.0, max(0.0, float(conf)))
        outcome.repaired_fields.append(f"{label}.confidence: {conf} clamped")


def _validate_tags(
    data: dict, key: str, label: str, is_valid: Any, outcome: ValidationOutcome
) -> None:
    items = data.get(key)
    if not isinstance(items, list):
        outcome.errors.append(f"Missing or invalid {key} array")
        return
    kept = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            item = {"value": item}
        if not isinstance(item, dict) or _norm_value(item.get("value")) is None:
            outcome.errors.append(f"{label} at index {index} missing value")
            continue
        _repair_item(item, label, outcome)
        if not is_valid(item["value"]):
            outcome.warnings.append(f"Invalid {label.lower()}: {item['value']}")
            continue
        kept.append(item)
    data[key] = kept


def validate_analysis(
    raw: Any, model: type[BaseModel] = VisualAnalysis
) -> ValidationOutcome:
    """Validate parsed model output against the schema and vocabulary.

    Args:
        raw: Parsed JSON (anything; non-dicts are a blocking error).
        model: Pydantic model to build when validation passes.

    Returns:
        ValidationOutcome; ``result`` is set only when there are no errors.
    """
    outcome = ValidationOutcome()
    if not isinstance(raw, dict):
        outcome.errors.append("Result is not a JSON object")
        return outcome

    data = copy.deepcopy(raw)

    primary = data.get("style_primary")
    if isinstance(primary, str):
        primary = data["style_primary"] = {"value": primary}
    if not isinstance(primary, dict) or _norm_value(primary.get("value")) is None:
        outcome.errors.append("Missing style_primary.value")
        primary_value = None
    else:
        if "confidence" not in primary:
            outcome.warnings.append("style_primary missing confidence score")
        _repair_item(primary, "style_primary", outcome)
        primary_value = primary["value"]
        if not is_valid_primary(primary_value):
            outcome.errors.append(f"Invalid classification: {primary_value}")
        if not primary.get("evidence_keys"):
            outcome.warnings.append("style_primary missing evidence")

    substyle = data.get("substyle")
    if isinstance(substyle, str):
        substyle = data["substyle"] = {"value": substyle}
    if isinstance(substyle, dict) and _norm_value(substyle.get("value")) is not None:
        _repair_item(substyle, "substyle", outcome)
        if primary_value and not is_valid_subtype(primary_value, substyle["value"]):
            outcome.warnings.append(
                f"Substyle {substyle['value']} may not be valid for {primary_value}"
            )
            substyle["value"] = UNKNOWN
    elif substyle is not None:
        data["substyle"] = None

    _validate_tags(data, "moods", "Mood", is_valid_mood, outcome)
    _validate_tags(data, "use_cases", "Use case", is_valid_use_case, outcome)

    if "negative_tags" in data and not isinstance(data["negative_tags"], list):
        outcome.warnings.append("negative_tags is not an array; dropped")
        data["negative_tags"] = []

    outcome.cleaned = data
    if outcome.errors:
        return outcome

    try:
        outcome.result = model.model_validate(data)
    except PydanticValidationError as exc:
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"])
            outcome.errors.append(f"{loc}: {err['msg']}")
    return outcome


def apply_sanity_rules(result: VisualAnalysis, metrics: VisualMetrics | None) -> list[str]:
    """Cross-check a classification against measured metrics; warnings only."""
    warnings: list[str] = []
    use_cases = {u.value for u in result.use_cases}
    primary = result.style_primary.value

    if "ui" in use_cases and primary == "serif":
        if not any("serif_detected=false" in e for e in result.style_primary.evidence_keys):
            warnings.append("UI use-case typically requires sans-serif fonts")

    if "body_text" in use_cases and metrics is not None and metrics.x_height_ratio:
        ratio = metrics.x_height_ratio
        if ratio < 0.4 or ratio > 0.7:
            warnings.append(f"Body text use-case with unusual x-height ratio: {ratio}")

    return warnings


def calculate_confidence(result: VisualAnalysis | None) -> float | None:
    """Mean of the primary, mood and use-case confidences."""
    if result is None:
        return None
    scores = [result.style_primary.confidence]
    scores.extend(m.confidence for m in result.moods)
    scores.extend(u.confidence for u in result.use_cases)
    return round(sum(scores) / len(scores), 4)


def confidence_band(score: float | None, thresholds: tuple[float, float, float]) -> str:
    """Bucket *score* into low / medium / high / very_high."""
    if score is None:
        return "unknown"
    low, medium, high = thresholds
    if score <= low:
        return "low"
    if score <= medium:
        return "medium"
    if score <= high:
        return "high"
    return "very_high"

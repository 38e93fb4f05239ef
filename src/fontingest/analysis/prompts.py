"""Prompt templates for the three analysis stages.

System prompts set the ground rules (controlled vocabulary only, cite a
metric for every decision, "unknown" instead of guessing, strict JSON).
User prompts are built from parsed font metadata, optional visual
metrics and the previous stage's result.

Prompt version tracks breaking changes for reproducibility.
"""

from __future__ import annotations

import json

from pydantic import BaseModel

from fontingest.analysis.schemas import VisualAnalysis
from fontingest.analysis.taxonomy import (
    MOODS,
    STYLE_PRIMARY,
    STYLE_SUBTYPE_MAP,
    USE_CASES,
    WARNINGS,
)
from fontingest.models import FontMetadata
from fontingest.visual_metrics import VisualMetrics, classify_family

PROMPT_VERSION = "1.0.0"

SUMMARY_MAX_WORDS = 50

VISUAL_ANALYSIS_SYSTEM_PROMPT = """You are a typography expert analyzing font characteristics. Your task is to classify fonts based on measured visual metrics and technical data.

CRITICAL RULES:
1. You MUST reference specific measured metrics in your evidence_keys arrays
2. You MUST use only the provided controlled vocabulary
3. You MUST provide confidence scores (0.0-1.0) for each classification
4. You MUST NOT invent characteristics not supported by the provided metrics
5. If metrics are missing, use lower confidence scores
6. When uncertain, output the literal value "unknown" for that field
7. Output must be strict JSON only; no markdown fences

Your output must be valid JSON matching the provided schema exactly."""

ENRICHED_ANALYSIS_SYSTEM_PROMPT = """You are a typography expert analyzing font characteristics, optionally with access to web search.

CRITICAL RULES:
1. Look up foundry, designer or historical context only when the metadata suggests it is incomplete
2. Whenever a fact comes from the web, cite the source URL in sources or people[].source_url
3. If search finds nothing relevant, proceed with inference from the visual characteristics
4. Always reference measured metrics in your evidence_keys arrays
5. Use only the provided controlled vocabulary
6. When uncertain, output the literal value "unknown" for that field
7. Output must be strict JSON only; no markdown fences

Your output must be valid JSON matching the provided schema exactly."""

SUMMARY_SYSTEM_PROMPT = f"""You are a typography expert writing a concise, appealing description of a font family.

CRITICAL RULES:
1. Write 1-2 sentences, maximum {SUMMARY_MAX_WORDS} words
2. Reference specific characteristics from the analysis (e.g., "humanist sans", "high x-height")
3. Make it appealing and marketing-friendly
4. Do not invent characteristics not present in the analysis

Your output must be valid JSON with a "description" field."""


def _na(value: object) -> str:
    if value is None or value == "" or value == []:
        return "N/A"
    return str(value)


def _metrics_block(metrics: VisualMetrics | None) -> str:
    if metrics is None or not metrics.to_dict():
        return "Visual metrics: Not available (using basic classification)"
    m = metrics
    return "\n".join([
        "Visual Metrics:",
        f"- x_height_ratio: {_na(m.x_height_ratio)}",
        f"- contrast_index: {_na(m.contrast_index)}",
        f"- aperture_index: {_na(m.aperture_index)}",
        f"- serif_detected: {_na(m.serif_detected)}",
        f"- stress_angle_deg: {_na(m.stress_angle_deg)}",
        f"- roundness: {_na(m.roundness)}",
        f"- spacing_stddev: {_na(m.spacing_stddev)}",
        f"- terminal_style: {_na(m.terminal_style)}",
    ])


def _vocabulary_block() -> str:
    substyles = "\n".join(
        f"  - {primary}: {', '.join(sorted(subs))}" for primary, subs in STYLE_SUBTYPE_MAP.items()
    )
    return (
        "Controlled Vocabulary:\n"
        f"- style_primary (exactly 1): {', '.join(STYLE_PRIMARY)}\n"
        f"- substyle by primary:\n{substyles}\n"
        f"- moods: {', '.join(MOODS)}\n"
        f"- use_cases: {', '.join(USE_CASES)}\n"
        f"- warnings (optional): {', '.join(WARNINGS)}"
    )


def build_visual_prompt(meta: FontMetadata, metrics: VisualMetrics | None = None) -> str:
    """User prompt for the visual stage."""
    lines = [
        f'Analyze the font family "{meta.family_name or "Unknown"}".',
        "",
        "Font Details:",
        f"- Subfamily: {_na(meta.subfamily_name)}",
        f"- PostScript Name: {_na(meta.postscript_name)}",
        f"- Version: {_na(meta.version)}",
        f"- Format: {_na(meta.format)}",
        f"- Foundry: {_na(meta.foundry)}",
        f"- Designer: {_na(meta.designer)}",
        f"- Weight: {_na(meta.weight_class)}",
        f"- Classification (from OS/2): {_na(classify_family(meta))}",
        f"- Is Variable: {'Yes' if meta.is_variable else 'No'}",
        f"- Glyph Count: {_na(meta.glyph_count)}",
        f"- OpenType Features: {_na(', '.join(meta.features))}",
        "",
        _metrics_block(metrics),
    ]
    if meta.axes:
        lines.append("")
        lines.append("Variable Axes:")
        for axis in meta.axes:
            lines.append(
                f"  - {axis.tag} ({axis.name}): {axis.min_value} to {axis.max_value}, "
                f"default {axis.default_value}"
            )
    lines += [
        "",
        _vocabulary_block(),
        "",
        "Provide classification with evidence_keys naming the metrics above.",
    ]
    return "\n".join(lines)


def build_enriched_prompt(
    meta: FontMetadata,
    metrics: VisualMetrics | None = None,
    visual: VisualAnalysis | None = None,
) -> str:
    """User prompt for the enriched stage: visual prompt plus enrichment rules."""
    parts = [
        build_visual_prompt(meta, metrics),
        "",
        "ENRICHMENT INSTRUCTIONS:",
        "- If foundry or designer information is present but incomplete, look up more details",
        "- Add historical context only if this appears to be a well-known family",
        "- Include the source URL for every web-sourced fact",
        "- If nothing relevant is found, proceed with inference from visual characteristics",
    ]
    if visual is not None:
        parts += [
            "",
            "Previous Visual Analysis:",
            f"- Style Primary: {visual.style_primary.value}",
            f"- Substyle: {visual.substyle.value if visual.substyle else 'N/A'}",
            f"- Moods: {_na(', '.join(m.value for m in visual.moods))}",
            f"- Use Cases: {_na(', '.join(u.value for u in visual.use_cases))}",
        ]
    parts += ["", "Provide enriched analysis with web-sourced information where available."]
    return "\n".join(parts)


def build_summary_prompt(meta: FontMetadata, analysis: VisualAnalysis) -> str:
    """User prompt for the summary stage, limited to facts in *analysis*."""
    classification = analysis.style_primary.value
    if analysis.substyle and analysis.substyle.value != "unknown":
        classification += f" ({analysis.substyle.value})"
    moods = ", ".join(m.value for m in analysis.moods[:3])
    use_cases = ", ".join(u.value for u in analysis.use_cases[:2])
    return (
        f"Generate a concise, appealing description (1-2 sentences, max {SUMMARY_MAX_WORDS} "
        f'words) for the font family "{meta.family_name}".\n\n'
        "Analysis Summary:\n"
        f"- Classification: {classification}\n"
        f"- Key Characteristics: {_na(moods)}\n"
        f"- Use Cases: {_na(use_cases)}\n"
        f"- Foundry: {meta.foundry or 'Unknown'}\n\n"
        "Write a marketing-friendly description that highlights the font's key "
        "characteristics and best use cases."
    )


def schema_instructions(model: type[BaseModel]) -> str:
    """Inline JSON schema for requests that cannot carry ``response_schema``."""
    return "Respond with JSON matching this schema:\n" + json.dumps(
        model.model_json_schema(), separators=(",", ":")
    )
